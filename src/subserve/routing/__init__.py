"""Subserve Routing Module.

Maps an inbound request onto the content store:

- Hostname -> subdomain label (first label of 3+ label hosts, else the default)
- URL path -> file or directory inside that subdomain's folder

Usage:
    from subserve.routing import extract_subdomain, resolve_target

    label = extract_subdomain("blog.example.com")      # "blog"
    target = resolve_target("./content", label, "/posts/")
"""

from subserve.routing.subdomain import (
    LOOPBACK_HOSTS,
    ResolvedTarget,
    extract_subdomain,
    is_valid_label,
    resolve_target,
    split_path,
)

__all__ = [
    "LOOPBACK_HOSTS",
    "ResolvedTarget",
    "extract_subdomain",
    "is_valid_label",
    "resolve_target",
    "split_path",
]
