"""Mapping of request hostnames and paths onto the content store.

A hostname with three or more labels selects the folder named by its first
label (``blog.example.com`` -> ``blog``). Loopback hosts and bare domains
(``example.com``) fall back to the default label.
"""

from __future__ import annotations

from dataclasses import dataclass
from pathlib import Path

from subserve.core.config import DEFAULT_SUBDOMAIN
from subserve.core.exceptions import PathTraversalError

LOOPBACK_HOSTS = frozenset({"localhost", "127.0.0.1"})

MAX_LABEL_LENGTH = 63


@dataclass(frozen=True)
class ResolvedTarget:
    """Filesystem location computed for one request."""

    subdomain: str
    subdomain_dir: Path
    path: Path
    request_path: str

    @property
    def is_subdomain_root(self) -> bool:
        return self.path == self.subdomain_dir


def _strip_port(hostname: str) -> str:
    if hostname.startswith("["):
        return hostname
    host, sep, port = hostname.rpartition(":")
    if sep and port.isdigit():
        return host
    return hostname


def extract_subdomain(hostname: str | None, default: str = DEFAULT_SUBDOMAIN) -> str:
    """Derive the subdomain label for a hostname.

    Args:
        hostname: Request hostname, optionally with a ``:port`` suffix.
        default: Label used when the hostname does not carry one.

    Returns:
        The first label of a hostname with more than two labels, else ``default``.
    """
    if not hostname:
        return default

    host = _strip_port(hostname.strip().lower())
    if host in LOOPBACK_HOSTS:
        return default

    parts = host.split(".")
    if len(parts) > 2:
        return parts[0] or default
    return default


def is_valid_label(label: str) -> bool:
    """Whether ``label`` can name a folder directly under the content root."""
    if not label or len(label) > MAX_LABEL_LENGTH:
        return False
    if label.startswith("-") or label.endswith("-"):
        return False
    return all(c.isalnum() or c in "-_" for c in label)


def split_path(request_path: str) -> list[str]:
    """Split a URL path into the segments to join onto a subdomain folder.

    Empty and ``.`` segments are dropped.

    Raises:
        PathTraversalError: If a segment is ``..`` or holds a backslash or NUL.
    """
    segments = []
    for segment in request_path.split("/"):
        if not segment or segment == ".":
            continue
        if segment == ".." or "\\" in segment or "\x00" in segment:
            raise PathTraversalError(f"Rejected path segment: {segment!r}")
        segments.append(segment)
    return segments


def resolve_target(
    content_root: str | Path,
    subdomain: str,
    request_path: str,
) -> ResolvedTarget:
    """Compute the filesystem target for a request.

    The target is not checked for existence; it may name a file, a directory
    or nothing at all.

    Raises:
        PathTraversalError: If the label or the path would leave the subdomain folder.
    """
    if not is_valid_label(subdomain):
        raise PathTraversalError(f"Invalid subdomain label: {subdomain!r}")

    subdomain_dir = Path(content_root) / subdomain
    segments = split_path(request_path)
    path = subdomain_dir.joinpath(*segments) if segments else subdomain_dir
    return ResolvedTarget(
        subdomain=subdomain,
        subdomain_dir=subdomain_dir,
        path=path,
        request_path=request_path or "/",
    )
