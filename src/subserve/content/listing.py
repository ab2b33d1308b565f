"""HTML rendering of directory listings."""

from __future__ import annotations

import html
from collections.abc import Iterable
from urllib.parse import quote


def entry_href(request_path: str, name: str) -> str:
    """Link to ``name`` relative to the directory at ``request_path``.

    The root path yields ``/name`` rather than ``//name``.
    """
    base = request_path.rstrip("/")
    return f"{quote(base)}/{quote(name)}"


def render_directory_listing(request_path: str, entries: Iterable[str]) -> str:
    """Render a directory listing page.

    Args:
        request_path: URL path of the directory being listed.
        entries: Names of the immediate children of the directory.

    Returns:
        An HTML document with one ``<li><a>`` per entry, in the given order.
    """
    title = html.escape(request_path or "/")
    items = "".join(
        f'<li><a href="{html.escape(entry_href(request_path, name))}">{html.escape(name)}</a></li>'
        for name in entries
    )
    return (
        "<html>\n"
        f"<head><title>Directory: {title}</title></head>\n"
        "<body>\n"
        f"<h1>Directory: {title}</h1>\n"
        f"<ul>{items}</ul>\n"
        "</body>\n"
        "</html>\n"
    )
