"""Content store helpers: first-run bootstrap and directory listings."""

from subserve.content.bootstrap import WELCOME_PAGE, ensure_content_directories
from subserve.content.listing import entry_href, render_directory_listing

__all__ = [
    "WELCOME_PAGE",
    "ensure_content_directories",
    "entry_href",
    "render_directory_listing",
]
