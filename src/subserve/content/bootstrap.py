"""First-run creation of the content root and the default subdomain site."""

from __future__ import annotations

from pathlib import Path

import structlog

from subserve.core.config import DEFAULT_CONTENT_ROOT, DEFAULT_SUBDOMAIN

logger = structlog.get_logger()

GITKEEP_NAME = ".gitkeep"
INDEX_NAME = "index.html"
WELCOME_PAGE = "<h1>Welcome to the default subdomain!</h1>"


def ensure_content_directories(
    content_root: str | Path = DEFAULT_CONTENT_ROOT,
    default_subdomain: str = DEFAULT_SUBDOMAIN,
) -> bool:
    """Create the content root and seed the default subdomain on first run.

    Nothing happens when the content root already exists, even if the default
    subdomain folder has since been removed. Filesystem errors propagate.

    Args:
        content_root: Directory holding one folder per subdomain.
        default_subdomain: Folder name seeded with a placeholder page.

    Returns:
        True if the content root was created, False if it already existed.
    """
    root = Path(content_root)
    if root.is_dir():
        return False

    logger.info("Creating content root directory", path=str(root))
    root.mkdir(parents=True, exist_ok=True)
    (root / GITKEEP_NAME).write_text("", encoding="utf-8")

    site = root / default_subdomain
    site.mkdir(parents=True, exist_ok=True)
    (site / INDEX_NAME).write_text(WELCOME_PAGE, encoding="utf-8")
    logger.debug("Seeded default subdomain", subdomain=default_subdomain, path=str(site))
    return True
