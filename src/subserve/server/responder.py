"""Turns resolved content targets into HTTP responses.

Only two outcomes exist: 200 with file bytes or a directory listing, and 404
with a plain-text reason. Filesystem errors of any kind degrade to 404.
"""

from __future__ import annotations

import asyncio
import mimetypes
import stat
from pathlib import Path

import structlog
from aiohttp import web

from subserve.content.bootstrap import INDEX_NAME
from subserve.content.listing import render_directory_listing
from subserve.core.config import DEFAULT_CONTENT_ROOT, DEFAULT_SUBDOMAIN
from subserve.core.exceptions import PathTraversalError
from subserve.routing.subdomain import extract_subdomain, is_valid_label, resolve_target

logger = structlog.get_logger()

FALLBACK_CONTENT_TYPE = "application/octet-stream"


def not_found(text: str = "Not found") -> web.Response:
    """Plain-text 404 response."""
    return web.Response(status=404, text=text, content_type="text/plain")


def guess_content_type(path: Path) -> str:
    content_type, _ = mimetypes.guess_type(path.name)
    return content_type or FALLBACK_CONTENT_TYPE


async def _stat(path: Path):
    return await asyncio.to_thread(path.stat)


async def _is_dir(path: Path) -> bool:
    try:
        return stat.S_ISDIR((await _stat(path)).st_mode)
    except (OSError, ValueError):
        return False


class ContentResponder:
    """Serves files and listings out of ``<content_root>/<subdomain>``."""

    def __init__(
        self,
        content_root: str | Path = DEFAULT_CONTENT_ROOT,
        default_subdomain: str = DEFAULT_SUBDOMAIN,
    ) -> None:
        self.content_root = Path(content_root)
        self.default_subdomain = default_subdomain

    async def handle(self, request: web.Request) -> web.Response:
        """aiohttp handler; every method is treated as a content fetch."""
        response = await self.respond(request.url.host or request.host, request.path)
        logger.debug(
            "Request served",
            method=request.method,
            host=request.host,
            path=request.path,
            status=response.status,
        )
        return response

    async def respond(self, hostname: str | None, request_path: str) -> web.Response:
        """Build the response for a hostname and URL path."""
        subdomain = extract_subdomain(hostname, self.default_subdomain)
        request_path = request_path or "/"

        if not is_valid_label(subdomain) or not await _is_dir(self.content_root / subdomain):
            return not_found(f"Subdomain '{subdomain}' not found")

        try:
            target = resolve_target(self.content_root, subdomain, request_path)
        except PathTraversalError as e:
            logger.warning("Rejected request path", path=request_path, reason=e.message)
            return not_found(f"Not found: {request_path}")

        try:
            target_stat = await _stat(target.path)
        except (OSError, ValueError):
            return not_found(f"Not found: {request_path}")

        if stat.S_ISDIR(target_stat.st_mode):
            return await self._respond_directory(target.path, request_path)
        if stat.S_ISREG(target_stat.st_mode):
            return await self._respond_file(target.path, request_path)
        return not_found()

    async def _respond_directory(self, directory: Path, request_path: str) -> web.Response:
        index = directory / INDEX_NAME
        try:
            index_stat = await _stat(index)
        except (OSError, ValueError):
            return await self._respond_listing(directory, request_path)

        if stat.S_ISREG(index_stat.st_mode):
            return await self._respond_file(index, request_path)
        return not_found()

    async def _respond_listing(self, directory: Path, request_path: str) -> web.Response:
        try:
            names = await asyncio.to_thread(lambda: sorted(p.name for p in directory.iterdir()))
        except OSError:
            return not_found(f"Not found: {request_path}")
        return web.Response(
            text=render_directory_listing(request_path, names),
            content_type="text/html",
        )

    async def _respond_file(self, path: Path, request_path: str) -> web.Response:
        try:
            body = await asyncio.to_thread(path.read_bytes)
        except OSError:
            return not_found(f"Not found: {request_path}")
        return web.Response(body=body, content_type=guess_content_type(path))
