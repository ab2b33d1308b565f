"""Local HTTP listener for subdomain content."""

from __future__ import annotations

from collections.abc import Awaitable, Callable
from pathlib import Path

import structlog
from aiohttp import web

from subserve.core.config import ServeConfig
from subserve.server.responder import ContentResponder, not_found

logger = structlog.get_logger()

Handler = Callable[[web.Request], Awaitable[web.StreamResponse]]


@web.middleware
async def fallback_middleware(request: web.Request, handler: Handler) -> web.StreamResponse:
    """Map anything the handler did not expect onto the generic 404."""
    try:
        return await handler(request)
    except web.HTTPException:
        raise
    except Exception as e:
        logger.error(
            "Unhandled error while serving request",
            method=request.method,
            path=request.path,
            error=str(e),
            exc_info=True,
        )
        return not_found()


def create_app(
    content_root: str | Path,
    default_subdomain: str,
) -> web.Application:
    """Build the aiohttp application that serves every method and path."""
    responder = ContentResponder(content_root, default_subdomain)
    app = web.Application(middlewares=[fallback_middleware])
    app.router.add_route("*", "/{path:.*}", responder.handle)
    return app


class ContentServer:
    """HTTP listener bound to ``config.host:config.port``."""

    def __init__(self, config: ServeConfig):
        self.config = config
        self._app: web.Application | None = None
        self._runner: web.AppRunner | None = None

    @property
    def is_running(self) -> bool:
        return self._runner is not None

    async def start(self) -> None:
        """Start listening. Bind errors propagate to the caller."""
        self._app = create_app(self.config.content_root, self.config.default_subdomain)
        self._runner = web.AppRunner(self._app, access_log=None)
        await self._runner.setup()

        site = web.TCPSite(self._runner, self.config.host, self.config.port)
        try:
            await site.start()
        except OSError:
            await self._runner.cleanup()
            self._runner = None
            raise

        logger.info(
            "HTTP listener started",
            host=self.config.host,
            port=self.config.port,
            content_root=str(self.config.content_root),
        )

    async def stop(self) -> None:
        """Stop the listener; in-flight requests are not drained."""
        if self._runner:
            await self._runner.cleanup()
            self._runner = None
            logger.info("HTTP listener stopped")
