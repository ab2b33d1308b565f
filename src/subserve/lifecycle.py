"""Startup and shutdown sequencing for the content server and its tunnel."""

from __future__ import annotations

import asyncio
from collections.abc import Awaitable, Callable
from pathlib import Path

import structlog

from subserve.client.installer import ensure_installed
from subserve.client.tunnel import CloudflaredTunnel, TunnelConnection
from subserve.content.bootstrap import ensure_content_directories
from subserve.core.config import ServeConfig
from subserve.core.exceptions import MissingTokenError
from subserve.server.app import ContentServer

logger = structlog.get_logger()

TunnelFactory = Callable[[str, Path], CloudflaredTunnel]
Installer = Callable[[Path, str], Awaitable[Path]]


class ServiceLifecycle:
    """Owns the HTTP listener and the tunnel for one process run.

    Startup order:
        1. CLOUDFLARED_TOKEN must be non-empty
        2. cloudflared is installed if missing
        3. the content root is bootstrapped
        4. the HTTP listener starts
        5. the tunnel starts and the first connection is awaited

    Shutdown stops the tunnel, then the listener.
    """

    def __init__(
        self,
        config: ServeConfig,
        tunnel_factory: TunnelFactory = CloudflaredTunnel.with_token,
        installer: Installer = ensure_installed,
        server: ContentServer | None = None,
    ) -> None:
        self.config = config
        self.server = server or ContentServer(config)
        self.tunnel: CloudflaredTunnel | None = None
        self.connection: TunnelConnection | None = None
        self._tunnel_factory = tunnel_factory
        self._installer = installer
        self._shutdown_event = asyncio.Event()

    async def start(self) -> TunnelConnection:
        """Run the startup sequence and return the tunnel connection descriptor."""
        token = self.config.cloudflared_token.strip()
        if not token:
            raise MissingTokenError()

        binary = self.config.resolved_binary()
        await self._installer(binary, self.config.cloudflared_version)

        ensure_content_directories(self.config.content_root, self.config.default_subdomain)

        await self.server.start()
        logger.info("Server listening", url=f"http://localhost:{self.config.port}")

        self.tunnel = self._tunnel_factory(token, binary)
        await self.tunnel.start()
        self.connection = await self.tunnel.wait_connected(self.config.connect_timeout)
        logger.info("Cloudflared tunnel running", **self.connection.to_dict())
        return self.connection

    def request_shutdown(self) -> None:
        self._shutdown_event.set()

    async def shutdown(self) -> None:
        """Stop the tunnel if one was created, then the listener."""
        logger.info("Shutting down...")
        stop = getattr(self.tunnel, "stop", None)
        if callable(stop):
            await stop()
        await self.server.stop()

    async def run(
        self,
        on_ready: Callable[[TunnelConnection], None] | None = None,
    ) -> None:
        """Start, serve until shutdown is requested or the task is cancelled, then clean up."""
        try:
            connection = await self.start()
            if on_ready is not None:
                on_ready(connection)
            await self._shutdown_event.wait()
        finally:
            await self.shutdown()
