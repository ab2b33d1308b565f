"""Named Cloudflare tunnel driven through the cloudflared binary."""

from __future__ import annotations

import asyncio
import contextlib
import os
import re
from collections import deque
from dataclasses import asdict, dataclass
from enum import Enum
from pathlib import Path
from typing import Any

import structlog

from subserve.client.installer import default_binary_path
from subserve.core.exceptions import TunnelStartError, TunnelTimeoutError, format_error_for_user

logger = structlog.get_logger()

REGISTERED_MARKER = "Registered tunnel connection"
UNREGISTERED_MARKER = "Unregistered tunnel connection"

_CONN_INDEX_RE = re.compile(r"\bconnIndex=(\d+)")
_CONNECTION_RE = re.compile(r"\bconnection=([0-9A-Za-z-]+)")
_IP_RE = re.compile(r"\bip=([0-9A-Fa-f.:]+)")
_LOCATION_RE = re.compile(r"\blocation=([\w-]+)")

STOP_GRACE_PERIOD = 5.0
OUTPUT_TAIL_LINES = 20


@dataclass(frozen=True)
class TunnelConnection:
    """An edge connection registered by cloudflared."""

    id: str
    ip: str
    location: str
    index: int = 0

    def to_dict(self) -> dict[str, Any]:
        return asdict(self)


class TunnelState(Enum):
    """Tunnel process state."""

    CREATED = "created"
    STARTING = "starting"
    CONNECTED = "connected"
    STOPPED = "stopped"


def parse_connection(line: str) -> TunnelConnection | None:
    """Extract the connection descriptor from a cloudflared log line.

    Example line:
        INF Registered tunnel connection connIndex=0 connection=5f1c... event=0
        ip=198.41.200.13 location=ams08 protocol=quic
    """
    if REGISTERED_MARKER not in line:
        return None
    conn = _CONNECTION_RE.search(line)
    ip = _IP_RE.search(line)
    location = _LOCATION_RE.search(line)
    index = _CONN_INDEX_RE.search(line)
    if not (conn and ip and location and index):
        return None
    return TunnelConnection(
        id=conn.group(1),
        ip=ip.group(1),
        location=location.group(1),
        index=int(index.group(1)),
    )


class CloudflaredTunnel:
    """A cloudflared process running a tunnel.

    The first registered edge connection resolves a single future; later
    registrations are only logged. Reconnection is left to cloudflared.

    Example:
        tunnel = CloudflaredTunnel.with_token(token)
        await tunnel.start()
        connection = await tunnel.wait_connected(timeout=60)
        ...
        await tunnel.stop()
    """

    def __init__(
        self,
        args: list[str],
        binary: str | Path | None = None,
        env: dict[str, str] | None = None,
    ) -> None:
        self.binary = Path(binary) if binary else default_binary_path()
        self.args = list(args)
        self._env = env or {}
        self._process: asyncio.subprocess.Process | None = None
        self._reader_task: asyncio.Task | None = None
        self._connected: asyncio.Future[TunnelConnection] | None = None
        self._state = TunnelState.CREATED
        self._tail: deque[str] = deque(maxlen=OUTPUT_TAIL_LINES)

    @classmethod
    def with_token(cls, token: str, binary: str | Path | None = None) -> CloudflaredTunnel:
        """Tunnel for a dashboard-managed named tunnel.

        The token is handed over through ``TUNNEL_TOKEN`` so it does not show up
        in the process list.
        """
        return cls(
            ["tunnel", "--no-autoupdate", "run"],
            binary=binary,
            env={"TUNNEL_TOKEN": token},
        )

    @property
    def state(self) -> TunnelState:
        return self._state

    @property
    def pid(self) -> int | None:
        return self._process.pid if self._process else None

    @property
    def connection(self) -> TunnelConnection | None:
        """The first registered connection, once available."""
        future = self._connected
        if future is None or not future.done() or future.cancelled():
            return None
        if future.exception() is not None:
            return None
        return future.result()

    @property
    def output_tail(self) -> list[str]:
        """The most recent cloudflared output lines."""
        return list(self._tail)

    async def start(self) -> None:
        """Spawn cloudflared and start watching its output.

        Raises:
            TunnelStartError: If the process cannot be spawned or was already started.
        """
        if self._state is not TunnelState.CREATED:
            raise TunnelStartError(f"Tunnel already {self._state.value}")

        self._connected = asyncio.get_running_loop().create_future()
        self._state = TunnelState.STARTING
        logger.info("Starting cloudflared tunnel", binary=str(self.binary))

        try:
            self._process = await asyncio.create_subprocess_exec(
                str(self.binary),
                *self.args,
                stdout=asyncio.subprocess.PIPE,
                stderr=asyncio.subprocess.STDOUT,
                env={**os.environ, **self._env},
            )
        except OSError as e:
            self._state = TunnelState.STOPPED
            raise TunnelStartError(
                f"Failed to start {self.binary}: {format_error_for_user(e)}"
            ) from e

        self._reader_task = asyncio.create_task(self._read_output())

    async def wait_connected(self, timeout: float | None = None) -> TunnelConnection:
        """Block until the tunnel registers its first edge connection.

        Raises:
            TunnelStartError: If cloudflared exits before connecting.
            TunnelTimeoutError: If no connection is registered within ``timeout``.
        """
        if self._connected is None:
            raise TunnelStartError("Tunnel has not been started")
        try:
            return await asyncio.wait_for(asyncio.shield(self._connected), timeout)
        except TimeoutError:
            raise TunnelTimeoutError(
                f"cloudflared did not register a connection within {timeout:g}s"
            ) from None

    async def _read_output(self) -> None:
        if self._process is None or self._process.stdout is None:
            return
        async for raw in self._process.stdout:
            line = raw.decode("utf-8", errors="replace").rstrip()
            if not line:
                continue
            self._tail.append(line)
            logger.debug("cloudflared", line=line)
            self._handle_line(line)

        returncode = await self._process.wait()
        stopping = self._state is TunnelState.STOPPED
        if not stopping:
            logger.warning("cloudflared exited", returncode=returncode)
        if self._connected and not self._connected.done():
            if stopping:
                self._connected.cancel()
            else:
                detail = self._tail[-1] if self._tail else "no output"
                self._connected.set_exception(
                    TunnelStartError(
                        f"cloudflared exited with code {returncode} before connecting: {detail}"
                    )
                )
        self._state = TunnelState.STOPPED

    def _handle_line(self, line: str) -> None:
        connection = parse_connection(line)
        if connection is not None:
            if self._connected and not self._connected.done():
                self._state = TunnelState.CONNECTED
                self._connected.set_result(connection)
                logger.info("Tunnel connected", **connection.to_dict())
            else:
                logger.debug("Additional tunnel connection registered", **connection.to_dict())
        elif UNREGISTERED_MARKER in line:
            logger.warning("Tunnel connection unregistered", line=line)

    async def stop(self) -> None:
        """Terminate cloudflared, killing it if it ignores SIGTERM."""
        previous = self._state
        self._state = TunnelState.STOPPED
        process = self._process

        if process is not None and process.returncode is None:
            with contextlib.suppress(ProcessLookupError):
                process.terminate()
            try:
                await asyncio.wait_for(process.wait(), STOP_GRACE_PERIOD)
            except TimeoutError:
                logger.warning("cloudflared did not exit, killing it", pid=process.pid)
                with contextlib.suppress(ProcessLookupError):
                    process.kill()
                await process.wait()

        if self._reader_task:
            self._reader_task.cancel()
            try:
                await self._reader_task
            except asyncio.CancelledError:
                pass
            except Exception as e:
                logger.warning("cloudflared output reader failed", error=format_error_for_user(e))
            self._reader_task = None

        if self._connected and not self._connected.done():
            self._connected.cancel()

        if previous is not TunnelState.STOPPED:
            logger.info("Tunnel stopped")

    async def __aenter__(self) -> CloudflaredTunnel:
        await self.start()
        return self

    async def __aexit__(self, exc_type: Any, exc_val: Any, exc_tb: Any) -> None:
        await self.stop()
