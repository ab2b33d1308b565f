"""Tests for the cloudflared tunnel client."""

from __future__ import annotations

import asyncio
import sys
import textwrap

import pytest

from subserve.client.tunnel import (
    CloudflaredTunnel,
    TunnelConnection,
    TunnelState,
    parse_connection,
)
from subserve.core.exceptions import TunnelStartError, TunnelTimeoutError

REGISTERED_LINE = (
    "2024-05-01T10:00:01Z INF Registered tunnel connection connIndex=0 "
    "connection=5f1c2d3e-aaaa-bbbb-cccc-1234567890ab event=0 ip=198.41.200.13 "
    "location=ams08 protocol=quic"
)

posix_only = pytest.mark.skipif(sys.platform == "win32", reason="uses a POSIX shell script")


def _fake_cloudflared(tmp_path, body: str):
    script = tmp_path / "cloudflared"
    script.write_text("#!/bin/sh\n" + textwrap.dedent(body))
    script.chmod(0o755)
    return script


class TestParseConnection:
    """Tests for log line parsing."""

    def test_registered_line(self):
        connection = parse_connection(REGISTERED_LINE)

        assert connection == TunnelConnection(
            id="5f1c2d3e-aaaa-bbbb-cccc-1234567890ab",
            ip="198.41.200.13",
            location="ams08",
            index=0,
        )

    def test_second_connection_index(self):
        line = REGISTERED_LINE.replace("connIndex=0", "connIndex=3")
        assert parse_connection(line).index == 3

    def test_unregistered_line_ignored(self):
        line = REGISTERED_LINE.replace("Registered", "Unregistered")
        assert parse_connection(line) is None

    def test_unrelated_lines_ignored(self):
        assert parse_connection("INF Starting tunnel tunnelID=abc") is None
        assert parse_connection("INF Registered tunnel connection connIndex=0") is None

    def test_to_dict(self):
        connection = parse_connection(REGISTERED_LINE)
        assert connection.to_dict() == {
            "id": "5f1c2d3e-aaaa-bbbb-cccc-1234567890ab",
            "ip": "198.41.200.13",
            "location": "ams08",
            "index": 0,
        }


class TestCloudflaredTunnel:
    """Tests driving a stand-in cloudflared script."""

    def test_with_token_passes_token_through_env(self, tmp_path):
        tunnel = CloudflaredTunnel.with_token("tok", binary=tmp_path / "cloudflared")

        assert tunnel.args == ["tunnel", "--no-autoupdate", "run"]
        assert "tok" not in tunnel.args
        assert tunnel.state is TunnelState.CREATED
        assert tunnel.connection is None

    @posix_only
    @pytest.mark.asyncio
    async def test_connects_and_stops(self, tmp_path):
        script = _fake_cloudflared(
            tmp_path,
            f"""
            echo "INF Starting tunnel token=$TUNNEL_TOKEN args=$*"
            echo "{REGISTERED_LINE}" >&2
            exec sleep 30
            """,
        )
        tunnel = CloudflaredTunnel.with_token("tok-123", binary=script)

        await tunnel.start()
        connection = await tunnel.wait_connected(timeout=10)

        assert connection.location == "ams08"
        assert tunnel.connection == connection
        assert tunnel.state is TunnelState.CONNECTED
        assert any("token=tok-123 args=tunnel --no-autoupdate run" in line for line in tunnel.output_tail)

        await tunnel.stop()
        assert tunnel.state is TunnelState.STOPPED

    @posix_only
    @pytest.mark.asyncio
    async def test_connected_resolves_once(self, tmp_path):
        second = REGISTERED_LINE.replace("connIndex=0", "connIndex=1").replace("ams08", "fra02")
        script = _fake_cloudflared(
            tmp_path,
            f"""
            echo "{REGISTERED_LINE}"
            echo "{second}"
            exec sleep 30
            """,
        )
        async with CloudflaredTunnel.with_token("tok", binary=script) as tunnel:
            first = await tunnel.wait_connected(timeout=10)
            again = await tunnel.wait_connected(timeout=10)

        assert first.location == "ams08"
        assert again is first

    @posix_only
    @pytest.mark.asyncio
    async def test_exit_before_connect(self, tmp_path):
        script = _fake_cloudflared(
            tmp_path,
            """
            echo "ERR Provided Tunnel token is not valid."
            exit 3
            """,
        )
        tunnel = CloudflaredTunnel.with_token("bad", binary=script)
        await tunnel.start()

        with pytest.raises(TunnelStartError, match="code 3"):
            await tunnel.wait_connected(timeout=10)

        await tunnel.stop()

    @posix_only
    @pytest.mark.asyncio
    async def test_connect_timeout(self, tmp_path):
        script = _fake_cloudflared(tmp_path, "exec sleep 30\n")
        tunnel = CloudflaredTunnel.with_token("tok", binary=script)
        await tunnel.start()

        with pytest.raises(TunnelTimeoutError):
            await tunnel.wait_connected(timeout=0.2)

        await tunnel.stop()
        assert tunnel.state is TunnelState.STOPPED

    @pytest.mark.asyncio
    async def test_missing_binary(self, tmp_path):
        tunnel = CloudflaredTunnel.with_token("tok", binary=tmp_path / "missing")

        with pytest.raises(TunnelStartError, match="Failed to start"):
            await tunnel.start()

        assert tunnel.state is TunnelState.STOPPED

    @pytest.mark.asyncio
    async def test_wait_before_start(self, tmp_path):
        tunnel = CloudflaredTunnel.with_token("tok", binary=tmp_path / "cloudflared")

        with pytest.raises(TunnelStartError):
            await tunnel.wait_connected(timeout=1)

    @pytest.mark.asyncio
    async def test_stop_is_idempotent(self, tmp_path):
        tunnel = CloudflaredTunnel.with_token("tok", binary=tmp_path / "cloudflared")

        await tunnel.stop()
        await tunnel.stop()

        assert tunnel.state is TunnelState.STOPPED

    @pytest.mark.asyncio
    async def test_read_output_without_process(self, tmp_path):
        """The output reader returns quietly when no process was spawned."""
        tunnel = CloudflaredTunnel.with_token("tok", binary=tmp_path / "cloudflared")

        await tunnel._read_output()

        assert tunnel.output_tail == []

    @pytest.mark.asyncio
    async def test_stop_survives_failed_reader(self, tmp_path):
        """A reader that died with an error does not abort stop()."""
        tunnel = CloudflaredTunnel.with_token("tok", binary=tmp_path / "cloudflared")

        async def broken_reader():
            raise ValueError("Separator is not found, and chunk exceed the limit")

        tunnel._reader_task = asyncio.create_task(broken_reader())
        await asyncio.sleep(0)

        await tunnel.stop()

        assert tunnel.state is TunnelState.STOPPED
        assert tunnel._reader_task is None
