"""Cloudflare tunnel client: cloudflared installation and process control."""

from subserve.client.installer import (
    asset_name,
    default_binary_path,
    download_url,
    ensure_installed,
    install,
)
from subserve.client.tunnel import (
    CloudflaredTunnel,
    TunnelConnection,
    TunnelState,
    parse_connection,
)

__all__ = [
    "CloudflaredTunnel",
    "TunnelConnection",
    "TunnelState",
    "parse_connection",
    "asset_name",
    "default_binary_path",
    "download_url",
    "ensure_installed",
    "install",
]
