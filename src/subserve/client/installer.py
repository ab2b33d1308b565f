"""Locating and installing the cloudflared binary.

Release assets follow cloudflared's GitHub naming:

    cloudflared-linux-amd64
    cloudflared-darwin-arm64.tgz
    cloudflared-windows-amd64.exe
"""

from __future__ import annotations

import io
import os
import platform
import shutil
import stat
import tarfile
from pathlib import Path

import httpx
import structlog

from subserve.core.exceptions import CloudflaredInstallError

logger = structlog.get_logger()

RELEASE_BASE = "https://github.com/cloudflare/cloudflared/releases/"

_ARCH_ALIASES = {
    "x86_64": "amd64",
    "amd64": "amd64",
    "x64": "amd64",
    "aarch64": "arm64",
    "arm64": "arm64",
    "armv7l": "arm",
    "armv6l": "arm",
    "arm": "arm",
    "i386": "386",
    "i686": "386",
    "x86": "386",
}


def _binary_name(system: str | None = None) -> str:
    system = (system or platform.system()).lower()
    return "cloudflared.exe" if system == "windows" else "cloudflared"


def default_binary_path() -> Path:
    """cloudflared on PATH if present, else ``~/.subserve/bin/cloudflared``."""
    found = shutil.which("cloudflared")
    if found:
        return Path(found)
    return Path.home() / ".subserve" / "bin" / _binary_name()


def asset_name(system: str, machine: str) -> str:
    """Release asset for an OS/CPU pair.

    Raises:
        CloudflaredInstallError: If cloudflared ships no build for the platform.
    """
    system = system.lower()
    arch = _ARCH_ALIASES.get(machine.lower())
    if arch is None:
        raise CloudflaredInstallError(f"Unsupported architecture: {machine}")

    if system == "linux":
        return f"cloudflared-linux-{arch}"
    if system == "darwin":
        if arch not in ("amd64", "arm64"):
            raise CloudflaredInstallError(f"Unsupported architecture for macOS: {machine}")
        return f"cloudflared-darwin-{arch}.tgz"
    if system == "windows":
        if arch not in ("amd64", "386"):
            raise CloudflaredInstallError(f"Unsupported architecture for Windows: {machine}")
        return f"cloudflared-windows-{arch}.exe"
    raise CloudflaredInstallError(f"Unsupported platform: {system}")


def download_url(
    system: str | None = None,
    machine: str | None = None,
    version: str = "latest",
) -> str:
    """GitHub download URL of the cloudflared build for this (or the given) platform."""
    name = asset_name(system or platform.system(), machine or platform.machine())
    if version == "latest":
        return f"{RELEASE_BASE}latest/download/{name}"
    return f"{RELEASE_BASE}download/{version}/{name}"


def _extract_tgz(data: bytes) -> bytes:
    with tarfile.open(fileobj=io.BytesIO(data), mode="r:gz") as archive:
        for member in archive.getmembers():
            if member.isfile() and Path(member.name).name == "cloudflared":
                extracted = archive.extractfile(member)
                if extracted is not None:
                    return extracted.read()
    raise CloudflaredInstallError("cloudflared binary missing from release archive")


async def install(
    binary: str | Path,
    version: str = "latest",
    *,
    client: httpx.AsyncClient | None = None,
    url: str | None = None,
) -> Path:
    """Download cloudflared to ``binary`` and mark it executable.

    Args:
        binary: Destination path of the executable.
        version: Release tag, or "latest".
        client: HTTP client to use; one is created when omitted.
        url: Override of the download URL.

    Returns:
        The installed binary path.

    Raises:
        CloudflaredInstallError: If the download, extraction or write fails.
    """
    binary = Path(binary)
    url = url or download_url(version=version)
    logger.info("Installing cloudflared", url=url, path=str(binary))

    owns_client = client is None
    if client is None:
        client = httpx.AsyncClient(follow_redirects=True, timeout=httpx.Timeout(60.0))

    try:
        response = await client.get(url)
        response.raise_for_status()
        data = response.content
    except httpx.HTTPError as e:
        raise CloudflaredInstallError(f"Failed to download cloudflared from {url}: {e}") from e
    finally:
        if owns_client:
            await client.aclose()

    try:
        if url.endswith(".tgz"):
            data = _extract_tgz(data)
        binary.parent.mkdir(parents=True, exist_ok=True)
        partial = binary.with_name(binary.name + ".part")
        partial.write_bytes(data)
        partial.chmod(partial.stat().st_mode | stat.S_IXUSR | stat.S_IXGRP | stat.S_IXOTH)
        os.replace(partial, binary)
    except tarfile.TarError as e:
        raise CloudflaredInstallError(f"Invalid cloudflared archive: {e}") from e
    except OSError as e:
        raise CloudflaredInstallError(f"Failed to write {binary}: {e}") from e

    logger.info("cloudflared installed", path=str(binary), size=len(data))
    return binary


async def ensure_installed(
    binary: str | Path,
    version: str = "latest",
    *,
    client: httpx.AsyncClient | None = None,
) -> Path:
    """Install cloudflared only if ``binary`` does not exist yet."""
    binary = Path(binary)
    if binary.is_file():
        logger.debug("cloudflared already installed", path=str(binary))
        return binary
    return await install(binary, version, client=client)
