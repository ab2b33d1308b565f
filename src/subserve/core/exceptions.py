"""Subserve error types.

Startup failures are raised as ``SubserveError`` subclasses and surface to the
CLI, which renders them and exits with a failure code. Request-scoped failures
never use these types past the responder; they become 404 responses.
"""

from __future__ import annotations


class SubserveError(Exception):
    """Base error carrying a user-facing message and a short error code."""

    code = "SUBSERVE_ERROR"

    def __init__(self, message: str, code: str | None = None) -> None:
        super().__init__(message)
        self.message = message
        if code is not None:
            self.code = code


class MissingTokenError(SubserveError):
    """CLOUDFLARED_TOKEN is unset or empty."""

    code = "MISSING_TOKEN"

    def __init__(self, message: str = "CLOUDFLARED_TOKEN is not set") -> None:
        super().__init__(message)


class CloudflaredInstallError(SubserveError):
    """The cloudflared binary could not be downloaded or installed."""

    code = "CLOUDFLARED_INSTALL_FAILED"


class TunnelStartError(SubserveError):
    """cloudflared could not be started or exited before connecting."""

    code = "TUNNEL_START_FAILED"


class TunnelTimeoutError(TunnelStartError):
    """No tunnel connection was registered within the connect timeout."""

    code = "TUNNEL_TIMEOUT"


class PathTraversalError(SubserveError):
    """A request path or label tried to escape its subdomain directory."""

    code = "PATH_TRAVERSAL"


def format_error_for_user(error: BaseException) -> str:
    """Render any exception as a single readable line."""
    if isinstance(error, SubserveError):
        return error.message
    if isinstance(error, PermissionError):
        return f"Permission denied: {error.filename or error}"
    if isinstance(error, FileNotFoundError):
        return f"File not found: {error.filename or error}"
    if isinstance(error, OSError) and error.strerror:
        return f"{error.strerror}: {error.filename}" if error.filename else error.strerror
    message = str(error)
    return f"{type(error).__name__}: {message}" if message else type(error).__name__
