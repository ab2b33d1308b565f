"""Core."""

from .config import ServeConfig, clear_config, get_config
from .exceptions import (
    CloudflaredInstallError,
    MissingTokenError,
    PathTraversalError,
    SubserveError,
    TunnelStartError,
    TunnelTimeoutError,
    format_error_for_user,
)

__all__ = [
    "ServeConfig",
    "get_config",
    "clear_config",
    "SubserveError",
    "MissingTokenError",
    "CloudflaredInstallError",
    "TunnelStartError",
    "TunnelTimeoutError",
    "PathTraversalError",
    "format_error_for_user",
]
