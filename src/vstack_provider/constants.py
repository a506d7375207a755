"""Constants for the vStack JSON-RPC API and reconciliation defaults."""

from typing import Final

# ============================================================================
# JSON-RPC Transport
# ============================================================================

API_PATH: Final[str] = "/.api/V4/.req/"
"""Single JSON-RPC endpoint path, appended to the configured host."""

JSONRPC_VERSION: Final[str] = "2.0"
"""Protocol version tag carried by every request envelope."""

AUTH_COOKIE_NAME: Final[str] = "APIEndpoint00"
"""Session cookie name returned by `auth` and echoed in X-Session-Auth."""

AUTH_HEADER: Final[str] = "X-Session-Auth"
"""Header carrying `APIEndpoint00=<cookie>` on authenticated requests."""

SUCCESS_CODE: Final[int] = 1
"""Result code meaning success. Anything else is a logical failure."""

DEFAULT_TIMEOUT_SECONDS: Final[float] = 30.0
"""HTTP timeout per request. The API has no server-side deadline."""

# ============================================================================
# Unit Conversions
# ============================================================================

BYTES_PER_MB: Final[int] = 1024 * 1024
"""RAM is configured in MB and sent in bytes."""

BYTES_PER_GB: Final[int] = 1024 * 1024 * 1024
"""Disk sizes are configured in GB and sent in bytes."""

# ============================================================================
# Reconciliation Defaults
# ============================================================================

DEFAULT_LOGICAL_SECTOR_SIZE: Final[int] = 512
"""Logical sector size applied to disks that do not specify one."""

DEFAULT_PHYSICAL_SECTOR_SIZE: Final[int] = 4096
"""Physical sector size applied to disks that do not specify one.
Applies to both the create path and add-disk path."""

DEFAULT_CPU_PRIORITY: Final[int] = 1
"""cpu_priority sent on create when the configuration leaves it unset."""
