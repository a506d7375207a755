"""Exception hierarchy for vstack-provider.

All exceptions inherit from VStackError.

Hierarchy:
    VStackError (base)
    ├── TransportError             ← network failure, HTTP status, undecodable body
    ├── ProtocolError              ← JSON-RPC envelope carried an error object
    ├── ApiError                   ← result code is not the success sentinel
    │   └── AuthenticationError    ← login rejected or no session cookie
    ├── MappingError               ← remote payload missing/negative required field
    ├── PolicyError (disallowed mutation marker base)
    │   ├── SectorSizeChangeError  ← sector size changed on an existing slot
    │   └── ImmutableFieldError    ← replace-on-change field reached update
    └── ImportIdError              ← malformed import identifier

None of these are retried inside the library.  A failed apply leaves the
remote side partially mutated; the next apply re-diffs from fresh state.
"""

from __future__ import annotations

from typing import Any


class VStackError(Exception):
    """Base exception for all provider errors with structured context.

    Attributes:
        message: Human-readable error message
        context: Structured error context (vm_id, slot, port_id, method, ...)
    """

    def __init__(self, message: str, context: dict[str, Any] | None = None):
        super().__init__(message)
        self.message = message
        self.context = context or {}


# =============================================================================
# Remote Operation Errors
# =============================================================================


class TransportError(VStackError):
    """The request never produced a decodable JSON-RPC response.

    Covers connection failures, timeouts, non-2xx HTTP statuses and bodies
    that are not valid JSON or do not match the envelope shape.
    """


class ProtocolError(VStackError):
    """The JSON-RPC envelope carried a top-level error object.

    Attributes:
        code: Error code from the envelope
    """

    def __init__(self, message: str, context: dict[str, Any] | None = None, code: int = 0):
        super().__init__(message, context)
        self.code = code


class ApiError(VStackError):
    """A decoded result whose status code is not the success sentinel.

    The message is the one decoded from the response, prefixed with the
    method name so callers can attribute the failure.

    Attributes:
        method: RPC method name
        code: Normalized integer result code
    """

    def __init__(
        self,
        message: str,
        context: dict[str, Any] | None = None,
        *,
        method: str = "",
        code: int = 0,
    ):
        super().__init__(message, context)
        self.method = method
        self.code = code


class AuthenticationError(ApiError):
    """Login was rejected, or no session cookie came back."""


# =============================================================================
# Validation and Policy Errors
# =============================================================================


class MappingError(VStackError):
    """A remote payload failed validation while mapping it to state.

    Raised when a required field is absent or negative.  Mapping is
    all-or-nothing: the caller's state object is never partially updated.
    """


class PolicyError(VStackError):
    """Configuration requested a mutation the engine refuses to perform.

    Marker base: no remote call is issued for the offending resource.
    """


class SectorSizeChangeError(PolicyError):
    """Sector size differs between plan and state for an existing disk slot."""


class ImmutableFieldError(PolicyError):
    """A replace-on-change field differs at update time.

    Such changes must be realised as destroy+recreate before update is
    reached; seeing one here is an internal-consistency failure.
    """


class ImportIdError(VStackError):
    """Import identifier does not match the expected format."""
