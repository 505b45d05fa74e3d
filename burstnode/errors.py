"""Exception hierarchy for burstnode.

The core performs no local recovery: backend failures propagate to the
caller unchanged, and the caller owns retry policy.
"""

from __future__ import annotations


class BurstnodeError(Exception):
    """Base class for all burstnode errors."""


class ConfigurationError(BurstnodeError):
    """Unknown cloud profile, or a malformed node/template/config field."""


class BackendUnavailable(BurstnodeError):
    """Transient failure talking to a compute backend."""

    def __init__(
        self,
        message: str,
        *,
        profile: str | None = None,
        operation: str | None = None,
    ) -> None:
        self.profile = profile
        self.operation = operation
        super().__init__(message)


class OperationFailed(BackendUnavailable):
    """Backend was reachable but refused or failed a mutating call."""


__all__ = [
    "BackendUnavailable",
    "BurstnodeError",
    "ConfigurationError",
    "OperationFailed",
]
