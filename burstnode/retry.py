"""Retrying wrapper around a compute backend.

The node core never retries. Profiles that want retries get their backend
wrapped in ``RetryingBackend``, which retries transient failures with
exponential backoff and lets ``OperationFailed`` through at once.

Example:
    backend = RetryingBackend(LibcloudBackend(driver), attempts=5)
"""

from __future__ import annotations

from collections.abc import Callable
from typing import TypeVar

from loguru import logger
from tenacity import (
    RetryCallState,
    Retrying,
    retry_if_exception,
    stop_after_attempt,
    wait_exponential,
)

from burstnode.backend import ComputeBackend, NodeMetadata
from burstnode.credentials import CredentialStore
from burstnode.errors import BackendUnavailable, OperationFailed

log = logger.bind(component="retry")

T = TypeVar("T")


def is_transient(e: BaseException) -> bool:
    """True for backend failures worth retrying."""
    return isinstance(e, BackendUnavailable) and not isinstance(e, OperationFailed)


class RetryingBackend:
    """ComputeBackend that retries transient failures of another backend.

    Args:
        inner: Backend to delegate to.
        attempts: Maximum attempts per call, including the first.
        min_wait: Lower bound of the backoff in seconds.
        max_wait: Upper bound of the backoff in seconds.
        profile: Cloud profile name, for log messages.
    """

    def __init__(
        self,
        inner: ComputeBackend,
        *,
        attempts: int = 3,
        min_wait: float = 1.0,
        max_wait: float = 30.0,
        profile: str = "",
    ) -> None:
        if attempts < 1:
            raise ValueError(f"attempts must be >= 1, got {attempts}")
        self.inner = inner
        self.attempts = attempts
        self.min_wait = min_wait
        self.max_wait = max_wait
        self.profile = profile

    @property
    def credential_store(self) -> CredentialStore:
        return self.inner.credential_store

    def get_node_metadata(self, node_id: str) -> NodeMetadata | None:
        return self._call("get_node_metadata", lambda: self.inner.get_node_metadata(node_id))

    def suspend_node(self, node_id: str) -> None:
        self._call("suspend_node", lambda: self.inner.suspend_node(node_id))

    def destroy_node(self, node_id: str) -> None:
        self._call("destroy_node", lambda: self.inner.destroy_node(node_id))

    def _call(self, operation: str, fn: Callable[[], T]) -> T:
        def _log_retry(state: RetryCallState) -> None:
            exc = state.outcome.exception() if state.outcome else None
            delay = state.next_action.sleep if state.next_action else 0.0
            log.warning(
                "Retry {attempt}/{total} of {operation} on {profile} after {error}. "
                "Waiting {delay:.1f}s...",
                attempt=state.attempt_number,
                total=self.attempts,
                operation=operation,
                profile=self.profile or "backend",
                error=exc,
                delay=delay,
            )

        retrying = Retrying(
            stop=stop_after_attempt(self.attempts),
            wait=wait_exponential(multiplier=self.min_wait, min=self.min_wait, max=self.max_wait),
            retry=retry_if_exception(is_transient),
            before_sleep=_log_retry,
            reraise=True,
        )
        return retrying(fn)


__all__ = ["RetryingBackend", "is_transient"]
