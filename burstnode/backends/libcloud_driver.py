"""Compute backend over an Apache Libcloud node driver.

Example:
    from burstnode.backends.libcloud_driver import Libcloud

    config = Libcloud(provider="ec2", key="AKIA...", secret="...", region="us-east-1")
    registry.register("staging", lambda: create_backend(config, profile="staging"))
"""

from __future__ import annotations

from collections.abc import Callable
from dataclasses import dataclass, field
from typing import Any, TypeVar

from libcloud.common.exceptions import BaseHTTPError
from libcloud.common.types import InvalidCredsError, LibcloudError
from libcloud.compute.base import Node, NodeDriver
from libcloud.compute.providers import get_driver
from libcloud.compute.types import NodeState
from loguru import logger

from burstnode.backend import NodeMetadata, NodeStatus
from burstnode.credentials import InMemoryCredentialStore, credential_key
from burstnode.errors import BackendUnavailable, ConfigurationError, OperationFailed

log = logger.bind(component="libcloud")

T = TypeVar("T")

_TRANSIENT_ERRORS = (LibcloudError, BaseHTTPError, OSError)

_STATUS_MAP: dict[str, NodeStatus] = {
    NodeState.RUNNING: NodeStatus.RUNNING,
    NodeState.PENDING: NodeStatus.PROVISIONING,
    NodeState.STARTING: NodeStatus.PROVISIONING,
    NodeState.REBOOTING: NodeStatus.PROVISIONING,
    NodeState.RECONFIGURING: NodeStatus.PROVISIONING,
    NodeState.MIGRATING: NodeStatus.PROVISIONING,
    NodeState.UPDATING: NodeStatus.PROVISIONING,
    NodeState.STOPPING: NodeStatus.SUSPENDED,
    NodeState.STOPPED: NodeStatus.SUSPENDED,
    NodeState.SUSPENDED: NodeStatus.SUSPENDED,
    NodeState.PAUSED: NodeStatus.SUSPENDED,
    NodeState.TERMINATED: NodeStatus.TERMINATED,
    NodeState.ERROR: NodeStatus.ERROR,
}


def map_state(state: Any) -> NodeStatus:
    """Translate a libcloud ``NodeState`` into a ``NodeStatus``."""
    return _STATUS_MAP.get(state, NodeStatus.UNKNOWN)


# =============================================================================
# Configuration
# =============================================================================


@dataclass(frozen=True, slots=True)
class Libcloud:
    """Libcloud-backed cloud configuration.

    Args:
        provider: Libcloud provider constant, e.g. "ec2", "gce", "openstack".
        key: API key or user id passed to the driver.
        secret: API secret passed to the driver.
        region: Region, for drivers that accept one.
        driver_options: Extra keyword arguments for the driver constructor.
        retry_attempts: Attempts per backend call. 1 disables retry.
    """

    provider: str
    key: str
    secret: str | None = field(default=None, repr=False)
    region: str | None = None
    driver_options: dict[str, Any] = field(default_factory=dict)
    retry_attempts: int = 1


# =============================================================================
# Backend
# =============================================================================


class LibcloudBackend:
    """ComputeBackend wrapping a libcloud ``NodeDriver``.

    Libcloud keeps no credential store of its own, so each backend context
    holds a process-local one that nodes re-seed after restarts.
    """

    def __init__(self, driver: NodeDriver, *, profile: str = "") -> None:
        self.driver = driver
        self.profile = profile
        self._store = InMemoryCredentialStore()

    @classmethod
    def from_config(cls, config: Libcloud, *, profile: str = "") -> LibcloudBackend:
        try:
            driver_cls = get_driver(config.provider)
        except (AttributeError, KeyError, ValueError):
            raise ConfigurationError(f"Unknown libcloud provider '{config.provider}'") from None

        kwargs = dict(config.driver_options)
        if config.region is not None:
            kwargs.setdefault("region", config.region)

        args = (config.key,) if config.secret is None else (config.key, config.secret)
        try:
            driver = driver_cls(*args, **kwargs)
        except (InvalidCredsError, TypeError, ValueError) as e:
            raise ConfigurationError(
                f"Cannot create {config.provider} driver for '{profile}': {e}"
            ) from e
        except _TRANSIENT_ERRORS as e:
            raise BackendUnavailable(
                f"Cannot reach {config.provider} for '{profile}': {e}",
                profile=profile,
                operation="connect",
            ) from e
        return cls(driver, profile=profile)

    @property
    def credential_store(self) -> InMemoryCredentialStore:
        return self._store

    def get_node_metadata(self, node_id: str) -> NodeMetadata | None:
        node = self._find(node_id)
        if node is None:
            return None
        return NodeMetadata(
            id=str(node.id),
            name=node.name,
            status=map_state(node.state),
            credential=self._store.get(credential_key(node_id)),
            public_ips=tuple(node.public_ips or ()),
            private_ips=tuple(node.private_ips or ()),
            # Only hashable scalars; drivers put lists and dicts in extra too
            extra=frozenset(
                (k, v)
                for k, v in (node.extra or {}).items()
                if isinstance(v, (str, int, float, bool))
            ),
        )

    def suspend_node(self, node_id: str) -> None:
        node = self._require(node_id, "suspend_node")
        ok = self._call("suspend_node", lambda: self.driver.stop_node(node))
        if not ok:
            raise OperationFailed(
                f"Driver refused to stop node {node_id}",
                profile=self.profile,
                operation="suspend_node",
            )
        log.debug("Stopped node {id}", id=node_id)

    def destroy_node(self, node_id: str) -> None:
        node = self._require(node_id, "destroy_node")
        ok = self._call("destroy_node", lambda: self.driver.destroy_node(node))
        if not ok:
            raise OperationFailed(
                f"Driver refused to destroy node {node_id}",
                profile=self.profile,
                operation="destroy_node",
            )
        self._store.remove(credential_key(node_id))
        log.debug("Destroyed node {id}", id=node_id)

    # -------------------------------------------------------------------------
    # Internal
    # -------------------------------------------------------------------------

    def _find(self, node_id: str) -> Node | None:
        nodes = self._call("list_nodes", self.driver.list_nodes)
        for node in nodes:
            if str(node.id) == node_id:
                return node
        return None

    def _require(self, node_id: str, operation: str) -> Node:
        node = self._find(node_id)
        if node is None:
            raise OperationFailed(
                f"Node {node_id} not found",
                profile=self.profile,
                operation=operation,
            )
        return node

    def _call(self, operation: str, fn: Callable[[], T]) -> T:
        try:
            return fn()
        except NotImplementedError:
            raise OperationFailed(
                f"Driver {type(self.driver).__name__} does not support {operation}",
                profile=self.profile,
                operation=operation,
            ) from None
        except _TRANSIENT_ERRORS as e:
            raise BackendUnavailable(
                f"{operation} failed on '{self.profile}': {e}",
                profile=self.profile,
                operation=operation,
            ) from e


__all__ = ["Libcloud", "LibcloudBackend", "map_state"]
