"""Managed node - one provisioned cloud node and its lifecycle.

A ManagedNode is created either from a fresh provisioning result (full
metadata and credentials) or restored from its durable record after a
process restart (identity only). In the latter case metadata is fetched
lazily, and the node's credential is re-seeded into the backend's
credential store before any fetch, since that store does not survive
restarts.

Lifecycle (observed, never owned):
    PROVISIONING -> RUNNING -> SUSPENDED | TERMINATED | ERROR

The node only distinguishes RUNNING from not-RUNNING and triggers the
RUNNING -> SUSPENDED/TERMINATED edge through ``terminate()``.
"""

from __future__ import annotations

from collections.abc import Callable, Iterable
from dataclasses import dataclass, field
from enum import StrEnum
from typing import Any

from loguru import logger

from burstnode.backend import ComputeBackend, NodeMetadata
from burstnode.credentials import LoginCredentials, ensure_credential
from burstnode.errors import ConfigurationError
from burstnode.registry import CloudRegistry, get_registry

log = logger.bind(component="node")

PATH_SEPARATORS = ("/", "\\")
DEFAULT_FS_ROOT = "/var/lib/burstnode"


# =============================================================================
# Naming
# =============================================================================


def sanitize_node_id(node_id: str) -> str:
    """Replace path separators in a backend node id with underscores."""
    for sep in PATH_SEPARATORS:
        node_id = node_id.replace(sep, "_")
    return node_id


def display_name(name: str, node_id: str) -> str:
    """Unique node name: backend name plus sanitized id.

    >>> display_name("vm", "abc/123")
    'vm-abc_123'
    """
    return f"{name}-{sanitize_node_id(node_id)}"


# =============================================================================
# Policy & Template
# =============================================================================


class TerminationPolicy(StrEnum):
    """What releasing a node means."""

    SUSPEND = "suspend"
    DESTROY = "destroy"


def _parse_policy(value: str | TerminationPolicy) -> TerminationPolicy:
    try:
        return TerminationPolicy(value)
    except ValueError:
        valid = ", ".join(p.value for p in TerminationPolicy)
        raise ConfigurationError(
            f"Unknown termination policy '{value}'. Valid: {valid}"
        ) from None


def _parse_labels(labels: str | Iterable[str]) -> tuple[str, ...]:
    if isinstance(labels, str):
        return tuple(labels.split())
    return tuple(labels)


def _parse_credential(node_id: str, raw: Any) -> LoginCredentials | None:
    if not raw:
        return None
    if not isinstance(raw, dict) or not raw.get("user"):
        raise ConfigurationError(f"Node record {node_id} has a credential without a user")
    return LoginCredentials(user=raw["user"], private_key=raw.get("private_key"))


@dataclass(frozen=True, slots=True)
class NodeTemplate:
    """Operator-chosen settings applied to nodes at creation.

    Args:
        description: Free-form node description.
        fs_root: Working directory on the node.
        num_executors: Concurrent jobs the node accepts. Must be >= 1.
        labels: Labels as a sequence or a whitespace-separated string.
        termination_policy: Suspend or destroy on terminate.
    """

    description: str = ""
    fs_root: str = DEFAULT_FS_ROOT
    num_executors: int = 1
    labels: tuple[str, ...] = ()
    termination_policy: TerminationPolicy = TerminationPolicy.DESTROY

    def __post_init__(self) -> None:
        if not self.fs_root or not self.fs_root.strip():
            raise ConfigurationError("fs_root must not be empty")
        if isinstance(self.num_executors, bool) or not isinstance(self.num_executors, int):
            raise ConfigurationError(
                f"num_executors must be an integer, got {self.num_executors!r}"
            )
        if self.num_executors < 1:
            raise ConfigurationError(f"num_executors must be >= 1, got {self.num_executors}")

        object.__setattr__(self, "labels", _parse_labels(self.labels))
        object.__setattr__(self, "termination_policy", _parse_policy(self.termination_policy))


# =============================================================================
# Durable Record
# =============================================================================


@dataclass(frozen=True, slots=True)
class NodeRecord:
    """Durable identity of a node, persisted by the orchestrator."""

    cloud_profile: str
    node_id: str
    display_name: str
    termination_policy: TerminationPolicy
    credential: LoginCredentials | None = None
    description: str = ""
    fs_root: str = DEFAULT_FS_ROOT
    num_executors: int = 1
    labels: tuple[str, ...] = ()

    def to_dict(self) -> dict[str, Any]:
        return {
            "cloud_profile": self.cloud_profile,
            "node_id": self.node_id,
            "display_name": self.display_name,
            "termination_policy": self.termination_policy.value,
            "credential": self.credential.to_dict() if self.credential else None,
            "description": self.description,
            "fs_root": self.fs_root,
            "num_executors": self.num_executors,
            "labels": list(self.labels),
        }

    @classmethod
    def from_dict(cls, raw: dict[str, Any]) -> NodeRecord:
        missing = [k for k in ("cloud_profile", "node_id") if not raw.get(k)]
        if missing:
            raise ConfigurationError(f"Node record missing fields: {', '.join(missing)}")

        node_id = raw["node_id"]
        return cls(
            cloud_profile=raw["cloud_profile"],
            node_id=node_id,
            display_name=raw.get("display_name") or sanitize_node_id(node_id),
            termination_policy=_parse_policy(
                raw.get("termination_policy", TerminationPolicy.DESTROY)
            ),
            credential=_parse_credential(node_id, raw.get("credential")),
            description=raw.get("description", ""),
            fs_root=raw.get("fs_root", DEFAULT_FS_ROOT),
            num_executors=raw.get("num_executors", 1),
            labels=_parse_labels(raw.get("labels", ())),
        )


# =============================================================================
# Metadata Cache
# =============================================================================


class MetadataCache[T]:
    """Optional value filled on first successful load, kept until restart.

    There is no TTL or invalidation: once loaded, the value is served as is.
    A loader returning None, or raising, leaves the cache empty so the next
    call loads again. Unlocked; concurrent loads are last-writer-wins.
    """

    __slots__ = ("_value",)

    def __init__(self, value: T | None = None) -> None:
        self._value = value

    @property
    def is_loaded(self) -> bool:
        return self._value is not None

    def peek(self) -> T | None:
        return self._value

    def get_or_load(self, loader: Callable[[], T | None]) -> T | None:
        if self._value is not None:
            return self._value
        value = loader()
        if value is not None:
            self._value = value
        return value


# =============================================================================
# Managed Node
# =============================================================================


@dataclass(frozen=True, slots=True)
class ManagedNode:
    """One provisioned cloud node.

    Prefer the ``from_metadata``, ``restore`` and ``from_record``
    constructors over calling the class directly.

    Attributes:
        cloud_profile: Name of the cloud profile governing this node.
        node_id: Backend-assigned id; key into backend and credential store.
        display_name: Unique name derived from backend name and id.
        termination_policy: Suspend or destroy on terminate.
        credential: Login credential captured at provisioning, or None for a
            node restored without one.
    """

    cloud_profile: str
    node_id: str
    display_name: str
    termination_policy: TerminationPolicy = TerminationPolicy.DESTROY
    credential: LoginCredentials | None = None
    description: str = ""
    fs_root: str = DEFAULT_FS_ROOT
    num_executors: int = 1
    labels: tuple[str, ...] = ()

    _registry: CloudRegistry = field(default_factory=get_registry, repr=False, compare=False)
    _metadata: MetadataCache[NodeMetadata] = field(
        default_factory=MetadataCache, repr=False, compare=False
    )

    def __post_init__(self) -> None:
        if not self.cloud_profile:
            raise ConfigurationError("cloud_profile must not be empty")
        if not self.node_id:
            raise ConfigurationError("node_id must not be empty")

    # -------------------------------------------------------------------------
    # Construction
    # -------------------------------------------------------------------------

    @classmethod
    def from_metadata(
        cls,
        cloud_profile: str,
        metadata: NodeMetadata,
        template: NodeTemplate | None = None,
        registry: CloudRegistry | None = None,
    ) -> ManagedNode:
        """Node from a fresh provisioning result.

        Raises:
            ConfigurationError: If name, id or credential are missing, or the
                template is invalid.
        """
        if not metadata.name:
            raise ConfigurationError("Provisioned node has no name")
        if not metadata.id:
            raise ConfigurationError(f"Provisioned node '{metadata.name}' has no id")
        if metadata.credential is None:
            raise ConfigurationError(f"Provisioned node '{metadata.id}' has no credentials")

        template = template or NodeTemplate()
        node = cls(
            cloud_profile=cloud_profile,
            node_id=metadata.id,
            display_name=display_name(metadata.name, metadata.id),
            termination_policy=template.termination_policy,
            credential=metadata.credential,
            description=template.description,
            fs_root=template.fs_root,
            num_executors=template.num_executors,
            labels=template.labels,
            _registry=registry if registry is not None else get_registry(),
            _metadata=MetadataCache(metadata),
        )
        log.debug(
            "Created node {name} on {cloud}", name=node.display_name, cloud=cloud_profile
        )
        return node

    @classmethod
    def restore(
        cls,
        cloud_profile: str,
        node_id: str,
        *,
        credential: LoginCredentials | None = None,
        display_name: str | None = None,
        template: NodeTemplate | None = None,
        registry: CloudRegistry | None = None,
    ) -> ManagedNode:
        """Node from durable identity, e.g. after a process restart.

        Metadata is not fetched until ``get_metadata()`` is called.
        """
        template = template or NodeTemplate()
        return cls(
            cloud_profile=cloud_profile,
            node_id=node_id,
            display_name=display_name or sanitize_node_id(node_id),
            termination_policy=template.termination_policy,
            credential=credential,
            description=template.description,
            fs_root=template.fs_root,
            num_executors=template.num_executors,
            labels=template.labels,
            _registry=registry if registry is not None else get_registry(),
        )

    @classmethod
    def from_record(cls, record: NodeRecord, registry: CloudRegistry | None = None) -> ManagedNode:
        return cls.restore(
            record.cloud_profile,
            record.node_id,
            credential=record.credential,
            display_name=record.display_name,
            template=NodeTemplate(
                description=record.description,
                fs_root=record.fs_root,
                num_executors=record.num_executors,
                labels=record.labels,
                termination_policy=record.termination_policy,
            ),
            registry=registry,
        )

    def to_record(self) -> NodeRecord:
        """Durable identity to be persisted by the caller."""
        return NodeRecord(
            cloud_profile=self.cloud_profile,
            node_id=self.node_id,
            display_name=self.display_name,
            termination_policy=self.termination_policy,
            credential=self.credential,
            description=self.description,
            fs_root=self.fs_root,
            num_executors=self.num_executors,
            labels=self.labels,
        )

    # -------------------------------------------------------------------------
    # Public API
    # -------------------------------------------------------------------------

    @property
    def cloud_name(self) -> str:
        """Cloud profile this node belongs to."""
        return self.cloud_profile

    @property
    def is_cached(self) -> bool:
        """Whether metadata has been loaded."""
        return self._metadata.is_loaded

    def get_metadata(self) -> NodeMetadata | None:
        """Node metadata, fetched from the backend on first call and cached.

        Before fetching, the node's credential is put into the backend's
        credential store if that store has lost it.

        Raises:
            ConfigurationError: If the cloud profile is unknown.
            BackendUnavailable: If the backend call fails. Nothing is cached
                and the next call tries again.
        """
        return self._metadata.get_or_load(self._fetch_metadata)

    def terminate(self) -> None:
        """Suspend or destroy the node according to its termination policy.

        A node that is gone or not running is left alone. Backend failures
        of the suspend/destroy call propagate.

        Raises:
            ConfigurationError: If the cloud profile no longer exists.
            BackendUnavailable: If a backend call fails.
        """
        backend = self._backend()
        metadata = backend.get_node_metadata(self.node_id)

        if metadata is None or not metadata.is_running:
            state = metadata.status if metadata else "gone"
            log.info(
                "Node {name} is already not running ({state})",
                name=self.display_name,
                state=state,
            )
            return

        if self.termination_policy is TerminationPolicy.SUSPEND:
            log.info("Suspending node {name}", name=self.display_name)
            backend.suspend_node(self.node_id)
        else:
            log.info("Terminating node {name}", name=self.display_name)
            backend.destroy_node(self.node_id)

    # -------------------------------------------------------------------------
    # Internal
    # -------------------------------------------------------------------------

    def _backend(self) -> ComputeBackend:
        return self._registry.resolve_backend(self.cloud_profile)

    def _fetch_metadata(self) -> NodeMetadata | None:
        backend = self._backend()

        if self.credential is not None:
            if ensure_credential(backend.credential_store, self.node_id, self.credential):
                log.debug("Re-seeded credentials for node {id}", id=self.node_id)
        else:
            log.debug("Node {id} has no stored credentials to re-seed", id=self.node_id)

        metadata = backend.get_node_metadata(self.node_id)
        if metadata is None:
            log.debug("Backend has no metadata for node {id}", id=self.node_id)
        return metadata


# =============================================================================
# Exports
# =============================================================================

__all__ = [
    "ManagedNode",
    "MetadataCache",
    "NodeRecord",
    "NodeTemplate",
    "TerminationPolicy",
    "display_name",
    "sanitize_node_id",
]
