"""Cloud profile registry.

Maps a cloud profile name to the backend that governs its nodes. Backends
may be registered directly or as zero-argument factories, which are built
on first use so heavy SDK imports only happen for profiles actually used.
"""

from __future__ import annotations

import threading
from collections.abc import Callable
from typing import TYPE_CHECKING

from loguru import logger

from burstnode.backend import ComputeBackend
from burstnode.errors import ConfigurationError

if TYPE_CHECKING:
    from burstnode.backends.libcloud_driver import Libcloud
    from burstnode.backends.memory import InMemory

    type CloudConfig = InMemory | Libcloud

log = logger.bind(component="registry")

type BackendFactory = Callable[[], ComputeBackend]


class CloudRegistry:
    """Thread-safe mapping of cloud profile name to compute backend."""

    def __init__(self) -> None:
        self._factories: dict[str, BackendFactory] = {}
        self._backends: dict[str, ComputeBackend] = {}
        self._lock = threading.RLock()

    def register(self, name: str, backend: ComputeBackend | BackendFactory) -> None:
        """Register a backend, or a factory building one, under ``name``.

        Re-registering a name replaces the previous backend.
        """
        if not name:
            raise ConfigurationError("Cloud profile name must not be empty")

        with self._lock:
            self._backends.pop(name, None)
            self._factories.pop(name, None)
            # Classes satisfy the runtime protocol check too; treat them as factories
            if not isinstance(backend, type) and isinstance(backend, ComputeBackend):
                self._backends[name] = backend
            elif callable(backend):
                self._factories[name] = backend
            else:
                raise ConfigurationError(
                    f"Cloud profile '{name}' must be a ComputeBackend or a factory, "
                    f"got {type(backend).__name__}"
                )
        log.debug("Registered cloud profile {name}", name=name)

    def unregister(self, name: str) -> bool:
        """Remove a profile. Returns False if it was not registered."""
        with self._lock:
            removed = self._backends.pop(name, None) is not None
            removed = self._factories.pop(name, None) is not None or removed
        if removed:
            log.debug("Unregistered cloud profile {name}", name=name)
        return removed

    def resolve_backend(self, name: str) -> ComputeBackend:
        """Backend for ``name``.

        Raises:
            ConfigurationError: If the profile is unknown or was removed.
        """
        with self._lock:
            if (backend := self._backends.get(name)) is not None:
                return backend

            factory = self._factories.get(name)
            if factory is None:
                available = ", ".join(sorted(self.names)) or "none"
                raise ConfigurationError(
                    f"Cloud profile '{name}' not found. Available: {available}"
                )

            log.debug("Creating backend for cloud profile {name}", name=name)
            backend = factory()
            self._backends[name] = backend
            del self._factories[name]
            return backend

    @property
    def names(self) -> list[str]:
        with self._lock:
            return [*self._backends, *self._factories]

    def __contains__(self, name: object) -> bool:
        with self._lock:
            return name in self._backends or name in self._factories

    def __len__(self) -> int:
        with self._lock:
            return len(self._backends) + len(self._factories)


_default_registry = CloudRegistry()


def get_registry() -> CloudRegistry:
    """Process-wide registry used by nodes that were not given one."""
    return _default_registry


def create_backend(config: CloudConfig, *, profile: str = "") -> ComputeBackend:
    """Build the backend described by a cloud configuration object.

    SDK dependencies are imported only for the matching backend. Configs
    asking for more than one attempt get wrapped in ``RetryingBackend``.
    """
    from burstnode.backends.libcloud_driver import Libcloud
    from burstnode.backends.memory import InMemory

    config_type = type(config).__name__
    log.debug("Creating backend for config={config_type}", config_type=config_type)

    backend: ComputeBackend
    match config:
        case InMemory():
            from burstnode.backends.memory import InMemoryBackend

            backend = InMemoryBackend(region=config.region)
        case Libcloud():
            from burstnode.backends.libcloud_driver import LibcloudBackend

            backend = LibcloudBackend.from_config(config, profile=profile)
        case _:
            raise ConfigurationError(
                f"No backend registered for {config_type}. "
                f"Available backends: InMemory, Libcloud"
            )

    if config.retry_attempts > 1:
        from burstnode.retry import RetryingBackend

        backend = RetryingBackend(
            backend,
            attempts=config.retry_attempts,
            profile=profile,
        )
    return backend


__all__ = [
    "BackendFactory",
    "CloudRegistry",
    "create_backend",
    "get_registry",
]
