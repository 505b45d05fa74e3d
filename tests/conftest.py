from __future__ import annotations

import pytest

from burstnode.backends.memory import InMemoryBackend
from burstnode.registry import CloudRegistry


@pytest.fixture
def backend() -> InMemoryBackend:
    return InMemoryBackend(region="us-east-1")


@pytest.fixture
def registry(backend: InMemoryBackend) -> CloudRegistry:
    registry = CloudRegistry()
    registry.register("local", backend)
    return registry
