"""Compute backends.

SDK-backed modules are imported lazily by ``burstnode.registry.create_backend``.
"""

from burstnode.backends.memory import InMemory, InMemoryBackend

__all__ = ["InMemory", "InMemoryBackend"]
