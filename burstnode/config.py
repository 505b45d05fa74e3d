"""TOML-based cloud, template and logging configuration.

Loads ~/.burstnode/defaults.toml (global) and burstnode.toml (project),
merges them, and resolves named clouds into a ``CloudRegistry`` and named
templates into ``NodeTemplate``s.
"""

from __future__ import annotations

import tomllib
from pathlib import Path
from typing import TYPE_CHECKING, Any

from burstnode.errors import ConfigurationError
from burstnode.logging import LogConfig, setup_logging
from burstnode.node import NodeTemplate
from burstnode.registry import CloudRegistry, create_backend

if TYPE_CHECKING:
    from burstnode.registry import CloudConfig

type RawConfig = dict[str, Any]

GLOBAL_CONFIG_PATH = Path.home() / ".burstnode" / "defaults.toml"
PROJECT_CONFIG_NAME = "burstnode.toml"


def _deep_merge(base: RawConfig, override: RawConfig) -> RawConfig:
    result = dict(base)
    for key, value in override.items():
        if key in result and isinstance(result[key], dict) and isinstance(value, dict):
            result[key] = _deep_merge(result[key], value)
        else:
            result[key] = value
    return result


def _read_toml(path: Path) -> RawConfig:
    if not path.is_file():
        return {}
    try:
        with path.open("rb") as f:
            return tomllib.load(f)
    except tomllib.TOMLDecodeError as e:
        raise ConfigurationError(f"Invalid TOML in {path}: {e}") from e


def load_config(
    *,
    project_dir: Path | None = None,
    global_path: Path | None = None,
) -> RawConfig:
    """Merged global and project configuration.

    The project file wins key by key, nested tables included. The result
    always has ``clouds`` and ``templates`` tables, empty when neither file
    defines them, so ``build_registry`` and ``resolve_template`` can index it
    directly.

    Raises:
        ConfigurationError: If either file is not valid TOML.
    """
    global_cfg = _read_toml(global_path or GLOBAL_CONFIG_PATH)
    project_path = (project_dir or Path.cwd()) / PROJECT_CONFIG_NAME
    project_cfg = _read_toml(project_path)

    merged = _deep_merge(global_cfg, project_cfg)
    merged.setdefault("clouds", {})
    merged.setdefault("templates", {})
    return merged


def _get_cloud_map() -> dict[str, type]:
    from burstnode.backends.libcloud_driver import Libcloud
    from burstnode.backends.memory import InMemory

    return {
        "memory": InMemory,
        "libcloud": Libcloud,
    }


def build_cloud(name: str, raw: RawConfig) -> CloudConfig:
    raw = dict(raw)
    cloud_type = raw.pop("type", None)
    if cloud_type is None:
        raise ConfigurationError(f"Cloud '{name}' missing 'type' field")

    cloud_map = _get_cloud_map()
    cls = cloud_map.get(cloud_type)
    if cls is None:
        raise ConfigurationError(
            f"Unknown cloud type '{cloud_type}'. "
            f"Valid: {', '.join(cloud_map)}"
        )
    try:
        return cls(**raw)
    except TypeError as e:
        raise ConfigurationError(f"Invalid settings for cloud '{name}': {e}") from e


def build_registry(config: RawConfig, registry: CloudRegistry | None = None) -> CloudRegistry:
    """Register every configured cloud. Backends are created on first use."""
    registry = registry if registry is not None else CloudRegistry()
    for name, raw in config.get("clouds", {}).items():
        cloud = build_cloud(name, raw)
        registry.register(name, lambda cloud=cloud, name=name: create_backend(cloud, profile=name))
    return registry


def resolve_template(name: str, config: RawConfig) -> NodeTemplate:
    templates = config.get("templates", {})
    if name not in templates:
        raise ConfigurationError(
            f"Template '{name}' not found. Available: {', '.join(templates) or 'none'}"
        )
    try:
        return NodeTemplate(**templates[name])
    except TypeError as e:
        raise ConfigurationError(f"Invalid settings for template '{name}': {e}") from e


def load_log_config(config: RawConfig) -> LogConfig | None:
    raw = config.get("logging")
    if raw is None:
        return None
    try:
        return LogConfig(**raw)
    except TypeError as e:
        raise ConfigurationError(f"Invalid logging settings: {e}") from e


def configure_logging(config: RawConfig) -> list[int]:
    """Apply the ``[logging]`` section, if any. Returns the sink ids added."""
    log_config = load_log_config(config)
    if log_config is None:
        return []
    return setup_logging(log_config)


__all__ = [
    "build_cloud",
    "build_registry",
    "configure_logging",
    "load_config",
    "load_log_config",
    "resolve_template",
]
