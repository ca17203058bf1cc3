"""Configuration management for plm.

Everything plm persists lives under one root directory (``PLM_HOME`` or
``~/.plm``). :class:`PlmPaths` names the files inside it and
:class:`PlmConfig` holds user preferences such as the enabled targets.
"""

import json
import os
from dataclasses import dataclass
from pathlib import Path
from typing import Any, List, Optional

from pydantic import BaseModel, Field, field_validator

from plm.core.components import Scope
from plm.core.errors import TargetError
from plm.core.source import GITHUB_API_URL
from plm.core.targets import BUILTIN_TARGETS
from plm.utils.file_io import write_text_atomic
from plm.utils.log import get_logger


logger = get_logger()

DEFAULT_TARGETS = ["codex", "copilot"]
KNOWN_TARGETS = tuple(adapter.target_id for adapter in BUILTIN_TARGETS)


@dataclass(frozen=True)
class PlmPaths:
    """Filesystem layout of the plm home directory."""

    root: Path

    @classmethod
    def default(cls) -> "PlmPaths":
        env_home = os.getenv("PLM_HOME")
        if env_home:
            return cls(Path(env_home).expanduser())
        return cls(Path.home() / ".plm")

    @property
    def config_file(self) -> Path:
        return self.root / "config.json"

    @property
    def marketplaces_file(self) -> Path:
        return self.root / "marketplaces.json"

    @property
    def state_file(self) -> Path:
        return self.root / "plugins.json"

    @property
    def state_lock(self) -> Path:
        return self.root / "plugins.lock"

    @property
    def plugin_cache_dir(self) -> Path:
        return self.root / "cache" / "plugins"

    @property
    def marketplace_cache_dir(self) -> Path:
        return self.root / "cache" / "marketplaces"


class PlmConfig(BaseModel):
    """User configuration stored in ``<plm home>/config.json``."""

    targets: List[str] = Field(default_factory=lambda: list(DEFAULT_TARGETS))
    default_scope: Scope = Scope.PERSONAL
    github_api_url: str = GITHUB_API_URL
    http_timeout: float = 30.0
    catalog_ttl_hours: int = 24

    @field_validator("targets", mode="before")
    @classmethod
    def _normalize_targets(cls, value: Any) -> List[str]:
        if value is None:
            return list(DEFAULT_TARGETS)
        if isinstance(value, str):
            value = [value]
        normalized: List[str] = []
        for item in value:
            target_id = str(item).strip().lower()
            if not target_id:
                continue
            if target_id not in KNOWN_TARGETS:
                raise ValueError(
                    f"unknown target '{target_id}' (known: {', '.join(KNOWN_TARGETS)})"
                )
            if target_id not in normalized:
                normalized.append(target_id)
        return normalized

    @field_validator("github_api_url")
    @classmethod
    def _strip_api_url(cls, value: str) -> str:
        return value.rstrip("/")


class ConfigManager:
    """Loads and saves :class:`PlmConfig` for one plm home directory."""

    def __init__(self, paths: Optional[PlmPaths] = None) -> None:
        self.paths = paths or PlmPaths.default()
        self._config: Optional[PlmConfig] = None

    def get_config(self) -> PlmConfig:
        """Load and return configuration."""
        if self._config is None:
            path = self.paths.config_file
            if path.exists():
                try:
                    data = json.loads(path.read_text(encoding="utf-8"))
                    self._config = PlmConfig(**data)
                    logger.debug(
                        "[config] Loaded configuration",
                        extra={"path": str(path), "targets": self._config.targets},
                    )
                except (
                    json.JSONDecodeError,
                    OSError,
                    IOError,
                    UnicodeDecodeError,
                    ValueError,
                    TypeError,
                ) as e:
                    logger.warning(
                        "[config] Error loading config: %s: %s",
                        type(e).__name__,
                        e,
                        extra={"path": str(path)},
                    )
                    self._config = PlmConfig()
            else:
                self._config = PlmConfig()
                logger.debug(
                    "[config] Config not found; using defaults",
                    extra={"path": str(path)},
                )
        return self._config

    def save_config(self, config: PlmConfig) -> None:
        """Save configuration."""
        self._config = config
        write_text_atomic(self.paths.config_file, config.model_dump_json(indent=2) + "\n")
        logger.debug(
            "[config] Saved configuration",
            extra={"path": str(self.paths.config_file), "targets": config.targets},
        )

    def add_target(self, target_id: str) -> bool:
        """Enable a target. Returns False when it was already enabled."""
        config = self.get_config()
        normalized = target_id.strip().lower()
        if normalized not in KNOWN_TARGETS:
            raise TargetError(f"Unknown target '{target_id}'. Known: {', '.join(KNOWN_TARGETS)}")
        if normalized in config.targets:
            return False
        updated = config.model_copy(update={"targets": [*config.targets, normalized]})
        self.save_config(updated)
        return True

    def remove_target(self, target_id: str) -> bool:
        """Disable a target. Returns False when it was not enabled."""
        config = self.get_config()
        normalized = target_id.strip().lower()
        if normalized not in config.targets:
            return False
        remaining = [item for item in config.targets if item != normalized]
        self.save_config(config.model_copy(update={"targets": remaining}))
        return True


# Global instance
config_manager = ConfigManager()


def reset_config_manager(paths: Optional[PlmPaths] = None) -> ConfigManager:
    """Replace the global manager, e.g. after ``PLM_HOME`` changes."""
    global config_manager
    config_manager = ConfigManager(paths)
    return config_manager


def get_config() -> PlmConfig:
    """Get configuration."""
    return config_manager.get_config()


def save_config(config: PlmConfig) -> None:
    """Save configuration."""
    config_manager.save_config(config)


def get_paths() -> PlmPaths:
    return config_manager.paths


__all__ = [
    "ConfigManager",
    "DEFAULT_TARGETS",
    "KNOWN_TARGETS",
    "PlmConfig",
    "PlmPaths",
    "config_manager",
    "get_config",
    "get_paths",
    "reset_config_manager",
    "save_config",
]
