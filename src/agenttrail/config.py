"""Configuration file support.

The configuration file holds the directory profiles to scan, pinned session
ids, custom tags and server settings. It is read into an immutable
ConfigSnapshot; every change is written back to disk and produces a new
snapshot rather than mutating shared state.
"""

from __future__ import annotations

import json
import logging
import os
from dataclasses import asdict, dataclass, field, replace
from pathlib import Path
from typing import Any

logger = logging.getLogger(__name__)

CONFIG_ENV_VAR = "AGENTTRAIL_CONFIG"
DEFAULT_CONFIG_PATH = Path.home() / ".config" / "agenttrail" / "config.json"
DEFAULT_CLAUDE_DIR = Path.home() / ".claude" / "projects"
DEFAULT_PORT = 9847

DIRECTORY_TYPES = ("claude", "codex")


class ProfileExistsError(ValueError):
    """Raised when adding a directory profile whose path is already configured."""


class ProfileNotFoundError(LookupError):
    """Raised when updating or removing a directory profile that does not exist."""


@dataclass(frozen=True)
class DirectoryProfile:
    """A directory of transcripts to scan."""

    path: str
    label: str = ""
    color: str = "#7c3aed"
    enabled: bool = True
    type: str = "claude"

    def __post_init__(self):
        if self.type not in DIRECTORY_TYPES:
            object.__setattr__(self, "type", "claude")

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> DirectoryProfile:
        return cls(**{k: v for k, v in data.items() if k in cls.__dataclass_fields__})

    def to_dict(self) -> dict[str, Any]:
        return asdict(self)


@dataclass(frozen=True)
class ConfigSnapshot:
    """Configuration as read at one point in time."""

    directories: tuple[DirectoryProfile, ...] = ()
    pins: frozenset[str] = frozenset()
    custom_tags: dict[str, tuple[str, ...]] = field(default_factory=dict)
    server_port: int = DEFAULT_PORT

    @property
    def enabled_directories(self) -> list[DirectoryProfile]:
        return [d for d in self.directories if d.enabled]

    def is_pinned(self, session_id: str) -> bool:
        return session_id in self.pins

    def get_custom_tags(self, session_id: str) -> tuple[str, ...]:
        return self.custom_tags.get(session_id, ())

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> ConfigSnapshot:
        """Create a snapshot from the on-disk JSON structure."""
        directories = tuple(
            DirectoryProfile.from_dict(d) for d in data.get("directories") or [] if isinstance(d, dict) and d.get("path")
        )
        custom_tags = {
            session_id: tuple(dict.fromkeys(tags))
            for session_id, tags in (data.get("customTags") or {}).items()
            if tags
        }
        server = data.get("server") or {}
        return cls(
            directories=directories,
            pins=frozenset(data.get("pins") or []),
            custom_tags=custom_tags,
            server_port=int(server.get("port") or DEFAULT_PORT),
        )

    def to_dict(self) -> dict[str, Any]:
        return {
            "directories": [d.to_dict() for d in self.directories],
            "pins": sorted(self.pins),
            "customTags": {k: list(v) for k, v in self.custom_tags.items()},
            "server": {"port": self.server_port},
        }


# Default configuration values
DEFAULT_CONFIG: dict[str, Any] = {
    "directories": [
        {
            "path": str(DEFAULT_CLAUDE_DIR),
            "label": "Default",
            "color": "#7c3aed",
            "enabled": True,
            "type": "claude",
        }
    ],
    "pins": [],
    "customTags": {},
    "server": {"port": DEFAULT_PORT},
}


def _deep_merge(base: dict[str, Any], override: dict[str, Any]) -> dict[str, Any]:
    """Deep merge two dictionaries, override values taking precedence."""
    result = base.copy()
    for key, value in override.items():
        if key in result and isinstance(result[key], dict) and isinstance(value, dict):
            result[key] = _deep_merge(result[key], value)
        else:
            result[key] = value
    return result


def get_config_path() -> Path:
    """Get the config file path ($AGENTTRAIL_CONFIG overrides the default)."""
    env_path = os.environ.get(CONFIG_ENV_VAR)
    return Path(env_path).expanduser() if env_path else DEFAULT_CONFIG_PATH


class ConfigStore:
    """Reads and writes the JSON configuration file."""

    def __init__(self, path: Path | None = None):
        self.path = Path(path) if path is not None else get_config_path()

    def load(self) -> ConfigSnapshot:
        """Load a fresh snapshot from disk.

        A missing file yields the defaults; an unreadable or invalid file is
        logged and also yields the defaults.
        """
        merged = _deep_merge({}, DEFAULT_CONFIG)
        if not self.path.exists():
            return ConfigSnapshot.from_dict(merged)

        try:
            with open(self.path, "r", encoding="utf-8") as f:
                data = json.load(f)
            if not isinstance(data, dict):
                raise ValueError("config root must be an object")
            merged = _deep_merge(merged, data)
            logger.debug(f"Loaded config from {self.path}")
        except (OSError, ValueError) as e:
            logger.warning(f"Failed to parse config file {self.path}, using defaults: {e}")

        return ConfigSnapshot.from_dict(merged)

    def save(self, snapshot: ConfigSnapshot) -> ConfigSnapshot:
        self.path.parent.mkdir(parents=True, exist_ok=True)
        with open(self.path, "w", encoding="utf-8") as f:
            json.dump(snapshot.to_dict(), f, indent=2)
        return snapshot

    def init(self) -> ConfigSnapshot:
        """Write the default config if no config file exists yet."""
        if self.path.exists():
            return self.load()
        logger.info(f"Initializing config at {self.path}")
        return self.save(ConfigSnapshot.from_dict(DEFAULT_CONFIG))

    # Pins

    def add_pin(self, session_id: str) -> ConfigSnapshot:
        config = self.load()
        if session_id in config.pins:
            return config
        return self.save(replace(config, pins=config.pins | {session_id}))

    def remove_pin(self, session_id: str) -> ConfigSnapshot:
        config = self.load()
        return self.save(replace(config, pins=config.pins - {session_id}))

    # Custom tags

    def add_custom_tags(self, session_id: str, tags: list[str]) -> ConfigSnapshot:
        config = self.load()
        merged = tuple(dict.fromkeys(config.get_custom_tags(session_id) + tuple(tags)))
        custom_tags = dict(config.custom_tags)
        custom_tags[session_id] = merged
        return self.save(replace(config, custom_tags=custom_tags))

    def remove_custom_tag(self, session_id: str, tag: str) -> ConfigSnapshot:
        config = self.load()
        if session_id not in config.custom_tags:
            return config
        custom_tags = dict(config.custom_tags)
        remaining = tuple(t for t in custom_tags[session_id] if t != tag)
        if remaining:
            custom_tags[session_id] = remaining
        else:
            del custom_tags[session_id]
        return self.save(replace(config, custom_tags=custom_tags))

    # Directory profiles

    def add_directory(self, profile: DirectoryProfile) -> ConfigSnapshot:
        config = self.load()
        if any(d.path == profile.path for d in config.directories):
            raise ProfileExistsError(f"Profile already configured: {profile.path}")
        return self.save(replace(config, directories=config.directories + (profile,)))

    def update_directory(self, path: str, updates: dict[str, Any]) -> ConfigSnapshot:
        config = self.load()
        directories = list(config.directories)
        for index, profile in enumerate(directories):
            if profile.path == path:
                allowed = {k: v for k, v in updates.items() if k in DirectoryProfile.__dataclass_fields__}
                directories[index] = replace(profile, **allowed)
                return self.save(replace(config, directories=tuple(directories)))
        raise ProfileNotFoundError(f"Profile not found: {path}")

    def remove_directory(self, path: str) -> ConfigSnapshot:
        config = self.load()
        directories = tuple(d for d in config.directories if d.path != path)
        if len(directories) == len(config.directories):
            raise ProfileNotFoundError(f"Profile not found: {path}")
        return self.save(replace(config, directories=directories))
