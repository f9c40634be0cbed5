"""
User configuration for SmartTags.

Provides:
- TaggingConfig, an immutable snapshot of every user-facing option
- ConfigStore, a thread-safe owner of the persisted options with atomic
  file writes and graceful fallback to defaults

The cleanup switch is forced off whenever the store is opened (process
start) and after every cleanup run.
"""

import json
import logging
import os
import threading
from dataclasses import dataclass, asdict, fields, replace
from pathlib import Path
from typing import Any, Dict

from constants import (
    CONFIG_FILE_NAME,
    CountryTagStyle,
    DecadeStyle,
    DEFAULT_ENABLE_COUNTRY_TAGS,
    DEFAULT_ENABLE_DECADE_TAGS,
    DEFAULT_ENABLE_RESOLUTION_TAGS,
    DEFAULT_ENABLE_HDR_TAGS,
    DEFAULT_ENABLE_AUDIO_TAGS,
    DEFAULT_ENABLE_IMDB_TOP_TAGS,
    DEFAULT_ENABLE_STUDIO_TAGS,
    DEFAULT_ENABLE_REALTIME_MONITOR,
)

logger = logging.getLogger(__name__)

# Suffix of the API key as shown by to_dict(redact=True)
REDACTION_MARKER = "..."


class ConfigError(ValueError):
    """Raised when a configuration update contains invalid values."""


@dataclass(frozen=True)
class TaggingConfig:
    """
    Immutable configuration snapshot.

    Drivers take one snapshot per run or per event so a concurrent edit
    never changes behaviour halfway through an item.
    """
    tmdb_api_key: str = ""
    enable_country_tags: bool = DEFAULT_ENABLE_COUNTRY_TAGS
    country_style: CountryTagStyle = CountryTagStyle.NAME_ONLY
    enable_decade_tags: bool = DEFAULT_ENABLE_DECADE_TAGS
    decade_style: DecadeStyle = DecadeStyle.FOUR_DIGITS
    enable_resolution_tags: bool = DEFAULT_ENABLE_RESOLUTION_TAGS
    enable_hdr_tags: bool = DEFAULT_ENABLE_HDR_TAGS
    enable_audio_tags: bool = DEFAULT_ENABLE_AUDIO_TAGS
    enable_imdb_top_tags: bool = DEFAULT_ENABLE_IMDB_TOP_TAGS
    enable_studio_tags: bool = DEFAULT_ENABLE_STUDIO_TAGS
    enable_realtime_monitor: bool = DEFAULT_ENABLE_REALTIME_MONITOR
    enable_cleanup: bool = False

    @property
    def has_api_key(self) -> bool:
        return bool(self.tmdb_api_key and self.tmdb_api_key.strip())

    @property
    def needs_metadata(self) -> bool:
        return self.enable_country_tags or self.enable_studio_tags

    def to_dict(self, redact: bool = False) -> Dict[str, Any]:
        """Convert to dictionary for JSON serialization."""
        data = asdict(self)
        data["country_style"] = self.country_style.value
        data["decade_style"] = self.decade_style.value
        if redact and data["tmdb_api_key"]:
            data["tmdb_api_key"] = data["tmdb_api_key"][:4] + REDACTION_MARKER
        return data

    @classmethod
    def from_dict(cls, data: Dict[str, Any], strict: bool = False) -> "TaggingConfig":
        """
        Create TaggingConfig from dictionary.

        Unknown keys are ignored. Invalid values fall back to defaults with a
        warning, or raise ConfigError when strict.
        """
        defaults = cls()
        values: Dict[str, Any] = {}
        for f in fields(cls):
            if f.name not in data:
                continue
            raw = data[f.name]
            default = getattr(defaults, f.name)
            try:
                values[f.name] = _coerce(raw, default)
            except (TypeError, ValueError) as e:
                if strict:
                    raise ConfigError(f"invalid value for {f.name}: {raw!r}") from e
                logger.warning(f"Ignoring invalid config value {f.name}={raw!r}: {e}")
        return replace(defaults, **values)


def _coerce(raw: Any, default: Any) -> Any:
    if isinstance(default, CountryTagStyle):
        return CountryTagStyle(raw)
    if isinstance(default, DecadeStyle):
        return DecadeStyle(raw)
    if isinstance(default, bool):
        if isinstance(raw, bool):
            return raw
        if isinstance(raw, str) and raw.lower() in ("true", "1", "yes", "on", "false", "0", "no", "off"):
            return raw.lower() in ("true", "1", "yes", "on")
        raise ValueError("expected a boolean")
    if isinstance(default, str):
        if raw is None:
            return ""
        if not isinstance(raw, str):
            raise TypeError("expected a string")
        return raw.strip()
    return raw


class ConfigStore:
    """
    Thread-safe owner of the persisted configuration.

    Sources (in priority order):
        1. SmartTags.json in the config directory
        2. Built-in defaults (feature defaults may come from the environment)
    The TMDB key falls back to the TMDB_API_KEY env var when none is stored.
    """

    def __init__(self, config_dir: str = None):
        """
        Args:
            config_dir: Directory holding SmartTags.json. Defaults to CONFIG_DIR env var or ./config
        """
        self._path = Path(config_dir or os.environ.get("CONFIG_DIR", "./config")) / CONFIG_FILE_NAME
        self._lock = threading.RLock()
        self._config = self._load()

        if self._config.enable_cleanup:
            logger.info("Cleanup switch was left on, turning it off after restart")
            self._config = replace(self._config, enable_cleanup=False)
            self._save(self._config)

    @property
    def path(self) -> Path:
        return self._path

    def _load(self) -> TaggingConfig:
        config = TaggingConfig()
        if self._path.exists():
            try:
                data = json.loads(self._path.read_text(encoding='utf-8'))
                if isinstance(data, dict):
                    config = TaggingConfig.from_dict(data)
                    logger.debug(f"Loaded configuration from {self._path}")
                else:
                    logger.warning(f"Configuration {self._path} is not an object, using defaults")
            except (OSError, ValueError) as e:
                logger.warning(f"Failed to load configuration ({e}), using defaults")

        if not config.has_api_key and os.environ.get("TMDB_API_KEY"):
            config = replace(config, tmdb_api_key=os.environ["TMDB_API_KEY"].strip())
        return config

    def _save(self, config: TaggingConfig) -> None:
        """Save atomically via temp file + rename."""
        try:
            self._path.parent.mkdir(parents=True, exist_ok=True)
            temp_file = self._path.with_suffix('.tmp')
            temp_file.write_text(json.dumps(config.to_dict(), indent=2), encoding='utf-8')
            temp_file.replace(self._path)
            logger.debug(f"Saved configuration to {self._path}")
        except OSError as e:
            logger.warning(f"Failed to save configuration: {e}")

    def get(self) -> TaggingConfig:
        """Current snapshot."""
        with self._lock:
            return self._config

    def update(self, changes: Dict[str, Any]) -> TaggingConfig:
        """
        Apply a partial update and persist it.

        A redacted API key (as returned by GET /config) is ignored, so the
        stored key survives a read-modify-write round trip.

        Raises:
            ConfigError: If any value is invalid (nothing is applied)
        """
        changes = dict(changes or {})
        key = changes.get("tmdb_api_key")
        if isinstance(key, str) and key.endswith(REDACTION_MARKER):
            del changes["tmdb_api_key"]
        with self._lock:
            merged = self._config.to_dict()
            merged.update(changes)
            config = TaggingConfig.from_dict(merged, strict=True)
            self._config = config
            self._save(config)
            return config

    def reset_cleanup(self) -> None:
        """Turn the cleanup switch off (after a cleanup run)."""
        with self._lock:
            if self._config.enable_cleanup:
                self._config = replace(self._config, enable_cleanup=False)
                self._save(self._config)
                logger.info("Cleanup switch reset to off")
