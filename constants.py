"""
Shared constants, enums, and configuration for SmartTags.

This module centralizes all magic strings/numbers and provides type-safe
enums for tag styles, item types and metadata fetch status.
"""

import os
from enum import Enum
from typing import Final


def _get_bool_env(key: str, default: bool = False) -> bool:
    """Get boolean from environment variable."""
    value = os.environ.get(key, "").lower()
    if value in ("true", "1", "yes", "on"):
        return True
    if value in ("false", "0", "no", "off"):
        return False
    return default


def _get_float_env(key: str, default: float) -> float:
    """Get float from environment variable, ignoring unparseable values."""
    try:
        return float(os.environ.get(key, default))
    except ValueError:
        return default


# =============================================================================
# Enums
# =============================================================================

class CountryTagStyle(str, Enum):
    """
    Rendering of a resolved origin country.

    Inherits from str for JSON serialization compatibility.
    """
    NAME_ONLY = "name_only"          # 香港
    CODE_ONLY = "code_only"          # HK
    NAME_AND_CODE = "name_and_code"  # 香港 (HK)


class DecadeStyle(str, Enum):
    """Rendering of a decade tag."""
    FOUR_DIGITS = "four_digits"  # 1990年代
    TWO_DIGITS = "two_digits"    # 90年代 (2000 renders as 00年代)
    ENGLISH = "english"          # 1990s


class ItemType(str, Enum):
    """Host library item types the tagger cares about."""
    MOVIE = "Movie"
    SERIES = "Series"


class FetchStatus(str, Enum):
    """Outcome of a metadata lookup."""
    FOUND = "found"
    NOT_FOUND = "not_found"
    TRANSIENT_ERROR = "transient_error"


# =============================================================================
# Service Identity
# =============================================================================

SERVICE_NAME: Final = "SmartTags"
SERVICE_VERSION: Final = "1.2.0"


# =============================================================================
# Files (all live in the plugin-private configuration directory)
# =============================================================================

CONFIG_FILE_NAME: Final = "SmartTags.json"
METADATA_CACHE_FILE_NAME: Final = "SmartTags_TmdbCache.json"
TOP_LIST_CACHE_FILE_NAME: Final = "SmartTags_ImdbTop250.json"


# =============================================================================
# Rate Limits & Timeouts (seconds)
# =============================================================================

TMDB_MIN_REQUEST_INTERVAL: Final = _get_float_env("TMDB_MIN_REQUEST_INTERVAL", 0.3)  # TMDB allows 40/10s
TMDB_REQUEST_TIMEOUT: Final = 10.0
ITEM_CHANGED_TIMEOUT: Final = 30.0
CLEANUP_COOLDOWN: Final = 5.0
TOP_LIST_MAX_AGE: Final = 24 * 60 * 60
TOP_LIST_REQUEST_TIMEOUT: Final = 30.0

# Transport-level retries; a failed lookup is retried on the next pass instead
MAX_RETRIES: Final = 0
RETRY_BACKOFF_BASE: Final = 0.5


# =============================================================================
# Tagging Thresholds
# =============================================================================

MIN_DECADE_YEAR: Final = 1850
PROGRESS_REPORT_EVERY: Final = 50
DEFAULT_UPDATE_HOUR: Final = 4


# =============================================================================
# External URLs
# =============================================================================

TMDB_API_BASE: Final = "https://api.themoviedb.org/3"
TOP_LIST_URL: Final = "https://raw.githubusercontent.com/theapache64/top250/master/top250_min.json"
IMDB_ID_PREFIX: Final = "tt"


# =============================================================================
# Feature Defaults (configurable via environment)
# =============================================================================
# Used only when no persisted configuration exists yet. Tag features are off
# unless enabled; the realtime monitor is on.

DEFAULT_ENABLE_COUNTRY_TAGS: bool = _get_bool_env("SMARTTAGS_COUNTRY_TAGS", False)
DEFAULT_ENABLE_DECADE_TAGS: bool = _get_bool_env("SMARTTAGS_DECADE_TAGS", False)
DEFAULT_ENABLE_RESOLUTION_TAGS: bool = _get_bool_env("SMARTTAGS_RESOLUTION_TAGS", False)
DEFAULT_ENABLE_HDR_TAGS: bool = _get_bool_env("SMARTTAGS_HDR_TAGS", False)
DEFAULT_ENABLE_AUDIO_TAGS: bool = _get_bool_env("SMARTTAGS_AUDIO_TAGS", False)
DEFAULT_ENABLE_IMDB_TOP_TAGS: bool = _get_bool_env("SMARTTAGS_IMDB_TOP_TAGS", False)
DEFAULT_ENABLE_STUDIO_TAGS: bool = _get_bool_env("SMARTTAGS_STUDIO_TAGS", False)
DEFAULT_ENABLE_REALTIME_MONITOR: bool = _get_bool_env("SMARTTAGS_REALTIME_MONITOR", True)
