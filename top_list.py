"""
IMDb Top 250 membership source.

Downloads a community-maintained JSON list at most once per day, keeps a
copy next to the metadata cache, and falls back to that copy (however old)
when the download fails.

Document format:
    [{"imdb_url": "/title/tt0111161/", ...}, ...]
"""

import json
import logging
import os
import threading
import time
from pathlib import Path
from typing import Optional, Set, Iterable

import requests

from cancellation import CancellationToken
from constants import (
    IMDB_ID_PREFIX,
    TOP_LIST_CACHE_FILE_NAME,
    TOP_LIST_MAX_AGE,
    TOP_LIST_REQUEST_TIMEOUT,
    TOP_LIST_URL,
)
from http_client import RateLimitedSession, SessionAwareComponent

logger = logging.getLogger(__name__)


def extract_imdb_id(url: str) -> Optional[str]:
    """
    Pull the IMDb id out of a URL-shaped field.

    "/title/tt0055630/" -> "tt0055630"
    """
    if not url:
        return None
    for segment in url.split("/"):
        if segment.lower().startswith(IMDB_ID_PREFIX):
            return segment.lower()
    return None


def parse_top_list(entries: Iterable) -> Set[str]:
    """Collect lowercased IMDb ids from decoded list entries, skipping junk."""
    ids = set()
    for entry in entries or []:
        if not isinstance(entry, dict):
            continue
        imdb_id = extract_imdb_id(entry.get("imdb_url") or "")
        if imdb_id:
            ids.add(imdb_id)
    return ids


class TopListSource(SessionAwareComponent):
    """
    Cached IMDb Top 250 id set.

    Usage:
        source = TopListSource("./config")
        source.refresh()
        if source.contains("tt0111161"):
            ...
    """

    def __init__(
        self,
        config_dir: str = None,
        session: RateLimitedSession = None,
        url: str = TOP_LIST_URL,
        max_age: float = TOP_LIST_MAX_AGE,
    ):
        """
        Args:
            config_dir: Directory for the cached copy. Defaults to CONFIG_DIR env var or ./config
            session: Optional shared session (no rate limiter needed)
            url: Source document URL
            max_age: Seconds before the cached copy is re-downloaded
        """
        self._path = Path(config_dir or os.environ.get("CONFIG_DIR", "./config")) / TOP_LIST_CACHE_FILE_NAME
        self._url = url
        self._max_age = max_age
        self._lock = threading.Lock()
        self._ids: Set[str] = set()
        self._loaded = False
        self.init_session(session, timeout=TOP_LIST_REQUEST_TIMEOUT)

    @property
    def ids(self) -> Set[str]:
        with self._lock:
            return set(self._ids)

    def contains(self, imdb_id: Optional[str]) -> bool:
        if not imdb_id:
            return False
        with self._lock:
            return imdb_id.lower() in self._ids

    def _is_fresh(self) -> bool:
        try:
            return time.time() - self._path.stat().st_mtime < self._max_age
        except OSError:
            return False

    def _download(self, cancel: Optional[CancellationToken]) -> bool:
        try:
            response = self.session.get(self._url, cancel=cancel)
            response.raise_for_status()
            entries = response.json()
        except (requests.RequestException, ValueError) as e:
            logger.error(f"Failed to download IMDb Top 250 ({e}), using previous copy if any")
            return False

        if not isinstance(entries, list):
            logger.error("IMDb Top 250 document is not a list, keeping previous copy")
            return False

        temp_path = self._path.with_suffix('.tmp')
        try:
            self._path.parent.mkdir(parents=True, exist_ok=True)
            temp_path.write_text(json.dumps(entries, ensure_ascii=False), encoding='utf-8')
            temp_path.replace(self._path)
        except OSError as e:
            logger.warning(f"Failed to store IMDb Top 250 copy: {e}")
            return False

        logger.info("IMDb Top 250 list updated from source")
        return True

    def _read_local(self) -> Set[str]:
        if not self._path.exists():
            return set()
        try:
            entries = json.loads(self._path.read_text(encoding='utf-8'))
        except (OSError, ValueError) as e:
            logger.error(f"Failed to parse cached IMDb Top 250: {e}")
            return set()
        if not isinstance(entries, list):
            logger.error("Cached IMDb Top 250 has unexpected layout")
            return set()
        return parse_top_list(entries)

    def refresh(self, cancel: Optional[CancellationToken] = None) -> Set[str]:
        """
        Make sure the id set is loaded and no older than max_age.

        Returns:
            The current id set (possibly empty)
        """
        if self._is_fresh():
            logger.debug("IMDb Top 250 copy is fresh, skipping download")
        else:
            self._download(cancel)

        ids = self._read_local()
        with self._lock:
            self._ids = ids
            self._loaded = True
        logger.info(f"Loaded {len(ids)} IMDb Top 250 ids")
        return set(ids)

    def ensure_loaded(self, cancel: Optional[CancellationToken] = None) -> Set[str]:
        """Refresh once per process; later calls reuse the in-memory set."""
        with self._lock:
            if self._loaded:
                return set(self._ids)
        return self.refresh(cancel)
