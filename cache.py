"""
Persistent, thread-safe TMDB metadata cache.

Provides:
- In-memory map of TMDB id -> MetadataRecord, served without network calls
- Read-through fetch on miss (rate limited by the TMDB client's session)
- Write-through persistence of the whole map on every new record
- Atomic file writes (temp file + rename) with optional file locking
- Graceful recovery from a missing or corrupt cache file
"""

import json
import logging
import os
import threading
from pathlib import Path
from typing import Optional, Dict, Any, List

from cancellation import CancellationToken
from constants import FetchStatus, METADATA_CACHE_FILE_NAME
from metrics import metrics
from models import FetchResult, MetadataRecord
from tmdb_client import TMDBClient

logger = logging.getLogger(__name__)

# Try to import fcntl for file locking (Unix only)
try:
    import fcntl
    HAS_FCNTL = True
except ImportError:
    HAS_FCNTL = False
    logger.debug("fcntl not available, file locking disabled")


class MetadataCache:
    """
    Append-only TMDB metadata cache backed by one JSON document.

    Records never expire within the lifetime of the cache; deleting the
    file is the way to force a refresh.

    Reads and network fetches run without holding the write lock, so
    concurrent lookups for different ids only serialize on the final disk
    write. Two concurrent misses for the same id may both fetch; the last
    writer wins.

    Usage:
        cache = MetadataCache("./config", client=TMDBClient(rate_limiter=limiter))
        result = cache.get("603", "movie", api_key)
        if result.ok:
            print(result.record.origin_countries)
    """

    def __init__(
        self,
        config_dir: str = None,
        client: Optional[TMDBClient] = None,
        file_name: str = METADATA_CACHE_FILE_NAME,
    ):
        """
        Initialize the metadata cache.

        Args:
            config_dir: Directory for the cache file. Defaults to CONFIG_DIR env var or ./config
            client: TMDB client used on cache misses
            file_name: Cache document name inside config_dir
        """
        self._config_dir = Path(config_dir or os.environ.get("CONFIG_DIR", "./config"))
        self._cache_path = self._config_dir / file_name
        self._client = client
        self._lock = threading.Lock()
        self._records: Dict[str, MetadataRecord] = self._load()

    @property
    def path(self) -> Path:
        return self._cache_path

    def _lock_file(self, file_handle, exclusive: bool = False) -> None:
        """Apply file lock if available."""
        if HAS_FCNTL:
            try:
                lock_type = fcntl.LOCK_EX if exclusive else fcntl.LOCK_SH
                fcntl.flock(file_handle.fileno(), lock_type | fcntl.LOCK_NB)
            except (IOError, OSError):
                # Lock not available, proceed anyway
                pass

    def _unlock_file(self, file_handle) -> None:
        """Release file lock if available."""
        if HAS_FCNTL:
            try:
                fcntl.flock(file_handle.fileno(), fcntl.LOCK_UN)
            except (IOError, OSError):
                pass

    def _load(self) -> Dict[str, MetadataRecord]:
        """
        Load the cache document.

        Called during init, assumes no concurrent access yet.

        Returns:
            Mapping of TMDB id to record; empty if the file is missing or corrupt
        """
        if not self._cache_path.exists():
            logger.info(f"No metadata cache at {self._cache_path}, starting empty")
            return {}

        try:
            with open(self._cache_path, 'r', encoding='utf-8') as f:
                self._lock_file(f, exclusive=False)
                try:
                    data = json.load(f)
                finally:
                    self._unlock_file(f)
        except (json.JSONDecodeError, UnicodeDecodeError) as e:
            logger.warning(f"Metadata cache {self._cache_path} is corrupt ({e}), starting empty")
            return {}
        except OSError as e:
            logger.warning(f"Metadata cache read error ({e}), starting empty")
            return {}

        if not isinstance(data, dict):
            logger.warning(f"Metadata cache {self._cache_path} has unexpected layout, starting empty")
            return {}

        records = {}
        for key, value in data.items():
            if not isinstance(value, dict):
                continue
            try:
                record = MetadataRecord.from_dict(value)
            except (TypeError, ValueError, AttributeError) as e:
                logger.debug(f"Skipping invalid cache entry {key}: {e}")
                continue
            if not record.external_id:
                record.external_id = str(key)
            records[str(key)] = record

        logger.info(f"Loaded metadata cache with {len(records)} entries")
        return records

    def _save(self) -> bool:
        """
        Write the full map to disk atomically.

        Must be called with self._lock held.

        Returns:
            True if write succeeded
        """
        temp_path = self._cache_path.with_suffix('.tmp')
        try:
            self._cache_path.parent.mkdir(parents=True, exist_ok=True)
            document = {key: record.to_dict() for key, record in self._records.items()}

            with open(temp_path, 'w', encoding='utf-8') as f:
                self._lock_file(f, exclusive=True)
                try:
                    json.dump(document, f, ensure_ascii=False, indent=2)
                finally:
                    self._unlock_file(f)

            temp_path.replace(self._cache_path)
            logger.debug(f"Saved metadata cache with {len(document)} entries")
            return True

        except OSError as e:
            logger.error(f"Metadata cache write error: {e}")
            try:
                temp_path.unlink(missing_ok=True)
            except OSError:
                pass
            return False

    def get(
        self,
        external_id: str,
        content_type: str,
        api_key: str,
        cancel: Optional[CancellationToken] = None,
    ) -> FetchResult:
        """
        Return metadata for a TMDB id, fetching it on a miss.

        Failures are never cached and never raised.

        Args:
            external_id: TMDB id
            content_type: "movie" or "tv"
            api_key: TMDB API key (only needed on a miss)
            cancel: Optional cancellation token

        Returns:
            FetchResult

        Raises:
            OperationCancelled: If cancelled before the record was committed
        """
        if not external_id:
            return FetchResult.not_found("no TMDB id")

        key = str(external_id)
        record = self._records.get(key)
        if record is not None:
            metrics.inc("metadata_cache", labels={"result": "hit"})
            return FetchResult.found(record)

        metrics.inc("metadata_cache", labels={"result": "miss"})
        if self._client is None:
            return FetchResult.transient("no TMDB client configured")

        result = self._client.fetch_details(key, content_type, api_key, cancel=cancel)
        metrics.inc("metadata_fetch", labels={"status": result.status.value})

        if result.status != FetchStatus.FOUND:
            logger.debug(f"No metadata for {content_type}/{key}: {result.reason}")
            return result

        if cancel is not None:
            cancel.raise_if_cancelled()

        with self._lock:
            self._records[key] = result.record
            self._save()

        logger.debug(
            f"Cached {content_type}/{key}: lang={result.record.original_language} "
            f"origin={result.record.origin_countries}"
        )
        return result

    def peek(self, external_id: str) -> Optional[MetadataRecord]:
        """Return a cached record without touching the network."""
        if not external_id:
            return None
        return self._records.get(str(external_id))

    def put(self, record: MetadataRecord) -> None:
        """Insert a record directly (imports and tests) and persist."""
        with self._lock:
            self._records[record.external_id] = record
            self._save()

    def keys(self) -> List[str]:
        with self._lock:
            return list(self._records.keys())

    def __len__(self) -> int:
        return len(self._records)

    def __contains__(self, external_id: object) -> bool:
        return str(external_id) in self._records

    def stats(self) -> Dict[str, Any]:
        """
        Get cache statistics.

        Returns:
            Dict with cache stats
        """
        try:
            size = self._cache_path.stat().st_size if self._cache_path.exists() else 0
        except OSError:
            size = 0
        return {
            "total_entries": len(self._records),
            "path": str(self._cache_path),
            "file_size_kb": round(size / 1024, 1),
            "hits": metrics.get_counter("metadata_cache", labels={"result": "hit"}),
            "misses": metrics.get_counter("metadata_cache", labels={"result": "miss"}),
        }
