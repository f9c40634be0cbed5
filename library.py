"""
Host library boundary.

The media server owns items and their persistence; SmartTags only needs to
enumerate items, look one up by id, and hand back an edited tag list.

Implementations:
- InMemoryLibrary: thread-safe dict of items (tests, embedding)
- JsonFileLibrary: the same, loaded from and saved back to a JSON export
"""

import copy
import json
import logging
import threading
from abc import ABC, abstractmethod
from pathlib import Path
from typing import Dict, Iterable, Iterator, List, Optional

from models import MediaItem

logger = logging.getLogger(__name__)


class LibraryRepository(ABC):
    """What SmartTags needs from the host media library."""

    @abstractmethod
    def iter_items(self, item_types: Iterable[str]) -> Iterator[MediaItem]:
        """Yield items of the given types (including virtual ones)."""

    @abstractmethod
    def get_item(self, item_id: str) -> Optional[MediaItem]:
        """Fetch one item, or None if it no longer exists."""

    @abstractmethod
    def save_item(self, item: MediaItem) -> None:
        """Persist an item whose tags were edited."""


class InMemoryLibrary(LibraryRepository):
    """
    Dict-backed library.

    Items handed out are copies, so a caller's in-flight edit is only
    visible to others once it has been saved.
    """

    def __init__(self, items: Iterable[MediaItem] = ()):
        self._lock = threading.Lock()
        self._items: Dict[str, MediaItem] = {item.item_id: copy.deepcopy(item) for item in items}
        self.save_count = 0

    def iter_items(self, item_types: Iterable[str]) -> Iterator[MediaItem]:
        wanted = set(item_types)
        with self._lock:
            snapshot = [copy.deepcopy(i) for i in self._items.values() if i.item_type in wanted]
        return iter(snapshot)

    def get_item(self, item_id: str) -> Optional[MediaItem]:
        with self._lock:
            item = self._items.get(str(item_id))
            return copy.deepcopy(item) if item is not None else None

    def save_item(self, item: MediaItem) -> None:
        with self._lock:
            self._items[item.item_id] = copy.deepcopy(item)
            self.save_count += 1
            self._persist_locked()

    def add_item(self, item: MediaItem) -> None:
        with self._lock:
            self._items[item.item_id] = copy.deepcopy(item)
            self._persist_locked()

    def all_items(self) -> List[MediaItem]:
        with self._lock:
            return [copy.deepcopy(i) for i in self._items.values()]

    def _persist_locked(self) -> None:
        """Hook for durable subclasses; called with the lock held."""


class JsonFileLibrary(InMemoryLibrary):
    """
    Library loaded from a JSON export of the host and written back on save.

    File format:
        {"items": [{"id": "1", "name": "...", "type": "Movie", "tags": [...], ...}]}
    """

    def __init__(self, path: str):
        self._path = Path(path)
        super().__init__(self._load())

    def _load(self) -> List[MediaItem]:
        if not self._path.exists():
            logger.warning(f"Library file {self._path} not found, starting with an empty library")
            return []
        try:
            data = json.loads(self._path.read_text(encoding='utf-8'))
        except (OSError, ValueError) as e:
            logger.error(f"Failed to read library file {self._path}: {e}")
            return []

        items = []
        for raw in data.get("items", []) if isinstance(data, dict) else []:
            try:
                items.append(MediaItem.from_dict(raw))
            except (KeyError, TypeError, ValueError) as e:
                logger.warning(f"Skipping malformed library item: {e}")
        logger.info(f"Loaded {len(items)} library items from {self._path}")
        return items

    def _persist_locked(self) -> None:
        temp_path = self._path.with_suffix('.tmp')
        try:
            self._path.parent.mkdir(parents=True, exist_ok=True)
            document = {"items": [i.to_dict() for i in self._items.values()]}
            temp_path.write_text(json.dumps(document, ensure_ascii=False, indent=2), encoding='utf-8')
            temp_path.replace(self._path)
        except OSError as e:
            logger.error(f"Failed to write library file {self._path}: {e}")
