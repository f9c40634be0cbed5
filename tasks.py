"""
Drivers that walk the library and hand items to the reconciler.

Provides:
- CleanupGate: process-wide "cleanup in progress" flag with cooldown
- TagUpdateTask: full sweep adding tags (scheduled daily, or on demand)
- TagCleanupTask: full sweep removing every SmartTags tag (explicit opt-in)
- ItemChangedHandler: reactive tagging of a single added/updated item
- DailyScheduler: background thread firing the update sweep once a day
- BackgroundTaskRunner: runs sweeps on worker threads and tracks their status
"""

import logging
import threading
import uuid
from contextlib import contextmanager
from dataclasses import dataclass, asdict
from datetime import datetime, timedelta
from typing import Callable, Dict, Any, Optional

from cancellation import CancellationToken, OperationCancelled, sleep
from config import ConfigStore
from constants import (
    CLEANUP_COOLDOWN,
    DEFAULT_UPDATE_HOUR,
    ITEM_CHANGED_TIMEOUT,
    ItemType,
    PROGRESS_REPORT_EVERY,
)
from library import LibraryRepository
from logging_config import set_request_id
from metrics import metrics
from models import MediaItem, utc_now_iso
from reconciler import Reconciler, ReconcileResult
from top_list import TopListSource

logger = logging.getLogger(__name__)

TAGGABLE_TYPES = (ItemType.MOVIE.value, ItemType.SERIES.value)

ProgressCallback = Callable[[int, int], None]


def is_taggable(item: Optional[MediaItem]) -> bool:
    """Movies and series that exist on disk; episodes and virtual items are skipped."""
    return item is not None and item.item_type in TAGGABLE_TYPES and not item.is_virtual


class CleanupGate:
    """
    Shared "cleanup running" flag.

    The reactive handler and the update sweep check it so that neither
    re-adds the tags being removed, including on saves made by the cleanup
    sweep that the host reports back as item updates. The flag stays up for a short cooldown after the sweep to
    cover those late notifications.
    """

    def __init__(self):
        self._lock = threading.Lock()
        self._holders = 0

    @property
    def active(self) -> bool:
        with self._lock:
            return self._holders > 0

    @contextmanager
    def hold(self, cooldown: float = CLEANUP_COOLDOWN):
        with self._lock:
            self._holders += 1
        try:
            yield self
        finally:
            try:
                sleep(cooldown)
            finally:
                with self._lock:
                    self._holders -= 1


@dataclass
class TaskSummary:
    """Result of one sweep."""
    total: int = 0
    updated: int = 0
    failed: int = 0
    skipped_reason: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)


def _report(progress: Optional[ProgressCallback], done: int, total: int) -> None:
    if progress is None:
        return
    try:
        progress(done, total)
    except Exception as e:
        logger.debug(f"Progress callback failed: {e}")


class TagUpdateTask:
    """
    Sweep adding tags to every taggable item.

    Per-item lookup failures never fail the sweep; items whose metadata was
    unavailable are simply picked up again on the next run. The sweep does
    not start, and stops early, while a cleanup holds the gate.
    """

    name = "update"

    def __init__(
        self,
        library: LibraryRepository,
        config_store: ConfigStore,
        reconciler: Reconciler,
        top_list: Optional[TopListSource] = None,
        gate: Optional[CleanupGate] = None,
    ):
        self.library = library
        self.config_store = config_store
        self.reconciler = reconciler
        self.top_list = top_list
        self.gate = gate

    def _cleanup_running(self) -> bool:
        return self.gate is not None and self.gate.active

    def run(
        self,
        cancel: Optional[CancellationToken] = None,
        progress: Optional[ProgressCallback] = None,
    ) -> TaskSummary:
        """
        Run the sweep.

        Args:
            cancel: Optional token; cancellation stops the sweep between items
            progress: Optional callback(done, total), called every few items

        Returns:
            TaskSummary

        Raises:
            OperationCancelled: If cancelled
        """
        if self._cleanup_running():
            logger.warning("Tag cleanup in progress, skipping tag update")
            return TaskSummary(skipped_reason="cleanup_running")

        config = self.config_store.get()
        if not config.has_api_key:
            logger.warning("TMDB API key not configured, skipping tag update")
            return TaskSummary(skipped_reason="missing_api_key")

        if config.enable_imdb_top_tags and self.top_list is not None:
            self.top_list.refresh(cancel)

        items = [i for i in self.library.iter_items(TAGGABLE_TYPES) if is_taggable(i)]
        summary = TaskSummary(total=len(items))
        logger.info(f"Tag update started: {summary.total} items")

        with metrics.timer("task_ms", labels={"task": self.name}):
            for index, item in enumerate(items, start=1):
                if cancel is not None:
                    cancel.raise_if_cancelled()
                if self._cleanup_running():
                    logger.warning(f"Tag cleanup started, stopping tag update after {index - 1} items")
                    summary.skipped_reason = "cleanup_running"
                    break
                try:
                    result = self.reconciler.apply(item, config, cancel=cancel)
                    if result.changed:
                        self.library.save_item(item)
                        summary.updated += 1
                except OperationCancelled:
                    raise
                except Exception as e:
                    summary.failed += 1
                    logger.error(f"Failed to tag \"{item.name}\" ({item.item_id}): {e}", exc_info=True)

                if index % PROGRESS_REPORT_EVERY == 0:
                    _report(progress, index, summary.total)

        _report(progress, summary.total, summary.total)
        metrics.inc("items_updated", amount=summary.updated)
        logger.info(
            f"Tag update finished: {summary.updated}/{summary.total} items changed, "
            f"{summary.failed} failed",
            extra={"task": self.name},
        )
        return summary


class TagCleanupTask:
    """
    Sweep removing every tag SmartTags may have written.

    Only runs when the user switched `enable_cleanup` on; the switch is turned
    off again when the sweep ends, whatever the outcome.
    """

    name = "cleanup"

    def __init__(
        self,
        library: LibraryRepository,
        config_store: ConfigStore,
        reconciler: Reconciler,
        gate: CleanupGate,
        cooldown: float = CLEANUP_COOLDOWN,
    ):
        self.library = library
        self.config_store = config_store
        self.reconciler = reconciler
        self.gate = gate
        self.cooldown = cooldown

    def run(
        self,
        cancel: Optional[CancellationToken] = None,
        progress: Optional[ProgressCallback] = None,
    ) -> TaskSummary:
        """
        Run the cleanup sweep.

        Raises:
            OperationCancelled: If cancelled
            Exception: Any library failure, after the gate is released
        """
        if not self.config_store.get().enable_cleanup:
            logger.warning("Cleanup requested but enable_cleanup is off, refusing to run")
            return TaskSummary(skipped_reason="cleanup_disabled")

        try:
            with self.gate.hold(self.cooldown):
                items = [i for i in self.library.iter_items(TAGGABLE_TYPES) if is_taggable(i)]
                summary = TaskSummary(total=len(items))
                logger.info(f"Tag cleanup started: {summary.total} items")

                with metrics.timer("task_ms", labels={"task": self.name}):
                    for index, item in enumerate(items, start=1):
                        if cancel is not None:
                            cancel.raise_if_cancelled()
                        result = self.reconciler.cleanup(item)
                        if result.changed:
                            self.library.save_item(item)
                            summary.updated += 1
                        if index % PROGRESS_REPORT_EVERY == 0:
                            _report(progress, index, summary.total)

                _report(progress, summary.total, summary.total)
                logger.info(
                    f"Tag cleanup finished: {summary.updated}/{summary.total} items changed",
                    extra={"task": self.name},
                )
                return summary
        finally:
            self.config_store.reset_cleanup()


class ItemChangedHandler:
    """
    Tags a single item when the host reports it added or updated.

    Never raises: a failing notification must not disturb the host.
    """

    def __init__(
        self,
        library: LibraryRepository,
        config_store: ConfigStore,
        reconciler: Reconciler,
        gate: CleanupGate,
        top_list: Optional[TopListSource] = None,
        timeout: float = ITEM_CHANGED_TIMEOUT,
    ):
        self.library = library
        self.config_store = config_store
        self.reconciler = reconciler
        self.gate = gate
        self.top_list = top_list
        self.timeout = timeout

    def handle(self, item_id: str, parent: Optional[CancellationToken] = None) -> Optional[ReconcileResult]:
        """
        Reconcile one item.

        Args:
            item_id: Host item id
            parent: Optional token (service shutdown) bounding the work

        Returns:
            ReconcileResult, or None when the event was ignored or failed
        """
        if self.gate.active:
            logger.debug(f"Cleanup in progress, ignoring change of item {item_id}")
            metrics.inc("item_events", labels={"result": "suppressed"})
            return None

        config = self.config_store.get()
        if not config.enable_realtime_monitor or not config.has_api_key:
            metrics.inc("item_events", labels={"result": "disabled"})
            return None

        try:
            item = self.library.get_item(item_id)
            if not is_taggable(item):
                metrics.inc("item_events", labels={"result": "ignored"})
                return None

            cancel = CancellationToken(timeout=self.timeout, parent=parent)
            if config.enable_imdb_top_tags and self.top_list is not None:
                self.top_list.ensure_loaded(cancel)
            result = self.reconciler.apply(item, config, cancel=cancel)
            if result.changed:
                self.library.save_item(item)
            metrics.inc("item_events", labels={"result": "changed" if result.changed else "unchanged"})
            return result
        except OperationCancelled:
            metrics.inc("item_events", labels={"result": "timeout"})
            logger.warning(f"Tagging item {item_id} timed out after {self.timeout:.0f}s")
        except Exception as e:
            metrics.inc("item_events", labels={"result": "error"})
            logger.error(f"Realtime tagging failed for item {item_id}: {e}", exc_info=True)
        return None


class DailyScheduler(threading.Thread):
    """
    Fires a callback once a day at a fixed local hour.

    Usage:
        scheduler = DailyScheduler(lambda: runner.start(update_task))
        scheduler.start()
        ...
        scheduler.shutdown()
    """

    def __init__(
        self,
        callback: Callable[[], Any],
        hour: int = DEFAULT_UPDATE_HOUR,
        now: Callable[[], datetime] = datetime.now,
    ):
        super().__init__(daemon=True)
        self.name = "DailyScheduler"
        if not 0 <= hour <= 23:
            raise ValueError(f"hour must be 0-23, got {hour}")
        self.callback = callback
        self.hour = hour
        self._now = now
        self.shutdown_flag = threading.Event()

    def next_run(self, after: Optional[datetime] = None) -> datetime:
        """Next trigger time strictly after `after` (default: now)."""
        after = after or self._now()
        candidate = after.replace(hour=self.hour, minute=0, second=0, microsecond=0)
        if candidate <= after:
            candidate += timedelta(days=1)
        return candidate

    def run(self) -> None:
        logger.info(f"{self.name} started, daily run at {self.hour:02d}:00")
        while not self.shutdown_flag.is_set():
            target = self.next_run()
            delay = (target - self._now()).total_seconds()
            if self.shutdown_flag.wait(max(0.0, delay)):
                break
            try:
                self.callback()
            except Exception as e:
                logger.error(f"Scheduled run failed: {e}", exc_info=True)
        logger.info(f"{self.name} stopped")

    def shutdown(self) -> None:
        self.shutdown_flag.set()


class BackgroundTaskRunner:
    """
    Runs sweeps on worker threads, one at a time per task name.

    Status per task:
        {"state": "idle|running|completed|failed|cancelled", "run_id": ...,
         "started_at": ..., "finished_at": ..., "progress": {...},
         "summary": {...}, "error": ...}
    """

    def __init__(self):
        self._lock = threading.Lock()
        self._threads: Dict[str, threading.Thread] = {}
        self._tokens: Dict[str, CancellationToken] = {}
        self._status: Dict[str, Dict[str, Any]] = {}

    def _set(self, name: str, **fields) -> None:
        with self._lock:
            self._status.setdefault(name, {"state": "idle"}).update(fields)

    def is_running(self, name: str) -> bool:
        with self._lock:
            thread = self._threads.get(name)
            return thread is not None and thread.is_alive()

    def start(self, task) -> Optional[str]:
        """
        Start `task.run` in the background.

        Returns:
            The run id, or None if that task is already running
        """
        with self._lock:
            current = self._threads.get(task.name)
            if current is not None and current.is_alive():
                return None
            run_id = f"{task.name}-{uuid.uuid4().hex[:6]}"
            token = CancellationToken()
            thread = threading.Thread(
                target=self._worker,
                args=(task, run_id, token),
                name=f"smarttags_{task.name}",
                daemon=True,
            )
            self._threads[task.name] = thread
            self._tokens[task.name] = token
            self._status[task.name] = {
                "state": "running",
                "run_id": run_id,
                "started_at": utc_now_iso(),
                "finished_at": None,
                "progress": {"done": 0, "total": None},
                "summary": None,
                "error": None,
            }
        thread.start()
        return run_id

    def _worker(self, task, run_id: str, token: CancellationToken) -> None:
        set_request_id(run_id)

        def progress(done: int, total: int) -> None:
            self._set(task.name, progress={"done": done, "total": total})

        try:
            summary = task.run(cancel=token, progress=progress)
            self._set(task.name, state="completed", summary=summary.to_dict())
        except OperationCancelled:
            logger.warning(f"Task {task.name} cancelled")
            self._set(task.name, state="cancelled")
        except Exception as e:
            logger.error(f"Task {task.name} failed: {e}", exc_info=True)
            self._set(task.name, state="failed", error=str(e))
        finally:
            self._set(task.name, finished_at=utc_now_iso())
            metrics.inc("task_runs", labels={"task": task.name, "state": self.status(task.name)["state"]})

    def cancel(self, name: str) -> bool:
        with self._lock:
            token = self._tokens.get(name)
            thread = self._threads.get(name)
            if token is None or thread is None or not thread.is_alive():
                return False
            token.cancel()
            return True

    def join(self, name: str, timeout: Optional[float] = None) -> None:
        with self._lock:
            thread = self._threads.get(name)
        if thread is not None:
            thread.join(timeout)

    def status(self, name: str) -> Dict[str, Any]:
        with self._lock:
            return dict(self._status.get(name, {"state": "idle"}))

    def all_status(self) -> Dict[str, Dict[str, Any]]:
        with self._lock:
            return {name: dict(s) for name, s in self._status.items()}
