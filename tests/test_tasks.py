#!/usr/bin/env python3
"""Tests for the update/cleanup sweeps, reactive handler, gate and scheduler"""

import pytest
import sys
import threading
from datetime import datetime
from pathlib import Path
from unittest.mock import MagicMock

sys.path.insert(0, str(Path(__file__).parent.parent))

from cache import MetadataCache
from cancellation import CancellationToken, OperationCancelled
from config import ConfigStore
from library import InMemoryLibrary
from models import FetchResult, MediaItem, MediaStream, MetadataRecord
from reconciler import ReconcileResult, Reconciler
from tagging import TagSynthesizer
from tasks import (
    BackgroundTaskRunner,
    CleanupGate,
    DailyScheduler,
    ItemChangedHandler,
    TagCleanupTask,
    TagUpdateTask,
    TaskSummary,
    is_taggable,
)


def movie(item_id, tags=(), item_type="Movie", is_virtual=False, year=1994):
    return MediaItem(
        item_id=item_id,
        name=f"Item {item_id}",
        item_type=item_type,
        provider_ids={"Tmdb": item_id},
        production_year=year,
        streams=[MediaStream("Video", width=1920)],
        tags=list(tags),
        is_virtual=is_virtual,
    )


@pytest.fixture(autouse=True)
def no_env_key(monkeypatch):
    monkeypatch.delenv("TMDB_API_KEY", raising=False)


@pytest.fixture
def library():
    return InMemoryLibrary([
        movie("1", tags=["Favorite"]),
        movie("2", item_type="Series"),
        movie("3", item_type="Episode"),
        movie("4", is_virtual=True),
    ])


@pytest.fixture
def store(tmp_path):
    store = ConfigStore(str(tmp_path))
    store.update({
        "tmdb_api_key": "KEY",
        "enable_decade_tags": True,
        "enable_resolution_tags": True,
        "enable_country_tags": True,
    })
    return store


@pytest.fixture
def client():
    client = MagicMock()
    client.fetch_details.side_effect = lambda external_id, *args, **kwargs: FetchResult.found(
        MetadataRecord(external_id=external_id, original_language="fr", origin_countries=["FR"])
    )
    return client


@pytest.fixture
def reconciler(tmp_path, client):
    return Reconciler(TagSynthesizer(MetadataCache(str(tmp_path), client=client)))


@pytest.fixture
def gate():
    return CleanupGate()


class TestIsTaggable:

    @pytest.mark.parametrize("item_type", ["Movie", "Series"])
    def test_movies_and_series(self, item_type):
        assert is_taggable(movie("1", item_type=item_type))

    @pytest.mark.parametrize("item_type", ["Episode", "Season", "BoxSet"])
    def test_other_types(self, item_type):
        assert not is_taggable(movie("1", item_type=item_type))

    def test_virtual_and_missing(self):
        assert not is_taggable(movie("1", is_virtual=True))
        assert not is_taggable(None)


class TestCleanupGate:

    def test_hold_sets_and_clears(self, gate):
        assert not gate.active
        with gate.hold(cooldown=0):
            assert gate.active
        assert not gate.active

    def test_cleared_on_error(self, gate):
        with pytest.raises(RuntimeError):
            with gate.hold(cooldown=0):
                raise RuntimeError("boom")
        assert not gate.active

    def test_cooldown_keeps_gate_up(self, gate):
        body_done = threading.Event()

        def sweep():
            with gate.hold(cooldown=0.5):
                body_done.set()

        worker = threading.Thread(target=sweep)
        worker.start()
        assert body_done.wait(timeout=5)
        assert gate.active
        worker.join(timeout=5)
        assert not gate.active


class TestTagUpdateTask:

    def test_tags_movies_and_series_only(self, library, store, reconciler):
        summary = TagUpdateTask(library, store, reconciler).run()

        assert summary.total == 2
        assert summary.updated == 2
        assert library.get_item("1").tags == ["Favorite", "1990年代", "1080p", "法国"]
        assert library.get_item("2").tags == ["1990年代", "1080p", "法国"]
        assert library.get_item("3").tags == []
        assert library.get_item("4").tags == []

    def test_second_run_saves_nothing(self, library, store, reconciler):
        task = TagUpdateTask(library, store, reconciler)
        task.run()
        saves = library.save_count

        summary = task.run()
        assert summary.updated == 0
        assert library.save_count == saves

    def test_missing_api_key_skips(self, library, tmp_path, reconciler):
        store = ConfigStore(str(tmp_path / "nokey"))
        summary = TagUpdateTask(library, store, reconciler).run()
        assert summary.skipped_reason == "missing_api_key"
        assert library.save_count == 0

    def test_item_failure_does_not_stop_sweep(self, library, store):
        reconciler = MagicMock()
        reconciler.apply.side_effect = [RuntimeError("boom"), ReconcileResult(changed=True, added=["x"])]
        summary = TagUpdateTask(library, store, reconciler).run()
        assert summary.failed == 1
        assert summary.updated == 1

    def test_transient_fetch_errors_are_not_failures(self, library, store, reconciler, client):
        client.fetch_details.side_effect = None
        client.fetch_details.return_value = FetchResult.transient("HTTP 503")
        summary = TagUpdateTask(library, store, reconciler).run()
        assert summary.failed == 0
        assert library.get_item("1").tags == ["Favorite", "1990年代", "1080p"]

    def test_cancellation_propagates(self, library, store, reconciler):
        token = CancellationToken()
        token.cancel()
        with pytest.raises(OperationCancelled):
            TagUpdateTask(library, store, reconciler).run(cancel=token)
        assert library.save_count == 0

    def test_progress_reported(self, store, reconciler):
        library = InMemoryLibrary([movie(str(i)) for i in range(120)])
        calls = []
        TagUpdateTask(library, store, reconciler).run(progress=lambda done, total: calls.append((done, total)))
        assert calls == [(50, 120), (100, 120), (120, 120)]

    def test_top_list_refreshed_when_enabled(self, library, store, reconciler):
        store.update({"enable_imdb_top_tags": True})
        top_list = MagicMock()
        TagUpdateTask(library, store, reconciler, top_list=top_list).run()
        top_list.refresh.assert_called_once()

    def test_top_list_untouched_when_disabled(self, library, store, reconciler):
        top_list = MagicMock()
        TagUpdateTask(library, store, reconciler, top_list=top_list).run()
        top_list.refresh.assert_not_called()

    def test_skipped_while_cleanup_holds_gate(self, library, store, reconciler, gate):
        with gate.hold(cooldown=0):
            summary = TagUpdateTask(library, store, reconciler, gate=gate).run()

        assert summary.skipped_reason == "cleanup_running"
        assert summary.updated == 0
        assert library.save_count == 0
        assert library.get_item("1").tags == ["Favorite"]

    def test_stops_when_cleanup_starts_mid_sweep(self, library, store, gate):
        held = gate.hold(cooldown=0)
        reconciler = MagicMock()

        def apply_then_start_cleanup(item, config, cancel=None):
            held.__enter__()
            return ReconcileResult(changed=True, added=["x"])

        reconciler.apply.side_effect = apply_then_start_cleanup
        try:
            summary = TagUpdateTask(library, store, reconciler, gate=gate).run()
        finally:
            held.__exit__(None, None, None)

        assert reconciler.apply.call_count == 1
        assert summary.updated == 1
        assert summary.skipped_reason == "cleanup_running"


class TestTagCleanupTask:

    def test_refuses_when_disabled(self, library, store, reconciler, gate):
        summary = TagCleanupTask(library, store, reconciler, gate, cooldown=0).run()
        assert summary.skipped_reason == "cleanup_disabled"
        assert library.save_count == 0

    def test_removes_tags_and_resets_switch(self, library, store, reconciler, gate):
        TagUpdateTask(library, store, reconciler).run()
        store.update({"enable_cleanup": True})

        summary = TagCleanupTask(library, store, reconciler, gate, cooldown=0).run()
        assert summary.updated == 2
        assert library.get_item("1").tags == ["Favorite"]
        assert library.get_item("2").tags == []
        assert store.get().enable_cleanup is False
        assert not gate.active

    def test_gate_held_during_sweep(self, library, store, gate):
        store.update({"enable_cleanup": True})
        reconciler = MagicMock()
        observed = []

        def cleanup(item):
            observed.append(gate.active)
            return ReconcileResult()

        reconciler.cleanup.side_effect = cleanup
        TagCleanupTask(library, store, reconciler, gate, cooldown=0).run()
        assert observed and all(observed)

    def test_failure_propagates_after_release(self, library, store, reconciler, gate):
        library.add_item(movie("5", tags=["1990年代"]))
        store.update({"enable_cleanup": True})
        library.save_item = MagicMock(side_effect=OSError("disk full"))

        with pytest.raises(OSError):
            TagCleanupTask(library, store, reconciler, gate, cooldown=0).run()
        assert not gate.active
        assert store.get().enable_cleanup is False


class TestItemChangedHandler:

    @pytest.fixture
    def handler(self, library, store, reconciler, gate):
        return ItemChangedHandler(library, store, reconciler, gate)

    def test_tags_item(self, handler, library):
        result = handler.handle("1")
        assert result.changed
        assert library.get_item("1").tags == ["Favorite", "1990年代", "1080p", "法国"]

    def test_suppressed_during_cleanup(self, handler, library, gate):
        with gate.hold(cooldown=0):
            assert handler.handle("1") is None
        assert library.get_item("1").tags == ["Favorite"]

    def test_realtime_disabled(self, handler, library, store):
        store.update({"enable_realtime_monitor": False})
        assert handler.handle("1") is None
        assert library.save_count == 0

    def test_missing_api_key(self, handler, store):
        store.update({"tmdb_api_key": ""})
        assert handler.handle("1") is None

    @pytest.mark.parametrize("item_id", ["3", "4", "does-not-exist"])
    def test_ignored_items(self, handler, library, item_id):
        assert handler.handle(item_id) is None
        assert library.save_count == 0

    def test_errors_are_swallowed(self, handler, library):
        library.get_item = MagicMock(side_effect=RuntimeError("host down"))
        assert handler.handle("1") is None

    def test_shutdown_token_cancels(self, handler, library, client):
        parent = CancellationToken()
        parent.cancel()
        assert handler.handle("1", parent=parent) is None
        assert library.save_count == 0

    def test_unchanged_item_not_saved(self, handler, library):
        handler.handle("1")
        saves = library.save_count
        result = handler.handle("1")
        assert not result.changed
        assert library.save_count == saves


class TestDailyScheduler:

    def test_later_same_day(self):
        scheduler = DailyScheduler(lambda: None, hour=4)
        assert scheduler.next_run(datetime(2026, 3, 1, 2, 30)) == datetime(2026, 3, 1, 4, 0)

    def test_next_day_after_hour(self):
        scheduler = DailyScheduler(lambda: None, hour=4)
        assert scheduler.next_run(datetime(2026, 3, 1, 5, 0)) == datetime(2026, 3, 2, 4, 0)

    def test_exactly_on_hour_schedules_tomorrow(self):
        scheduler = DailyScheduler(lambda: None, hour=4)
        assert scheduler.next_run(datetime(2026, 12, 31, 4, 0)) == datetime(2027, 1, 1, 4, 0)

    def test_invalid_hour(self):
        with pytest.raises(ValueError):
            DailyScheduler(lambda: None, hour=24)

    def test_fires_and_stops(self):
        fired = threading.Event()
        now = {"value": datetime(2026, 3, 1, 3, 59, 59, 900000)}
        scheduler = DailyScheduler(fired.set, hour=4, now=lambda: now["value"])
        scheduler.start()
        assert fired.wait(timeout=5)
        scheduler.shutdown()
        scheduler.join(timeout=5)
        assert not scheduler.is_alive()


class TestBackgroundTaskRunner:

    def make_task(self, name="update", run=None):
        task = MagicMock()
        task.name = name
        task.run.side_effect = run or (lambda cancel=None, progress=None: TaskSummary(total=1, updated=1))
        return task

    def test_completed(self):
        runner = BackgroundTaskRunner()
        run_id = runner.start(self.make_task())
        assert run_id.startswith("update-")
        runner.join("update", timeout=5)
        status = runner.status("update")
        assert status["state"] == "completed"
        assert status["summary"]["updated"] == 1
        assert status["finished_at"]

    def test_failed(self):
        def fail(cancel=None, progress=None):
            raise RuntimeError("library offline")

        runner = BackgroundTaskRunner()
        runner.start(self.make_task(run=fail))
        runner.join("update", timeout=5)
        status = runner.status("update")
        assert status["state"] == "failed"
        assert "library offline" in status["error"]

    def test_single_run_per_task_and_cancel(self):
        started = threading.Event()

        def block(cancel=None, progress=None):
            started.set()
            cancel.wait(30)
            return TaskSummary()

        runner = BackgroundTaskRunner()
        assert runner.start(self.make_task(run=block)) is not None
        assert started.wait(timeout=5)
        assert runner.start(self.make_task()) is None
        assert runner.is_running("update")

        assert runner.cancel("update")
        runner.join("update", timeout=5)
        assert runner.status("update")["state"] == "cancelled"

    def test_idle_status(self):
        assert BackgroundTaskRunner().status("cleanup") == {"state": "idle"}
