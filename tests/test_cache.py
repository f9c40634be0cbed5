#!/usr/bin/env python3
"""Tests for the persistent TMDB metadata cache"""

import json
import pytest
import sys
import threading
from pathlib import Path
from unittest.mock import MagicMock

sys.path.insert(0, str(Path(__file__).parent.parent))

from cache import MetadataCache
from cancellation import CancellationToken, OperationCancelled
from constants import FetchStatus, METADATA_CACHE_FILE_NAME
from metrics import metrics
from models import FetchResult, MetadataRecord


def make_record(external_id="603", origins=("US",), language="en"):
    return MetadataRecord(
        external_id=external_id,
        alternate_id="tt0133093",
        original_language=language,
        origin_countries=list(origins),
        production_countries=["US", "AU"],
        production_company_ids={79, 174},
        last_updated="2026-01-01T00:00:00+00:00",
    )


@pytest.fixture(autouse=True)
def reset_metrics():
    metrics.reset()
    yield
    metrics.reset()


@pytest.fixture
def client():
    client = MagicMock()
    client.fetch_details.side_effect = lambda external_id, *args, **kwargs: FetchResult.found(
        make_record(external_id)
    )
    return client


@pytest.fixture
def cache(tmp_path, client):
    return MetadataCache(str(tmp_path), client=client)


class TestReadThrough:

    def test_miss_fetches_and_caches(self, cache, client):
        result = cache.get("603", "movie", "KEY")
        assert result.ok
        assert "603" in cache
        client.fetch_details.assert_called_once()

    def test_hit_does_not_fetch(self, cache, client):
        cache.get("603", "movie", "KEY")
        client.fetch_details.reset_mock()

        result = cache.get("603", "movie", "KEY")
        assert result.ok
        client.fetch_details.assert_not_called()
        assert metrics.get_counter("metadata_cache", labels={"result": "hit"}) == 1

    def test_failure_not_cached(self, cache, client):
        client.fetch_details.side_effect = None
        client.fetch_details.return_value = FetchResult.transient("malformed body")

        result = cache.get("603", "movie", "KEY")
        assert result.status == FetchStatus.TRANSIENT_ERROR
        assert "603" not in cache
        assert not cache.path.exists()

        cache.get("603", "movie", "KEY")
        assert client.fetch_details.call_count == 2

    def test_not_found_not_cached(self, cache, client):
        client.fetch_details.side_effect = None
        client.fetch_details.return_value = FetchResult.not_found("HTTP 404")
        assert cache.get("1", "movie", "KEY").status == FetchStatus.NOT_FOUND
        assert len(cache) == 0

    def test_cancel_before_commit(self, cache):
        token = CancellationToken()
        token.cancel()
        with pytest.raises(OperationCancelled):
            cache.get("603", "movie", "KEY", cancel=token)
        assert "603" not in cache
        assert not cache.path.exists()

    def test_missing_id(self, cache, client):
        assert cache.get("", "movie", "KEY").status == FetchStatus.NOT_FOUND
        client.fetch_details.assert_not_called()

    def test_without_client(self, tmp_path):
        cache = MetadataCache(str(tmp_path))
        assert cache.get("603", "movie", "KEY").status == FetchStatus.TRANSIENT_ERROR


class TestPersistence:

    def test_survives_restart(self, tmp_path, cache):
        cache.get("603", "movie", "KEY")
        reopened = MetadataCache(str(tmp_path))
        record = reopened.peek("603")
        assert record is not None
        assert record.origin_countries == ["US"]
        assert record.production_company_ids == {79, 174}

    def test_file_layout(self, cache):
        cache.put(make_record("10775", origins=("HK",), language="cn"))
        document = json.loads(cache.path.read_text(encoding="utf-8"))
        assert document["10775"]["origin_countries"] == ["HK"]
        assert document["10775"]["production_company_ids"] == [79, 174]

    def test_corrupt_file_starts_empty(self, tmp_path):
        (tmp_path / METADATA_CACHE_FILE_NAME).write_text("{not json", encoding="utf-8")
        cache = MetadataCache(str(tmp_path))
        assert len(cache) == 0

    def test_unexpected_layout_starts_empty(self, tmp_path):
        (tmp_path / METADATA_CACHE_FILE_NAME).write_text("[1, 2, 3]", encoding="utf-8")
        assert len(MetadataCache(str(tmp_path))) == 0

    def test_partial_entries_tolerated(self, tmp_path):
        document = {"42": {"origin_countries": ["FR"]}, "43": "junk"}
        (tmp_path / METADATA_CACHE_FILE_NAME).write_text(json.dumps(document), encoding="utf-8")
        cache = MetadataCache(str(tmp_path))
        assert cache.keys() == ["42"]
        record = cache.peek("42")
        assert record.external_id == "42"
        assert record.production_countries == []
        assert record.original_language is None

    def test_no_temp_file_left(self, cache):
        cache.get("603", "movie", "KEY")
        assert not cache.path.with_suffix(".tmp").exists()


class TestConcurrency:

    def test_parallel_misses_fetch_concurrently_and_all_persist(self, tmp_path):
        ids = ["101", "102", "103", "104"]
        # Every fetch waits until all are in flight; fetches serialized
        # behind the cache lock would break the barrier instead
        barrier = threading.Barrier(len(ids), timeout=5)

        def fetch(external_id, *args, **kwargs):
            barrier.wait()
            return FetchResult.found(make_record(external_id))

        client = MagicMock()
        client.fetch_details.side_effect = fetch
        cache = MetadataCache(str(tmp_path), client=client)

        results = {}
        errors = []

        def worker(external_id):
            try:
                results[external_id] = cache.get(external_id, "movie", "KEY")
            except Exception as e:
                errors.append(e)

        threads = [threading.Thread(target=worker, args=(i,)) for i in ids]
        for t in threads:
            t.start()
        for t in threads:
            t.join(timeout=10)

        assert errors == []
        assert all(results[i].ok for i in ids)
        assert sorted(cache.keys()) == ids

        reopened = MetadataCache(str(tmp_path))
        assert sorted(reopened.keys()) == ids
        assert reopened.peek("103").origin_countries == ["US"]


class TestInspection:

    def test_peek_never_fetches(self, cache, client):
        assert cache.peek("603") is None
        client.fetch_details.assert_not_called()

    def test_stats(self, cache):
        cache.get("603", "movie", "KEY")
        cache.get("603", "movie", "KEY")
        stats = cache.stats()
        assert stats["total_entries"] == 1
        assert stats["hits"] == 1
        assert stats["misses"] == 1
