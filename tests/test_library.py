#!/usr/bin/env python3
"""Tests for the library repositories"""

import json
import sys
from pathlib import Path

sys.path.insert(0, str(Path(__file__).parent.parent))

from library import InMemoryLibrary, JsonFileLibrary
from models import MediaItem, MediaStream


def item(item_id="1", item_type="Movie", tags=("Drama",)):
    return MediaItem(
        item_id=item_id,
        name="Chungking Express",
        item_type=item_type,
        provider_ids={"Tmdb": "11104", "Imdb": "tt0109424"},
        production_year=1994,
        streams=[MediaStream("Video", width=1920, video_range="SDR")],
        tags=list(tags),
    )


class TestInMemoryLibrary:

    def test_filter_by_type(self):
        library = InMemoryLibrary([item("1"), item("2", item_type="Episode")])
        assert [i.item_id for i in library.iter_items(["Movie"])] == ["1"]

    def test_edits_invisible_until_saved(self):
        library = InMemoryLibrary([item()])
        copy = library.get_item("1")
        copy.tags.append("4K")
        assert library.get_item("1").tags == ["Drama"]

        library.save_item(copy)
        assert library.get_item("1").tags == ["Drama", "4K"]
        assert library.save_count == 1

    def test_missing_item(self):
        assert InMemoryLibrary().get_item("nope") is None


class TestJsonFileLibrary:

    def test_round_trip(self, tmp_path):
        path = tmp_path / "library.json"
        path.write_text(json.dumps({"items": [item().to_dict()]}), encoding="utf-8")

        library = JsonFileLibrary(str(path))
        loaded = library.get_item("1")
        assert loaded.tmdb_id == "11104"
        assert loaded.imdb_id == "tt0109424"
        assert loaded.streams[0].width == 1920

        loaded.tags.append("90年代")
        library.save_item(loaded)

        reopened = JsonFileLibrary(str(path))
        assert reopened.get_item("1").tags == ["Drama", "90年代"]

    def test_missing_file(self, tmp_path):
        library = JsonFileLibrary(str(tmp_path / "absent.json"))
        assert library.all_items() == []

    def test_corrupt_file(self, tmp_path):
        path = tmp_path / "library.json"
        path.write_text("not json", encoding="utf-8")
        assert JsonFileLibrary(str(path)).all_items() == []

    def test_malformed_items_skipped(self, tmp_path):
        path = tmp_path / "library.json"
        path.write_text(json.dumps({"items": [{"name": "no id"}, item("7").to_dict()]}), encoding="utf-8")
        assert [i.item_id for i in JsonFileLibrary(str(path)).all_items()] == ["7"]
