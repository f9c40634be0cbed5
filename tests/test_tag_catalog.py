#!/usr/bin/env python3
"""Tests for the tag catalog: decades, studios, versioned literals"""

import pytest
import sys
from pathlib import Path

sys.path.insert(0, str(Path(__file__).parent.parent))

from constants import DecadeStyle
from tag_catalog import (
    CATALOG,
    IMDB_TOP_TAG,
    all_list_tags,
    all_media_info_tags,
    all_static_tags,
    all_studio_tags,
    decade_of,
    decade_variants,
    render_decade,
    studio_tags,
)


class TestDecades:
    """Decade flooring and rendering"""

    def test_2008_renderings(self):
        assert render_decade(2008, DecadeStyle.FOUR_DIGITS) == "2000年代"
        assert render_decade(2008, DecadeStyle.TWO_DIGITS) == "00年代"
        assert render_decade(2008, DecadeStyle.ENGLISH) == "2000s"

    def test_1995_renderings(self):
        assert render_decade(1995, DecadeStyle.FOUR_DIGITS) == "1990年代"
        assert render_decade(1995, DecadeStyle.TWO_DIGITS) == "90年代"
        assert render_decade(1995, DecadeStyle.ENGLISH) == "1990s"

    def test_default_style_is_four_digits(self):
        assert render_decade(2021) == "2020年代"

    @pytest.mark.parametrize("year", [None, 0, 1849, 1200])
    def test_excluded_years(self, year):
        assert decade_of(year) is None
        assert render_decade(year) is None
        assert decade_variants(year) == []

    def test_lower_bound_included(self):
        assert render_decade(1850) == "1850年代"

    def test_variants_include_legacy_unpadded_form(self):
        assert decade_variants(2008) == ["2000年代", "00年代", "2000s", "0年代"]

    def test_variants_without_distinct_legacy_form(self):
        assert decade_variants(1995) == ["1990年代", "90年代", "1990s"]


class TestStudios:
    """Studio/network label matching"""

    def test_company_and_network_labels(self):
        assert studio_tags({420, 2}, {213}) == ["Disney", "Marvel", "Netflix"]

    def test_label_matched_twice_listed_once(self):
        assert studio_tags({20580}, {1024}) == ["Amazon"]

    def test_no_match(self):
        assert studio_tags({999999}, set()) == []
        assert studio_tags(None, None) == []


class TestCatalog:
    """Every literal ever produced stays enumerable"""

    def test_revisions_are_ordered(self):
        versions = [rev.version for rev in CATALOG]
        assert versions == sorted(versions, key=lambda v: tuple(int(p) for p in v.split(".")))

    def test_media_info_literals(self):
        assert all_media_info_tags() == [
            "4K", "1080p", "720p", "Dolby Vision", "HDR", "Atmos", "DTS:X", "TrueHD", "DTS-HD MA",
        ]

    def test_list_literals(self):
        assert all_list_tags() == [IMDB_TOP_TAG]

    def test_studio_literals_unique(self):
        labels = all_studio_tags()
        assert len(labels) == len(set(labels))
        assert "HBO" in labels and "Ghibli" in labels

    def test_static_tags_union(self):
        static = all_static_tags()
        assert IMDB_TOP_TAG in static
        assert "4K" in static
        assert "TVB" in static
        assert len(static) == len(set(static))
