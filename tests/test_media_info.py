#!/usr/bin/env python3
"""Tests for resolution / dynamic range / audio tags"""

import pytest
import sys
from pathlib import Path

sys.path.insert(0, str(Path(__file__).parent.parent))

from media_info import audio_tags, dynamic_range_tag, media_info_tags, resolution_tag
from models import MediaItem, MediaStream


def video(width=None, video_range=None, display_title=None):
    return MediaStream("Video", width=width, video_range=video_range, display_title=display_title)


def audio(codec=None, profile=None, display_title=None):
    return MediaStream("Audio", codec=codec, profile=profile, display_title=display_title)


def item(*streams):
    return MediaItem(item_id="1", name="Test", item_type="Movie", streams=list(streams))


class TestResolution:

    @pytest.mark.parametrize("width,tag", [
        (3840, "4K"), (3800, "4K"), (1920, "1080p"), (1900, "1080p"),
        (1280, "720p"), (1200, "720p"), (1199, None), (720, None),
    ])
    def test_thresholds(self, width, tag):
        assert resolution_tag(video(width=width)) == tag

    def test_missing_width(self):
        assert resolution_tag(video()) is None
        assert resolution_tag(None) is None


class TestDynamicRange:

    @pytest.mark.parametrize("video_range", ["HDR10", "hdr10+", "PQ", "HLG"])
    def test_hdr(self, video_range):
        assert dynamic_range_tag(video(video_range=video_range)) == "HDR"

    @pytest.mark.parametrize("video_range", ["Dolby Vision", "DOVI", "DOVIWithHDR10"])
    def test_dolby_vision_range(self, video_range):
        assert dynamic_range_tag(video(video_range=video_range)) == "Dolby Vision"

    def test_dolby_vision_from_title(self):
        stream = video(video_range="SDR", display_title="4K Dolby Vision HEVC")
        assert dynamic_range_tag(stream) == "Dolby Vision"

    def test_sdr(self):
        assert dynamic_range_tag(video(video_range="SDR")) is None


class TestAudio:

    def test_truehd_atmos(self):
        tags = audio_tags([audio(codec="truehd", profile="Dolby TrueHD + Dolby Atmos")])
        assert tags == ["Atmos", "TrueHD"]

    def test_dts_hd_ma(self):
        assert audio_tags([audio(codec="dts", profile="DTS-HD MA")]) == ["DTS-HD MA"]

    def test_dts_x(self):
        assert audio_tags([audio(codec="dts", display_title="DTS:X 7.1")]) == ["DTS:X"]

    def test_each_tag_once(self):
        streams = [
            audio(codec="eac3", display_title="English Atmos"),
            audio(codec="eac3", display_title="German Atmos"),
        ]
        assert audio_tags(streams) == ["Atmos"]

    def test_plain_audio(self):
        assert audio_tags([audio(codec="aac", display_title="Stereo")]) == []

    def test_video_streams_ignored(self):
        assert audio_tags([video(display_title="Atmos")]) == []


class TestMediaInfoTags:

    def test_all_families(self):
        it = item(video(width=3840, video_range="HDR10"), audio(codec="truehd", profile="Atmos"))
        assert media_info_tags(it) == ["4K", "HDR", "Atmos", "TrueHD"]

    def test_dolby_vision_suppresses_hdr(self):
        it = item(video(width=3840, video_range="DOVIWithHDR10"))
        assert media_info_tags(it) == ["4K", "Dolby Vision"]

    def test_flags_limit_families(self):
        it = item(video(width=1920, video_range="HDR10"), audio(codec="truehd"))
        assert media_info_tags(it, resolution=False, audio=False) == ["HDR"]
        assert media_info_tags(it, hdr=False) == ["1080p", "TrueHD"]

    def test_first_video_stream_is_used(self):
        it = item(video(width=1280), video(width=3840))
        assert media_info_tags(it, hdr=False, audio=False) == ["720p"]

    def test_no_streams(self):
        assert media_info_tags(item()) == []
