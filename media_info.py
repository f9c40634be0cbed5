"""
Media-info tags derived from an item's stream descriptors.

Stream data is supplied by the host; nothing here touches files or the
network.
"""

from typing import List, Optional

from models import MediaItem, MediaStream
from tag_catalog import (
    RESOLUTION_THRESHOLDS,
    DOLBY_VISION_TAG,
    HDR_TAG,
    ATMOS_TAG,
    DTS_X_TAG,
    TRUEHD_TAG,
    DTS_HD_MA_TAG,
)

DOLBY_VISION_RANGE_MARKERS = ("dolby", "dovi")
DOLBY_VISION_TITLE_MARKERS = ("dolby vision",)
HDR_RANGE_MARKERS = ("hdr", "pq", "hlg")


def _first_video(streams: List[MediaStream]) -> Optional[MediaStream]:
    for stream in streams:
        if (stream.stream_type or "").lower() == "video":
            return stream
    return None


def _audio_streams(streams: List[MediaStream]) -> List[MediaStream]:
    return [s for s in streams if (s.stream_type or "").lower() == "audio"]


def resolution_tag(video: Optional[MediaStream]) -> Optional[str]:
    if video is None or not video.width:
        return None
    for min_width, tag in RESOLUTION_THRESHOLDS:
        if video.width >= min_width:
            return tag
    return None


def dynamic_range_tag(video: Optional[MediaStream]) -> Optional[str]:
    """Dolby Vision wins over plain HDR; SDR yields nothing."""
    if video is None:
        return None
    video_range = (video.video_range or "").lower()
    title = (video.display_title or "").lower()

    if any(m in video_range for m in DOLBY_VISION_RANGE_MARKERS) or \
            any(m in title for m in DOLBY_VISION_TITLE_MARKERS):
        return DOLBY_VISION_TAG
    if any(m in video_range for m in HDR_RANGE_MARKERS):
        return HDR_TAG
    return None


def audio_tags(streams: List[MediaStream]) -> List[str]:
    """Advanced audio formats present on any audio stream, each listed once."""
    tags: List[str] = []

    def add(tag: str) -> None:
        if tag not in tags:
            tags.append(tag)

    for audio in _audio_streams(streams):
        profile = (audio.profile or "").lower()
        codec = (audio.codec or "").lower()
        title = (audio.display_title or "").lower()

        if "atmos" in title or "atmos" in profile:
            add(ATMOS_TAG)
        if "dts:x" in title or "dts-x" in title or "dts-x" in profile:
            add(DTS_X_TAG)
        if codec == "truehd":
            add(TRUEHD_TAG)
        if "dts-hd ma" in profile or "dts-hd ma" in title:
            add(DTS_HD_MA_TAG)

    return tags


def media_info_tags(
    item: MediaItem,
    resolution: bool = True,
    hdr: bool = True,
    audio: bool = True,
) -> List[str]:
    """
    Media-info tags for an item, limited to the enabled families.

    Args:
        item: Library item with stream descriptors
        resolution: Include the resolution tag
        hdr: Include the dynamic-range tag
        audio: Include advanced-audio tags

    Returns:
        Ordered list of tags
    """
    streams = item.streams or []
    video = _first_video(streams)
    tags: List[str] = []

    if resolution:
        tag = resolution_tag(video)
        if tag:
            tags.append(tag)
    if hdr:
        tag = dynamic_range_tag(video)
        if tag:
            tags.append(tag)
    if audio:
        tags.extend(audio_tags(streams))

    return tags
