"""
Shared data models for SmartTags.

This module contains the data classes passed between the cache, resolver,
synthesizer and drivers, kept separate to avoid circular imports.
"""

from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Optional, List, Dict, Any, Set

from constants import FetchStatus, ItemType


def utc_now_iso() -> str:
    return datetime.now(timezone.utc).isoformat()


def _int_set(values) -> Set[int]:
    result = set()
    for value in values or []:
        try:
            result.add(int(value))
        except (TypeError, ValueError):
            continue
    return result


@dataclass
class MetadataRecord:
    """
    Normalized TMDB metadata for one title.

    Order of `origin_countries` and `production_countries` is significant:
    the first entry is the strongest signal of each list.
    """
    external_id: str
    alternate_id: Optional[str] = None  # IMDb id
    original_language: Optional[str] = None
    origin_countries: List[str] = field(default_factory=list)
    production_countries: List[str] = field(default_factory=list)
    production_company_ids: Set[int] = field(default_factory=set)
    network_ids: Set[int] = field(default_factory=set)
    last_updated: str = ""  # ISO format timestamp

    def to_dict(self) -> Dict[str, Any]:
        """Convert to dictionary for JSON serialization."""
        return {
            "external_id": self.external_id,
            "alternate_id": self.alternate_id,
            "original_language": self.original_language,
            "origin_countries": list(self.origin_countries),
            "production_countries": list(self.production_countries),
            "production_company_ids": sorted(self.production_company_ids),
            "network_ids": sorted(self.network_ids),
            "last_updated": self.last_updated,
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "MetadataRecord":
        """
        Create MetadataRecord from dictionary.

        Handles missing fields gracefully with defaults.
        """
        language = data.get("original_language")
        return cls(
            external_id=str(data.get("external_id", "")),
            alternate_id=data.get("alternate_id"),
            original_language=language.lower() if language else None,
            origin_countries=[c for c in data.get("origin_countries") or [] if c],
            production_countries=[c for c in data.get("production_countries") or [] if c],
            production_company_ids=_int_set(data.get("production_company_ids")),
            network_ids=_int_set(data.get("network_ids")),
            last_updated=data.get("last_updated", ""),
        )


@dataclass(frozen=True)
class FetchResult:
    """
    Outcome of a metadata lookup.

    FOUND carries the record; NOT_FOUND and TRANSIENT_ERROR carry a reason.
    Callers treat both failure kinds as "tag this item later".
    """
    status: FetchStatus
    record: Optional[MetadataRecord] = None
    reason: str = ""

    @property
    def ok(self) -> bool:
        return self.status == FetchStatus.FOUND

    @classmethod
    def found(cls, record: MetadataRecord) -> "FetchResult":
        return cls(FetchStatus.FOUND, record=record)

    @classmethod
    def not_found(cls, reason: str = "not found") -> "FetchResult":
        return cls(FetchStatus.NOT_FOUND, reason=reason)

    @classmethod
    def transient(cls, reason: str) -> "FetchResult":
        return cls(FetchStatus.TRANSIENT_ERROR, reason=reason)


@dataclass
class MediaStream:
    """One video/audio/subtitle stream as reported by the host."""
    stream_type: str  # "Video", "Audio", "Subtitle"
    width: Optional[int] = None
    video_range: Optional[str] = None
    display_title: Optional[str] = None
    codec: Optional[str] = None
    profile: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "type": self.stream_type,
            "width": self.width,
            "video_range": self.video_range,
            "display_title": self.display_title,
            "codec": self.codec,
            "profile": self.profile,
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "MediaStream":
        width = data.get("width")
        return cls(
            stream_type=data.get("type", ""),
            width=int(width) if width is not None else None,
            video_range=data.get("video_range"),
            display_title=data.get("display_title"),
            codec=data.get("codec"),
            profile=data.get("profile"),
        )


@dataclass
class MediaItem:
    """
    Host library item as seen by the tagger.

    `tags` is the item's mutable tag collection; the reconciler edits it in
    place and the library repository persists it.
    """
    item_id: str
    name: str
    item_type: str
    provider_ids: Dict[str, str] = field(default_factory=dict)
    production_year: Optional[int] = None
    streams: List[MediaStream] = field(default_factory=list)
    tags: List[str] = field(default_factory=list)
    is_virtual: bool = False

    @property
    def tmdb_id(self) -> Optional[str]:
        return self.provider_ids.get("Tmdb") or None

    @property
    def imdb_id(self) -> Optional[str]:
        return self.provider_ids.get("Imdb") or None

    @property
    def is_movie(self) -> bool:
        return self.item_type == ItemType.MOVIE.value

    def tmdb_content_type(self) -> str:
        return "movie" if self.is_movie else "tv"

    def to_dict(self) -> Dict[str, Any]:
        """Convert to dictionary for serialization."""
        return {
            "id": self.item_id,
            "name": self.name,
            "type": self.item_type,
            "provider_ids": dict(self.provider_ids),
            "production_year": self.production_year,
            "streams": [s.to_dict() for s in self.streams],
            "tags": list(self.tags),
            "is_virtual": self.is_virtual,
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "MediaItem":
        year = data.get("production_year")
        return cls(
            item_id=str(data["id"]),
            name=data.get("name", ""),
            item_type=data.get("type", ""),
            provider_ids={k: str(v) for k, v in (data.get("provider_ids") or {}).items() if v},
            production_year=int(year) if year is not None else None,
            streams=[MediaStream.from_dict(s) for s in data.get("streams") or []],
            tags=list(data.get("tags") or []),
            is_virtual=bool(data.get("is_virtual", False)),
        )
