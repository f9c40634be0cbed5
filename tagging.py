"""
Tag synthesis.

Computes the complete set of tags an item should carry under the current
configuration. Each tag family is computed independently: missing data, or
an unexpected failure in one family, only drops that family's tags.
"""

import logging
from typing import Callable, List, Optional

from cache import MetadataCache
from cancellation import CancellationToken, OperationCancelled
from config import TaggingConfig
from media_info import media_info_tags
from metrics import metrics
from models import MediaItem, MetadataRecord
from region import resolve_origin
from tag_catalog import IMDB_TOP_TAG, render_decade, studio_tags
from top_list import TopListSource

logger = logging.getLogger(__name__)


def _append_unique(tags: List[str], new: List[str]) -> None:
    seen = {t.casefold() for t in tags}
    for tag in new:
        if tag and tag.casefold() not in seen:
            tags.append(tag)
            seen.add(tag.casefold())


class TagSynthesizer:
    """
    Builds the target tag list for one item.

    Network access only happens through the metadata cache, and only when
    a metadata-backed family (region, studio) is enabled.
    """

    def __init__(self, cache: MetadataCache, top_list: Optional[TopListSource] = None):
        self.cache = cache
        self.top_list = top_list

    def _family(self, family: str, item: MediaItem, compute: Callable[[], List[str]]) -> List[str]:
        try:
            return [t for t in compute() if t]
        except OperationCancelled:
            raise
        except Exception as e:
            metrics.inc("synthesis_errors", labels={"family": family})
            logger.warning(f"Skipping {family} tags for \"{item.name}\": {e}", exc_info=True)
            return []

    def metadata_for(
        self,
        item: MediaItem,
        config: TaggingConfig,
        cancel: Optional[CancellationToken] = None,
    ) -> Optional[MetadataRecord]:
        """Cached TMDB record for an item, fetching on a miss; None when unavailable."""
        if not item.tmdb_id:
            return None
        result = self.cache.get(item.tmdb_id, item.tmdb_content_type(), config.tmdb_api_key, cancel=cancel)
        if not result.ok:
            logger.debug(f"No metadata for \"{item.name}\" ({result.status.value}: {result.reason})")
            return None
        return result.record

    def synthesize(
        self,
        item: MediaItem,
        config: TaggingConfig,
        cancel: Optional[CancellationToken] = None,
    ) -> List[str]:
        """
        Compute the target tags for an item.

        Args:
            item: Library item
            config: Configuration snapshot
            cancel: Optional token for metadata fetches

        Returns:
            Ordered tags, unique case-insensitively

        Raises:
            OperationCancelled: If cancelled during a metadata fetch
        """
        tags: List[str] = []

        if config.enable_decade_tags:
            _append_unique(tags, self._family(
                "decade", item,
                lambda: [render_decade(item.production_year, config.decade_style)],
            ))

        if config.enable_resolution_tags or config.enable_hdr_tags or config.enable_audio_tags:
            _append_unique(tags, self._family(
                "media_info", item,
                lambda: media_info_tags(
                    item,
                    resolution=config.enable_resolution_tags,
                    hdr=config.enable_hdr_tags,
                    audio=config.enable_audio_tags,
                ),
            ))

        if config.enable_imdb_top_tags and item.is_movie and self.top_list is not None:
            _append_unique(tags, self._family(
                "imdb_top", item,
                lambda: [IMDB_TOP_TAG] if self.top_list.contains(item.imdb_id) else [],
            ))

        if config.needs_metadata:
            record = None
            try:
                record = self.metadata_for(item, config, cancel)
            except OperationCancelled:
                raise
            except Exception as e:
                metrics.inc("synthesis_errors", labels={"family": "metadata"})
                logger.warning(f"Metadata lookup failed for \"{item.name}\": {e}", exc_info=True)

            if record is not None and config.enable_country_tags:
                _append_unique(tags, self._family("region", item, lambda: self._region(record, config)))

            if record is not None and config.enable_studio_tags:
                _append_unique(tags, self._family(
                    "studio", item,
                    lambda: studio_tags(record.production_company_ids, record.network_ids),
                ))

        return tags

    def _region(self, record: MetadataRecord, config: TaggingConfig) -> List[str]:
        resolution = resolve_origin(record)
        if resolution is None:
            return []
        tag = resolution.render(config.country_style)
        logger.debug(
            f"Region for TMDB {record.external_id}: lang={record.original_language} "
            f"origin={record.origin_countries} -> {tag} (tier {resolution.tier}, {resolution.rule})"
        )
        return [tag]
