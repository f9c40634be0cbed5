"""
Tag reconciliation.

Apply mode adds whatever the synthesizer wants that the item lacks. Cleanup
mode removes every tag SmartTags could ever have written for the item,
whatever configuration was active at the time, so that apply followed by
cleanup restores the original tag list.

Tag comparison is case-insensitive everywhere. Existing tag order is kept:
additions are appended and removals drop entries in place.
"""

import logging
from dataclasses import dataclass, field
from typing import Iterable, List, Optional

from cancellation import CancellationToken
from config import TaggingConfig
from metrics import metrics
from models import MediaItem
from region import all_region_tags
from tag_catalog import all_list_tags, all_media_info_tags, all_studio_tags, decade_variants
from tagging import TagSynthesizer

logger = logging.getLogger(__name__)


@dataclass
class ReconcileResult:
    """Outcome of reconciling one item. `changed` means the item must be saved."""
    changed: bool = False
    added: List[str] = field(default_factory=list)
    removed: List[str] = field(default_factory=list)


def add_tags(tags: List[str], candidates: Iterable[str]) -> List[str]:
    """
    Append candidates missing from `tags` (case-insensitive), in place.

    Returns:
        The tags actually added
    """
    present = {t.casefold() for t in tags}
    added = []
    for tag in candidates:
        if not tag or tag.casefold() in present:
            continue
        tags.append(tag)
        present.add(tag.casefold())
        added.append(tag)
    return added


def remove_tags(tags: List[str], candidates: Iterable[str]) -> List[str]:
    """
    Remove every entry of `tags` matching a candidate (case-insensitive), in place.

    Returns:
        The literals actually removed, as they were spelled on the item
    """
    unwanted = {c.casefold() for c in candidates if c}
    removed = [t for t in tags if t.casefold() in unwanted]
    if removed:
        tags[:] = [t for t in tags if t.casefold() not in unwanted]
    return removed


class Reconciler:
    """
    Computes and applies the minimal tag edit for an item.

    Usage:
        result = reconciler.apply(item, config)
        if result.changed:
            library.save_item(item)
    """

    def __init__(self, synthesizer: TagSynthesizer):
        self.synthesizer = synthesizer

    def apply(
        self,
        item: MediaItem,
        config: TaggingConfig,
        cancel: Optional[CancellationToken] = None,
    ) -> ReconcileResult:
        """
        Add synthesized tags the item does not have yet. Never removes.

        Raises:
            OperationCancelled: If cancelled during a metadata fetch (item untouched)
        """
        wanted = self.synthesizer.synthesize(item, config, cancel=cancel)
        if item.tags is None:
            item.tags = []

        added = add_tags(item.tags, wanted)
        for tag in wanted:
            if tag not in added:
                logger.debug(f"Tag already present: \"{item.name}\" -> [{tag}]")

        if added:
            metrics.inc("tags_added", amount=len(added))
            logger.info(
                f"Tagged \"{item.name}\" -> [{', '.join(added)}]",
                extra={"item_id": item.item_id, "item_name": item.name, "tags": added},
            )
        return ReconcileResult(changed=bool(added), added=added)

    def cleanup_candidates(self, item: MediaItem) -> List[str]:
        """
        Every literal SmartTags may have written for this item.

        Region tags come from the cached record only; cleanup never goes to
        the network. Media-info and studio tags come from the static catalog,
        not from the item's current streams or metadata.
        """
        candidates: List[str] = []
        record = self.synthesizer.cache.peek(item.tmdb_id) if item.tmdb_id else None
        candidates.extend(all_region_tags(record))
        candidates.extend(decade_variants(item.production_year))
        candidates.extend(all_media_info_tags())
        candidates.extend(all_list_tags())
        candidates.extend(all_studio_tags())
        return candidates

    def cleanup(self, item: MediaItem) -> ReconcileResult:
        """Remove every tag SmartTags could have produced for the item."""
        if not item.tags:
            return ReconcileResult()

        removed = remove_tags(item.tags, self.cleanup_candidates(item))
        if removed:
            metrics.inc("tags_removed", amount=len(removed))
            logger.info(
                f"Cleaned \"{item.name}\" | removed [{', '.join(removed)}]",
                extra={"item_id": item.item_id, "item_name": item.name, "tags": removed},
            )
        return ReconcileResult(changed=bool(removed), removed=removed)
