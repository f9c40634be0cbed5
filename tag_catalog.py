"""
Catalog of every tag literal SmartTags can produce.

Cleanup must be able to remove tags written by any earlier release under any
earlier configuration, without re-deriving them from the item's current
state. The catalog is therefore kept explicit and versioned: a release that
adds a tag family appends a revision, and no revision is ever edited or
dropped.

Region tags are the one family that cannot be enumerated statically (they
depend on the cached TMDB record); see region.all_region_tags.
"""

from dataclasses import dataclass
from typing import Dict, FrozenSet, Iterable, List, Optional, Tuple

from constants import DecadeStyle, MIN_DECADE_YEAR


# =============================================================================
# Media info (resolution / dynamic range / audio)
# =============================================================================

# Minimum video width -> tag, checked top-down
RESOLUTION_THRESHOLDS: Tuple[Tuple[int, str], ...] = (
    (3800, "4K"),
    (1900, "1080p"),
    (1200, "720p"),
)

DOLBY_VISION_TAG = "Dolby Vision"
HDR_TAG = "HDR"

ATMOS_TAG = "Atmos"
DTS_X_TAG = "DTS:X"
TRUEHD_TAG = "TrueHD"
DTS_HD_MA_TAG = "DTS-HD MA"


# =============================================================================
# List membership
# =============================================================================

IMDB_TOP_TAG = "IMDb Top 250"


# =============================================================================
# Studios and networks (TMDB company / network ids)
# =============================================================================

STUDIO_COMPANIES: Dict[str, FrozenSet[int]] = {
    # Hollywood majors
    "Disney": frozenset({2, 6125, 58}),
    "Warner Bros": frozenset({174, 19551, 2778}),
    "Universal": frozenset({33, 2672}),
    "Sony": frozenset({5, 34, 3268, 559}),
    "Paramount": frozenset({4, 1081}),
    "20th Century": frozenset({25}),
    # Labels & animation
    "Marvel": frozenset({420}),
    "DC": frozenset({128064}),
    "Pixar": frozenset({3}),
    "Lucasfilm": frozenset({1}),
    "DreamWorks": frozenset({521}),
    "Illumination": frozenset({6704}),
    "A24": frozenset({41077}),
    "Lionsgate": frozenset({1632}),
    "MGM": frozenset({21}),
    "Legendary": frozenset({923}),
    # Streaming originals
    "Netflix": frozenset({178464}),
    "Amazon": frozenset({20580}),
    "Apple TV+": frozenset({115233}),
    # Japan
    "Ghibli": frozenset({10342}),
    "Toho": frozenset({884}),
    "Toei": frozenset({3341, 5822}),
    "Kyoto Animation": frozenset({2969}),
    "Sunrise": frozenset({306}),
    "Bones": frozenset({477}),
    "MAPPA": frozenset({12799}),
    "Ufotable": frozenset({5904}),
    "CoMix Wave": frozenset({25263}),
    "Madhouse": frozenset({569}),
    # Korea
    "CJ ENM": frozenset({7036}),
    "Studio Dragon": frozenset({95563}),
    # Hong Kong
    "Shaw Brothers": frozenset({5361, 906}),
    "Golden Harvest": frozenset({2521}),
    "Milkyway": frozenset({2469}),
    "Emperor": frozenset({7338}),
    "Media Asia": frozenset({4081}),
}

STUDIO_NETWORKS: Dict[str, FrozenSet[int]] = {
    # Global streaming
    "Netflix": frozenset({213}),
    "HBO": frozenset({49, 3186, 13252}),
    "Amazon": frozenset({1024}),
    "Apple TV+": frozenset({2552}),
    "Disney+": frozenset({2739}),
    "Hulu": frozenset({453}),
    "Peacock": frozenset({3353}),
    "Paramount+": frozenset({4330}),
    "BBC": frozenset({4, 332}),
    # Korea
    "tvN": frozenset({861}),
    "JTBC": frozenset({885}),
    "SBS": frozenset({156}),
    "KBS": frozenset({342}),
    "MBC": frozenset({97}),
    # Japan
    "NHK": frozenset({185}),
    "Fuji TV": frozenset({1}),
    "TBS": frozenset({160}),
    "TV Asahi": frozenset({103}),
    # Hong Kong / Taiwan
    "TVB": frozenset({56}),
    "PTS": frozenset({326}),
    "ViuTV": frozenset({2661}),
}


def studio_tags(company_ids: Iterable[int], network_ids: Iterable[int]) -> List[str]:
    """
    Canonical studio/network labels whose id sets intersect the given ids.

    Companies are checked before networks; a label matched by both appears once.
    """
    companies = set(company_ids or ())
    networks = set(network_ids or ())
    tags: List[str] = []
    for label, ids in STUDIO_COMPANIES.items():
        if ids & companies and label not in tags:
            tags.append(label)
    for label, ids in STUDIO_NETWORKS.items():
        if ids & networks and label not in tags:
            tags.append(label)
    return tags


# =============================================================================
# Decades
# =============================================================================

def decade_of(year: Optional[int]) -> Optional[int]:
    """Floor a production year to its decade, None for missing/very old years."""
    if year is None or year < MIN_DECADE_YEAR:
        return None
    return (year // 10) * 10


def render_decade(year: Optional[int], style: DecadeStyle = DecadeStyle.FOUR_DIGITS) -> Optional[str]:
    """
    Decade tag for a production year.

    2008 -> "2000年代" (four digits), "00年代" (two digits), "2000s" (english).
    """
    decade = decade_of(year)
    if decade is None:
        return None
    style = DecadeStyle(style)
    if style == DecadeStyle.TWO_DIGITS:
        return f"{decade % 100:02d}年代"
    if style == DecadeStyle.ENGLISH:
        return f"{decade}s"
    return f"{decade}年代"


def decade_variants(year: Optional[int]) -> List[str]:
    """
    Every decade literal ever written for a year, across all styles.

    Includes the unpadded two-digit form ("0年代") that releases before 1.1
    produced for the 1900s/2000s.
    """
    decade = decade_of(year)
    if decade is None:
        return []
    variants: List[str] = []
    for style in DecadeStyle:
        tag = render_decade(year, style)
        if tag not in variants:
            variants.append(tag)
    legacy = f"{decade % 100}年代"
    if legacy not in variants:
        variants.append(legacy)
    return variants


# =============================================================================
# Versioned catalog
# =============================================================================

@dataclass(frozen=True)
class CatalogRevision:
    """Static tag literals introduced by one release."""
    version: str
    media_info_tags: Tuple[str, ...] = ()
    list_tags: Tuple[str, ...] = ()
    studio_tags: Tuple[str, ...] = ()


def _unique(labels: Iterable[str]) -> Tuple[str, ...]:
    seen: List[str] = []
    for label in labels:
        if label not in seen:
            seen.append(label)
    return tuple(seen)


CATALOG: Tuple[CatalogRevision, ...] = (
    CatalogRevision(
        version="1.0",
        list_tags=(IMDB_TOP_TAG,),
    ),
    CatalogRevision(
        version="1.1",
        media_info_tags=tuple(tag for _, tag in RESOLUTION_THRESHOLDS) + (
            DOLBY_VISION_TAG, HDR_TAG,
            ATMOS_TAG, DTS_X_TAG, TRUEHD_TAG, DTS_HD_MA_TAG,
        ),
    ),
    CatalogRevision(
        version="1.2",
        studio_tags=_unique(list(STUDIO_COMPANIES) + list(STUDIO_NETWORKS)),
    ),
)


def all_media_info_tags() -> List[str]:
    return list(_unique(tag for rev in CATALOG for tag in rev.media_info_tags))


def all_list_tags() -> List[str]:
    return list(_unique(tag for rev in CATALOG for tag in rev.list_tags))


def all_studio_tags() -> List[str]:
    return list(_unique(tag for rev in CATALOG for tag in rev.studio_tags))


def all_static_tags() -> List[str]:
    """Every item-independent literal across all revisions."""
    return list(_unique(all_media_info_tags() + all_list_tags() + all_studio_tags()))
