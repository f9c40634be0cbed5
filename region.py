"""
Origin region resolution.

Turns a MetadataRecord into a single "country/region of origin" tag. The
arbitration favours specific signals over guesses and is fully
deterministic: the same record and style always produce the same tag.

Tiers (first match wins):
    1. origin_country present
       - one entry: use it
       - several (co-production):
           a. language anchor (Cantonese -> HK, Mandarin -> TW then CN)
           b. primary financier (first production country, if also an origin)
           c. first origin country
    2. production countries only: first one that is a primary country of
       the original language
    3. nothing resolved: fixed label for the original language

Tier 1/2 yield a country code rendered per CountryTagStyle; tier 3 yields a
literal label that ignores the style.
"""

import logging
from dataclasses import dataclass
from typing import Optional, Dict, FrozenSet, List, Tuple

from constants import CountryTagStyle
from models import MetadataRecord

logger = logging.getLogger(__name__)


# ISO 3166-1 alpha-2 (plus TMDB's codes for defunct states) -> display name
COUNTRY_NAMES: Dict[str, str] = {
    # Greater China
    "CN": "中国大陆", "HK": "香港", "TW": "台湾", "MO": "澳门", "SG": "新加坡",
    # East & South-East Asia
    "JP": "日本", "KR": "韩国", "KP": "朝鲜", "TH": "泰国", "VN": "越南",
    "MY": "马来西亚", "ID": "印度尼西亚", "PH": "菲律宾", "MN": "蒙古",
    "KH": "柬埔寨", "MM": "缅甸",
    # South & West Asia
    "IN": "印度", "PK": "巴基斯坦", "BD": "孟加拉国", "LK": "斯里兰卡",
    "NP": "尼泊尔", "IR": "伊朗", "IL": "以色列", "TR": "土耳其",
    "SA": "沙特阿拉伯", "AE": "阿联酋", "LB": "黎巴嫩",
    # Americas
    "US": "美国", "CA": "加拿大", "MX": "墨西哥", "BR": "巴西", "AR": "阿根廷",
    "CL": "智利", "CO": "哥伦比亚", "PE": "秘鲁", "CU": "古巴", "UY": "乌拉圭",
    "VE": "委内瑞拉",
    # Europe
    "GB": "英国", "IE": "爱尔兰", "FR": "法国", "DE": "德国", "IT": "意大利",
    "ES": "西班牙", "PT": "葡萄牙", "NL": "荷兰", "BE": "比利时", "LU": "卢森堡",
    "CH": "瑞士", "AT": "奥地利", "SE": "瑞典", "NO": "挪威", "DK": "丹麦",
    "FI": "芬兰", "IS": "冰岛", "PL": "波兰", "CZ": "捷克", "SK": "斯洛伐克",
    "HU": "匈牙利", "RO": "罗马尼亚", "BG": "保加利亚", "GR": "希腊",
    "RS": "塞尔维亚", "HR": "克罗地亚", "SI": "斯洛文尼亚", "BA": "波黑",
    "UA": "乌克兰", "BY": "白俄罗斯", "RU": "俄罗斯", "EE": "爱沙尼亚",
    "LV": "拉脱维亚", "LT": "立陶宛", "GE": "格鲁吉亚",
    # Africa & Oceania
    "EG": "埃及", "ZA": "南非", "NG": "尼日利亚", "MA": "摩洛哥", "TN": "突尼斯",
    "AU": "澳大利亚", "NZ": "新西兰",
    # Defunct states still common on older catalogue entries
    "SU": "苏联", "YU": "南斯拉夫", "CS": "塞尔维亚和黑山", "XC": "捷克斯洛伐克",
    "XG": "东德", "DD": "东德", "AN": "荷属安的列斯", "BU": "缅甸", "ZR": "扎伊尔",
    "TP": "东帝汶",
}

# Names written by earlier releases where they differ from COUNTRY_NAMES.
# Never rendered for new tags; cleanup still removes them.
LEGACY_COUNTRY_NAMES: Dict[str, str] = {
    "CN": "中国",
}

# Chinese-family language codes as TMDB reports them
CANTONESE = "cn"
MANDARIN = "zh"

# Anchors tried in order when a Chinese-language title lists several origins
LANGUAGE_ANCHORS: Dict[str, Tuple[str, ...]] = {
    CANTONESE: ("HK",),
    MANDARIN: ("TW", "CN"),
}

# Language -> countries where it is a primary language (tier 2)
LANGUAGE_COUNTRIES: Dict[str, FrozenSet[str]] = {
    "zh": frozenset({"CN", "HK", "TW", "SG", "MO"}),
    "cn": frozenset({"CN", "HK", "TW", "SG", "MO"}),
    "bo": frozenset({"CN"}),  # Tibetan
    "en": frozenset({"US", "GB", "CA", "AU", "NZ", "IE"}),
    "ja": frozenset({"JP"}),
    "ko": frozenset({"KR", "KP"}),
    "fr": frozenset({"FR", "BE", "CA", "CH"}),
    "de": frozenset({"DE", "AT", "CH"}),
    "es": frozenset({"ES", "MX", "AR", "CL", "CO"}),
}

# Language -> literal label when no country could be resolved (tier 3)
LANGUAGE_LABELS: Dict[str, str] = {
    "ja": "日本",
    "ko": "韩国",
    "zh": "华语",
    "cn": "华语",
    "en": "英语",
    "fr": "法国",
    "de": "德国",
    "ru": "俄罗斯",
    "th": "泰国",
}


@dataclass(frozen=True)
class Resolution:
    """A resolved origin: either a country code (tiers 1-2) or a literal label (tier 3)."""
    code: Optional[str] = None
    label: Optional[str] = None
    tier: int = 0
    rule: str = ""

    def render(self, style: CountryTagStyle) -> str:
        if self.code is None:
            return self.label
        return format_country(self.code, style)


def country_name(code: str) -> str:
    """Display name for a country code, or the code itself when unknown."""
    return COUNTRY_NAMES.get(code.upper(), code)


def format_country(code: str, style: CountryTagStyle) -> str:
    """Render a country code per the configured style."""
    style = CountryTagStyle(style)
    if style == CountryTagStyle.CODE_ONLY:
        return code
    if style == CountryTagStyle.NAME_AND_CODE:
        return f"{country_name(code)} ({code})"
    return country_name(code)


def _normalized(codes: List[str]) -> List[str]:
    return [c.strip().upper() for c in codes or [] if c and c.strip()]


def _arbitrate(origins: List[str], productions: List[str], language: str) -> Tuple[str, str]:
    """Pick one of several origin countries. Returns (code, rule)."""
    for anchor in LANGUAGE_ANCHORS.get(language, ()):
        if anchor in origins:
            return anchor, "language_anchor"

    if productions and productions[0] in origins:
        return productions[0], "primary_financier"

    return origins[0], "positional"


def resolve_origin(record: Optional[MetadataRecord]) -> Optional[Resolution]:
    """
    Resolve the origin of a title.

    Args:
        record: Cached TMDB metadata (None yields None)

    Returns:
        Resolution, or None when no tier produced anything
    """
    if record is None:
        return None

    language = (record.original_language or "").lower()
    origins = _normalized(record.origin_countries)
    productions = _normalized(record.production_countries)

    if len(origins) == 1:
        return Resolution(code=origins[0], tier=1, rule="single_origin")

    if len(origins) > 1:
        code, rule = _arbitrate(origins, productions, language)
        return Resolution(code=code, tier=1, rule=rule)

    if productions and language in LANGUAGE_COUNTRIES:
        valid = LANGUAGE_COUNTRIES[language]
        for code in productions:
            if code in valid:
                return Resolution(code=code, tier=2, rule="language_production")

    label = LANGUAGE_LABELS.get(language)
    if label:
        return Resolution(label=label, tier=3, rule="language_label")

    return None


def resolve_region_tag(
    record: Optional[MetadataRecord],
    style: CountryTagStyle = CountryTagStyle.NAME_ONLY,
) -> Optional[str]:
    """
    Compute the region tag for a record under one style.

    Args:
        record: Cached TMDB metadata
        style: Country rendering style

    Returns:
        Tag string, or None if the origin cannot be determined
    """
    resolution = resolve_origin(record)
    if resolution is None:
        return None
    return resolution.render(style)


def _legacy_renderings(code: str) -> List[str]:
    name = LEGACY_COUNTRY_NAMES.get(code)
    if name is None:
        return []
    return [name, f"{name} ({code})"]


def all_region_tags(record: Optional[MetadataRecord]) -> List[str]:
    """
    Every region tag any release could have written for the record.

    Covers each CountryTagStyle, the older country names, and the first
    origin country, which releases before the co-production arbitration
    always picked. Deduplicated, current resolution first.
    """
    resolution = resolve_origin(record)
    if resolution is None:
        return []

    codes = [resolution.code] if resolution.code else []
    origins = _normalized(record.origin_countries)
    if origins and origins[0] not in codes:
        codes.append(origins[0])

    tags: List[str] = []
    if resolution.code is None:
        tags.append(resolution.label)
    for code in codes:
        for tag in [format_country(code, style) for style in CountryTagStyle] + _legacy_renderings(code):
            if tag not in tags:
                tags.append(tag)
    return tags
