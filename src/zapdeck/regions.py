"""Static registry of selectable regions and category partitions."""
from __future__ import annotations

from types import MappingProxyType
from typing import Mapping

ALL_REGIONS = "all"
"""Region sentinel: load the category partitions instead of one country document."""

ALL_CATEGORIES = "All"
"""Category filter sentinel meaning "no filter"."""

CATEGORY_PARTITIONS: tuple[str, ...] = (
    "news",
    "movies",
    "music",
    "kids",
    "entertainment",
    "sports",
)
"""Category documents fetched, in this order, when the region is ``all``."""

DEFAULT_COUNTRY_CATEGORY = "general"
"""Fallback category for country playlist entries without ``group-title``."""

# Codes follow the iptv-org ``countries/<code>.m3u`` layout.
REGIONS: Mapping[str, str] = MappingProxyType(
    {
        ALL_REGIONS: "All countries",
        "ar": "Argentina",
        "au": "Australia",
        "at": "Austria",
        "be": "Belgium",
        "br": "Brazil",
        "ca": "Canada",
        "cl": "Chile",
        "cn": "China",
        "co": "Colombia",
        "cz": "Czech Republic",
        "dk": "Denmark",
        "eg": "Egypt",
        "fi": "Finland",
        "fr": "France",
        "de": "Germany",
        "gr": "Greece",
        "in": "India",
        "id": "Indonesia",
        "ie": "Ireland",
        "il": "Israel",
        "it": "Italy",
        "jp": "Japan",
        "kr": "South Korea",
        "mx": "Mexico",
        "nl": "Netherlands",
        "nz": "New Zealand",
        "no": "Norway",
        "pe": "Peru",
        "ph": "Philippines",
        "pl": "Poland",
        "pt": "Portugal",
        "ro": "Romania",
        "sa": "Saudi Arabia",
        "za": "South Africa",
        "es": "Spain",
        "se": "Sweden",
        "ch": "Switzerland",
        "tr": "Turkey",
        "ua": "Ukraine",
        "ae": "United Arab Emirates",
        "uk": "United Kingdom",
        "us": "United States",
    }
)


def normalize_region(code: str) -> str:
    """Return the canonical (trimmed, lower-case) form of a region code."""

    return code.strip().lower()


def is_known_region(code: str) -> bool:
    return normalize_region(code) in REGIONS


def region_label(code: str) -> str:
    """Return the display label for ``code``; unknown codes are shown upper-cased."""

    normalized = normalize_region(code)
    return REGIONS.get(normalized, normalized.upper())


__all__ = [
    "ALL_CATEGORIES",
    "ALL_REGIONS",
    "CATEGORY_PARTITIONS",
    "DEFAULT_COUNTRY_CATEGORY",
    "REGIONS",
    "is_known_region",
    "normalize_region",
    "region_label",
]
