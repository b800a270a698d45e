"""Category and designation normalisation.

Category names reach the engine from three places (category documents,
subcategory parents, free text on old products) with inconsistent casing and
synonyms. Everything is reduced to a canonical tag before it is compared.
"""

from __future__ import annotations

import re
from typing import Optional

from backend.common.constants import (
    CANONICAL_CATEGORIES,
    CATEGORY_SYNONYMS,
    LEGACY_CATEGORIES,
)

_WS_RE = re.compile(r"\s+")


def normalize_category_name(name: Optional[str]) -> str:
    """``" Trousers "`` → ``"pant"``, ``"Blazer"`` → ``"jacket"``.

    Unknown names are returned lower-cased and trimmed, not rejected.
    """
    if not name:
        return ""
    normalized = name.strip().lower()
    return CATEGORY_SYNONYMS.get(normalized, normalized)


def is_known_category(tag: str) -> bool:
    return tag in CANONICAL_CATEGORIES


def legacy_category(tag: str) -> str:
    """Fold any tag onto one of the four legacy categories (unknown → shirt).

    Only used to pick a cycle for display purposes.
    """
    normalized = normalize_category_name(tag)
    if normalized in LEGACY_CATEGORIES:
        return normalized
    return "shirt"


def normalize_designation(value: Optional[str]) -> str:
    """Matching key for designations: trimmed, single-spaced, casefolded."""
    if not value:
        return ""
    return _WS_RE.sub(" ", value.strip()).casefold()
