# -*- coding: utf-8 -*-
"""
Normalizers

Boundary between raw vision-model output and the matcher.
All null-coalescing of part name, description and keywords happens here so
scoring can rely on explicit optional values.
"""

from typing import Any, List, Optional

from models import MatchQuery


# =============================================================================
# CONSTANTS
# =============================================================================

# Part name returned by the vision model when no automotive part is recognized
NOT_IDENTIFIED = 'Non identifié'

# Description tokens must be longer than this to count as search terms
MIN_TERM_LENGTH = 3

# Only the first N qualifying description tokens are used
MAX_DESCRIPTION_TERMS = 5


# =============================================================================
# PART NAME
# =============================================================================

def normalize_part_name(part_name: Optional[str]) -> Optional[str]:
    """Strip surrounding whitespace; blank or non-string names become None."""
    if not isinstance(part_name, str):
        return None
    part_name = part_name.strip()
    return part_name or None


def is_not_identified(part_name: Optional[str]) -> bool:
    """True when the vision model did not recognize any part."""
    part_name = normalize_part_name(part_name)
    return part_name is None or part_name == NOT_IDENTIFIED


# =============================================================================
# DESCRIPTION
# =============================================================================

def normalize_description(description: Optional[str]) -> Optional[str]:
    if not isinstance(description, str) or not description.strip():
        return None
    return description


def description_terms(description: Optional[str]) -> List[str]:
    """
    Extract search terms from a free-text description.

    Splits on whitespace, keeps tokens longer than 3 characters and returns
    the first 5 of them, in order.

    Args:
        description: Free text from the vision model (may be None)

    Returns:
        List of at most MAX_DESCRIPTION_TERMS tokens
    """
    if not description:
        return []
    terms = [word for word in description.split() if len(word) > MIN_TERM_LENGTH]
    return terms[:MAX_DESCRIPTION_TERMS]


# =============================================================================
# KEYWORDS
# =============================================================================

def clean_keywords(keywords: Any) -> List[str]:
    """
    Keep non-blank string keywords, stripped, in their original order.

    Duplicates are kept: each keyword counts once in the overlap ratio.
    """
    if not isinstance(keywords, (list, tuple)):
        return []
    cleaned = []
    for kw in keywords:
        if isinstance(kw, str) and kw.strip():
            cleaned.append(kw.strip())
    return cleaned


# =============================================================================
# QUERY CONSTRUCTION
# =============================================================================

def build_match_query(part_name: Any, description: Any, keywords: Any) -> MatchQuery:
    """Build a MatchQuery from raw (possibly missing or malformed) vision output."""
    return MatchQuery(
        part_name=normalize_part_name(part_name),
        description=normalize_description(description),
        keywords=clean_keywords(keywords),
    )


def contains(haystack: Optional[str], needle: Optional[str]) -> bool:
    """Case-insensitive substring test; empty needles never match."""
    if not haystack or not needle:
        return False
    return needle.lower() in haystack.lower()
