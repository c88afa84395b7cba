# -*- coding: utf-8 -*-
"""
Data model shared by the matcher, the catalog store and the API.
"""

from typing import Any, Dict, List, Literal, Optional, Union

from pydantic import BaseModel, Field


# =============================================================================
# CATALOG
# =============================================================================

class CatalogEntry(BaseModel):
    """A sellable part record, read from the catalog store."""

    id: str
    name: str = ''
    description: Optional[str] = None
    category_ref: Optional[str] = None
    image_ref: Optional[str] = None

    @classmethod
    def from_document(cls, doc: Dict[str, Any]) -> 'CatalogEntry':
        """Map a catalog document (pieces collection) to an entry."""
        category = doc.get('categorieId')
        if isinstance(category, dict):
            category = category.get('_id')
        return cls(
            id=str(doc.get('_id', '')),
            name=doc.get('product_name') or '',
            description=doc.get('description') or None,
            category_ref=str(category) if category else None,
            image_ref=doc.get('image_filename') or None,
        )


# =============================================================================
# CATALOG PREDICATES
# =============================================================================

class NameContains(BaseModel):
    """Entries whose name contains `term` (case-insensitive)."""

    kind: Literal['name_contains'] = 'name_contains'
    term: str


class NameOrDescriptionContainsAny(BaseModel):
    """Entries whose name or description contains any of `terms` (case-insensitive)."""

    kind: Literal['name_or_description_contains_any'] = 'name_or_description_contains_any'
    terms: List[str]


CatalogPredicate = Union[NameContains, NameOrDescriptionContainsAny]


# =============================================================================
# MATCHING
# =============================================================================

class MatchQuery(BaseModel):
    part_name: Optional[str] = None
    description: Optional[str] = None
    keywords: List[str] = Field(default_factory=list)


class ScoredCandidate(CatalogEntry):
    similarity: float = Field(ge=0.0, le=1.0)
    image_url: Optional[str] = None
