# -*- coding: utf-8 -*-
"""
Product Matcher

Matches the part identified by the vision model against the catalog:
- Three loose retrieval passes (exact name, keywords, description terms)
- Union of the passes, deduplicated by catalog id
- Similarity score in [0, 1] from three signals (name 0.5, keywords 0.3, description 0.2)
- Candidates above 0.3 kept, best first, at most 10

The catalog is never reached directly: a `search_catalog(predicate, limit)`
callable is injected, so the matcher runs the same against MongoDB or an
in-memory list.
"""

import logging
from concurrent.futures import ThreadPoolExecutor, wait
from typing import Callable, Dict, List, Optional, Sequence, Tuple

from models import (
    CatalogEntry, CatalogPredicate, MatchQuery, NameContains,
    NameOrDescriptionContainsAny, ScoredCandidate,
)
from normalizers import build_match_query, contains, description_terms, is_not_identified

logger = logging.getLogger(__name__)

SearchCatalog = Callable[[CatalogPredicate, int], List[CatalogEntry]]


# =============================================================================
# SCORING WEIGHTS
# =============================================================================

WEIGHTS = {
    'name_contains': 0.5,    # Candidate name contains the part name
    'name_contained': 0.4,   # Part name contains the candidate name
    'keywords': 0.3,         # Scaled by matched / total keywords
    'description': 0.2,      # Scaled by matched / total description terms
}

MIN_SIMILARITY = 0.3         # Strictly greater than this to be returned
MAX_RESULTS = 10
SIMILARITY_PRECISION = 6     # Rounding keeps 0.1 + 0.2 from landing above 0.3

# Per-pass retrieval caps
EXACT_NAME_LIMIT = 3
KEYWORD_LIMIT = 5
DESCRIPTION_LIMIT = 3


class RetrievalError(Exception):
    """The catalog store failed during one of the retrieval passes."""

    def __init__(self, pass_name: str, cause: Exception):
        super().__init__(f"Catalog search failed during {pass_name} pass: {cause}")
        self.pass_name = pass_name
        self.cause = cause


# =============================================================================
# MATCHER CLASS
# =============================================================================

class ProductMatcher:
    """
    Catalog matcher for vision-identified parts.

    Args:
        search_catalog: Callable(predicate, limit) -> List[CatalogEntry]
        max_workers: Run the retrieval passes concurrently when > 1
        image_base_url: Public base URL used to build `image_url` on results
    """

    def __init__(
        self,
        search_catalog: SearchCatalog,
        max_workers: int = 1,
        image_base_url: Optional[str] = None
    ):
        self.search_catalog = search_catalog
        self.max_workers = max_workers
        self.image_base_url = image_base_url.rstrip('/') if image_base_url else None

    def retrieval_passes(self, query: MatchQuery) -> List[Tuple[str, CatalogPredicate, int]]:
        """List the (name, predicate, limit) passes to run for a query."""
        passes = [('exact_name', NameContains(term=query.part_name), EXACT_NAME_LIMIT)]

        if query.keywords:
            passes.append((
                'keyword',
                NameOrDescriptionContainsAny(terms=list(query.keywords)),
                KEYWORD_LIMIT,
            ))

        terms = description_terms(query.description)
        if terms:
            passes.append((
                'description',
                NameOrDescriptionContainsAny(terms=terms),
                DESCRIPTION_LIMIT,
            ))

        return passes

    def _run_pass(self, pass_name: str, predicate: CatalogPredicate, limit: int) -> List[CatalogEntry]:
        try:
            return list(self.search_catalog(predicate, limit))
        except Exception as e:
            raise RetrievalError(pass_name, e) from e

    def find_candidates(self, query: MatchQuery) -> List[CatalogEntry]:
        """
        Stage 1: Gather candidates from the three retrieval passes.

        No catalog call is made when the part was not identified.

        Args:
            query: Normalized match query

        Returns:
            Candidates deduplicated by id, in pass order (exact, keyword, description)

        Raises:
            RetrievalError: if any pass fails
        """
        if is_not_identified(query.part_name):
            return []

        passes = self.retrieval_passes(query)

        if self.max_workers > 1 and len(passes) > 1:
            with ThreadPoolExecutor(max_workers=min(self.max_workers, len(passes))) as executor:
                futures = [executor.submit(self._run_pass, *p) for p in passes]
                wait(futures)
                # Results read in pass order so the first failing pass is reported
                results = [future.result() for future in futures]
        else:
            results = [self._run_pass(*p) for p in passes]

        unique: Dict[str, CatalogEntry] = {}
        for (pass_name, _, _), entries in zip(passes, results):
            logger.debug("Retrieval pass %s returned %d entries", pass_name, len(entries))
            for entry in entries:
                if entry.id not in unique:
                    unique[entry.id] = entry

        return list(unique.values())

    def image_url(self, entry: CatalogEntry) -> Optional[str]:
        if not entry.image_ref or not self.image_base_url:
            return None
        return f"{self.image_base_url}/images/products/{entry.image_ref}"

    def match(self, query: MatchQuery) -> List[ScoredCandidate]:
        """Retrieve, score and rank candidates for a normalized query."""
        if is_not_identified(query.part_name):
            return []

        candidates = self.find_candidates(query)
        ranked = rank_candidates(query, candidates)

        if self.image_base_url:
            ranked = [c.model_copy(update={'image_url': self.image_url(c)}) for c in ranked]

        logger.info(
            "Matched %d/%d candidates for part %r",
            len(ranked), len(candidates), query.part_name
        )
        return ranked

    def match_product(
        self,
        part_name: Optional[str],
        description: Optional[str],
        keywords: Optional[Sequence[str]]
    ) -> List[ScoredCandidate]:
        """
        Match a vision-identified part against the catalog.

        Args:
            part_name: Identified part name (None or 'Non identifié' -> no match)
            description: Free-text description of the part
            keywords: Keywords describing the part

        Returns:
            Up to 10 candidates with similarity > 0.3, best first

        Raises:
            RetrievalError: if the catalog store fails
        """
        return self.match(build_match_query(part_name, description, keywords))


# =============================================================================
# SCORING FUNCTIONS
# =============================================================================

def score_name(part_name: Optional[str], candidate_name: Optional[str], weights=None) -> float:
    """Score name containment (either direction, first match wins)."""
    w = weights or WEIGHTS
    if not part_name or not candidate_name:
        return 0.0

    if contains(candidate_name, part_name):
        return w['name_contains']
    if contains(part_name, candidate_name):
        return w['name_contained']
    return 0.0


def score_keywords(keywords: Sequence[str], candidate: CatalogEntry, weights=None) -> float:
    """Score the share of keywords found in the candidate name or description."""
    w = (weights or WEIGHTS)['keywords']
    if not keywords:
        return 0.0

    matched = [
        kw for kw in keywords
        if contains(candidate.name, kw) or contains(candidate.description, kw)
    ]
    return w * len(matched) / len(keywords)


def score_description(terms: Sequence[str], candidate_description: Optional[str], weights=None) -> float:
    """Score the share of query description terms found in the candidate description."""
    w = (weights or WEIGHTS)['description']
    if not terms or not candidate_description:
        return 0.0

    matched = [term for term in terms if contains(candidate_description, term)]
    return w * len(matched) / len(terms)


def score_candidate(query: MatchQuery, candidate: CatalogEntry, weights=None) -> Tuple[float, Dict[str, float]]:
    """
    Score a single candidate against the query.

    Returns:
        Tuple of (similarity in [0, 1], per-signal breakdown)
    """
    breakdown = {
        'name': score_name(query.part_name, candidate.name, weights=weights),
        'keywords': score_keywords(query.keywords, candidate, weights=weights),
        'description': score_description(
            description_terms(query.description), candidate.description, weights=weights
        ),
    }

    total = min(max(sum(breakdown.values()), 0.0), 1.0)
    return round(total, SIMILARITY_PRECISION), breakdown


def rank_candidates(
    query: MatchQuery,
    candidates: Sequence[CatalogEntry],
    weights=None
) -> List[ScoredCandidate]:
    """
    Score, rank and threshold candidates.

    Ties on similarity are broken by catalog id (ascending) so the output
    does not depend on retrieval order.

    Returns:
        At most MAX_RESULTS candidates with similarity > MIN_SIMILARITY, best first
    """
    scored = []
    for cand in candidates:
        similarity, _ = score_candidate(query, cand, weights=weights)
        scored.append(ScoredCandidate(**cand.model_dump(), similarity=similarity))

    scored.sort(key=lambda c: (-c.similarity, c.id))

    return [c for c in scored if c.similarity > MIN_SIMILARITY][:MAX_RESULTS]


def get_confidence(similarity: float) -> str:
    """
    Get a confidence label for a similarity score.

    - STRONG:  >= 0.7
    - PARTIAL: >= 0.5
    - WEAK:    < 0.5
    """
    if similarity >= 0.7:
        return 'STRONG'
    elif similarity >= 0.5:
        return 'PARTIAL'
    return 'WEAK'
