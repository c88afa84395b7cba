"""
Matcher tests: retrieval passes, similarity scoring, ranking and thresholds.
"""

import pytest

from conftest import FakeCatalog, entry
from matcher import (
    DESCRIPTION_LIMIT, EXACT_NAME_LIMIT, KEYWORD_LIMIT, MAX_RESULTS, MIN_SIMILARITY,
    ProductMatcher, RetrievalError, get_confidence, rank_candidates,
    score_candidate, score_description, score_keywords, score_name,
)
from models import MatchQuery, NameContains, NameOrDescriptionContainsAny
from normalizers import NOT_IDENTIFIED


class TestNotIdentified:

    @pytest.mark.parametrize("part_name", [None, NOT_IDENTIFIED])
    def test_returns_empty_without_catalog_calls(self, catalog, part_name):
        matcher = ProductMatcher(catalog)

        result = matcher.match_product(part_name, "Filtre à huile moteur", ["filtre", "huile"])

        assert result == []
        assert catalog.calls == []


class TestRetrieval:

    def test_passes_and_limits(self, catalog):
        matcher = ProductMatcher(catalog)
        query = MatchQuery(
            part_name="Filtre à huile",
            description="Filtre cylindrique pour moteur",
            keywords=["filtre", "huile"],
        )

        matcher.find_candidates(query)

        predicates = [(type(p), limit) for p, limit in catalog.calls]
        assert predicates == [
            (NameContains, EXACT_NAME_LIMIT),
            (NameOrDescriptionContainsAny, KEYWORD_LIMIT),
            (NameOrDescriptionContainsAny, DESCRIPTION_LIMIT),
        ]
        assert catalog.calls[0][0].term == "Filtre à huile"
        assert catalog.calls[1][0].terms == ["filtre", "huile"]
        assert catalog.calls[2][0].terms == ["Filtre", "cylindrique", "pour", "moteur"]

    def test_keyword_and_description_passes_skipped_when_empty(self, catalog):
        matcher = ProductMatcher(catalog)

        matcher.find_candidates(MatchQuery(part_name="Filtre", description="un de la", keywords=[]))

        assert len(catalog.calls) == 1
        assert isinstance(catalog.calls[0][0], NameContains)

    def test_union_is_deduplicated(self, catalog):
        matcher = ProductMatcher(catalog)
        query = MatchQuery(
            part_name="Filtre à huile",
            description="huile moteur",
            keywords=["huile"],
        )

        candidates = matcher.find_candidates(query)
        ids = [c.id for c in candidates]

        assert ids.count('a1') == 1
        assert len(ids) == len(set(ids))

        result = matcher.match(query)
        assert [c.id for c in result].count('a1') == 1

    def test_concurrent_passes_give_same_candidates(self, catalog):
        query = MatchQuery(
            part_name="Disque de frein",
            description="Disque de frein avant ventilé",
            keywords=["frein", "disque"],
        )

        sequential = ProductMatcher(catalog).find_candidates(query)
        concurrent = ProductMatcher(catalog, max_workers=3).find_candidates(query)

        assert [c.id for c in concurrent] == [c.id for c in sequential]

    @pytest.mark.parametrize("max_workers", [1, 3])
    def test_store_failure_propagates(self, max_workers):
        failing = FakeCatalog([], error=ConnectionError("catalog down"))
        matcher = ProductMatcher(failing, max_workers=max_workers)

        with pytest.raises(RetrievalError) as exc_info:
            matcher.match_product("Filtre à huile", "filtre moteur", ["filtre"])

        assert exc_info.value.pass_name == 'exact_name'
        assert isinstance(exc_info.value.cause, ConnectionError)

    def test_failure_in_one_pass_waits_for_all(self, catalog):
        calls = []

        def search(predicate, limit):
            calls.append(predicate)
            if isinstance(predicate, NameOrDescriptionContainsAny):
                raise TimeoutError("slow store")
            return catalog(predicate, limit)

        matcher = ProductMatcher(search, max_workers=3)

        with pytest.raises(RetrievalError) as exc_info:
            matcher.match_product("Filtre", "huile moteur", ["huile"])

        assert exc_info.value.pass_name == 'keyword'
        assert len(calls) == 3


class TestScoringSignals:

    def test_name_contains_part_name(self):
        assert score_name("filtre à huile", "Filtre à huile Bosch") == 0.5

    def test_part_name_contains_name(self):
        assert score_name("Filtre à huile Bosch 123", "filtre à huile bosch") == 0.4

    def test_name_no_match(self):
        assert score_name("XYZ", "Plaquette de frein") == 0.0

    def test_empty_candidate_name_never_matches(self):
        assert score_name("Filtre", "") == 0.0

    def test_keyword_ratio_uses_name_or_description(self):
        cand = entry('k', 'Plaquette de frein', 'Montage avant')
        assert score_keywords(["FREIN", "avant", "disque"], cand) == pytest.approx(0.2)

    def test_keyword_through_empty_name(self):
        cand = entry('k', '', None)
        assert score_keywords(["frein"], cand) == 0.0

    def test_description_requires_candidate_description(self):
        assert score_description(["frein"], None) == 0.0
        assert score_description(["frein"], "") == 0.0

    def test_description_denominator_is_query_terms(self):
        assert score_description(["disque", "frein", "avant", "arrière"], "Disque de frein avant") == pytest.approx(0.15)

    def test_breakdown(self):
        query = MatchQuery(
            part_name="Disque de frein",
            description="Disque de frein avant ventilé",
            keywords=["frein", "disque"],
        )
        cand = entry('a3', 'Disque de frein ventilé', 'Disque de frein avant 280mm')

        similarity, breakdown = score_candidate(query, cand)

        assert breakdown['name'] == 0.5
        assert breakdown['keywords'] == pytest.approx(0.3)
        assert breakdown['description'] == pytest.approx(0.15)
        assert similarity == pytest.approx(0.95)

    def test_similarity_is_clamped(self):
        weights = {'name_contains': 0.9, 'name_contained': 0.4, 'keywords': 0.9, 'description': 0.2}
        query = MatchQuery(part_name="frein", keywords=["frein"])

        similarity, _ = score_candidate(query, entry('x', 'frein'), weights=weights)

        assert similarity == 1.0


class TestScenarios:

    def test_exact_name_match(self):
        catalog = FakeCatalog([entry('p1', 'Filtre à huile Bosch', '')])

        result = ProductMatcher(catalog).match_product("Filtre à huile", None, [])

        assert [c.id for c in result] == ['p1']
        assert result[0].similarity == pytest.approx(0.5)

    def test_reverse_containment(self):
        query = MatchQuery(part_name="Filtre à huile Bosch 123")

        result = rank_candidates(query, [entry('p1', 'Filtre à huile Bosch')])

        assert result[0].similarity == pytest.approx(0.4)

    def test_keyword_only_match_below_threshold(self):
        catalog = FakeCatalog([entry('p2', 'Plaquette de frein', 'Plaquettes de frein avant')])
        matcher = ProductMatcher(catalog)

        query = MatchQuery(part_name="XYZ", keywords=["frein", "disque"])
        similarity, _ = score_candidate(query, catalog.entries[0])

        assert similarity == pytest.approx(0.15)
        assert matcher.match_product("XYZ", None, ["frein", "disque"]) == []

    def test_not_identified_ignores_other_fields(self, catalog):
        result = ProductMatcher(catalog).match_product(NOT_IDENTIFIED, "Filtre à huile", ["filtre"])
        assert result == []

    def test_full_match_ranking(self, catalog):
        result = ProductMatcher(catalog).match_product(
            "Disque de frein", "Disque de frein avant ventilé", ["frein", "disque"]
        )

        assert [c.id for c in result] == ['a3']
        assert result[0].similarity == pytest.approx(0.95)


class TestRanking:

    def test_exactly_threshold_is_excluded(self):
        query = MatchQuery(part_name="XYZ", keywords=["frein"])

        assert rank_candidates(query, [entry('p', 'Plaquette de frein')]) == []

    def test_float_sum_at_threshold_is_excluded(self):
        # 1/3 of the keywords (0.1) plus all description terms (0.2)
        query = MatchQuery(part_name="XYZ", description="frein avant", keywords=["avant", "aaa", "bbb"])
        cand = entry('p', 'Plaquette', 'frein avant')

        similarity, _ = score_candidate(query, cand)

        assert similarity == 0.3
        assert rank_candidates(query, [cand]) == []

    def test_sorted_descending_with_id_tie_break(self):
        query = MatchQuery(part_name="Filtre", keywords=["huile"])
        candidates = [
            entry('c', 'Filtre à air'),
            entry('b', 'Filtre à huile'),
            entry('a', 'Filtre à carburant'),
        ]

        result = rank_candidates(query, candidates)

        assert [c.id for c in result] == ['b', 'a', 'c']
        assert result[0].similarity == pytest.approx(0.8)

    def test_truncated_to_max_results(self):
        query = MatchQuery(part_name="Filtre")
        candidates = [entry(f'f{i:02d}', f'Filtre {i}') for i in range(25)]

        result = rank_candidates(query, candidates)

        assert len(result) == MAX_RESULTS
        assert [c.id for c in result] == [f'f{i:02d}' for i in range(MAX_RESULTS)]

    @pytest.mark.parametrize("part_name,description,keywords", [
        ("Filtre à huile", "Filtre à huile pour moteur diesel", ["filtre", "huile", "moteur"]),
        ("Filtre", "Filtre moteur essence", ["air"]),
        ("Disque de frein", None, ["frein"]),
        ("Bougie", "Bougie iridium", []),
        ("frein", "Plaquettes avant céramique", ["plaquette", "frein", "avant", "disque"]),
    ])
    def test_result_invariants(self, catalog, part_name, description, keywords):
        result = ProductMatcher(catalog).match_product(part_name, description, keywords)

        assert len(result) <= MAX_RESULTS
        assert all(MIN_SIMILARITY < c.similarity <= 1.0 for c in result)
        assert all(a.similarity >= b.similarity for a, b in zip(result, result[1:]))
        assert len({c.id for c in result}) == len(result)

    def test_idempotent(self, catalog):
        matcher = ProductMatcher(catalog)
        args = ("Filtre à huile", "Filtre à huile pour moteur", ["filtre", "huile"])

        assert matcher.match_product(*args) == matcher.match_product(*args)


class TestImageUrl:

    def test_image_url_built_from_base(self):
        catalog = FakeCatalog([entry('p1', 'Filtre à huile', image_ref='filtre.jpg')])
        matcher = ProductMatcher(catalog, image_base_url="https://cdn.example.com/")

        result = matcher.match_product("Filtre à huile", None, [])

        assert result[0].image_url == "https://cdn.example.com/images/products/filtre.jpg"

    def test_no_image_without_base(self):
        catalog = FakeCatalog([entry('p1', 'Filtre à huile', image_ref='filtre.jpg')])

        result = ProductMatcher(catalog).match_product("Filtre à huile", None, [])

        assert result[0].image_url is None


@pytest.mark.parametrize("similarity,expected", [
    (0.95, 'STRONG'), (0.7, 'STRONG'), (0.5, 'PARTIAL'), (0.31, 'WEAK'),
])
def test_get_confidence(similarity, expected):
    assert get_confidence(similarity) == expected
