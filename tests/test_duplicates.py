"""
Tests for the single-candidate duplicate check (consolidation/steps/duplicates.py)

Run: python -m pytest tests/test_duplicates.py -q
"""

import pytest

from consolidation.configs.default_config import build_default_config
from consolidation.core.errors import ClassifierUnavailableError
from consolidation.core.models import (
    CandidateItem,
    DuplicateRecommendation,
    ExistingItem,
    MergeRecommendation,
    OverlapType,
    SimilarityMatch,
)
from consolidation.core.orchestrator import ConsolidationOrchestrator
from consolidation.steps.duplicates import check_duplicates, heuristic_matches, recommend
from tests.fakes import FakeClassifier, RecordingObserver


def _make_match(item_id, score, overlap=OverlapType.FUNCTIONAL_OVERLAP):
    return SimilarityMatch(
        existing_item_id=item_id,
        narrative=f"narrative {item_id}",
        similarity_score=score,
        overlap_type=overlap,
        merge_recommendation=MergeRecommendation.MERGE,
    )


CANDIDATE = CandidateItem(narrative="As a member, I want to cancel my reservation", persona="member")

EXISTING = [
    ExistingItem(id="ES-1", narrative="As a member, I want to cancel my reservation online", persona="member"),
    ExistingItem(id="ES-2", narrative="As a member, I want to rate the restaurant", persona="member"),
    ExistingItem(id="ES-3", narrative="Export the payroll ledger", persona="accountant"),
]


class TestRecommend:
    def test_no_matches_proceed(self):
        assert recommend([]) == DuplicateRecommendation.PROCEED

    def test_exact_duplicate_skips(self):
        matches = [_make_match("ES-1", 70), _make_match("ES-2", 95, OverlapType.EXACT_DUPLICATE)]
        assert recommend(matches) == DuplicateRecommendation.SKIP_DUPLICATE

    def test_other_matches_reviewed(self):
        assert recommend([_make_match("ES-1", 70)]) == DuplicateRecommendation.REVIEW_MATCHES


class TestHeuristicMatches:
    def test_threshold_and_order(self):
        matches = heuristic_matches(CANDIDATE, EXISTING, threshold=60)
        assert [m.existing_item_id for m in matches] == ["ES-1"]
        assert matches[0].overlap_type == OverlapType.RELATED
        assert matches[0].merge_recommendation == MergeRecommendation.REVIEW

    def test_zero_threshold_sorted_by_score(self):
        matches = heuristic_matches(CANDIDATE, EXISTING, threshold=0)
        scores = [m.similarity_score for m in matches]
        assert scores == sorted(scores, reverse=True)
        assert len(matches) == 3


class TestCheckDuplicates:
    def test_classifier_matches_are_used(self):
        fake = FakeClassifier(matches=[_make_match("ES-1", 92, OverlapType.EXACT_DUPLICATE)])
        result = check_duplicates(CANDIDATE, EXISTING, classifier=fake, threshold=60)

        assert result.has_potential_duplicates
        assert result.recommendation == DuplicateRecommendation.SKIP_DUPLICATE
        assert result.similar_existing[0].existing_item_id == "ES-1"
        # ES-3 shares no long word and no persona with the candidate
        assert fake.calls[0]["existing"] == ["ES-1", "ES-2"]
        assert fake.calls[0]["threshold"] == 60

    def test_no_overlap_proceeds_without_call(self):
        fake = FakeClassifier()
        result = check_duplicates(CANDIDATE, EXISTING[2:], classifier=fake)
        assert result.recommendation == DuplicateRecommendation.PROCEED
        assert result.similar_existing == []
        assert not result.has_potential_duplicates
        assert fake.calls == []

    @pytest.mark.parametrize("error", [ClassifierUnavailableError("down"), RuntimeError("boom")])
    def test_failure_degrades_to_keyword_score(self, error):
        observer = RecordingObserver()
        result = check_duplicates(
            CANDIDATE, EXISTING, classifier=FakeClassifier(error=error), threshold=60, observer=observer)

        assert [m.existing_item_id for m in result.similar_existing] == ["ES-1"]
        assert result.recommendation == DuplicateRecommendation.REVIEW_MATCHES
        assert observer.names("fallback") == ["check_duplicates"]

    def test_orchestrator_uses_configured_threshold(self):
        fake = FakeClassifier(matches=[_make_match("ES-1", 70)])
        orchestrator = ConsolidationOrchestrator(
            build_default_config({"CONSOLIDATION_DUPLICATE_THRESHOLD": "80"}), classifier=fake)

        result = orchestrator.check_duplicates(CANDIDATE.model_dump(), [e.model_dump() for e in EXISTING])
        assert result.recommendation == DuplicateRecommendation.PROCEED
        assert fake.calls[0]["threshold"] == 80

    def test_orchestrator_empty_corpus(self):
        fake = FakeClassifier()
        orchestrator = ConsolidationOrchestrator(build_default_config({}), classifier=fake)
        result = orchestrator.check_duplicates(CANDIDATE, [])
        assert result.recommendation == DuplicateRecommendation.PROCEED
        assert fake.calls == []
