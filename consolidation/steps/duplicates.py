"""
Duplicate check for a single candidate (e.g. before a user adds a story by hand).

The corpus is prefiltered, then the classifier scores the survivors in one
request and only matches at or above the threshold are kept. Without a
classifier answer the quick score stands in: every shortlisted item scoring
at or above the threshold becomes a 'related' match marked for review.

Recommendation:
- skip_duplicate when any match is an exact duplicate,
- review_matches when there is any other match,
- proceed otherwise.
"""

from typing import List, Optional, Sequence

from loguru import logger

from ..core.classifier import DEFAULT_THRESHOLD, SemanticClassifier
from ..core.logging import ConsolidationObserver
from ..core.models import (
    CandidateItem,
    DuplicateCheckResult,
    DuplicateRecommendation,
    ExistingItem,
    MergeRecommendation,
    OverlapType,
    SimilarityMatch,
)
from .prefilter import prefilter
from .scoring import quick_score


def heuristic_matches(candidate: CandidateItem,
                      existing: Sequence[ExistingItem],
                      threshold: int = DEFAULT_THRESHOLD) -> List[SimilarityMatch]:
    matches = []
    for item in existing:
        score = quick_score(candidate.narrative, item.narrative)
        if score < threshold:
            continue
        matches.append(SimilarityMatch(
            existing_item_id=item.id,
            narrative=item.narrative,
            similarity_score=score,
            overlap_type=OverlapType.RELATED,
            merge_recommendation=MergeRecommendation.REVIEW,
            merge_rationale=f"Keyword similarity {score}/100; semantic check unavailable",
        ))
    matches.sort(key=lambda m: m.similarity_score, reverse=True)
    return matches


def recommend(matches: Sequence[SimilarityMatch]) -> DuplicateRecommendation:
    if any(m.overlap_type == OverlapType.EXACT_DUPLICATE for m in matches):
        return DuplicateRecommendation.SKIP_DUPLICATE
    if matches:
        return DuplicateRecommendation.REVIEW_MATCHES
    return DuplicateRecommendation.PROCEED


def check_duplicates(candidate: CandidateItem,
                     existing: Sequence[ExistingItem],
                     classifier: Optional[SemanticClassifier] = None,
                     threshold: int = DEFAULT_THRESHOLD,
                     observer: Optional[ConsolidationObserver] = None) -> DuplicateCheckResult:
    shortlist = prefilter(candidate, existing)

    if not shortlist:
        matches = []
    elif classifier is None:
        matches = heuristic_matches(candidate, shortlist, threshold)
    else:
        try:
            matches = classifier.classify_pair(candidate, shortlist, threshold)
        except Exception as e:
            logger.warning(f"[DuplicateCheck] Semantic check failed, using keyword score: {e}")
            if observer:
                observer.on_fallback("check_duplicates", str(e))
            matches = heuristic_matches(candidate, shortlist, threshold)

    return DuplicateCheckResult(
        candidate=candidate,
        similar_existing=matches,
        has_potential_duplicates=bool(matches),
        recommendation=recommend(matches),
    )
