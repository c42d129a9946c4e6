"""
Narrative merger: one combined narrative (and criteria) from two overlapping items.

Primary path asks the classifier for {merged_narrative, merged_criteria}.
If the classifier is unavailable or its reply cannot be parsed, the result is
built deterministically:
- merged_narrative: the first narrative verbatim, then "Additionally, " and the
  second narrative with its leading "As a <persona>," clause removed.
- merged_criteria: first item's criteria followed by the second's (no dedup).
"""

from typing import Any, Optional

from loguru import logger
from pydantic import BaseModel

from ..core.classifier import SemanticClassifier
from ..core.logging import ConsolidationObserver
from ..core.models import MergedNarrative, MergeInput
from ..core.text import strip_persona_clause

CONNECTIVE = "Additionally,"


def as_merge_input(item: Any) -> MergeInput:
    if isinstance(item, MergeInput):
        return item
    if isinstance(item, BaseModel):
        item = item.model_dump()
    return MergeInput.model_validate(item)


def fallback_merge(a: Any, b: Any) -> MergedNarrative:
    a = as_merge_input(a)
    b = as_merge_input(b)

    first = a.narrative.strip()
    clause = strip_persona_clause(b.narrative).strip()

    if not clause:
        merged = first
    elif not first:
        merged = clause
    else:
        joiner = "" if first[-1] in ".!?" else "."
        merged = f"{first}{joiner} {CONNECTIVE} {clause}"

    return MergedNarrative(
        merged_narrative=merged,
        merged_criteria=list(a.acceptance_criteria) + list(b.acceptance_criteria),
    )


def merge_narratives(a: Any,
                     b: Any,
                     classifier: Optional[SemanticClassifier] = None,
                     observer: Optional[ConsolidationObserver] = None) -> MergedNarrative:
    """Merge two items; never raises for classifier trouble."""
    a = as_merge_input(a)
    b = as_merge_input(b)

    if classifier is None:
        return fallback_merge(a, b)

    try:
        return classifier.merge_pair(a, b)
    except Exception as e:
        logger.warning(f"[NarrativeMerger] Falling back to concatenation: {e}")
        if observer:
            observer.on_fallback("merge_narratives", str(e))
        return fallback_merge(a, b)
