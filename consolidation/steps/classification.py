"""
Batch classification and partition steps.

ClassifyBatchStep:
  Sends every candidate that survived the prefilter, together with the union
  of their shortlists, to the classifier in ONE request. Candidates with an
  empty shortlist are not sent. If nothing is left to send, no request is
  made. A classifier failure is recorded in state.fallback_reason and never
  raised.

PartitionStep:
  Turns the classifier's proposal into a BatchResult that accounts for every
  candidate exactly once:
  - proposal entries are matched to candidates by label (G1, G2, ...), then by
    case-insensitive narrative, then by a 50-character prefix;
  - merge/skip entries pointing at ids that were not sent are ignored;
  - when a candidate is claimed more than once, create beats merge beats skip;
  - unclaimed candidates are created as new;
  - summary counts are recomputed from the partitions.
  With a fallback_reason set, every candidate is created as new.

Inputs:
- state.candidates, state.existing, state.context, state.shortlists.
- config keys (ClassifyBatchStep): model, temperature, max_tokens,
  prompt_templates, llm_settings.

Outputs:
- state.proposal / state.fallback_reason (ClassifyBatchStep).
- state.result (PartitionStep).
"""

from typing import Dict, List, Optional, Sequence, Tuple

from loguru import logger

from ..core.base import ConsolidationStep
from ..core.classifier import candidate_label
from ..core.models import (
    BatchResult,
    CandidateItem,
    ConsolidationAction,
    ConsolidationDecision,
    ConsolidationState,
    ExistingItem,
    MergeRecord,
    SkipRecord,
)
from .merge import fallback_merge

FALLBACK_RATIONALE = "Classifier unavailable; kept as new"
NO_OVERLAP_RATIONALE = "No lexical overlap with existing items"
UNCLAIMED_RATIONALE = "No consolidation decision returned; kept as new"
EMPTY_CORPUS_RATIONALE = "No existing items to compare against"

PREFIX_MATCH_LENGTH = 50

# Lower rank wins when a candidate is claimed more than once
_ACTION_RANK = {
    ConsolidationAction.CREATE_NEW: 0,
    ConsolidationAction.MERGE_WITH_EXISTING: 1,
    ConsolidationAction.SKIP: 2,
}


def all_new(candidates: Sequence[CandidateItem], rationale: str) -> BatchResult:
    return BatchResult.from_partitions(
        to_create=[
            ConsolidationDecision(candidate=c, action=ConsolidationAction.CREATE_NEW, rationale=rationale)
            for c in candidates
        ],
        to_merge=[],
        to_skip=[],
    )


def pending_indices(state: ConsolidationState) -> List[int]:
    """Candidates that go to the classifier."""
    if not state.shortlists:
        return list(range(len(state.candidates)))
    return [i for i in range(len(state.candidates)) if state.shortlists.get(i)]


def corpus_slice(state: ConsolidationState, pending: Sequence[int]) -> List[ExistingItem]:
    """Union of the pending candidates' shortlists, in corpus order."""
    if not state.shortlists:
        return list(state.existing)
    wanted = set()
    for i in pending:
        wanted.update(state.shortlists.get(i, []))
    return [e for e in state.existing if e.id in wanted]


class ClassifyBatchStep(ConsolidationStep):
    def execute(self, state: ConsolidationState) -> ConsolidationState:
        if not state.existing:
            return state

        pending = pending_indices(state)
        if not pending:
            logger.debug(f"[{self.__class__.__name__}] No candidate passed the prefilter; skipping classifier.")
            return state

        batch = [state.candidates[i] for i in pending]
        corpus = corpus_slice(state, pending)
        labels = [candidate_label(i) for i in pending]

        try:
            state.proposal = self.classifier.classify_batch(batch, corpus, state.context, labels=labels)
        except Exception as e:
            logger.warning(f"[{self.__class__.__name__}] Batch classification failed, keeping all as new: {e}")
            state.fallback_reason = str(e)
            if self.observer:
                self.observer.on_fallback("consolidate", str(e))
            return state

        self.log_artifact("Batch Proposal", state.proposal.model_dump())
        return state


class PartitionStep(ConsolidationStep):
    def execute(self, state: ConsolidationState) -> ConsolidationState:
        if not state.existing:
            state.result = all_new(state.candidates, EMPTY_CORPUS_RATIONALE)
            return state

        if state.fallback_reason:
            state.result = all_new(state.candidates, FALLBACK_RATIONALE)
            return state

        state.result = self._reconcile(state)
        return state

    def _reconcile(self, state: ConsolidationState) -> BatchResult:
        pending = pending_indices(state)
        sent = {e.id: e for e in corpus_slice(state, pending)}
        claims: Dict[int, Tuple[int, object]] = {}

        def claim(idx: Optional[int], action: ConsolidationAction, record: object):
            if idx is None:
                return
            rank = _ACTION_RANK[action]
            if idx not in claims or rank < claims[idx][0]:
                claims[idx] = (rank, record)

        proposal = state.proposal
        if proposal is not None:
            for entry in proposal.to_create:
                idx = self._resolve(state, pending, claims, entry.candidate_ref, entry.narrative)
                if idx is None:
                    continue
                claim(idx, ConsolidationAction.CREATE_NEW, ConsolidationDecision(
                    candidate=state.candidates[idx],
                    action=ConsolidationAction.CREATE_NEW,
                    rationale=entry.rationale,
                ))

            for entry in proposal.to_merge:
                target = sent.get(entry.existing_item_id)
                if target is None:
                    logger.debug(f"[{self.__class__.__name__}] Ignoring merge into unknown item {entry.existing_item_id}")
                    continue
                idx = self._resolve(state, pending, claims, entry.candidate_ref, entry.generated_narrative)
                if idx is None:
                    continue
                candidate = state.candidates[idx]
                merged = entry.merged_narrative
                if not merged or not merged.strip():
                    merged = fallback_merge(target, candidate).merged_narrative
                claim(idx, ConsolidationAction.MERGE_WITH_EXISTING, MergeRecord(
                    candidate=candidate,
                    existing_item_id=target.id,
                    existing_narrative=target.narrative,
                    merged_narrative=merged,
                    rationale=entry.reason,
                ))

            for entry in proposal.to_skip:
                if entry.duplicate_of not in sent:
                    logger.debug(f"[{self.__class__.__name__}] Ignoring skip against unknown item {entry.duplicate_of}")
                    continue
                idx = self._resolve(state, pending, claims, entry.candidate_ref, entry.narrative)
                if idx is None:
                    continue
                claim(idx, ConsolidationAction.SKIP, SkipRecord(
                    candidate=state.candidates[idx],
                    duplicate_of=entry.duplicate_of,
                    rationale=entry.reason,
                ))

        to_create, to_merge, to_skip = [], [], []
        pending_set = set(pending)
        for idx, candidate in enumerate(state.candidates):
            if idx in claims:
                record = claims[idx][1]
                if isinstance(record, MergeRecord):
                    to_merge.append(record)
                elif isinstance(record, SkipRecord):
                    to_skip.append(record)
                else:
                    to_create.append(record)
                continue
            rationale = UNCLAIMED_RATIONALE if idx in pending_set else NO_OVERLAP_RATIONALE
            to_create.append(ConsolidationDecision(
                candidate=candidate, action=ConsolidationAction.CREATE_NEW, rationale=rationale,
            ))

        return BatchResult.from_partitions(to_create, to_merge, to_skip)

    def _resolve(self,
                 state: ConsolidationState,
                 pending: Sequence[int],
                 claims: Dict[int, Tuple[int, object]],
                 ref: Optional[str],
                 narrative: Optional[str]) -> Optional[int]:
        if ref:
            label = ref.strip().strip("[]").upper()
            for i in pending:
                if candidate_label(i) == label:
                    return i

        if not narrative or not narrative.strip():
            return None

        wanted = narrative.strip().lower()
        exact = [i for i in pending if state.candidates[i].narrative.strip().lower() == wanted]
        if not exact:
            exact = [i for i in pending if _prefix_match(state.candidates[i].narrative, narrative)]
        if not exact:
            return None

        # Identical narratives: hand out unclaimed candidates first
        for i in exact:
            if i not in claims:
                return i
        return exact[0]


def _prefix_match(a: str, b: str) -> bool:
    a = a.strip().lower()
    b = b.strip().lower()
    if not a or not b:
        return False
    return a[:PREFIX_MATCH_LENGTH] in b or b[:PREFIX_MATCH_LENGTH] in a
