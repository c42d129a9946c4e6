"""
Lexical prefilter: narrows the existing corpus before any classifier call.

An existing item survives when it shares at least `min_shared_tokens` long
words (more than three characters, punctuation removed) with the candidate,
or when it has the candidate's persona. Near duplicates with no shared long
word are missed; that is the price for shipping far less text to the model.

Inputs:
- state.candidates, state.existing.
- config keys: enabled (default True), min_shared_tokens (default 2),
  match_persona (default True).

Outputs:
- state.shortlists: candidate index -> ids of surviving existing items, in
  corpus order. Every candidate gets an entry, possibly empty.
"""

from typing import List, Sequence

from ..core.base import ConsolidationStep
from ..core.classifier import candidate_label
from ..core.models import CandidateItem, ConsolidationState, ExistingItem
from ..core.text import long_tokens, same_persona

MIN_SHARED_TOKENS = 2


def prefilter(candidate: CandidateItem,
              existing: Sequence[ExistingItem],
              min_shared_tokens: int = MIN_SHARED_TOKENS,
              match_persona: bool = True) -> List[ExistingItem]:
    candidate_words = long_tokens(candidate.narrative)
    shortlist = []
    for item in existing:
        common = len(candidate_words & long_tokens(item.narrative))
        if common >= min_shared_tokens or (match_persona and same_persona(item.persona, candidate.persona)):
            shortlist.append(item)
    return shortlist


class PrefilterStep(ConsolidationStep):
    def execute(self, state: ConsolidationState) -> ConsolidationState:
        if not self.config.get("enabled", True):
            all_ids = [e.id for e in state.existing]
            state.shortlists = {i: list(all_ids) for i in range(len(state.candidates))}
            return state

        min_shared = int(self.config.get("min_shared_tokens", MIN_SHARED_TOKENS))
        match_persona = bool(self.config.get("match_persona", True))

        state.shortlists = {
            i: [e.id for e in prefilter(c, state.existing, min_shared, match_persona)]
            for i, c in enumerate(state.candidates)
        }

        self.log_artifact(
            "Prefilter Shortlists",
            {candidate_label(i): ids for i, ids in state.shortlists.items()},
        )
        return state
