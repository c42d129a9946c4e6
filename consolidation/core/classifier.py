"""
Semantic classification adapter.

The only component that talks to the language model. Everything that goes in
is rendered into a prompt here, and everything that comes back is pulled out of
free-form text and validated against pydantic models here. Callers get either a
typed record or one of two exceptions:

- ClassifierUnavailableError: the request itself failed (network, timeout,
  server error, empty reply).
- ClassificationParseError: a reply arrived but held no usable JSON, or the JSON
  did not have the expected shape.

The adapter makes exactly one request per public call and never retries.
Fallback behavior is the caller's job (see steps/merge.py and
core/orchestrator.py).
"""

import json
import re
from typing import Any, Dict, List, Optional, Sequence

from pydantic import TypeAdapter, ValidationError

from ..configs.preprompts import SYSTEM_PROMPT_BY_NAME, get_prompt_by_name
from .errors import ClassificationParseError, ClassifierUnavailableError
from .llm import LLMService
from .logging import ConsolidationObserver
from .models import (
    BatchProposal,
    CandidateItem,
    ExistingItem,
    GroupingContext,
    MergedNarrative,
    MergeInput,
    SimilarityMatch,
)

DEFAULT_THRESHOLD = 60

DEFAULT_MAX_TOKENS = {
    "consolidation": 4096,
    "pair": 2048,
    "merge": 1024,
}

_OBJECT_RE = re.compile(r"\{[\s\S]*\}")
_ARRAY_RE = re.compile(r"\[[\s\S]*\]")

_MATCH_LIST = TypeAdapter(List[SimilarityMatch])


def _clean_json(content: str) -> str:
    # Remove Markdown-style code blocks
    content = re.sub(r"^```(?:json)?\s*|\s*```$", "", content.strip(), flags=re.IGNORECASE)
    # Remove trailing commas before closing brackets
    content = re.sub(r",\s*(?=[\]}])", "", content)
    return content


def extract_json(text: str, expect: str = "object") -> Any:
    """
    Pull the outermost JSON object (or array) out of a reply that may be
    wrapped in prose or code fences.
    """
    pattern = _OBJECT_RE if expect == "object" else _ARRAY_RE
    match = pattern.search(_clean_json(text or ""))
    if not match:
        raise ClassificationParseError(f"No JSON {expect} found in classifier output", raw_output=text)
    try:
        return json.loads(match.group(0))
    except json.JSONDecodeError as e:
        raise ClassificationParseError(f"Malformed JSON in classifier output: {e}", raw_output=text) from e


def candidate_label(index: int) -> str:
    return f"G{index + 1}"


def format_candidate_block(candidates: Sequence[CandidateItem], labels: Sequence[str]) -> str:
    return "\n".join(
        f'[{label}] "{c.narrative}" ({c.persona}, {c.priority.value})'
        for label, c in zip(labels, candidates)
    )


def format_existing_block(existing: Sequence[ExistingItem], bullet: bool = False) -> str:
    prefix = "- " if bullet else ""
    return "\n".join(f'{prefix}[{e.id}] "{e.narrative}" (persona: {e.persona})' for e in existing)


def _format_criteria(criteria: Optional[List[str]]) -> str:
    return "; ".join(criteria) if criteria else "None"


class SemanticClassifier:
    def __init__(self,
                 llm: LLMService,
                 model: str,
                 temperature: float = 0.0,
                 prompt_templates: Optional[Dict[str, str]] = None,
                 max_tokens: Optional[Dict[str, int]] = None,
                 observer: Optional[ConsolidationObserver] = None):
        self.llm = llm
        self.model = model
        self.temperature = temperature
        self.prompt_templates = dict(prompt_templates or {})
        self.max_tokens = {**DEFAULT_MAX_TOKENS, **(max_tokens or {})}
        self.observer = observer

    def _template(self, name: str) -> str:
        return self.prompt_templates.get(name) or get_prompt_by_name(name)

    def _ask(self, operation: str, prompt: str, system: Optional[str] = None) -> str:
        try:
            reply = self.llm.call(
                prompt=prompt,
                model=self.model,
                temperature=self.temperature,
                max_tokens=self.max_tokens.get(operation),
                system=system,
            )
        except Exception as e:
            raise ClassifierUnavailableError(f"{operation} request failed: {e}") from e

        if self.observer:
            self.observer.on_artifact(f"Raw Output for {operation}", reply, depth=0)

        if not reply:
            raise ClassifierUnavailableError(f"{operation} request returned an empty reply")
        return reply

    def classify_batch(self,
                       candidates: Sequence[CandidateItem],
                       existing: Sequence[ExistingItem],
                       context: GroupingContext,
                       labels: Optional[Sequence[str]] = None) -> BatchProposal:
        """One request covering every candidate against the supplied corpus slice."""
        labels = list(labels) if labels is not None else [candidate_label(i) for i in range(len(candidates))]
        prompt = self._template("consolidation").format(
            context_name=context.name,
            context_description=context.description or "Not provided",
            candidate_block=format_candidate_block(candidates, labels),
            existing_block=format_existing_block(existing),
        )
        reply = self._ask("consolidation", prompt, system=SYSTEM_PROMPT_BY_NAME["consolidation"].strip())

        data = extract_json(reply, expect="object")
        try:
            return BatchProposal.model_validate(data)
        except ValidationError as e:
            raise ClassificationParseError(f"Batch reply has unexpected shape: {e}", raw_output=reply) from e

    def classify_pair(self,
                      candidate: CandidateItem,
                      existing_set: Sequence[ExistingItem],
                      threshold: int = DEFAULT_THRESHOLD) -> List[SimilarityMatch]:
        """Similarity matches for one candidate, only those scoring >= threshold."""
        if not existing_set:
            return []

        prompt = self._template("pair").format(
            narrative=candidate.narrative,
            persona=candidate.persona,
            existing_block=format_existing_block(existing_set, bullet=True),
            threshold=threshold,
        )
        system = SYSTEM_PROMPT_BY_NAME["pair"].format(threshold=threshold).strip()
        reply = self._ask("pair", prompt, system=system)

        data = extract_json(reply, expect="array")
        try:
            matches = _MATCH_LIST.validate_python(data)
        except ValidationError as e:
            raise ClassificationParseError(f"Pair reply has unexpected shape: {e}", raw_output=reply) from e

        known_ids = {e.id for e in existing_set}
        return [m for m in matches if m.similarity_score >= threshold and m.existing_item_id in known_ids]

    def merge_pair(self, a: MergeInput, b: MergeInput) -> MergedNarrative:
        prompt = self._template("merge").format(
            narrative_a=a.narrative,
            persona_a=a.persona,
            criteria_a=_format_criteria(a.acceptance_criteria),
            narrative_b=b.narrative,
            persona_b=b.persona,
            criteria_b=_format_criteria(b.acceptance_criteria),
        )
        reply = self._ask("merge", prompt)

        data = extract_json(reply, expect="object")
        try:
            merged = MergedNarrative.model_validate(data)
        except ValidationError as e:
            raise ClassificationParseError(f"Merge reply has unexpected shape: {e}", raw_output=reply) from e
        if not merged.merged_narrative.strip():
            raise ClassificationParseError("Merge reply has an empty merged_narrative", raw_output=reply)
        return merged
