from enum import Enum
from typing import Any, Dict, List, Optional

from pydantic import AliasChoices, BaseModel, Field, field_validator


class Priority(str, Enum):
    P0 = "P0"
    P1 = "P1"
    P2 = "P2"


class OverlapType(str, Enum):
    """How the classifier judges two narratives to relate.

    Values:
        EXACT_DUPLICATE: Same functionality described differently.
        FUNCTIONAL_OVERLAP: Significant shared functionality that should be merged.
        PARTIAL_OVERLAP: Some shared aspects but distinct enough to keep apart.
        RELATED: Thematically related but clearly different functionality.
    """
    EXACT_DUPLICATE = "exact_duplicate"
    FUNCTIONAL_OVERLAP = "functional_overlap"
    PARTIAL_OVERLAP = "partial_overlap"
    RELATED = "related"


class MergeRecommendation(str, Enum):
    MERGE = "merge"
    KEEP_SEPARATE = "keep_separate"
    REVIEW = "review"


class ConsolidationAction(str, Enum):
    CREATE_NEW = "create_new"
    MERGE_WITH_EXISTING = "merge_with_existing"
    SKIP = "skip"


class DuplicateRecommendation(str, Enum):
    PROCEED = "proceed"
    REVIEW_MATCHES = "review_matches"
    SKIP_DUPLICATE = "skip_duplicate"


class ExistingItem(BaseModel):
    """An accepted record of the corpus. Read-only for the engine."""
    id: str
    narrative: str
    persona: str
    grouping_area: Optional[str] = None
    grouping_id: Optional[str] = None
    acceptance_criteria: List[str] = Field(default_factory=list)


class CandidateItem(BaseModel):
    """A newly generated narrative awaiting a create/merge/skip decision."""
    narrative: str
    persona: str
    priority: Priority = Priority.P1
    acceptance_criteria: List[str] = Field(default_factory=list)
    rationale: str = ""


class GroupingContext(BaseModel):
    name: str
    description: Optional[str] = None


class SimilarityMatch(BaseModel):
    existing_item_id: str = Field(validation_alias=AliasChoices("existing_item_id", "story_id"))
    narrative: str
    similarity_score: int = Field(ge=0, le=100)
    overlap_type: OverlapType
    overlapping_aspects: List[str] = Field(default_factory=list)
    merge_recommendation: MergeRecommendation = MergeRecommendation.REVIEW
    merge_rationale: str = ""

    @field_validator("similarity_score", mode="before")
    @classmethod
    def _clamp_score(cls, value: Any) -> Any:
        # Classifiers sometimes answer 87.5 or 0.87 style scores
        if isinstance(value, float):
            if 0.0 < value <= 1.0:
                value = value * 100
            value = int(value + 0.5)
        if isinstance(value, int):
            return max(0, min(100, value))
        return value


class ConsolidationDecision(BaseModel):
    candidate: CandidateItem
    action: ConsolidationAction
    merged_with: List[str] = Field(default_factory=list)
    rationale: str = ""


class MergeRecord(BaseModel):
    candidate: CandidateItem
    existing_item_id: str
    existing_narrative: str
    merged_narrative: str
    rationale: str = ""


class SkipRecord(BaseModel):
    candidate: CandidateItem
    duplicate_of: str
    rationale: str = ""


class BatchSummary(BaseModel):
    total_generated: int = 0
    new_stories: int = 0
    merges_suggested: int = 0
    duplicates_found: int = 0


class BatchResult(BaseModel):
    to_create: List[ConsolidationDecision] = Field(default_factory=list)
    to_merge: List[MergeRecord] = Field(default_factory=list)
    to_skip: List[SkipRecord] = Field(default_factory=list)
    summary: BatchSummary = Field(default_factory=BatchSummary)

    @classmethod
    def from_partitions(cls,
                        to_create: List[ConsolidationDecision],
                        to_merge: List[MergeRecord],
                        to_skip: List[SkipRecord]) -> "BatchResult":
        return cls(
            to_create=to_create,
            to_merge=to_merge,
            to_skip=to_skip,
            summary=BatchSummary(
                total_generated=len(to_create) + len(to_merge) + len(to_skip),
                new_stories=len(to_create),
                merges_suggested=len(to_merge),
                duplicates_found=len(to_skip),
            ),
        )


class MergeInput(BaseModel):
    narrative: str
    persona: str
    acceptance_criteria: List[str] = Field(default_factory=list)


class MergedNarrative(BaseModel):
    merged_narrative: str
    merged_criteria: List[str] = Field(default_factory=list)


class DuplicateCheckResult(BaseModel):
    candidate: CandidateItem
    similar_existing: List[SimilarityMatch] = Field(default_factory=list)
    has_potential_duplicates: bool = False
    recommendation: DuplicateRecommendation = DuplicateRecommendation.PROCEED


# -------------------------------------------------------------------------
# CLASSIFIER PROPOSAL (raw, before reconciliation against the real batch)
# -------------------------------------------------------------------------
class _ProposedEntry(BaseModel):
    candidate_ref: Optional[str] = None

    @field_validator("candidate_ref", mode="before")
    @classmethod
    def _label_from_number(cls, value: Any) -> Any:
        # Models sometimes answer 1 instead of "G1"
        if isinstance(value, int) and not isinstance(value, bool):
            return f"G{value}"
        if isinstance(value, str) and value.strip().isdigit():
            return f"G{value.strip()}"
        return value


class ProposedCreate(_ProposedEntry):
    narrative: Optional[str] = None
    rationale: str = ""


class ProposedMerge(_ProposedEntry):
    generated_narrative: Optional[str] = None
    existing_item_id: str = Field(validation_alias=AliasChoices("existing_item_id", "existing_story_id"))
    merged_narrative: Optional[str] = None
    reason: str = ""


class ProposedSkip(_ProposedEntry):
    narrative: Optional[str] = None
    duplicate_of: str
    reason: str = ""


class BatchProposal(BaseModel):
    """What the classifier claims, keyed loosely to candidates."""
    to_create: List[ProposedCreate] = Field(
        default_factory=list, validation_alias=AliasChoices("to_create", "stories_to_create"))
    to_merge: List[ProposedMerge] = Field(
        default_factory=list, validation_alias=AliasChoices("to_merge", "stories_to_merge"))
    to_skip: List[ProposedSkip] = Field(
        default_factory=list, validation_alias=AliasChoices("to_skip", "stories_to_skip"))


class ConsolidationState(BaseModel):
    """The 'Source of Truth' passing between consolidation steps."""
    candidates: List[CandidateItem] = Field(default_factory=list)
    existing: List[ExistingItem] = Field(default_factory=list)
    context: Optional[GroupingContext] = None

    # candidate index -> ids of existing items that survived the prefilter
    shortlists: Dict[int, List[str]] = Field(default_factory=dict)
    proposal: Optional[BatchProposal] = None
    fallback_reason: Optional[str] = None
    result: Optional[BatchResult] = None

    depth: int = 0
    execution_log: List[Dict[str, Any]] = Field(default_factory=list)
