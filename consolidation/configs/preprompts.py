def get_prompt_by_name(name: str) -> str:
    key = name.strip().lower()
    try:
        return PROMPT_TMPL_BY_NAME[key]
    except KeyError as exc:
        raise KeyError(
            f"Unknown prompt template: {name}. Available: {', '.join(PROMPT_TMPL_BY_NAME)}"
        ) from exc


# ────────────────────────────────────────────────────────────────────
# Bulk consolidation: generated stories vs. existing stories
# ────────────────────────────────────────────────────────────────────
SYSTEM_PROMPT_CONSOLIDATION = """
You are an expert at analyzing user stories for functional overlap and duplication.

Your task is to compare newly generated user stories against existing stories in a feature and:
1. Identify exact duplicates (same functionality, different wording)
2. Find functional overlaps (stories that could be combined)
3. Detect partial overlaps (some shared aspects)
4. Note related but distinct stories

For each generated story, you must determine:
- Does an existing story already cover this functionality?
- Could this be merged with an existing story without losing value?
- Is this truly a new piece of functionality?

OVERLAP TYPES:
- exact_duplicate: Same functionality described differently (e.g., "view reservations" vs "see my reservations")
- functional_overlap: Significant shared functionality that should be merged (e.g., "cancel reservation" could include "get confirmation of cancellation")
- partial_overlap: Some shared aspects but distinct enough to keep separate
- related: Thematically related but clearly different functionality

MERGE RECOMMENDATIONS:
- merge: Stories should be combined into one
- keep_separate: Stories are distinct enough to remain separate
- review: Human should decide (borderline cases)
"""

PROMPT_TMPL_CONSOLIDATION = """
Analyze these newly generated stories against existing stories for consolidation.

FEATURE CONTEXT:
Name: {context_name}
Description: {context_description}

NEWLY GENERATED STORIES:
{candidate_block}

EXISTING STORIES IN THIS FEATURE:
{existing_block}

For each generated story, determine if it should be:
1. Created as new (no significant overlap)
2. Merged with an existing story (provide merged narrative)
3. Skipped as duplicate

Every generated story label (G1, G2, ...) must appear exactly once.

STRICT OUTPUT
A single JSON object, no commentary, no markdown:
{{
  "to_create": [{{"candidate_ref": "G1", "rationale": "..."}}],
  "to_merge": [{{"candidate_ref": "G2", "existing_item_id": "<existing id>", "merged_narrative": "...", "reason": "..."}}],
  "to_skip": [{{"candidate_ref": "G3", "duplicate_of": "<existing id>", "reason": "..."}}]
}}
"""


# ────────────────────────────────────────────────────────────────────
# Single story duplicate check
# ────────────────────────────────────────────────────────────────────
SYSTEM_PROMPT_PAIR = """
You analyze user stories for semantic similarity and functional overlap.
Return a JSON array of matches with existing_item_id, narrative, similarity_score (0-100), overlap_type,
overlapping_aspects, merge_recommendation, and merge_rationale.
Only include stories with similarity_score >= {threshold}.
"""

PROMPT_TMPL_PAIR = """
Compare this generated story to existing stories and find matches.

GENERATED STORY:
"{narrative}" (persona: {persona})

EXISTING STORIES:
{existing_block}

overlap_type is one of: exact_duplicate, functional_overlap, partial_overlap, related.
merge_recommendation is one of: merge, keep_separate, review.

STRICT OUTPUT
A JSON array of match objects for stories with similarity >= {threshold}. Return [] if none.
"""


# ────────────────────────────────────────────────────────────────────
# Merge two overlapping stories
# ────────────────────────────────────────────────────────────────────
PROMPT_TMPL_MERGE = """
Merge these two overlapping user stories into a single comprehensive story.

STORY 1:
"{narrative_a}" ({persona_a})
Acceptance Criteria: {criteria_a}

STORY 2:
"{narrative_b}" ({persona_b})
Acceptance Criteria: {criteria_b}

STRICT OUTPUT
Return JSON: {{ "merged_narrative": "...", "merged_criteria": ["..."] }}
"""


PROMPT_TMPL_BY_NAME = {
    "consolidation": PROMPT_TMPL_CONSOLIDATION,
    "pair": PROMPT_TMPL_PAIR,
    "merge": PROMPT_TMPL_MERGE,
}

SYSTEM_PROMPT_BY_NAME = {
    "consolidation": SYSTEM_PROMPT_CONSOLIDATION,
    "pair": SYSTEM_PROMPT_PAIR,
}
