import copy
import io
import time
import uuid
from datetime import datetime
from typing import Any, Dict, Iterable, List, Optional

from pydantic import TypeAdapter, ValidationError

# Rich is still used for the pretty terminal table
from rich import box
from rich.console import Console
from rich.table import Table

from ..configs.default_config import build_default_config
from ..steps.classification import EMPTY_CORPUS_RATIONALE, PartitionStep, all_new
from ..steps.duplicates import check_duplicates as _check_duplicates
from ..steps.merge import merge_narratives as _merge_narratives
from .base import build_classifier
from .classifier import SemanticClassifier
from .errors import InvalidBatchError
from .factory import StepFactory
from .logging import ConsolidationLogger, ConsolidationObserver
from .models import (
    BatchResult,
    CandidateItem,
    ConsolidationState,
    DuplicateCheckResult,
    ExistingItem,
    GroupingContext,
    MergedNarrative,
)

_CANDIDATES = TypeAdapter(List[CandidateItem])
_EXISTING = TypeAdapter(List[ExistingItem])


def _coerce_batch(candidates: Iterable[Any],
                  existing: Optional[Iterable[Any]],
                  context: Any):
    try:
        candidates = _CANDIDATES.validate_python(list(candidates or []))
        existing = _EXISTING.validate_python(list(existing or []))
        if context is not None and not isinstance(context, GroupingContext):
            context = GroupingContext.model_validate(context)
    except ValidationError as e:
        raise InvalidBatchError(f"Malformed consolidation input: {e}") from e

    if not candidates:
        raise InvalidBatchError("At least one candidate is required")
    if context is None or not context.name.strip():
        raise InvalidBatchError("A grouping context with a name is required")
    return candidates, existing, context


class ConsolidationOrchestrator:
    def __init__(self,
                 config: Optional[Dict[str, Any]] = None,
                 classifier: Optional[SemanticClassifier] = None,
                 observer: Optional[ConsolidationObserver] = None):
        self.config = copy.deepcopy(config) if config is not None else build_default_config()
        self.name = self.config.get("name", "Consolidation")
        self.run_id = self.config.get("run_id") or f"{datetime.now().strftime('%Y%m%d_%H%M%S')}_{uuid.uuid4().hex[:6]}"
        self.debug = self.config.get("debug", False)
        self.duplicate_threshold = int(self.config.get("duplicate_threshold", 60))

        # 1. Observer doubles as the metrics sink; a logger built here is closed after each run
        self._owns_observer = observer is None
        self.observer = observer or ConsolidationLogger(
            self.run_id, debug=self.debug, log_dir=self.config.get("log_dir"))

        self._classifier = classifier

        # 2. Build Steps
        self.steps = []
        for step_def in self.config.get("steps", []):
            settings = step_def.setdefault("settings", {})
            settings.setdefault("debug", self.debug)
            settings.setdefault("llm_settings", self.config.get("llm_settings", {}))
            for key in ("max_tokens", "prompt_templates"):
                if key in self.config:
                    settings.setdefault(key, self.config[key])

            step = StepFactory.create(step_def)
            step.observer = self.observer
            if classifier is not None:
                step.classifier = classifier
            self.steps.append(step)

    @property
    def classifier(self) -> SemanticClassifier:
        if self._classifier is None:
            self._classifier = build_classifier(self.config, observer=self.observer)
        return self._classifier

    def consolidate(self,
                    candidates: Iterable[Any],
                    existing: Optional[Iterable[Any]],
                    context: Any) -> BatchResult:
        candidates, existing, context = _coerce_batch(candidates, existing, context)

        self.observer.on_run_start(self.name, self.run_id)
        try:
            return self._run(candidates, existing, context)
        finally:
            if self._owns_observer:
                self.observer.close()

    def _run(self,
             candidates: List[CandidateItem],
             existing: List[ExistingItem],
             context: GroupingContext) -> BatchResult:
        total_start = time.time()

        # Nothing to compare against: every candidate is new, no classifier call
        if not existing:
            result = all_new(candidates, EMPTY_CORPUS_RATIONALE)
            self.observer.on_run_end(time.time() - total_start)
            return result

        state = ConsolidationState(candidates=candidates, existing=existing, context=context)
        for step in self.steps:
            state = step.run(state)

        if state.result is None:
            partition = PartitionStep({"name": "partition"})
            partition.observer = self.observer
            state = partition.run(state)

        total_duration = time.time() - total_start
        self.observer.on_run_end(total_duration)

        if self.debug:
            self._print_and_log_summary(state, total_duration)

        return state.result

    def merge_narratives(self, a: Any, b: Any) -> MergedNarrative:
        return _merge_narratives(a, b, classifier=self.classifier, observer=self.observer)

    def check_duplicates(self,
                         candidate: Any,
                         existing: Optional[Iterable[Any]],
                         threshold: Optional[int] = None) -> DuplicateCheckResult:
        try:
            candidate = CandidateItem.model_validate(candidate) \
                if not isinstance(candidate, CandidateItem) else candidate
            existing = _EXISTING.validate_python(list(existing or []))
        except ValidationError as e:
            raise InvalidBatchError(f"Malformed duplicate check input: {e}") from e

        return _check_duplicates(
            candidate,
            existing,
            classifier=self.classifier if existing else None,
            threshold=self.duplicate_threshold if threshold is None else threshold,
            observer=self.observer,
        )

    def _print_and_log_summary(self, state: ConsolidationState, total_duration: float):
        """
        Generates the Rich table, prints it to stdout, and logs it to file.
        """
        table = Table(
            title=f"CONSOLIDATION SUMMARY: {self.name}",
            title_justify="left",
            box=box.ROUNDED,
            show_header=True
        )
        table.add_column("Step Name", justify="left", no_wrap=True)
        table.add_column("Duration", justify="right")
        table.add_column("Tokens", justify="right")

        total_tokens = 0
        for entry in state.execution_log:
            tokens = int(entry.get("tokens", 0))
            total_tokens += tokens
            padding = "   " * entry.get("indent", 0)
            table.add_row(
                f"{padding}{entry.get('step', 'Unknown')}",
                f"{float(entry.get('duration', 0.0)):.4f}s",
                str(tokens) if tokens > 0 else "-",
            )

        table.add_section()
        table.add_row("TOTAL", f"{total_duration:.4f}s", str(total_tokens))

        if state.result is not None:
            s = state.result.summary
            table.caption = (
                f"generated={s.total_generated} new={s.new_stories} "
                f"merges={s.merges_suggested} duplicates={s.duplicates_found}"
                + (" (fallback)" if state.fallback_reason else "")
            )

        Console().print(table)

        string_buffer = io.StringIO()
        file_console = Console(file=string_buffer, no_color=True, width=150)
        file_console.print(table)
        self.observer.log_summary(string_buffer.getvalue())


# -------------------------------------------------------------------------
# MODULE LEVEL SHORTCUTS
# -------------------------------------------------------------------------
def consolidate(candidates: Iterable[Any],
                existing: Optional[Iterable[Any]],
                context: Any,
                config: Optional[Dict[str, Any]] = None,
                classifier: Optional[SemanticClassifier] = None) -> BatchResult:
    return ConsolidationOrchestrator(config, classifier=classifier).consolidate(candidates, existing, context)


def merge_narratives(a: Any,
                     b: Any,
                     config: Optional[Dict[str, Any]] = None,
                     classifier: Optional[SemanticClassifier] = None) -> MergedNarrative:
    return ConsolidationOrchestrator(config, classifier=classifier).merge_narratives(a, b)


def check_duplicates(candidate: Any,
                     existing: Optional[Iterable[Any]],
                     threshold: Optional[int] = None,
                     config: Optional[Dict[str, Any]] = None,
                     classifier: Optional[SemanticClassifier] = None) -> DuplicateCheckResult:
    return ConsolidationOrchestrator(config, classifier=classifier).check_duplicates(candidate, existing, threshold)
