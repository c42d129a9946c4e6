import time
from abc import ABC, abstractmethod
from typing import Dict, Any, Optional

from loguru import logger

from .classifier import SemanticClassifier
from .llm import LLMService
from .models import ConsolidationState
from .logging import ConsolidationObserver


def build_classifier(config: Dict[str, Any],
                     observer: Optional[ConsolidationObserver] = None) -> SemanticClassifier:
    """Classifier from a step (or top level) config block."""
    llm = LLMService(config.get("llm_settings", {}), observer=observer)
    return SemanticClassifier(
        llm,
        model=config.get("model", "gemma3:12b"),
        temperature=config.get("temperature", 0.0),
        prompt_templates=config.get("prompt_templates"),
        max_tokens=config.get("max_tokens"),
        observer=observer,
    )


class ConsolidationStep(ABC):
    def __init__(self, step_config: Dict[str, Any]):
        self.config = step_config
        self.step_name = self.config.get("name", self.__class__.__name__)
        self.debug = self.config.get("debug", False)

        self._classifier: Optional[SemanticClassifier] = None

        # Injected by the Orchestrator
        self.observer: Optional[ConsolidationObserver] = None

    @property
    def classifier(self) -> SemanticClassifier:
        if self._classifier is None:
            self._classifier = build_classifier(self.config, observer=self.observer)
        return self._classifier

    @classifier.setter
    def classifier(self, value: SemanticClassifier) -> None:
        self._classifier = value

    def _step_tokens(self) -> int:
        llm = getattr(self._classifier, "llm", None)
        usage = getattr(llm, "token_usage", None)
        if isinstance(usage, dict):
            return int(usage.get("total_tokens", 0))
        return 0

    def run(self, state: ConsolidationState) -> ConsolidationState:
        """
        The standard execution wrapper.
        Handles timing, logging events, and stats tracking.
        DO NOT OVERRIDE. Override execute() instead.
        """
        start_time = time.time()
        tokens_before = self._step_tokens()

        if self.observer:
            self.observer.on_step_start(self.step_name, self.config, state.depth)

        try:
            new_state = self.execute(state)
        except Exception as e:
            logger.error(f"Step {self.step_name} failed: {e}")
            raise

        duration = time.time() - start_time
        tokens = self._step_tokens() - tokens_before

        if self.observer:
            # Serialize state here so the observer stays decoupled from pydantic
            state_json = new_state.model_dump_json(indent=2)
            self.observer.on_step_end(self.step_name, duration, tokens, state_json, state.depth)

        new_state.execution_log.append({
            "step": self.step_name,
            "duration": duration,
            "tokens": tokens,
            "indent": state.depth,
        })

        return new_state

    def log_artifact(self, label: str, data: Any):
        """
        Call this inside your execute() method to log intermediate data.
        """
        if self.observer:
            self.observer.on_artifact(label, data, depth=0)

    @abstractmethod
    def execute(self, state: ConsolidationState) -> ConsolidationState:
        pass
