import os
from typing import Any, Dict, Mapping, Optional

from ..core.classifier import DEFAULT_MAX_TOKENS, DEFAULT_THRESHOLD

_TRUTHY = ("1", "true", "yes", "on")


def _flag(value: Optional[str]) -> bool:
    return str(value or "").strip().lower() in _TRUTHY


def build_default_config(env: Optional[Mapping[str, str]] = None) -> Dict[str, Any]:
    """Run configuration from environment variables (or the given mapping)."""
    env = os.environ if env is None else env

    model = env.get("CONSOLIDATION_MODEL", "gemma3:12b")
    llm_settings = {
        "base_url": env.get("CONSOLIDATION_LLM_BASE_URL", "http://localhost:11434/v1"),
        "api_key": env.get("CONSOLIDATION_LLM_API_KEY", "ollama"),
        "timeout": float(env.get("CONSOLIDATION_LLM_TIMEOUT", "60")),
    }
    if env.get("CONSOLIDATION_LLM_CONTEXT_LENGTH"):
        llm_settings["context_length"] = int(env["CONSOLIDATION_LLM_CONTEXT_LENGTH"])

    return {
        "name": "Story_Consolidation",
        "debug": _flag(env.get("CONSOLIDATION_DEBUG")),
        "validate_models": _flag(env.get("CONSOLIDATION_VALIDATE_MODELS")),
        "llm_settings": llm_settings,
        "model": model,
        "temperature": 0.0,
        "max_tokens": dict(DEFAULT_MAX_TOKENS),
        "duplicate_threshold": int(env.get("CONSOLIDATION_DUPLICATE_THRESHOLD", DEFAULT_THRESHOLD)),
        "steps": [
            {
                "type": "prefilter",
                "settings": {
                    "min_shared_tokens": 2,
                    "match_persona": True,
                },
            },
            {
                "type": "classify_batch",
                "settings": {
                    "model": model,
                    "temperature": 0.0,
                },
            },
            {
                "type": "partition",
                "settings": {},
            },
        ],
    }
