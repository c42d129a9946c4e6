import re
from typing import Dict, Any, Optional, Set, List

import httpx
from loguru import logger


def validate_models(config: Dict[str, Any], transport: Optional[httpx.BaseTransport] = None):
    """
    Validates that every 'model' named in the config is served by the
    OpenAI-compatible endpoint in config['llm_settings'].
    """
    logger.info("--- Validating Model Availability ---")

    models = _collect_models_recursive(config)
    if not models:
        logger.info("    No LLM models ('model') found to validate.")
        return

    errors = _validate_server_models(config, models, transport=transport)
    if errors:
        logger.error("[CRITICAL] MODEL VALIDATION FAILED")
        for err in errors:
            logger.error(f"   - {err}")
        raise ValueError("Consolidation service cannot start due to missing models: " + "; ".join(errors))

    logger.info("[OK] All models validated successfully.")


def _collect_models_recursive(data: Any) -> Set[str]:
    """Recursively finds all values for 'model' keys."""
    models = set()

    if isinstance(data, dict):
        for k, v in data.items():
            if k == "model" and isinstance(v, str):
                models.add(v)
            else:
                models.update(_collect_models_recursive(v))

    elif isinstance(data, list):
        for item in data:
            models.update(_collect_models_recursive(item))

    return models


def _validate_server_models(config: Dict,
                            models: Set[str],
                            transport: Optional[httpx.BaseTransport] = None) -> List[str]:
    """Checks if models exist on the server (OpenAI /models, or Ollama /api/tags)."""
    llm_settings = config.get("llm_settings", {})
    base_url = llm_settings.get("base_url", "http://localhost:11434/v1")
    api_key = llm_settings.get("api_key")
    headers = {"Authorization": f"Bearer {api_key}"} if api_key else {}

    missing = []

    try:
        models_url = f"{base_url.rstrip('/')}/models"

        with httpx.Client(timeout=5.0, transport=transport, headers=headers) as client:
            resp = client.get(models_url)

            if resp.status_code == 404:
                # Fallback to Ollama native API
                alt_url = re.sub(r"/v1$", "", base_url.rstrip('/')) + "/api/tags"
                resp = client.get(alt_url)
                resp.raise_for_status()
                available_models = {m["name"] for m in resp.json().get("models", [])}
            else:
                resp.raise_for_status()
                available_models = {m["id"] for m in resp.json().get("data", [])}

    except (httpx.HTTPError, ValueError, KeyError) as e:
        logger.warning(f"    Could not query LLM server: {e}")
        return [f"LLM Server Unreachable: {e}"]

    for req in sorted(models):
        # Check exact match or :latest match
        if req not in available_models and f"{req}:latest" not in available_models:
            logger.error(f"    LLM Model missing: {req}")
            missing.append(f"Missing LLM: {req}")
        else:
            logger.info(f"    [OK] LLM: {req}")

    return missing
