import uuid
from typing import Any, Dict, List, Optional

import openai

from .logging import ConsolidationObserver


class LLMService:
    """
    Thin chat-completion client for an OpenAI-compatible server (Ollama by default).

    Keeps running token totals and reports every prompt and its usage to the
    observer, paired by a per-call id.
    """

    def __init__(self,
                 config: Dict[str, Any],
                 observer: Optional[ConsolidationObserver] = None,
                 client: Optional[Any] = None):
        self.base_url = config.get("base_url", "http://localhost:11434/v1")
        self.api_key = config.get("api_key", "ollama")
        self.timeout = float(config.get("timeout", 60.0))
        self.context_length = _positive_int(config.get("context_length") or config.get("num_ctx"))
        self.observer = observer

        # No automatic retries: a failed call goes straight to the fallback policy
        self.client = client or openai.OpenAI(
            base_url=self.base_url,
            api_key=self.api_key,
            timeout=self.timeout,
            max_retries=0,
        )

        self.token_usage = {"prompt_tokens": 0, "completion_tokens": 0, "total_tokens": 0}

    def _messages(self, prompt: str, system: Optional[str]) -> List[Dict[str, str]]:
        messages = [{"role": "system", "content": system}] if system else []
        messages.append({"role": "user", "content": prompt})
        return messages

    def _report(self, label: str, data: Dict[str, Any]):
        if self.observer:
            self.observer.on_artifact(label, data, depth=0)

    def call(self,
             prompt: str,
             model: str,
             temperature: float,
             max_tokens: Optional[int] = None,
             system: Optional[str] = None) -> str:
        if max_tokens is not None and max_tokens <= 0:
            raise ValueError("max_tokens must be a positive integer")
        if temperature is None or temperature < 0:
            raise ValueError("temperature must be zero or positive")

        call_id = uuid.uuid4().hex
        request = {
            "model": model,
            "messages": self._messages(prompt, system),
            "temperature": temperature,
        }
        if max_tokens is not None:
            request["max_tokens"] = max_tokens
        if self.context_length is not None:
            # Ollama reads its context window from options.num_ctx
            request["extra_body"] = {"options": {"num_ctx": self.context_length}}

        self._report("LLM Prompt", {
            "call_id": call_id,
            "model": model,
            "temperature": temperature,
            "max_tokens": max_tokens,
            "system": system,
            "prompt": prompt,
        })

        usage = {"call_id": call_id, "model": model, "prompt": None, "completion": None, "total": None}
        try:
            response = self.client.chat.completions.create(**request)
        except Exception as e:
            self._report("LLM Usage Stats", dict(usage, error=str(e)))
            raise RuntimeError(f"LLM Service Error [Model: {model}]: {e}") from e

        u = getattr(response, "usage", None)
        if u:
            self.token_usage["prompt_tokens"] += u.prompt_tokens
            self.token_usage["completion_tokens"] += u.completion_tokens
            self.token_usage["total_tokens"] += u.total_tokens
            usage.update(prompt=u.prompt_tokens, completion=u.completion_tokens, total=u.total_tokens)
        self._report("LLM Usage Stats", usage)

        content = response.choices[0].message.content
        return content.strip() if content else ""


def _positive_int(value: Any) -> Optional[int]:
    try:
        value = int(value)
    except (TypeError, ValueError):
        return None
    return value if value > 0 else None
