import json
import os
import sys
import threading
from datetime import datetime
from typing import Any, Dict, Optional, Protocol

from loguru import logger

DIVIDER = "=" * 80

# Step settings that are noise (or secrets) in a debug log
_HIDDEN_SETTINGS = ("debug", "llm_settings", "prompt_templates")


class ConsolidationObserver(Protocol):
    def on_run_start(self, name: str, run_id: str): ...

    def on_step_start(self, step_name: str, config: Dict[str, Any], depth: int): ...

    def on_step_end(self, step_name: str, duration: float, tokens: int, state_json: str, depth: int): ...

    def on_artifact(self, label: str, data: Any, depth: int): ...

    def on_fallback(self, operation: str, reason: str): ...

    def on_run_end(self, duration: float): ...

    def log_summary(self, summary_text: str): ...


def _pretty(data: Any) -> str:
    if not isinstance(data, (dict, list)):
        return str(data)
    try:
        return json.dumps(data, indent=2, default=str).replace("\\n", "\n      ")
    except (TypeError, ValueError):
        return str(data)


def _shorten(obj: Any, max_len: int = 1000) -> Any:
    """Cut long strings inside a JSON-like structure."""
    if isinstance(obj, str) and len(obj) > max_len:
        return obj[:max_len] + f"... [truncated {len(obj) - max_len} chars]"
    if isinstance(obj, dict):
        return {k: _shorten(v, max_len) for k, v in obj.items()}
    if isinstance(obj, list):
        return [_shorten(v, max_len) for v in obj]
    return obj


class ConsolidationLogger:
    """
    Observer that writes run events through loguru and keeps usage counters.

    With debug on, events go to logs/consolidation_<run_id>.log and every
    LLM prompt (with its token usage) to logs/consolidation_<run_id>_prompts.log.
    Counters live on the instance, so two orchestrators never share them.
    """

    def __init__(self, run_id: str, debug: bool = False, log_dir: Optional[str] = None):
        self.run_id = run_id
        self.debug = debug
        self.log_file = None
        self.prompt_log_file = None
        self.stats = {"runs": 0, "classifier_calls": 0, "fallbacks": 0, "tokens": 0}

        self._lock = threading.RLock()
        self._open_prompts: Dict[str, Dict[str, str]] = {}
        self._sink_ids = []
        self._log_ctx = logger.bind(run_id=run_id)

        if self.debug:
            if log_dir is None:
                # .../consolidation/core/logging.py -> <project>/logs
                log_dir = os.path.join(
                    os.path.dirname(os.path.dirname(os.path.dirname(os.path.abspath(__file__)))), "logs")
            os.makedirs(log_dir, exist_ok=True)
            self.log_file = os.path.join(log_dir, f"consolidation_{run_id}.log")
            self.prompt_log_file = os.path.join(log_dir, f"consolidation_{run_id}_prompts.log")

    def open(self):
        """Attach the run's file sink (debug only). Runs call this from on_run_start."""
        if not self.log_file or self._sink_ids:
            return
        run_id = self.run_id
        self._sink_ids.append(logger.add(
            self.log_file,
            format="<green>{time:H:mm:ss}</green>\n{message}\n",
            level="DEBUG",
            filter=lambda record: record["extra"].get("run_id") == run_id,
        ))

    def close(self):
        """Detach this run's file sink."""
        for sink_id in self._sink_ids:
            try:
                logger.remove(sink_id)
            except ValueError:
                pass
        self._sink_ids = []

    def __enter__(self):
        self.open()
        return self

    def __exit__(self, exc_type, exc, tb):
        self.close()

    def _count(self, key: str, amount: int = 1):
        with self._lock:
            self.stats[key] += amount

    def _log(self, text: str, depth: int = 0):
        if not self.debug or not text:
            return
        indent = "   " * depth
        self._log_ctx.debug("\n".join(indent + line for line in text.splitlines()))

    def _append(self, path: Optional[str], text: str):
        if not path:
            return
        try:
            with self._lock, open(path, "a", encoding="utf-8") as f:
                f.write(text + "\n")
        except OSError as e:
            logger.error(f"Consolidation log write failed: {e}")

    # --- prompt log: a prompt is written once its usage report arrives ---

    def _write_prompt(self, entry: Dict[str, str], usage: Optional[Dict[str, Any]]):
        if isinstance(usage, dict):
            tokens = " ".join(f"{k}={usage.get(k) if usage.get(k) is not None else '?'}"
                              for k in ("prompt", "completion", "total"))
        else:
            tokens = "unknown"
        self._append(self.prompt_log_file,
                     f"{entry['time']}\n>>> [LLM Prompt]\nTOKENS: {tokens}\n{entry['content']}\n{DIVIDER}")

    def _open_prompt(self, data: Any):
        call_id = data.get("call_id") if isinstance(data, dict) else None
        body = {k: v for k, v in data.items() if k != "call_id"} if isinstance(data, dict) else data
        entry = {"time": datetime.now().strftime("%H:%M:%S"), "content": _pretty(body)}
        with self._lock:
            if call_id:
                self._open_prompts[call_id] = entry
            else:
                self._write_prompt(entry, None)

    def _close_prompt(self, usage: Any):
        call_id = usage.get("call_id") if isinstance(usage, dict) else None
        with self._lock:
            entry = self._open_prompts.pop(call_id, None) if call_id else None
            if entry:
                self._write_prompt(entry, usage)

    def _close_all_prompts(self):
        with self._lock:
            for entry in self._open_prompts.values():
                self._write_prompt(entry, None)
            self._open_prompts.clear()

    # -------------------------------------------------------------------------
    # PUBLIC EVENTS
    # -------------------------------------------------------------------------

    def on_run_start(self, name: str, run_id: str):
        self.open()
        self._count("runs")
        self._log(f"{DIVIDER}\nCONSOLIDATION RUN: {name} (ID: {run_id})\n{DIVIDER}")

    def on_step_start(self, step_name: str, config: Dict[str, Any], depth: int):
        settings = {k: v for k, v in config.items() if k not in _HIDDEN_SETTINGS}
        self._log(f"START STEP: {step_name}\n--- SETTINGS ---\n{_pretty(settings)}\n----------------", depth)

    def on_step_end(self, step_name: str, duration: float, tokens: int, state_json: str, depth: int):
        self._count("tokens", int(tokens or 0))
        if not self.debug:
            return
        try:
            state_text = _pretty(_shorten(json.loads(state_json)))
        except ValueError:
            state_text = state_json

        stats = f"DURATION: {duration:.4f}s" + (f" | TOKENS: {tokens}" if tokens > 0 else "")
        self._log(
            f"--- OUTPUT STATE ---\n{state_text}\n{DIVIDER}\nFINISHED: {step_name} | {stats}\n{DIVIDER}",
            depth,
        )

    def on_artifact(self, label: str, data: Any, depth: int):
        if label == "LLM Prompt":
            self._count("classifier_calls")
            if self.debug:
                self._open_prompt(data)
            return

        if label == "LLM Usage Stats" and self.debug:
            self._close_prompt(data)

        self._log(f">>> [ARTIFACT] {label}\n{_pretty(data)}", depth)

    def on_fallback(self, operation: str, reason: str):
        self._count("fallbacks")
        self._log(f">>> [FALLBACK] {operation}\n{reason}")

    def on_run_end(self, duration: float):
        if self.debug:
            self._close_all_prompts()
        self._log(f"{DIVIDER}\nTOTAL RUN TIME: {duration:.4f}s\n{DIVIDER}")

    def log_summary(self, summary_text: str):
        if self.debug:
            self._append(self.log_file, "\n" + summary_text)


def configure_stderr(level: str = "INFO"):
    """Replace loguru's default handler with a single stderr sink."""
    logger.remove()
    logger.add(sys.stderr, level=level)
