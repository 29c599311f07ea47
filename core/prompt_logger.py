"""
Deep Reader - API Prompt Logger
JSON Lines logging for all provider requests and responses
"""

import json
from datetime import datetime
from typing import Optional, List, Dict, Any
from threading import Lock

from config import PROMPT_LOG_ENABLED, PROMPT_LOG_PATH
from core.logger import log_warning

# Thread-safe file writing
_write_lock = Lock()


def log_api_request(
    provider: str,
    model: str,
    task: str,
    system_prompt: Optional[str],
    messages: List[Dict[str, Any]],
    settings: Dict[str, Any],
    response_text: str,
    tokens_in: int,
    tokens_out: int,
    success: bool,
    tool_calls: Optional[List[str]] = None,
    error: Optional[str] = None
) -> None:
    """
    Log an API request and response to the JSON Lines file.

    Args:
        provider: LLM provider name (anthropic, kobold)
        model: Model identifier
        task: Task type the request was routed for
        system_prompt: Full system prompt sent to API
        messages: Conversation messages array
        settings: Request settings (temperature, max_tokens, timeout, etc.)
        response_text: The response text from the API
        tokens_in: Input token count
        tokens_out: Output token count
        success: Whether the request succeeded
        tool_calls: Names of the tools the model invoked
        error: Error message if failed
    """
    if not PROMPT_LOG_ENABLED:
        return

    entry = {
        "timestamp": datetime.now().isoformat(),
        "provider": provider,
        "model": model,
        "task": task,
        "system_prompt": system_prompt,
        "messages": messages,
        "settings": settings,
        "response": {
            "text": response_text,
            "tool_calls": tool_calls or [],
            "tokens_in": tokens_in,
            "tokens_out": tokens_out,
            "success": success,
            "error": error
        }
    }

    _write_entry(entry)


def _write_entry(entry: Dict[str, Any]) -> None:
    """Write a single entry to the log file (thread-safe)."""
    with _write_lock:
        try:
            PROMPT_LOG_PATH.parent.mkdir(parents=True, exist_ok=True)
            with open(PROMPT_LOG_PATH, "a", encoding="utf-8") as f:
                # Continuation messages carry SDK content blocks; stringify anything non-JSON
                f.write(json.dumps(entry, ensure_ascii=False, default=str) + "\n")
        except OSError as e:
            # Don't let logging failures break a read
            log_warning(f"Failed to write prompt log: {e}")
