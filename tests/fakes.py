"""
Scripted stand-ins for the LLM router used across the test suite.
"""

import itertools
from typing import Any, Callable, Dict, List, Optional, Union

from core.errors import ConfigurationError, generation_error_for
from llm.anthropic_client import ToolCall
from llm.router import LLMProvider, LLMResponse, TaskType

_ids = itertools.count(1)


def tool_call(name: str, **tool_input) -> ToolCall:
    return ToolCall(id=f"toolu_{next(_ids)}", name=name, input=tool_input)


def tool_response(*calls: ToolCall, text: str = "") -> LLMResponse:
    """A successful response carrying tool calls."""
    raw_content: List[Dict[str, Any]] = []
    if text:
        raw_content.append({"type": "text", "text": text})
    for call in calls:
        raw_content.append({"type": "tool_use", "id": call.id, "name": call.name, "input": call.input})
    return LLMResponse(
        text=text,
        success=True,
        provider=LLMProvider.ANTHROPIC,
        stop_reason="tool_use",
        tool_calls=list(calls),
        raw_content=raw_content,
    )


def text_response(text: str) -> LLMResponse:
    return LLMResponse(
        text=text,
        success=True,
        provider=LLMProvider.ANTHROPIC,
        stop_reason="end_turn",
        raw_content=[{"type": "text", "text": text}],
    )


def error_response(error: str, error_type: str) -> LLMResponse:
    return LLMResponse(
        text="",
        success=False,
        provider=LLMProvider.ANTHROPIC,
        error=error,
        error_type=error_type,
    )


ChatStep = Union[LLMResponse, Callable[[List[Dict[str, Any]]], LLMResponse]]
CompleteFn = Callable[[str, TaskType], str]


class FakeRouter:
    """
    Router double.

    chat() replays a script of responses (or callables that build one from
    the transcript); once the script runs out it keeps answering with the
    fallback step. complete() delegates to complete_fn, which may raise
    GenerationError subclasses to simulate failures.
    """

    def __init__(
        self,
        chat_script: Optional[List[ChatStep]] = None,
        complete_fn: Optional[CompleteFn] = None,
        fallback: Optional[ChatStep] = None,
        configured: bool = True
    ):
        self.chat_script = list(chat_script or [])
        self.complete_fn = complete_fn or (lambda prompt, task_type: "Sub-reader answer.")
        self.fallback = fallback or text_response("Finished.")
        self.configured = configured
        self.chat_calls: List[Dict[str, Any]] = []
        self.complete_calls: List[Dict[str, Any]] = []

    def require_provider(self, task_type: TaskType) -> None:
        if not self.configured:
            raise ConfigurationError("No Anthropic API key configured")

    def chat(self, messages, system_prompt=None, task_type=TaskType.READER, tools=None, **kwargs) -> LLMResponse:
        self.chat_calls.append({
            "messages": [dict(m) for m in messages],
            "system_prompt": system_prompt,
            "task_type": task_type,
            "tools": tools,
            **kwargs,
        })
        step = self.chat_script.pop(0) if self.chat_script else self.fallback
        return step(messages) if callable(step) else step

    def complete(self, prompt: str, task_type: TaskType = TaskType.REWRITE, **kwargs) -> str:
        self.complete_calls.append({"prompt": prompt, "task_type": task_type, **kwargs})
        return self.complete_fn(prompt, task_type)


def failing_complete(error_type: str, message: str = "failed") -> CompleteFn:
    """complete_fn that always raises the matching GenerationError."""
    def complete(prompt: str, task_type: TaskType) -> str:
        raise generation_error_for(message, error_type)
    return complete


