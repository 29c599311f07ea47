"""
Deep Reader - Tool Loop
Bounded multi-round conversation in which the model calls registered tools.

Each round sends the transcript with the tool schemas, executes every tool
call in the response, and appends the assistant content blocks plus a
tool_result message. The loop ends when the pass reports it is finished,
when the model stops calling tools, when the round ceiling is reached, or
when the provider fails.
"""

import time
from dataclasses import dataclass
from enum import Enum
from typing import Any, Callable, Dict, List, Optional

from core.logger import log_info, log_warning, log_error
from llm.router import LLMRouter, TaskType
from reading.tools.registry import ToolRegistry, ToolResult


class StopReason(Enum):
    """Why a tool loop ended."""
    TERMINAL = "terminal"            # The pass accepted done()
    NO_TOOL_CALLS = "no_tool_calls"  # The model answered without calling tools
    ROUND_LIMIT = "round_limit"      # Ceiling reached; partial result
    PROVIDER_ERROR = "provider_error"


@dataclass
class ToolLoopResult:
    """Outcome of a tool loop run."""
    stop_reason: StopReason
    rounds: int
    tool_calls: int
    final_text: str = ""
    error: Optional[str] = None
    error_type: Optional[str] = None

    @property
    def hit_round_limit(self) -> bool:
        return self.stop_reason == StopReason.ROUND_LIMIT


def build_tool_result_message(results: List[ToolResult]) -> Dict[str, Any]:
    """
    Build the message that sends tool results back to the model.

    The message uses role="user" with tool_result content blocks.
    Each block correlates to a tool_use via tool_use_id.
    """
    content = []

    for result in results:
        block: Dict[str, Any] = {
            "type": "tool_result",
            "tool_use_id": result.tool_use_id,
            "content": str(result.content),
        }
        if result.is_error:
            block["is_error"] = True
        content.append(block)

    return {"role": "user", "content": content}


def run_tool_loop(
    router: LLMRouter,
    registry: ToolRegistry,
    state: Any,
    system_prompt: str,
    initial_message: str,
    max_rounds: int,
    is_finished: Callable[[], bool],
    task_type: TaskType = TaskType.READER,
    max_tokens: Optional[int] = None,
    temperature: float = 0.3,
    label: str = "Reader"
) -> ToolLoopResult:
    """
    Run a bounded tool-calling conversation.

    Args:
        router: LLM router (tool calls always go to Anthropic)
        registry: Tools available in this pass
        state: Pass state handed to every handler
        system_prompt: System prompt for the model
        initial_message: Opening user message
        max_rounds: Round ceiling
        is_finished: Returns True once the pass accepted its terminal call
        task_type: Task type for routing
        max_tokens: Maximum tokens per model response
        temperature: Sampling temperature
        label: Name used in log lines

    Returns:
        ToolLoopResult describing how the loop ended
    """
    messages: List[Dict[str, Any]] = [{"role": "user", "content": initial_message}]
    tools = registry.definitions()
    total_calls = 0
    final_text = ""
    start_time = time.time()

    for round_num in range(1, max_rounds + 1):
        response = router.chat(
            messages=messages,
            system_prompt=system_prompt,
            task_type=task_type,
            max_tokens=max_tokens,
            temperature=temperature,
            tools=tools
        )

        if not response.success:
            log_error(f"{label} round {round_num} failed: {response.error}")
            return ToolLoopResult(
                stop_reason=StopReason.PROVIDER_ERROR,
                rounds=round_num,
                tool_calls=total_calls,
                final_text=final_text,
                error=response.error,
                error_type=response.error_type,
            )

        if response.text and response.text.strip():
            final_text = response.text.strip()

        if not response.has_tool_calls():
            log_info(f"{label} stopped calling tools after {round_num} round(s)", prefix="🤖")
            return ToolLoopResult(
                stop_reason=StopReason.NO_TOOL_CALLS,
                rounds=round_num,
                tool_calls=total_calls,
                final_text=final_text,
            )

        results = []
        for tool_call in response.tool_calls:
            result = registry.execute(
                tool_name=tool_call.name,
                tool_input=tool_call.input,
                tool_use_id=tool_call.id,
                state=state
            )
            results.append(result)
            total_calls += 1

            status = "error" if result.is_error else "ok"
            log_info(f"  {label} tool: {tool_call.name} -> {status}", prefix="🤖")

        # Every tool_use block needs its tool_result, even on the final round
        messages.append({"role": "assistant", "content": response.raw_content})
        messages.append(build_tool_result_message(results))

        if is_finished():
            duration_ms = (time.time() - start_time) * 1000
            log_info(
                f"{label} complete: {round_num} round(s), {total_calls} tool call(s), "
                f"{duration_ms:.0f}ms",
                prefix="🤖"
            )
            return ToolLoopResult(
                stop_reason=StopReason.TERMINAL,
                rounds=round_num,
                tool_calls=total_calls,
                final_text=final_text,
            )

    duration_ms = (time.time() - start_time) * 1000
    log_warning(f"{label} hit max rounds ({max_rounds}), {duration_ms:.0f}ms")
    return ToolLoopResult(
        stop_reason=StopReason.ROUND_LIMIT,
        rounds=max_rounds,
        tool_calls=total_calls,
        final_text=final_text,
    )
