"""
Deep Reader - Tool Use System
Native tool calling with validated, structured arguments.

Components:
    - registry: ToolSpec declarations, argument validation, execution
    - loop: Bounded multi-round tool conversation

Usage:
    from reading.tools import ToolRegistry, ToolSpec, run_tool_loop

    registry = ToolRegistry([ToolSpec(name, description, schema, handler), ...])
    result = run_tool_loop(
        router=router,
        registry=registry,
        state=state,
        system_prompt=system_prompt,
        initial_message=message,
        max_rounds=50,
        is_finished=lambda: state.finished
    )
"""

from reading.tools.registry import (
    ToolError,
    ToolErrorType,
    ToolInputError,
    ToolRegistry,
    ToolResult,
    ToolSpec,
    validate_input,
)
from reading.tools.loop import StopReason, ToolLoopResult, build_tool_result_message, run_tool_loop


__all__ = [
    # Registry
    'ToolError',
    'ToolErrorType',
    'ToolInputError',
    'ToolRegistry',
    'ToolResult',
    'ToolSpec',
    'validate_input',
    # Loop
    'StopReason',
    'ToolLoopResult',
    'build_tool_result_message',
    'run_tool_loop',
]
