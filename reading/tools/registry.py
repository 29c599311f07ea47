"""
Deep Reader - Tool Registry
Declares the operations a reasoning model may call and executes them.

Each tool is a ToolSpec: a name, a description, a JSON input schema for the
Anthropic API, and a handler. Arguments are validated against the schema
before the handler runs; any failure is returned to the model as an error
tool result instead of being raised.
"""

from dataclasses import dataclass
from enum import Enum
from typing import Any, Callable, Dict, List, Optional

from core.logger import log_info, log_warning, log_error


class ToolErrorType(Enum):
    """
    Categories of tool use errors for model feedback.

    These types help the model understand what went wrong and how to correct it.
    """
    VALIDATION = "validation"      # Missing or wrongly typed arguments
    NOT_FOUND = "not_found"        # Referenced chunk/segment doesn't exist
    UNKNOWN_TOOL = "unknown_tool"  # Tool name not registered
    SYSTEM_ERROR = "system"        # Handler failure


@dataclass
class ToolError:
    """
    Structured error with context for model feedback.

    Attributes:
        error_type: Category of the error
        message: Human-readable error description
        expected_format: The correct call shape (optional)
        example: A working example (optional)
    """
    error_type: ToolErrorType
    message: str
    expected_format: Optional[str] = None
    example: Optional[str] = None

    def format_for_ai(self) -> str:
        """
        Format error message for the tool result.

        Returns:
            Multi-line formatted error with context
        """
        lines = [f"Error ({self.error_type.value}): {self.message}"]
        if self.expected_format:
            lines.append(f"  Expected format: {self.expected_format}")
        if self.example:
            lines.append(f"  Example: {self.example}")
        return "\n".join(lines)

    def __str__(self) -> str:
        return self.format_for_ai()


class ToolInputError(Exception):
    """Raised by a handler when its arguments are valid JSON but unusable."""

    def __init__(self, error: ToolError):
        super().__init__(error.message)
        self.error = error


@dataclass
class ToolResult:
    """Result from executing a tool."""
    tool_use_id: str
    tool_name: str
    content: str
    is_error: bool = False


# Handlers receive the pass state and the validated input dict
ToolHandler = Callable[[Any, Dict[str, Any]], str]


@dataclass
class ToolSpec:
    """A callable operation exposed to the model."""
    name: str
    description: str
    input_schema: Dict[str, Any]
    handler: ToolHandler

    def definition(self) -> Dict[str, Any]:
        """Tool definition dict for the Anthropic API."""
        return {
            "name": self.name,
            "description": self.description,
            "input_schema": self.input_schema,
        }

    def example_call(self) -> str:
        properties = self.input_schema.get("properties", {})
        args = ", ".join(f"{name}: {prop.get('type', 'any')}" for name, prop in properties.items())
        return f"{self.name}({args})"


_JSON_TYPES = {
    "string": (str,),
    "integer": (int,),
    "number": (int, float),
    "boolean": (bool,),
    "array": (list,),
    "object": (dict,),
}


def _matches_type(value: Any, type_name: str) -> bool:
    expected = _JSON_TYPES.get(type_name)
    if expected is None:
        return True
    # bool is a subclass of int but never a valid integer argument
    if type_name in ("integer", "number") and isinstance(value, bool):
        return False
    return isinstance(value, expected)


def validate_input(spec: ToolSpec, tool_input: Any) -> Optional[ToolError]:
    """
    Check tool input against the tool's input schema.

    Covers required properties, property types, array item types and the
    integer minimum constraint, which is all the reader's tools declare.

    Returns:
        ToolError describing the first problem, or None if valid
    """
    schema = spec.input_schema
    if not isinstance(tool_input, dict):
        return ToolError(
            ToolErrorType.VALIDATION,
            "Tool input must be an object",
            expected_format=spec.example_call(),
        )

    properties = schema.get("properties", {})
    for name in schema.get("required", []):
        if name not in tool_input:
            return ToolError(
                ToolErrorType.VALIDATION,
                f"Missing required argument '{name}'",
                expected_format=spec.example_call(),
            )

    for name, value in tool_input.items():
        prop = properties.get(name)
        if prop is None:
            continue

        type_name = prop.get("type")
        if type_name and not _matches_type(value, type_name):
            return ToolError(
                ToolErrorType.VALIDATION,
                f"Argument '{name}' must be of type {type_name}",
                expected_format=spec.example_call(),
            )

        if type_name == "array" and "items" in prop:
            item_type = prop["items"].get("type")
            if item_type and not all(_matches_type(item, item_type) for item in value):
                return ToolError(
                    ToolErrorType.VALIDATION,
                    f"Every item of '{name}' must be of type {item_type}",
                    expected_format=spec.example_call(),
                )

        if type_name == "integer" and "minimum" in prop and value < prop["minimum"]:
            return ToolError(
                ToolErrorType.VALIDATION,
                f"Argument '{name}' must be at least {prop['minimum']}",
                expected_format=spec.example_call(),
            )

    return None


class ToolRegistry:
    """
    Executes tool calls by routing to registered handlers.

    A registry is built per pass; handlers receive the pass state explicitly
    so nothing is shared between passes.
    """

    def __init__(self, specs: List[ToolSpec]):
        self._specs: Dict[str, ToolSpec] = {spec.name: spec for spec in specs}

    @property
    def names(self) -> List[str]:
        return list(self._specs.keys())

    def get(self, name: str) -> Optional[ToolSpec]:
        return self._specs.get(name)

    def definitions(self) -> List[Dict[str, Any]]:
        """Tool schemas for the API call."""
        return [spec.definition() for spec in self._specs.values()]

    def execute(
        self,
        tool_name: str,
        tool_input: Dict[str, Any],
        tool_use_id: str,
        state: Any
    ) -> ToolResult:
        """
        Execute a tool call and return the result.

        Args:
            tool_name: Name of the tool to execute
            tool_input: Structured input arguments from the model
            tool_use_id: Unique ID for this tool use (for result correlation)
            state: The pass state handed to the handler

        Returns:
            ToolResult with execution outcome
        """
        spec = self._specs.get(tool_name)
        if spec is None:
            log_warning(f"Unknown tool: {tool_name}")
            error = ToolError(
                ToolErrorType.UNKNOWN_TOOL,
                f"Unknown tool: {tool_name}. Available tools: {self.names}",
            )
            return ToolResult(tool_use_id, tool_name, error.format_for_ai(), is_error=True)

        error = validate_input(spec, tool_input)
        if error:
            log_warning(f"Invalid arguments for {tool_name}: {error.message}")
            return ToolResult(tool_use_id, tool_name, error.format_for_ai(), is_error=True)

        try:
            log_info(f"Executing tool: {tool_name}", prefix="🔧")
            content = spec.handler(state, tool_input)
            return ToolResult(tool_use_id, tool_name, content)
        except ToolInputError as e:
            return ToolResult(tool_use_id, tool_name, e.error.format_for_ai(), is_error=True)
        except Exception as e:
            log_error(f"Tool execution error ({tool_name}): {e}")
            error = ToolError(ToolErrorType.SYSTEM_ERROR, f"Tool execution error: {e}")
            return ToolResult(tool_use_id, tool_name, error.format_for_ai(), is_error=True)
