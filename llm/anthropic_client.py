"""
Deep Reader - Anthropic Claude Client
Client for Claude API (tool-driven reading and leaf generation)
"""

import time
from typing import Optional, List, Dict, Any
from dataclasses import dataclass, field

from core.logger import log_info, log_warning


@dataclass
class ToolCall:
    """A tool call from Claude's response."""
    id: str
    name: str
    input: Dict[str, Any]


@dataclass
class AnthropicResponse:
    """Response from Anthropic API."""
    text: str
    input_tokens: int
    output_tokens: int
    success: bool
    error: Optional[str] = None
    error_type: Optional[str] = None  # "timeout", "rate_limited", "server_error", "auth_error", etc.
    stop_reason: Optional[str] = None
    # Native tool use fields
    tool_calls: List[ToolCall] = field(default_factory=list)
    raw_content: List[Any] = field(default_factory=list)  # Original content blocks for continuation

    def has_tool_calls(self) -> bool:
        """Check if response contains tool calls."""
        return len(self.tool_calls) > 0


class AnthropicClient:
    """
    Client for Anthropic Claude API.

    Drives the tool-calling reader loops and answers single-shot
    generation requests (sub-readers, segment writers, chapter merges).
    """

    def __init__(
        self,
        api_key: str,
        model: str = "claude-sonnet-4-5-20250929",
        max_tokens: int = 4096,
        timeout: int = 120
    ):
        """
        Initialize the Anthropic client.

        Args:
            api_key: Anthropic API key
            model: Model to use
            max_tokens: Maximum tokens to generate
            timeout: Default request timeout in seconds
        """
        self.api_key = api_key
        self.model = model
        self.max_tokens = max_tokens
        self.timeout = timeout
        self._client = None

    def _get_client(self):
        """Lazy-load the Anthropic client."""
        if self._client is None:
            try:
                import anthropic
                self._client = anthropic.Anthropic(
                    api_key=self.api_key,
                    timeout=self.timeout,
                    max_retries=0  # Retries are handled here and in the router
                )
            except ImportError:
                raise ImportError("anthropic package not installed. Run: pip install anthropic")
        return self._client

    def is_available(self) -> bool:
        """Check if Anthropic API is configured."""
        if not self.api_key:
            return False
        try:
            self._get_client()
            return True
        except ImportError:
            return False

    def _classify_error(self, error: Exception) -> tuple:
        """
        Classify an API error for retry decisions.

        Returns:
            Tuple of (error_type, error_message)
        """
        import anthropic

        error_msg = str(error)

        # Check specific anthropic SDK exception types
        if isinstance(error, anthropic.APITimeoutError):
            return ("timeout", "Request timed out")
        elif isinstance(error, anthropic.APIConnectionError):
            return ("connection_error", "Connection failed")
        elif isinstance(error, anthropic.RateLimitError):
            return ("rate_limited", "Rate limit exceeded")
        elif isinstance(error, anthropic.APIStatusError):
            status = error.status_code
            if status == 529:
                return ("overloaded", "API overloaded")
            elif status in (500, 502, 503):
                return ("server_error", f"Server error ({status})")
            elif status in (401, 403):
                return ("auth_error", "Authentication failed")
            elif status == 400:
                return ("bad_request", error_msg)

        # Fallback: check error message text
        error_lower = error_msg.lower()
        if "overloaded" in error_lower:
            return ("overloaded", "API overloaded")
        elif "rate" in error_lower:
            return ("rate_limited", "Rate limit exceeded")
        elif "timed out" in error_lower or "timeout" in error_lower:
            return ("timeout", "Request timed out")
        elif "authentication" in error_lower or "api key" in error_lower:
            return ("auth_error", "Invalid API key")

        return ("unknown", error_msg)

    def _is_transient_error(self, error_type: str) -> bool:
        """Check if an error type is transient (worth retrying immediately)."""
        return error_type in ("timeout", "connection_error", "server_error", "overloaded")

    def _call_with_retry(self, client, create_kwargs: dict):
        """
        Make an API call with automatic retry for transient errors.

        Retries on 5xx, overload, timeouts and connection errors with
        exponential backoff. Rate limits and auth errors are raised
        immediately for higher-level handling.
        """
        import config as cfg

        max_attempts = getattr(cfg, 'API_RETRY_MAX_ATTEMPTS', 3)
        delay = getattr(cfg, 'API_RETRY_INITIAL_DELAY', 1.0)
        backoff = getattr(cfg, 'API_RETRY_BACKOFF_MULTIPLIER', 2.0)

        for attempt in range(max_attempts):
            try:
                return client.messages.create(**create_kwargs)
            except Exception as e:
                error_type, error_msg = self._classify_error(e)

                # Only retry transient errors, and only if we have attempts left
                if not self._is_transient_error(error_type) or attempt >= max_attempts - 1:
                    raise

                log_warning(
                    f"Transient API error (attempt {attempt + 1}/{max_attempts}): "
                    f"{error_type} - {error_msg}. Retrying in {delay:.1f}s..."
                )
                time.sleep(delay)
                delay *= backoff

    def chat(
        self,
        messages: List[Dict[str, Any]],
        system_prompt: Optional[str] = None,
        max_tokens: Optional[int] = None,
        temperature: float = 0.7,
        tools: Optional[List[Dict[str, Any]]] = None,
        model: Optional[str] = None,
        timeout: Optional[float] = None
    ) -> AnthropicResponse:
        """
        Send a chat completion request.

        Args:
            messages: List of message dicts. Content can be string or content array.
            system_prompt: Optional system prompt
            max_tokens: Maximum tokens to generate (uses default if None)
            temperature: Sampling temperature
            tools: Optional list of tool definitions for native tool use
            model: Optional model override (uses instance model if None)
            timeout: Optional per-request timeout in seconds

        Returns:
            AnthropicResponse with generated text and any tool calls
        """
        if max_tokens is None:
            max_tokens = self.max_tokens

        try:
            client = self._get_client()

            request_params = {
                "model": model or self.model,
                "max_tokens": max_tokens,
                "temperature": temperature,
                "messages": messages
            }

            if system_prompt:
                request_params["system"] = system_prompt

            if tools:
                request_params["tools"] = tools

            if timeout is not None:
                request_params["timeout"] = timeout

            response = self._call_with_retry(client, request_params)

            # Parse response content
            text = ""
            tool_calls: List[ToolCall] = []
            raw_content_list = []

            content_blocks = getattr(response, "content", None) or []
            for block in content_blocks:
                block_type = getattr(block, "type", None)

                if block_type == "text":
                    block_text = getattr(block, "text", None) or ""
                    text += block_text
                    raw_content_list.append({"type": "text", "text": block_text})
                elif block_type == "tool_use":
                    tool_name = getattr(block, "name", None) or ""
                    tool_input = getattr(block, "input", {}) or {}
                    tool_calls.append(ToolCall(
                        id=getattr(block, "id", ""),
                        name=tool_name,
                        input=tool_input
                    ))
                    # Preserve the block for the continuation message
                    raw_content_list.append({
                        "type": "tool_use",
                        "id": getattr(block, "id", ""),
                        "name": tool_name,
                        "input": tool_input
                    })
                    log_info(f"Tool call: {tool_name}", prefix="🔧")

            return AnthropicResponse(
                text=text,
                input_tokens=response.usage.input_tokens,
                output_tokens=response.usage.output_tokens,
                success=True,
                stop_reason=response.stop_reason,
                tool_calls=tool_calls,
                raw_content=raw_content_list
            )

        except ImportError:
            raise
        except Exception as e:
            error_type, error_msg = self._classify_error(e)

            return AnthropicResponse(
                text="",
                input_tokens=0,
                output_tokens=0,
                success=False,
                error=error_msg,
                error_type=error_type
            )


# Global client instance
_anthropic_client: Optional[AnthropicClient] = None


def get_anthropic_client() -> AnthropicClient:
    """Get the global Anthropic client instance."""
    global _anthropic_client
    if _anthropic_client is None:
        from config import ANTHROPIC_API_KEY, ANTHROPIC_MODEL, ANTHROPIC_MAX_TOKENS
        _anthropic_client = AnthropicClient(
            api_key=ANTHROPIC_API_KEY,
            model=ANTHROPIC_MODEL,
            max_tokens=ANTHROPIC_MAX_TOKENS
        )
    return _anthropic_client
