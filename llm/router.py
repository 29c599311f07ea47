"""
Deep Reader - LLM Router
Routes requests to the appropriate LLM provider based on task type
"""

import time
from enum import Enum
from typing import Optional, List, Dict, Any, Callable
from dataclasses import dataclass

import config
from core.errors import ConfigurationError, generation_error_for
from core.logger import log_info, log_warning, log_error
from core.prompt_logger import log_api_request
from llm.kobold_client import KoboldClient, get_kobold_client
from llm.anthropic_client import AnthropicClient, ToolCall, get_anthropic_client


class LLMProvider(Enum):
    """Available LLM providers."""
    ANTHROPIC = "anthropic"
    KOBOLD = "kobold"


class TaskType(Enum):
    """Types of LLM tasks."""
    READER = "reader"                # Tool-driven orchestration loops
    DELEGATION = "delegation"        # Multi-chunk sub-readers
    REWRITE = "rewrite"              # Segment writers
    CHAPTER_MERGE = "chapter_merge"  # Canonical chapter list


@dataclass
class LLMResponse:
    """Unified response from any LLM provider."""
    text: str
    success: bool
    provider: LLMProvider
    tokens_in: int = 0
    tokens_out: int = 0
    error: Optional[str] = None
    error_type: Optional[str] = None  # "timeout", "rate_limited", "server_error", etc.
    # Native tool use fields
    stop_reason: Optional[str] = None
    tool_calls: List[ToolCall] = None
    raw_content: List[Any] = None  # Original content blocks for continuation

    def __post_init__(self):
        if self.tool_calls is None:
            self.tool_calls = []
        if self.raw_content is None:
            self.raw_content = []

    def has_tool_calls(self) -> bool:
        """Check if response contains tool calls."""
        return len(self.tool_calls) > 0


class LLMRouter:
    """
    Routes LLM requests to appropriate providers.

    Handles:
    - Task-based routing (tool loops always go to Anthropic)
    - Linear backoff when leaf generation is rate limited
    - Fallback to the secondary provider for leaf tasks
    """

    def __init__(
        self,
        primary_provider: LLMProvider = LLMProvider.ANTHROPIC,
        fallback_enabled: bool = False,
        rate_limit_attempts: Optional[int] = None,
        rate_limit_backoff: Optional[float] = None,
        sleep: Callable[[float], None] = time.sleep
    ):
        """
        Initialize the router.

        Args:
            primary_provider: Provider for leaf generation
            fallback_enabled: Whether to fall back to secondary on failure
            rate_limit_attempts: Attempts for rate-limited leaf calls
            rate_limit_backoff: Base delay in seconds, multiplied by attempt number
            sleep: Sleep function (injectable for tests)
        """
        self.primary_provider = primary_provider
        self.fallback_enabled = fallback_enabled
        self.rate_limit_attempts = rate_limit_attempts or config.RATE_LIMIT_MAX_ATTEMPTS
        self.rate_limit_backoff = (
            config.RATE_LIMIT_BACKOFF_SECONDS if rate_limit_backoff is None else rate_limit_backoff
        )
        self._sleep = sleep
        self._anthropic: Optional[AnthropicClient] = None
        self._kobold: Optional[KoboldClient] = None

    def _get_anthropic(self) -> AnthropicClient:
        """Get or create Anthropic client."""
        if self._anthropic is None:
            self._anthropic = get_anthropic_client()
        return self._anthropic

    def _get_kobold(self) -> KoboldClient:
        """Get or create Kobold client."""
        if self._kobold is None:
            self._kobold = get_kobold_client()
        return self._kobold

    def check_providers(self) -> Dict[LLMProvider, tuple[bool, str]]:
        """
        Check status of all providers.

        Returns:
            Dict mapping provider to (is_available, status_message)
        """
        status = {}

        client = self._get_anthropic()
        if client.is_available():
            status[LLMProvider.ANTHROPIC] = (True, f"Configured ({client.model})")
        else:
            status[LLMProvider.ANTHROPIC] = (False, "API key not configured")

        kobold = self._get_kobold()
        if kobold.is_available():
            model = kobold.get_model_name() or "Unknown model"
            status[LLMProvider.KOBOLD] = (True, f"Available ({model})")
        else:
            status[LLMProvider.KOBOLD] = (False, "Not responding")

        return status

    def get_provider_for_task(self, task_type: TaskType) -> LLMProvider:
        """
        Determine which provider to use for a task type.

        Args:
            task_type: The type of task

        Returns:
            The provider to use
        """
        if task_type == TaskType.READER:
            # Native tool use is only available through Anthropic
            return LLMProvider.ANTHROPIC

        return self.primary_provider

    def require_provider(self, task_type: TaskType) -> None:
        """
        Fail fast when the provider for a task type is not configured.

        Raises:
            ConfigurationError: If the provider cannot serve requests
        """
        provider = self.get_provider_for_task(task_type)
        if provider == LLMProvider.ANTHROPIC and not self._get_anthropic().is_available():
            raise ConfigurationError(
                f"No Anthropic API key configured for {task_type.value} tasks. "
                "Set ANTHROPIC_API_KEY in the environment or .env file."
            )

    def _model_for_task(self, task_type: TaskType) -> str:
        """Select the Anthropic model for a task type."""
        if task_type == TaskType.DELEGATION:
            return config.ANTHROPIC_MODEL_DELEGATION
        if task_type == TaskType.REWRITE:
            return config.ANTHROPIC_MODEL_REWRITE
        return config.ANTHROPIC_MODEL

    def chat(
        self,
        messages: List[Dict[str, Any]],
        system_prompt: Optional[str] = None,
        task_type: TaskType = TaskType.READER,
        max_tokens: Optional[int] = None,
        temperature: float = 0.7,
        tools: Optional[List[Dict[str, Any]]] = None,
        timeout: Optional[float] = None,
        frequency_penalty: float = 0.0,
        presence_penalty: float = 0.0,
        force_provider: Optional[LLMProvider] = None
    ) -> LLMResponse:
        """
        Send a chat request, routing to the appropriate provider.

        Args:
            messages: List of message dicts. Content can be string or content array.
            system_prompt: Optional system prompt
            task_type: Type of task for routing
            max_tokens: Maximum tokens to generate
            temperature: Sampling temperature
            tools: Optional list of tool definitions (always sent to Anthropic)
            timeout: Optional per-request timeout in seconds
            frequency_penalty: Repetition penalty hint (local provider only)
            presence_penalty: Repetition penalty hint (local provider only)
            force_provider: Force a specific provider (bypass routing)

        Returns:
            LLMResponse with generated text and any tool calls
        """
        if force_provider:
            provider = force_provider
        elif tools:
            provider = LLMProvider.ANTHROPIC
        else:
            provider = self.get_provider_for_task(task_type)

        response = self._send_to_provider(
            provider=provider,
            messages=messages,
            system_prompt=system_prompt,
            max_tokens=max_tokens,
            temperature=temperature,
            tools=tools,
            task_type=task_type,
            timeout=timeout,
            frequency_penalty=frequency_penalty,
            presence_penalty=presence_penalty
        )

        # Fall back for leaf tasks only; tool transcripts cannot move providers
        if (not response.success
                and self.fallback_enabled
                and not tools
                and response.error_type not in ("rate_limited", "auth_error")):
            fallback_provider = (
                LLMProvider.KOBOLD if provider == LLMProvider.ANTHROPIC
                else LLMProvider.ANTHROPIC
            )

            log_warning(
                f"{provider.value} failed, falling back to {fallback_provider.value}"
            )

            response = self._send_to_provider(
                provider=fallback_provider,
                messages=messages,
                system_prompt=system_prompt,
                max_tokens=max_tokens,
                temperature=temperature,
                task_type=task_type,
                timeout=timeout,
                frequency_penalty=frequency_penalty,
                presence_penalty=presence_penalty
            )

        return response

    def _send_to_provider(
        self,
        provider: LLMProvider,
        messages: List[Dict[str, Any]],
        system_prompt: Optional[str],
        max_tokens: Optional[int],
        temperature: float,
        tools: Optional[List[Dict[str, Any]]] = None,
        task_type: TaskType = TaskType.READER,
        timeout: Optional[float] = None,
        frequency_penalty: float = 0.0,
        presence_penalty: float = 0.0
    ) -> LLMResponse:
        """Send request to a specific provider."""
        settings = {
            "temperature": temperature,
            "max_tokens": max_tokens,
            "timeout": timeout,
            "frequency_penalty": frequency_penalty,
            "presence_penalty": presence_penalty,
            "tools": [tool["name"] for tool in tools] if tools else []
        }

        if provider == LLMProvider.ANTHROPIC:
            client = self._get_anthropic()
            model = self._model_for_task(task_type)

            response = client.chat(
                messages=messages,
                system_prompt=system_prompt,
                max_tokens=max_tokens,
                temperature=temperature,
                tools=tools,
                model=model,
                timeout=timeout
            )

            llm_response = LLMResponse(
                text=response.text,
                success=response.success,
                provider=provider,
                tokens_in=response.input_tokens,
                tokens_out=response.output_tokens,
                error=response.error,
                error_type=response.error_type,
                stop_reason=response.stop_reason,
                tool_calls=response.tool_calls,
                raw_content=response.raw_content
            )

        elif provider == LLMProvider.KOBOLD:
            client = self._get_kobold()
            model = client.get_model_name() or "kobold-local"

            # KoboldCpp exposes a single repetition penalty
            rep_pen = 1.0 + (frequency_penalty + presence_penalty) / 2

            response = client.chat(
                messages=messages,
                system_prompt=system_prompt,
                max_length=max_tokens,
                temperature=temperature,
                rep_pen=rep_pen,
                timeout=timeout
            )

            llm_response = LLMResponse(
                text=response.text,
                success=response.success,
                provider=provider,
                tokens_out=response.tokens_generated,
                error=response.error,
                error_type=response.error_type
            )

        else:
            log_error(f"Unknown provider: {provider}")
            return LLMResponse(
                text="",
                success=False,
                provider=provider,
                error=f"Unknown provider: {provider}",
                error_type="unknown"
            )

        if not llm_response.success:
            log_warning(
                f"{provider.value} request failed ({task_type.value}): "
                f"{llm_response.error_type} - {llm_response.error}"
            )

        # Log the API request/response
        log_api_request(
            provider=provider.value,
            model=model,
            task=task_type.value,
            system_prompt=system_prompt,
            messages=messages,
            settings=settings,
            response_text=llm_response.text,
            tokens_in=llm_response.tokens_in,
            tokens_out=llm_response.tokens_out,
            success=llm_response.success,
            tool_calls=[call.name for call in llm_response.tool_calls],
            error=llm_response.error
        )

        return llm_response

    def generate(
        self,
        prompt: str,
        system_prompt: Optional[str] = None,
        task_type: TaskType = TaskType.REWRITE,
        max_tokens: Optional[int] = None,
        temperature: float = 0.7,
        frequency_penalty: float = 0.0,
        presence_penalty: float = 0.0,
        timeout: Optional[float] = None
    ) -> LLMResponse:
        """
        Single-turn leaf generation with rate-limit backoff.

        Rate-limited attempts are retried after backoff * attempt seconds,
        up to rate_limit_attempts in total. The last response is returned
        either way; callers decide whether a failure is fatal.

        Args:
            prompt: The prompt text
            system_prompt: Optional system prompt
            task_type: Type of task for routing
            max_tokens: Maximum tokens to generate
            temperature: Sampling temperature
            frequency_penalty: Repetition penalty hint
            presence_penalty: Repetition penalty hint
            timeout: Per-request timeout in seconds

        Returns:
            LLMResponse with generated text
        """
        messages = [{"role": "user", "content": prompt}]

        response = None
        for attempt in range(1, self.rate_limit_attempts + 1):
            response = self.chat(
                messages=messages,
                system_prompt=system_prompt,
                task_type=task_type,
                max_tokens=max_tokens,
                temperature=temperature,
                timeout=timeout,
                frequency_penalty=frequency_penalty,
                presence_penalty=presence_penalty
            )

            if response.success or response.error_type != "rate_limited":
                return response

            if attempt < self.rate_limit_attempts:
                delay = self.rate_limit_backoff * attempt
                log_warning(
                    f"Rate limited (attempt {attempt}/{self.rate_limit_attempts}), "
                    f"retrying in {delay:.0f}s..."
                )
                self._sleep(delay)

        log_error(f"Still rate limited after {self.rate_limit_attempts} attempts")
        return response

    def complete(
        self,
        prompt: str,
        system_prompt: Optional[str] = None,
        task_type: TaskType = TaskType.REWRITE,
        max_tokens: Optional[int] = None,
        temperature: float = 0.7,
        frequency_penalty: float = 0.0,
        presence_penalty: float = 0.0,
        timeout: Optional[float] = None
    ) -> str:
        """
        Leaf generation that returns text or raises.

        Raises:
            GenerationTimeoutError: If the call timed out
            RateLimitedError: If rate limits persisted through every retry
            GenerationError: For any other provider failure
        """
        response = self.generate(
            prompt=prompt,
            system_prompt=system_prompt,
            task_type=task_type,
            max_tokens=max_tokens,
            temperature=temperature,
            frequency_penalty=frequency_penalty,
            presence_penalty=presence_penalty,
            timeout=timeout
        )
        if not response.success:
            raise generation_error_for(response.error, response.error_type)

        log_info(
            f"{task_type.value} generation: {len(response.text)} chars, "
            f"{response.tokens_in + response.tokens_out} tokens",
            prefix="✍️"
        )
        return response.text


# Global router instance
_router: Optional[LLMRouter] = None


def get_llm_router() -> LLMRouter:
    """Get the global LLM router instance."""
    global _router
    if _router is None:
        from config import LLM_PRIMARY_PROVIDER, LLM_FALLBACK_ENABLED
        primary = LLMProvider(LLM_PRIMARY_PROVIDER)
        _router = LLMRouter(
            primary_provider=primary,
            fallback_enabled=LLM_FALLBACK_ENABLED
        )
    return _router


def init_llm_router(
    primary_provider: str = "anthropic",
    fallback_enabled: bool = False
) -> LLMRouter:
    """Initialize the global LLM router."""
    global _router
    _router = LLMRouter(
        primary_provider=LLMProvider(primary_provider),
        fallback_enabled=fallback_enabled
    )
    return _router
