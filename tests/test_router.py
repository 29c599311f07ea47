"""
Tests for provider routing, rate-limit backoff and leaf error mapping.
"""

import unittest
from unittest.mock import MagicMock, patch

from core.errors import ConfigurationError, GenerationTimeoutError, RateLimitedError
from llm.anthropic_client import AnthropicResponse
from llm.kobold_client import KoboldResponse
from llm.router import LLMProvider, LLMRouter, TaskType


def ok(text="generated"):
    return AnthropicResponse(text=text, input_tokens=10, output_tokens=5, success=True, stop_reason="end_turn")


def failed(error_type, error="failed"):
    return AnthropicResponse(text="", input_tokens=0, output_tokens=0, success=False,
                             error=error, error_type=error_type)


class RouterTestCase(unittest.TestCase):

    def setUp(self):
        patcher = patch("llm.router.log_api_request")
        patcher.start()
        self.addCleanup(patcher.stop)

        self.sleeps = []
        self.anthropic = MagicMock()
        self.anthropic.is_available.return_value = True
        self.kobold = MagicMock()
        self.kobold.get_model_name.return_value = "local-model"

    def make_router(self, **kwargs) -> LLMRouter:
        kwargs.setdefault("rate_limit_attempts", 3)
        kwargs.setdefault("rate_limit_backoff", 5.0)
        router = LLMRouter(sleep=self.sleeps.append, **kwargs)
        router._anthropic = self.anthropic
        router._kobold = self.kobold
        return router


class TestRateLimitBackoff(RouterTestCase):

    def test_linear_backoff_then_success(self):
        self.anthropic.chat.side_effect = [failed("rate_limited"), failed("rate_limited"), ok("third time")]

        text = self.make_router().complete("prompt", task_type=TaskType.REWRITE)

        self.assertEqual(text, "third time")
        self.assertEqual(self.sleeps, [5.0, 10.0])
        self.assertEqual(self.anthropic.chat.call_count, 3)

    def test_exhausted_attempts_raise(self):
        self.anthropic.chat.return_value = failed("rate_limited", "Rate limit exceeded")

        with self.assertRaises(RateLimitedError):
            self.make_router().complete("prompt")

        self.assertEqual(self.anthropic.chat.call_count, 3)
        self.assertEqual(self.sleeps, [5.0, 10.0])

    def test_timeout_is_not_retried(self):
        self.anthropic.chat.return_value = failed("timeout", "Request timed out")

        with self.assertRaises(GenerationTimeoutError):
            self.make_router().complete("prompt", timeout=120)

        self.assertEqual(self.anthropic.chat.call_count, 1)
        self.assertEqual(self.anthropic.chat.call_args.kwargs["timeout"], 120)
        self.assertEqual(self.sleeps, [])


class TestRouting(RouterTestCase):

    def test_tools_always_go_to_anthropic(self):
        self.anthropic.chat.return_value = ok()
        router = self.make_router(primary_provider=LLMProvider.KOBOLD)

        response = router.chat(
            [{"role": "user", "content": "hi"}],
            task_type=TaskType.REWRITE,
            tools=[{"name": "done", "description": "", "input_schema": {"type": "object"}}],
        )

        self.assertEqual(response.provider, LLMProvider.ANTHROPIC)
        self.kobold.chat.assert_not_called()

    def test_leaf_tasks_follow_primary_provider(self):
        self.kobold.chat.return_value = KoboldResponse(text="local text", tokens_generated=3, success=True)
        router = self.make_router(primary_provider=LLMProvider.KOBOLD)

        self.assertEqual(router.complete("prompt", task_type=TaskType.DELEGATION), "local text")
        self.anthropic.chat.assert_not_called()

    def test_fallback_on_server_error(self):
        self.anthropic.chat.return_value = failed("server_error")
        self.kobold.chat.return_value = KoboldResponse(text="from kobold", tokens_generated=3, success=True)

        text = self.make_router(fallback_enabled=True).complete("prompt")

        self.assertEqual(text, "from kobold")

    def test_no_fallback_when_rate_limited(self):
        self.anthropic.chat.return_value = failed("rate_limited")

        with self.assertRaises(RateLimitedError):
            self.make_router(fallback_enabled=True).complete("prompt")

        self.kobold.chat.assert_not_called()

    def test_penalties_map_to_repetition_penalty(self):
        self.kobold.chat.return_value = KoboldResponse(text="x", tokens_generated=1, success=True)
        router = self.make_router(primary_provider=LLMProvider.KOBOLD)

        router.complete("prompt", frequency_penalty=0.3, presence_penalty=0.3)

        self.assertAlmostEqual(self.kobold.chat.call_args.kwargs["rep_pen"], 1.3)

    def test_penalties_not_sent_to_anthropic(self):
        self.anthropic.chat.return_value = ok()
        self.make_router().complete("prompt", frequency_penalty=0.3, presence_penalty=0.3)

        kwargs = self.anthropic.chat.call_args.kwargs
        self.assertNotIn("frequency_penalty", kwargs)
        self.assertNotIn("presence_penalty", kwargs)

    def test_require_provider(self):
        self.anthropic.is_available.return_value = False
        with self.assertRaises(ConfigurationError):
            self.make_router().require_provider(TaskType.READER)


if __name__ == "__main__":
    unittest.main()
