"""
Tests for the tool registry and the bounded tool loop.
"""

import unittest

from fakes import FakeRouter, error_response, text_response, tool_call, tool_response
from reading.tools import (
    StopReason,
    ToolError,
    ToolErrorType,
    ToolInputError,
    ToolRegistry,
    ToolSpec,
    run_tool_loop,
)


class CounterState:
    def __init__(self):
        self.count = 0
        self.finished = False


def _increment(state, args):
    state.count += args.get("by", 1)
    return f"count={state.count}"


def _finish(state, args):
    state.finished = True
    return "finished"


def _explode(state, args):
    raise RuntimeError("handler blew up")


def _refuse(state, args):
    raise ToolInputError(ToolError(ToolErrorType.NOT_FOUND, "Item 9 does not exist"))


def build_registry() -> ToolRegistry:
    return ToolRegistry([
        ToolSpec(
            name="increment",
            description="Add to the counter",
            input_schema={
                "type": "object",
                "properties": {"by": {"type": "integer", "minimum": 1}},
            },
            handler=_increment,
        ),
        ToolSpec(
            name="tag",
            description="Takes a list of ints and a label",
            input_schema={
                "type": "object",
                "properties": {
                    "ids": {"type": "array", "items": {"type": "integer"}},
                    "label": {"type": "string"},
                },
                "required": ["ids", "label"],
            },
            handler=lambda state, args: "tagged",
        ),
        ToolSpec(name="finish", description="Stop", input_schema={"type": "object", "properties": {}}, handler=_finish),
        ToolSpec(name="explode", description="Fails", input_schema={"type": "object", "properties": {}}, handler=_explode),
        ToolSpec(name="refuse", description="Refuses", input_schema={"type": "object", "properties": {}}, handler=_refuse),
    ])


class TestToolRegistry(unittest.TestCase):
    """Validation and execution of tool calls."""

    def setUp(self):
        self.registry = build_registry()
        self.state = CounterState()

    def test_executes_handler(self):
        result = self.registry.execute("increment", {"by": 2}, "t1", self.state)
        self.assertFalse(result.is_error)
        self.assertEqual(result.content, "count=2")
        self.assertEqual(result.tool_use_id, "t1")

    def test_unknown_tool(self):
        result = self.registry.execute("teleport", {}, "t1", self.state)
        self.assertTrue(result.is_error)
        self.assertIn("unknown_tool", result.content)

    def test_missing_required_argument(self):
        result = self.registry.execute("tag", {"ids": [1]}, "t1", self.state)
        self.assertTrue(result.is_error)
        self.assertIn("label", result.content)
        self.assertIn("Expected format", result.content)

    def test_wrong_type(self):
        result = self.registry.execute("increment", {"by": "two"}, "t1", self.state)
        self.assertTrue(result.is_error)
        self.assertEqual(self.state.count, 0)

    def test_bool_is_not_an_integer(self):
        result = self.registry.execute("increment", {"by": True}, "t1", self.state)
        self.assertTrue(result.is_error)

    def test_minimum(self):
        result = self.registry.execute("increment", {"by": 0}, "t1", self.state)
        self.assertTrue(result.is_error)
        self.assertIn("at least 1", result.content)

    def test_array_item_types(self):
        result = self.registry.execute("tag", {"ids": [1, "2"], "label": "x"}, "t1", self.state)
        self.assertTrue(result.is_error)

    def test_handler_exception_becomes_error_result(self):
        result = self.registry.execute("explode", {}, "t1", self.state)
        self.assertTrue(result.is_error)
        self.assertIn("handler blew up", result.content)

    def test_tool_input_error(self):
        result = self.registry.execute("refuse", {}, "t1", self.state)
        self.assertTrue(result.is_error)
        self.assertIn("not_found", result.content)
        self.assertIn("Item 9 does not exist", result.content)

    def test_definitions(self):
        names = [d["name"] for d in self.registry.definitions()]
        self.assertEqual(names, ["increment", "tag", "finish", "explode", "refuse"])


class TestToolLoop(unittest.TestCase):
    """The bounded multi-round conversation."""

    def run_loop(self, router, state, max_rounds=10):
        return run_tool_loop(
            router=router,
            registry=build_registry(),
            state=state,
            system_prompt="system",
            initial_message="start",
            max_rounds=max_rounds,
            is_finished=lambda: state.finished,
        )

    def test_terminal_call_ends_loop(self):
        state = CounterState()
        router = FakeRouter([
            tool_response(tool_call("increment", by=3)),
            tool_response(tool_call("increment"), tool_call("finish")),
        ])

        result = self.run_loop(router, state)

        self.assertEqual(result.stop_reason, StopReason.TERMINAL)
        self.assertEqual(result.rounds, 2)
        self.assertEqual(result.tool_calls, 3)
        self.assertEqual(state.count, 4)

    def test_every_tool_use_gets_a_result(self):
        state = CounterState()
        first = tool_call("increment")
        second = tool_call("teleport")
        router = FakeRouter([tool_response(first, second)], fallback=text_response("bye"))

        self.run_loop(router, state)

        transcript = router.chat_calls[1]["messages"]
        self.assertEqual(transcript[1]["role"], "assistant")
        results = transcript[2]["content"]
        self.assertEqual([r["tool_use_id"] for r in results], [first.id, second.id])
        self.assertTrue(results[1]["is_error"])
        self.assertNotIn("is_error", results[0])

    def test_tools_are_sent_every_round(self):
        state = CounterState()
        router = FakeRouter([tool_response(tool_call("finish"))])
        self.run_loop(router, state)
        self.assertEqual(len(router.chat_calls[0]["tools"]), 5)

    def test_round_limit(self):
        state = CounterState()
        router = FakeRouter(fallback=tool_response(tool_call("increment")))

        result = self.run_loop(router, state, max_rounds=4)

        self.assertTrue(result.hit_round_limit)
        self.assertEqual(result.rounds, 4)
        self.assertEqual(state.count, 4)

    def test_model_stops_calling_tools(self):
        state = CounterState()
        router = FakeRouter([text_response("I am done thinking.")])

        result = self.run_loop(router, state)

        self.assertEqual(result.stop_reason, StopReason.NO_TOOL_CALLS)
        self.assertEqual(result.final_text, "I am done thinking.")

    def test_provider_error(self):
        state = CounterState()
        router = FakeRouter([error_response("overloaded", "overloaded")])

        result = self.run_loop(router, state)

        self.assertEqual(result.stop_reason, StopReason.PROVIDER_ERROR)
        self.assertEqual(result.error_type, "overloaded")


if __name__ == "__main__":
    unittest.main()
