"""
Tests for chapter rewriting: segment dispatch, gap-filling and sessions.
"""

import re
import tempfile
import unittest
from dataclasses import replace
from datetime import datetime
from pathlib import Path
from unittest.mock import patch

from fakes import FakeRouter, error_response, failing_complete, tool_call, tool_response
from core.errors import ChapterPlanEmptyError, ConfigurationError, DeepReaderError, generation_error_for
from llm.router import TaskType
from reading.consolidator import Chapter
from reading.events import ProgressEventType
from reading.prompts import OUTPUT_MODE_RULES, REWRITE_STORYTELLING, RewriteTask
from reading.rewriter import ChapterOutput, DeepReader, SegmentDispatcher, clean_for_narration
from reading.settings import ReaderSettings


def make_chapter() -> Chapter:
    """A chapter that splits into three segments at segment_size 100."""
    content = "\n\n".join(f"Part {n} of the chapter " + "w" * 56 for n in (1, 2, 3))
    return Chapter(
        index=0,
        title="Storm",
        content=content,
        char_start=0,
        char_end=len(content),
        chunk_start=1,
        chunk_end=3,
    )


def numbered_writer(prompt, task_type):
    part = re.search(r"Part (\d) of the chapter", prompt).group(1)
    return f"Rewritten part {part}."


class TestSegmentDispatcher(unittest.TestCase):

    def make_dispatcher(self, router, **overrides):
        settings = ReaderSettings(segment_size=100).with_overrides(**overrides)
        return SegmentDispatcher(router, settings=settings)

    def test_segments_fixture(self):
        router = FakeRouter([tool_response(tool_call("get_chapter_info"))])
        self.make_dispatcher(router).rewrite_chapter(make_chapter())
        info = router.chat_calls[1]["messages"][-1]["content"][0]["content"]
        self.assertIn("Segments: 3 (0 written)", info)

    def test_gap_fill_after_premature_done(self):
        router = FakeRouter(
            [tool_response(tool_call("spawn_writer", segment_id=1, scene_title="Opening"), tool_call("done"))],
            complete_fn=numbered_writer,
        )
        result = self.make_dispatcher(router).rewrite_chapter(make_chapter())

        refusal = router.chat_calls[1]["messages"][-1]["content"][1]["content"]
        self.assertIn("2, 3", refusal)
        self.assertEqual(result.gap_filled, [2, 3])
        self.assertEqual(result.missing, [])
        self.assertIn("### Opening\n\nRewritten part 1.", result.output)
        self.assertIn("### Scene 2: Part 2 of the c\n\nRewritten part 2.", result.output)
        self.assertIn("### Scene 3:", result.output)
        self.assertEqual(result.char_count, len(result.output))

    def test_round_limit_gap_fills_everything(self):
        router = FakeRouter(
            fallback=tool_response(tool_call("get_chapter_info")),
            complete_fn=numbered_writer,
        )
        result = self.make_dispatcher(router, rewrite_max_rounds=2).rewrite_chapter(make_chapter())

        self.assertEqual(len(router.chat_calls), 2)
        self.assertEqual(result.gap_filled, [1, 2, 3])

    def test_output_follows_segment_order(self):
        router = FakeRouter(
            [tool_response(
                tool_call("spawn_writer", segment_id=3, scene_title="Three"),
                tool_call("spawn_writer", segment_id=1, scene_title="One"),
                tool_call("spawn_writer", segment_id=2, scene_title="Two"),
                tool_call("done"),
            )],
            complete_fn=numbered_writer,
        )
        result = self.make_dispatcher(router).rewrite_chapter(make_chapter())

        self.assertEqual(len(router.chat_calls), 1)
        self.assertEqual(result.gap_filled, [])
        positions = [result.output.index(f"### {title}") for title in ("One", "Two", "Three")]
        self.assertEqual(positions, sorted(positions))

    def test_progress_events(self):
        events = []
        router = FakeRouter(complete_fn=numbered_writer)
        self.make_dispatcher(router).rewrite_chapter(make_chapter(), on_progress=events.append)

        types = [e.event_type for e in events]
        self.assertEqual(types, [ProgressEventType.SEGMENT_START, ProgressEventType.SEGMENT_DONE] * 3)
        done = events[1].to_dict()
        self.assertEqual(done["type"], "segment_done")
        self.assertEqual(done["segmentId"], 1)
        self.assertEqual(done["totalSegments"], 3)
        self.assertEqual(done["content"], "Rewritten part 1.")
        self.assertNotIn("outputChars", done)

    def test_gap_fill_failure_leaves_segment_missing(self):
        def writer(prompt, task_type):
            if "Part 2 of the chapter" in prompt:
                raise generation_error_for("writer timed out", "timeout")
            return numbered_writer(prompt, task_type)

        router = FakeRouter(complete_fn=writer)
        result = self.make_dispatcher(router).rewrite_chapter(make_chapter())

        self.assertEqual(result.gap_filled, [1, 3])
        self.assertEqual(result.missing, [2])
        self.assertNotIn("Scene 2", result.output)

    def test_writer_failure_is_reported_to_commander(self):
        router = FakeRouter(
            [tool_response(tool_call("spawn_writer", segment_id=1, scene_title="One"))],
            complete_fn=failing_complete("server_error", "down"),
        )
        self.make_dispatcher(router).rewrite_chapter(make_chapter())

        result = router.chat_calls[1]["messages"][-1]["content"][0]
        self.assertTrue(result["is_error"])
        self.assertIn("server_error", result["content"])

    def test_writer_call_settings(self):
        router = FakeRouter(complete_fn=numbered_writer)
        self.make_dispatcher(router).rewrite_chapter(make_chapter())

        call = router.complete_calls[0]
        self.assertEqual(call["task_type"], TaskType.REWRITE)
        self.assertEqual(call["temperature"], 0.7)
        self.assertEqual(call["frequency_penalty"], 0.3)
        self.assertEqual(call["presence_penalty"], 0.3)
        self.assertEqual(call["timeout"], 120)

    def test_auth_error_is_configuration_error(self):
        router = FakeRouter([error_response("bad key", "auth_error")])
        with self.assertRaises(ConfigurationError):
            self.make_dispatcher(router).rewrite_chapter(make_chapter())

    def test_output_mode_reaches_writers(self):
        router = FakeRouter(complete_fn=numbered_writer)
        task = replace(REWRITE_STORYTELLING, output_mode="compress")
        SegmentDispatcher(router, task, ReaderSettings(segment_size=100)).rewrite_chapter(make_chapter())

        self.assertEqual(len(router.complete_calls), 3)
        for call in router.complete_calls:
            self.assertIn(OUTPUT_MODE_RULES["compress"], call["prompt"])

    def test_commander_sees_length_target_and_recent_chapters(self):
        router = FakeRouter(complete_fn=numbered_writer)
        task = replace(REWRITE_STORYTELLING, max_output_per_chapter=1234)
        dispatcher = SegmentDispatcher(router, task, ReaderSettings(segment_size=100))
        dispatcher.rewrite_chapter(make_chapter(), recent_summaries=["Calm: The sea was quiet."])

        system_prompt = router.chat_calls[0]["system_prompt"]
        self.assertIn("about 1234 characters", system_prompt)
        self.assertIn("## Recently rewritten\nCalm: The sea was quiet.", system_prompt)


DETECTION_OUTPUT = "Chapter overview of the test book. " * 5

CHAPTERS_ANSWER = (
    "Two chapters.\n```chapters\n"
    '[{"chunkStart": 1, "chunkEnd": 2, "title": "First Chapter", "summary": "Beginning"},'
    ' {"chunkStart": 3, "chunkEnd": 4, "title": "Second Chapter"}]\n'
    "```"
)


def book() -> str:
    return "\n\n".join(f"Paragraph {n} " + "y" * 138 for n in range(1, 5))


def detection_script():
    return [tool_response(
        tool_call("spawn_reader", chunk_indexes=[1, 2, 3, 4], question="Where do chapters begin?"),
        tool_call("update_output", content=DETECTION_OUTPUT),
        tool_call("done"),
    )]


def book_complete(prompt, task_type):
    if task_type == TaskType.DELEGATION:
        return CHAPTERS_ANSWER
    return "Narrated **text** for the scene."


class TestDeepReader(unittest.TestCase):

    def setUp(self):
        self.tmp = tempfile.TemporaryDirectory()
        self.addCleanup(self.tmp.cleanup)
        self.sleeps = []
        self.settings = ReaderSettings(chunk_size=200, output_dir=self.tmp.name, inter_call_delay=0.5)

    def make_reader(self, router) -> DeepReader:
        return DeepReader(settings=self.settings, router=router, sleep=self.sleeps.append)

    def test_process_document(self):
        events = []
        router = FakeRouter(detection_script(), complete_fn=book_complete)

        result = self.make_reader(router).process_document(book(), "Test Book", on_progress=events.append)
        session = result.session

        self.assertEqual([c.title for c in session.chapters], ["First Chapter", "Second Chapter"])
        self.assertEqual(session.completed_chapters, [0, 1])
        self.assertEqual(result.failures, {})
        self.assertEqual(self.sleeps, [0.5])

        output = session.output_path.read_text(encoding="utf-8")
        self.assertTrue(output.startswith("# Test Book\n\n> Generated: "))
        self.assertIn("> Source: 606 characters, 2 chapters", output)
        self.assertLess(output.index("## First Chapter"), output.index("## Second Chapter"))
        self.assertIn("### Scene 1: Paragraph 1 yyy", output)

        narration = session.narration_output_path.read_text(encoding="utf-8")
        self.assertIn("Narrated text for the scene.", narration)
        self.assertNotIn("#", narration)
        self.assertNotIn("**", narration)

        done = [e for e in events if e.event_type == ProgressEventType.CHAPTER_DONE]
        self.assertEqual([e.chapter_index for e in done], [0, 1])
        self.assertEqual(done[0].to_dict(), {"type": "chapter_done", "outputChars": result.chapters[0].char_count})

    def test_session_files_live_in_output_dir(self):
        router = FakeRouter(detection_script(), complete_fn=book_complete)
        session = self.make_reader(router).init_session(book(), "Test Book")

        self.assertEqual(session.output_path.parent, Path(self.tmp.name))
        self.assertTrue(session.output_path.name.startswith("Test_Book_"))
        self.assertTrue(session.narration_output_path.name.endswith("_narration.txt"))
        self.assertIn("First Chapter: Beginning", session.global_context)

    def test_no_chapters_recognized(self):
        router = FakeRouter(detection_script(), complete_fn=lambda prompt, task_type: "No chapters here.")
        with self.assertRaises(ChapterPlanEmptyError):
            self.make_reader(router).init_session(book(), "Test Book")

    def test_failed_chapter_is_noted(self):
        router = FakeRouter(detection_script(), complete_fn=book_complete)
        reader = self.make_reader(router)
        second = ChapterOutput(output="Second chapter text.", char_count=20)

        with patch.object(reader.dispatcher, "rewrite_chapter",
                          side_effect=[generation_error_for("writer down", "server_error"), second]):
            result = reader.process_document(book(), "Test Book")

        self.assertEqual(list(result.failures), [0])
        self.assertEqual(list(result.chapters), [1])
        output = result.session.output_path.read_text(encoding="utf-8")
        self.assertIn("[Chapter failed: writer down]", output)
        self.assertIn("Second chapter text.", output)
        self.assertTrue(result.session.narration_output_path.exists())

    def test_unknown_chapter_index(self):
        router = FakeRouter(detection_script(), complete_fn=book_complete)
        reader = self.make_reader(router)
        session = reader.init_session(book(), "Test Book")
        with self.assertRaises(DeepReaderError):
            reader.process_one_chapter(session, 5)

    def test_previous_chapter_summary_reaches_commander(self):
        router = FakeRouter(detection_script(), complete_fn=book_complete)
        self.make_reader(router).process_document(book(), "Test Book")

        commanders = [c["system_prompt"] for c in router.chat_calls
                      if "You direct the rewrite" in (c["system_prompt"] or "")]
        self.assertEqual(len(commanders), 2)
        self.assertNotIn("## Recently rewritten", commanders[0])
        self.assertIn("## Recently rewritten\nFirst Chapter: ", commanders[1])

    def test_no_recent_context_when_disabled(self):
        router = FakeRouter(detection_script(), complete_fn=book_complete)
        task = replace(REWRITE_STORYTELLING, context_chapters=0)
        DeepReader(task, self.settings, router, sleep=self.sleeps.append).process_document(book(), "Test Book")

        for call in router.chat_calls:
            self.assertNotIn("## Recently rewritten", call["system_prompt"] or "")

    def test_file_names_carry_creation_time(self):
        moments = iter([datetime(2026, 1, 5, 14, 3, 9, 123456), datetime(2026, 1, 5, 14, 3, 10)])
        router = FakeRouter(detection_script() + detection_script(), complete_fn=book_complete)
        reader = DeepReader(settings=self.settings, router=router, clock=lambda: next(moments))

        paths = [reader.init_session(book(), "Test Book").output_path for _ in range(2)]

        self.assertTrue(paths[0].name.endswith("_2026-01-05T14-03-09.md"))
        self.assertTrue(paths[1].name.endswith("_2026-01-05T14-03-10.md"))
        self.assertTrue(paths[0].exists())
        self.assertTrue(paths[1].exists())


class TestRewriteTask(unittest.TestCase):

    def test_unknown_output_mode(self):
        with self.assertRaises(ValueError):
            RewriteTask(role="r", purpose="p", chapter_prompt="c", output_mode="shout")

    def test_negative_context_chapters(self):
        with self.assertRaises(ValueError):
            RewriteTask(role="r", purpose="p", chapter_prompt="c", context_chapters=-1)


class TestNarrationCleanup(unittest.TestCase):

    def test_markdown_and_stage_directions_removed(self):
        text = (
            "# Title\n\n> Generated\n\n**Bold** words （stage）here.\n\n"
            "---\n\n```\n——— break\nEnd."
        )
        self.assertEqual(clean_for_narration(text), "Bold words here.\n\nEnd.")

    def test_plain_text_untouched(self):
        self.assertEqual(clean_for_narration("  Once upon a time.  "), "Once upon a time.")


if __name__ == "__main__":
    unittest.main()
