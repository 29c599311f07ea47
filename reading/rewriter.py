"""
Deep Reader - Chapter Rewriter
Chapter-by-chapter rewriting of a long document.

A rewrite session first runs a chapter-detection read over the document,
then rewrites each chapter through a commander model that dispatches
segment writers. Segments the commander never dispatched are gap-filled
afterwards so every chapter is rewritten in full.

Chapter lifecycle (ChapterPhase):
    initialized -> dispatching -> gap_filling -> assembled
"""

import re
import time
from dataclasses import dataclass, field
from datetime import datetime
from pathlib import Path
from typing import Any, Callable, Dict, List, Optional

from core.errors import (
    ChapterPlanEmptyError,
    ConfigurationError,
    DeepReaderError,
    EmptyDocumentError,
    GenerationError,
)
from core.logger import log_info, log_success, log_warning, log_error, log_section, log_subsection
from llm.router import LLMRouter, TaskType, get_llm_router
from reading.chunker import Segment, chunk_document, split_into_segments
from reading.consolidator import (
    Chapter,
    build_global_context,
    map_to_chapters,
)
from reading.events import ProgressCallback, ProgressEvent, ProgressEventType, emit
from reading.prompts import (
    GAP_FILL_HINTS,
    REWRITE_STORYTELLING,
    TASK_CHAPTER_DETECTION,
    RewriteTask,
    build_chapter_message,
    build_commander_prompt,
    build_writer_prompt,
    gap_fill_title,
)
from reading.reader import RecursiveReader
from reading.session import ChapterPhase, ChapterRewriteState, DeepReadSession, document_id
from reading.settings import ReaderSettings
from reading.tools import (
    StopReason,
    ToolError,
    ToolErrorType,
    ToolInputError,
    ToolRegistry,
    ToolSpec,
    run_tool_loop,
)


@dataclass
class ChapterOutput:
    """Rewritten text of one chapter."""
    output: str
    char_count: int
    gap_filled: List[int] = field(default_factory=list)
    missing: List[int] = field(default_factory=list)


@dataclass
class DeepReadOutput:
    """Result of rewriting a whole document."""
    session: DeepReadSession
    chapters: Dict[int, ChapterOutput] = field(default_factory=dict)
    failures: Dict[int, str] = field(default_factory=dict)

    @property
    def output_path(self) -> Path:
        return self.session.output_path


# =============================================================================
# NARRATION CLEANUP
# =============================================================================

_NARRATION_PATTERNS = [
    (re.compile(r"（[^）]*）"), ""),                    # Stage directions
    (re.compile(r"\*\*|__"), ""),                      # Emphasis markers
    (re.compile(r"^#{1,6}\s.*$", re.MULTILINE), ""),   # Headings
    (re.compile(r"^\s*-{3,}\s*$", re.MULTILINE), ""),  # Rules
    (re.compile(r"^>.*$", re.MULTILINE), ""),          # Quote lines
    (re.compile(r"^```.*$", re.MULTILINE), ""),        # Code fences
    (re.compile(r"^\s*—{2,}.*$", re.MULTILINE), ""),   # Dash separators
]


def clean_for_narration(text: str) -> str:
    """Strip markdown and stage directions, leaving plain narration text."""
    for pattern, replacement in _NARRATION_PATTERNS:
        text = pattern.sub(replacement, text)
    text = re.sub(r"\n{3,}", "\n\n", text)
    return text.strip()


def _safe_filename(title: str) -> str:
    name = re.sub(r'[\\/:*?"<>|\s]+', "_", title or "").strip("_")
    return name[:60] or "document"


def _file_timestamp(moment: datetime) -> str:
    """2026-01-05T14-03-09 style stamp, safe in file names."""
    return moment.isoformat().replace(":", "-").replace(".", "-")[:19]


# =============================================================================
# SEGMENT DISPATCHER
# =============================================================================

class SegmentDispatcher:
    """Rewrites one chapter through commander-directed segment writers."""

    def __init__(
        self,
        router: LLMRouter,
        task: RewriteTask = REWRITE_STORYTELLING,
        settings: Optional[ReaderSettings] = None
    ):
        self.router = router
        self.task = task
        self.settings = settings or ReaderSettings()
        self.registry = ToolRegistry([
            ToolSpec(
                name="get_chapter_info",
                description="Get the chapter's segment count, segment sizes, previews and progress.",
                input_schema={"type": "object", "properties": {}},
                handler=self._get_chapter_info,
            ),
            ToolSpec(
                name="read_segment",
                description="Read the full original text of one segment.",
                input_schema={
                    "type": "object",
                    "properties": {
                        "segment_id": {"type": "integer", "minimum": 1, "description": "Segment number (1-based)"}
                    },
                    "required": ["segment_id"],
                },
                handler=self._read_segment,
            ),
            ToolSpec(
                name="spawn_writer",
                description="Have a writer rewrite one segment with the given scene title and hints.",
                input_schema={
                    "type": "object",
                    "properties": {
                        "segment_id": {"type": "integer", "minimum": 1, "description": "Segment number (1-based)"},
                        "scene_title": {"type": "string", "description": "Short title for the scene"},
                        "writing_hints": {"type": "string", "description": "Concrete guidance for the writer"},
                    },
                    "required": ["segment_id", "scene_title"],
                },
                handler=self._spawn_writer,
            ),
            ToolSpec(
                name="done",
                description="Finish the chapter. Refused while segments remain unwritten.",
                input_schema={"type": "object", "properties": {}},
                handler=self._done,
            ),
        ])

    # =========================================================================
    # TOOLS
    # =========================================================================

    def _require_segment(self, state: ChapterRewriteState, segment_id: int) -> Segment:
        segment = state.get_segment(segment_id)
        if segment is None:
            raise ToolInputError(ToolError(
                ToolErrorType.NOT_FOUND,
                f"Segment {segment_id} does not exist. Valid segments are 1-{state.total_segments}.",
            ))
        return segment

    def _get_chapter_info(self, state: ChapterRewriteState, args: Dict[str, Any]) -> str:
        lines = [
            f"Chapter: {state.chapter.title}",
            f"Characters: {state.chapter.char_count}",
            f"Segments: {state.total_segments} ({len(state.processed)} written)",
            "",
        ]
        for segment in state.segments:
            mark = "x" if segment.id in state.processed else " "
            lines.append(f"[{mark}] {segment.id} ({len(segment.content)} chars): {segment.preview}")
        return "\n".join(lines)

    def _read_segment(self, state: ChapterRewriteState, args: Dict[str, Any]) -> str:
        segment = self._require_segment(state, args["segment_id"])
        return f"[Segment {segment.id}/{state.total_segments}]\n{segment.content}"

    def _write_segment(self, state: ChapterRewriteState, segment: Segment, title: str, hints: str) -> str:
        """One writer call; records the result and emits progress. Raises GenerationError."""
        emit(state.on_progress, ProgressEvent(
            event_type=ProgressEventType.SEGMENT_START,
            chapter_index=state.chapter.index,
            segment_id=segment.id,
            total_segments=state.total_segments,
        ))

        prompt = build_writer_prompt(self.task.role, segment.content, title, hints, self.task.output_mode)
        text = self.router.complete(
            prompt=prompt,
            task_type=TaskType.REWRITE,
            max_tokens=self.settings.writer_max_tokens,
            temperature=self.settings.writer_temperature,
            frequency_penalty=self.settings.writer_frequency_penalty,
            presence_penalty=self.settings.writer_presence_penalty,
            timeout=self.settings.leaf_timeout
        ).strip()

        state.record(segment.id, title, text)
        emit(state.on_progress, ProgressEvent(
            event_type=ProgressEventType.SEGMENT_DONE,
            chapter_index=state.chapter.index,
            segment_id=segment.id,
            total_segments=state.total_segments,
            char_count=len(text),
            content=text,
            title=title,
        ))
        return text

    def _spawn_writer(self, state: ChapterRewriteState, args: Dict[str, Any]) -> str:
        segment = self._require_segment(state, args["segment_id"])
        title = args["scene_title"].strip() or gap_fill_title(segment.id, segment.preview)

        try:
            text = self._write_segment(state, segment, title, args.get("writing_hints", ""))
        except GenerationError as e:
            raise ToolInputError(ToolError(
                ToolErrorType.SYSTEM_ERROR,
                f"Writer failed on segment {segment.id} ({e.error_type}): {e}. "
                "Try again or continue with the next segment.",
            ))

        remaining = len(state.unprocessed())
        return (
            f"Segment {segment.id} written ({len(text)} characters). "
            f"{remaining} segment(s) remaining."
        )

    def _done(self, state: ChapterRewriteState, args: Dict[str, Any]) -> str:
        remaining = state.unprocessed()
        if remaining:
            ids = ", ".join(str(s.id) for s in remaining)
            return f"Not finished: {len(remaining)} segment(s) not written yet: {ids}."
        state.finished = True
        return f"All {state.total_segments} segments written."

    # =========================================================================
    # PHASES
    # =========================================================================

    def _gap_fill(self, state: ChapterRewriteState) -> List[int]:
        """Rewrite every segment the commander skipped. Returns the filled ids."""
        filled = []
        for segment in state.unprocessed():
            title = gap_fill_title(segment.id, segment.preview)
            try:
                self._write_segment(state, segment, title, GAP_FILL_HINTS)
                filled.append(segment.id)
            except GenerationError as e:
                log_error(f"Gap-fill failed for segment {segment.id} ({e.error_type}): {e}")
        return filled

    def rewrite_chapter(
        self,
        chapter: Chapter,
        global_context: str = "",
        on_progress: Optional[ProgressCallback] = None,
        recent_summaries: Optional[List[str]] = None
    ) -> ChapterOutput:
        """Run a chapter through dispatching, gap-filling and assembly."""
        segments = split_into_segments(
            chapter.content,
            max_size=self.settings.segment_size,
            boundary_ratio=self.settings.segment_boundary_ratio,
            preview_chars=self.settings.segment_preview_chars
        )
        state = ChapterRewriteState(chapter=chapter, segments=segments, on_progress=on_progress)
        log_subsection(f"Chapter {chapter.index + 1}: {chapter.title} ({len(segments)} segments)", "📝")

        state.phase = ChapterPhase.DISPATCHING
        loop_result = run_tool_loop(
            router=self.router,
            registry=self.registry,
            state=state,
            system_prompt=build_commander_prompt(self.task, global_context, recent_summaries),
            initial_message=build_chapter_message(chapter.title, chapter.char_count, self.task.chapter_prompt),
            max_rounds=self.settings.rewrite_max_rounds,
            is_finished=lambda: state.finished,
            task_type=TaskType.READER,
            label="Commander"
        )
        state.tool_calls = loop_result.tool_calls

        if loop_result.stop_reason == StopReason.PROVIDER_ERROR and loop_result.error_type == "auth_error":
            raise ConfigurationError(f"Reasoning provider rejected credentials: {loop_result.error}")

        state.phase = ChapterPhase.GAP_FILLING
        gap_filled = []
        if state.unprocessed():
            log_warning(
                f"{len(state.unprocessed())} segment(s) not dispatched "
                f"({loop_result.stop_reason.value}), gap-filling"
            )
            gap_filled = self._gap_fill(state)

        state.phase = ChapterPhase.ASSEMBLED
        output = state.assemble()
        missing = [s.id for s in state.unprocessed()]
        if missing:
            log_warning(f"Chapter '{chapter.title}' is missing segment(s): {missing}")

        log_success(f"Chapter '{chapter.title}' rewritten: {len(output)} chars")
        return ChapterOutput(output=output, char_count=len(output), gap_filled=gap_filled, missing=missing)


# =============================================================================
# DEEP READER
# =============================================================================

class DeepReader:
    """Session API over chapter detection and chapter rewriting."""

    def __init__(
        self,
        task: RewriteTask = REWRITE_STORYTELLING,
        settings: Optional[ReaderSettings] = None,
        router: Optional[LLMRouter] = None,
        sleep: Callable[[float], None] = time.sleep,
        clock: Callable[[], datetime] = datetime.now
    ):
        self.task = task
        self.settings = settings or ReaderSettings()
        self.router = router or get_llm_router()
        self.dispatcher = SegmentDispatcher(self.router, task, self.settings)
        self._sleep = sleep
        self._clock = clock

    def detect_chapters(self, document: str, title: str = "") -> List[Chapter]:
        """Run a chapter-detection read and map its plan onto the document."""
        detection = RecursiveReader(
            TASK_CHAPTER_DETECTION,
            settings=self.settings.with_overrides(checkpoint_enabled=False),
            router=self.router
        )
        result = detection.read(document, title)
        if result.error:
            log_warning(f"Chapter detection ended with an error: {result.error}")

        chunks = chunk_document(document, self.settings.chunk_size, self.settings.sentence_split_min_ratio)
        return map_to_chapters(result.chapters, chunks, len(document), self.settings.chapter_min_chars)

    def init_session(self, document: str, title: str = "") -> DeepReadSession:
        """
        Detect chapters and prepare the output files.

        Raises:
            EmptyDocumentError: If the document has no content
            ChapterPlanEmptyError: If no chapters were recognized
        """
        if not document or not document.strip():
            raise EmptyDocumentError("Document is empty")

        log_section(f"Preparing rewrite session: {title or 'Untitled'}", "📚")
        chapters = self.detect_chapters(document, title)
        if not chapters:
            raise ChapterPlanEmptyError(f"No chapters recognized in '{title or 'Untitled'}'")

        session_id = document_id(document, self.task.purpose, self.settings.document_id_prefix_chars)
        output_dir = Path(self.settings.output_dir)
        output_dir.mkdir(parents=True, exist_ok=True)
        created_at = self._clock()
        stem = f"{_safe_filename(title)}_{session_id}_{_file_timestamp(created_at)}"

        session = DeepReadSession(
            id=session_id,
            title=title or "Untitled",
            content=document,
            chapters=chapters,
            global_context=build_global_context(chapters, title, self.settings.global_context_chapters),
            output_path=output_dir / f"{stem}.md",
            narration_output_path=output_dir / f"{stem}_narration.txt",
            created_at=created_at,
        )

        header = (
            f"# {session.title}\n\n"
            f"> Generated: {session.created_at.strftime('%Y-%m-%d %H:%M:%S')}\n"
            f"> Source: {len(document)} characters, {len(chapters)} chapters\n\n"
            "---\n\n"
        )
        session.output_path.write_text(header, encoding="utf-8")

        log_success(f"Session {session.id}: {len(chapters)} chapters -> {session.output_path}")
        return session

    def _write_narration(self, session: DeepReadSession) -> None:
        text = session.output_path.read_text(encoding="utf-8")
        session.narration_output_path.write_text(clean_for_narration(text), encoding="utf-8")
        log_info(f"Narration text written: {session.narration_output_path}", prefix="🔊")

    def process_one_chapter(
        self,
        session: DeepReadSession,
        chapter_index: int,
        on_progress: Optional[ProgressCallback] = None
    ) -> ChapterOutput:
        """Rewrite one chapter and append it to the session output file."""
        if not 0 <= chapter_index < len(session.chapters):
            raise DeepReaderError(
                f"Chapter {chapter_index} does not exist (session has {len(session.chapters)})"
            )

        chapter = session.chapters[chapter_index]
        recent = session.recent_summaries(chapter_index, self.task.context_chapters)
        result = self.dispatcher.rewrite_chapter(chapter, session.global_context, on_progress, recent)

        with open(session.output_path, "a", encoding="utf-8") as f:
            f.write(f"## {chapter.title}\n\n{result.output}\n\n---\n\n")

        if chapter_index not in session.completed_chapters:
            session.completed_chapters.append(chapter_index)
        session.chapter_summaries[chapter_index] = result.output[:self.settings.chapter_summary_chars]

        if session.is_complete:
            self._write_narration(session)

        emit(on_progress, ProgressEvent(
            event_type=ProgressEventType.CHAPTER_DONE,
            chapter_index=chapter_index,
            output_chars=result.char_count,
        ))
        return result

    def process_document(
        self,
        document: str,
        title: str = "",
        on_progress: Optional[ProgressCallback] = None
    ) -> DeepReadOutput:
        """Prepare a session and rewrite every chapter in order."""
        session = self.init_session(document, title)
        result = DeepReadOutput(session=session)

        for index, chapter in enumerate(session.chapters):
            if index > 0 and self.settings.inter_call_delay > 0:
                self._sleep(self.settings.inter_call_delay)

            try:
                result.chapters[index] = self.process_one_chapter(session, index, on_progress)
            except ConfigurationError:
                raise
            except DeepReaderError as e:
                log_error(f"Chapter {index + 1} '{chapter.title}' failed: {e}")
                result.failures[index] = str(e)
                with open(session.output_path, "a", encoding="utf-8") as f:
                    f.write(f"## {chapter.title}\n\n[Chapter failed: {e}]\n\n---\n\n")

        if not session.narration_output_path.exists():
            self._write_narration(session)

        written = len(result.chapters)
        log_success(
            f"Rewrite finished: {written}/{len(session.chapters)} chapters -> {session.output_path}"
        )
        return result
