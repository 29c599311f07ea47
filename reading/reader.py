"""
Deep Reader - Recursive Reader
Coverage-gated reading of documents far larger than one context window.

The orchestrating model never sees the whole document. It inspects chunk
previews, reads single chunks, and delegates batches of chunks to
sub-readers. It may only finish once enough chunks have been covered and
its output buffer holds a real result.

Usage:
    from reading.reader import RecursiveReader
    from reading.prompts import TASK_SUMMARY

    reader = RecursiveReader(TASK_SUMMARY)
    result = reader.read(text, title="My Book")
    print(result.content)
"""

from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Dict, List, Optional

from core.errors import ConfigurationError, EmptyDocumentError
from core.logger import log_info, log_success, log_warning, log_section, log_config
from llm.router import LLMRouter, TaskType, get_llm_router
from reading.checkpoint import CheckpointMessage, CheckpointStore, SqliteCheckpointStore
from reading.chunker import chunk_document, make_preview
from reading.consolidator import ChapterFragment, ChapterPlanSettings, build_chapter_plan
from reading.coverage import check_done, format_range, merge_into_ranges
from reading.delegate import SubTaskDelegate
from reading.prompts import (
    ReadTask,
    TASK_PAPER_ANALYSIS,
    TASK_STUDY_NOTES,
    TASK_SUMMARY,
    TASK_TEACHING_POINTS,
    build_init_message,
    build_reader_prompt,
)
from reading.session import ReadState, document_id, thread_id
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
class ReadResult:
    """Outcome of a recursive read."""
    content: str
    chapters: List[ChapterFragment] = field(default_factory=list)
    metadata: Dict[str, Any] = field(default_factory=dict)

    @property
    def warning(self) -> Optional[str]:
        return self.metadata.get("warning")

    @property
    def error(self) -> Optional[str]:
        return self.metadata.get("error")


class RecursiveReader:
    """Runs one coverage-gated read pass per call to read()."""

    def __init__(
        self,
        task: ReadTask,
        settings: Optional[ReaderSettings] = None,
        router: Optional[LLMRouter] = None,
        checkpoint_store: Optional[CheckpointStore] = None,
        delegate: Optional[SubTaskDelegate] = None
    ):
        self.task = task
        self.settings = settings or ReaderSettings()
        self.router = router or get_llm_router()
        self.checkpoint_store = checkpoint_store if self.settings.checkpoint_enabled else None
        self.delegate = delegate or SubTaskDelegate(
            self.router,
            timeout=self.settings.delegate_timeout,
            max_tokens=self.settings.delegate_max_tokens,
            malformed_policy=self.settings.malformed_block_policy
        )
        self.registry = self._build_registry()

    # =========================================================================
    # TOOLS
    # =========================================================================

    def _build_registry(self) -> ToolRegistry:
        return ToolRegistry([
            ToolSpec(
                name="get_document_stats",
                description="Get the document size: characters, chunks, average chunk size and current coverage.",
                input_schema={"type": "object", "properties": {}},
                handler=self._get_document_stats,
            ),
            ToolSpec(
                name="get_chunk_list",
                description="List short previews of the first chunks of the document.",
                input_schema={"type": "object", "properties": {}},
                handler=self._get_chunk_list,
            ),
            ToolSpec(
                name="search_document",
                description="Find the chunks that contain a keyword (case-insensitive).",
                input_schema={
                    "type": "object",
                    "properties": {
                        "keyword": {"type": "string", "description": "Text to search for"}
                    },
                    "required": ["keyword"],
                },
                handler=self._search_document,
            ),
            ToolSpec(
                name="read_chunk",
                description="Read the full text of one chunk. Counts towards coverage.",
                input_schema={
                    "type": "object",
                    "properties": {
                        "index": {"type": "integer", "minimum": 1, "description": "Chunk number (1-based)"}
                    },
                    "required": ["index"],
                },
                handler=self._read_chunk,
            ),
            ToolSpec(
                name="spawn_reader",
                description=(
                    "Have a sub-reader read several chunks and answer a question about them. "
                    "Best used on 5-10 consecutive chunks. Counts towards coverage."
                ),
                input_schema={
                    "type": "object",
                    "properties": {
                        "chunk_indexes": {
                            "type": "array",
                            "items": {"type": "integer"},
                            "description": "Chunk numbers to read (1-based)",
                        },
                        "question": {"type": "string", "description": "What the sub-reader should answer"},
                    },
                    "required": ["chunk_indexes", "question"],
                },
                handler=self._spawn_reader,
            ),
            ToolSpec(
                name="update_output",
                description="Replace your working output with new content.",
                input_schema={
                    "type": "object",
                    "properties": {
                        "content": {"type": "string", "description": "The full output text"}
                    },
                    "required": ["content"],
                },
                handler=self._update_output,
            ),
            ToolSpec(
                name="get_output",
                description="Show your current working output.",
                input_schema={"type": "object", "properties": {}},
                handler=self._get_output,
            ),
            ToolSpec(
                name="done",
                description="Finish reading. Refused while coverage or output is insufficient.",
                input_schema={"type": "object", "properties": {}},
                handler=self._done,
            ),
        ])

    def _coverage_line(self, state: ReadState) -> str:
        tracker = state.coverage
        return (
            f"Coverage: {tracker.covered_count}/{tracker.total_chunks} chunks "
            f"({tracker.ratio * 100:.1f}%)"
        )

    def _get_document_stats(self, state: ReadState, args: Dict[str, Any]) -> str:
        total = len(state.chunks)
        average = state.total_chars // total if total else 0
        return "\n".join([
            f"Document: {state.title or 'Untitled'}",
            f"Total characters: {state.total_chars}",
            f"Total chunks: {total}",
            f"Average chunk size: {average} characters",
            self._coverage_line(state),
        ])

    def _get_chunk_list(self, state: ReadState, args: Dict[str, Any]) -> str:
        count = self.settings.chunk_preview_count
        lines = [
            f"[{chunk.index}] {make_preview(chunk.content, self.settings.chunk_preview_chars)}"
            for chunk in state.chunks[:count]
        ]
        remaining = len(state.chunks) - count
        if remaining > 0:
            lines.append(
                f"... {remaining} more chunks ({count + 1}-{len(state.chunks)}). "
                "Use spawn_reader to read them in batches."
            )
        return "\n".join(lines)

    def _search_document(self, state: ReadState, args: Dict[str, Any]) -> str:
        keyword = args["keyword"].strip()
        if not keyword:
            raise ToolInputError(ToolError(
                ToolErrorType.VALIDATION,
                "Keyword must not be empty",
                example='search_document(keyword: "Chapter 3")',
            ))

        needle = keyword.casefold()
        hits = [chunk.index for chunk in state.chunks if needle in chunk.content.casefold()]
        if not hits:
            return f"No chunk contains '{keyword}'."

        ranges = ", ".join(format_range(s, e) for s, e in merge_into_ranges(hits))
        return f"'{keyword}' found in {len(hits)} chunk(s): {ranges}"

    def _read_chunk(self, state: ReadState, args: Dict[str, Any]) -> str:
        index = args["index"]
        chunk = state.get_chunk(index)
        if chunk is None:
            raise ToolInputError(ToolError(
                ToolErrorType.NOT_FOUND,
                f"Chunk {index} does not exist. Valid chunks are 1-{len(state.chunks)}.",
            ))

        state.coverage.mark([index])
        return f"[Chunk {index}/{len(state.chunks)}]\n{chunk.content}\n\n{self._coverage_line(state)}"

    def _spawn_reader(self, state: ReadState, args: Dict[str, Any]) -> str:
        total = len(state.chunks)
        indexes = sorted({i for i in args["chunk_indexes"] if 1 <= i <= total})
        if not indexes:
            raise ToolInputError(ToolError(
                ToolErrorType.NOT_FOUND,
                f"None of the requested chunks exist. Valid chunks are 1-{total}.",
                example='spawn_reader(chunk_indexes: [1, 2, 3], question: "What happens here?")',
            ))

        answer = self.delegate.run(state.chunks, indexes, args["question"])
        if not answer.failed:
            state.coverage.mark(indexes)
            state.fragments.extend(answer.fragments)

        ranges = ", ".join(format_range(s, e) for s, e in merge_into_ranges(indexes))
        return f"Sub-reader answer (chunks {ranges}):\n{answer.text}\n\n{self._coverage_line(state)}"

    def _update_output(self, state: ReadState, args: Dict[str, Any]) -> str:
        state.output = args["content"]
        return f"Output updated ({len(state.output)} characters)."

    def _get_output(self, state: ReadState, args: Dict[str, Any]) -> str:
        return state.output or "(output is empty)"

    def _done(self, state: ReadState, args: Dict[str, Any]) -> str:
        decision = check_done(
            state.coverage,
            state.output,
            min_coverage=self.task.min_coverage,
            gate_min_chunks=self.settings.gate_min_chunks,
            min_output_chars=self.settings.min_output_chars,
            range_display_limit=self.settings.unread_range_display_limit
        )
        if decision.accepted:
            state.finished = True
        else:
            log_info(f"done() refused at {decision.coverage * 100:.1f}% coverage", prefix="🚧")
        return decision.message

    # =========================================================================
    # CHECKPOINTS
    # =========================================================================

    def _has_history(self, tid: str) -> bool:
        if self.checkpoint_store is None:
            return False
        try:
            return self.checkpoint_store.has_history(tid)
        except Exception as e:
            log_warning(f"Checkpoint lookup failed for {tid}: {e}")
            return False

    def _save_history(self, tid: str, init_message: str, output: str) -> None:
        if self.checkpoint_store is None:
            return
        try:
            self.checkpoint_store.append(tid, [
                CheckpointMessage(role="user", content=init_message),
                CheckpointMessage(role="assistant", content=output),
            ])
        except Exception as e:
            log_warning(f"Checkpoint save failed for {tid}: {e}")

    # =========================================================================
    # READ
    # =========================================================================

    def _chapter_plan(self, state: ReadState) -> List[ChapterFragment]:
        plan_settings = ChapterPlanSettings(
            merge_ceiling=self.settings.chapter_merge_ceiling,
            min_span=self.settings.chapter_min_span,
            neighbor_min_span=self.settings.chapter_neighbor_min_span,
            llm_merge_threshold=self.settings.chapter_llm_merge_threshold,
            merge_timeout=self.settings.merge_timeout,
        )
        return build_chapter_plan(
            state.fragments,
            len(state.chunks),
            state.title,
            router=self.router,
            settings=plan_settings
        )

    def read(self, document: str, title: str = "") -> ReadResult:
        """
        Read a document and produce the task's output.

        Raises:
            EmptyDocumentError: If the document has no content
            ConfigurationError: If no reasoning provider is configured
        """
        if not document or not document.strip():
            raise EmptyDocumentError("Document is empty")

        self.router.require_provider(TaskType.READER)

        chunks = chunk_document(document, self.settings.chunk_size, self.settings.sentence_split_min_ratio)
        if not chunks:
            raise EmptyDocumentError("Document has no readable paragraphs")

        state = ReadState.for_chunks(title, chunks)
        tid = thread_id(document_id(document, self.task.purpose, self.settings.document_id_prefix_chars))
        has_history = self._has_history(tid)

        log_section(f"Reading: {title or 'Untitled'}", "📖")
        log_config("Chunks", len(chunks), indent=1)
        log_config("Characters", len(document), indent=1)
        log_config("Min coverage", f"{self.task.min_coverage * 100:.0f}%", indent=1)
        if has_history:
            log_config("History", tid, indent=1)

        init_message = build_init_message(title, len(chunks), has_history)
        loop_result = run_tool_loop(
            router=self.router,
            registry=self.registry,
            state=state,
            system_prompt=build_reader_prompt(self.task),
            initial_message=init_message,
            max_rounds=self.settings.reader_max_rounds,
            is_finished=lambda: state.finished,
            task_type=TaskType.READER,
            max_tokens=self.settings.reader_max_tokens,
            label="Reader"
        )
        state.tool_calls = loop_result.tool_calls

        metadata: Dict[str, Any] = {
            "total_chunks": len(chunks),
            "task": self.task.purpose,
            "coverage": round(state.coverage.ratio, 4),
            "tool_calls": state.tool_calls,
            "rounds": loop_result.rounds,
            "thread_id": tid,
        }
        if loop_result.stop_reason == StopReason.PROVIDER_ERROR and loop_result.error_type == "auth_error":
            raise ConfigurationError(f"Reasoning provider rejected credentials: {loop_result.error}")

        chapters = self._chapter_plan(state)

        if loop_result.stop_reason == StopReason.PROVIDER_ERROR:
            metadata["error"] = loop_result.error
            return ReadResult(
                content=f"[Process error ({loop_result.error_type}): {loop_result.error}]",
                chapters=chapters,
                metadata=metadata,
            )

        content = state.output or loop_result.final_text
        if loop_result.stop_reason == StopReason.ROUND_LIMIT:
            metadata["warning"] = (
                f"Round limit ({self.settings.reader_max_rounds}) reached; output is possibly incomplete"
            )
        elif loop_result.stop_reason == StopReason.NO_TOOL_CALLS:
            metadata["warning"] = "Reader stopped before done() was accepted; output is possibly incomplete"

        if metadata.get("warning"):
            log_warning(metadata["warning"])
        else:
            log_success(
                f"Read complete: {state.coverage.covered_count}/{len(chunks)} chunks, "
                f"{len(content)} chars, {len(chapters)} chapters"
            )

        self._save_history(tid, init_message, content)
        return ReadResult(content=content, chapters=chapters, metadata=metadata)


# =============================================================================
# CONVENIENCE HELPERS
# =============================================================================

def default_checkpoint_store(
    settings: Optional[ReaderSettings] = None,
    db_path: Optional[Path] = None
) -> Optional[CheckpointStore]:
    """
    SQLite store when checkpoints are enabled, else None.

    An unusable database disables checkpoints for the read instead of
    failing it.
    """
    settings = settings or ReaderSettings()
    if not settings.checkpoint_enabled:
        return None
    try:
        return SqliteCheckpointStore(db_path)
    except RuntimeError as e:
        log_warning(f"Checkpoints disabled: {e}")
        return None


def read_with_task(
    document: str,
    task: ReadTask,
    title: str = "",
    settings: Optional[ReaderSettings] = None,
    router: Optional[LLMRouter] = None,
    checkpoint_store: Optional[CheckpointStore] = None
) -> ReadResult:
    """Read a document with any task."""
    settings = settings or ReaderSettings()
    if checkpoint_store is None:
        checkpoint_store = default_checkpoint_store(settings)
    reader = RecursiveReader(task, settings=settings, router=router, checkpoint_store=checkpoint_store)
    return reader.read(document, title)


def study_notes(document: str, title: str = "", **kwargs) -> ReadResult:
    return read_with_task(document, TASK_STUDY_NOTES, title, **kwargs)


def summarize(document: str, title: str = "", **kwargs) -> ReadResult:
    return read_with_task(document, TASK_SUMMARY, title, **kwargs)


def teaching_points(document: str, title: str = "", **kwargs) -> ReadResult:
    return read_with_task(document, TASK_TEACHING_POINTS, title, **kwargs)


def paper_analysis(document: str, title: str = "", **kwargs) -> ReadResult:
    return read_with_task(document, TASK_PAPER_ANALYSIS, title, **kwargs)
