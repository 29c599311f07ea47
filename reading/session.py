"""
Deep Reader - Pass State
Mutable state for a single read pass or chapter rewrite, plus the
long-lived rewrite session record.

A state object is created at the start of its pass, handed explicitly to
every tool handler, and discarded afterwards.
"""

import hashlib
from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from pathlib import Path
from typing import Any, Dict, List, Optional, Set

import config
from reading.chunker import Chunk, Segment
from reading.consolidator import Chapter, ChapterFragment
from reading.coverage import CoverageTracker
from reading.events import ProgressCallback


def document_id(content: str, purpose: str, prefix_chars: int = config.DOCUMENT_ID_PREFIX_CHARS) -> str:
    """Stable id for a document read under a given purpose."""
    digest = hashlib.md5((content[:prefix_chars] + purpose).encode("utf-8")).hexdigest()
    return digest[:12]


def thread_id(doc_id: str) -> str:
    return f"rlm-{doc_id}"


# =============================================================================
# READ PASS
# =============================================================================

@dataclass
class ReadState:
    """State of one recursive read pass."""
    title: str
    chunks: List[Chunk]
    coverage: CoverageTracker
    output: str = ""
    tool_calls: int = 0
    fragments: List[ChapterFragment] = field(default_factory=list)
    finished: bool = False

    @classmethod
    def for_chunks(cls, title: str, chunks: List[Chunk]) -> "ReadState":
        return cls(title=title, chunks=chunks, coverage=CoverageTracker(len(chunks)))

    @property
    def total_chars(self) -> int:
        return sum(chunk.length for chunk in self.chunks)

    def get_chunk(self, index: int) -> Optional[Chunk]:
        if 1 <= index <= len(self.chunks):
            return self.chunks[index - 1]
        return None


# =============================================================================
# CHAPTER REWRITE PASS
# =============================================================================

class ChapterPhase(Enum):
    """Lifecycle of a chapter rewrite."""
    INITIALIZED = "initialized"
    DISPATCHING = "dispatching"
    GAP_FILLING = "gap_filling"
    ASSEMBLED = "assembled"


@dataclass
class SegmentOutput:
    title: str
    content: str


@dataclass
class ChapterRewriteState:
    """State of one chapter rewrite."""
    chapter: Chapter
    segments: List[Segment]
    phase: ChapterPhase = ChapterPhase.INITIALIZED
    processed: Set[int] = field(default_factory=set)
    outputs: Dict[int, SegmentOutput] = field(default_factory=dict)
    tool_calls: int = 0
    finished: bool = False
    on_progress: Optional[ProgressCallback] = None

    @property
    def total_segments(self) -> int:
        return len(self.segments)

    def get_segment(self, segment_id: int) -> Optional[Segment]:
        if 1 <= segment_id <= len(self.segments):
            return self.segments[segment_id - 1]
        return None

    def unprocessed(self) -> List[Segment]:
        return [s for s in self.segments if s.id not in self.processed]

    def record(self, segment_id: int, title: str, content: str) -> None:
        self.outputs[segment_id] = SegmentOutput(title=title, content=content)
        self.processed.add(segment_id)

    def assemble(self) -> str:
        """Render stored outputs in segment order."""
        parts = []
        for segment_id in sorted(self.outputs):
            output = self.outputs[segment_id]
            parts.append(f"### {output.title}\n\n{output.content}")
        return "\n\n".join(parts)


# =============================================================================
# REWRITE SESSION
# =============================================================================

@dataclass
class DeepReadSession:
    """A document prepared for chapter-by-chapter rewriting."""
    id: str
    title: str
    content: str
    chapters: List[Chapter]
    global_context: str
    output_path: Path
    narration_output_path: Path
    chapter_summaries: Dict[int, str] = field(default_factory=dict)
    completed_chapters: List[int] = field(default_factory=list)
    created_at: datetime = field(default_factory=datetime.now)

    @property
    def is_complete(self) -> bool:
        return len(self.completed_chapters) >= len(self.chapters)

    def recent_summaries(self, before: int, count: int) -> List[str]:
        """Summaries of up to count finished chapters preceding index before, oldest first."""
        if count <= 0:
            return []
        earlier = sorted(i for i in self.chapter_summaries if i < before)[-count:]
        return [f"{self.chapters[i].title}: {self.chapter_summaries[i]}" for i in earlier]

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "title": self.title,
            "chars": len(self.content),
            "chapters": [chapter.to_dict() for chapter in self.chapters],
            "globalContext": self.global_context,
            "chapterSummaries": dict(self.chapter_summaries),
            "outputPath": str(self.output_path),
            "narrationOutputPath": str(self.narration_output_path),
            "completedChapters": list(self.completed_chapters),
            "createdAt": self.created_at.isoformat(),
        }
