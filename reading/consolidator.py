"""
Deep Reader - Chapter Consolidation
Turns the raw chapter fragments reported by sub-readers into one canonical,
non-overlapping chapter plan, and maps that plan back onto the source text.

Pipeline:
    fragments -> merge_same_title -> consolidate_spans (over the ceiling)
              -> merge_with_llm (over the threshold, validated, with fallback)
              -> map_to_chapters
"""

import json
from dataclasses import dataclass
from typing import Any, Dict, List, Optional

import config
from core.errors import GenerationError
from core.logger import log_info, log_warning, log_success
from llm.router import LLMRouter, TaskType
from reading.chunker import Chunk
from reading.extraction import extract_json
from reading.prompts import build_chapter_merger_prompt

SUMMARY_SEPARATOR = "; "


# =============================================================================
# DATA TYPES
# =============================================================================

@dataclass
class ChapterFragment:
    """A chapter boundary reported in chunk coordinates (1-indexed, inclusive)."""
    chunk_start: int
    chunk_end: int
    title: str
    summary: str = ""

    @property
    def span(self) -> int:
        return self.chunk_end - self.chunk_start + 1

    def to_dict(self) -> Dict[str, Any]:
        return {
            "title": self.title,
            "startChunk": self.chunk_start,
            "endChunk": self.chunk_end,
            "summary": self.summary,
        }

    @classmethod
    def from_dict(cls, data: Any, start_key: str = "chunkStart", end_key: str = "chunkEnd") -> Optional["ChapterFragment"]:
        """Build a fragment from model JSON, or None if the entry is unusable."""
        if not isinstance(data, dict):
            return None

        start = data.get(start_key)
        end = data.get(end_key)
        title = data.get("title")
        if isinstance(start, bool) or isinstance(end, bool):
            return None
        if not isinstance(start, int) or not isinstance(end, int):
            return None
        if not isinstance(title, str) or not title.strip():
            return None
        if start < 1 or end < start:
            return None

        summary = data.get("summary")
        return cls(
            chunk_start=start,
            chunk_end=end,
            title=title.strip(),
            summary=summary.strip() if isinstance(summary, str) else "",
        )


@dataclass
class Chapter:
    """A chapter mapped onto the source text (0-indexed)."""
    index: int
    title: str
    content: str
    char_start: int
    char_end: int
    chunk_start: int
    chunk_end: int
    summary: str = ""

    @property
    def char_count(self) -> int:
        return len(self.content)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "index": self.index,
            "title": self.title,
            "charStart": self.char_start,
            "charEnd": self.char_end,
            "chunkStart": self.chunk_start,
            "chunkEnd": self.chunk_end,
            "chars": self.char_count,
            "summary": self.summary,
        }


@dataclass
class ChapterPlanSettings:
    """Thresholds for consolidation."""
    merge_ceiling: int = config.CHAPTER_MERGE_CEILING
    min_span: int = config.CHAPTER_MIN_SPAN
    neighbor_min_span: int = config.CHAPTER_NEIGHBOR_MIN_SPAN
    llm_merge_threshold: int = config.CHAPTER_LLM_MERGE_THRESHOLD
    merge_timeout: float = config.MERGE_TIMEOUT_SECONDS


# =============================================================================
# DETERMINISTIC MERGES
# =============================================================================

def _join_summaries(first: str, second: str) -> str:
    if not second or second in first:
        return first
    if not first:
        return second
    return f"{first}{SUMMARY_SEPARATOR}{second}"


def merge_same_title(fragments: List[ChapterFragment]) -> List[ChapterFragment]:
    """
    Merge neighbouring fragments that share a title.

    Fragments are sorted by start chunk. A fragment joins the previous one
    when the trimmed titles match and it starts no later than one chunk past
    the previous end. Different titles never merge.
    """
    merged: List[ChapterFragment] = []

    for fragment in sorted(fragments, key=lambda f: (f.chunk_start, f.chunk_end)):
        title = fragment.title.strip()
        previous = merged[-1] if merged else None

        if (previous is not None
                and previous.title == title
                and fragment.chunk_start <= previous.chunk_end + 1):
            previous.chunk_end = max(previous.chunk_end, fragment.chunk_end)
            previous.summary = _join_summaries(previous.summary, fragment.summary)
            continue

        merged.append(ChapterFragment(
            chunk_start=fragment.chunk_start,
            chunk_end=fragment.chunk_end,
            title=title,
            summary=fragment.summary,
        ))

    return merged


def consolidate_spans(
    fragments: List[ChapterFragment],
    min_span: int = config.CHAPTER_MIN_SPAN,
    neighbor_min_span: int = config.CHAPTER_NEIGHBOR_MIN_SPAN
) -> List[ChapterFragment]:
    """
    Fold short chapters into their successors.

    Walking in order, the running chapter absorbs the next one while the
    running span is under min_span or the next span is under
    neighbor_min_span. The merged chapter keeps the title of the larger side.
    """
    if not fragments:
        return []

    ordered = sorted(fragments, key=lambda f: f.chunk_start)
    result: List[ChapterFragment] = []
    current = ChapterFragment(**vars(ordered[0]))

    for nxt in ordered[1:]:
        if current.span < min_span or nxt.span < neighbor_min_span:
            title = current.title if current.span >= nxt.span else nxt.title
            current = ChapterFragment(
                chunk_start=min(current.chunk_start, nxt.chunk_start),
                chunk_end=max(current.chunk_end, nxt.chunk_end),
                title=title,
                summary=_join_summaries(current.summary, nxt.summary),
            )
        else:
            result.append(current)
            current = ChapterFragment(**vars(nxt))

    result.append(current)
    return result


# =============================================================================
# MODEL-ASSISTED MERGE
# =============================================================================

def parse_chapter_plan(text: str) -> Optional[List[ChapterFragment]]:
    """
    Parse the merger's JSON reply.

    Accepts {"chapters": [...]} or a bare list. Returns None if nothing
    usable was found or any entry is invalid.
    """
    extraction = extract_json(text)
    if not extraction.ok:
        return None

    value = extraction.value
    if isinstance(value, dict):
        value = value.get("chapters")
    if not isinstance(value, list) or not value:
        return None

    plan = []
    for entry in value:
        fragment = ChapterFragment.from_dict(entry, start_key="startChunk", end_key="endChunk")
        if fragment is None:
            return None
        plan.append(fragment)

    return sorted(plan, key=lambda f: f.chunk_start)


def merge_with_llm(
    router: LLMRouter,
    fragments: List[ChapterFragment],
    total_chunks: int,
    title: str,
    timeout: float = config.MERGE_TIMEOUT_SECONDS
) -> List[ChapterFragment]:
    """Ask the model for a canonical list; keep the input when that fails."""
    raw = json.dumps([f.to_dict() for f in fragments], ensure_ascii=False, indent=2)
    prompt = build_chapter_merger_prompt(raw, total_chunks, title)

    try:
        text = router.complete(
            prompt=prompt,
            task_type=TaskType.CHAPTER_MERGE,
            temperature=0.2,
            timeout=timeout
        )
    except GenerationError as e:
        log_warning(f"Chapter merge failed ({e.error_type}), keeping {len(fragments)} chapters")
        return fragments

    plan = parse_chapter_plan(text)
    if plan is None:
        log_warning(f"Chapter merge reply unusable, keeping {len(fragments)} chapters")
        return fragments

    log_info(f"Chapter merge: {len(fragments)} -> {len(plan)} chapters", prefix="📖")
    return plan


def build_chapter_plan(
    fragments: List[ChapterFragment],
    total_chunks: int,
    title: str,
    router: Optional[LLMRouter] = None,
    settings: Optional[ChapterPlanSettings] = None
) -> List[ChapterFragment]:
    """Run the full consolidation pipeline over raw fragments."""
    settings = settings or ChapterPlanSettings()
    if not fragments:
        return []

    plan = merge_same_title(fragments)

    if len(plan) > settings.merge_ceiling:
        before = len(plan)
        plan = consolidate_spans(plan, settings.min_span, settings.neighbor_min_span)
        log_info(f"Consolidated short chapters: {before} -> {len(plan)}", prefix="📖")

    if router is not None and len(plan) > settings.llm_merge_threshold:
        plan = merge_with_llm(router, plan, total_chunks, title, settings.merge_timeout)

    return plan


# =============================================================================
# MAPPING ONTO THE SOURCE
# =============================================================================

def map_to_chapters(
    plan: List[ChapterFragment],
    chunks: List[Chunk],
    text_length: int,
    min_chars: int = config.CHAPTER_MIN_CHARS
) -> List[Chapter]:
    """
    Map a chapter plan onto source text.

    Ranges are clamped to 1..len(chunks) and trimmed so no chunk belongs to
    two chapters. Each chapter owns the separator after its last chunk, the
    first chapter starts at 0, and a chapter holding the final chunk ends at
    text_length, so a gapless plan partitions the whole text. Chapters
    shorter than min_chars are dropped.
    """
    total = len(chunks)
    chapters: List[Chapter] = []
    last_end = 0

    for fragment in sorted(plan, key=lambda f: f.chunk_start):
        start = max(1, fragment.chunk_start, last_end + 1)
        end = min(total, fragment.chunk_end)
        if start > end:
            log_warning(f"Chapter '{fragment.title}' has no chunks left after clamping, skipped")
            continue

        selected = chunks[start - 1:end]
        content = "\n\n".join(chunk.content for chunk in selected)
        last_end = end

        if len(content) < min_chars:
            log_warning(f"Chapter '{fragment.title}' is only {len(content)} chars, skipped")
            continue

        char_start = 0 if start == 1 else selected[0].char_start
        char_end = text_length if end == total else chunks[end].char_start

        chapters.append(Chapter(
            index=len(chapters),
            title=fragment.title,
            content=content,
            char_start=char_start,
            char_end=char_end,
            chunk_start=start,
            chunk_end=end,
            summary=fragment.summary,
        ))

    if chapters:
        log_success(f"Mapped {len(chapters)} chapters onto {total} chunks")
    return chapters


def build_global_context(
    chapters: List[Chapter],
    title: str,
    limit: int = config.GLOBAL_CONTEXT_CHAPTERS
) -> str:
    """Short description of the document used to brief chapter commanders."""
    lines = [f"{title or 'Untitled'} has {len(chapters)} chapters."]
    for chapter in chapters[:limit]:
        line = f"{chapter.index + 1}. {chapter.title}"
        if chapter.summary:
            line += f": {chapter.summary}"
        lines.append(line)
    if len(chapters) > limit:
        lines.append(f"... and {len(chapters) - limit} more")
    return "\n".join(lines)
