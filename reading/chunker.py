"""
Deep Reader - Chunker
Splits raw text into bounded, paragraph-respecting chunks for the reader,
and chapter content into finer segments for the rewrite engine.

Both splitters are pure: the same input and size always give the same
boundaries, and every piece records its offsets into the text it was cut from.
"""

import re
from dataclasses import dataclass
from typing import List, Tuple

import config

PARAGRAPH_BREAK = re.compile(r'\n\s*\n')
SENTENCE_ENDINGS = "。！？.!?\"”"


@dataclass(frozen=True)
class Chunk:
    """A bounded slice of the whole document (1-indexed)."""
    index: int
    content: str
    char_start: int       # Offset of the first character in the source text
    char_end: int         # Offset one past the last character

    @property
    def length(self) -> int:
        return len(self.content)


@dataclass(frozen=True)
class Segment:
    """A bounded slice of one chapter (1-indexed within the chapter)."""
    id: int
    char_start: int       # Offsets into the chapter content
    char_end: int
    content: str
    preview: str

    def to_info_dict(self) -> dict:
        """Summary used by the chapter_info tool."""
        return {
            "id": self.id,
            "chars": len(self.content),
            "preview": self.preview,
        }


def _paragraph_spans(text: str) -> List[Tuple[int, int]]:
    """Return (start, end) offsets of non-empty, trimmed paragraphs."""
    spans = []
    position = 0
    breaks = [(m.start(), m.end()) for m in PARAGRAPH_BREAK.finditer(text)]
    breaks.append((len(text), len(text)))

    for break_start, break_end in breaks:
        raw = text[position:break_start]
        stripped = raw.strip()
        if stripped:
            start = position + (len(raw) - len(raw.lstrip()))
            spans.append((start, start + len(stripped)))
        position = break_end

    return spans


def _last_sentence_end(window: str) -> int:
    """Index of the last sentence-ending character in window, or -1."""
    return max(window.rfind(mark) for mark in SENTENCE_ENDINGS)


def split_long_text(
    text: str,
    max_size: int,
    min_ratio: float = config.SENTENCE_SPLIT_MIN_RATIO
) -> List[Tuple[int, str]]:
    """
    Split an oversized paragraph into pieces no longer than max_size.

    Each cut lands just after the last sentence-ending mark in the window
    when that mark sits at or beyond min_ratio of the window; otherwise the
    cut is a hard one at max_size.

    Returns:
        List of (offset within text, trimmed piece)
    """
    pieces = []
    position = 0

    while position < len(text):
        window = text[position:position + max_size]
        if position + max_size >= len(text):
            cut = len(window)
        else:
            mark = _last_sentence_end(window)
            cut = mark + 1 if mark >= max_size * min_ratio else max_size

        raw = window[:cut]
        stripped = raw.strip()
        if stripped:
            lead = len(raw) - len(raw.lstrip())
            pieces.append((position + lead, stripped))
        position += cut

    return pieces


def chunk_document(
    text: str,
    max_size: int = config.CHUNK_SIZE,
    min_ratio: float = config.SENTENCE_SPLIT_MIN_RATIO
) -> List[Chunk]:
    """
    Split a document into chunks of at most max_size characters.

    Paragraphs (separated by blank lines) are packed greedily: a paragraph
    joins the running chunk while the joined length, including the blank-line
    separator, stays within max_size. A paragraph that is itself too long is
    split by split_long_text and each piece becomes its own chunk.

    Args:
        text: Full document text
        max_size: Maximum chunk length in characters
        min_ratio: Share of the window a sentence end must reach to be used as a cut

    Returns:
        Ordered chunks, indexed from 1
    """
    if max_size <= 0:
        raise ValueError("max_size must be positive")

    chunks: List[Chunk] = []
    buffer: List[Tuple[int, int]] = []
    buffer_len = 0

    def flush():
        nonlocal buffer, buffer_len
        if buffer:
            content = "\n\n".join(text[start:end] for start, end in buffer)
            chunks.append(Chunk(
                index=len(chunks) + 1,
                content=content,
                char_start=buffer[0][0],
                char_end=buffer[-1][1],
            ))
        buffer = []
        buffer_len = 0

    for start, end in _paragraph_spans(text):
        length = end - start

        if buffer and buffer_len + length + 2 <= max_size:
            buffer.append((start, end))
            buffer_len += length + 2
            continue

        flush()

        if length > max_size:
            for offset, piece in split_long_text(text[start:end], max_size, min_ratio):
                chunks.append(Chunk(
                    index=len(chunks) + 1,
                    content=piece,
                    char_start=start + offset,
                    char_end=start + offset + len(piece),
                ))
        else:
            buffer.append((start, end))
            buffer_len = length

    flush()
    return chunks


def make_preview(content: str, limit: int) -> str:
    """First limit characters of content, with an ellipsis when truncated."""
    flat = content.replace("\n", " ")
    if len(flat) <= limit:
        return flat
    return flat[:limit] + "..."


def split_into_segments(
    content: str,
    max_size: int = config.SEGMENT_SIZE,
    boundary_ratio: float = config.SEGMENT_BOUNDARY_RATIO,
    preview_chars: int = config.SEGMENT_PREVIEW_CHARS
) -> List[Segment]:
    """
    Split chapter content into segments of at most max_size characters.

    A window of max_size characters is cut at its last paragraph break when
    that break lies beyond boundary_ratio of the window, else just after its
    last sentence end under the same condition, else hard at max_size.
    Whitespace-only slices are skipped and ids stay contiguous from 1.
    """
    if max_size <= 0:
        raise ValueError("max_size must be positive")

    segments: List[Segment] = []
    threshold = int(max_size * boundary_ratio)
    position = 0
    total = len(content)

    while position < total:
        end = min(position + max_size, total)

        if end < total:
            window = content[position:end]
            paragraph = window.rfind("\n\n")
            if paragraph > threshold:
                end = position + paragraph
            else:
                sentence = _last_sentence_end(window)
                if sentence > threshold:
                    end = position + sentence + 1

        raw = content[position:end]
        stripped = raw.strip()
        if stripped:
            start = position + (len(raw) - len(raw.lstrip()))
            segments.append(Segment(
                id=len(segments) + 1,
                char_start=start,
                char_end=start + len(stripped),
                content=stripped,
                preview=make_preview(stripped, preview_chars),
            ))
        position = end

    return segments
