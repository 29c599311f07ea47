"""
Deep Reader - Progress Events
Typed events emitted directly by rewrite handlers.
"""

from datetime import datetime
from enum import Enum
from typing import Any, Callable, Dict, Optional
from dataclasses import dataclass, field


class ProgressEventType(Enum):
    """Types of progress events."""
    SEGMENT_START = "segment_start"
    SEGMENT_DONE = "segment_done"
    CHAPTER_DONE = "chapter_done"


@dataclass
class ProgressEvent:
    """A single progress event from a chapter rewrite."""
    event_type: ProgressEventType
    chapter_index: int
    segment_id: Optional[int] = None
    total_segments: Optional[int] = None
    char_count: Optional[int] = None
    title: Optional[str] = None
    content: Optional[str] = None
    output_chars: Optional[int] = None
    timestamp: datetime = field(default_factory=datetime.now)

    def to_dict(self) -> Dict[str, Any]:
        """Wire form: the event type plus only the fields it carries."""
        data: Dict[str, Any] = {"type": self.event_type.value}
        if self.event_type == ProgressEventType.CHAPTER_DONE:
            data["outputChars"] = self.output_chars
            return data

        data["segmentId"] = self.segment_id
        data["totalSegments"] = self.total_segments
        if self.event_type == ProgressEventType.SEGMENT_DONE:
            data["charCount"] = self.char_count
            data["content"] = self.content
            data["title"] = self.title
        return data


ProgressCallback = Callable[[ProgressEvent], None]


def emit(callback: Optional[ProgressCallback], event: ProgressEvent) -> None:
    """Deliver an event if anyone is listening."""
    if callback is not None:
        callback(event)
