"""
Deep Reader - Coverage Tracker
Records which chunks a read pass has consumed and decides whether the
pass is allowed to finish.
"""

import math
from dataclasses import dataclass, field
from typing import Iterable, List, Optional, Set, Tuple

import config


@dataclass
class GateDecision:
    """Outcome of a done() check."""
    accepted: bool
    message: str
    coverage: float


def merge_into_ranges(indexes: Iterable[int]) -> List[Tuple[int, int]]:
    """Collapse chunk indexes into sorted, inclusive (start, end) ranges."""
    ranges: List[Tuple[int, int]] = []
    for index in sorted(set(indexes)):
        if ranges and index == ranges[-1][1] + 1:
            ranges[-1] = (ranges[-1][0], index)
        else:
            ranges.append((index, index))
    return ranges


def format_range(start: int, end: int) -> str:
    return str(start) if start == end else f"{start}-{end}"


@dataclass
class CoverageTracker:
    """
    Set of chunk indexes that have been read or delegated.

    The set only grows. Indexes outside 1..total_chunks are ignored.
    """
    total_chunks: int
    covered: Set[int] = field(default_factory=set)

    def mark(self, indexes: Iterable[int]) -> List[int]:
        """Mark indexes as covered. Returns the valid ones."""
        valid = [i for i in indexes if 1 <= i <= self.total_chunks]
        self.covered.update(valid)
        return valid

    @property
    def covered_count(self) -> int:
        return len(self.covered)

    @property
    def ratio(self) -> float:
        if self.total_chunks == 0:
            return 0.0
        return self.covered_count / self.total_chunks

    def unread(self) -> List[int]:
        return [i for i in range(1, self.total_chunks + 1) if i not in self.covered]

    def unread_ranges(self) -> List[Tuple[int, int]]:
        return merge_into_ranges(self.unread())

    def required_count(self, min_coverage: float) -> int:
        """Number of chunks that must be covered for min_coverage."""
        # Round before ceil so 100 * 0.8 stays 80 instead of 80.00000000000001
        return math.ceil(round(self.total_chunks * min_coverage, 9))


def check_done(
    tracker: CoverageTracker,
    output: str,
    min_coverage: float = config.READ_MIN_COVERAGE,
    gate_min_chunks: int = config.COVERAGE_GATE_MIN_CHUNKS,
    min_output_chars: int = config.MIN_OUTPUT_CHARS,
    range_display_limit: int = config.UNREAD_RANGE_DISPLAY_LIMIT
) -> GateDecision:
    """
    Decide whether a read pass may finish.

    Documents with more than gate_min_chunks chunks must have at least
    ceil(total * min_coverage) chunks covered. After that, the output
    buffer must hold at least min_output_chars characters.
    """
    coverage = tracker.ratio
    percent = f"{coverage * 100:.1f}%"

    if tracker.total_chunks > gate_min_chunks:
        required = tracker.required_count(min_coverage)
        if tracker.covered_count < required:
            ranges = tracker.unread_ranges()
            shown = ", ".join(format_range(s, e) for s, e in ranges[:range_display_limit])
            remainder = len(ranges) - range_display_limit
            more = f" (and {remainder} more ranges)" if remainder > 0 else ""
            return GateDecision(
                accepted=False,
                coverage=coverage,
                message=(
                    f"Not finished: coverage is {percent} "
                    f"({tracker.covered_count}/{tracker.total_chunks} chunks), "
                    f"at least {required} chunks ({min_coverage * 100:.0f}%) are required.\n"
                    f"Unread chunks: {shown}{more}.\n"
                    "Use spawn_reader on the unread ranges, then call done() again."
                ),
            )

    if len(output.strip()) < min_output_chars:
        return GateDecision(
            accepted=False,
            coverage=coverage,
            message=(
                f"Not finished: the output has {len(output.strip())} characters, "
                f"at least {min_output_chars} are required. "
                "Write the final result with update_output first, then call done() again."
            ),
        )

    return GateDecision(
        accepted=True,
        coverage=coverage,
        message=f"Reading complete. Coverage {percent}, output {len(output)} characters.",
    )
