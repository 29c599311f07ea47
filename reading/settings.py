"""
Deep Reader - Reader Settings
Per-run overrides for every threshold the engine uses.
Defaults come from config.py.
"""

from dataclasses import dataclass, field, replace

import config


@dataclass
class ReaderSettings:
    """Named, overridable thresholds for reading and rewriting."""
    # Chunking
    chunk_size: int = config.CHUNK_SIZE
    sentence_split_min_ratio: float = config.SENTENCE_SPLIT_MIN_RATIO

    # Coverage gate
    gate_min_chunks: int = config.COVERAGE_GATE_MIN_CHUNKS
    min_output_chars: int = config.MIN_OUTPUT_CHARS
    unread_range_display_limit: int = config.UNREAD_RANGE_DISPLAY_LIMIT
    chunk_preview_count: int = config.CHUNK_PREVIEW_COUNT
    chunk_preview_chars: int = config.CHUNK_PREVIEW_CHARS

    # Loops
    reader_max_rounds: int = config.READER_MAX_ROUNDS
    reader_max_tokens: int = config.READER_MAX_TOKENS
    rewrite_max_rounds: int = config.REWRITE_MAX_ROUNDS

    # Sub-readers
    delegate_timeout: float = config.DELEGATE_TIMEOUT_SECONDS
    delegate_max_tokens: int = config.DELEGATE_MAX_TOKENS
    malformed_block_policy: str = config.MALFORMED_BLOCK_POLICY

    # Chapters
    chapter_merge_ceiling: int = config.CHAPTER_MERGE_CEILING
    chapter_min_span: int = config.CHAPTER_MIN_SPAN
    chapter_neighbor_min_span: int = config.CHAPTER_NEIGHBOR_MIN_SPAN
    chapter_llm_merge_threshold: int = config.CHAPTER_LLM_MERGE_THRESHOLD
    chapter_min_chars: int = config.CHAPTER_MIN_CHARS
    chapter_summary_chars: int = config.CHAPTER_SUMMARY_CHARS
    global_context_chapters: int = config.GLOBAL_CONTEXT_CHAPTERS
    merge_timeout: float = config.MERGE_TIMEOUT_SECONDS

    # Segments and writers
    segment_size: int = config.SEGMENT_SIZE
    segment_boundary_ratio: float = config.SEGMENT_BOUNDARY_RATIO
    segment_preview_chars: int = config.SEGMENT_PREVIEW_CHARS
    leaf_timeout: float = config.LEAF_TIMEOUT_SECONDS
    writer_temperature: float = config.WRITER_TEMPERATURE
    writer_frequency_penalty: float = config.WRITER_FREQUENCY_PENALTY
    writer_presence_penalty: float = config.WRITER_PRESENCE_PENALTY
    writer_max_tokens: int = config.WRITER_MAX_TOKENS
    inter_call_delay: float = config.INTER_CALL_DELAY_SECONDS

    # Identity and persistence
    document_id_prefix_chars: int = config.DOCUMENT_ID_PREFIX_CHARS
    checkpoint_enabled: bool = config.CHECKPOINT_ENABLED
    output_dir: str = field(default_factory=lambda: str(config.OUTPUT_DIR))

    def __post_init__(self):
        if self.malformed_block_policy not in ("skip", "retry"):
            raise ValueError(
                f"malformed_block_policy must be 'skip' or 'retry', got {self.malformed_block_policy!r}"
            )
        if self.chunk_size <= 0 or self.segment_size <= 0:
            raise ValueError("chunk_size and segment_size must be positive")

    def with_overrides(self, **overrides) -> "ReaderSettings":
        """Copy with some fields replaced."""
        return replace(self, **overrides)
