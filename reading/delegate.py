"""
Deep Reader - Sub-reader Delegation
Runs one leaf reading call over a batch of chunks for the recursive reader.

A sub-reader sees only the chunks it was given and the orchestrator's
question. It answers in prose and may report chapter boundaries in a
```chapters fenced block, which are parsed into ChapterFragments.

Usage:
    from reading.delegate import SubTaskDelegate

    delegate = SubTaskDelegate(router)
    answer = delegate.run(chunks, [3, 4, 5], "What happens in these chapters?")
"""

from dataclasses import dataclass, field
from typing import List, Optional, Sequence

import config
from core.errors import GenerationError
from core.logger import log_info, log_warning
from llm.router import LLMRouter, TaskType
from reading.chunker import Chunk
from reading.consolidator import ChapterFragment
from reading.extraction import extract_tagged_json
from reading.prompts import build_sub_reader_prompt, format_chunk_content

CHUNK_SEPARATOR = "\n\n---\n\n"
CHAPTERS_TAG = "chapters"


@dataclass
class DelegateAnswer:
    """What a sub-reader returned."""
    text: str
    fragments: List[ChapterFragment] = field(default_factory=list)
    error_type: Optional[str] = None
    malformed: bool = False

    @property
    def failed(self) -> bool:
        return self.error_type is not None


def parse_fragments(text: str):
    """
    Parse ```chapters blocks into fragments.

    Returns:
        (fragments, malformed) where malformed is True if any block failed
        to parse or held an invalid entry
    """
    extraction = extract_tagged_json(text, CHAPTERS_TAG)
    if not extraction.found:
        return [], False

    fragments = []
    invalid = 0
    for entry in extraction.value or []:
        fragment = ChapterFragment.from_dict(entry)
        if fragment is None:
            invalid += 1
            continue
        fragments.append(fragment)

    if invalid:
        log_warning(f"Ignored {invalid} invalid chapter entr{'y' if invalid == 1 else 'ies'}")
    return fragments, extraction.error is not None or invalid > 0


class SubTaskDelegate:
    """Issues sub-reader calls on behalf of the orchestrator."""

    def __init__(
        self,
        router: LLMRouter,
        timeout: float = config.DELEGATE_TIMEOUT_SECONDS,
        max_tokens: int = config.DELEGATE_MAX_TOKENS,
        malformed_policy: str = config.MALFORMED_BLOCK_POLICY
    ):
        self.router = router
        self.timeout = timeout
        self.max_tokens = max_tokens
        self.malformed_policy = malformed_policy

    def _call(self, prompt: str) -> DelegateAnswer:
        try:
            text = self.router.complete(
                prompt=prompt,
                task_type=TaskType.DELEGATION,
                max_tokens=self.max_tokens,
                temperature=0.3,
                timeout=self.timeout
            )
        except GenerationError as e:
            log_warning(f"Sub-reader failed ({e.error_type}): {e}")
            return DelegateAnswer(
                text=f"[Reader error ({e.error_type}): {e}]",
                error_type=e.error_type,
            )

        fragments, malformed = parse_fragments(text)
        return DelegateAnswer(text=text, fragments=fragments, malformed=malformed)

    def run(self, chunks: Sequence[Chunk], indexes: Sequence[int], question: str) -> DelegateAnswer:
        """
        Read the chunks at the given 1-based indexes and answer the question.

        Unknown indexes are skipped. Provider failures come back as error
        text instead of being raised.
        """
        selected = [chunks[i - 1] for i in indexes if 1 <= i <= len(chunks)]
        if not selected:
            return DelegateAnswer(text="No valid chunks to read.")

        content = CHUNK_SEPARATOR.join(
            format_chunk_content(chunk.index, chunk.content) for chunk in selected
        )
        prompt = build_sub_reader_prompt(question, content)

        log_info(
            f"Sub-reader: {len(selected)} chunk(s), {len(content)} chars",
            prefix="📚"
        )
        answer = self._call(prompt)

        if answer.malformed and self.malformed_policy == "retry":
            log_info("Retrying sub-reader after malformed chapter block", prefix="📚")
            retry = self._call(prompt)
            if not retry.failed:
                answer = retry

        if answer.fragments:
            log_info(f"Sub-reader reported {len(answer.fragments)} chapter(s)", prefix="📚")
        return answer
