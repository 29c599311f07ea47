"""
Deep Reader - Structured Extraction
Best-effort recovery of JSON embedded in free-form model output.

Nothing here raises: a missing or malformed block is reported through
ExtractionResult so the caller can decide whether to skip or retry.
"""

import json
import re
from dataclasses import dataclass
from typing import Any, List, Optional

from core.logger import log_warning


@dataclass
class ExtractionResult:
    """Outcome of a structured extraction attempt."""
    found: bool                  # A candidate block was present in the text
    value: Any = None            # Parsed JSON when successful
    error: Optional[str] = None  # Parse failure description

    @property
    def ok(self) -> bool:
        return self.found and self.error is None


def find_fenced_blocks(text: str, tag: str) -> List[str]:
    """Bodies of all ```tag fenced blocks in text, in order."""
    pattern = re.compile(r"```" + re.escape(tag) + r"[ \t]*\n?(.*?)```", re.DOTALL)
    return [match.group(1).strip() for match in pattern.finditer(text or "")]


def _first_json_value(text: str) -> Optional[Any]:
    """Decode the first JSON object or array that starts anywhere in text."""
    decoder = json.JSONDecoder()
    for match in re.finditer(r"[\[{]", text):
        try:
            value, _ = decoder.raw_decode(text, match.start())
            return value
        except json.JSONDecodeError:
            continue
    return None


def extract_tagged_json(text: str, tag: str) -> ExtractionResult:
    """
    Parse the JSON bodies of every ```tag block and concatenate list results.

    Blocks that parse to a single object are wrapped in a list. Any block that
    fails to parse marks the whole result as malformed, but the blocks that
    did parse are still returned in value.
    """
    blocks = find_fenced_blocks(text, tag)
    if not blocks:
        return ExtractionResult(found=False)

    items: List[Any] = []
    errors = []
    for body in blocks:
        try:
            parsed = json.loads(body)
        except json.JSONDecodeError as e:
            errors.append(str(e))
            continue
        if isinstance(parsed, list):
            items.extend(parsed)
        else:
            items.append(parsed)

    if errors:
        log_warning(f"Malformed ```{tag} block skipped: {errors[0]}")
        return ExtractionResult(found=True, value=items, error="; ".join(errors))
    return ExtractionResult(found=True, value=items)


def extract_json(text: str) -> ExtractionResult:
    """
    Find a JSON value in model output.

    Tries a ```json fenced block first, then any fenced block, then the first
    bare object or array in the text.
    """
    for tag in ("json", ""):
        for body in find_fenced_blocks(text, tag):
            try:
                return ExtractionResult(found=True, value=json.loads(body))
            except json.JSONDecodeError:
                continue

    value = _first_json_value(text or "")
    if value is None:
        return ExtractionResult(found=False, error="No JSON found in response")
    return ExtractionResult(found=True, value=value)
