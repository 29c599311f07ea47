"""
Deep Reader - Prompts
Task presets and prompt templates for the reader, sub-readers,
chapter merger and segment writers.
"""

from dataclasses import dataclass, field, replace
from typing import List, Optional

import config


# =============================================================================
# TASK PRESETS
# =============================================================================

@dataclass
class ReadTask:
    """What a recursive read should produce."""
    role: str
    purpose: str
    output_format: str
    principles: List[str] = field(default_factory=list)
    min_coverage: float = config.READ_MIN_COVERAGE

    def with_purpose(self, purpose: str, output_format: str = None) -> "ReadTask":
        return replace(
            self,
            purpose=purpose,
            output_format=output_format if output_format is not None else self.output_format,
        )


OUTPUT_MODE_RULES = {
    "expand": "Length: go somewhat beyond the original, filling in scene and mood it only implies",
    "preserve": "Length: stay close to the original length",
    "compress": "Length: condense to roughly half the original, keeping every event",
}


@dataclass
class RewriteTask:
    """
    How each chapter should be rewritten.

    output_mode picks the writers' length rule, context_chapters how many
    recently finished chapters the commander sees, and
    max_output_per_chapter the commander's length target in characters.
    """
    role: str
    purpose: str
    chapter_prompt: str
    output_mode: str = "preserve"
    context_chapters: int = 2
    max_output_per_chapter: int = 5000

    def __post_init__(self):
        if self.output_mode not in OUTPUT_MODE_RULES:
            raise ValueError(
                f"Unknown output mode '{self.output_mode}' (expected one of: {', '.join(OUTPUT_MODE_RULES)})"
            )
        if self.context_chapters < 0:
            raise ValueError("context_chapters must not be negative")


TASK_STUDY_NOTES = ReadTask(
    role="You are a meticulous student who turns long material into study notes.",
    purpose="Read the whole document and write structured study notes covering every major idea.",
    output_format=(
        "Markdown notes: a one-paragraph overview, then one section per topic with "
        "key concepts, definitions and examples, then a list of open questions."
    ),
    principles=[
        "Cover the document in order; do not skip sections",
        "Prefer the author's own terms for key concepts",
        "Keep each bullet to one idea",
    ],
)

TASK_SUMMARY = ReadTask(
    role="You are an experienced editor who writes faithful summaries.",
    purpose="Read the whole document and write a complete, faithful summary.",
    output_format=(
        "Markdown: a short abstract, then a section-by-section summary in document "
        "order, then the main conclusions."
    ),
    principles=[
        "Never add facts that are not in the document",
        "Keep proportions: longer sections get longer summaries",
    ],
)

TASK_TEACHING_POINTS = ReadTask(
    role="You are a teacher preparing lessons from source material.",
    purpose="Extract the teachable knowledge points of the document.",
    output_format=(
        "Markdown: a list of knowledge points, each with an explanation, an example "
        "from the text and one check-your-understanding question."
    ),
    principles=[
        "Order points from foundational to advanced",
        "Quote the text when an example is needed",
    ],
)

TASK_PAPER_ANALYSIS = ReadTask(
    role="You are a researcher reviewing an academic paper.",
    purpose="Analyse the paper's problem, method, evidence and limitations.",
    output_format=(
        "Markdown with sections: Problem, Approach, Key Results, Evidence Quality, "
        "Limitations, Open Questions."
    ),
    principles=[
        "Separate what the authors claim from what the evidence shows",
        "Report numbers exactly as given",
    ],
)

TASK_STORYTELLING = ReadTask(
    role="You are a storyteller preparing to retell a novel aloud.",
    purpose="Sample the story to understand its characters, setting and arc for a spoken retelling.",
    output_format="A storyteller's outline: main characters, setting, and the arc in a few paragraphs.",
    principles=[
        "Keep the story's own order of events",
        "Note memorable lines of dialogue",
    ],
    min_coverage=0.1,  # Sampling is enough for an outline
)

READ_TASKS = {
    "study-notes": TASK_STUDY_NOTES,
    "summary": TASK_SUMMARY,
    "teaching": TASK_TEACHING_POINTS,
    "paper": TASK_PAPER_ANALYSIS,
    "storytelling": TASK_STORYTELLING,
}

# Chapter detection pass used by the rewrite sessions
TASK_CHAPTER_DETECTION = TASK_SUMMARY.with_purpose(
    "Read the whole document to understand its structure. Sub-readers report "
    "chapter boundaries automatically as they read.",
    "When reading is complete, write a short overview of the document with "
    "update_output and call done(). Chapter boundaries are collected from the sub-readers.",
)

REWRITE_STORYTELLING = RewriteTask(
    role="You are a veteran storyteller retelling written fiction for listeners.",
    purpose="Retell each chapter as spoken narration while keeping every event and line of dialogue.",
    chapter_prompt="Retell this chapter for the ear.",
)

REWRITE_TASKS = {
    "storytelling": REWRITE_STORYTELLING,
}


# =============================================================================
# READER PROMPTS
# =============================================================================

READER_TOOLS_SECTION = """## Tools
- get_document_stats(): size of the document in characters and chunks
- get_chunk_list(): previews of the first chunks
- search_document(keyword): chunk numbers that contain a keyword
- read_chunk(index): full text of one chunk
- spawn_reader(chunk_indexes, question): a sub-reader reads several chunks and answers your question
- update_output(content): replace your working output
- get_output(): show your working output
- done(): finish; refused while coverage or output is insufficient"""

READER_METHODOLOGY_SECTION = """## Method
1. Call get_document_stats() to see how large the document is.
2. Plan the reading: group consecutive chunks into batches of 5-10.
3. Send each batch to spawn_reader with a focused question. Read single chunks
   yourself only when you need the exact wording.
4. Keep notes of the answers, then write the final result with update_output.
5. Call done(). If it reports unread ranges, delegate those ranges and try again."""


def build_reader_prompt(task: ReadTask) -> str:
    """System prompt for the recursive reader."""
    principles = ""
    if task.principles:
        principles = "## Principles\n" + "\n".join(f"- {p}" for p in task.principles)

    return f"""{task.role}

## Your task
{task.purpose}

{READER_TOOLS_SECTION}

{READER_METHODOLOGY_SECTION}

## Output requirements
{task.output_format}

{principles}""".strip()


def build_init_message(title: str, total_chunks: int, has_history: bool = False) -> str:
    """Opening user message for a read pass."""
    lines = [f'Document: "{title or "Untitled"}" ({total_chunks} chunks).']
    if has_history:
        lines.append(
            "You have read this document for this task before. Build on what you know, "
            "but still cover the document before calling done()."
        )
    lines.append("Start with get_document_stats().")
    return "\n".join(lines)


# =============================================================================
# SUB-READER PROMPTS
# =============================================================================

SUB_READER_TEMPLATE = """You are a careful reader. Answer the question using only the text below.

## Question
{question}

## Text
{content}

## Answer format
Answer the question first. Then, if the text contains chapter or section
boundaries, list them in a fenced block tagged `chapters`:

```chapters
[{{"chunkStart": 3, "chunkEnd": 5, "title": "Chapter title", "summary": "One sentence"}}]
```

Use the chunk numbers shown in the [Chunk N] markers. A chapter that continues
past the text may end at the last chunk you were given."""


def format_chunk_content(index: int, content: str) -> str:
    return f"[Chunk {index}]\n{content}"


def build_sub_reader_prompt(question: str, content: str) -> str:
    return SUB_READER_TEMPLATE.format(question=question, content=content)


# =============================================================================
# CHAPTER MERGER PROMPT
# =============================================================================

CHAPTER_MERGER_TEMPLATE = """The document "{title}" has {total_chunks} chunks. Sub-readers reported
these chapter fragments, which may overlap, repeat or leave gaps:

{raw_chapters}

Produce the canonical chapter list:
- one entry per real chapter, in document order
- no duplicates and no overlaps
- together the chapters cover chunks 1 to {total_chunks} without gaps

Reply with JSON only:

```json
{{"chapters": [{{"title": "...", "startChunk": 1, "endChunk": 4, "summary": "..."}}]}}
```"""


def build_chapter_merger_prompt(raw_chapters: str, total_chunks: int, title: str) -> str:
    return CHAPTER_MERGER_TEMPLATE.format(
        raw_chapters=raw_chapters,
        total_chunks=total_chunks,
        title=title or "Untitled",
    )


# =============================================================================
# REWRITE PROMPTS
# =============================================================================

COMMANDER_TEMPLATE = """{role}

## Your task
{purpose}

You direct the rewrite of one chapter. The chapter is already split into
numbered segments. Writers rewrite one segment at a time; you decide the scene
title and the writing hints for each.

## Tools
- get_chapter_info(): segment count, sizes and previews
- read_segment(segment_id): full text of a segment
- spawn_writer(segment_id, scene_title, writing_hints): rewrite one segment
- done(): finish; refused while segments remain

## Method
1. Call get_chapter_info().
2. For each segment in order, read it if the preview is not enough, then
   call spawn_writer with a short scene title and concrete hints.
3. Call done() when every segment has been written.

Aim for about {max_output} characters of rewritten text for the whole chapter;
pass that budget on to the writers through the hints.

## Story so far
{global_context}{recent_chapters}"""


WRITER_TEMPLATE = """{role}

## Original text
{original}

## Rewrite
Scene title: {scene_title}
{writing_hints}

## Rules
- Stay faithful: keep every line of dialogue verbatim and present events in the original order
- Speak it: turn written prose into a natural spoken narration
- Add short transitions only where the scene changes
- No exaggerated metaphors, long commentary or sound effects
- Do not invent anything that is not in the original
- Do not skip anything
- Stop when the text is covered; do not pad for length
- {length_rule}

Write the whole rewrite in one go:"""

GAP_FILL_HINTS = "Rewrite this passage completely. Do not leave out any event or line of dialogue."


def build_commander_prompt(
    task: RewriteTask,
    global_context: str,
    recent_summaries: Optional[List[str]] = None,
    limit: int = 500
) -> str:
    """recent_summaries are the openings of the chapters finished just before this one, oldest first."""
    recent = ""
    if recent_summaries:
        recent = "\n\n## Recently rewritten\n" + "\n\n".join(recent_summaries)
    return COMMANDER_TEMPLATE.format(
        role=task.role,
        purpose=task.purpose,
        max_output=task.max_output_per_chapter,
        global_context=global_context[:limit] if global_context else "(no context)",
        recent_chapters=recent,
    )


def build_chapter_message(title: str, char_count: int, chapter_prompt: str) -> str:
    return f"Start chapter: {title} ({char_count} characters).\n{chapter_prompt}"


def build_writer_prompt(
    role: str,
    original: str,
    scene_title: str,
    writing_hints: str,
    output_mode: str = "preserve"
) -> str:
    return WRITER_TEMPLATE.format(
        role=role,
        original=original,
        scene_title=scene_title,
        writing_hints=writing_hints or "",
        length_rule=OUTPUT_MODE_RULES[output_mode],
    )


def gap_fill_title(segment_id: int, preview: str) -> str:
    """Scene title for a segment the commander never dispatched."""
    text = preview[:-3] if preview.endswith("...") else preview
    return f"Scene {segment_id}: {text[:15].strip()}"
