"""
Deep Reader - Reading Engine
Recursive, coverage-gated reduction of long documents.

Architecture:
    chunker.py      - Paragraph-aware chunks and finer chapter segments
    coverage.py     - Tracks which chunks were read and gates completion
    tools/          - Tool registry and the bounded tool-call loop
    extraction.py   - Best-effort structured block extraction from model output
    delegate.py     - Sub-readers that answer questions over chunk bundles
    consolidator.py - Merges chapter fragments into an ordered chapter plan
    reader.py       - The recursive read orchestrator
    rewriter.py     - Segment dispatch, gap-fill and reassembly per chapter
    session.py      - Per-pass state values and rewrite sessions
    checkpoint.py   - Optional persisted history per document identity
    events.py       - Typed progress events
    prompts.py      - Task presets and prompt templates
"""
