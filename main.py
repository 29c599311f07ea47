#!/usr/bin/env python3
"""
Deep Reader - Main Entry Point
Coverage-gated reading and chapter rewriting of long documents

Usage:
    python main.py read book.txt                      # Summary (default task)
    python main.py read book.txt --task study-notes   # Other read tasks
    python main.py chapters book.txt                  # Show the chapter plan
    python main.py rewrite book.txt                   # Rewrite chapter by chapter
    python main.py rewrite book.txt --mode compress   # Condensed retelling
"""

import sys
import argparse
from dataclasses import replace
from pathlib import Path

# Ensure we can import from project root
sys.path.insert(0, str(Path(__file__).parent))

import config
from core.errors import DeepReaderError
from core.logger import (
    setup_logging,
    log_startup_banner,
    log_section,
    log_subsection,
    log_success,
    log_warning,
    log_error,
)
from interface.cli import ReaderCLI
from llm.router import init_llm_router, get_llm_router
from reading.prompts import OUTPUT_MODE_RULES, READ_TASKS, REWRITE_TASKS
from reading.reader import RecursiveReader, default_checkpoint_store
from reading.rewriter import DeepReader
from reading.settings import ReaderSettings


def initialize_system(quiet: bool = False) -> None:
    """Set up logging and the LLM router."""
    config.LOGS_DIR.mkdir(parents=True, exist_ok=True)
    config.DATA_DIR.mkdir(parents=True, exist_ok=True)
    setup_logging(
        log_file_path=config.DIAGNOSTIC_LOG_PATH,
        level=config.LOG_LEVEL,
        log_to_file=config.LOG_TO_FILE,
        log_to_console=config.LOG_TO_CONSOLE and not quiet
    )

    log_startup_banner(config.VERSION, config.PROJECT_NAME)

    init_llm_router(
        primary_provider=config.LLM_PRIMARY_PROVIDER,
        fallback_enabled=config.LLM_FALLBACK_ENABLED
    )
    check_llm_providers()


def check_llm_providers() -> None:
    """Log provider availability."""
    log_section("LLM Providers", "🤖")
    status = get_llm_router().check_providers()
    for provider, (available, message) in status.items():
        if available:
            log_subsection(f"{provider.value}: {message}", "✅")
        else:
            log_subsection(f"{provider.value}: {message}", "⚠️")


def read_document(path: str) -> str:
    text = Path(path).read_text(encoding="utf-8")
    if not text.strip():
        log_warning(f"{path} is empty")
    return text


def build_settings(args: argparse.Namespace) -> ReaderSettings:
    overrides = {}
    if getattr(args, "chunk_size", None):
        overrides["chunk_size"] = args.chunk_size
    if getattr(args, "max_rounds", None):
        overrides["reader_max_rounds"] = args.max_rounds
    if getattr(args, "output_dir", None):
        overrides["output_dir"] = args.output_dir
    if getattr(args, "no_checkpoint", False):
        overrides["checkpoint_enabled"] = False
    return ReaderSettings().with_overrides(**overrides)


def cmd_read(args: argparse.Namespace, cli: ReaderCLI) -> int:
    settings = build_settings(args)
    task = READ_TASKS[args.task]
    if args.min_coverage is not None:
        task = replace(task, min_coverage=args.min_coverage)

    title = args.title or Path(args.file).stem
    reader = RecursiveReader(
        task,
        settings=settings,
        router=get_llm_router(),
        checkpoint_store=default_checkpoint_store(settings)
    )
    result = reader.read(read_document(args.file), title)
    cli.show_read_result(result, title)

    if args.out:
        Path(args.out).write_text(result.content, encoding="utf-8")
        log_success(f"Output written to {args.out}")
    return 1 if result.error else 0


def cmd_chapters(args: argparse.Namespace, cli: ReaderCLI) -> int:
    settings = build_settings(args)
    title = args.title or Path(args.file).stem
    deep_reader = DeepReader(settings=settings, router=get_llm_router())
    chapters = deep_reader.detect_chapters(read_document(args.file), title)
    cli.show_chapters(chapters, title)
    return 0 if chapters else 1


def cmd_rewrite(args: argparse.Namespace, cli: ReaderCLI) -> int:
    settings = build_settings(args)
    title = args.title or Path(args.file).stem
    task = REWRITE_TASKS[args.style]
    if args.mode:
        task = replace(task, output_mode=args.mode)
    deep_reader = DeepReader(
        task=task,
        settings=settings,
        router=get_llm_router()
    )
    output = deep_reader.process_document(read_document(args.file), title, on_progress=cli.on_progress)
    cli.show_rewrite_summary(output)
    return 1 if output.failures else 0


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        description="Deep Reader - Coverage-gated reading of long documents",
        formatter_class=argparse.RawDescriptionHelpFormatter
    )
    parser.add_argument(
        "--quiet", "-q",
        action="store_true",
        help="Only print results (logs still go to the diagnostic log)"
    )
    subparsers = parser.add_subparsers(dest="command", required=True)

    def add_common(sub: argparse.ArgumentParser) -> None:
        sub.add_argument("file", help="UTF-8 text file to read")
        sub.add_argument("--title", help="Document title (defaults to the file name)")
        sub.add_argument("--chunk-size", type=int, help="Chunk size in characters")
        sub.add_argument("--max-rounds", type=int, help="Reader round ceiling")

    read_parser = subparsers.add_parser("read", help="Read a document with a task")
    add_common(read_parser)
    read_parser.add_argument("--task", choices=sorted(READ_TASKS), default="summary")
    read_parser.add_argument("--min-coverage", type=float, help="Override the task's coverage fraction")
    read_parser.add_argument("--out", help="Write the result to this file")
    read_parser.add_argument("--no-checkpoint", action="store_true", help="Ignore reading history")

    chapters_parser = subparsers.add_parser("chapters", help="Detect and show the chapter plan")
    add_common(chapters_parser)

    rewrite_parser = subparsers.add_parser("rewrite", help="Rewrite a document chapter by chapter")
    add_common(rewrite_parser)
    rewrite_parser.add_argument("--style", choices=sorted(REWRITE_TASKS), default="storytelling")
    rewrite_parser.add_argument("--mode", choices=sorted(OUTPUT_MODE_RULES), help="Length rule for the writers")
    rewrite_parser.add_argument("--output-dir", help="Directory for the rewrite files")

    return parser


COMMANDS = {
    "read": cmd_read,
    "chapters": cmd_chapters,
    "rewrite": cmd_rewrite,
}


def main(argv=None) -> int:
    """
    Main entry point.

    Returns:
        Exit code (0 for success, non-zero for error)
    """
    args = build_parser().parse_args(argv)

    try:
        initialize_system(quiet=args.quiet)
        return COMMANDS[args.command](args, ReaderCLI())

    except KeyboardInterrupt:
        log_warning("Interrupted")
        return 130

    except DeepReaderError as e:
        log_error(f"{type(e).__name__}: {e}")
        return 2

    except OSError as e:
        log_error(f"File error: {e}")
        return 2


if __name__ == "__main__":
    sys.exit(main())
