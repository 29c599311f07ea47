"""
Deep Reader - CLI Interface
Rich terminal rendering for read results, chapter plans and rewrite progress
"""

from typing import List, Optional

from rich.console import Console
from rich.panel import Panel
from rich.markdown import Markdown
from rich.table import Table

from reading.consolidator import Chapter
from reading.events import ProgressEvent, ProgressEventType
from reading.reader import ReadResult
from reading.rewriter import DeepReadOutput


class ReaderCLI:
    """
    Renders engine output to the terminal.

    Provides:
    - Read result panels
    - Chapter plan tables
    - Rewrite progress lines
    """

    def __init__(self, console: Optional[Console] = None):
        self.console = console or Console()

    def show_read_result(self, result: ReadResult, title: str = "") -> None:
        """Print the read output with its metadata."""
        meta = result.metadata
        subtitle = (
            f"{meta.get('total_chunks', 0)} chunks | "
            f"coverage {meta.get('coverage', 0) * 100:.1f}% | "
            f"{meta.get('tool_calls', 0)} tool calls"
        )
        self.console.print()
        self.console.print(Panel(
            Markdown(result.content or "_(no output)_"),
            title=f"[bold cyan]{title or 'Result'}[/bold cyan]",
            subtitle=f"[dim]{subtitle}[/dim]",
            border_style="cyan",
        ))

        if result.warning:
            self.console.print(f"[yellow]Warning:[/yellow] {result.warning}")
        if result.error:
            self.console.print(f"[bold red]Error:[/bold red] {result.error}")

    def show_chapters(self, chapters: List[Chapter], title: str = "") -> None:
        """Print a chapter plan as a table."""
        table = Table(title=f"{title or 'Document'}: {len(chapters)} chapters")
        table.add_column("#", justify="right", style="dim")
        table.add_column("Title", style="bold")
        table.add_column("Chunks", justify="right")
        table.add_column("Chars", justify="right")
        table.add_column("Summary", overflow="fold")

        for chapter in chapters:
            table.add_row(
                str(chapter.index + 1),
                chapter.title,
                f"{chapter.chunk_start}-{chapter.chunk_end}",
                str(chapter.char_count),
                chapter.summary,
            )

        self.console.print()
        self.console.print(table)

    def on_progress(self, event: ProgressEvent) -> None:
        """Progress callback for rewrite sessions."""
        if event.event_type == ProgressEventType.SEGMENT_START:
            self.console.print(
                f"[dim]  chapter {event.chapter_index + 1}: "
                f"segment {event.segment_id}/{event.total_segments}...[/dim]"
            )
        elif event.event_type == ProgressEventType.SEGMENT_DONE:
            self.console.print(
                f"  [green]✓[/green] {event.title} [dim]({event.char_count} chars)[/dim]"
            )
        elif event.event_type == ProgressEventType.CHAPTER_DONE:
            self.console.print(
                f"[bold green]Chapter {event.chapter_index + 1} done[/bold green] "
                f"[dim]({event.output_chars} chars)[/dim]"
            )

    def show_rewrite_summary(self, output: DeepReadOutput) -> None:
        """Print where the rewrite was written and which chapters failed."""
        session = output.session
        lines = [
            f"Chapters written: {len(output.chapters)}/{len(session.chapters)}",
            f"Output: {session.output_path}",
            f"Narration: {session.narration_output_path}",
        ]
        for index, error in sorted(output.failures.items()):
            lines.append(f"[red]Chapter {index + 1} failed:[/red] {error}")

        self.console.print()
        self.console.print(Panel(
            "\n".join(lines),
            title=f"[bold green]{session.title}[/bold green]",
            border_style="green",
        ))
