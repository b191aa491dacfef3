from __future__ import annotations

from io import StringIO
from typing import TYPE_CHECKING

from rich import box
from rich.console import Console
from rich.table import Table

if TYPE_CHECKING:
    from covship.core.pipeline import PipelineResult


def _human_size(n: int) -> str:
    size = float(n)
    for unit in ("B", "KiB", "MiB"):
        if size < 1024 or unit == "MiB":  # noqa: PLR2004
            return f"{int(size)} {unit}" if unit == "B" else f"{size:.1f} {unit}"
        size /= 1024
    return f"{n} B"


def render_summary(result: PipelineResult, *, color: bool = True) -> str:
    """Render the collected reports and, when present, the upload outcome."""
    table = Table(title="Coverage Reports", box=box.SIMPLE_HEAVY, header_style="bold", expand=True)
    table.add_column("Report", overflow="fold")
    table.add_column("Kind")
    table.add_column("Bytes", justify="right")

    for block in result.blocks:
        table.add_row(block.source, block.format_kind.value, str(len(block.data)))

    table.add_section()
    table.add_row(
        f"[bold]{len(result.blocks)} of {result.files_found} uploaded[/bold]",
        "",
        f"[bold]{_human_size(result.payload_size)}[/bold]",
    )

    buf = StringIO()
    console = Console(file=buf, force_terminal=color, no_color=not color, width=100)
    console.print(table)
    meta = result.metadata
    console.print(f"service: [cyan]{meta.service_name or '-'}[/cyan]  commit: {meta.commit or '-'}  branch: {meta.branch or '-'}")
    if result.outcome is None:
        console.print(f"[yellow]dry run[/yellow] {result.url}")
        console.print(f"payload: {result.payload_size} bytes ({result.compressed_size} gzipped)")
    else:
        console.print(f"[green]{result.outcome.report_url}[/green]")
        console.print(f"uploaded in {result.outcome.elapsed_seconds:.2f}s after {result.outcome.attempts} attempt(s)")
    return buf.getvalue().rstrip()


__all__ = ["render_summary"]
