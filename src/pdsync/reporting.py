from __future__ import annotations

from typing import Optional

from rich.console import Console
from rich.table import Table
from rich.text import Text

from .models import JobState
from .syncer import RunReport

STATE_STYLES = {
    JobState.DONE: "green",
    JobState.FAILED: "bold red",
    JobState.SKIPPED: "yellow",
}


def build_report_table(report: RunReport) -> Table:
    table = Table(title="pdsync run summary")
    table.add_column("Slack sync", style="cyan")
    table.add_column("State")
    table.add_column("Dry run")
    table.add_column("User groups")
    table.add_column("Topic / error", overflow="fold")

    for r in report.results:
        style = STATE_STYLES.get(r.state, "")
        detail = (r.error or "") if r.state == JobState.FAILED else (r.topic or "")
        table.add_row(
            Text(r.name),
            f"[{style}]{r.state}[/{style}]" if style else r.state,
            "yes" if r.dry_run else "no",
            str(r.groups_updated),
            Text(detail),
        )
    return table


def print_report(report: RunReport, console: Optional[Console] = None) -> None:
    console = console or Console()

    if not report.results:
        console.print("[bold yellow]No Slack syncs configured.[/bold yellow]")
        return

    console.print(build_report_table(report))
    if report.cancelled:
        console.print("[yellow]Run was cancelled before all Slack syncs completed.[/yellow]")
    if report.failed:
        console.print(f"[bold red]{len(report.failed)} of {len(report.results)} Slack sync(s) failed.[/bold red]")
