"""Human-readable reports for test runs."""

from __future__ import annotations

from rich.console import Console
from rich.markup import escape
from rich.panel import Panel
from rich.table import Table
from rich.text import Text

from qarunner.models.types import BrowserRunLog, HttpStepLog, TestRunResult


STATUS_COLORS = {"passed": "green", "success": "green", "failed": "red", "error": "red bold", "skipped": "dim"}
STATUS_ICONS = {"passed": "●", "success": "●", "failed": "✗", "error": "!", "skipped": "○"}


def print_batch_report(summary: dict, results: dict[str, TestRunResult] | None = None,
                       console: Console | None = None):
    """Print a batch summary table, followed by step detail for tests that did not pass."""
    console = console or Console()
    results = results or {}

    header = Text()
    header.append("\n QA Test Run Report\n", style="bold")
    header.append(
        f" {summary['executed']}/{summary['total']} tests executed in {summary['durationMs'] / 1000:.1f}s"
        f" (concurrency {summary['concurrency']})\n",
        style="dim",
    )
    console.print(Panel(header, border_style="blue"))

    counts = Text("  ")
    counts.append(f"{summary['passed']} passed", style="green bold")
    counts.append("  ")
    counts.append(f"{summary['failed']} failed", style="red bold" if summary["failed"] else "dim")
    if summary.get("cancelled"):
        counts.append("  (cancelled)", style="yellow")
    console.print(counts)
    console.print()

    if not summary["details"]:
        console.print("  [dim]No test cases to run.[/dim]\n")
        return

    table = Table(show_header=True, header_style="bold", padding=(0, 1))
    table.add_column("", width=2, justify="center")
    table.add_column("Test", max_width=24)
    table.add_column("Title", min_width=30)
    table.add_column("Status", width=8)
    table.add_column("Time", width=9, justify="right")

    for d in summary["details"]:
        status = d["status"]
        color = STATUS_COLORS.get(status, "white")
        table.add_row(
            Text(STATUS_ICONS.get(status, "?"), style=color),
            Text(str(d.get("testId", ""))),
            Text((d.get("title") or "")[:60]),
            Text(status, style=color),
            d.get("executionTime", "—"),
        )
    console.print(table)
    console.print()

    for test_id, result in results.items():
        if not result.passed:
            print_result(result, title=test_id, console=console)


def print_result(result: TestRunResult, title: str = "", console: Console | None = None):
    console = console or Console()
    color = STATUS_COLORS.get(result.status.value, "white")
    console.print(f"  [bold]{escape(title)}[/bold] [{color}]{result.status.value.upper()}[/{color}] "
                  f"[dim]({result.duration_ms}ms)[/dim]")

    for entry in result.logs:
        if isinstance(entry, BrowserRunLog):
            for i, step in enumerate(entry.steps, 1):
                s_color = STATUS_COLORS.get(step.status.value, "white")
                target = step.selector or step.url or ""
                line = f"    {i}. [{s_color}]{step.status.value:<7}[/{s_color}] {step.action} {escape(target[:50])}"
                if step.error:
                    line += f" [dim]— {escape(step.error[:100])}[/dim]"
                console.print(line)
            errors = [m for m in entry.console_messages if m.level == "error"]
            for msg in errors[:3]:
                console.print(f"       [dim]\\[JS ERROR] {escape(msg.text[:100])}[/dim]")
            if entry.error and not entry.steps:
                console.print(f"    [red]{escape(entry.error[:160])}[/red]")
        elif isinstance(entry, HttpStepLog):
            mark = "[green]ok[/green]" if entry.ok else "[red]fail[/red]"
            line = f"    {entry.method} {escape(entry.url[:60])} → {entry.status} {mark} [dim]{entry.duration_ms}ms[/dim]"
            if entry.error:
                line += f" [dim]— {escape(entry.error[:100])}[/dim]"
            console.print(line)
        else:
            console.print(f"    [dim]{escape(entry.message[:160])}[/dim]")
    console.print()
