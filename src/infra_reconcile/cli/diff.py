"""Rendering of plans and apply results."""

import json
from typing import Any, Dict

from rich.console import Console
from rich.markup import escape
from rich.panel import Panel
from rich.table import Table
from rich.text import Text

from ..orchestrator.executor import ApplyResult, ExecutionStatus
from ..orchestrator.planner import ChangeAction, ChangeOp, DiffKind, Plan

ACTION_STYLES = {
    ChangeAction.CREATE: ("+", "green"),
    ChangeAction.UPDATE: ("~", "yellow"),
    ChangeAction.DELETE: ("-", "red"),
}

STATUS_STYLES = {
    ExecutionStatus.SUCCESS: ("✓", "green"),
    ExecutionStatus.FAILED: ("✗", "red"),
    ExecutionStatus.SKIPPED: ("○", "dim"),
    ExecutionStatus.CANCELLED: ("○", "yellow"),
    ExecutionStatus.PENDING: ("·", "dim"),
    ExecutionStatus.IN_PROGRESS: ("…", "cyan"),
}


def plan_to_json(plan: Plan) -> str:
    """Serialise a plan for ``--json`` output."""
    return json.dumps(plan.to_dict(), indent=2, default=str)


def result_to_json(result: ApplyResult) -> str:
    """Serialise an apply result for ``--json`` output."""
    output: Dict[str, Any] = {
        'status': result.status.value,
        'duration': round(result.duration, 3),
        'summary': result.get_summary(),
        'error': result.error.to_dict() if result.error else None,
        'operations': [
            {
                'identifier': op_result.identifier,
                'action': op_result.action.value,
                'status': op_result.status.value,
                'attempts': op_result.attempts,
                'duration': round(op_result.duration, 3),
                'physical_id': op_result.record.physical_id if op_result.record else None,
                'error': op_result.error.message if op_result.error else None,
            }
            for op_result in result.results.values()
        ],
        'outputs': result.outputs,
    }
    return json.dumps(output, indent=2, default=str)


def render_plan(console: Console, plan: Plan) -> None:
    """Print a plan as a summary line plus a table of changes."""
    summary = plan.get_summary()

    text = Text()
    text.append("Plan: ", style="bold")
    for index, (key, label, style) in enumerate((
        ('create', 'to add', 'green'),
        ('update', 'to change', 'yellow'),
        ('delete', 'to destroy', 'red'),
    )):
        if index:
            text.append(", ")
        text.append(f"{summary[key]} {label}", style=style if summary[key] else "dim")
    console.print(text)

    if not plan.has_changes():
        console.print("[dim]No changes. Infrastructure matches the template.[/dim]")
        return

    table = Table(show_header=True, header_style="bold")
    table.add_column("Resource", style="cyan", overflow="fold")
    table.add_column("Changes", overflow="fold")

    for op in plan.ops:
        symbol, style = ACTION_STYLES[op.action]
        table.add_row(f"[{style}]{symbol}[/{style}] {op.identifier}", _format_changes(op))

    console.print()
    console.print(table)


def render_result(console: Console, result: ApplyResult, title: str = "Apply") -> None:
    """Print per-op outcomes and a closing panel."""
    table = Table(show_header=True, header_style="bold")
    table.add_column("Resource", style="cyan", overflow="fold")
    table.add_column("Action")
    table.add_column("Status")
    table.add_column("Attempts", justify="right")
    table.add_column("Duration", justify="right")

    for op_result in result.results.values():
        symbol, style = STATUS_STYLES[op_result.status]
        table.add_row(
            op_result.identifier,
            op_result.action.value,
            f"[{style}]{symbol} {op_result.status.value}[/{style}]",
            str(op_result.attempts),
            f"{op_result.duration:.1f}s",
        )

    if result.results:
        console.print(table)

    summary = result.get_summary()
    body = (
        f"Succeeded: {summary['success']}\n"
        f"Failed: {summary['failed']}\n"
        f"Skipped: {summary['skipped']}\n"
        f"Cancelled: {summary['cancelled']}\n"
        f"Duration: {result.duration:.2f}s"
    )

    if result.is_success():
        console.print(Panel.fit(f"[green]✓ {title} complete[/green]\n\n{body}",
                                title=f"{title} Complete", border_style="green"))
    elif result.status == ExecutionStatus.CANCELLED:
        console.print(Panel.fit(f"[yellow]⚠ {title} cancelled[/yellow]\n\n{body}",
                                title=f"{title} Cancelled", border_style="yellow"))
    else:
        console.print(Panel.fit(f"[red]✗ {title} failed[/red]\n\n{body}",
                                title=f"{title} Failed", border_style="red"))
        if result.error:
            console.print(f"\n[red]{escape(result.error.to_user_message())}[/red]")

    if not result.is_success() and result.applied:
        console.print(f"\n[dim]{len(result.applied)} resources applied before stopping are kept in state; "
                      f"run plan to see the remaining changes.[/dim]")

    if result.outputs:
        console.print("\n[bold]Outputs:[/bold]")
        for name, value in result.outputs.items():
            console.print(f"  {name} = {escape(str(value))}")


def _format_changes(op: ChangeOp) -> str:
    if op.action == ChangeAction.DELETE:
        physical_id = op.prior.physical_id if op.prior else None
        return f"[dim]{physical_id or 'no physical id'}[/dim]"

    lines = []
    for diff in op.diffs:
        if diff.kind == DiffKind.ADDED:
            lines.append(f"[green]+[/green] {diff.path} = {_short(diff.after)}")
        elif diff.kind == DiffKind.REMOVED:
            lines.append(f"[red]-[/red] {diff.path}")
        else:
            lines.append(f"[yellow]~[/yellow] {diff.path}: {_short(diff.before)} → {_short(diff.after)}")

    if not lines and op.reason:
        lines.append(f"[dim]{op.reason}[/dim]")
    return "\n".join(lines)


def _short(value: Any, limit: int = 60) -> str:
    text = json.dumps(value, default=str) if not isinstance(value, str) else value
    if len(text) > limit:
        text = text[:limit - 3] + "..."
    return escape(text)
