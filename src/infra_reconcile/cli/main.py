"""Main CLI entry point."""

import signal
import sys
from contextlib import contextmanager
from pathlib import Path
from typing import Optional

import click
from rich.panel import Panel
from rich.progress import BarColumn, Progress, SpinnerColumn, TaskProgressColumn, TextColumn

from infra_reconcile.cli.common import console, create_engine, fail, load_config, parse_vars
from infra_reconcile.cli.diff import plan_to_json, render_plan, render_result, result_to_json
from infra_reconcile.cli.graph import graph
from infra_reconcile.cli.output import output
from infra_reconcile.orchestrator.executor import ExecutionStatus
from infra_reconcile.orchestrator.orchestrator import ReconciliationEngine
from infra_reconcile.utils.errors import ReconcileError
from infra_reconcile.utils.logging import get_logger, setup_logging

logger = get_logger(__name__)

# Exit status of ``plan`` when changes are pending
EXIT_CHANGES_PENDING = 2


@click.group()
@click.version_option(package_name="infra-reconcile", prog_name="reconcile")
@click.option('--config', 'config_path', default='reconcile.yaml', show_default=True,
              help='Path to configuration file')
@click.option('--log-level', default='warning',
              type=click.Choice(['debug', 'info', 'warning', 'error']))
@click.option('--log-file/--no-log-file', default=True,
              help='Write JSON-lines logs next to the configuration file')
@click.pass_context
def cli(ctx, config_path, log_level, log_file):
    """Declarative infrastructure reconciliation."""
    ctx.ensure_object(dict)
    ctx.obj['config_path'] = config_path

    log_dir = Path(config_path).parent / '.reconcile' / 'logs' if log_file else None
    setup_logging(log_level, str(log_dir) if log_dir else None)


class RichProgressCallback:
    """Progress callback that displays updates using Rich."""

    def __init__(self, progress: Progress, task_id, total: int):
        self.progress = progress
        self.task_id = task_id
        self.completed = 0
        self.progress.update(task_id, total=total)

    def __call__(self, identifier: str, status: ExecutionStatus, message: Optional[str]) -> None:
        if status == ExecutionStatus.IN_PROGRESS:
            self.progress.update(self.task_id, description=f"[cyan]Applying:[/cyan] {identifier}")
            return

        self.completed += 1
        mark = {
            ExecutionStatus.SUCCESS: "[green]✓[/green]",
            ExecutionStatus.FAILED: "[red]✗[/red]",
        }.get(status, "[dim]○[/dim]")
        self.progress.update(self.task_id, completed=self.completed,
                             description=f"{mark} {identifier}")


@contextmanager
def cancel_on_interrupt(engine: ReconciliationEngine):
    """First Ctrl+C cancels the run gracefully, the second one aborts."""
    def handler(signum, frame):
        if engine.executor.cancelled:
            raise KeyboardInterrupt
        console.print("\n[yellow]Interrupted: waiting for in-flight operations "
                      "(press Ctrl+C again to abort)[/yellow]")
        engine.cancel()

    previous = signal.signal(signal.SIGINT, handler)
    try:
        yield
    finally:
        signal.signal(signal.SIGINT, previous)


def execute(engine: ReconciliationEngine, run, total: int, show_progress: bool):
    """Run ``run(progress_callback)`` with a progress bar and SIGINT handling."""
    with cancel_on_interrupt(engine):
        if not show_progress:
            return run(None)

        with Progress(
            SpinnerColumn(),
            TextColumn("[progress.description]{task.description}"),
            BarColumn(),
            TaskProgressColumn(),
            console=console,
            transient=True
        ) as progress:
            task_id = progress.add_task("[cyan]Starting...", total=None)
            return run(RichProgressCallback(progress, task_id, total))


@cli.command()
@click.option('--var', 'var_values', multiple=True, help='Template variable (key=value)')
@click.option('--destroy', is_flag=True, help='Plan the deletion of every tracked resource')
@click.option('--json', 'json_output', is_flag=True, help='Output in JSON format')
@click.pass_context
def plan(ctx, var_values, destroy, json_output):
    """Show pending changes. Exits 0 with no changes, 2 with changes pending."""
    cfg = load_config(ctx.obj['config_path'])
    engine = create_engine(cfg, parse_vars(var_values))

    try:
        with engine.state_store:
            if destroy:
                change_plan = engine.plan_destruction()
            else:
                desired = engine.load_graph(cfg.template_path())
                change_plan = engine.plan(desired)
    except ReconcileError as e:
        fail(e)

    if json_output:
        click.echo(plan_to_json(change_plan))
    else:
        render_plan(console, change_plan)

    sys.exit(EXIT_CHANGES_PENDING if change_plan.has_changes() else 0)


@cli.command()
@click.option('--var', 'var_values', multiple=True, help='Template variable (key=value)')
@click.option('--yes', '-y', is_flag=True, help='Skip confirmation prompt')
@click.option('--workers', type=click.IntRange(1, 64), help='Override engine.max_workers')
@click.option('--json', 'json_output', is_flag=True, help='Output in JSON format')
@click.pass_context
def apply(ctx, var_values, yes, workers, json_output):
    """Apply the template. Exits 0 on full success, 1 on any failure."""
    cfg = load_config(ctx.obj['config_path'])
    engine = create_engine(cfg, parse_vars(var_values), workers)

    try:
        with engine.state_store:
            desired = engine.load_graph(cfg.template_path())
            change_plan = engine.plan(desired)

            if not json_output:
                console.print(Panel.fit(
                    f"[bold]Applying {cfg.settings.project.name}[/bold]\n"
                    f"Template: {cfg.template_path()}\n"
                    f"Provider: {cfg.settings.provider.name} ({cfg.settings.provider.region})\n"
                    f"Workers: {engine.executor.max_workers}",
                    title="Apply Configuration",
                    border_style="cyan"
                ))
                render_plan(console, change_plan)

            if change_plan.has_changes() and not yes:
                click.confirm("\nApply these changes?", abort=True)

            result = execute(
                engine,
                lambda callback: engine.apply(desired, change_plan, callback),
                len(change_plan.ops),
                show_progress=not json_output and change_plan.has_changes()
            )
    except ReconcileError as e:
        fail(e)

    if json_output:
        click.echo(result_to_json(result))
    elif change_plan.has_changes():
        render_result(console, result, "Apply")

    if not result.is_success():
        sys.exit(1)


@cli.command()
@click.option('--yes', '-y', is_flag=True, help='Skip confirmation prompt')
@click.option('--workers', type=click.IntRange(1, 64), help='Override engine.max_workers')
@click.option('--json', 'json_output', is_flag=True, help='Output in JSON format')
@click.pass_context
def destroy(ctx, yes, workers, json_output):
    """Delete every tracked resource, dependents first."""
    cfg = load_config(ctx.obj['config_path'])
    engine = create_engine(cfg, max_workers=workers)

    try:
        with engine.state_store:
            change_plan = engine.plan_destruction()

            if not change_plan.has_changes():
                if json_output:
                    click.echo(result_to_json(engine.destroy(change_plan)))
                else:
                    console.print("[yellow]No resources to destroy[/yellow]")
                return

            if not json_output:
                render_plan(console, change_plan)

            if not yes:
                console.print(f"\n[bold red]WARNING:[/bold red] This will destroy "
                              f"{len(change_plan.ops)} resources")
                click.confirm("Are you sure you want to continue?", abort=True)

            result = execute(
                engine,
                lambda callback: engine.destroy(change_plan, callback),
                len(change_plan.ops),
                show_progress=not json_output
            )
    except ReconcileError as e:
        fail(e)

    if json_output:
        click.echo(result_to_json(result))
    else:
        render_result(console, result, "Destroy")

    if not result.is_success():
        sys.exit(1)


@cli.command()
@click.option('--var', 'var_values', multiple=True, help='Template variable (key=value)')
@click.pass_context
def validate(ctx, var_values):
    """Parse the template and check its references."""
    cfg = load_config(ctx.obj['config_path'])
    engine = create_engine(cfg, parse_vars(var_values))

    try:
        desired = engine.load_graph(cfg.template_path())
    except ReconcileError as e:
        fail(e)

    console.print(f"[green]✓[/green] {cfg.template_path()} is valid: "
                  f"{desired.size()} resources, {len(desired.edges)} references, "
                  f"{len(desired.outputs)} outputs")


cli.add_command(graph)
cli.add_command(output)


if __name__ == '__main__':
    cli()
