"""Output command for showing recorded template outputs."""

import json
import sys

import click
from rich.markup import escape
from rich.table import Table

from ..utils.errors import ReconcileError
from .common import console, create_engine, fail, load_config


@click.command()
@click.argument('name', required=False)
@click.option('--format', 'output_format', type=click.Choice(['table', 'json', 'env']),
              default='table', help='Output format')
@click.pass_context
def output(ctx, name, output_format):
    """Show outputs recorded by the last successful apply."""
    cfg = load_config(ctx.obj['config_path'])
    engine = create_engine(cfg)

    try:
        engine.state_store.load()
        outputs = engine.outputs()
    except ReconcileError as e:
        fail(e)

    if name:
        if name not in outputs:
            console.print(f"[red]Output '{escape(name)}' not found[/red]")
            sys.exit(1)
        value = outputs[name]
        click.echo(value if isinstance(value, str) else json.dumps(value))
        return

    if not outputs:
        console.print("[dim]No outputs recorded[/dim]")
        return

    if output_format == 'table':
        _output_table(outputs)
    elif output_format == 'json':
        click.echo(json.dumps(outputs, indent=2, default=str))
    else:
        _output_env(outputs)


def _output_table(outputs: dict):
    table = Table(show_header=True, header_style="bold")
    table.add_column("Output", style="cyan")
    table.add_column("Value", style="white", overflow="fold")

    for key, value in outputs.items():
        table.add_row(key, escape(value if isinstance(value, str) else json.dumps(value)))

    console.print(table)


def _output_env(outputs: dict):
    """KEY=value lines suitable for sourcing in a shell."""
    for key, value in outputs.items():
        rendered = value if isinstance(value, str) else json.dumps(value)
        click.echo(f"{key.upper()}={rendered}")
