"""Helpers shared by CLI commands."""

import sys
from typing import Any, Dict, Iterable, Optional

import click
import yaml
from rich.console import Console
from rich.markup import escape

from infra_reconcile.config.parser import Config, ConfigValidationError
from infra_reconcile.orchestrator.orchestrator import ReconciliationEngine
from infra_reconcile.utils.errors import ReconcileError
from infra_reconcile.utils.logging import get_logger
from infra_reconcile.utils.yaml_loader import load_yaml

console = Console()
logger = get_logger(__name__)


def load_config(config_path: str) -> Config:
    """Load and validate configuration file."""
    try:
        return Config(config_path).load()
    except FileNotFoundError:
        console.print(f"[red]Error:[/red] Configuration file not found: {config_path}")
        sys.exit(1)
    except ConfigValidationError as e:
        console.print("[red]Configuration validation failed:[/red]\n")
        console.print(escape(str(e)))
        sys.exit(1)


def parse_vars(values: Iterable[str]) -> Dict[str, Any]:
    """Parse ``--var key=value`` pairs; values are read as YAML scalars."""
    variables = {}
    for item in values:
        key, sep, raw = item.partition('=')
        if not sep or not key.strip():
            raise click.BadParameter(f"expected key=value, got {item!r}", param_hint="--var")
        try:
            variables[key.strip()] = load_yaml(raw) if raw else ""
        except yaml.YAMLError as e:
            raise click.BadParameter(f"cannot parse value of {key.strip()!r}: {e}", param_hint="--var")
    return variables


def create_engine(
    config: Config,
    variables: Optional[Dict[str, Any]] = None,
    max_workers: Optional[int] = None
) -> ReconciliationEngine:
    """Create the reconciliation engine for a loaded configuration."""
    return ReconciliationEngine.from_config(config, variables=variables, max_workers=max_workers)


def fail(error: ReconcileError) -> None:
    """Report an error and exit with status 1."""
    logger.debug(f"Error details: {error.to_dict()}")
    console.print(f"[red]{escape(error.to_user_message())}[/red]")
    sys.exit(1)
