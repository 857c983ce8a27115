"""Graph command for visualizing declaration dependencies."""

from typing import Dict, List, Set

import click
from rich.markup import escape
from rich.panel import Panel
from rich.tree import Tree

from ..orchestrator.dependency_graph import DependencyGraph
from ..utils.errors import ReconcileError
from .common import console, create_engine, fail, load_config, parse_vars


@click.command()
@click.option('--var', 'var_values', multiple=True, help='Template variable (key=value)')
@click.option('--format', 'output_format', type=click.Choice(['tree', 'order', 'dot']),
              default='tree', help='Output format')
@click.pass_context
def graph(ctx, var_values, output_format):
    """Show how template declarations depend on each other."""
    cfg = load_config(ctx.obj['config_path'])
    engine = create_engine(cfg, parse_vars(var_values))

    try:
        dep_graph = engine.load_graph(cfg.template_path())
    except ReconcileError as e:
        fail(e)

    if output_format == 'tree':
        _output_tree(dep_graph)
    elif output_format == 'order':
        _output_order(dep_graph)
    else:
        click.echo(_generate_dot(dep_graph))


def _output_tree(dep_graph: DependencyGraph):
    """Roots first, each node listing the nodes that reference it."""
    console.print(Panel("Resource Dependency Graph", style="bold blue"))

    roots = [i for i in dep_graph.topological_order() if not dep_graph.get_dependencies(i)]
    if not roots:
        console.print("[dim]No resources found[/dim]")
        return

    for root in roots:
        tree = Tree(f"[bold cyan]{escape(root)}[/bold cyan]")
        _build_tree_recursive(tree, root, dep_graph, set())
        console.print(tree)


def _build_tree_recursive(tree: Tree, identifier: str, dep_graph: DependencyGraph, visited: Set[str]):
    visited.add(identifier)
    position = {i: node.position for i, node in dep_graph.nodes.items()}

    for dependent in sorted(dep_graph.get_dependents(identifier), key=position.get):
        if dependent in visited:
            continue
        branch = tree.add(f"[cyan]{escape(dependent)}[/cyan]")
        _build_tree_recursive(branch, dependent, dep_graph, visited.copy())


def _output_order(dep_graph: DependencyGraph):
    """Apply order grouped by depth."""
    ordered = dep_graph.topological_order()
    levels = _compute_levels(dep_graph, ordered)

    for level in range(max(levels.values(), default=-1) + 1):
        console.print(f"[bold]Level {level}:[/bold]")
        for identifier in ordered:
            if levels[identifier] != level:
                continue
            deps = sorted(dep_graph.get_dependencies(identifier))
            suffix = f" [dim]← {escape(', '.join(deps))}[/dim]" if deps else ""
            console.print(f"  ├─ [cyan]{escape(identifier)}[/cyan]{suffix}")


def _compute_levels(dep_graph: DependencyGraph, ordered: List[str]) -> Dict[str, int]:
    levels: Dict[str, int] = {}
    for identifier in ordered:
        deps = dep_graph.get_dependencies(identifier)
        levels[identifier] = max((levels[d] + 1 for d in deps), default=0)
    return levels


def _generate_dot(dep_graph: DependencyGraph) -> str:
    lines = ['digraph resources {', '  rankdir=LR;', '  node [shape=box];']
    for identifier in dep_graph.topological_order():
        lines.append(f'  "{identifier}";')
    for edge in dep_graph.edges:
        label = f' [label="{edge.attribute}"]' if edge.attribute else ' [style=dashed]'
        lines.append(f'  "{edge.source}" -> "{edge.target}"{label};')
    lines.append('}')
    return "\n".join(lines)
