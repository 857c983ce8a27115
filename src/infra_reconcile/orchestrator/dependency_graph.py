"""Dependency graph of resource declarations."""

import heapq
from collections import defaultdict
from dataclasses import dataclass
from pathlib import Path
from types import MappingProxyType
from typing import Any, Dict, Iterable, List, Mapping, Optional, Set, Tuple, Union

from infra_reconcile.config.models import ProviderConfig
from infra_reconcile.template.models import iter_references, to_plain
from infra_reconcile.template.parser import ParsedTemplate, TemplateParser
from infra_reconcile.utils.errors import CycleError, ErrorContext, UnresolvedReferenceError
from infra_reconcile.utils.logging import get_logger

logger = get_logger(__name__)

# Colours for depth-first cycle detection
WHITE, GREY, BLACK = 0, 1, 2


@dataclass(frozen=True)
class ReferenceEdge:
    """Directed edge from a node to a node it references."""

    source: str
    target: str
    attribute: str  # Attribute path on the target; empty for depends_on edges


@dataclass(frozen=True, eq=False)
class ResourceNode:
    """Immutable resource declaration inside a built graph."""

    identifier: str
    type: str
    name: str
    attributes: Mapping[str, Any]
    edges: Tuple[ReferenceEdge, ...] = ()
    position: int = 0

    @property
    def dependencies(self) -> Tuple[str, ...]:
        """Distinct referenced identifiers in first-reference order."""
        seen: Dict[str, None] = {}
        for edge in self.edges:
            seen.setdefault(edge.target, None)
        return tuple(seen)

    def plain_attributes(self) -> Dict[str, Any]:
        """Attributes with references rendered as ``${...}`` strings."""
        return to_plain(dict(self.attributes))


def stable_topological_sort(
    identifiers: Iterable[str],
    dependencies: Mapping[str, Iterable[str]],
    position: Mapping[str, int]
) -> List[str]:
    """Order identifiers so each comes after its dependencies.

    Independent identifiers are emitted by ascending ``position``. Edges to
    identifiers outside ``identifiers`` are ignored.

    Raises:
        CycleError: If the induced subgraph is cyclic
    """
    members = list(identifiers)
    member_set = set(members)
    in_degree = {identifier: 0 for identifier in members}
    dependents: Dict[str, List[str]] = defaultdict(list)

    for identifier in members:
        for dependency in set(dependencies.get(identifier, ())):
            if dependency in member_set and dependency != identifier:
                in_degree[identifier] += 1
                dependents[dependency].append(identifier)
            elif dependency == identifier:
                raise CycleError([identifier, identifier])

    ready = [(position.get(i, 0), i) for i, degree in in_degree.items() if degree == 0]
    heapq.heapify(ready)
    result = []

    while ready:
        _, identifier = heapq.heappop(ready)
        result.append(identifier)
        for dependent in dependents[identifier]:
            in_degree[dependent] -= 1
            if in_degree[dependent] == 0:
                heapq.heappush(ready, (position.get(dependent, 0), dependent))

    if len(result) != len(members):
        remaining = sorted(member_set - set(result), key=lambda i: position.get(i, 0))
        raise CycleError(remaining)

    return result


class DependencyGraph:
    """Directed acyclic graph of resource nodes."""

    def __init__(self):
        """Initialize empty dependency graph."""
        self.nodes: Dict[str, ResourceNode] = {}
        self.outputs: Dict[str, Any] = {}
        self._dependents: Dict[str, Set[str]] = defaultdict(set)

    def add_node(self, node: ResourceNode) -> None:
        """Add a node to the graph.

        Args:
            node: Node to add; its identifier must be new
        """
        if node.identifier in self.nodes:
            raise ValueError(f"Node already in graph: {node.identifier}")

        self.nodes[node.identifier] = node
        for target in node.dependencies:
            self._dependents[target].add(node.identifier)

    @property
    def edges(self) -> List[ReferenceEdge]:
        """All reference edges in node order."""
        return [edge for node in self.nodes.values() for edge in node.edges]

    def get_node(self, identifier: str) -> Optional[ResourceNode]:
        return self.nodes.get(identifier)

    def get_dependencies(self, identifier: str) -> Set[str]:
        """Get direct dependencies of a node."""
        node = self.nodes.get(identifier)
        return set(node.dependencies) if node else set()

    def get_dependents(self, identifier: str) -> Set[str]:
        """Get direct dependents of a node."""
        return set(self._dependents.get(identifier, set()))

    def detect_cycle(self) -> Optional[List[str]]:
        """Detect a reference cycle.

        Depth-first traversal with white/grey/black colour marking; meeting a
        grey node means a back edge.

        Returns:
            Identifiers forming the cycle (first element repeated at the
            end), or None if the graph is acyclic
        """
        color = {identifier: WHITE for identifier in self.nodes}
        stack: List[str] = []

        def visit(identifier: str) -> Optional[List[str]]:
            color[identifier] = GREY
            stack.append(identifier)

            for target in self.nodes[identifier].dependencies:
                if target not in color:
                    continue  # Unresolved; reported separately
                if color[target] == GREY:
                    return stack[stack.index(target):] + [target]
                if color[target] == WHITE:
                    cycle = visit(target)
                    if cycle:
                        return cycle

            stack.pop()
            color[identifier] = BLACK
            return None

        for identifier in self.nodes:
            if color[identifier] == WHITE:
                cycle = visit(identifier)
                if cycle:
                    return cycle

        return None

    def validate(self) -> None:
        """Validate the graph.

        Raises:
            UnresolvedReferenceError: If an edge targets an undeclared node
            CycleError: If references form a cycle
        """
        for edge in self.edges:
            if edge.target not in self.nodes:
                raise UnresolvedReferenceError(edge.source, edge.target)

        for name, value in self.outputs.items():
            for reference in iter_references(value):
                if reference.target not in self.nodes:
                    raise UnresolvedReferenceError(f"outputs.{name}", reference.target)

        cycle = self.detect_cycle()
        if cycle:
            raise CycleError(cycle, context=ErrorContext(resource_id=cycle[0]))

    def topological_order(self) -> List[str]:
        """Identifiers with every node after the nodes it references.

        Independent nodes keep their document order.
        """
        return stable_topological_sort(
            self.nodes,
            {identifier: node.dependencies for identifier, node in self.nodes.items()},
            {identifier: node.position for identifier, node in self.nodes.items()},
        )

    def size(self) -> int:
        return len(self.nodes)


class GraphBuilder:
    """Builds a validated DependencyGraph from a template document."""

    def __init__(
        self,
        provider_config: Optional[ProviderConfig] = None,
        variables: Optional[Dict[str, Any]] = None
    ):
        """Initialize graph builder.

        Args:
            provider_config: Provider settings available to the document
            variables: Variable overrides
        """
        self.provider_config = provider_config or ProviderConfig()
        self.parser = TemplateParser(self.provider_config, variables)

    def build_from_file(self, path: Union[str, Path]) -> DependencyGraph:
        """Parse a template file and build its graph."""
        return self.from_template(self.parser.load(path))

    def build(self, document: Any) -> DependencyGraph:
        """Parse a decoded document and build its graph."""
        return self.from_template(self.parser.parse(document))

    def from_template(self, template: ParsedTemplate) -> DependencyGraph:
        """Build the graph for an already parsed template.

        Raises:
            UnresolvedReferenceError: If a reference targets an undeclared node
            CycleError: If references form a cycle
        """
        graph = DependencyGraph()

        for declaration in template.declarations:
            edges: List[ReferenceEdge] = []
            seen: Set[Tuple[str, str]] = set()

            for reference in iter_references(declaration.attributes):
                key = (reference.target, reference.attribute)
                if key not in seen:
                    seen.add(key)
                    edges.append(ReferenceEdge(declaration.identifier, *key))

            for target in declaration.depends_on:
                if (target, "") not in seen:
                    seen.add((target, ""))
                    edges.append(ReferenceEdge(declaration.identifier, target, ""))

            graph.add_node(ResourceNode(
                identifier=declaration.identifier,
                type=declaration.type,
                name=declaration.name,
                attributes=MappingProxyType(dict(declaration.attributes)),
                edges=tuple(edges),
                position=declaration.position,
            ))

        graph.outputs = dict(template.outputs)
        graph.validate()

        logger.info(
            f"Built dependency graph: {graph.size()} resources, {len(graph.edges)} references"
        )
        return graph
