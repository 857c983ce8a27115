"""Resolution of references against applied state."""

from typing import Any, Dict

from infra_reconcile.state.store import StateStore
from infra_reconcile.template.models import Reference, resolve_value
from infra_reconcile.utils.errors import ErrorContext, ReferenceResolutionError

# Reference attribute that yields the provider-assigned handle
PHYSICAL_ID = "id"


class StateResolver:
    """Looks up referenced attributes in the state store.

    A reference is only resolvable once its target has been applied, so
    the executor resolves each op's attributes right before dispatching it.
    """

    def __init__(self, state_store: StateStore):
        self.state_store = state_store

    def resolve(self, value: Any, source: str = "") -> Any:
        """Replace every reference inside ``value`` with its applied value.

        Raises:
            ReferenceResolutionError: If a target or attribute is not recorded
        """
        return resolve_value(value, lambda reference: self.lookup(reference, source))

    def resolve_attributes(self, attributes: Dict[str, Any], source: str = "") -> Dict[str, Any]:
        return self.resolve(dict(attributes), source)

    def lookup(self, reference: Reference, source: str = "") -> Any:
        """Resolve one reference.

        ``id`` yields the physical id. Other paths are looked up in the
        provider outputs first, then in the attributes sent on apply.
        """
        context = ErrorContext(resource_id=source or None, operation="resolve")
        record = self.state_store.get(reference.target)

        if record is None:
            raise ReferenceResolutionError(
                f"{reference.expression()} cannot be resolved: "
                f"{reference.target} has not been applied",
                context=context
            )

        if reference.path == (PHYSICAL_ID,) and record.physical_id is not None:
            return record.physical_id

        for source_values in (record.outputs, record.resolved_attributes):
            found, value = _walk(source_values, reference.path)
            if found:
                return value

        raise ReferenceResolutionError(
            f"{reference.expression()} cannot be resolved: "
            f"{reference.target} has no attribute '{reference.attribute}'",
            context=context,
            suggestions=[f"Known outputs: {', '.join(sorted(record.outputs)) or 'none'}"]
        )


def _walk(value: Any, path) -> tuple:
    """Descend through mappings by key and lists by integer index."""
    for segment in path:
        if isinstance(value, dict) and segment in value:
            value = value[segment]
        elif isinstance(value, list) and segment.isdigit() and int(segment) < len(value):
            value = value[int(segment)]
        else:
            return False, None
    return True, value
