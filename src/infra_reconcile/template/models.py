"""Template document models and reference expressions."""

from dataclasses import dataclass
from typing import Any, Callable, Dict, Iterator, List, Tuple, Union
from pydantic import BaseModel, Field, field_validator


TYPE_PATTERN = r"^[A-Za-z][A-Za-z0-9_]*(::[A-Za-z0-9_]+)*$"
NAME_PATTERN = r"^[A-Za-z_][A-Za-z0-9_-]*$"


def make_identifier(resource_type: str, name: str) -> str:
    """Identifier of a declaration: ``Type.name``."""
    return f"{resource_type}.{name}"


@dataclass(frozen=True)
class Reference:
    """Symbolic pointer to another declaration's computed output."""

    target: str  # Identifier of the referenced declaration
    path: Tuple[str, ...]  # Attribute path below the target, e.g. ('id',)

    @property
    def attribute(self) -> str:
        return ".".join(self.path)

    def expression(self) -> str:
        """Render back to ``${Type.name.attr}`` form."""
        return "${" + f"{self.target}.{self.attribute}" + "}"


@dataclass(frozen=True)
class Interpolation:
    """String with one or more embedded references."""

    parts: Tuple[Union[str, Reference], ...]

    def references(self) -> List[Reference]:
        return [part for part in self.parts if isinstance(part, Reference)]

    def expression(self) -> str:
        return "".join(
            part.expression() if isinstance(part, Reference) else part.replace("${", "$${")
            for part in self.parts
        )


def iter_references(value: Any) -> Iterator[Reference]:
    """Yield every reference inside a (possibly nested) attribute value."""
    if isinstance(value, Reference):
        yield value
    elif isinstance(value, Interpolation):
        yield from value.references()
    elif isinstance(value, dict):
        for item in value.values():
            yield from iter_references(item)
    elif isinstance(value, (list, tuple)):
        for item in value:
            yield from iter_references(item)


def to_plain(value: Any) -> Any:
    """Render references back to expression strings.

    The result is JSON-serialisable and is what the planner diffs and the
    state store records as last-applied attributes.
    """
    if isinstance(value, (Reference, Interpolation)):
        return value.expression()
    if isinstance(value, dict):
        return {key: to_plain(item) for key, item in value.items()}
    if isinstance(value, (list, tuple)):
        return [to_plain(item) for item in value]
    return value


def resolve_value(value: Any, lookup: Callable[[Reference], Any]) -> Any:
    """Replace references using ``lookup``; interpolations become strings."""
    if isinstance(value, Reference):
        return lookup(value)
    if isinstance(value, Interpolation):
        return "".join(
            str(lookup(part)) if isinstance(part, Reference) else part
            for part in value.parts
        )
    if isinstance(value, dict):
        return {key: resolve_value(item, lookup) for key, item in value.items()}
    if isinstance(value, (list, tuple)):
        return [resolve_value(item, lookup) for item in value]
    return value


class ResourceDeclaration(BaseModel):
    """One resource block: a type discriminator plus an attribute map."""

    type: str = Field(..., pattern=TYPE_PATTERN, description="Resource type, e.g. AWS::EC2::VPC")
    name: str = Field(..., min_length=1, max_length=128, pattern=NAME_PATTERN)
    attributes: Dict[str, Any] = Field(default_factory=dict)
    depends_on: List[str] = Field(
        default_factory=list, description="Explicit ordering edges to other identifiers"
    )

    @property
    def identifier(self) -> str:
        return make_identifier(self.type, self.name)


class TemplateDocument(BaseModel):
    """Raw template document before reference parsing."""

    variables: Dict[str, Any] = Field(default_factory=dict)
    resources: List[ResourceDeclaration] = Field(default_factory=list)
    outputs: Dict[str, Any] = Field(default_factory=dict)

    @field_validator("resources")
    @classmethod
    def validate_unique(cls, v: List[ResourceDeclaration]) -> List[ResourceDeclaration]:
        """Identifiers must be unique, ignoring case."""
        seen: Dict[str, str] = {}
        for declaration in v:
            key = declaration.identifier.lower()
            if key in seen:
                raise ValueError(
                    f"Duplicate resource '{declaration.identifier}' "
                    f"(conflicts with '{seen[key]}')"
                )
            seen[key] = declaration.identifier
        return v
