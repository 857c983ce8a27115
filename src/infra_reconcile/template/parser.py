"""Template document parser.

Turns a YAML or JSON document into resource declarations whose attribute
values have had ``${...}`` expressions parsed:

* ``${var.<name>}`` and ``${provider.<field>}`` are substituted immediately.
* ``${<Type>.<name>.<attr.path>}`` becomes a :class:`Reference`.
* ``$${`` escapes a literal ``${``.

A string consisting of exactly one expression evaluates to the raw value;
expressions embedded in longer strings are interpolated.
"""

import json
import math
import re
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Dict, List, Optional, Union

import yaml
from pydantic import ValidationError

from infra_reconcile.config.models import ProviderConfig
from infra_reconcile.template.models import (
    Interpolation,
    Reference,
    ResourceDeclaration,
    TemplateDocument,
    TYPE_PATTERN,
)
from infra_reconcile.utils.errors import ErrorContext, ParseError
from infra_reconcile.utils.logging import get_logger
from infra_reconcile.utils.yaml_loader import load_yaml

logger = get_logger(__name__)

EXPRESSION = re.compile(r"\$\$\{|\$\{([^}]*)\}")
TYPE_RE = re.compile(TYPE_PATTERN)
PROVIDER_FIELDS = ("name", "region")


def is_json_native(value: Any) -> bool:
    """True if ``value`` is stored in and read back from JSON unchanged."""
    if value is None or isinstance(value, (bool, int, str)):
        return True
    if isinstance(value, float):
        return math.isfinite(value)
    if isinstance(value, list):
        return all(is_json_native(item) for item in value)
    if isinstance(value, dict):
        return all(isinstance(key, str) and is_json_native(item) for key, item in value.items())
    return False


@dataclass
class ParsedDeclaration:
    """Declaration with attribute values parsed into references."""

    type: str
    name: str
    identifier: str
    position: int
    attributes: Dict[str, Any]
    depends_on: List[str] = field(default_factory=list)


@dataclass
class ParsedTemplate:
    """Result of parsing one document."""

    declarations: List[ParsedDeclaration]
    outputs: Dict[str, Any]
    variables: Dict[str, Any]
    source: Optional[str] = None


class TemplateParser:
    """Parses template documents against a provider configuration."""

    def __init__(
        self,
        provider_config: Optional[ProviderConfig] = None,
        variables: Optional[Dict[str, Any]] = None
    ):
        """Initialize parser.

        Args:
            provider_config: Provider settings exposed as ``${provider.*}``
            variables: Overrides for the document's ``variables`` section
        """
        self.provider_config = provider_config or ProviderConfig()
        self.overrides = dict(variables or {})

    def load(self, path: Union[str, Path]) -> ParsedTemplate:
        """Read and parse a template file.

        Raises:
            ParseError: If the file is missing or malformed
        """
        path = Path(path)
        if not path.exists():
            raise ParseError(f"Template not found: {path}")

        text = path.read_text()
        try:
            if path.suffix == ".json":
                data = json.loads(text)
            else:
                data = load_yaml(text)
        except (json.JSONDecodeError, yaml.YAMLError) as e:
            raise ParseError(f"Failed to parse {path}: {e}", cause=e)

        parsed = self.parse(data)
        parsed.source = str(path)
        return parsed

    def parse(self, data: Any) -> ParsedTemplate:
        """Parse an already-decoded document.

        Raises:
            ParseError: If the document is malformed
        """
        if data is None:
            data = {}
        if not isinstance(data, dict):
            raise ParseError("Template document must be a mapping")

        unknown = set(data) - {"variables", "resources", "outputs"}
        if unknown:
            raise ParseError(f"Unknown top-level section(s): {', '.join(sorted(unknown))}")

        try:
            document = TemplateDocument(**data)
        except ValidationError as e:
            details = "; ".join(
                f"{'.'.join(str(loc) for loc in error['loc'])}: {error['msg']}"
                for error in e.errors()
            )
            raise ParseError(f"Invalid template document: {details}", cause=e)

        variables = {**document.variables, **self.overrides}

        declarations = [
            self._parse_declaration(declaration, position, variables)
            for position, declaration in enumerate(document.resources)
        ]
        outputs = {
            name: self._parse_value(value, variables, location=f"outputs.{name}")
            for name, value in document.outputs.items()
        }

        logger.debug(f"Parsed {len(declarations)} declarations and {len(outputs)} outputs")

        return ParsedTemplate(declarations=declarations, outputs=outputs, variables=variables)

    def _parse_declaration(
        self,
        declaration: ResourceDeclaration,
        position: int,
        variables: Dict[str, Any]
    ) -> ParsedDeclaration:
        identifier = declaration.identifier
        attributes = {
            key: self._parse_value(value, variables, location=f"{identifier}.{key}")
            for key, value in declaration.attributes.items()
        }
        for dependency in declaration.depends_on:
            if "." not in dependency:
                raise ParseError(
                    f"Invalid depends_on entry '{dependency}': expected 'Type.name'",
                    context=ErrorContext(resource_id=identifier)
                )

        return ParsedDeclaration(
            type=declaration.type,
            name=declaration.name,
            identifier=identifier,
            position=position,
            attributes=attributes,
            depends_on=list(declaration.depends_on),
        )

    def _parse_value(self, value: Any, variables: Dict[str, Any], location: str) -> Any:
        if isinstance(value, str):
            return self._parse_string(value, variables, location)
        if isinstance(value, dict):
            for key in value:
                if not isinstance(key, str):
                    raise ParseError(f"Attribute keys must be strings, got {key!r} at {location}")
            return {
                key: self._parse_value(item, variables, f"{location}.{key}")
                for key, item in value.items()
            }
        if isinstance(value, list):
            return [
                self._parse_value(item, variables, f"{location}[{index}]")
                for index, item in enumerate(value)
            ]
        if not is_json_native(value):
            raise ParseError(
                f"Unsupported value {value!r} at {location}; "
                f"use a string, number, boolean, null, list or mapping"
            )
        return value

    def _parse_string(self, text: str, variables: Dict[str, Any], location: str) -> Any:
        matches = list(EXPRESSION.finditer(text))
        if not matches:
            return text

        # Exactly one expression and nothing else keeps the raw value
        only = matches[0]
        if len(matches) == 1 and only.group(0) != "$${" and only.span() == (0, len(text)):
            return self._parse_expression(only.group(1).strip(), variables, location)

        parts: List[Union[str, Reference]] = []
        buffer: List[str] = []
        cursor = 0

        for match in matches:
            buffer.append(text[cursor:match.start()])
            cursor = match.end()

            if match.group(0) == "$${":
                buffer.append("${")
                continue

            value = self._parse_expression(match.group(1).strip(), variables, location)
            if isinstance(value, Reference):
                if buffer:
                    parts.append("".join(buffer))
                    buffer = []
                parts.append(value)
            else:
                buffer.append(value if isinstance(value, str) else json.dumps(value))

        buffer.append(text[cursor:])
        tail = "".join(buffer)

        if not parts:
            return tail
        if tail:
            parts.append(tail)
        return Interpolation(parts=tuple(part for part in parts if part != ""))

    def _parse_expression(self, body: str, variables: Dict[str, Any], location: str) -> Any:
        segments = body.split(".")
        if not body or any(not segment for segment in segments):
            raise ParseError(f"Malformed expression '${{{body}}}' at {location}")

        head = segments[0]
        if head == "var":
            if len(segments) != 2:
                raise ParseError(f"Malformed variable expression '${{{body}}}' at {location}")
            if segments[1] not in variables:
                raise ParseError(f"Unknown variable '{segments[1]}' at {location}")
            value = variables[segments[1]]
            if not is_json_native(value):
                raise ParseError(f"Variable '{segments[1]}' has unsupported value {value!r} at {location}")
            return value

        if head == "provider":
            if len(segments) != 2 or segments[1] not in PROVIDER_FIELDS:
                raise ParseError(
                    f"Unknown provider attribute '${{{body}}}' at {location}; "
                    f"expected one of: {', '.join(PROVIDER_FIELDS)}"
                )
            return getattr(self.provider_config, segments[1])

        if len(segments) < 3 or not TYPE_RE.match(head):
            raise ParseError(
                f"Malformed reference '${{{body}}}' at {location}; "
                f"expected '${{Type.name.attribute}}'"
            )

        return Reference(target=f"{head}.{segments[1]}", path=tuple(segments[2:]))
