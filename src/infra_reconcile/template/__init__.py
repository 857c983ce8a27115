"""Template documents: resource declarations and reference expressions."""

from infra_reconcile.template.models import (
    Interpolation,
    Reference,
    ResourceDeclaration,
    TemplateDocument,
    iter_references,
    make_identifier,
    resolve_value,
    to_plain,
)
from infra_reconcile.template.parser import ParsedDeclaration, ParsedTemplate, TemplateParser

__all__ = [
    'Interpolation',
    'Reference',
    'ResourceDeclaration',
    'TemplateDocument',
    'iter_references',
    'make_identifier',
    'resolve_value',
    'to_plain',
    'ParsedDeclaration',
    'ParsedTemplate',
    'TemplateParser',
]
