"""Template parsing and resolution."""

from .filters import FILTERS, register_filter
from .parser import Expression, FilterCall, Template, Text, parse_path, parse_template
from .resolver import (
    Bindings,
    ResolvedTemplate,
    ResolverContext,
    TemplateResolver,
    lookup,
    render_value,
)

__all__ = [
    "Bindings",
    "Expression",
    "FILTERS",
    "FilterCall",
    "ResolvedTemplate",
    "ResolverContext",
    "Template",
    "TemplateResolver",
    "Text",
    "lookup",
    "parse_path",
    "parse_template",
    "register_filter",
    "render_value",
]
