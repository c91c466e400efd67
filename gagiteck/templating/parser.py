"""Parse ``{{ path | filter:arg }}`` templates into a small AST."""

from __future__ import annotations

import re
from dataclasses import dataclass
from typing import FrozenSet, List, Optional, Tuple, Union

from ..errors import TemplateError

ROOTS = frozenset({"inputs", "steps", "env", "secrets"})
STEP_ATTRIBUTES = frozenset({"output", "status"})

_OPEN, _CLOSE = "{{", "}}"
_SEGMENT = r"[A-Za-z_][A-Za-z0-9_-]*|[0-9]+"
_PATH_RE = re.compile(rf"^(?:{_SEGMENT})(?:\.(?:{_SEGMENT}))*$")
_FILTER_NAME_RE = re.compile(r"^[A-Za-z_][A-Za-z0-9_]*$")


@dataclass(frozen=True)
class FilterCall:
    name: str
    arg: Optional[str] = None


@dataclass(frozen=True)
class Text:
    value: str


@dataclass(frozen=True)
class Expression:
    """A reference path followed by a filter chain."""

    path: Tuple[str, ...]
    filters: Tuple[FilterCall, ...] = ()

    @property
    def dotted(self) -> str:
        return ".".join(self.path)

    @property
    def root(self) -> str:
        return self.path[0]

    @property
    def step_id(self) -> Optional[str]:
        return self.path[1] if self.root == "steps" else None


Node = Union[Text, Expression]


@dataclass(frozen=True)
class Template:
    source: str
    parts: Tuple[Node, ...]

    @property
    def expressions(self) -> Tuple[Expression, ...]:
        return tuple(p for p in self.parts if isinstance(p, Expression))

    def step_references(self) -> FrozenSet[str]:
        return frozenset(e.step_id for e in self.expressions if e.step_id)


def _split_outside_quotes(text: str, sep: str) -> List[str]:
    pieces: List[str] = []
    current: List[str] = []
    quote: Optional[str] = None
    for char in text:
        if quote:
            current.append(char)
            if char == quote:
                quote = None
        elif char in "'\"":
            quote = char
            current.append(char)
        elif char == sep:
            pieces.append("".join(current))
            current = []
        else:
            current.append(char)
    if quote:
        raise TemplateError(f"Unterminated quote in expression '{text.strip()}'")
    pieces.append("".join(current))
    return pieces


def _unquote(value: str) -> str:
    if len(value) >= 2 and value[0] == value[-1] and value[0] in "'\"":
        return value[1:-1]
    return value


def parse_path(text: str) -> Tuple[str, ...]:
    """Parse and check a dotted reference path."""
    text = text.strip()
    if not _PATH_RE.match(text):
        raise TemplateError("Malformed reference", text)
    path = tuple(text.split("."))
    root = path[0]
    if root not in ROOTS:
        raise TemplateError(
            f"Unknown reference root '{root}', expected one of {sorted(ROOTS)}", text
        )
    if len(path) < 2:
        raise TemplateError("Reference needs a key after its root", text)
    if root == "steps":
        if len(path) < 3 or path[2] not in STEP_ATTRIBUTES:
            raise TemplateError(
                "Step references must be steps.<id>.output or steps.<id>.status", text
            )
        if path[2] == "status" and len(path) > 3:
            raise TemplateError("steps.<id>.status has no attributes", text)
    if root == "secrets" and len(path) != 2:
        raise TemplateError("Secret references take exactly one name", text)
    return path


def _parse_filter(text: str) -> FilterCall:
    name, sep, arg = text.partition(":")
    name = name.strip()
    if not _FILTER_NAME_RE.match(name):
        raise TemplateError(f"Malformed filter '{text.strip()}'")
    if not sep:
        return FilterCall(name=name)
    return FilterCall(name=name, arg=_unquote(arg.strip()))


def parse_expression(body: str) -> Expression:
    segments = _split_outside_quotes(body, "|")
    if not segments[0].strip():
        raise TemplateError("Empty template expression")
    path = parse_path(segments[0])
    filters = []
    for segment in segments[1:]:
        if not segment.strip():
            raise TemplateError("Empty filter", ".".join(path))
        filters.append(_parse_filter(segment))
    return Expression(path=path, filters=tuple(filters))


def parse_template(source: str) -> Template:
    """Parse ``source`` into a :class:`Template`.

    Filter names are not checked here; unknown filters fail at resolution.
    """
    parts: List[Node] = []
    position = 0
    while True:
        start = source.find(_OPEN, position)
        if start == -1:
            if position < len(source):
                parts.append(Text(source[position:]))
            break
        if start > position:
            parts.append(Text(source[position:start]))
        end = source.find(_CLOSE, start + len(_OPEN))
        if end == -1:
            raise TemplateError(f"Unclosed '{{{{' at offset {start}")
        parts.append(parse_expression(source[start + len(_OPEN) : end]))
        position = end + len(_CLOSE)
    return Template(source=source, parts=tuple(parts))
