"""Safe evaluation of step ``condition`` expressions.

Conditions use Python expression syntax restricted to comparisons, boolean
logic, literals and references::

    category == 'billing'
    inputs.priority in ('high', 'urgent') and steps.classify.status == 'succeeded'

Bare names refer to workflow inputs. Secrets are not addressable.
"""

from __future__ import annotations

import ast
import operator
from dataclasses import dataclass
from typing import Any, Callable, Dict, Optional, Tuple, Type

from .errors import InvalidWorkflowError, TemplateError
from .templating.parser import STEP_ATTRIBUTES
from .templating.resolver import Bindings, ResolverContext, lookup

_CONDITION_ROOTS = frozenset({"inputs", "steps", "env"})

_COMPARATORS: Dict[Type[ast.cmpop], Callable[[Any, Any], bool]] = {
    ast.Eq: operator.eq,
    ast.NotEq: operator.ne,
    ast.Lt: operator.lt,
    ast.LtE: operator.le,
    ast.Gt: operator.gt,
    ast.GtE: operator.ge,
    ast.In: lambda a, b: a in b,
    ast.NotIn: lambda a, b: a not in b,
    ast.Is: operator.is_,
    ast.IsNot: operator.is_not,
}


def reference_path(node: ast.AST) -> Optional[Tuple[str, ...]]:
    """Return the dotted reference path for name/attribute/subscript chains."""
    if isinstance(node, ast.Name):
        if node.id in _CONDITION_ROOTS:
            return (node.id,)
        return ("inputs", node.id)
    if isinstance(node, ast.Attribute):
        base = reference_path(node.value)
        return base + (node.attr,) if base else None
    if isinstance(node, ast.Subscript):
        base = reference_path(node.value)
        key = node.slice
        if base and isinstance(key, ast.Constant) and isinstance(key.value, (str, int)):
            return base + (str(key.value),)
    return None


def _check_reference(path: Tuple[str, ...], source: str) -> None:
    if len(path) < 2:
        raise InvalidWorkflowError(f"Condition '{source}': '{path[0]}' needs a key")
    if path[0] == "steps" and (len(path) < 3 or path[2] not in STEP_ATTRIBUTES):
        raise InvalidWorkflowError(
            f"Condition '{source}': step references must use .output or .status"
        )


def _validate(node: ast.AST, source: str) -> None:
    if isinstance(node, (ast.Name, ast.Attribute, ast.Subscript)):
        path = reference_path(node)
        if path is None:
            raise InvalidWorkflowError(f"Condition '{source}': unsupported reference")
        if path[0] == "inputs" and len(path) > 1 and path[1] == "secrets":
            raise InvalidWorkflowError(
                f"Condition '{source}': secrets cannot be used in conditions"
            )
        _check_reference(path, source)
        return
    if isinstance(node, ast.BoolOp):
        for value in node.values:
            _validate(value, source)
        return
    if isinstance(node, ast.UnaryOp) and isinstance(node.op, (ast.Not, ast.USub)):
        _validate(node.operand, source)
        return
    if isinstance(node, ast.Compare):
        for op in node.ops:
            if type(op) not in _COMPARATORS:
                raise InvalidWorkflowError(f"Condition '{source}': unsupported operator")
        _validate(node.left, source)
        for comparator in node.comparators:
            _validate(comparator, source)
        return
    if isinstance(node, (ast.List, ast.Tuple, ast.Set)):
        for element in node.elts:
            _validate(element, source)
        return
    if isinstance(node, ast.Constant):
        return
    raise InvalidWorkflowError(
        f"Condition '{source}': {type(node).__name__} is not allowed"
    )


@dataclass(frozen=True)
class Condition:
    source: str
    tree: ast.expr

    def evaluate(self, bindings: Bindings, context: ResolverContext) -> bool:
        try:
            return bool(_evaluate(self.tree, bindings, context))
        except TypeError as exc:
            raise TemplateError(f"Condition '{self.source}' failed: {exc}") from None


def _evaluate(node: ast.AST, bindings: Bindings, context: ResolverContext) -> Any:
    if isinstance(node, ast.Constant):
        return node.value
    if isinstance(node, ast.BoolOp):
        if isinstance(node.op, ast.And):
            result: Any = True
            for value in node.values:
                result = _evaluate(value, bindings, context)
                if not result:
                    return result
            return result
        result = False
        for value in node.values:
            result = _evaluate(value, bindings, context)
            if result:
                return result
        return result
    if isinstance(node, ast.UnaryOp):
        operand = _evaluate(node.operand, bindings, context)
        return (not operand) if isinstance(node.op, ast.Not) else -operand
    if isinstance(node, ast.Compare):
        left = _evaluate(node.left, bindings, context)
        for op, comparator in zip(node.ops, node.comparators):
            right = _evaluate(comparator, bindings, context)
            if not _COMPARATORS[type(op)](left, right):
                return False
            left = right
        return True
    if isinstance(node, ast.List):
        return [_evaluate(e, bindings, context) for e in node.elts]
    if isinstance(node, ast.Tuple):
        return tuple(_evaluate(e, bindings, context) for e in node.elts)
    if isinstance(node, ast.Set):
        return {_evaluate(e, bindings, context) for e in node.elts}
    path = reference_path(node)
    value, _ = lookup(path, bindings, context, allow_secrets=False)
    return value


def parse_condition(source: str) -> Condition:
    """Parse and whitelist-check a condition expression."""
    try:
        tree = ast.parse(source.strip(), mode="eval")
    except SyntaxError as exc:
        raise InvalidWorkflowError(f"Condition '{source}' is not valid: {exc.msg}") from None
    _validate(tree.body, source)
    return Condition(source=source, tree=tree.body)
