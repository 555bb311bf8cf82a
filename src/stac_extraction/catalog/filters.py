"""Predicate combinators evaluated against a node's field bag.

Predicates are built from a field reference::

    F("rel") == "child"
    F("title").contains("GLC")
    F("href").matches("20..0601")

or from tuples such as ``("title", "contains", "GLC")``. Several predicates passed to
one ``filter_node`` call are combined with AND, left to right, stopping at the first
false one. A field that is missing or null makes every predicate on it false.
"""

import operator
import re
import string
from collections.abc import Callable, Iterable, Mapping
from typing import Any

from stac_extraction.errors import FilterError
from stac_extraction.models.models import StacObject, lookup_field


class Predicate:
    """Boolean test of one named field.

    :param field: Field name, dotted names reach into nested mappings
    :param op: Operator symbol, used for display
    :param operand: Right-hand side of the comparison
    :param test: Callable receiving the field value
    """

    __slots__ = ("field", "op", "operand", "_test")

    def __init__(self, field: str, op: str, operand: Any, test: Callable[[Any], bool]) -> None:
        self.field = field
        self.op = op
        self.operand = operand
        self._test = test

    def __call__(self, fields: Mapping[str, Any]) -> bool:
        found, value = lookup_field(fields if isinstance(fields, dict) else dict(fields), self.field)
        if not found or value is None:
            return False
        try:
            return bool(self._test(value))
        except TypeError:
            # ordering across incompatible types
            return False

    def __repr__(self) -> str:
        return f"Predicate({self.field!r} {self.op} {self.operand!r})"


# POSIX bracket classes, spelled as re character-set ranges
_POSIX_CLASSES = {
    "alnum": "a-zA-Z0-9",
    "alpha": "a-zA-Z",
    "blank": " \\t",
    "digit": "0-9",
    "lower": "a-z",
    "punct": re.escape(string.punctuation),
    "space": " \\t\\n\\r\\f\\v",
    "upper": "A-Z",
    "xdigit": "0-9A-Fa-f",
}

_POSIX_CLASS_RE = re.compile(r"(?<!\\)\[:([a-z]+):\]")


def _translate_posix_classes(pattern: str) -> str:
    """Rewrite ``[[:digit:]]``-style classes of an extended regular expression for ``re``."""

    def _replace(match: re.Match[str]) -> str:
        name = match.group(1)
        if name not in _POSIX_CLASSES:
            raise FilterError(f"Unknown character class [:{name}:] in pattern {pattern!r}")
        return _POSIX_CLASSES[name]

    return _POSIX_CLASS_RE.sub(_replace, pattern)


def _compile_pattern(pattern: str) -> re.Pattern[str]:
    if not isinstance(pattern, str):
        raise FilterError(f"Pattern must be a string, got {type(pattern).__name__}")
    try:
        return re.compile(_translate_posix_classes(pattern))
    except re.error as e:
        raise FilterError(f"Invalid regular expression {pattern!r}: {e}") from e


class F:
    """Field reference used to build predicates."""

    __slots__ = ("name",)
    __hash__ = None  # type: ignore[assignment]

    def __init__(self, name: str) -> None:
        if not isinstance(name, str) or not name:
            raise FilterError(f"Field name must be a non-empty string, got {name!r}")
        self.name = name

    def _compare(self, op: str, fn: Callable[[Any, Any], Any], other: Any) -> Predicate:
        return Predicate(self.name, op, other, lambda value: fn(value, other))

    def __eq__(self, other: Any) -> Predicate:  # type: ignore[override]
        return self._compare("==", operator.eq, other)

    def __ne__(self, other: Any) -> Predicate:  # type: ignore[override]
        return self._compare("!=", operator.ne, other)

    def __lt__(self, other: Any) -> Predicate:
        return self._compare("<", operator.lt, other)

    def __le__(self, other: Any) -> Predicate:
        return self._compare("<=", operator.le, other)

    def __gt__(self, other: Any) -> Predicate:
        return self._compare(">", operator.gt, other)

    def __ge__(self, other: Any) -> Predicate:
        return self._compare(">=", operator.ge, other)

    def contains(self, substring: str) -> Predicate:
        """Case-sensitive substring test on the string form of the value."""
        if not isinstance(substring, str):
            raise FilterError(f"Substring must be a string, got {type(substring).__name__}")
        return Predicate(self.name, "contains", substring, lambda value: substring in str(value))

    def matches(self, pattern: str) -> Predicate:
        """Regular expression search on the string form of the value."""
        regex = _compile_pattern(pattern)
        return Predicate(self.name, "matches", pattern, lambda value: regex.search(str(value)) is not None)

    def isin(self, values: Iterable[Any]) -> Predicate:
        if isinstance(values, str) or not isinstance(values, Iterable):
            raise FilterError(f"Expected a collection of values, got {values!r}")
        choices = list(values)
        return Predicate(self.name, "in", choices, lambda value: value in choices)

    def exists(self) -> Predicate:
        return Predicate(self.name, "exists", None, lambda value: True)

    def __repr__(self) -> str:
        return f"F({self.name!r})"


_OPERATORS: dict[str, Callable[[F, Any], Predicate]] = {
    "==": F.__eq__,
    "eq": F.__eq__,
    "!=": F.__ne__,
    "ne": F.__ne__,
    "<": F.__lt__,
    "<=": F.__le__,
    ">": F.__gt__,
    ">=": F.__ge__,
    "contains": F.contains,
    "matches": F.matches,
    "~": F.matches,
    "in": F.isin,
}


def predicate(expression: Any) -> Predicate:
    """Normalize an expression into a Predicate.

    Accepts a Predicate, a ``(field, op, operand)`` tuple or a ``(field, "exists")`` pair.

    :param expression: Expression to normalize
    :returns: Predicate
    :raises FilterError: On unknown operators or malformed expressions
    """
    if isinstance(expression, Predicate):
        return expression
    if isinstance(expression, tuple):
        if len(expression) == 2 and expression[1] == "exists":
            return F(expression[0]).exists()
        if len(expression) == 3:
            name, op, operand = expression
            if op not in _OPERATORS:
                raise FilterError(f"Unsupported operator {op!r}, expected one of {sorted(_OPERATORS)}")
            return _OPERATORS[op](F(name), operand)
    raise FilterError(f"Malformed predicate expression: {expression!r}")


def node_fields(node: Any) -> Mapping[str, Any]:
    """Field bag of a node: model fields, extras, or the mapping itself."""
    if isinstance(node, StacObject):
        return node.fields()
    if isinstance(node, Mapping):
        return node
    raise FilterError(f"Cannot filter object of type {type(node).__name__}")


def compile_filter(*expressions: Any) -> Callable[[Any], bool]:
    """Validate expressions once and return a reusable node test.

    :param expressions: Predicates or tuples, combined with AND
    :returns: Callable taking a node and returning a bool
    """
    predicates = [predicate(expression) for expression in expressions]

    def _test(node: Any) -> bool:
        if not predicates:
            return True
        fields = node_fields(node)
        return all(p(fields) for p in predicates)

    return _test


def filter_node(node: Any, *expressions: Any) -> bool:
    """Evaluate expressions against one node.

    An empty expression list accepts every node.

    :param node: Link, Item, other model or plain mapping
    :param expressions: Predicates or tuples, combined with AND
    :returns: True if every expression holds
    """
    return compile_filter(*expressions)(node)
