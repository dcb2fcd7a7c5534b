"""
Predicate trees and their translation to SQL WHERE fragments.

A predicate is a small tree of nodes over one entity parameter. Trees are
usually built by tracing a lambda against an entity proxy:

    trace_predicate(Person, lambda p: (p.Name == "Bob") & (p.CreatedAt.date() == day))

Python's ``and``/``or``/``not`` cannot be overloaded, so ``&``, ``|`` and ``~``
are used instead; applying ``and``/``or`` to a node raises
UnsupportedExpressionError rather than silently dropping half the predicate.

Supported set: Equal, NotEqual, AndAlso, OrElse, MemberAccess, Constant,
DateOf (``.date()``), Unwrap and CurrentTimestamp. Every other node kind fails at
translation time, before any SQL is sent.
"""

import dataclasses
from collections.abc import Callable, Collection
from dataclasses import dataclass
from functools import cache
from typing import Any, ClassVar, Protocol

from niorm.domain.dialect import SQLSERVER, SqlDialect
from niorm.domain.exceptions import UnsupportedExpressionError, ValidationError
from niorm.domain.values import to_sql_literal


class ParameterSink(Protocol):
    """Anything that can bind a value and hand back its placeholder."""

    def add_parameter(self, value: Any) -> str: ...


class Node:
    """Base predicate node. Operators build new nodes instead of evaluating."""

    kind: ClassVar[str] = "Node"

    def __eq__(self, other: Any) -> "Comparison":  # type: ignore[override]
        return Comparison("Equal", self, _wrap(other))

    def __ne__(self, other: Any) -> "Comparison":  # type: ignore[override]
        return Comparison("NotEqual", self, _wrap(other))

    def __lt__(self, other: Any) -> "Comparison":
        return Comparison("LessThan", self, _wrap(other))

    def __le__(self, other: Any) -> "Comparison":
        return Comparison("LessThanOrEqual", self, _wrap(other))

    def __gt__(self, other: Any) -> "Comparison":
        return Comparison("GreaterThan", self, _wrap(other))

    def __ge__(self, other: Any) -> "Comparison":
        return Comparison("GreaterThanOrEqual", self, _wrap(other))

    def __and__(self, other: Any) -> "AndAlso":
        return AndAlso(self, _wrap(other))

    def __rand__(self, other: Any) -> "AndAlso":
        return AndAlso(_wrap(other), self)

    def __or__(self, other: Any) -> "OrElse":
        return OrElse(self, _wrap(other))

    def __ror__(self, other: Any) -> "OrElse":
        return OrElse(_wrap(other), self)

    def __invert__(self) -> "Not":
        return Not(self)

    def __bool__(self) -> bool:
        raise UnsupportedExpressionError(
            "BooleanConversion",
            "Predicate nodes cannot be used with 'and', 'or', 'not' or 'if'; use &, | and ~",
        )

    __hash__ = object.__hash__


@dataclass(eq=False, frozen=True)
class EntityParameter(Node):
    """
    The single entity parameter a predicate ranges over.

    Fields of the traced entity type win over the proxy's own attributes, so
    an entity may declare fields such as ``kind`` or ``name``. Deeper chains
    have no type to consult: there ``name``, ``parent`` and ``date`` keep
    their node meaning.
    """

    kind: ClassVar[str] = "Parameter"
    entity_type: type | None = None

    def __getattribute__(self, name: str) -> Any:
        if not name.startswith("_"):
            entity_type = object.__getattribute__(self, "entity_type")
            if name in _field_names(entity_type):
                return Member(self, name)
        return object.__getattribute__(self, name)

    def __getattr__(self, name: str) -> "Member":
        if name.startswith("__"):
            raise AttributeError(name)
        return Member(self, name)


@dataclass(eq=False, frozen=True)
class Member(Node):
    kind: ClassVar[str] = "MemberAccess"
    parent: Node
    name: str

    def __getattr__(self, name: str) -> "Member":
        if name.startswith("__"):
            raise AttributeError(name)
        return Member(self, name)

    def date(self) -> "DateOf":
        return DateOf(self)


@dataclass(eq=False, frozen=True)
class Constant(Node):
    kind: ClassVar[str] = "Constant"
    value: Any


@dataclass(eq=False, frozen=True)
class Comparison(Node):
    operator: str
    left: Node
    right: Node

    @property
    def kind(self) -> str:  # type: ignore[override]
        return self.operator


@dataclass(eq=False, frozen=True)
class AndAlso(Node):
    kind: ClassVar[str] = "AndAlso"
    left: Node
    right: Node


@dataclass(eq=False, frozen=True)
class OrElse(Node):
    kind: ClassVar[str] = "OrElse"
    left: Node
    right: Node


@dataclass(eq=False, frozen=True)
class Not(Node):
    kind: ClassVar[str] = "Not"
    operand: Node


@dataclass(eq=False, frozen=True)
class DateOf(Node):
    """Date part of a datetime expression."""

    kind: ClassVar[str] = "DateOf"
    operand: Node


@dataclass(eq=False, frozen=True)
class Unwrap(Node):
    """Access to the value of a nullable expression."""

    kind: ClassVar[str] = "Unwrap"
    operand: Node

    def date(self) -> DateOf:
        return DateOf(self)


@dataclass(eq=False, frozen=True)
class CurrentTimestamp(Node):
    kind: ClassVar[str] = "CurrentTimestamp"

    def date(self) -> DateOf:
        return DateOf(self)


NOW = CurrentTimestamp()

_COMPARISON_OPERATORS = {"Equal": ("=", "IS NULL"), "NotEqual": ("!=", "IS NOT NULL")}


class ExpressionTranslator:
    """
    Translates predicate trees into WHERE fragments (without the WHERE keyword).

    With a parameter sink, constants are bound as parameters. Without one they
    are inlined through to_sql_literal; that legacy path does not escape strings
    and must only see trusted values.
    """

    def __init__(
        self,
        dialect: SqlDialect = SQLSERVER,
        parameters: ParameterSink | None = None,
        known_fields: Collection[str] | None = None,
    ) -> None:
        self.dialect = dialect
        self.parameters = parameters
        self.known_fields = known_fields

    def translate(self, node: Node) -> str:
        if isinstance(node, Comparison):
            return self._comparison(node)
        if isinstance(node, AndAlso):
            return f"({self.translate(node.left)} AND {self.translate(node.right)})"
        if isinstance(node, OrElse):
            return f"({self.translate(node.left)} OR {self.translate(node.right)})"
        if isinstance(node, Member):
            return self._member(node)
        if isinstance(node, DateOf):
            operand = node.operand
            while isinstance(operand, Unwrap):
                operand = operand.operand
            return f"CAST({self.translate(operand)} AS DATE)"
        if isinstance(node, Unwrap):
            return self.translate(node.operand)
        if isinstance(node, CurrentTimestamp):
            return self.dialect.current_timestamp
        if isinstance(node, Constant):
            return self._constant(node.value)
        raise UnsupportedExpressionError(getattr(node, "kind", type(node).__name__))

    def _comparison(self, node: Comparison) -> str:
        if node.operator not in _COMPARISON_OPERATORS:
            raise UnsupportedExpressionError(node.operator)
        symbol, null_test = _COMPARISON_OPERATORS[node.operator]

        left, right = node.left, node.right
        if _is_null(left) and not _is_null(right):
            left, right = right, left
        if _is_null(right):
            return f"{self.translate(left)} {null_test}"
        return f"{self.translate(left)} {symbol} {self.translate(right)}"

    def _member(self, node: Member) -> str:
        path = [node.name]
        parent = node.parent
        while isinstance(parent, Member):
            path.append(parent.name)
            parent = parent.parent
        if not isinstance(parent, EntityParameter):
            raise UnsupportedExpressionError(
                node.kind, "Member access must start at the entity parameter"
            )
        path.reverse()

        if self.known_fields is not None and path[0] not in self.known_fields:
            raise ValidationError(f"Unknown field in predicate: {path[0]}")
        # Deeper chains have no column of their own; keep the dotted path.
        return self.dialect.quote(".".join(path))

    def _constant(self, value: Any) -> str:
        if self.parameters is not None:
            return self.parameters.add_parameter(value)
        return to_sql_literal(value)


def translate(
    node: Node,
    dialect: SqlDialect = SQLSERVER,
    parameters: ParameterSink | None = None,
    known_fields: Collection[str] | None = None,
) -> str:
    """
    Translate a predicate tree into a WHERE fragment.

    Args:
        node: Root of the predicate tree
        dialect: SQL dialect for quoting and the current-timestamp function
        parameters: Optional sink; when given, constants become bound parameters
        known_fields: Optional field names the members are checked against

    Returns:
        The fragment, e.g. ``([Name] = N'Bob' AND [Age] = 3)``

    Raises:
        UnsupportedExpressionError: If the tree contains an unsupported node kind
    """
    return ExpressionTranslator(dialect, parameters, known_fields).translate(node)


def trace_predicate(entity_type: type | None, predicate: Callable[[Any], Any]) -> Node:
    """
    Build a predicate tree by calling ``predicate`` on an entity proxy.

    Raises:
        UnsupportedExpressionError: If the callable does not return a node
    """
    result = predicate(EntityParameter(entity_type))
    if not isinstance(result, Node):
        raise UnsupportedExpressionError(
            type(result).__name__, f"Predicate must build an expression, got {result!r}"
        )
    return result


@cache
def _field_names(entity_type: type | None) -> frozenset[str]:
    if entity_type is None or not dataclasses.is_dataclass(entity_type):
        return frozenset()
    return frozenset(f.name for f in dataclasses.fields(entity_type))


def _wrap(value: Any) -> Node:
    return value if isinstance(value, Node) else Constant(value)


def _is_null(node: Node) -> bool:
    return isinstance(node, Constant) and node.value is None
