"""Builder for the test-management server's query language.

The server filters collections with expressions such as::

    scm_repository EQ {id EQ 1001};repository_path NEQ null
    (name EQ 'a'||name EQ 'b')

``;`` joins with AND, ``||`` with OR and ``!`` negates. Cross-entity
conditions nest in braces. Literal values are single-quoted; callers
escape them with ``escape_query_value`` first.
"""

from __future__ import annotations

NULL = "null"


def _literal(value: object) -> str:
    if isinstance(value, Query):
        return "{" + value.build() + "}"
    if value is None or value == NULL:
        return NULL
    if isinstance(value, bool):
        return "true" if value else "false"
    if isinstance(value, int):
        return str(value)
    return f"'{value}'"


class Query:
    """Immutable query expression.

    Example:
        >>> Query.field("ci_server").equal(Query.field("id").equal(7)).and_(
        ...     Query.field("name").equal("GHA")
        ... ).build()
        "ci_server EQ {id EQ 7};name EQ 'GHA'"
    """

    def __init__(self, expression: str) -> None:
        self._expression = expression

    @staticmethod
    def field(name: str) -> FieldQuery:
        return FieldQuery(name)

    def and_(self, other: Query) -> Query:
        return Query(f"{self._expression};{other._expression}")

    def or_(self, other: Query) -> Query:
        return Query(f"({self._expression}||{other._expression})")

    def not_(self) -> Query:
        return Query(f"!{self._expression}")

    def build(self) -> str:
        return self._expression

    def __str__(self) -> str:
        return self._expression

    def __eq__(self, other: object) -> bool:
        return isinstance(other, Query) and other._expression == self._expression

    def __hash__(self) -> int:
        return hash(self._expression)

    @staticmethod
    def any_of(queries: list[Query]) -> Query | None:
        """OR of *queries*, or ``None`` for an empty list."""
        result: Query | None = None
        for query in queries:
            result = query if result is None else result.or_(query)
        return result


class FieldQuery:
    """Left-hand side of a comparison; call one operator to get a ``Query``."""

    def __init__(self, name: str) -> None:
        self._name = name

    def equal(self, value: object) -> Query:
        return Query(f"{self._name} EQ {_literal(value)}")

    def not_equal(self, value: object) -> Query:
        return Query(f"{self._name} NEQ {_literal(value)}")

    def in_(self, values: list[str] | tuple[str, ...]) -> Query:
        joined = ",".join(_literal(v) for v in values)
        return Query(f"{self._name} IN {joined}")
