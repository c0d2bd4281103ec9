"""
Immutable query descriptions rendered to SQL for the relational store.

A QuerySpec never changes once built; every shaping method returns a new spec,
so a spec can be shared between tables without one holder observing another's
changes.
"""

import re
from enum import Enum
from typing import Any, Iterable, Optional, Tuple

from pydantic import BaseModel, Field

from cleaning_core.datamodel import Row


class Operator(str, Enum):
    """Comparison operators supported in predicates."""

    EQ = "="
    NE = "!="
    GT = ">"
    GE = ">="
    LT = "<"
    LE = "<="
    IN = "in"


_PREDICATE_PATTERN = re.compile(
    r"^\s*(?P<column>[A-Za-z_][\w.]*)\s*(?P<op>!=|<>|>=|<=|==|=|>|<)\s*(?P<value>.+?)\s*$"
)


def quote_identifier(name: str) -> str:
    return '"' + name.replace('"', '""') + '"'


def quote_literal(value: Any) -> str:
    if value is None:
        return "NULL"
    if isinstance(value, bool):
        return "TRUE" if value else "FALSE"
    if isinstance(value, (int, float)):
        return repr(value)
    return "'" + str(value).replace("'", "''") + "'"


def _parse_literal(text: str) -> Any:
    if len(text) >= 2 and text[0] == text[-1] and text[0] in ("'", '"'):
        return text[1:-1]
    lowered = text.lower()
    if lowered == "null":
        return None
    if lowered in ("true", "false"):
        return lowered == "true"
    for cast in (int, float):
        try:
            return cast(text)
        except ValueError:
            pass
    return text


class Predicate(BaseModel):
    """A ``column op literal`` condition."""

    column: str
    operator: Operator = Operator.EQ
    value: Any = None

    model_config = {"frozen": True}

    @classmethod
    def equal(cls, column: str, value: Any) -> "Predicate":
        return cls(column=column, operator=Operator.EQ, value=value)

    @classmethod
    def parse(cls, text: str) -> "Predicate":
        """Parse ``"quantity > 0"`` style expressions."""
        match = _PREDICATE_PATTERN.match(text)
        if not match:
            raise ValueError(f"Cannot parse predicate: {text!r}")

        op = match.group("op")
        op = {"==": "=", "<>": "!="}.get(op, op)
        return cls(
            column=match.group("column"),
            operator=Operator(op),
            value=_parse_literal(match.group("value")),
        )

    def to_sql(self) -> str:
        column = quote_identifier(self.column)
        if self.value is None and self.operator in (Operator.EQ, Operator.NE):
            return f"{column} IS {'' if self.operator == Operator.EQ else 'NOT '}NULL"
        if self.operator == Operator.IN:
            values = ", ".join(quote_literal(v) for v in self.value)
            return f"{column} IN ({values})"
        return f"{column} {self.operator.value} {quote_literal(self.value)}"

    def evaluate(self, row: Row) -> bool:
        value = row.get(self.column)
        if self.operator == Operator.EQ:
            return value == self.value
        if self.operator == Operator.NE:
            return value != self.value
        if self.operator == Operator.IN:
            return value in self.value
        if value is None or self.value is None:
            return False
        if self.operator == Operator.GT:
            return value > self.value
        if self.operator == Operator.GE:
            return value >= self.value
        if self.operator == Operator.LT:
            return value < self.value
        return value <= self.value

    def __str__(self) -> str:
        return self.to_sql()


class QuerySpec(BaseModel):
    """Select list, source, predicates, ordering and row limit of one query."""

    source: str
    columns: Tuple[str, ...] = ()
    predicates: Tuple[Predicate, ...] = ()
    order: Tuple[str, ...] = ()
    limit: Optional[int] = Field(None, ge=0)

    model_config = {"frozen": True}

    def select(self, columns: Iterable[str]) -> "QuerySpec":
        added = tuple(dict.fromkeys(c for c in columns if c not in self.columns))
        return self.model_copy(update={"columns": self.columns + added})

    def where(self, predicates: Iterable[Predicate]) -> "QuerySpec":
        return self.model_copy(update={"predicates": self.predicates + tuple(predicates)})

    def order_by(self, columns: Iterable[str]) -> "QuerySpec":
        return self.model_copy(update={"order": self.order + tuple(columns)})

    def with_limit(self, limit: Optional[int]) -> "QuerySpec":
        return self.model_copy(update={"limit": limit})

    def _where_clause(self) -> str:
        if not self.predicates:
            return ""
        return " WHERE " + " AND ".join(p.to_sql() for p in self.predicates)

    def build(self) -> str:
        select = ", ".join(quote_identifier(c) for c in self.columns) if self.columns else "*"
        sql = f"SELECT {select} FROM {quote_identifier(self.source)}{self._where_clause()}"
        if self.order:
            sql += " ORDER BY " + ", ".join(quote_identifier(c) for c in self.order)
        if self.limit is not None:
            sql += f" LIMIT {self.limit}"
        return sql

    def distinct(self, column: str) -> str:
        """Distinct values of ``column`` over this spec's source and predicates."""
        quoted = quote_identifier(column)
        return (
            f"SELECT DISTINCT {quoted} FROM {quote_identifier(self.source)}"
            f"{self._where_clause()} ORDER BY {quoted} NULLS LAST"
        )
