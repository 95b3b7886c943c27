"""Query filter builder.

Conditions compile to a SQL fragment with ``?`` placeholders plus the ordered
tuple of bound arguments. Values are never interpolated into SQL; column names
can't be bound, so they are validated as plain identifiers instead.

Usage:
    from localdb.db.filters import Column, Where

    cond = Column("name").like("%John%") & (Column("age") >= 18)
    sql, args = cond.compile()
    # ('("name" LIKE ? AND "age" >= ?)', ('%John%', 18))

    Where("name LIKE ? OR email = ?", "%Jo%", "jo@example.com")
"""

from __future__ import annotations

import re
from dataclasses import dataclass, replace
from typing import Any, Callable, Iterable

_IDENTIFIER_RE = re.compile(r"^[A-Za-z_][A-Za-z0-9_]*$")
# Single-quoted literals ('' is an escaped quote inside one)
_STRING_LITERAL_RE = re.compile(r"'(?:[^']|'')*'")

COMPARISON_OPERATORS = frozenset({"=", "!=", "<", "<=", ">", ">="})

ValueEncoder = Callable[[str, Any], Any]


def quote_identifier(name: str) -> str:
    """Validate and double-quote a column or table name."""
    if not _IDENTIFIER_RE.match(name):
        raise ValueError(f"Invalid SQL identifier: {name!r}")
    return f'"{name}"'


def escape_like(fragment: str, escape: str = "\\") -> str:
    """Escape LIKE wildcards so ``fragment`` matches literally."""
    return (
        fragment.replace(escape, escape * 2)
        .replace("%", escape + "%")
        .replace("_", escape + "_")
    )


class Condition:
    """Base class for filter predicates."""

    def compile(self) -> tuple[str, tuple[Any, ...]]:
        raise NotImplementedError

    def columns(self) -> set[str]:
        """Column names referenced by this condition."""
        return set()

    def encode(self, encoder: ValueEncoder) -> Condition:
        """Copy with every bound value passed through ``encoder(column, value)``."""
        return self

    def __and__(self, other: Condition) -> Condition:
        return And((self, other))

    def __or__(self, other: Condition) -> Condition:
        return Or((self, other))

    def __invert__(self) -> Condition:
        return Not(self)


@dataclass(frozen=True)
class Comparison(Condition):
    column: str
    operator: str
    value: Any

    def __post_init__(self):
        if self.operator not in COMPARISON_OPERATORS:
            raise ValueError(f"Unsupported comparison operator: {self.operator!r}")

    def compile(self) -> tuple[str, tuple[Any, ...]]:
        return f"{quote_identifier(self.column)} {self.operator} ?", (self.value,)

    def columns(self) -> set[str]:
        return {self.column}

    def encode(self, encoder: ValueEncoder) -> Condition:
        return replace(self, value=encoder(self.column, self.value))


@dataclass(frozen=True)
class Like(Condition):
    column: str
    pattern: str
    escape: str | None = None

    def compile(self) -> tuple[str, tuple[Any, ...]]:
        sql = f"{quote_identifier(self.column)} LIKE ?"
        if self.escape is None:
            return sql, (self.pattern,)
        return f"{sql} ESCAPE ?", (self.pattern, self.escape)

    def columns(self) -> set[str]:
        return {self.column}


@dataclass(frozen=True)
class IsNull(Condition):
    column: str
    negate: bool = False

    def compile(self) -> tuple[str, tuple[Any, ...]]:
        op = "IS NOT NULL" if self.negate else "IS NULL"
        return f"{quote_identifier(self.column)} {op}", ()

    def columns(self) -> set[str]:
        return {self.column}


@dataclass(frozen=True)
class In(Condition):
    column: str
    values: tuple[Any, ...]

    def compile(self) -> tuple[str, tuple[Any, ...]]:
        if not self.values:
            # Empty IN never matches
            return "0", ()
        placeholders = ", ".join("?" for _ in self.values)
        return f"{quote_identifier(self.column)} IN ({placeholders})", self.values

    def columns(self) -> set[str]:
        return {self.column}

    def encode(self, encoder: ValueEncoder) -> Condition:
        return replace(self, values=tuple(encoder(self.column, v) for v in self.values))


@dataclass(frozen=True)
class And(Condition):
    parts: tuple[Condition, ...]

    def compile(self) -> tuple[str, tuple[Any, ...]]:
        return _join(" AND ", self.parts)

    def columns(self) -> set[str]:
        return set().union(*(p.columns() for p in self.parts))

    def encode(self, encoder: ValueEncoder) -> Condition:
        return And(tuple(p.encode(encoder) for p in self.parts))


@dataclass(frozen=True)
class Or(Condition):
    parts: tuple[Condition, ...]

    def compile(self) -> tuple[str, tuple[Any, ...]]:
        return _join(" OR ", self.parts)

    def columns(self) -> set[str]:
        return set().union(*(p.columns() for p in self.parts))

    def encode(self, encoder: ValueEncoder) -> Condition:
        return Or(tuple(p.encode(encoder) for p in self.parts))


@dataclass(frozen=True)
class Not(Condition):
    inner: Condition

    def compile(self) -> tuple[str, tuple[Any, ...]]:
        sql, args = self.inner.compile()
        return f"NOT ({sql})", args

    def columns(self) -> set[str]:
        return self.inner.columns()

    def encode(self, encoder: ValueEncoder) -> Condition:
        return Not(self.inner.encode(encoder))


def count_placeholders(sql: str) -> int:
    """Number of ``?`` placeholders outside single-quoted string literals."""
    return _STRING_LITERAL_RE.sub("", sql).count("?")


class Where(Condition):
    """Raw parameterized condition: SQL with ``?`` placeholders and its args.

    The placeholder count must match the number of arguments. Arguments are
    bound as given (already in storage form).
    """

    def __init__(self, sql: str, *args: Any):
        placeholders = count_placeholders(sql)
        if placeholders != len(args):
            raise ValueError(
                f"Placeholder count ({placeholders}) does not match "
                f"argument count ({len(args)})"
            )
        self.sql = sql
        self.args = tuple(args)

    def compile(self) -> tuple[str, tuple[Any, ...]]:
        return f"({self.sql})", self.args

    def __repr__(self) -> str:
        return f"Where({self.sql!r}, args={self.args!r})"


def _join(sep: str, parts: Iterable[Condition]) -> tuple[str, tuple[Any, ...]]:
    fragments: list[str] = []
    args: list[Any] = []
    for part in parts:
        sql, part_args = part.compile()
        fragments.append(sql)
        args.extend(part_args)
    if not fragments:
        return "1", ()
    return "(" + sep.join(fragments) + ")", tuple(args)


# =============================================================================
# BUILDER
# =============================================================================


class Column:
    """Entry point for building conditions on one column."""

    def __init__(self, name: str):
        quote_identifier(name)
        self.name = name

    def __eq__(self, value: Any) -> Condition:  # type: ignore[override]
        if value is None:
            return IsNull(self.name)
        return Comparison(self.name, "=", value)

    def __ne__(self, value: Any) -> Condition:  # type: ignore[override]
        if value is None:
            return IsNull(self.name, negate=True)
        return Comparison(self.name, "!=", value)

    def __lt__(self, value: Any) -> Condition:
        return Comparison(self.name, "<", value)

    def __le__(self, value: Any) -> Condition:
        return Comparison(self.name, "<=", value)

    def __gt__(self, value: Any) -> Condition:
        return Comparison(self.name, ">", value)

    def __ge__(self, value: Any) -> Condition:
        return Comparison(self.name, ">=", value)

    __hash__ = None  # type: ignore[assignment]

    def like(self, pattern: str) -> Condition:
        return Like(self.name, pattern)

    def contains(self, fragment: str) -> Condition:
        """Substring match with LIKE wildcards in ``fragment`` escaped."""
        return Like(self.name, f"%{escape_like(fragment)}%", escape="\\")

    def is_in(self, values: Iterable[Any]) -> Condition:
        return In(self.name, tuple(values))

    def is_null(self) -> Condition:
        return IsNull(self.name)

    def is_not_null(self) -> Condition:
        return IsNull(self.name, negate=True)

    def asc(self) -> OrderBy:
        return OrderBy(self.name)

    def desc(self) -> OrderBy:
        return OrderBy(self.name, descending=True)


@dataclass(frozen=True)
class OrderBy:
    column: str
    descending: bool = False

    def compile(self) -> str:
        direction = "DESC" if self.descending else "ASC"
        return f"{quote_identifier(self.column)} {direction}"
