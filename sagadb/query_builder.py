"""
Immutable fluent query builder.

Every fluent method returns a *new* ``QueryBuilder`` wrapping an extended
``Query`` AST; the receiver is never modified, so a shared prefix can be
branched into several variants safely:

    base = db.table("users").where("active", True)
    admins = base.where("role", "admin")
    recent = base.order_by_desc("created_at").limit(10)

Rendering is canonical by clause kind, independent of call order:

    SELECT [DISTINCT] cols FROM t [AS a] joins WHERE .. GROUP BY .. HAVING ..
    ORDER BY .. LIMIT ? OFFSET ? [lock]

and bindings are emitted in exactly that order (select expressions, where,
having, then limit/offset last), so the placeholder count of ``to_sql()``
always equals ``len(get_bindings())``. All values travel as bindings;
``to_raw_sql()`` inlines them for debugging only and must never be executed.
"""

from __future__ import annotations

import math
import re
from dataclasses import dataclass, replace
from typing import (
    Any,
    Callable,
    Dict,
    Iterable,
    List,
    Mapping,
    NamedTuple,
    Optional,
    Protocol,
    Sequence,
    Tuple,
    TypedDict,
    Union,
)

from sagadb.exceptions import RecordNotFoundError, StatementError
from sagadb.infrastructure.dialects import Dialect
from sagadb.result_set import ResultSet, Row

COMPARISON_OPERATORS = frozenset({"=", "!=", "<>", "<", "<=", ">", ">="})
OPERATORS = COMPARISON_OPERATORS | {"LIKE", "NOT LIKE", "ILIKE", "NOT ILIKE"}
DIRECTIONS = frozenset({"ASC", "DESC"})
AGGREGATES = frozenset({"COUNT", "SUM", "AVG", "MIN", "MAX"})

_MISSING: Any = object()
_ALIAS_PATTERN = re.compile(r"^\s*(\S+)\s+as\s+(\S+)\s*$", re.IGNORECASE)


class CompiledStatement(NamedTuple):
    sql: str
    bindings: Tuple[Any, ...]


class StatementExecutor(Protocol):
    def execute(self, sql: str, bindings: Sequence[Any] = ()) -> ResultSet:
        ...


Page = TypedDict(
    "Page",
    {
        "data": List[Row],
        "total": int,
        "per_page": int,
        "current_page": int,
        "last_page": int,
        "from": Optional[int],
        "to": Optional[int],
    },
)


# -- AST ------------------------------------------------------------------------------


@dataclass(frozen=True)
class Selection:
    expression: str
    alias: Optional[str] = None
    raw: bool = False
    bindings: Tuple[Any, ...] = ()


@dataclass(frozen=True)
class Join:
    kind: str
    table: str
    alias: Optional[str]
    first: str
    operator: str
    second: str


@dataclass(frozen=True)
class BasicPredicate:
    column: str
    operator: str
    value: Any
    boolean: str = "AND"


@dataclass(frozen=True)
class InPredicate:
    column: str
    values: Tuple[Any, ...] = ()
    negated: bool = False
    boolean: str = "AND"
    subquery: Optional[CompiledStatement] = None


@dataclass(frozen=True)
class NullPredicate:
    column: str
    negated: bool = False
    boolean: str = "AND"


@dataclass(frozen=True)
class BetweenPredicate:
    column: str
    low: Any
    high: Any
    negated: bool = False
    boolean: str = "AND"


@dataclass(frozen=True)
class RawPredicate:
    sql: str
    bindings: Tuple[Any, ...] = ()
    boolean: str = "AND"


@dataclass(frozen=True)
class GroupPredicate:
    predicates: Tuple[Any, ...]
    boolean: str = "AND"


@dataclass(frozen=True)
class SubqueryPredicate:
    column: str
    operator: str
    subquery: CompiledStatement
    boolean: str = "AND"


@dataclass(frozen=True)
class ExistsPredicate:
    subquery: CompiledStatement
    negated: bool = False
    boolean: str = "AND"


Predicate = Union[
    BasicPredicate,
    InPredicate,
    NullPredicate,
    BetweenPredicate,
    RawPredicate,
    GroupPredicate,
    ExistsPredicate,
    SubqueryPredicate,
]


@dataclass(frozen=True)
class Order:
    column: str
    direction: str = "ASC"
    raw: bool = False


@dataclass(frozen=True)
class Query:
    """The builder's AST. Tuples only, so structural sharing between branches is safe."""

    table: Optional[str] = None
    alias: Optional[str] = None
    columns: Tuple[Selection, ...] = ()
    joins: Tuple[Join, ...] = ()
    wheres: Tuple[Predicate, ...] = ()
    groups: Tuple[str, ...] = ()
    havings: Tuple[Predicate, ...] = ()
    orders: Tuple[Order, ...] = ()
    limit: Optional[int] = None
    offset: Optional[int] = None
    distinct: bool = False
    lock: Optional[str] = None


# -- builder --------------------------------------------------------------------------


class QueryBuilder:
    """
    Fluent, immutable SELECT/INSERT/UPDATE/DELETE builder.

    Parameters
    ----------
    dialect : Dialect
        Quoting, placeholder and clause rules of the target engine.
    executor : StatementExecutor, optional
        Anything with ``execute(sql, bindings) -> ResultSet``; normally the
        ``ConnectionManager``. Only terminal methods need it.
    table_prefix : str
        Prepended to every table name this builder renders.
    """

    def __init__(
        self,
        dialect: Dialect,
        executor: Optional[StatementExecutor] = None,
        table_prefix: str = "",
        query: Optional[Query] = None,
    ) -> None:
        self._dialect = dialect
        self._executor = executor
        self._prefix = table_prefix
        self._query = query or Query()

    @property
    def query(self) -> Query:
        return self._query

    @property
    def dialect(self) -> Dialect:
        return self._dialect

    def _with(self, **changes: Any) -> "QueryBuilder":
        return QueryBuilder(self._dialect, self._executor, self._prefix, replace(self._query, **changes))

    def new_query(self) -> "QueryBuilder":
        """An empty builder sharing this builder's dialect, executor and prefix."""
        return QueryBuilder(self._dialect, self._executor, self._prefix)

    def clone(self) -> "QueryBuilder":
        return QueryBuilder(self._dialect, self._executor, self._prefix, self._query)

    # -- validation helpers -----------------------------------------------------------

    def _check_identifier(self, identifier: str) -> str:
        self._dialect.quote_identifier(identifier)
        return identifier

    @staticmethod
    def _check_operator(operator: str, allowed: frozenset = OPERATORS) -> str:
        normalized = " ".join(str(operator).upper().split())
        if normalized not in allowed:
            raise StatementError(f"Invalid operator: {operator!r}")
        return normalized

    def _check_raw(self, sql: str, bindings: Sequence[Any]) -> Tuple[Any, ...]:
        bindings = tuple(bindings)
        expected = sql.count(self._dialect.placeholder)
        if expected != len(bindings):
            raise StatementError(
                f"Raw expression has {expected} placeholder(s) but {len(bindings)} binding(s)",
                sql=sql,
                bindings=bindings,
            )
        return bindings

    @staticmethod
    def _check_count(value: Any, what: str) -> int:
        if isinstance(value, bool) or not isinstance(value, int) or value < 0:
            raise StatementError(f"{what} must be a non-negative integer, got {value!r}")
        return value

    # -- select / from / join ---------------------------------------------------------

    def _parse_selection(self, column: str) -> Selection:
        match = _ALIAS_PATTERN.match(column)
        if match:
            expression, alias = match.group(1), match.group(2)
            return Selection(self._check_identifier(expression), alias=self._check_identifier(alias))
        return Selection(self._check_identifier(column.strip()))

    def select(self, *columns: Union[str, Sequence[str]]) -> "QueryBuilder":
        """Replace the selection. ``"col"``, ``"t.col"``, ``"t.*"`` and ``"col AS alias"`` are accepted."""
        names: List[str] = []
        for column in columns:
            if isinstance(column, str):
                names.append(column)
            else:
                names.extend(column)
        return self._with(columns=tuple(self._parse_selection(name) for name in names))

    def add_select(self, *columns: str) -> "QueryBuilder":
        return self._with(
            columns=self._query.columns + tuple(self._parse_selection(name) for name in columns)
        )

    def select_raw(self, expression: str, bindings: Sequence[Any] = ()) -> "QueryBuilder":
        selection = Selection(expression, raw=True, bindings=self._check_raw(expression, bindings))
        return self._with(columns=self._query.columns + (selection,))

    def select_subquery(self, subquery: "QueryBuilder", alias: str) -> "QueryBuilder":
        """Add ``(subquery) AS alias`` to the selection; its bindings stay in select position."""
        compiled = subquery.compile_select()
        expression = f"({compiled.sql}) AS {self._dialect.quote_identifier(alias)}"
        selection = Selection(expression, raw=True, bindings=compiled.bindings)
        return self._with(columns=self._query.columns + (selection,))

    def distinct(self, value: bool = True) -> "QueryBuilder":
        return self._with(distinct=value)

    def from_(self, table: str, alias: Optional[str] = None) -> "QueryBuilder":
        match = _ALIAS_PATTERN.match(table)
        if match and alias is None:
            table, alias = match.group(1), match.group(2)
        self._check_identifier(table)
        if alias is not None:
            self._check_identifier(alias)
        return self._with(table=table, alias=alias)

    def table(self, table: str, alias: Optional[str] = None) -> "QueryBuilder":
        return self.from_(table, alias)

    def join(
        self,
        table: str,
        first: str,
        operator: str,
        second: str,
        kind: str = "INNER",
        alias: Optional[str] = None,
    ) -> "QueryBuilder":
        kind = kind.upper()
        if kind not in ("INNER", "LEFT", "RIGHT"):
            raise StatementError(f"Invalid join type: {kind!r}")
        for identifier in (table, first, second) + ((alias,) if alias else ()):
            self._check_identifier(identifier)
        join = Join(kind, table, alias, first, self._check_operator(operator, COMPARISON_OPERATORS), second)
        return self._with(joins=self._query.joins + (join,))

    def left_join(self, table: str, first: str, operator: str, second: str, alias: Optional[str] = None) -> "QueryBuilder":
        return self.join(table, first, operator, second, "LEFT", alias)

    def right_join(self, table: str, first: str, operator: str, second: str, alias: Optional[str] = None) -> "QueryBuilder":
        return self.join(table, first, operator, second, "RIGHT", alias)

    # -- where ------------------------------------------------------------------------

    def _add_where(self, predicate: Predicate) -> "QueryBuilder":
        return self._with(wheres=self._query.wheres + (predicate,))

    def where(
        self,
        column: Union[str, Mapping[str, Any], Callable[["QueryBuilder"], "QueryBuilder"]],
        operator: Any = _MISSING,
        value: Any = _MISSING,
        boolean: str = "AND",
    ) -> "QueryBuilder":
        """
        Add a comparison predicate.

        ``where("age", ">", 18)`` compares with an explicit operator and
        ``where("status", "active")`` is shorthand for ``=``. A mapping adds one
        equality per entry and a callable is treated as ``where_group``.
        Comparing against ``None`` with ``=``/``!=`` renders IS [NOT] NULL.
        """
        if callable(column):
            return self._group(column, boolean)
        if isinstance(column, Mapping):
            builder = self
            for key, item in column.items():
                builder = builder.where(key, "=", item, boolean)
            return builder
        if value is _MISSING:
            if operator is _MISSING:
                raise StatementError(f"where('{column}') needs a value")
            operator, value = "=", operator
        self._check_identifier(column)
        operator = self._check_operator(operator)
        if value is None:
            if operator == "=":
                return self._add_where(NullPredicate(column, False, boolean))
            if operator in ("!=", "<>"):
                return self._add_where(NullPredicate(column, True, boolean))
            raise StatementError(f"Cannot compare '{column}' to NULL with {operator}")
        return self._add_where(BasicPredicate(column, operator, value, boolean))

    def or_where(self, column: Any, operator: Any = _MISSING, value: Any = _MISSING) -> "QueryBuilder":
        return self.where(column, operator, value, "OR")

    def where_like(self, column: str, pattern: str, boolean: str = "AND") -> "QueryBuilder":
        return self.where(column, "LIKE", pattern, boolean)

    def where_in(
        self,
        column: str,
        values: Union[Iterable[Any], "QueryBuilder"],
        boolean: str = "AND",
        negated: bool = False,
    ) -> "QueryBuilder":
        """Membership test. An empty list matches no rows (``1 = 0``) instead of rendering ``IN ()``."""
        self._check_identifier(column)
        if isinstance(values, QueryBuilder):
            return self._add_where(
                InPredicate(column, (), negated, boolean, subquery=values.compile_select())
            )
        return self._add_where(InPredicate(column, tuple(values), negated, boolean))

    def where_not_in(self, column: str, values: Union[Iterable[Any], "QueryBuilder"], boolean: str = "AND") -> "QueryBuilder":
        return self.where_in(column, values, boolean, negated=True)

    def or_where_in(self, column: str, values: Union[Iterable[Any], "QueryBuilder"]) -> "QueryBuilder":
        return self.where_in(column, values, "OR")

    def where_null(self, column: str, boolean: str = "AND", negated: bool = False) -> "QueryBuilder":
        self._check_identifier(column)
        return self._add_where(NullPredicate(column, negated, boolean))

    def where_not_null(self, column: str, boolean: str = "AND") -> "QueryBuilder":
        return self.where_null(column, boolean, negated=True)

    def where_between(
        self, column: str, values: Sequence[Any], boolean: str = "AND", negated: bool = False
    ) -> "QueryBuilder":
        self._check_identifier(column)
        bounds = tuple(values)
        if len(bounds) != 2:
            raise StatementError(f"where_between('{column}') needs exactly two bounds, got {len(bounds)}")
        return self._add_where(BetweenPredicate(column, bounds[0], bounds[1], negated, boolean))

    def where_not_between(self, column: str, values: Sequence[Any], boolean: str = "AND") -> "QueryBuilder":
        return self.where_between(column, values, boolean, negated=True)

    def where_raw(self, sql: str, bindings: Sequence[Any] = (), boolean: str = "AND") -> "QueryBuilder":
        return self._add_where(RawPredicate(sql, self._check_raw(sql, bindings), boolean))

    def or_where_raw(self, sql: str, bindings: Sequence[Any] = ()) -> "QueryBuilder":
        return self.where_raw(sql, bindings, "OR")

    def _group(self, fn: Callable[["QueryBuilder"], "QueryBuilder"], boolean: str) -> "QueryBuilder":
        built = fn(self.new_query())
        if not isinstance(built, QueryBuilder):
            raise StatementError("A where_group callback must return the builder it built")
        if not built.query.wheres:
            return self
        return self._add_where(GroupPredicate(built.query.wheres, boolean))

    def where_group(self, fn: Callable[["QueryBuilder"], "QueryBuilder"]) -> "QueryBuilder":
        """
        Add a parenthesized group of predicates.

        ``fn`` receives a fresh, empty builder and must return the builder it
        built; its predicates become one group node. An empty group adds nothing.
        """
        return self._group(fn, "AND")

    def or_where_group(self, fn: Callable[["QueryBuilder"], "QueryBuilder"]) -> "QueryBuilder":
        return self._group(fn, "OR")

    def where_exists(self, subquery: "QueryBuilder", boolean: str = "AND", negated: bool = False) -> "QueryBuilder":
        return self._add_where(ExistsPredicate(subquery.compile_select(), negated, boolean))

    def where_not_exists(self, subquery: "QueryBuilder", boolean: str = "AND") -> "QueryBuilder":
        return self.where_exists(subquery, boolean, negated=True)

    def where_subquery(
        self, column: str, operator: str, subquery: "QueryBuilder", boolean: str = "AND"
    ) -> "QueryBuilder":
        """Compare ``column`` with a scalar subquery: ``col > (SELECT AVG(..) ..)``."""
        self._check_identifier(column)
        return self._add_where(
            SubqueryPredicate(column, self._check_operator(operator), subquery.compile_select(), boolean)
        )

    # -- grouping / ordering / paging -------------------------------------------------

    def group_by(self, *columns: str) -> "QueryBuilder":
        for column in columns:
            self._check_identifier(column)
        return self._with(groups=self._query.groups + tuple(columns))

    def having(self, column: str, operator: Any, value: Any = _MISSING, boolean: str = "AND") -> "QueryBuilder":
        if value is _MISSING:
            operator, value = "=", operator
        self._check_identifier(column)
        predicate = BasicPredicate(column, self._check_operator(operator), value, boolean)
        return self._with(havings=self._query.havings + (predicate,))

    def or_having(self, column: str, operator: Any, value: Any = _MISSING) -> "QueryBuilder":
        return self.having(column, operator, value, "OR")

    def having_raw(self, sql: str, bindings: Sequence[Any] = (), boolean: str = "AND") -> "QueryBuilder":
        predicate = RawPredicate(sql, self._check_raw(sql, bindings), boolean)
        return self._with(havings=self._query.havings + (predicate,))

    def order_by(self, column: str, direction: str = "ASC") -> "QueryBuilder":
        self._check_identifier(column)
        normalized = str(direction).upper()
        if normalized not in DIRECTIONS:
            raise StatementError(f"Invalid order direction: {direction!r}")
        return self._with(orders=self._query.orders + (Order(column, normalized),))

    def order_by_desc(self, column: str) -> "QueryBuilder":
        return self.order_by(column, "DESC")

    def order_by_multiple(
        self, orders: Union[Mapping[str, str], Sequence[Tuple[str, str]]]
    ) -> "QueryBuilder":
        pairs = orders.items() if isinstance(orders, Mapping) else orders
        builder = self
        for column, direction in pairs:
            builder = builder.order_by(column, direction)
        return builder

    def order_by_raw(self, sql: str) -> "QueryBuilder":
        if self._dialect.placeholder in sql:
            raise StatementError("order_by_raw does not accept placeholders", sql=sql)
        return self._with(orders=self._query.orders + (Order(sql, raw=True),))

    def limit(self, count: int) -> "QueryBuilder":
        return self._with(limit=self._check_count(count, "limit"))

    def offset(self, count: int) -> "QueryBuilder":
        return self._with(offset=self._check_count(count, "offset"))

    def for_page(self, page: int, per_page: int = 15) -> "QueryBuilder":
        if page < 1 or per_page < 1:
            raise StatementError(f"Invalid page {page} / per_page {per_page}")
        return self.offset((page - 1) * per_page).limit(per_page)

    def for_update(self) -> "QueryBuilder":
        return self._with(lock="update")

    def shared_lock(self) -> "QueryBuilder":
        return self._with(lock="shared")

    # -- compilation ------------------------------------------------------------------

    def _table_name(self, table: str) -> str:
        if not self._prefix:
            return table
        schema, _, name = table.rpartition(".")
        return f"{schema}.{self._prefix}{name}" if schema else f"{self._prefix}{name}"

    def _require_table(self) -> str:
        if not self._query.table:
            raise StatementError("No table selected; call from_() or table() first")
        return self._query.table

    def _source_sql(self, table: str, alias: Optional[str]) -> str:
        quote = self._dialect.quote_identifier
        full = self._table_name(table)
        # With a prefix and no explicit alias, keep the unprefixed name usable as a qualifier.
        if alias is None and full != table and "." not in table:
            alias = table
        if alias:
            return f"{quote(full)} AS {quote(alias)}"
        return quote(full)

    def _target_sql(self) -> str:
        return self._dialect.quote_identifier(self._table_name(self._require_table()))

    def _compile_selection(self, selection: Selection) -> str:
        if selection.raw:
            return selection.expression
        rendered = self._dialect.quote_identifier(selection.expression)
        if selection.alias:
            rendered += f" AS {self._dialect.quote_identifier(selection.alias)}"
        return rendered

    def _compile_predicate(self, predicate: Predicate) -> Tuple[str, List[Any]]:
        quote = self._dialect.quote_identifier
        placeholder = self._dialect.placeholder
        if isinstance(predicate, BasicPredicate):
            return f"{quote(predicate.column)} {predicate.operator} {placeholder}", [predicate.value]
        if isinstance(predicate, InPredicate):
            keyword = "NOT IN" if predicate.negated else "IN"
            if predicate.subquery is not None:
                return (
                    f"{quote(predicate.column)} {keyword} ({predicate.subquery.sql})",
                    list(predicate.subquery.bindings),
                )
            if not predicate.values:
                return ("1 = 1" if predicate.negated else "1 = 0"), []
            marks = self._dialect.placeholders(len(predicate.values))
            return f"{quote(predicate.column)} {keyword} ({marks})", list(predicate.values)
        if isinstance(predicate, NullPredicate):
            keyword = "IS NOT NULL" if predicate.negated else "IS NULL"
            return f"{quote(predicate.column)} {keyword}", []
        if isinstance(predicate, BetweenPredicate):
            keyword = "NOT BETWEEN" if predicate.negated else "BETWEEN"
            return (
                f"{quote(predicate.column)} {keyword} {placeholder} AND {placeholder}",
                [predicate.low, predicate.high],
            )
        if isinstance(predicate, RawPredicate):
            return f"({predicate.sql})", list(predicate.bindings)
        if isinstance(predicate, GroupPredicate):
            sql, bindings = self._compile_predicates(predicate.predicates)
            return f"({sql})", bindings
        if isinstance(predicate, ExistsPredicate):
            keyword = "NOT EXISTS" if predicate.negated else "EXISTS"
            return f"{keyword} ({predicate.subquery.sql})", list(predicate.subquery.bindings)
        if isinstance(predicate, SubqueryPredicate):
            return (
                f"{quote(predicate.column)} {predicate.operator} ({predicate.subquery.sql})",
                list(predicate.subquery.bindings),
            )
        raise StatementError(f"Unknown predicate node: {predicate!r}")

    def _compile_predicates(self, predicates: Sequence[Predicate]) -> Tuple[str, List[Any]]:
        parts: List[str] = []
        bindings: List[Any] = []
        for position, predicate in enumerate(predicates):
            sql, values = self._compile_predicate(predicate)
            parts.append(sql if position == 0 else f"{predicate.boolean} {sql}")
            bindings.extend(values)
        return " ".join(parts), bindings

    def _compile_body(self, query: Query, bindings: List[Any]) -> List[str]:
        """FROM, JOIN and WHERE: the part shared by SELECT and COUNT statements."""
        quote = self._dialect.quote_identifier
        parts = [f"FROM {self._source_sql(self._require_table(), query.alias)}"]
        for join in query.joins:
            parts.append(
                f"{join.kind} JOIN {self._source_sql(join.table, join.alias)} "
                f"ON {quote(join.first)} {join.operator} {quote(join.second)}"
            )
        if query.wheres:
            sql, values = self._compile_predicates(query.wheres)
            parts.append(f"WHERE {sql}")
            bindings.extend(values)
        return parts

    def _compile_query(self, query: Query) -> CompiledStatement:
        bindings: List[Any] = []
        head = "SELECT DISTINCT" if query.distinct else "SELECT"
        if query.columns:
            columns = ", ".join(self._compile_selection(selection) for selection in query.columns)
            for selection in query.columns:
                bindings.extend(selection.bindings)
        else:
            columns = "*"
        parts = [f"{head} {columns}"]
        parts.extend(self._compile_body(query, bindings))
        if query.groups:
            parts.append("GROUP BY " + self._dialect.quote_list(query.groups))
        if query.havings:
            sql, values = self._compile_predicates(query.havings)
            parts.append(f"HAVING {sql}")
            bindings.extend(values)
        if query.orders:
            rendered = [
                order.column if order.raw else f"{self._dialect.quote_identifier(order.column)} {order.direction}"
                for order in query.orders
            ]
            parts.append("ORDER BY " + ", ".join(rendered))
        limit_sql, limit_bindings = self._dialect.limit_clause(query.limit, query.offset)
        if limit_sql:
            parts.append(limit_sql)
            bindings.extend(limit_bindings)
        lock = self._dialect.lock_clause(query.lock)
        if lock:
            parts.append(lock)
        return CompiledStatement(" ".join(parts), tuple(bindings))

    def compile_select(self) -> CompiledStatement:
        return self._compile_query(self._query)

    def compile_aggregate(self, function: str, column: str = "*") -> CompiledStatement:
        """
        Compile ``FUNCTION(column) AS aggregate`` over the current filters.

        Ordering, limit/offset and locks are dropped. Grouped or DISTINCT
        queries are wrapped as a derived table so the aggregate covers the
        rows the plain query would return.
        """
        function = function.upper()
        if function not in AGGREGATES:
            raise StatementError(f"Unknown aggregate function: {function!r}")
        target = "*" if column == "*" else self._dialect.quote_identifier(column)
        stripped = replace(self._query, orders=(), limit=None, offset=None, lock=None)
        if stripped.groups or stripped.distinct:
            inner = self._compile_query(stripped)
            source = self._dialect.quote_identifier("aggregate_source")
            return CompiledStatement(
                f"SELECT {function}({target}) AS aggregate FROM ({inner.sql}) AS {source}",
                inner.bindings,
            )
        selection = Selection(f"{function}({target}) AS aggregate", raw=True)
        return self._compile_query(replace(stripped, columns=(selection,)))

    def compile_count(self, column: str = "*") -> CompiledStatement:
        return self.compile_aggregate("COUNT", column)

    def compile_insert(
        self,
        columns: Sequence[str],
        rows: Sequence[Sequence[Any]],
        returning: Optional[str] = None,
    ) -> CompiledStatement:
        """Multi-row ``INSERT INTO t (cols) VALUES (..), (..)``; rows are aligned with ``columns``."""
        if not columns:
            raise StatementError("An insert needs at least one column")
        if not rows:
            raise StatementError("An insert needs at least one row")
        row_sql = f"({self._dialect.placeholders(len(columns))})"
        bindings: List[Any] = []
        for row in rows:
            if len(row) != len(columns):
                raise StatementError(
                    f"Row has {len(row)} value(s) but {len(columns)} column(s) were given"
                )
            bindings.extend(row)
        sql = (
            f"INSERT INTO {self._target_sql()} ({self._dialect.quote_list(columns)}) "
            f"VALUES {', '.join([row_sql] * len(rows))}"
        )
        if returning:
            clause = self._dialect.returning_clause(returning)
            if clause:
                sql += f" {clause}"
        return CompiledStatement(sql, tuple(bindings))

    def compile_upsert(
        self,
        columns: Sequence[str],
        rows: Sequence[Sequence[Any]],
        update_columns: Sequence[str],
        conflict_columns: Sequence[str] = (),
    ) -> CompiledStatement:
        if not update_columns:
            raise StatementError("An upsert needs at least one column to update on conflict")
        unknown = [column for column in update_columns if column not in columns]
        if unknown:
            raise StatementError(f"Upsert update columns are not inserted: {unknown}")
        insert = self.compile_insert(columns, rows)
        clause = self._dialect.upsert_clause(update_columns, conflict_columns)
        return CompiledStatement(f"{insert.sql} {clause}", insert.bindings)

    def _guard_write(self) -> None:
        if self._query.joins:
            raise StatementError("Joins are not supported in UPDATE or DELETE statements")

    def compile_update(
        self, values: Mapping[str, Any], increments: Optional[Mapping[str, Any]] = None
    ) -> CompiledStatement:
        self._guard_write()
        quote = self._dialect.quote_identifier
        placeholder = self._dialect.placeholder
        assignments: List[str] = []
        bindings: List[Any] = []
        for column, amount in (increments or {}).items():
            assignments.append(f"{quote(column)} = {quote(column)} + {placeholder}")
            bindings.append(amount)
        for column, value in values.items():
            assignments.append(f"{quote(column)} = {placeholder}")
            bindings.append(value)
        if not assignments:
            raise StatementError("An update needs at least one column")
        sql = f"UPDATE {self._target_sql()} SET {', '.join(assignments)}"
        if self._query.wheres:
            where_sql, where_bindings = self._compile_predicates(self._query.wheres)
            sql += f" WHERE {where_sql}"
            bindings.extend(where_bindings)
        return CompiledStatement(sql, tuple(bindings))

    def compile_case_update(
        self, key_column: str, updates: Mapping[Any, Mapping[str, Any]]
    ) -> CompiledStatement:
        """
        One conditional UPDATE for many rows:

            UPDATE t SET c = CASE k WHEN ? THEN ? ... ELSE c END, ... WHERE k IN (...)

        ``updates`` maps each key value to the columns to set for that row.
        """
        self._guard_write()
        if not updates:
            raise StatementError("A conditional update needs at least one row")
        quote = self._dialect.quote_identifier
        placeholder = self._dialect.placeholder
        key_sql = quote(key_column)
        columns: List[str] = []
        for row in updates.values():
            for column in row:
                if column not in columns:
                    columns.append(column)
        assignments: List[str] = []
        bindings: List[Any] = []
        for column in columns:
            cases = []
            for key, row in updates.items():
                if column in row:
                    cases.append(f"WHEN {placeholder} THEN {placeholder}")
                    bindings.extend((key, row[column]))
            column_sql = quote(column)
            assignments.append(f"{column_sql} = CASE {key_sql} {' '.join(cases)} ELSE {column_sql} END")
        scoped = self.where_in(key_column, list(updates.keys()))
        where_sql, where_bindings = self._compile_predicates(scoped.query.wheres)
        bindings.extend(where_bindings)
        sql = f"UPDATE {self._target_sql()} SET {', '.join(assignments)} WHERE {where_sql}"
        return CompiledStatement(sql, tuple(bindings))

    def compile_delete(self) -> CompiledStatement:
        self._guard_write()
        sql = f"DELETE FROM {self._target_sql()}"
        bindings: List[Any] = []
        if self._query.wheres:
            where_sql, bindings = self._compile_predicates(self._query.wheres)
            sql += f" WHERE {where_sql}"
        return CompiledStatement(sql, tuple(bindings))

    # -- debugging --------------------------------------------------------------------

    def to_sql(self) -> str:
        return self.compile_select().sql

    def get_bindings(self) -> List[Any]:
        return list(self.compile_select().bindings)

    def to_raw_sql(self) -> str:
        """SQL with bindings inlined as literals. For logs and debugging only; never execute it."""
        sql, bindings = self.compile_select()
        pieces = sql.split(self._dialect.placeholder)
        rendered = [pieces[0]]
        for value, piece in zip(bindings, pieces[1:]):
            rendered.append(self._dialect.literal(value))
            rendered.append(piece)
        return "".join(rendered)

    # -- terminals --------------------------------------------------------------------

    def _run(self, statement: CompiledStatement) -> ResultSet:
        if self._executor is None:
            raise StatementError("This builder has no executor; it can only render SQL", sql=statement.sql)
        return self._executor.execute(statement.sql, statement.bindings)

    def execute(self) -> ResultSet:
        return self._run(self.compile_select())

    def get(self) -> ResultSet:
        return self.execute()

    def first(self) -> Optional[Row]:
        return self.limit(1).execute().first()

    def first_or_fail(self) -> Row:
        row = self.first()
        if row is None:
            table = self._query.table
            raise RecordNotFoundError(f"No row in '{table}' matches the query", table=table)
        return row

    def value(self, column: str) -> Any:
        row = self.select(column).first()
        if row is None:
            return None
        return next(iter(row.values()))

    def pluck(self, column: str) -> List[Any]:
        return self.select(column).execute().fetch_all_column(0)

    def pluck_keyed(self, value_column: str, key_column: str) -> Dict[Any, Any]:
        if value_column == key_column:
            return {value: value for value in self.pluck(value_column)}
        result = self.select(value_column, key_column).execute()
        return {key: value for value, key in (tuple(row.values()) for row in result)}

    def _aggregate(self, function: str, column: str) -> Any:
        return self._run(self.compile_aggregate(function, column)).value("aggregate")

    def count(self, column: str = "*") -> int:
        return int(self._aggregate("COUNT", column) or 0)

    def sum(self, column: str) -> Any:
        return self._aggregate("SUM", column) or 0

    def avg(self, column: str) -> Any:
        return self._aggregate("AVG", column)

    def min(self, column: str) -> Any:
        return self._aggregate("MIN", column)

    def max(self, column: str) -> Any:
        return self._aggregate("MAX", column)

    def exists(self) -> bool:
        check = replace(self._query, columns=(Selection("1", raw=True),), orders=(), limit=1, offset=None)
        return self._run(self._compile_query(check)).is_not_empty()

    def doesnt_exist(self) -> bool:
        return not self.exists()

    def paginate(self, page: int = 1, per_page: int = 15) -> Page:
        """
        Return one page of rows plus pagination metadata.

        The total comes from a separate COUNT query that keeps every
        where/join clause but ignores limit/offset.
        """
        if page < 1 or per_page < 1:
            raise StatementError(f"Invalid page {page} / per_page {per_page}")
        total = self.count()
        rows = self.for_page(page, per_page).execute().to_list()
        offset = (page - 1) * per_page
        return {
            "data": rows,
            "total": total,
            "per_page": per_page,
            "current_page": page,
            "last_page": math.ceil(total / per_page),
            "from": offset + 1 if rows else None,
            "to": offset + len(rows) if rows else None,
        }

    def insert(self, values: Mapping[str, Any], returning: Optional[str] = "id") -> Any:
        """
        Insert one row and return the generated id.

        Engines with ``RETURNING`` read the id from the ``returning`` column;
        the others report the driver's last-insert id. Pass ``returning=None``
        for tables without such a column: the affected-row count is returned
        when no id is available.
        """
        if not values:
            raise StatementError("insert() needs at least one column")
        use_returning = returning if self._dialect.supports_returning else None
        result = self._run(self.compile_insert(list(values), [tuple(values.values())], use_returning))
        if use_returning:
            return result.value(returning)
        if result.last_insert_id is not None:
            return result.last_insert_id
        return result.affected_rows

    def _aligned_rows(self, rows: Sequence[Mapping[str, Any]]) -> Tuple[List[str], List[Tuple[Any, ...]]]:
        columns = list(rows[0])
        aligned = []
        for row in rows:
            if set(row) != set(columns):
                raise StatementError(f"All rows must share the columns {columns}, got {list(row)}")
            aligned.append(tuple(row[column] for column in columns))
        return columns, aligned

    def insert_many(self, rows: Sequence[Mapping[str, Any]]) -> int:
        if not rows:
            return 0
        columns, aligned = self._aligned_rows(rows)
        return self._run(self.compile_insert(columns, aligned)).affected_rows

    def upsert(
        self,
        rows: Union[Mapping[str, Any], Sequence[Mapping[str, Any]]],
        update_columns: Sequence[str],
        conflict_columns: Sequence[str] = (),
    ) -> int:
        if isinstance(rows, Mapping):
            rows = [rows]
        if not rows:
            return 0
        columns, aligned = self._aligned_rows(rows)
        statement = self.compile_upsert(columns, aligned, update_columns, conflict_columns)
        return self._run(statement).affected_rows

    def update(self, values: Mapping[str, Any]) -> int:
        return self._run(self.compile_update(values)).affected_rows

    def increment(self, column: str, amount: Union[int, float] = 1, extra: Optional[Mapping[str, Any]] = None) -> int:
        return self._run(self.compile_update(extra or {}, {column: amount})).affected_rows

    def decrement(self, column: str, amount: Union[int, float] = 1, extra: Optional[Mapping[str, Any]] = None) -> int:
        return self.increment(column, -amount, extra)

    def delete(self) -> int:
        return self._run(self.compile_delete()).affected_rows

    def truncate(self) -> None:
        self._run(CompiledStatement(self._dialect.truncate_sql(self._table_name(self._require_table())), ()))

    def __repr__(self) -> str:
        try:
            return f"QueryBuilder({self.to_sql()!r})"
        except StatementError:
            return "QueryBuilder(<incomplete>)"


__all__ = [
    "CompiledStatement",
    "Page",
    "Query",
    "QueryBuilder",
    "StatementExecutor",
]
