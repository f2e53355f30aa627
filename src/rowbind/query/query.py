"""
Immutable, chainable query builder bound to a session.
"""

from __future__ import annotations

from typing import TYPE_CHECKING, Any, Dict, List, Mapping, Optional, Sequence, Tuple

from ..core.schema import resolve_order_components
from ..errors import ParameterError, QueryError
from .tokens import PLACEHOLDER, placeholders, render_tokens

if TYPE_CHECKING:
    from ..core.attributes import AttributeIdentity
    from ..core.model import Model
    from ..persistence.session import Session


COMPARATORS = frozenset({"=", "!=", "<>", "<", "<=", ">", ">=", "like", "ilike", "is", "is not", "in"})
CONJUNCTIVES = {"and": "AND", "or": "OR"}

_NULL_COMPARISONS = {
    "=": "IS NULL",
    "is": "IS NULL",
    "!=": "IS NOT NULL",
    "<>": "IS NOT NULL",
    "is not": "IS NOT NULL",
}

_UNSET: Any = object()


class Query:
    """
    Chainable statement builder over one model.

    Every modifier returns a new query; the original is left untouched.
    Select results are resolved through the session's identity map unless
    explicit ``returning`` columns were requested.
    """

    def __init__(
        self,
        session: "Session",
        model: type["Model"],
        *,
        conditions: Tuple[Any, ...] = (),
        params: Tuple[Any, ...] = (),
        pending_conjunctive: Optional[str] = None,
        ordering: Optional[Tuple[Tuple[str, str], ...]] = None,
        limit: Optional[int] = None,
        returning: Tuple[str, ...] = (),
    ) -> None:
        self.session = session
        self.model = model
        self.schema = model._require_schema()
        self._conditions = conditions
        self._params = params
        self._pending_conjunctive = pending_conjunctive
        self._ordering = ordering
        self._limit = limit
        self._returning = returning

    @property
    def dialect(self):
        return self.session.dialect

    # Modifiers ----------------------------------------------------------------
    def where(self, conditions: Mapping[str, Any], conjunctive: str = "and") -> "Query":
        """
        Add a parenthesised group of conditions.

        Values are either compared for equality or given as a
        ``(comparator, value)`` pair. Successive groups are joined with AND
        unless :meth:`and_` or :meth:`or_` was called in between.
        """
        if not isinstance(conditions, Mapping) or not conditions:
            raise QueryError("where() expects a non-empty mapping of attribute conditions")
        joiner = CONJUNCTIVES.get(str(conjunctive).lower())
        if joiner is None:
            raise QueryError(f"Unknown conjunctive {conjunctive!r}; expected 'and' or 'or'")

        group: List[Any] = []
        params: List[Any] = []
        for name, condition in conditions.items():
            identity = self.schema.attribute(name)
            comparator, value = self._split_condition(name, condition)
            tokens, values = self._condition_tokens(identity, comparator, value)
            if group:
                group.append(joiner)
            group.append(tokens)
            params.extend(values)

        combined: List[Any] = list(self._conditions)
        if combined:
            combined.append(self._pending_conjunctive or "AND")
        combined.append(["(", group, ")"])
        return self._clone(
            conditions=tuple(combined),
            params=self._params + tuple(params),
            pending_conjunctive=None,
        )

    def and_(self) -> "Query":
        return self._conjunctive("AND")

    def or_(self) -> "Query":
        return self._conjunctive("OR")

    def order(self, components: Any) -> "Query":
        if components is None:
            return self._clone(ordering=None)
        if self._ordering is not None:
            raise QueryError("order() was already applied; clear it with order(None) first")
        return self._clone(ordering=resolve_order_components(components, self.schema))

    def limit(self, count: Optional[int]) -> "Query":
        if count is None:
            return self._clone(limit=None)
        if self._limit is not None:
            raise QueryError("limit() was already applied; clear it with limit(None) first")
        if not isinstance(count, int) or isinstance(count, bool) or count < 0:
            raise QueryError(f"limit() expects a non-negative integer, got {count!r}")
        return self._clone(limit=count)

    def returning(self, *columns: str) -> "Query":
        for column in columns:
            self.schema.attribute(column)
        return self._clone(returning=tuple(columns))

    # SQL ----------------------------------------------------------------------
    def to_sql(self) -> Tuple[str, List[Any]]:
        tokens = [
            "SELECT",
            self._column_list(self._returning or tuple(self.schema.attributes)),
            "FROM",
            self._table(),
            self._where_tokens(),
            self._order_tokens(),
            self.dialect.limit_clause(self._limit),
        ]
        return render_tokens(tokens, self.dialect), list(self._params)

    # Execution ----------------------------------------------------------------
    async def all(self) -> List[Any]:
        sql, params = self.to_sql()
        result = await self.session.execute(sql, params)
        if self._returning:
            return [self._project(row) for row in result.rows]
        entities = [self.session.resolve_entity(self.model, row) for row in result.rows]
        return [entity for entity in entities if not self.session.is_scheduled_for_deletion(entity)]

    async def first(self, count: int = 1) -> Any:
        if not isinstance(count, int) or isinstance(count, bool) or count < 1:
            raise ParameterError(f"first() expects a positive integer, got {count!r}")
        results = await self._clone(limit=count).all()
        if count == 1:
            return results[0] if results else None
        return results

    async def insert(self, values: Mapping[str, Any]) -> Any:
        if self._conditions or self._ordering or self._limit is not None:
            raise QueryError("insert() does not accept conditions, order or limit")
        payload = self._payload(values, allow_empty=True)
        rows = await self._insert_rows(payload, self._returning or tuple(self.schema.attributes))
        return self._results(rows)

    async def update(self, values: Mapping[str, Any]) -> List[Any]:
        if self._ordering is not None or self._limit is not None:
            raise QueryError("update() does not accept order or limit")
        payload = self._payload(values, allow_empty=False)
        assignments: List[Any] = []
        for name in payload:
            if assignments:
                assignments.append(",")
            assignments.append([self.dialect.quote_identifier(name), "=", PLACEHOLDER])
        tokens = [
            "UPDATE",
            self._table(),
            "SET",
            assignments,
            self._where_tokens(),
            "RETURNING",
            self._column_list(self._returning or tuple(self.schema.attributes)),
        ]
        params = list(payload.values()) + list(self._params)
        result = await self.session.execute(render_tokens(tokens, self.dialect), params)
        return self._results(result.rows)

    async def delete(self, notify: bool = True) -> List[Any]:
        """
        Delete matching rows. With ``notify`` the session tears down the
        relations of deleted entities it holds and forgets them.
        """
        if self._ordering is not None or self._limit is not None:
            raise QueryError("delete() does not accept order or limit")
        pk = self.schema.pk_attribute
        columns = self._returning or tuple(self.schema.attributes)
        if notify and pk not in columns:
            columns = columns + (pk,)
        tokens = ["DELETE FROM", self._table(), self._where_tokens(), "RETURNING", self._column_list(columns)]
        result = await self.session.execute(render_tokens(tokens, self.dialect), list(self._params))
        entities = self.session._handle_store_deletion(self.model, result.rows, notify=notify)
        if self._returning:
            return [self._project(row) for row in result.rows]
        return entities

    async def _insert_rows(self, payload: Mapping[str, Any], returning: Sequence[str]) -> List[Mapping[str, Any]]:
        if payload:
            body: List[Any] = [
                "(",
                self._column_list(tuple(payload)),
                ")",
                "VALUES",
                "(",
                placeholders(len(payload)),
                ")",
            ]
        else:
            body = ["DEFAULT VALUES"]
        tokens = ["INSERT INTO", self._table(), body, returning and ["RETURNING", self._column_list(tuple(returning))]]
        result = await self.session.execute(render_tokens(tokens, self.dialect), list(payload.values()))
        return result.rows

    # Helpers ------------------------------------------------------------------
    def _clone(self, **overrides: Any) -> "Query":
        params = {
            "conditions": overrides.get("conditions", self._conditions),
            "params": overrides.get("params", self._params),
            "pending_conjunctive": overrides.get("pending_conjunctive", self._pending_conjunctive),
            "ordering": overrides.get("ordering", _UNSET),
            "limit": overrides.get("limit", _UNSET),
            "returning": overrides.get("returning", self._returning),
        }
        if params["ordering"] is _UNSET:
            params["ordering"] = self._ordering
        if params["limit"] is _UNSET:
            params["limit"] = self._limit
        return Query(self.session, self.model, **params)

    def _conjunctive(self, keyword: str) -> "Query":
        if not self._conditions:
            raise QueryError(f"{keyword.lower()}_() must follow a where() call")
        return self._clone(pending_conjunctive=keyword)

    @staticmethod
    def _split_condition(name: str, condition: Any) -> Tuple[str, Any]:
        if isinstance(condition, (list, tuple)):
            if len(condition) != 2 or not isinstance(condition[0], str):
                raise QueryError(f"Condition for '{name}' must be a (comparator, value) pair, got {condition!r}")
            comparator = condition[0].strip().lower()
            if comparator not in COMPARATORS:
                raise QueryError(f"Unknown comparator {condition[0]!r} for '{name}'")
            return comparator, condition[1]
        return "=", condition

    def _condition_tokens(
        self, identity: "AttributeIdentity", comparator: str, value: Any
    ) -> Tuple[List[Any], List[Any]]:
        column = self.dialect.quote_identifier(identity.name)
        attribute_type = identity.type
        if value is None:
            null_sql = _NULL_COMPARISONS.get(comparator)
            if null_sql is None:
                raise QueryError(f"Comparator '{comparator}' cannot be used with null on '{identity.name}'")
            return [column, null_sql], []
        if comparator == "in":
            if isinstance(value, (str, bytes)) or not isinstance(value, (list, tuple, set, frozenset)) or not value:
                raise QueryError(f"'in' on '{identity.name}' expects a non-empty sequence")
            values = []
            for item in value:
                identity.context_aware_validate_or_die(item)
                values.append(attribute_type.to_storage(item))
            return [column, "IN", "(", placeholders(len(values)), ")"], values
        if comparator in ("like", "ilike"):
            if not isinstance(value, str):
                raise QueryError(f"'{comparator}' on '{identity.name}' expects a string pattern")
            return [column, self.dialect.comparator_sql(comparator), PLACEHOLDER], [value]
        identity.context_aware_validate_or_die(value)
        return [column, self.dialect.comparator_sql(comparator), PLACEHOLDER], [attribute_type.to_storage(value)]

    def _payload(self, values: Mapping[str, Any], *, allow_empty: bool) -> Dict[str, Any]:
        if not isinstance(values, Mapping):
            raise QueryError(f"Expected a mapping of attribute values, got {type(values).__name__}")
        if not values and not allow_empty:
            raise QueryError("update() expects at least one attribute value")
        payload: Dict[str, Any] = {}
        for name, value in values.items():
            if not self.schema.has_attribute(name):
                raise QueryError(f"Unknown attribute '{name}' in payload for {self.schema.collection}")
            identity = self.schema.attribute(name)
            identity.context_aware_validate_or_die(value)
            payload[name] = identity.type.to_storage(value)
        return payload

    def _results(self, rows: Sequence[Mapping[str, Any]]) -> List[Any]:
        if self._returning:
            return [self._project(row) for row in rows]
        return [self.session.resolve_entity(self.model, row) for row in rows]

    def _project(self, row: Mapping[str, Any]) -> Dict[str, Any]:
        return {
            column: self.schema.attribute(column).type.from_storage(row[column]) for column in self._returning
        }

    def _table(self) -> str:
        return self.dialect.format_table(self.schema.collection)

    def _column_list(self, columns: Sequence[str]) -> str:
        return ", ".join(self.dialect.quote_identifier(column) for column in columns)

    def _where_tokens(self) -> Optional[List[Any]]:
        if not self._conditions:
            return None
        return ["WHERE", list(self._conditions)]

    def _order_tokens(self) -> Optional[List[Any]]:
        if not self._ordering:
            return None
        parts = ", ".join(
            f"{self.dialect.quote_identifier(name)} {direction.upper()}" for name, direction in self._ordering
        )
        return ["ORDER BY", parts]

    def __repr__(self) -> str:
        sql, params = self.to_sql()
        return f"<Query {sql} {params!r}>"
