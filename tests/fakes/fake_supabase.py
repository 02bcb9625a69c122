"""In-memory stand-in for the Supabase client's query builder.

Supports the subset of the PostgREST builder the db layer uses: select
(with ``count="exact"``), insert, update, delete, eq, in_, is_, order,
limit, range, maybe_single and execute. Rows are copied in and out so
callers cannot mutate stored state by accident.
"""

import copy
from datetime import datetime, timedelta, timezone
from typing import Any
from uuid import uuid4

_EPOCH = datetime(2026, 1, 1, tzinfo=timezone.utc)


class FakeResponse:
    def __init__(self, data: Any, count: int | None = None):
        self.data = data
        self.count = count


class FakeQuery:
    def __init__(self, db: "FakeSupabase", table: str):
        self.db = db
        self.table_name = table
        self.op = "select"
        self.columns = "*"
        self.count_mode: str | None = None
        self.payload: Any = None
        self.filters: list = []
        self.orders: list[tuple[str, bool]] = []
        self.limit_n: int | None = None
        self.offset = 0
        self.single = False

    # Operations

    def select(self, columns: str = "*", count: str | None = None) -> "FakeQuery":
        self.op = "select"
        self.columns = columns
        self.count_mode = count
        return self

    def insert(self, data: dict | list[dict]) -> "FakeQuery":
        self.op = "insert"
        self.payload = data
        return self

    def update(self, patch: dict) -> "FakeQuery":
        self.op = "update"
        self.payload = patch
        return self

    def delete(self) -> "FakeQuery":
        self.op = "delete"
        return self

    # Filters and modifiers

    def eq(self, column: str, value: Any) -> "FakeQuery":
        self.filters.append(lambda row: row.get(column) == value)
        return self

    def in_(self, column: str, values: list) -> "FakeQuery":
        allowed = list(values)
        self.filters.append(lambda row: row.get(column) in allowed)
        return self

    def is_(self, column: str, value: str) -> "FakeQuery":
        if value != "null":
            raise ValueError(f"FakeQuery.is_ only supports 'null', got {value}")
        self.filters.append(lambda row: row.get(column) is None)
        return self

    def order(self, column: str, desc: bool = False) -> "FakeQuery":
        self.orders.append((column, desc))
        return self

    def limit(self, n: int) -> "FakeQuery":
        self.limit_n = n
        return self

    def range(self, start: int, end: int) -> "FakeQuery":
        self.offset = start
        self.limit_n = end - start + 1
        return self

    def maybe_single(self) -> "FakeQuery":
        self.single = True
        return self

    # Execution

    def _matches(self, row: dict) -> bool:
        return all(f(row) for f in self.filters)

    def _project(self, row: dict) -> dict:
        if self.columns.strip() == "*":
            return copy.deepcopy(row)
        keys = [c.strip() for c in self.columns.split(",")]
        return {k: copy.deepcopy(row.get(k)) for k in keys}

    def _sorted(self, rows: list[dict]) -> list[dict]:
        # Insertion sequence breaks ties; later rows come first when descending
        for column, desc in reversed(self.orders or [("_seq", False)]):
            present = [r for r in rows if r.get(column) is not None]
            missing = [r for r in rows if r.get(column) is None]
            present.sort(key=lambda r: (r[column], r["_seq"]), reverse=desc)
            rows = present + missing
        return rows

    def execute(self) -> FakeResponse | None:
        self.db.calls.append((self.table_name, self.op))
        if (self.table_name, self.op) in self.db.fail_on:
            raise RuntimeError(f"injected failure: {self.op} on {self.table_name}")

        store = self.db.tables.setdefault(self.table_name, [])

        if self.op == "insert":
            items = self.payload if isinstance(self.payload, list) else [self.payload]
            inserted = [self.db._new_row(item) for item in items]
            store.extend(inserted)
            return FakeResponse([self._strip(r) for r in inserted])

        matched = [r for r in store if self._matches(r)]

        if self.op == "update":
            for row in matched:
                row.update(copy.deepcopy(self.payload))
            return FakeResponse([self._strip(r) for r in matched])

        if self.op == "delete":
            self.db.tables[self.table_name] = [r for r in store if not self._matches(r)]
            return FakeResponse([self._strip(r) for r in matched])

        rows = self._sorted(matched)
        total = len(rows)
        rows = rows[self.offset:]
        if self.limit_n is not None:
            rows = rows[: self.limit_n]
        data = [self._strip(self._project(r)) for r in rows]

        if self.single:
            return FakeResponse(data[0]) if data else None
        return FakeResponse(data, total if self.count_mode == "exact" else None)

    @staticmethod
    def _strip(row: dict) -> dict:
        return {k: copy.deepcopy(v) for k, v in row.items() if k != "_seq"}


class FakeSupabase:
    """Tables are plain lists of dicts, inspectable from tests via ``rows``."""

    def __init__(self):
        self.tables: dict[str, list[dict]] = {}
        self.calls: list[tuple[str, str]] = []
        self.fail_on: set[tuple[str, str]] = set()
        self._seq = 0

    def _new_row(self, item: dict) -> dict:
        self._seq += 1
        row = copy.deepcopy(item)
        row.setdefault("id", str(uuid4()))
        row.setdefault("created_at", (_EPOCH + timedelta(seconds=self._seq)).isoformat())
        row["_seq"] = self._seq
        return row

    def table(self, name: str) -> FakeQuery:
        return FakeQuery(self, name)

    def rows(self, table: str, **filters: Any) -> list[dict]:
        return [
            FakeQuery._strip(r)
            for r in self.tables.get(table, [])
            if all(r.get(k) == v for k, v in filters.items())
        ]
