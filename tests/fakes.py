from __future__ import annotations

import threading
from datetime import datetime, timezone
from typing import Any


UNIQUE_KEYS: dict[str, list[tuple[str, ...]]] = {
    "processed_events": [("event_id",)],
    "engagement_items": [("platform", "external_id")],
    "inbox_conversations": [("workspace_id", "platform", "conversation_id")],
    "workspace_members": [("workspace_id", "user_id")],
    "posts": [("workspace_id", "ayr_post_id")],
}


def _ts() -> str:
    return datetime.now(timezone.utc).isoformat()


class FakeResponse:
    def __init__(self, data):
        self.data = data


class FakeQuery:
    def __init__(self, table_name: str, db: "FakeSupabase"):
        self.table_name = table_name
        self.db = db
        self.operation = "select"
        self.filters: list[tuple[str, str, Any]] = []
        self.payload: Any = None
        self.on_conflict: str | None = None
        self.ignore_duplicates = False
        self.order_by: tuple[str, bool] | None = None
        self.limit_count: int | None = None

    def select(self, _fields: str = "*"):
        self.operation = "select"
        return self

    def insert(self, payload):
        self.operation = "insert"
        self.payload = payload
        return self

    def update(self, payload: dict):
        self.operation = "update"
        self.payload = payload
        return self

    def upsert(self, payload, on_conflict: str | None = None, ignore_duplicates: bool = False):
        self.operation = "upsert"
        self.payload = payload
        self.on_conflict = on_conflict
        self.ignore_duplicates = ignore_duplicates
        return self

    def delete(self):
        self.operation = "delete"
        return self

    def eq(self, key: str, value):
        self.filters.append(("eq", key, value))
        return self

    def neq(self, key: str, value):
        self.filters.append(("neq", key, value))
        return self

    def is_(self, key: str, value):
        self.filters.append(("is", key, value))
        return self

    def in_(self, key: str, values):
        self.filters.append(("in", key, list(values)))
        return self

    def lt(self, key: str, value):
        self.filters.append(("lt", key, value))
        return self

    def gte(self, key: str, value):
        self.filters.append(("gte", key, value))
        return self

    def order(self, key: str, desc: bool = False):
        self.order_by = (key, desc)
        return self

    def limit(self, count: int):
        self.limit_count = count
        return self

    def _matches(self, row: dict) -> bool:
        for kind, key, value in self.filters:
            current = row.get(key)
            if kind == "eq" and current != value:
                return False
            if kind == "neq" and current == value:
                return False
            if kind == "is" and value == "null" and current is not None:
                return False
            if kind == "in" and current not in value:
                return False
            if kind == "lt" and (current is None or not current < value):
                return False
            if kind == "gte" and (current is None or not current >= value):
                return False
        return True

    def _conflicting(self, table: list[dict], row: dict, columns: tuple[str, ...]) -> dict | None:
        if any(row.get(column) is None for column in columns):
            return None
        for existing in table:
            if all(existing.get(column) == row.get(column) for column in columns):
                return existing
        return None

    def _insert_row(self, table: list[dict], payload: dict) -> dict:
        row = dict(payload)
        for columns in UNIQUE_KEYS.get(self.table_name, []):
            if self._conflicting(table, row, columns) is not None:
                raise Exception("duplicate key value violates unique constraint")
        self.db.sequence += 1
        row.setdefault("id", f"{self.table_name}-{self.db.sequence}")
        row.setdefault("created_at", _ts())
        table.append(row)
        return row

    def execute(self):
        with self.db.lock:
            self.db.calls.append((self.table_name, self.operation, list(self.filters)))
            if self.table_name in self.db.fail_tables:
                raise Exception(f"database unavailable: {self.table_name}")
            table = self.db.tables.setdefault(self.table_name, [])

            if self.operation == "insert":
                payloads = self.payload if isinstance(self.payload, list) else [self.payload]
                return FakeResponse([dict(self._insert_row(table, p)) for p in payloads])

            if self.operation == "upsert":
                columns = tuple(c.strip() for c in (self.on_conflict or "id").split(","))
                written = []
                payloads = self.payload if isinstance(self.payload, list) else [self.payload]
                for payload in payloads:
                    existing = self._conflicting(table, payload, columns)
                    if existing is not None:
                        if self.ignore_duplicates:
                            continue
                        existing.update(payload)
                        written.append(dict(existing))
                    else:
                        written.append(dict(self._insert_row(table, payload)))
                return FakeResponse(written)

            if self.operation == "update":
                updated = []
                for row in table:
                    if self._matches(row):
                        row.update(self.payload or {})
                        updated.append(dict(row))
                return FakeResponse(updated)

            if self.operation == "delete":
                removed = [row for row in table if self._matches(row)]
                self.db.tables[self.table_name] = [row for row in table if not self._matches(row)]
                return FakeResponse([dict(row) for row in removed])

            rows = [dict(row) for row in table if self._matches(row)]
            if self.order_by:
                key, desc = self.order_by
                rows.sort(key=lambda row: str(row.get(key) or ""), reverse=desc)
            if self.limit_count is not None:
                rows = rows[: self.limit_count]
            return FakeResponse(rows)


class FakeSupabase:
    def __init__(self, tables: dict | None = None):
        self.tables: dict[str, list[dict]] = tables or {}
        self.lock = threading.RLock()
        self.calls: list[tuple[str, str, list]] = []
        self.fail_tables: set[str] = set()
        self.sequence = 0

    def table(self, table_name: str):
        return FakeQuery(table_name, self)


class BrokenStore:
    """Key-value store whose every call fails like an unreachable cache."""

    def __init__(self):
        from socialops.kv import KeyValueStoreError

        self._error = KeyValueStoreError

    def get(self, key):
        raise self._error("store down")

    def set(self, key, value, ttl_seconds=None):
        raise self._error("store down")

    def delete(self, key):
        raise self._error("store down")

    def incr(self, key):
        raise self._error("store down")

    def expire(self, key, ttl_seconds):
        raise self._error("store down")

    def ttl(self, key):
        raise self._error("store down")


DB_MODULES = (
    "socialops.workspaces",
    "socialops.ledger",
    "socialops.provisioning",
    "socialops.handlers.billing",
    "socialops.handlers.distribution",
    "socialops.auth.dependencies",
    "socialops.routers.schedule",
    "socialops.routers.analytics",
    "socialops.routers.posts",
    "socialops.routers.webhooks",
    "socialops.routers.internal_provisioning",
    "socialops.routers.internal_observability",
)


def install_fake_db(monkeypatch, fake_db: FakeSupabase) -> FakeSupabase:
    import importlib

    for module_name in DB_MODULES:
        monkeypatch.setattr(importlib.import_module(module_name), "supabase", fake_db)
    return fake_db
