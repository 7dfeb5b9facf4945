"""
Shared fixtures: an in-memory backend, a realtime feed driven by the test, and config helpers.

Run with: pytest -v
"""
import copy
import itertools
import logging
from typing import Any

import pytest

from shared.clients.backend.models.Query import QueryFilter, TableQuery
from shared.clients.realtime.RealtimeClientInterface import RealtimeClientInterface
from shared.clients.realtime.models.ChangeEvent import ChangeEvent, Subscription
from shared.helper.HelperConfig import HelperConfig
from shared.logging.logging_setup import ColorLogger
from shared.models.config import EnvConfig
from shared.models.errors import AuthorizationError, BackendError, UniqueViolationError, UNIQUE_VIOLATION_CODE
from shared.models.session import AppSession

ORG_ID = "org-1"
OTHER_ORG_ID = "org-2"
USER_ID = "user-1"
TOKEN = "token-1"


def make_helper_config(env: dict | None = None) -> HelperConfig:
    return HelperConfig(logger=ColorLogger(logging.getLogger("parts_desk.tests")), env=env or {})


def _lookup(row: dict, column: str) -> Any:
    value: Any = row
    for key in column.split("."):
        if isinstance(value, list):
            value = value[0] if value else None
        value = value.get(key) if isinstance(value, dict) else None
    return value


def _matches(row: dict, query_filter: QueryFilter) -> bool:
    value = _lookup(row, query_filter.column)
    op = query_filter.operator
    if op == "in":
        return value in query_filter.value
    if query_filter.value is None or op == "is":
        return value is None
    if op == "eq":
        return value == query_filter.value
    if op == "neq":
        return value != query_filter.value
    raise AssertionError(f"operator {op} not supported by the fake backend")


class FakeBackendClient:
    """
    In-memory stand-in for a BackendClient: tables are lists of row dicts.

    Embedded resources (``document_parts.parts``) are stored pre-joined on the
    row. Every call is recorded in ``calls`` as ``(method, table, payload)``.
    """

    def __init__(self, tables: dict[str, list[dict]] | None = None) -> None:
        self.tables: dict[str, list[dict]] = {name: [dict(r) for r in rows] for name, rows in (tables or {}).items()}
        self.calls: list[tuple[str, str, Any]] = []
        self.unique_keys: dict[str, tuple[str, ...]] = {}
        self.failures: dict[tuple[str, str], BackendError] = {}
        self.rpc_results: dict[str, Any] = {}
        self.function_results: dict[str, Any] = {}
        self.users: dict[str, dict] = {}
        self.objects: dict[tuple[str, str], bytes] = {}
        self._ids = itertools.count(1)

    ############### TEST HELPERS ###############

    def fail_on(self, method: str, table: str, error: BackendError | None = None) -> None:
        self.failures[(method, table)] = error or BackendError(f"{method} on {table} failed", status_code=500)

    def calls_of(self, method: str, table: str | None = None) -> list[tuple[str, str, Any]]:
        return [c for c in self.calls if c[0] == method and (table is None or c[1] == table)]

    def rows(self, table: str) -> list[dict]:
        return self.tables.setdefault(table, [])

    def _record(self, method: str, table: str, payload: Any) -> None:
        self.calls.append((method, table, payload))
        error = self.failures.get((method, table))
        if error is not None:
            raise error

    def _filter(self, query: TableQuery) -> list[dict]:
        return [row for row in self.rows(query.table) if all(_matches(row, f) for f in query.filters)]

    ############### READS ###############

    async def do_select(self, query: TableQuery, access_token: str | None = None) -> list[dict]:
        self._record("select", query.table, query)
        rows = self._filter(query)
        for order in reversed(query.order):
            column = f"{order.foreign_table}.{order.column}" if order.foreign_table else order.column
            rows.sort(key=lambda r: (_lookup(r, column) is not None, _lookup(r, column) or ""), reverse=not order.ascending)
        start = query.offset or 0
        end = start + query.limit if query.limit is not None else None
        return copy.deepcopy(rows[start:end])

    async def do_select_single(self, query: TableQuery, access_token: str | None = None) -> dict | None:
        query.limit = 1
        rows = await self.do_select(query, access_token=access_token)
        return rows[0] if rows else None

    async def do_count(self, query: TableQuery, access_token: str | None = None) -> int:
        self._record("count", query.table, query)
        return len(self._filter(query))

    ############### WRITES ###############

    async def do_insert(self, table: str, rows: dict | list[dict], access_token: str | None = None, returning: bool = True) -> list[dict]:
        rows = [rows] if isinstance(rows, dict) else rows
        self._record("insert", table, rows)
        keys = self.unique_keys.get(table)
        if keys:
            existing = {tuple(r.get(k) for k in keys) for r in self.rows(table)}
            for row in rows:
                if tuple(row.get(k) for k in keys) in existing:
                    raise UniqueViolationError("duplicate key value violates unique constraint", code=UNIQUE_VIOLATION_CODE, status_code=409)
        created = []
        for row in rows:
            stored = {"id": f"{table}-{next(self._ids)}", **row}
            self.rows(table).append(stored)
            created.append(copy.deepcopy(stored))
        return created if returning else []

    async def do_upsert(self, table: str, rows: dict | list[dict], on_conflict: str, access_token: str | None = None) -> list[dict]:
        rows = [rows] if isinstance(rows, dict) else rows
        self._record("upsert", table, rows)
        result = []
        for row in rows:
            current = next((r for r in self.rows(table) if r.get(on_conflict) == row.get(on_conflict)), None)
            if current is None:
                current = dict(row)
                self.rows(table).append(current)
            else:
                current.update(row)
            result.append(copy.deepcopy(current))
        return result

    async def do_update(self, query: TableQuery, patch: dict, access_token: str | None = None, returning: bool = True) -> list[dict]:
        if not query.filters:
            raise ValueError("refusing to update without filters")
        self._record("update", query.table, (query, patch))
        updated = []
        for row in self._filter(query):
            row.update(patch)
            updated.append(copy.deepcopy(row))
        return updated if returning else []

    async def do_delete(self, query: TableQuery, access_token: str | None = None) -> None:
        if not query.filters:
            raise ValueError("refusing to delete without filters")
        self._record("delete", query.table, query)
        doomed = self._filter(query)
        self.tables[query.table] = [r for r in self.rows(query.table) if not any(r is d for d in doomed)]

    ############### RPC / FUNCTIONS / STORAGE / AUTH ###############

    async def do_rpc(self, function_name: str, params: dict, access_token: str | None = None) -> Any:
        self._record("rpc", function_name, params)
        result = self.rpc_results.get(function_name)
        return result(params) if callable(result) else copy.deepcopy(result)

    async def do_invoke_function(self, function_name: str, body: dict, access_token: str | None) -> dict:
        if not access_token:
            raise AuthorizationError("Unauthorized", status_code=401)
        self._record("function", function_name, body)
        return copy.deepcopy(self.function_results.get(function_name) or {})

    async def do_create_signed_url(self, bucket: str, key: str, expires_in: int = 60, access_token: str | None = None) -> str:
        self._record("sign", bucket, (key, expires_in))
        return f"https://storage.test/{bucket}/{key}?expires={expires_in}"

    async def do_upload_object(self, bucket: str, key: str, content: bytes, content_type: str = "application/octet-stream", upsert: bool = False, access_token: str | None = None) -> str:
        self._record("upload", bucket, (key, upsert))
        if (bucket, key) in self.objects and not upsert:
            raise BackendError("The resource already exists", status_code=409)
        self.objects[(bucket, key)] = content
        return key

    async def do_fetch_user(self, access_token: str) -> dict:
        user = self.users.get(access_token)
        if user is None:
            raise AuthorizationError("Unauthorized", status_code=401)
        return copy.deepcopy(user)


class FakeRealtimeClient(RealtimeClientInterface):
    """Realtime engine without a transport; tests push changes with ``emit``."""

    def __init__(self, helper_config: HelperConfig):
        super().__init__(helper_config=helper_config)
        self.joined: list[Subscription] = []
        self.left: list[Subscription] = []

    def _get_engine_name(self) -> str:
        return "Fake"

    def _get_required_config(self) -> list[EnvConfig]:
        return []

    def _get_auth_header(self, access_token: str | None = None) -> dict:
        return {}

    def _get_base_url(self) -> str:
        return "http://realtime.test"

    def _get_endpoint_healthcheck(self) -> str:
        return "/"

    async def _do_join(self, subscription: Subscription) -> None:
        subscription.joined = True
        self.joined.append(subscription)

    async def _do_leave(self, subscription: Subscription) -> None:
        self.left.append(subscription)

    async def _do_disconnect(self) -> None:
        pass

    async def emit(self, table: str, event_type: str, record: dict | None = None, old_record: dict | None = None) -> None:
        """Deliver a change to every subscription the server-side org filter would let it through."""
        event = ChangeEvent(table=table, event_type=event_type, record=record or {}, old_record=old_record or {})
        for subscription in list(self._subscriptions.values()):
            if subscription.table == table and event.org_id in (None, subscription.org_id):
                await self.do_dispatch(subscription.topic, event)


############### ROW BUILDERS ###############

def document_row(doc_id: str, status: str = "success", org_id: str = ORG_ID, created_at: str = "2025-01-01T00:00:00+00:00", **extra) -> dict:
    return {"id": doc_id, "org_id": org_id, "file_name": f"{doc_id}.pdf", "last_status": status, "created_at": created_at, **extra}


def part_row(part_id: str, org_id: str = ORG_ID, last_updated: str = "2025-01-01T00:00:00+00:00", **extra) -> dict:
    return {"id": part_id, "org_id": org_id, "last_updated": last_updated, "created_at": last_updated, **extra}


def document_parts_row(part: dict, document: dict) -> dict:
    """A ``document_parts`` link row with both sides embedded, as the select returns it."""
    return {
        "id": f"dp-{part['id']}",
        "org_id": part["org_id"],
        "part_id": part["id"],
        "document_id": document["id"],
        "parts": dict(part),
        "documents": {k: document[k] for k in ("id", "file_name", "last_status", "created_at")},
    }


@pytest.fixture
def helper_config() -> HelperConfig:
    return make_helper_config({"PARTS_PAGE_SIZE": "50"})


@pytest.fixture
def backend() -> FakeBackendClient:
    return FakeBackendClient()


@pytest.fixture
def realtime(helper_config) -> FakeRealtimeClient:
    return FakeRealtimeClient(helper_config)


@pytest.fixture
def session() -> AppSession:
    return AppSession(user_id=USER_ID, org_id=ORG_ID, access_token=TOKEN, role="owner", email="ada@example.com")
