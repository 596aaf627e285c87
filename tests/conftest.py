"""
Pytest fixtures for the dinero test suite.

The remote backend is an in-memory stand-in for the Supabase client:
``FakeSupabase.table(name)`` returns a query builder implementing the
PostgREST calls the repositories make (select / insert / update /
upsert plus the filter, order and range modifiers).  Failures are
injected with :meth:`FakeSupabase.fail`.
"""

from __future__ import annotations

import copy
import os
import re
from datetime import datetime, timedelta, timezone
from decimal import Decimal, InvalidOperation
from types import SimpleNamespace
from typing import Any, Callable, Optional

import pytest
from postgrest.exceptions import APIError

from dinero.auth import SessionManager
from dinero.config import AppConfig
from dinero.database import DatabaseManager
from dinero.logger import StructuredLogger
from dinero.models.auth_models import User
from dinero.models.enums import MemberRole, TransactionType
from dinero.models.transaction import Transaction
from dinero.models.wallet import Wallet, WalletMember
from dinero.schema import initialize_schema
from dinero.services.container import create_services
from dinero.storage.encrypted_store import StoreNamespace
from dinero.utils.general import parse_timestamp

USER_ID = "user-1"
OTHER_USER_ID = "user-2"
T0 = datetime(2026, 1, 1, tzinfo=timezone.utc)


# ---------------------------------------------------------------------------
# Fake Supabase client
# ---------------------------------------------------------------------------


def _coerce(value: Any) -> Any:
    """Make stored JSON values and filter arguments comparable."""
    if isinstance(value, bool) or value is None:
        return value
    if isinstance(value, (int, float, Decimal)):
        return Decimal(str(value))
    if isinstance(value, datetime):
        return value
    if isinstance(value, str):
        if len(value) >= 10 and value[4] == "-" and value[7] == "-":
            parsed = parse_timestamp(value)
            if parsed is not None:
                return parsed
        try:
            return Decimal(value)
        except InvalidOperation:
            return value
    return value


def _sort_key(value: Any) -> tuple:
    coerced = _coerce(value)
    return (coerced is None, coerced if coerced is not None else 0)


class FakeQuery:
    """One chained PostgREST request against a ``FakeSupabase`` table."""

    def __init__(self, client: "FakeSupabase", table: str) -> None:
        self._client = client
        self._table = table
        self._action = "select"
        self._columns = "*"
        self._count: Optional[str] = None
        self._payload: Any = None
        self._filters: list[Callable[[dict], bool]] = []
        self._orders: list[tuple[str, bool]] = []
        self._range: Optional[tuple[int, int]] = None

    # -- actions --------------------------------------------------------

    def select(self, columns: str = "*", count: Optional[str] = None) -> "FakeQuery":
        self._action = "select"
        self._columns = columns
        self._count = count
        return self

    def insert(self, rows: Any) -> "FakeQuery":
        self._action = "insert"
        self._payload = rows
        return self

    def update(self, values: dict) -> "FakeQuery":
        self._action = "update"
        self._payload = values
        return self

    def upsert(self, rows: Any, on_conflict: str = "id") -> "FakeQuery":
        self._action = "upsert"
        self._payload = rows
        return self

    # -- filters --------------------------------------------------------

    def eq(self, column: str, value: Any) -> "FakeQuery":
        self._filters.append(lambda row: row.get(column) == value)
        return self

    def is_(self, column: str, value: str) -> "FakeQuery":
        assert value == "null"
        self._filters.append(lambda row: row.get(column) is None)
        return self

    def in_(self, column: str, values: list) -> "FakeQuery":
        allowed = set(values)
        self._filters.append(lambda row: row.get(column) in allowed)
        return self

    def gt(self, column: str, value: Any) -> "FakeQuery":
        self._filters.append(
            lambda row: row.get(column) is not None and _coerce(row[column]) > _coerce(value)
        )
        return self

    def gte(self, column: str, value: Any) -> "FakeQuery":
        self._filters.append(
            lambda row: row.get(column) is not None and _coerce(row[column]) >= _coerce(value)
        )
        return self

    def lte(self, column: str, value: Any) -> "FakeQuery":
        self._filters.append(
            lambda row: row.get(column) is not None and _coerce(row[column]) <= _coerce(value)
        )
        return self

    def ilike(self, column: str, pattern: str) -> "FakeQuery":
        regex = re.compile(
            "^" + ".*".join(re.escape(part) for part in pattern.split("%")) + "$",
            re.IGNORECASE,
        )
        self._filters.append(lambda row: bool(regex.match(str(row.get(column) or ""))))
        return self

    def contains(self, column: str, values: list) -> "FakeQuery":
        self._filters.append(lambda row: set(values) <= set(row.get(column) or []))
        return self

    def order(self, column: str, desc: bool = False) -> "FakeQuery":
        self._orders.append((column, desc))
        return self

    def range(self, start: int, end: int) -> "FakeQuery":
        self._range = (start, end)
        return self

    # -- execution ------------------------------------------------------

    def _matching(self, rows: list[dict]) -> list[dict]:
        return [row for row in rows if all(f(row) for f in self._filters)]

    def execute(self) -> SimpleNamespace:
        self._client.calls.append((self._table, self._action))
        for hook in list(self._client.before_execute):
            hook(self._table, self._action)
        error = self._client.failures.get(self._table) or self._client.failures.get("*")
        if error is not None:
            raise error

        rows = self._client.tables.setdefault(self._table, [])

        if self._action == "insert":
            new_rows = self._payload if isinstance(self._payload, list) else [self._payload]
            for row in new_rows:
                if any(r["id"] == row["id"] for r in rows):
                    raise APIError({
                        "message": "duplicate key value violates unique constraint",
                        "code": "23505",
                        "details": f"Key (id)=({row['id']}) already exists.",
                        "hint": None,
                    })
                rows.append(copy.deepcopy(row))
            return SimpleNamespace(data=copy.deepcopy(new_rows), count=None)

        if self._action == "upsert":
            new_rows = self._payload if isinstance(self._payload, list) else [self._payload]
            for row in new_rows:
                for i, existing in enumerate(rows):
                    if existing["id"] == row["id"]:
                        rows[i] = {**existing, **copy.deepcopy(row)}
                        break
                else:
                    rows.append(copy.deepcopy(row))
            return SimpleNamespace(data=copy.deepcopy(new_rows), count=None)

        if self._action == "update":
            updated = []
            for row in self._matching(rows):
                row.update(copy.deepcopy(self._payload))
                updated.append(copy.deepcopy(row))
            return SimpleNamespace(data=updated, count=None)

        result = self._matching(rows)
        for column, desc in reversed(self._orders):
            result = sorted(result, key=lambda r: _sort_key(r.get(column)), reverse=desc)
        total = len(result)
        if self._range is not None:
            start, end = self._range
            result = result[start:end + 1]
        if self._columns != "*":
            wanted = [c.strip() for c in self._columns.split(",")]
            result = [{c: r.get(c) for c in wanted} for r in result]
        return SimpleNamespace(
            data=copy.deepcopy(result),
            count=total if self._count == "exact" else None,
        )


class FakeAuth:
    """Stand-in for ``client.auth``: returns canned sessions or raises ``error``."""

    def __init__(self) -> None:
        self.error: Optional[Exception] = None
        self.expires_in = timedelta(hours=1)
        self.signed_out = False
        self.user = SimpleNamespace(
            id=USER_ID,
            email="ana@example.com",
            user_metadata={"full_name": "Ana Souza", "avatar_url": "https://img/ana.png"},
            created_at=T0,
            last_sign_in_at=T0,
        )
        self._counter = 0

    def _session(self) -> SimpleNamespace:
        self._counter += 1
        expires_at = int((datetime.now(timezone.utc) + self.expires_in).timestamp())
        return SimpleNamespace(
            user=self.user,
            access_token=f"access-{self._counter}",
            refresh_token=f"refresh-{self._counter}",
            expires_at=expires_at,
        )

    def _check(self) -> None:
        if self.error is not None:
            raise self.error

    def sign_in_with_id_token(self, credentials: dict) -> SimpleNamespace:
        self._check()
        session = self._session()
        return SimpleNamespace(session=session, user=session.user)

    def refresh_session(self, refresh_token: str) -> SimpleNamespace:
        self._check()
        session = self._session()
        return SimpleNamespace(session=session, user=session.user)

    def sign_out(self) -> None:
        self._check()
        self.signed_out = True

    def get_user(self) -> SimpleNamespace:
        self._check()
        return SimpleNamespace(user=self.user)


class FakeSupabase:
    """In-memory Supabase client: ``tables`` maps table name to row dicts."""

    def __init__(self) -> None:
        self.tables: dict[str, list[dict]] = {"wallets": [], "transactions": []}
        self.failures: dict[str, Exception] = {}
        self.before_execute: list[Callable[[str, str], None]] = []
        self.calls: list[tuple[str, str]] = []
        self.auth = FakeAuth()

    def table(self, name: str) -> FakeQuery:
        return FakeQuery(self, name)

    def fail(self, error: Exception, table: str = "*") -> None:
        """Make every request against *table* raise *error* until :meth:`recover`."""
        self.failures[table] = error

    def recover(self) -> None:
        self.failures.clear()

    def row(self, table: str, record_id: str) -> Optional[dict]:
        return next((r for r in self.tables.get(table, []) if r["id"] == record_id), None)

    def count(self, table: str, action: str) -> int:
        return sum(1 for t, a in self.calls if t == table and a == action)


def api_error(message: str = "permission denied", code: str = "42501") -> APIError:
    return APIError({"message": message, "code": code, "details": None, "hint": None})


# ---------------------------------------------------------------------------
# Clock
# ---------------------------------------------------------------------------


class FakeClock:
    """Controllable UTC clock for ``updated_at`` ordering."""

    def __init__(self, start: datetime = T0) -> None:
        self.now = start

    def __call__(self) -> datetime:
        return self.now

    def advance(self, seconds: float = 1.0) -> datetime:
        self.now = self.now + timedelta(seconds=seconds)
        return self.now


# ---------------------------------------------------------------------------
# Record factories
# ---------------------------------------------------------------------------


def make_wallet(
    wallet_id: str = "wallet-1",
    user_id: str = USER_ID,
    updated_at: datetime = T0,
    **overrides: Any,
) -> Wallet:
    fields: dict[str, Any] = {
        "id": wallet_id,
        "user_id": user_id,
        "name": "Pessoal",
        "created_at": T0,
        "updated_at": updated_at,
        "members": [WalletMember(user_id=user_id, role=MemberRole.OWNER, joined_at=T0)],
    }
    fields.update(overrides)
    return Wallet(**fields)


def make_transaction(
    transaction_id: str = "tx-1",
    wallet_id: str = "wallet-1",
    updated_at: datetime = T0,
    amount: str = "50",
    type: TransactionType = TransactionType.EXPENSE,
    **overrides: Any,
) -> Transaction:
    fields: dict[str, Any] = {
        "id": transaction_id,
        "wallet_id": wallet_id,
        "user_id": USER_ID,
        "amount": Decimal(amount),
        "type": type,
        "category_id": "food",
        "description": "Mercado",
        "date": T0,
        "created_at": T0,
        "updated_at": updated_at,
    }
    fields.update(overrides)
    return Transaction(**fields)


def remote_row(record: Wallet | Transaction) -> dict:
    """A record as the remote table stores it."""
    return record.model_dump(mode="json", exclude={"needs_sync"})


# ---------------------------------------------------------------------------
# Fixtures
# ---------------------------------------------------------------------------


@pytest.fixture(scope="session")
def logger(tmp_path_factory) -> StructuredLogger:
    log_file = tmp_path_factory.mktemp("logs") / "dinero-test.log"
    return StructuredLogger(name="dinero.tests", log_file=str(log_file))


@pytest.fixture
def config(tmp_path) -> AppConfig:
    return AppConfig(
        SUPABASE_URL="",
        LOCAL_DB_PATH=":memory:",
        STORE_SALT_PATH=str(tmp_path / "salt"),
        STORE_KDF_ITERATIONS=1_000,
        LOG_FILE=str(tmp_path / "dinero.log"),
    )


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def fake_supabase() -> FakeSupabase:
    return FakeSupabase()


@pytest.fixture
def db(logger, fake_supabase):
    manager = DatabaseManager(
        supabase_url="",
        supabase_key="",
        sqlite_path=":memory:",
        logger=logger,
        supabase_client=fake_supabase,
    )
    initialize_schema(manager.sqlite, logger)
    yield manager
    manager.close()


@pytest.fixture
def offline_db(logger):
    manager = DatabaseManager(
        supabase_url="",
        supabase_key="",
        sqlite_path=":memory:",
        logger=logger,
    )
    initialize_schema(manager.sqlite, logger)
    yield manager
    manager.close()


@pytest.fixture
def store_keys() -> dict[StoreNamespace, bytes]:
    return {StoreNamespace.MAIN: os.urandom(32), StoreNamespace.SECURE: os.urandom(32)}


@pytest.fixture
def user() -> User:
    return User(id=USER_ID, email="ana@example.com", display_name="Ana Souza")


@pytest.fixture
def session(user) -> SessionManager:
    manager = SessionManager()
    manager.set_current_user(user)
    return manager


@pytest.fixture
def services(db, config, session, logger, store_keys, clock):
    return create_services(
        db=db,
        config=config,
        session=session,
        logger=logger,
        store_keys=store_keys,
        clock=clock,
    )


@pytest.fixture
def wallet_storage(services):
    return services["wallet_storage"]


@pytest.fixture
def transaction_storage(services):
    return services["transaction_storage"]


@pytest.fixture
def rejected_keys(monkeypatch, wallet_storage) -> list[str]:
    """Key prefixes the shared ``main`` store refuses to write.

    Append a prefix (``"transactions:"``, ``"wallets:"``) to make those
    writes fail the way a full disk does; clear the list to recover.
    """
    store = wallet_storage._store
    real_set_json = store.set_json
    prefixes: list[str] = []

    def set_json(key: str, value: Any) -> bool:
        if any(key.startswith(prefix) for prefix in prefixes):
            return False
        return real_set_json(key, value)

    monkeypatch.setattr(store, "set_json", set_json)
    return prefixes


@pytest.fixture
def auth_storage(services):
    return services["auth_storage"]


@pytest.fixture
def wallet_repo(services):
    return services["wallet_repository"]


@pytest.fixture
def transaction_repo(services):
    return services["transaction_repository"]


@pytest.fixture
def sync_service(services):
    return services["sync_service"]


@pytest.fixture
def remote_wallet(fake_supabase) -> Wallet:
    """``wallet-1`` owned by the session user, present on the remote."""
    wallet = make_wallet()
    fake_supabase.tables["wallets"].append(remote_row(wallet))
    return wallet
