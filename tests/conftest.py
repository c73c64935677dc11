"""Shared fixtures: in-memory database, settings, and in-process bank and ledger fakes."""

from collections.abc import Callable, Iterator
from datetime import date
from decimal import Decimal

import pytest
from sqlalchemy.orm import sessionmaker

from budget_bridge.core.db import DBHelper, get_engine, init_db, make_session_factory
from budget_bridge.core.models import (
    BankAccount,
    BankTransaction,
    Challenge,
    ImportResult,
    LedgerBudget,
    LedgerCategory,
    LedgerEntry,
    Money,
    Tokens,
)
from budget_bridge.core.settings import Settings
from budget_bridge.engine.duplicates import make_forced_import_id, make_import_id
from budget_bridge.services.auth_session import AuthSessionManager
from budget_bridge.services.rules_service import RulesService
from budget_bridge.services.session_store import SessionStore
from budget_bridge.workers.sync_orchestrator import SyncOrchestrator


class FakeBankClient:
    """Stands in for BankClient; every protocol step succeeds unless an error is set."""

    def __init__(self) -> None:
        self.transactions: list[BankTransaction] = []
        self.start_error: Exception | None = None
        self.activation_error: Exception | None = None
        self.fetch_error: Exception | None = None
        self.calls: list[str] = []

    def obtain_initial_token(self, credentials: object) -> Tokens:
        self.calls.append("token")
        if self.start_error is not None:
            raise self.start_error
        return Tokens(access="base-access", refresh="base-refresh")

    def get_session_id(self, request_info: object, tokens: Tokens) -> str:
        self.calls.append("session")
        return "session-1"

    def request_challenge(self, request_info: object, tokens: Tokens, session_identifier: str) -> Challenge:
        self.calls.append("challenge")
        return Challenge(id="challenge-1", type="P_TAN_PUSH")

    def activate_session(
        self, request_info: object, tokens: Tokens, session_identifier: str, challenge_id: str
    ) -> None:
        self.calls.append("activate")
        if self.activation_error is not None:
            raise self.activation_error

    def upgrade_token(self, credentials: object, tokens: Tokens) -> Tokens:
        self.calls.append("upgrade")
        return Tokens(access="banking-access", refresh="banking-refresh")

    def list_accounts(self, request_info: object, tokens: Tokens) -> list[BankAccount]:
        return [BankAccount(account_id="acc-1", display_id="DE00 1234")]

    def list_transactions(
        self, request_info: object, tokens: Tokens, account_id: str, since_days: int
    ) -> list[BankTransaction]:
        self.calls.append("transactions")
        if self.fetch_error is not None:
            raise self.fetch_error
        return list(self.transactions)


class FakeLedgerClient:
    """Stands in for LedgerClient; remembers import ids like the real ledger does."""

    def __init__(self) -> None:
        self.entries: list[LedgerEntry] = []
        self.categories = [
            LedgerCategory(id="cat-groceries", name="Groceries", group_name="Everyday"),
            LedgerCategory(id="cat-household", name="Household", group_name="Everyday"),
        ]
        self.known_import_ids: set[str] = set()
        self.entries_error: Exception | None = None
        self.submit_error: Exception | None = None
        self.submitted: list[list[str]] = []

    def get_budgets(self) -> list[LedgerBudget]:
        return [LedgerBudget(id="budget-1", name="Household")]

    def get_categories(self, budget_id: str) -> list[LedgerCategory]:
        return list(self.categories)

    def get_recent_entries(self, budget_id: str, account_id: str, since_days: int) -> list[LedgerEntry]:
        if self.entries_error is not None:
            raise self.entries_error
        return list(self.entries)

    def submit_transactions(
        self, budget_id: str, account_id: str, transactions: list, force_new_import_id: bool = False
    ) -> ImportResult:
        if self.submit_error is not None:
            raise self.submit_error
        import_ids = {
            tx.id: make_forced_import_id() if force_new_import_id else make_import_id(tx.id) for tx in transactions
        }
        duplicates = [i for i in import_ids.values() if i in self.known_import_ids]
        self.known_import_ids.update(import_ids.values())
        self.submitted.append([tx.id for tx in transactions])
        return ImportResult(
            created_count=len(import_ids) - len(duplicates), duplicate_import_ids=duplicates, import_ids=import_ids
        )


def build_transaction(
    tx_id: str,
    payee: str | None = "REWE Markt",
    memo: str = "",
    amount: str = "-12.34",
    booking_date: date = date(2024, 3, 10),
    reference: str | None = None,
) -> BankTransaction:
    return BankTransaction(
        id=tx_id,
        booking_date=booking_date,
        amount=Money(amount=Decimal(amount)),
        payee=payee,
        memo=memo,
        reference=reference or tx_id,
    )


@pytest.fixture
def make_tx() -> Callable[..., BankTransaction]:
    """Factory for bank transactions with sensible defaults."""
    return build_transaction


@pytest.fixture
def session_factory() -> Iterator[sessionmaker]:
    """A fresh in-memory SQLite database per test."""
    engine = get_engine("sqlite://")
    init_db(engine)
    yield make_session_factory(engine)
    engine.dispose()


@pytest.fixture
def db(session_factory: sessionmaker) -> DBHelper:
    return DBHelper(session_factory)


@pytest.fixture
def rules_service(session_factory: sessionmaker) -> RulesService:
    return RulesService(session_factory)


@pytest.fixture
def settings() -> Settings:
    """Fully configured settings, ignoring any local .env file."""
    return Settings(
        _env_file=None,
        bank_client_id="client-id",
        bank_client_secret="client-secret",
        bank_username="user",
        bank_password="password",
        bank_account_id="acc-1",
        ledger_token="ledger-token-123",
        ledger_budget_id="budget-1",
        ledger_account_id="ledger-account-1",
        database_url="sqlite://",
    )


@pytest.fixture
def bank() -> FakeBankClient:
    return FakeBankClient()


@pytest.fixture
def ledger() -> FakeLedgerClient:
    return FakeLedgerClient()


@pytest.fixture
def store(db: DBHelper) -> SessionStore:
    return SessionStore(db)


@pytest.fixture
def orchestrator(
    settings: Settings,
    bank: FakeBankClient,
    ledger: FakeLedgerClient,
    rules_service: RulesService,
    store: SessionStore,
) -> SyncOrchestrator:
    """An orchestrator wired to the fakes and the in-memory database."""
    return SyncOrchestrator(
        settings=settings,
        auth=AuthSessionManager(bank, store),
        rules=rules_service,
        store=store,
        ledger=ledger,
    )
