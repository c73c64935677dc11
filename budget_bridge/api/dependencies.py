"""FastAPI dependencies for DI (settings, DB, rules store, sync orchestrator).

The orchestrator and the clients it owns are process-wide singletons: there is exactly one
sync in flight per process, and every request must see the same session store. Tests swap
them out through ``app.dependency_overrides``.
"""

from functools import lru_cache

from sqlalchemy.engine import Engine
from sqlalchemy.orm import sessionmaker

from budget_bridge.core.db import DBHelper, get_engine, make_session_factory
from budget_bridge.core.settings import get_settings
from budget_bridge.services.auth_session import AuthSessionManager
from budget_bridge.services.bank_client import BankClient
from budget_bridge.services.ledger_client import LedgerClient
from budget_bridge.services.rules_service import RulesService
from budget_bridge.services.session_store import SessionStore
from budget_bridge.workers.sync_orchestrator import SyncOrchestrator


@lru_cache
def get_db_engine() -> Engine:
    """Provide the SQLAlchemy engine for the configured database URL."""
    return get_engine(get_settings().database_url)


@lru_cache
def get_session_factory() -> sessionmaker:
    return make_session_factory(get_db_engine())


def get_db() -> DBHelper:
    """Provide a database helper for dependency injection."""
    return DBHelper(get_session_factory())


def get_rules_service() -> RulesService:
    """Provide the rule store for dependency injection."""
    return RulesService(get_session_factory())


@lru_cache
def get_orchestrator() -> SyncOrchestrator:
    """Provide the process-wide sync orchestrator."""
    settings = get_settings()
    store = SessionStore(get_db())
    bank = BankClient(settings.bank_base_url, timeout=settings.http_timeout_seconds, page_size=settings.bank_page_size)
    ledger = (
        LedgerClient(settings.ledger_token, settings.ledger_base_url, timeout=settings.http_timeout_seconds)
        if settings.ledger_token
        else None
    )
    return SyncOrchestrator(
        settings=settings,
        auth=AuthSessionManager(bank, store),
        rules=get_rules_service(),
        store=store,
        ledger=ledger,
    )
