"""Holder for the single auth session and the single active sync session.

The orchestrator owns exactly one store and is the only writer. When a ``DBHelper`` is
given, the auth session is written through so a push-TAN confirmation can be resumed by
another process, and every sync status transition lands in the history table.

After a restart only a sync waiting for the push-TAN confirmation can be resumed: its bank
session is persisted and it holds no transactions yet. Any other unfinished sync lost its
transactions with the process and is marked failed.
"""

from dataclasses import dataclass, field

from budget_bridge.core.db import DBHelper
from budget_bridge.core.models import (
    AuthSession,
    AuthState,
    SyncSession,
    SyncSessionStatus,
    SyncTransaction,
    TransactionStatus,
)
from budget_bridge.core.utils import get_logger, utcnow

logger = get_logger("budget-bridge.store")

INTERRUPTED = "interrupted by restart"


@dataclass
class SyncState:
    """The active sync session and its transactions, keyed by bank transaction id."""

    session: SyncSession
    transactions: dict[str, SyncTransaction] = field(default_factory=dict)

    def refresh_counts(self) -> None:
        """Recompute the session counters from the transactions."""
        txs = self.transactions.values()
        self.session.transaction_count = len(self.transactions)
        self.session.imported_count = sum(1 for tx in txs if tx.status is TransactionStatus.IMPORTED)
        self.session.skipped_count = sum(1 for tx in txs if tx.status is TransactionStatus.SKIPPED)


class SessionStore:
    """In-memory session state with optional write-through persistence."""

    def __init__(self, db: DBHelper | None = None) -> None:
        """Initialize an empty store; persisted state is loaded on first access."""
        self.db = db
        self._auth: AuthSession | None = None
        self._auth_loaded = db is None
        self._sync: SyncState | None = None
        self._sync_loaded = db is None

    @property
    def auth(self) -> AuthSession | None:
        """The current auth session; loaded from the database on first access."""
        if not self._auth_loaded:
            self._auth = self.db.load_auth_session()
            self._auth_loaded = True
        return self._auth

    def set_auth(self, auth_session: AuthSession) -> None:
        self._auth = auth_session
        self._auth_loaded = True
        if self.db is not None:
            self.db.save_auth_session(auth_session, utcnow())

    def clear_auth(self) -> None:
        self._auth = None
        self._auth_loaded = True
        if self.db is not None:
            self.db.delete_auth_session()

    @property
    def sync(self) -> SyncState | None:
        """The active sync; an unfinished one is restored from the database on first access."""
        if not self._sync_loaded:
            self._sync = self._restore_sync()
            self._sync_loaded = True
        return self._sync

    @sync.setter
    def sync(self, state: SyncState | None) -> None:
        self._sync = state
        self._sync_loaded = True

    def save_sync(self) -> None:
        """Persist the current sync session row, if there is one."""
        if self.sync is not None and self.db is not None:
            self.db.save_sync_session(self.sync.session)

    def clear_sync(self) -> None:
        self.sync = None

    def history(self, limit: int = 20) -> list[SyncSession]:
        """Past and current sync sessions, newest first."""
        current = self.sync
        if self.db is not None:
            return self.db.get_sync_history(limit)
        return [current.session] if current is not None else []

    def _restore_sync(self) -> SyncState | None:
        unfinished = self.db.get_unfinished_sync_sessions()
        restored = None
        if unfinished and self._resumable(unfinished[0]):
            restored = SyncState(session=unfinished.pop(0))
            logger.info(f"Resuming sync {restored.session.id} awaiting push-TAN confirmation")
        for session in unfinished:
            logger.warning(f"Sync {session.id} was left in {session.status.value}, marking it failed")
            session.status = SyncSessionStatus.FAILED
            session.completed_at = utcnow()
            session.failure_reason = INTERRUPTED
            self.db.save_sync_session(session)
        return restored

    def _resumable(self, session: SyncSession) -> bool:
        auth = self.auth
        return (
            session.status is SyncSessionStatus.AWAITING_USER_CONFIRMATION
            and auth is not None
            and auth.state is AuthState.CHALLENGE_ISSUED
        )
