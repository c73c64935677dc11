"""Sync orchestration: bank auth, fetch, classify, duplicate check, review and import.

    awaiting_bank_auth -> awaiting_user_confirmation -> fetching_transactions
        -> reviewing_transactions <-> importing -> completed
    (any step) -> failed(reason)

There is exactly one orchestrator per process and at most one non-terminal sync session.
Every status transition is written to the sync history table.
"""

from collections.abc import Callable, Iterator
from contextlib import contextmanager
from datetime import datetime
from decimal import Decimal

from budget_bridge.core.errors import (
    BankAuthFailedError,
    BankError,
    ChallengeExpiredError,
    ConfirmationTimeoutError,
    InvalidSessionStateError,
    InvalidSplitError,
    InvalidTransactionStateError,
    LedgerError,
    LedgerImportFailedError,
    RuleCompilationError,
    SessionNotFoundError,
    SyncAlreadyActiveError,
    TransactionFetchFailedError,
    TransactionNotFoundError,
)
from budget_bridge.core.models import (
    BankTransaction,
    Challenge,
    ConfirmedDuplicate,
    ImportResult,
    LedgerBudget,
    LedgerCategory,
    LedgerEntry,
    LedgerImported,
    RejectedByLedger,
    SyncSession,
    SyncSessionStatus,
    SyncTransaction,
    TransactionSplit,
    TransactionStatus,
)
from budget_bridge.core.settings import Settings
from budget_bridge.core.utils import get_logger, utcnow
from budget_bridge.engine.duplicates import DuplicateMatchConfig, count_duplicates, mark_duplicates
from budget_bridge.engine.rules import classify_transactions
from budget_bridge.services.auth_session import AuthSessionManager
from budget_bridge.services.ledger_client import MIN_SPLITS, LedgerClient
from budget_bridge.services.rules_service import RulesService
from budget_bridge.services.session_store import SessionStore, SyncState

logger = get_logger("budget-bridge.sync")

CANCELLED = "cancelled"
DONE = (TransactionStatus.SKIPPED, TransactionStatus.IMPORTED)


class SyncOrchestrator:
    """Drives one sync session at a time through its lifecycle."""

    def __init__(
        self,
        settings: Settings,
        auth: AuthSessionManager,
        rules: RulesService,
        store: SessionStore,
        ledger: LedgerClient | None = None,
        clock: Callable[[], datetime] = utcnow,
    ) -> None:
        """Initialize the orchestrator with its collaborators.

        ``ledger`` may be None when no ledger is configured; duplicate detection is then
        skipped and imports fail.
        """
        self.settings = settings
        self.auth = auth
        self.rules = rules
        self.store = store
        self.ledger = ledger
        self.clock = clock
        self.match_config = DuplicateMatchConfig(date_tolerance_days=settings.duplicate_date_tolerance_days)
        self._categories: dict[str, LedgerCategory] | None = None

    # --- lifecycle ---

    def start_sync(self) -> tuple[SyncSession, Challenge]:
        """Open a new session and trigger the push-TAN challenge."""
        current = self.store.sync
        if current is not None and not current.session.status.is_terminal:
            raise SyncAlreadyActiveError(current.session.status.value)
        credentials = self.settings.bank_credentials
        if credentials is None:
            msg = "Bank credentials are not configured"
            raise BankAuthFailedError(msg)

        self.store.sync = SyncState(session=SyncSession(started_at=self.clock()))
        self._categories = None
        self.store.save_sync()
        logger.info(f"Sync {self.store.sync.session.id} started")
        with self._failing_on_error():
            try:
                challenge = self.auth.start_auth(credentials)
            except BankError as exc:
                self._fail(exc.message)
                raise BankAuthFailedError(exc.message) from exc
            self._transition(SyncSessionStatus.AWAITING_USER_CONFIRMATION)
        return self.store.sync.session, challenge

    def confirm_challenge(self) -> SyncSession:
        """Finish bank auth after the user confirmed, then fetch and prepare the review."""
        self._require(SyncSessionStatus.AWAITING_USER_CONFIRMATION)
        with self._failing_on_error():
            try:
                self.auth.confirm_challenge(self.settings.bank_credentials)
            except ChallengeExpiredError as exc:
                self._fail(exc.message)
                raise ConfirmationTimeoutError(exc.message) from exc
            except (BankError, InvalidSessionStateError) as exc:
                self._fail(exc.message)
                raise BankAuthFailedError(exc.message) from exc

            self._transition(SyncSessionStatus.FETCHING_TRANSACTIONS)
            bank_transactions = self._fetch()
            try:
                transactions = classify_transactions(self.rules.list_rules(), bank_transactions)
            except RuleCompilationError as exc:
                self._fail(exc.message)
                raise

            entries = self._recent_ledger_entries()
            if entries is not None:
                transactions = mark_duplicates(entries, transactions, self.match_config)
                counts = count_duplicates(transactions)
                logger.info(
                    f"Duplicate check: {counts['confirmed']} confirmed, {counts['possible']} possible, "
                    f"{counts['none']} new"
                )
            for tx in transactions:
                if isinstance(tx.duplicate_status, ConfirmedDuplicate):
                    tx.status = TransactionStatus.SKIPPED

            state = self.store.sync
            state.transactions = {tx.id: tx for tx in transactions}
            self._transition(SyncSessionStatus.REVIEWING_TRANSACTIONS)
        return state.session

    def cancel(self) -> None:
        """Abandon the current session and the bank session; safe to call at any time."""
        state = self.store.sync
        if state is not None and not state.session.status.is_terminal:
            self._fail(CANCELLED)
        self.auth.clear()
        self.store.clear_sync()
        self._categories = None

    # --- review ---

    def categorize(
        self, tx_id: str, category_id: str | None, payee_override: str | None = None
    ) -> SyncTransaction:
        """Set or clear a transaction's category by hand."""
        tx = self._reviewable(tx_id)
        tx.category_id = category_id
        tx.splits = None
        tx.category_name = self._category_name(category_id) if category_id else None
        if payee_override is not None:
            tx.payee_override = payee_override or None
        tx.status = TransactionStatus.MANUAL_CATEGORIZED if category_id else TransactionStatus.PENDING
        self._touch()
        return tx

    def bulk_categorize(self, tx_ids: list[str], category_id: str) -> list[SyncTransaction]:
        """Apply one category to several transactions; nothing changes if any id is invalid."""
        targets = [self._reviewable(tx_id) for tx_id in tx_ids]
        category_name = self._category_name(category_id)
        for tx in targets:
            tx.category_id = category_id
            tx.category_name = category_name
            tx.splits = None
            tx.status = TransactionStatus.MANUAL_CATEGORIZED
        self._touch()
        return targets

    def skip(self, tx_id: str) -> SyncTransaction:
        tx = self._reviewable(tx_id)
        tx.status = TransactionStatus.SKIPPED
        self._touch()
        return tx

    def unskip(self, tx_id: str) -> SyncTransaction:
        """Bring a skipped transaction back into the review."""
        tx = self._reviewable(tx_id)
        if tx.status is not TransactionStatus.SKIPPED:
            msg = f"Transaction '{tx_id}' is not skipped"
            raise InvalidTransactionStateError(msg)
        tx.status = TransactionStatus.MANUAL_CATEGORIZED if _has_category(tx) else TransactionStatus.PENDING
        self._touch()
        return tx

    def split(self, tx_id: str, splits: list[TransactionSplit]) -> SyncTransaction:
        """Divide a transaction across categories; the parts must add up to its amount."""
        tx = self._reviewable(tx_id)
        validate_splits(tx.transaction, splits)
        tx.splits = [
            s if s.category_name else s.model_copy(update={"category_name": self._category_name(s.category_id) or ""})
            for s in splits
        ]
        tx.category_id = None
        tx.category_name = None
        tx.status = TransactionStatus.MANUAL_CATEGORIZED
        self._touch()
        return tx

    def clear_split(self, tx_id: str) -> SyncTransaction:
        tx = self._reviewable(tx_id)
        tx.splits = None
        if tx.status is not TransactionStatus.SKIPPED:
            tx.status = TransactionStatus.MANUAL_CATEGORIZED if tx.category_id else TransactionStatus.PENDING
        self._touch()
        return tx

    def set_note(self, tx_id: str, note: str | None) -> SyncTransaction:
        tx = self._reviewable(tx_id)
        tx.user_notes = note or None
        self._touch()
        return tx

    # --- import ---

    def import_transactions(self) -> ImportResult:
        """Submit every transaction that is neither skipped nor imported."""
        return self._submit(force_new_import_id=False, tx_ids=None)

    def force_import(self, tx_ids: list[str] | None = None) -> ImportResult:
        """Re-submit with fresh import ids, bypassing the ledger's duplicate guard."""
        return self._submit(force_new_import_id=True, tx_ids=tx_ids)

    def _submit(self, force_new_import_id: bool, tx_ids: list[str] | None) -> ImportResult:
        state = self._require(SyncSessionStatus.REVIEWING_TRANSACTIONS)
        if self.ledger is None or not self.settings.ledger_configured:
            msg = "Ledger token, budget and account must be configured before importing"
            raise LedgerImportFailedError(0, msg)
        if tx_ids is not None:
            for tx_id in tx_ids:
                if tx_id not in state.transactions:
                    raise TransactionNotFoundError(tx_id)
        selected = [
            tx
            for tx in state.transactions.values()
            if tx.status not in DONE and (tx_ids is None or tx.id in tx_ids)
        ]

        self._transition(SyncSessionStatus.IMPORTING)
        try:
            result = self.ledger.submit_transactions(
                self.settings.ledger_budget_id,
                self.settings.ledger_account_id,
                selected,
                force_new_import_id=force_new_import_id,
            )
        except LedgerError as exc:
            logger.warning(f"Import of {len(selected)} transactions failed: {exc.message}")
            self._transition(SyncSessionStatus.REVIEWING_TRANSACTIONS)
            raise LedgerImportFailedError(len(selected), exc.message) from exc
        except Exception:
            logger.exception(f"Import of {len(selected)} transactions failed unexpectedly")
            self._transition(SyncSessionStatus.REVIEWING_TRANSACTIONS)
            raise

        rejected = set(result.duplicate_import_ids)
        for tx in selected:
            tx.import_id = result.import_ids.get(tx.id)
            if tx.import_id in rejected:
                tx.import_status = RejectedByLedger(
                    reason="The ledger already holds a transaction with this import id", import_id=tx.import_id
                )
            else:
                tx.status = TransactionStatus.IMPORTED
                tx.import_status = LedgerImported()

        outstanding = [tx for tx in state.transactions.values() if tx.status not in DONE]
        logger.info(
            f"Imported {result.created_count} transactions, {len(rejected)} rejected as duplicates, "
            f"{len(outstanding)} outstanding"
        )
        if outstanding:
            self._transition(SyncSessionStatus.REVIEWING_TRANSACTIONS)
        else:
            self._transition(SyncSessionStatus.COMPLETED)
        return result

    # --- read accessors ---

    def current_session(self) -> SyncSession | None:
        state = self.store.sync
        return state.session if state is not None else None

    def transactions(self) -> list[SyncTransaction]:
        """The current session's transactions in bank order."""
        state = self.store.sync
        if state is None:
            raise SessionNotFoundError
        return list(state.transactions.values())

    def history(self, limit: int = 20) -> list[SyncSession]:
        return self.store.history(limit)

    def budgets(self) -> list[LedgerBudget]:
        """The budgets the ledger token can access, for picking `ledger_budget_id`."""
        if self.ledger is None:
            msg = "Ledger token must be configured"
            raise LedgerError(msg)
        return self.ledger.get_budgets()

    def categories(self) -> list[LedgerCategory]:
        """The ledger's categories, loaded once per sync."""
        if self.ledger is None or not self.settings.ledger_budget_id:
            msg = "Ledger token and budget must be configured"
            raise LedgerError(msg)
        if self._categories is None:
            self._categories = {c.id: c for c in self.ledger.get_categories(self.settings.ledger_budget_id)}
        return list(self._categories.values())

    # --- helpers ---

    def _fetch(self) -> list[BankTransaction]:
        try:
            account_id = self.settings.bank_account_id
            if not account_id:
                accounts = self.auth.fetch_accounts()
                if not accounts:
                    msg = "The bank reported no accounts"
                    raise TransactionFetchFailedError(msg)
                account_id = accounts[0].account_id
                logger.info(f"No account configured, using {accounts[0].display_id or account_id}")
            return self.auth.fetch_transactions(account_id, self.settings.sync_days_to_fetch)
        except TransactionFetchFailedError as exc:
            self._fail(exc.message)
            raise
        except BankError as exc:
            self._fail(exc.message)
            raise TransactionFetchFailedError(exc.message) from exc

    def _recent_ledger_entries(self) -> list[LedgerEntry] | None:
        """Ledger entries for the duplicate check, or None when they cannot be had."""
        if self.ledger is None or not self.settings.ledger_configured:
            logger.info("Ledger not configured, skipping duplicate detection")
            return None
        try:
            return self.ledger.get_recent_entries(
                self.settings.ledger_budget_id, self.settings.ledger_account_id, self.settings.sync_days_to_fetch
            )
        except LedgerError as exc:
            logger.warning(f"Could not load ledger transactions, skipping duplicate detection: {exc.message}")
            return None

    def _category_name(self, category_id: str) -> str | None:
        if self.ledger is None:
            return None
        try:
            self.categories()
        except LedgerError as exc:
            logger.warning(f"Category lookup failed: {exc.message}")
            return None
        category = self._categories.get(category_id)
        return category.name if category is not None else None

    def _require(self, expected: SyncSessionStatus) -> SyncState:
        state = self.store.sync
        if state is None:
            raise SessionNotFoundError
        if state.session.status is not expected:
            raise InvalidSessionStateError(expected.value, state.session.status.value)
        return state

    def _reviewable(self, tx_id: str) -> SyncTransaction:
        state = self._require(SyncSessionStatus.REVIEWING_TRANSACTIONS)
        tx = state.transactions.get(tx_id)
        if tx is None:
            raise TransactionNotFoundError(tx_id)
        if tx.status is TransactionStatus.IMPORTED:
            msg = f"Transaction '{tx_id}' was already imported"
            raise InvalidTransactionStateError(msg)
        return tx

    def _touch(self) -> None:
        self.store.sync.refresh_counts()
        self.store.save_sync()

    def _transition(self, status: SyncSessionStatus, reason: str | None = None) -> None:
        state = self.store.sync
        session = state.session
        previous = session.status
        session.status = status
        if status.is_terminal:
            session.completed_at = self.clock()
            session.failure_reason = reason
        state.refresh_counts()
        self.store.save_sync()
        logger.info(f"Sync {session.id}: {previous.value} -> {status.value}" + (f" ({reason})" if reason else ""))

    def _fail(self, reason: str) -> None:
        self._transition(SyncSessionStatus.FAILED, reason)

    @contextmanager
    def _failing_on_error(self) -> Iterator[None]:
        """Fail the session when an error escapes a step without having failed it already."""
        try:
            yield
        except Exception as exc:
            state = self.store.sync
            if state is not None and not state.session.status.is_terminal:
                logger.exception(f"Sync {state.session.id} failed unexpectedly")
                self._fail(str(exc) or type(exc).__name__)
            raise


def _has_category(tx: SyncTransaction) -> bool:
    return bool(tx.category_id or tx.splits)


def validate_splits(transaction: BankTransaction, splits: list[TransactionSplit]) -> None:
    """Raise InvalidSplitError unless the splits add up to the transaction amount."""
    if len(splits) < MIN_SPLITS:
        msg = f"A split needs at least {MIN_SPLITS} parts, got {len(splits)}"
        raise InvalidSplitError(msg)
    currency = transaction.amount.currency
    if any(s.amount.currency != currency for s in splits):
        msg = f"All split amounts must be in {currency}"
        raise InvalidSplitError(msg)
    total = sum((s.amount.amount for s in splits), Decimal(0))
    if total != transaction.amount.amount:
        msg = f"Split amounts add up to {total}, expected {transaction.amount.amount}"
        raise InvalidSplitError(msg)