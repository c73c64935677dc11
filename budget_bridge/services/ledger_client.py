"""HTTP client for the budgeting ledger (YNAB v1 API shape).

Amounts travel as integer milliunits. Every submitted transaction carries an import id; the
ledger refuses to create a second transaction with an import id it already knows, and
reports those ids back as duplicates instead of failing the batch.
"""

from datetime import date, timedelta
from decimal import Decimal

import httpx

from budget_bridge.core.errors import (
    AccountNotFoundError,
    BudgetNotFoundError,
    LedgerInvalidResponseError,
    LedgerNetworkError,
    LedgerUnauthorizedError,
    RateLimitExceededError,
)
from budget_bridge.core.models import (
    ImportResult,
    LedgerBudget,
    LedgerCategory,
    LedgerEntry,
    Money,
    SyncTransaction,
    TransactionSplit,
)
from budget_bridge.core.utils import get_logger, truncate
from budget_bridge.engine.duplicates import make_forced_import_id, make_import_id, memo_with_reference

logger = get_logger("budget-bridge.ledger")

MEMO_LIMIT = 200
DEFAULT_RETRY_AFTER = 60
MIN_SPLITS = 2

HTTP_BAD_REQUEST = 400
HTTP_UNAUTHORIZED = 401
HTTP_NOT_FOUND = 404
HTTP_TOO_MANY_REQUESTS = 429


def to_milliunits(amount: Decimal) -> int:
    return int((amount * 1000).to_integral_value())


def from_milliunits(value: int) -> Decimal:
    return Decimal(value) / 1000


class LedgerClient:
    """Client for the ledger's budgets, categories and transactions endpoints."""

    def __init__(
        self,
        token: str,
        base_url: str = "https://api.youneedabudget.com/v1",
        timeout: float = 30.0,
        transport: httpx.BaseTransport | None = None,
    ) -> None:
        """Initialize the client with a personal access token."""
        self.http = httpx.Client(
            base_url=base_url.rstrip("/") + "/",
            timeout=timeout,
            transport=transport,
            headers={"Authorization": f"Bearer {token}", "Accept": "application/json"},
        )

    def close(self) -> None:
        """Close the underlying HTTP connection pool."""
        self.http.close()

    def get_budgets(self) -> list[LedgerBudget]:
        """List the budgets the token can access; doubles as a token check."""
        data = self._data(self._send("GET", "budgets"))
        try:
            return [LedgerBudget(id=b["id"], name=b["name"]) for b in data["budgets"]]
        except (KeyError, TypeError) as exc:
            msg = f"Failed to parse budgets: {exc}"
            raise LedgerInvalidResponseError(msg) from exc

    def get_categories(self, budget_id: str) -> list[LedgerCategory]:
        """List all non-deleted categories of a budget, flattened across groups."""
        response = self._send("GET", f"budgets/{budget_id}/categories")
        if response.status_code == HTTP_NOT_FOUND:
            raise BudgetNotFoundError(budget_id)
        data = self._data(response)
        try:
            return [
                LedgerCategory(id=c["id"], name=c["name"], group_name=group["name"])
                for group in data["category_groups"]
                for c in group.get("categories") or []
                if not c.get("deleted", False)
            ]
        except (KeyError, TypeError, AttributeError) as exc:
            msg = f"Failed to parse categories: {exc}"
            raise LedgerInvalidResponseError(msg) from exc

    def get_recent_entries(
        self, budget_id: str, account_id: str, since_days: int, today: date | None = None
    ) -> list[LedgerEntry]:
        """Fetch the account's transactions of the last `since_days` days."""
        since_date = (today or date.today()) - timedelta(days=since_days)
        response = self._send(
            "GET",
            f"budgets/{budget_id}/accounts/{account_id}/transactions",
            params={"since_date": since_date.isoformat()},
        )
        if response.status_code == HTTP_NOT_FOUND:
            raise AccountNotFoundError(account_id)
        data = self._data(response)
        try:
            return [
                LedgerEntry(
                    id=t["id"],
                    date=date.fromisoformat(t["date"]),
                    amount=Money(amount=from_milliunits(t["amount"])),
                    payee=t.get("payee_name"),
                    memo=t.get("memo"),
                    import_id=t.get("import_id"),
                )
                for t in data["transactions"]
            ]
        except (KeyError, TypeError, ValueError, AttributeError) as exc:
            msg = f"Failed to parse transactions: {exc}"
            raise LedgerInvalidResponseError(msg) from exc

    def submit_transactions(
        self,
        budget_id: str,
        account_id: str,
        transactions: list[SyncTransaction],
        force_new_import_id: bool = False,
    ) -> ImportResult:
        """Create the transactions in one batch.

        With ``force_new_import_id`` every transaction gets a never-seen import id, which
        deliberately bypasses the ledger's duplicate guard.
        """
        if not transactions:
            return ImportResult(created_count=0)
        import_ids = {
            tx.id: make_forced_import_id() if force_new_import_id else make_import_id(tx.id) for tx in transactions
        }
        payload = {"transactions": [encode_transaction(tx, account_id, import_ids[tx.id]) for tx in transactions]}
        response = self._send("POST", f"budgets/{budget_id}/transactions", json=payload)
        if response.status_code == HTTP_BAD_REQUEST:
            msg = f"Bad request: {response.text}"
            raise LedgerInvalidResponseError(msg)
        if response.status_code == HTTP_NOT_FOUND:
            msg = "Budget or account not found"
            raise LedgerInvalidResponseError(msg)
        data = self._data(response)
        created = data.get("transaction_ids") or []
        duplicates = data.get("duplicate_import_ids") or []
        logger.info(f"Ledger created {len(created)} transactions, flagged {len(duplicates)} duplicate import ids")
        return ImportResult(created_count=len(created), duplicate_import_ids=duplicates, import_ids=import_ids)

    # --- helpers ---

    def _send(self, method: str, url: str, **kwargs: object) -> httpx.Response:
        try:
            return self.http.request(method, url, **kwargs)
        except httpx.HTTPError as exc:
            msg = f"Request failed: {exc}"
            logger.warning(msg)
            raise LedgerNetworkError(msg) from exc

    def _data(self, response: httpx.Response) -> dict:
        """Return the `data` object of a successful response or raise a ledger error."""
        if response.status_code == HTTP_UNAUTHORIZED:
            msg = "Invalid ledger access token"
            raise LedgerUnauthorizedError(msg)
        if response.status_code == HTTP_TOO_MANY_REQUESTS:
            retry_after = response.headers.get("Retry-After", "")
            raise RateLimitExceededError(int(retry_after) if retry_after.isdigit() else DEFAULT_RETRY_AFTER)
        if not response.is_success:
            msg = f"HTTP {response.status_code}: {response.text}"
            raise LedgerNetworkError(msg)
        try:
            data = response.json()["data"]
        except (ValueError, KeyError, TypeError) as exc:
            msg = f"Response without data: {exc}"
            raise LedgerInvalidResponseError(msg) from exc
        if not isinstance(data, dict):
            msg = f"Unexpected data payload: {data!r}"
            raise LedgerInvalidResponseError(msg)
        return data


def encode_split(split: TransactionSplit) -> dict:
    sub = {"amount": to_milliunits(split.amount.amount), "category_id": split.category_id}
    if split.memo:
        sub["memo"] = truncate(split.memo, MEMO_LIMIT)
    return sub


def encode_transaction(tx: SyncTransaction, account_id: str, import_id: str) -> dict:
    """Render one transaction for the ledger's bulk create endpoint.

    Split transactions carry subtransactions and no category of their own; transactions
    without a category are sent uncategorized.
    """
    bank_tx = tx.transaction
    body = {
        "account_id": account_id,
        "date": bank_tx.booking_date.isoformat(),
        "amount": to_milliunits(bank_tx.amount.amount),
        "payee_name": tx.payee_override or bank_tx.payee or "Unknown",
        "memo": memo_with_reference(bank_tx.memo, bank_tx.reference, MEMO_LIMIT),
        "cleared": "cleared",
        "import_id": import_id,
    }
    if tx.splits and len(tx.splits) >= MIN_SPLITS:
        body["subtransactions"] = [encode_split(s) for s in tx.splits]
    elif tx.category_id:
        body["category_id"] = tx.category_id
    return body
