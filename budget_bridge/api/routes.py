"""FastAPI endpoints for the sync flow, the ledger helpers and health checks.

The sync endpoints are plain ``def`` handlers: every one of them may make blocking HTTP
calls to the bank or the ledger, so FastAPI runs them in its threadpool. Errors are raised
as ``BudgetBridgeError`` and rendered by the handler installed in ``main``.
"""

from fastapi import APIRouter, Depends, Query
from pydantic import BaseModel, Field

from budget_bridge.api.dependencies import get_orchestrator
from budget_bridge.core.models import (
    Challenge,
    ImportResult,
    LedgerBudget,
    LedgerCategory,
    SyncSession,
    SyncTransaction,
    TransactionSplit,
)
from budget_bridge.core.utils import get_logger
from budget_bridge.workers.sync_orchestrator import SyncOrchestrator

router = APIRouter()
logger = get_logger("budget-bridge.api")


# --- Request / response bodies ---


class StartSyncResponse(BaseModel):
    session: SyncSession
    challenge: Challenge


class CurrentSyncResponse(BaseModel):
    session: SyncSession | None
    bank_session: str


class CategorizeRequest(BaseModel):
    category_id: str | None = None
    payee_override: str | None = Field(default=None, max_length=200)


class BulkCategorizeRequest(BaseModel):
    transaction_ids: list[str] = Field(min_length=1)
    category_id: str


class SplitRequest(BaseModel):
    splits: list[TransactionSplit]


class NoteRequest(BaseModel):
    note: str | None = Field(default=None, max_length=500)


class ForceImportRequest(BaseModel):
    transaction_ids: list[str] | None = None


# --- Health ---


@router.get(
    "/health",
    summary="Health check",
    description="Simple health check endpoint. Returns status ok.",
    response_description="Status ok.",
    responses={200: {"description": "API is healthy.", "content": {"application/json": {"example": {"status": "ok"}}}}},
)
async def health() -> dict:
    """Health check endpoint."""
    return {"status": "ok"}


# --- Sync lifecycle ---


@router.post(
    "/sync/start",
    response_model=StartSyncResponse,
    summary="Start a sync and trigger the push-TAN challenge",
    description=(
        "Authenticates against the bank with the configured credentials and asks it to push a TAN "
        "challenge to the user's phone. Confirm it on the phone, then call `POST /sync/confirm`.\n\n"
        "- 409 Conflict: a sync is already in progress.\n"
        "- 401 Unauthorized: credentials missing or rejected by the bank."
    ),
)
def start_sync(orchestrator: SyncOrchestrator = Depends(get_orchestrator)) -> StartSyncResponse:
    """Start a new sync session."""
    session, challenge = orchestrator.start_sync()
    return StartSyncResponse(session=session, challenge=challenge)


@router.post(
    "/sync/confirm",
    response_model=SyncSession,
    summary="Confirm the push-TAN challenge and fetch transactions",
    description=(
        "Activates the bank session after the user approved the challenge, then fetches, classifies and "
        "duplicate-checks the recent transactions. On success the session is ready for review."
    ),
)
def confirm_sync(orchestrator: SyncOrchestrator = Depends(get_orchestrator)) -> SyncSession:
    """Resume the sync after the user confirmed on their phone."""
    return orchestrator.confirm_challenge()


@router.get("/sync/current", response_model=CurrentSyncResponse, summary="Current sync session")
def current_sync(orchestrator: SyncOrchestrator = Depends(get_orchestrator)) -> CurrentSyncResponse:
    """Return the current sync session, if any, and the bank session state."""
    return CurrentSyncResponse(session=orchestrator.current_session(), bank_session=orchestrator.auth.status_text())


@router.get("/sync/transactions", response_model=list[SyncTransaction], summary="Transactions under review")
def list_transactions(orchestrator: SyncOrchestrator = Depends(get_orchestrator)) -> list[SyncTransaction]:
    """List the current session's transactions in bank order."""
    return orchestrator.transactions()


@router.post("/sync/cancel", summary="Cancel the current sync")
def cancel_sync(orchestrator: SyncOrchestrator = Depends(get_orchestrator)) -> dict:
    """Cancel the sync and discard the bank session."""
    logger.info("Sync cancelled by user")
    orchestrator.cancel()
    return {"status": "cancelled"}


@router.get("/sync/history", response_model=list[SyncSession], summary="Past sync sessions")
def sync_history(
    limit: int = Query(default=20, ge=1, le=200), orchestrator: SyncOrchestrator = Depends(get_orchestrator)
) -> list[SyncSession]:
    """Return the most recent sync sessions, newest first."""
    return orchestrator.history(limit)


# --- Review ---


@router.post(
    "/sync/transactions/bulk-categorize",
    response_model=list[SyncTransaction],
    summary="Categorize several transactions at once",
)
def bulk_categorize(
    request: BulkCategorizeRequest, orchestrator: SyncOrchestrator = Depends(get_orchestrator)
) -> list[SyncTransaction]:
    """Apply one category to every listed transaction."""
    return orchestrator.bulk_categorize(request.transaction_ids, request.category_id)


@router.post(
    "/sync/transactions/{tx_id}/categorize",
    response_model=SyncTransaction,
    summary="Categorize a transaction",
    description="Sets the category (or clears it when `category_id` is null) and optionally overrides the payee.",
)
def categorize(
    tx_id: str, request: CategorizeRequest, orchestrator: SyncOrchestrator = Depends(get_orchestrator)
) -> SyncTransaction:
    """Categorize one transaction by hand."""
    return orchestrator.categorize(tx_id, request.category_id, request.payee_override)


@router.post("/sync/transactions/{tx_id}/skip", response_model=SyncTransaction, summary="Skip a transaction")
def skip(tx_id: str, orchestrator: SyncOrchestrator = Depends(get_orchestrator)) -> SyncTransaction:
    """Exclude a transaction from the import."""
    return orchestrator.skip(tx_id)


@router.post("/sync/transactions/{tx_id}/unskip", response_model=SyncTransaction, summary="Unskip a transaction")
def unskip(tx_id: str, orchestrator: SyncOrchestrator = Depends(get_orchestrator)) -> SyncTransaction:
    """Bring a skipped transaction back into the import."""
    return orchestrator.unskip(tx_id)


@router.post(
    "/sync/transactions/{tx_id}/split",
    response_model=SyncTransaction,
    summary="Split a transaction across categories",
    description="At least two parts, all in the transaction's currency, adding up exactly to its amount.",
)
def split(
    tx_id: str, request: SplitRequest, orchestrator: SyncOrchestrator = Depends(get_orchestrator)
) -> SyncTransaction:
    """Split one transaction."""
    return orchestrator.split(tx_id, request.splits)


@router.delete("/sync/transactions/{tx_id}/split", response_model=SyncTransaction, summary="Remove a split")
def clear_split(tx_id: str, orchestrator: SyncOrchestrator = Depends(get_orchestrator)) -> SyncTransaction:
    return orchestrator.clear_split(tx_id)


@router.post("/sync/transactions/{tx_id}/note", response_model=SyncTransaction, summary="Annotate a transaction")
def set_note(
    tx_id: str, request: NoteRequest, orchestrator: SyncOrchestrator = Depends(get_orchestrator)
) -> SyncTransaction:
    return orchestrator.set_note(tx_id, request.note)


# --- Import ---


@router.post(
    "/sync/import",
    response_model=ImportResult,
    summary="Import the reviewed transactions into the ledger",
    description=(
        "Submits every transaction that is neither skipped nor already imported. Transactions whose import id "
        "the ledger already knows stay in the review, marked as rejected; the session completes once nothing "
        "is outstanding."
    ),
)
def import_transactions(orchestrator: SyncOrchestrator = Depends(get_orchestrator)) -> ImportResult:
    """Import the current session's transactions."""
    return orchestrator.import_transactions()


@router.post(
    "/sync/force-import",
    response_model=ImportResult,
    summary="Re-import with fresh import ids",
    description="Bypasses the ledger's duplicate guard. Limit it to specific transactions with `transaction_ids`.",
)
def force_import(
    request: ForceImportRequest | None = None, orchestrator: SyncOrchestrator = Depends(get_orchestrator)
) -> ImportResult:
    """Force-import outstanding transactions."""
    return orchestrator.force_import(request.transaction_ids if request else None)


# --- Ledger ---


@router.get("/ledger/categories", response_model=list[LedgerCategory], summary="Ledger categories")
def ledger_categories(orchestrator: SyncOrchestrator = Depends(get_orchestrator)) -> list[LedgerCategory]:
    """List the categories of the configured ledger budget."""
    return orchestrator.categories()


@router.get("/ledger/budgets", response_model=list[LedgerBudget], summary="Ledger budgets")
def ledger_budgets(orchestrator: SyncOrchestrator = Depends(get_orchestrator)) -> list[LedgerBudget]:
    """List the budgets the ledger token can access."""
    return orchestrator.budgets()
