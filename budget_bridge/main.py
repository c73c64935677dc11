"""Main entrypoint and application factory for the Budget Bridge API.

This module initializes the FastAPI application, configures logging, creates the database
tables, maps domain errors onto JSON error responses, and exposes the Scalar API reference
endpoint for interactive OpenAPI documentation. It also includes the main entrypoint for
running the app with Uvicorn.
"""

import logging
from collections.abc import AsyncGenerator
from contextlib import asynccontextmanager
from pathlib import Path

from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse
from scalar_fastapi import get_scalar_api_reference

from budget_bridge import __version__
from budget_bridge.api.dependencies import get_db_engine
from budget_bridge.api.routes import router
from budget_bridge.api.rules_routes import router as rules_router
from budget_bridge.core.db import init_db
from budget_bridge.core.errors import BankError, BudgetBridgeError, LedgerError, RateLimitExceededError
from budget_bridge.core.settings import get_settings
from budget_bridge.core.utils import ROOT_LOGGER, ensure_dir, get_logger

STATUS_BY_CODE = {
    "rule-not-found": 404,
    "session-not-found": 404,
    "transaction-not-found": 404,
    "budget-not-found": 404,
    "account-not-found": 404,
    "invalid-session-state": 409,
    "invalid-transaction-state": 409,
    "invalid-pattern": 422,
    "rule-compilation-failed": 422,
    "rule-validation-failed": 422,
    "invalid-split": 422,
    "bank-auth-failed": 401,
    "invalid-credentials": 401,
    "ledger-unauthorized": 401,
    "confirmation-timeout": 408,
    "ledger-import-failed": 502,
    "transaction-fetch-failed": 502,
    "rate-limited": 429,
}
HTTP_BAD_GATEWAY = 502
HTTP_BAD_REQUEST = 400


# --- Logging Setup ---
def setup_logging() -> None:
    """Configure logging to file and console, and ensure the log directory exists."""
    log_file = Path(get_settings().log_file)
    ensure_dir(log_file.parent)
    logger = get_logger(ROOT_LOGGER)
    # Add file handler for persistent logs (not colorized)
    if not any(isinstance(h, logging.FileHandler) for h in logger.handlers):
        file_handler = logging.FileHandler(log_file)
        file_handler.setLevel(logging.INFO)
        file_handler.setFormatter(logging.Formatter("%(asctime)s [%(levelname)s] %(name)s: %(message)s"))
        logger.addHandler(file_handler)


setup_logging()
logger = get_logger("budget-bridge.main")


def status_for(exc: BudgetBridgeError) -> int:
    """HTTP status for a domain error; upstream bank/ledger failures default to 502."""
    if exc.code in STATUS_BY_CODE:
        return STATUS_BY_CODE[exc.code]
    if isinstance(exc, (BankError, LedgerError)):
        return HTTP_BAD_GATEWAY
    return HTTP_BAD_REQUEST


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncGenerator[None, None]:
    """Lifespan event handler to create the rules, sync history and auth session tables."""
    _ = app  # Silence unused argument warning
    init_db(get_db_engine())
    logger.info("Database ready")
    yield


app = FastAPI(
    lifespan=lifespan,
    docs_url="/docs",
    redoc_url="/redoc",
    title="Budget Bridge API",
    description="""
    Budget Bridge fetches bank transactions, categorizes them with your rules, flags what the ledger
    already holds, and imports the reviewed result.

    **Endpoints:**
    - `/rules`: Manage, reorder, test, export and import categorization rules.
    - `POST /sync/start`, `POST /sync/confirm`: Authenticate with push-TAN and fetch transactions.
    - `/sync/transactions/...`: Review: categorize, skip, split and annotate.
    - `POST /sync/import`, `POST /sync/force-import`: Import into the ledger.
    - `GET /health`: Health check endpoint.
    - `GET /scalar`: Interactive Scalar OpenAPI documentation.
    """,
    version=__version__,
)
app.include_router(router)
app.include_router(rules_router)


@app.exception_handler(BudgetBridgeError)
async def budget_bridge_error_handler(request: Request, exc: BudgetBridgeError) -> JSONResponse:
    """Render a domain error as `{"code", "message"}` JSON."""
    status = status_for(exc)
    logger.warning(f"{request.method} {request.url.path} -> {status} {exc.code}: {exc.message}")
    headers = {"Retry-After": str(exc.retry_after_seconds)} if isinstance(exc, RateLimitExceededError) else None
    return JSONResponse(status_code=status, content=exc.to_dict(), headers=headers)


@app.exception_handler(Exception)
async def unexpected_error_handler(request: Request, exc: Exception) -> JSONResponse:
    logger.exception(f"{request.method} {request.url.path} failed unexpectedly")
    return JSONResponse(status_code=500, content={"code": "internal-error", "message": "Internal server error"})


@app.get("/scalar", include_in_schema=False)
async def scalar_docs() -> JSONResponse:
    """Return Scalar API reference."""
    return get_scalar_api_reference(openapi_url=app.openapi_url, title=app.title)


if __name__ == "__main__":
    import uvicorn

    settings = get_settings()
    uvicorn.run("budget_bridge.main:app", host=settings.server_host, port=settings.server_port, reload=True)
