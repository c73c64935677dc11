"""API integration tests for Budget Bridge."""

from collections.abc import Iterator

import pytest
from fastapi.testclient import TestClient

from budget_bridge.api.dependencies import get_orchestrator, get_rules_service
from budget_bridge.main import app
from budget_bridge.services.rules_service import RulesService
from budget_bridge.workers.sync_orchestrator import SyncOrchestrator

HTTP_200_OK = 200
HTTP_201_CREATED = 201
HTTP_204_NO_CONTENT = 204
HTTP_404_NOT_FOUND = 404
HTTP_409_CONFLICT = 409
HTTP_422_UNPROCESSABLE = 422
NEW_PRIORITY = 5


@pytest.fixture
def client(orchestrator: SyncOrchestrator, rules_service: RulesService) -> Iterator[TestClient]:
    """A client whose orchestrator and rule store use the in-memory fakes."""
    app.dependency_overrides[get_orchestrator] = lambda: orchestrator
    app.dependency_overrides[get_rules_service] = lambda: rules_service
    yield TestClient(app)
    app.dependency_overrides.clear()


def expect_status(response: object, status: int) -> dict:
    if response.status_code != status:
        msg = f"Expected status {status}, got {response.status_code}: {response.text}"
        raise AssertionError(msg)
    return response.json() if response.content else {}


def test_health() -> None:
    """Test the /health endpoint returns status ok."""
    response = TestClient(app).get("/health")
    if response.status_code != HTTP_200_OK:
        msg = f"Expected status {HTTP_200_OK}, got {response.status_code}"
        raise AssertionError(msg)
    if response.json() != {"status": "ok"}:
        msg = f"Expected response {{'status': 'ok'}}, got {response.json()}"
        raise AssertionError(msg)


def test_scalar_docs() -> None:
    """Test the /scalar endpoint returns the API reference page."""
    response = TestClient(app).get("/scalar")
    if response.status_code != HTTP_200_OK:
        msg = f"Expected status {HTTP_200_OK}, got {response.status_code}"
        raise AssertionError(msg)
    if "openapi" not in response.text:
        msg = "Expected 'openapi' in response text"
        raise AssertionError(msg)


def test_rules_crud(client: TestClient) -> None:
    created = expect_status(
        client.post("/rules", json={"name": "Groceries", "pattern": "REWE", "category_id": "cat-groceries"}),
        HTTP_201_CREATED,
    )
    rule_id = created["id"]
    listed = expect_status(client.get("/rules"), HTTP_200_OK)
    if [r["id"] for r in listed] != [rule_id]:
        msg = f"Expected the new rule in the list, got {listed}"
        raise AssertionError(msg)
    patched = expect_status(client.patch(f"/rules/{rule_id}", json={"priority": NEW_PRIORITY}), HTTP_200_OK)
    if patched["priority"] != NEW_PRIORITY:
        msg = f"Expected priority {NEW_PRIORITY}, got {patched['priority']}"
        raise AssertionError(msg)
    expect_status(client.delete(f"/rules/{rule_id}"), HTTP_204_NO_CONTENT)
    missing = expect_status(client.get(f"/rules/{rule_id}"), HTTP_404_NOT_FOUND)
    if missing.get("code") != "rule-not-found" or "message" not in missing:
        msg = f"Expected a rule-not-found error body, got {missing}"
        raise AssertionError(msg)


def test_invalid_pattern_is_rejected(client: TestClient) -> None:
    body = expect_status(
        client.post(
            "/rules", json={"name": "Broken", "pattern": "(", "pattern_type": "regex", "category_id": "c1"}
        ),
        HTTP_422_UNPROCESSABLE,
    )
    if body.get("code") != "invalid-pattern" or body.get("pattern") != "(":
        msg = f"Expected an invalid-pattern error, got {body}"
        raise AssertionError(msg)


def test_import_reports_all_broken_rules(client: TestClient) -> None:
    rules = [
        {"name": "a", "pattern": "(", "pattern_type": "regex", "category_id": "c1"},
        {"name": "b", "pattern": "[", "pattern_type": "regex", "category_id": "c2"},
    ]
    body = expect_status(client.post("/rules/import", json={"rules": rules}), HTTP_422_UNPROCESSABLE)
    if body.get("code") != "rule-compilation-failed" or len(body.get("errors", [])) != len(rules):
        msg = f"Expected both failures reported, got {body}"
        raise AssertionError(msg)


def test_rule_pattern_check(client: TestClient) -> None:
    body = expect_status(
        client.post("/rules/test", json={"pattern": "netflix", "pattern_type": "contains", "sample": "NETFLIX.COM"}),
        HTTP_200_OK,
    )
    if body != {"matches": True}:
        msg = f"Expected a match, got {body}"
        raise AssertionError(msg)


def test_sync_flow(client: TestClient, bank: object, make_tx: object) -> None:
    """Start, confirm, categorize and import through the HTTP surface."""
    bank.transactions = [make_tx("tx-1", payee="REWE Markt"), make_tx("tx-2", payee="Stadtwerke", amount="-80.00")]
    started = expect_status(client.post("/sync/start"), HTTP_200_OK)
    if started["challenge"]["id"] != "challenge-1":
        msg = f"Expected the challenge in the response, got {started}"
        raise AssertionError(msg)
    conflict = expect_status(client.post("/sync/start"), HTTP_409_CONFLICT)
    if conflict.get("code") != "invalid-session-state":
        msg = f"Expected invalid-session-state, got {conflict}"
        raise AssertionError(msg)

    session = expect_status(client.post("/sync/confirm"), HTTP_200_OK)
    if session["status"] != "reviewing_transactions":
        msg = f"Expected reviewing_transactions, got {session['status']}"
        raise AssertionError(msg)
    transactions = expect_status(client.get("/sync/transactions"), HTTP_200_OK)
    if [t["transaction"]["id"] for t in transactions] != ["tx-1", "tx-2"]:
        msg = f"Unexpected transactions: {transactions}"
        raise AssertionError(msg)

    categorized = expect_status(
        client.post("/sync/transactions/tx-1/categorize", json={"category_id": "cat-groceries"}), HTTP_200_OK
    )
    if categorized["category_name"] != "Groceries" or categorized["status"] != "manual_categorized":
        msg = f"Unexpected categorized transaction: {categorized}"
        raise AssertionError(msg)
    expect_status(client.post("/sync/transactions/tx-2/skip"), HTTP_200_OK)

    result = expect_status(client.post("/sync/import"), HTTP_200_OK)
    if result["created_count"] != 1:
        msg = f"Expected one created transaction, got {result}"
        raise AssertionError(msg)
    current = expect_status(client.get("/sync/current"), HTTP_200_OK)
    if current["session"]["status"] != "completed":
        msg = f"Expected a completed session, got {current}"
        raise AssertionError(msg)
    history = expect_status(client.get("/sync/history"), HTTP_200_OK)
    if len(history) != 1 or history[0]["imported_count"] != 1:
        msg = f"Unexpected history: {history}"
        raise AssertionError(msg)


def test_transactions_without_session(client: TestClient) -> None:
    body = expect_status(client.get("/sync/transactions"), HTTP_404_NOT_FOUND)
    if body.get("code") != "session-not-found":
        msg = f"Expected session-not-found, got {body}"
        raise AssertionError(msg)


def test_ledger_categories(client: TestClient) -> None:
    body = expect_status(client.get("/ledger/categories"), HTTP_200_OK)
    if [c["name"] for c in body] != ["Groceries", "Household"]:
        msg = f"Unexpected categories: {body}"
        raise AssertionError(msg)


def test_cancel(client: TestClient) -> None:
    client.post("/sync/start")
    expect_status(client.post("/sync/cancel"), HTTP_200_OK)
    current = expect_status(client.get("/sync/current"), HTTP_200_OK)
    if current != {"session": None, "bank_session": "No active session"}:
        msg = f"Expected no session after cancel, got {current}"
        raise AssertionError(msg)


def test_rule_update_with_null_required_field(client: TestClient) -> None:
    created = expect_status(
        client.post("/rules", json={"name": "Rent", "pattern": "Miete", "category_id": "cat-rent"}), HTTP_201_CREATED
    )
    body = expect_status(client.patch(f"/rules/{created['id']}", json={"category_id": None}), HTTP_422_UNPROCESSABLE)
    if body.get("code") != "rule-validation-failed":
        msg = f"Expected rule-validation-failed, got {body}"
        raise AssertionError(msg)


def test_ledger_budgets(client: TestClient) -> None:
    body = expect_status(client.get("/ledger/budgets"), HTTP_200_OK)
    if body != [{"id": "budget-1", "name": "Household"}]:
        msg = f"Unexpected budgets: {body}"
        raise AssertionError(msg)
