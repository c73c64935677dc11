"""Tests for duplicate detection against existing ledger entries."""

from datetime import date
from decimal import Decimal

from budget_bridge.core.models import (
    ConfirmedDuplicate,
    DuplicateDetails,
    LedgerEntry,
    Money,
    NotDuplicate,
    PossibleDuplicate,
    SyncTransaction,
)
from budget_bridge.engine.duplicates import (
    IMPORT_ID_MAX_LENGTH,
    DuplicateMatchConfig,
    count_duplicates,
    extract_reference,
    make_import_id,
    mark_duplicates,
    memo_with_reference,
)

MEMO_LIMIT = 200


def entry(entry_id: str, **kwargs: object) -> LedgerEntry:
    values = {"date": date(2024, 3, 10), "amount": Money(amount=Decimal("-12.34")), "payee": None, "memo": None}
    values.update(kwargs)
    return LedgerEntry(id=entry_id, **values)


def wrap(tx: object) -> SyncTransaction:
    return SyncTransaction(
        transaction=tx, duplicate_status=NotDuplicate(details=DuplicateDetails(transaction_reference=tx.reference))
    )


def test_reference_in_memo_confirms_duplicate(make_tx: object) -> None:
    """A `Ref:` match confirms the duplicate even when amount and date disagree."""
    tx = make_tx("tx-1", reference="TX-998", amount="-99.00", booking_date=date(2024, 1, 1))
    ledger = [entry("e1", memo="Lunch, Ref: TX-998", amount=Money(amount=Decimal("-5.00")), date=date(2024, 3, 1))]
    [result] = mark_duplicates(ledger, [wrap(tx)])
    status = result.duplicate_status
    if not isinstance(status, ConfirmedDuplicate) or status.reference != "TX-998":
        msg = f"Expected ConfirmedDuplicate for TX-998, got {status}"
        raise AssertionError(msg)
    if not status.details.reference_found:
        msg = "Expected reference_found in the details"
        raise AssertionError(msg)


def test_reference_must_match_exactly(make_tx: object) -> None:
    tx = make_tx("tx-1", reference="TX-99")
    [result] = mark_duplicates([entry("e1", memo="Lunch, Ref: TX-998")], [wrap(tx)])
    if not isinstance(result.duplicate_status, NotDuplicate):
        msg = f"A reference that is only a prefix must not match, got {result.duplicate_status}"
        raise AssertionError(msg)


def test_import_id_confirms_duplicate(make_tx: object) -> None:
    tx = make_tx("abc-123-def", payee=None)
    [result] = mark_duplicates([entry("e1", import_id=make_import_id("abc-123-def"))], [wrap(tx)])
    status = result.duplicate_status
    if not isinstance(status, ConfirmedDuplicate) or not status.details.import_id_found:
        msg = f"Expected an import-id ConfirmedDuplicate, got {status}"
        raise AssertionError(msg)


def test_fuzzy_match_is_only_possible(make_tx: object) -> None:
    tx = make_tx("tx-1", payee="REWE Markt GmbH", booking_date=date(2024, 3, 11))
    [result] = mark_duplicates([entry("e1", payee="REWE Markt")], [wrap(tx)])
    status = result.duplicate_status
    if not isinstance(status, PossibleDuplicate):
        msg = f"Expected PossibleDuplicate, got {status}"
        raise AssertionError(msg)
    if status.reason != "Similar transaction found: REWE Markt on 2024-03-10 for -12.34":
        msg = f"Unexpected reason: {status.reason}"
        raise AssertionError(msg)


def test_fuzzy_respects_date_tolerance(make_tx: object) -> None:
    tx = make_tx("tx-1", payee="REWE Markt", booking_date=date(2024, 3, 13))
    ledger = [entry("e1", payee="REWE Markt")]
    [strict] = mark_duplicates(ledger, [wrap(tx)])
    [relaxed] = mark_duplicates(ledger, [wrap(tx)], DuplicateMatchConfig(date_tolerance_days=3))
    if not isinstance(strict.duplicate_status, NotDuplicate):
        msg = "Three days apart must not match with the default tolerance"
        raise AssertionError(msg)
    if not isinstance(relaxed.duplicate_status, PossibleDuplicate):
        msg = "Three days apart must match with a tolerance of three"
        raise AssertionError(msg)


def test_mark_duplicates_is_order_independent(make_tx: object) -> None:
    """Each transaction gets the same status regardless of list order, and nothing else changes."""
    transactions = [
        wrap(make_tx("tx-1", reference="TX-1")),
        wrap(make_tx("tx-2", payee="REWE Markt")),
        wrap(make_tx("tx-3", payee="Bäckerei", amount="-3.10")),
    ]
    ledger = [entry("e1", memo="Ref: TX-1"), entry("e2", payee="REWE")]
    forward = {tx.id: tx.duplicate_status.kind for tx in mark_duplicates(ledger, transactions)}
    backward = {tx.id: tx.duplicate_status.kind for tx in mark_duplicates(list(reversed(ledger)), transactions[::-1])}
    if forward != backward:
        msg = f"Expected identical results, got {forward} and {backward}"
        raise AssertionError(msg)
    marked = mark_duplicates(ledger, transactions)
    if [tx.status for tx in marked] != [tx.status for tx in transactions]:
        msg = "mark_duplicates must only change the duplicate status"
        raise AssertionError(msg)


def test_count_duplicates(make_tx: object) -> None:
    transactions = [wrap(make_tx("tx-1", reference="TX-1")), wrap(make_tx("tx-2", payee="Nobody", amount="-1.00"))]
    marked = mark_duplicates([entry("e1", memo="Ref: TX-1")], transactions)
    counts = count_duplicates(marked)
    if counts != {"confirmed": 1, "possible": 0, "none": 1}:
        msg = f"Unexpected counts: {counts}"
        raise AssertionError(msg)


def test_memo_with_reference_keeps_reference_when_truncating() -> None:
    memo = memo_with_reference("x" * 300, "TX-998")
    if len(memo) > MEMO_LIMIT or not memo.endswith("Ref: TX-998"):
        msg = f"Expected a 200-char memo ending with the reference, got {memo!r}"
        raise AssertionError(msg)
    if extract_reference(memo) != "TX-998":
        msg = "The embedded reference must be recoverable"
        raise AssertionError(msg)


def test_import_id_format() -> None:
    import_id = make_import_id("1234-5678-9012-3456-7890-1234-5678-9012")
    if not import_id.startswith("BB:") or "-" in import_id or len(import_id) > IMPORT_ID_MAX_LENGTH:
        msg = f"Unexpected import id {import_id}"
        raise AssertionError(msg)
