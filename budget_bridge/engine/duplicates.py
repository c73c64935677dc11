"""Duplicate detection against entries already in the ledger.

Three independent checks are run for every bank transaction, in priority order:

1. reference: the ledger memo carries ``Ref: <bank reference>`` (written at import time),
2. import id: the ledger entry's import id is the one this system derives from the bank id,
3. fuzzy: same amount, dates within a tolerance, and one payee containing the other.

A reference or import-id hit is a confirmed duplicate; a fuzzy hit alone is only a possible
one. The diagnostic details of all three checks are kept on every status.
"""

import re
import uuid
from dataclasses import dataclass

from budget_bridge.core.models import (
    BankTransaction,
    ConfirmedDuplicate,
    DuplicateDetails,
    DuplicateStatus,
    LedgerEntry,
    NotDuplicate,
    PossibleDuplicate,
    SyncTransaction,
)

IMPORT_ID_PREFIX = "BB:"
IMPORT_ID_MAX_LENGTH = 36
REFERENCE_IN_MEMO = re.compile(r"Ref:\s*(.+)$")


@dataclass(frozen=True)
class DuplicateMatchConfig:
    """Tolerances for the fuzzy check."""

    date_tolerance_days: int = 1


DEFAULT_CONFIG = DuplicateMatchConfig()


def make_import_id(transaction_id: str) -> str:
    """Derive the deterministic import id for a bank transaction (ledger limit: 36 chars)."""
    return (IMPORT_ID_PREFIX + transaction_id.replace("-", ""))[:IMPORT_ID_MAX_LENGTH]


def make_forced_import_id() -> str:
    """Generate a fresh import id that the ledger has never seen."""
    return IMPORT_ID_PREFIX + uuid.uuid4().hex


def matches_import_id(transaction_id: str, import_id: str) -> bool:
    return make_import_id(transaction_id) == import_id


def memo_with_reference(memo: str, reference: str, limit: int = 200) -> str:
    """Embed the bank reference in a ledger memo, trimming the memo so the reference survives."""
    suffix = f"Ref: {reference}"
    if not memo:
        return suffix[:limit]
    room = limit - len(suffix) - 2
    if room <= 0:
        return suffix[:limit]
    if len(memo) > room:
        memo = memo[: max(room - 3, 0)] + "..."
    return f"{memo}, {suffix}"


def extract_reference(memo: str | None) -> str | None:
    """Return the reference embedded in a ledger memo, if any."""
    if not memo or not memo.strip():
        return None
    match = REFERENCE_IN_MEMO.search(memo)
    if not match:
        return None
    return match.group(1).strip() or None


def matches_by_reference(bank_tx: BankTransaction, entry: LedgerEntry) -> bool:
    return extract_reference(entry.memo) == bank_tx.reference


def matches_by_import_id(bank_tx: BankTransaction, entry: LedgerEntry) -> bool:
    return entry.import_id is not None and matches_import_id(bank_tx.id, entry.import_id)


def matches_by_date_amount_payee(config: DuplicateMatchConfig, bank_tx: BankTransaction, entry: LedgerEntry) -> bool:
    """Fuzzy match; ledger payees are often truncated, so containment either way counts."""
    if abs((bank_tx.booking_date - entry.date).days) > config.date_tolerance_days:
        return False
    if bank_tx.amount.amount != entry.amount.amount:
        return False
    if not bank_tx.payee or not entry.payee:
        return False
    bank_payee = bank_tx.payee.strip().upper()
    ledger_payee = entry.payee.strip().upper()
    return bank_payee in ledger_payee or ledger_payee in bank_payee


def detect_duplicate(
    config: DuplicateMatchConfig, entries: list[LedgerEntry], bank_tx: BankTransaction
) -> DuplicateStatus:
    """Classify one bank transaction against the ledger entries."""
    reference_match = next((e for e in entries if matches_by_reference(bank_tx, e)), None)
    import_id_match = next((e for e in entries if matches_by_import_id(bank_tx, e)), None)
    fuzzy_match = next((e for e in entries if matches_by_date_amount_payee(config, bank_tx, e)), None)

    details = DuplicateDetails(
        transaction_reference=bank_tx.reference,
        reference_found=reference_match is not None,
        import_id_found=import_id_match is not None,
        fuzzy_match_date=fuzzy_match.date if fuzzy_match else None,
        fuzzy_match_amount=fuzzy_match.amount.amount if fuzzy_match else None,
        fuzzy_match_payee=fuzzy_match.payee if fuzzy_match else None,
    )

    if reference_match is not None or import_id_match is not None:
        return ConfirmedDuplicate(reference=bank_tx.reference, details=details)
    if fuzzy_match is not None:
        reason = (
            f"Similar transaction found: {fuzzy_match.payee or 'Unknown'} "
            f"on {fuzzy_match.date.isoformat()} for {fuzzy_match.amount.amount:.2f}"
        )
        return PossibleDuplicate(reason=reason, details=details)
    return NotDuplicate(details=details)


def mark_duplicates(
    entries: list[LedgerEntry],
    sync_transactions: list[SyncTransaction],
    config: DuplicateMatchConfig = DEFAULT_CONFIG,
) -> list[SyncTransaction]:
    """Return copies of the transactions with their duplicate status set; nothing else changes."""
    return [
        tx.model_copy(update={"duplicate_status": detect_duplicate(config, entries, tx.transaction)})
        for tx in sync_transactions
    ]


def count_duplicates(transactions: list[SyncTransaction]) -> dict[str, int]:
    """Count confirmed, possible and non-duplicates."""
    confirmed = sum(1 for tx in transactions if isinstance(tx.duplicate_status, ConfirmedDuplicate))
    possible = sum(1 for tx in transactions if isinstance(tx.duplicate_status, PossibleDuplicate))
    return {"confirmed": confirmed, "possible": possible, "none": len(transactions) - confirmed - possible}
