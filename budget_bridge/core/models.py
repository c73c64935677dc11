"""Pydantic models for Budget Bridge.

This module defines the domain records shared by the rules engine, the duplicate detector,
the bank and ledger clients and the sync orchestrator: rules, bank transactions, the review
state wrapped around them, duplicate and import statuses, and the auth and sync sessions.
"""

import json
import uuid
from datetime import date, datetime
from decimal import Decimal
from enum import StrEnum
from typing import Annotated, Literal

from pydantic import BaseModel, ConfigDict, Field

# --- Value types ---


class Money(BaseModel):
    """A monetary amount with its ISO 4217 currency code."""

    model_config = ConfigDict(frozen=True)

    amount: Decimal
    currency: str = "EUR"


class BankCredentials(BaseModel):
    """OAuth client keys plus the user's online banking login."""

    client_id: str
    client_secret: str
    username: str
    password: str
    account_id: str | None = None


# --- Rules ---


class PatternType(StrEnum):
    """How a rule's pattern text is interpreted."""

    EXACT = "exact"
    CONTAINS = "contains"
    FULL_REGEX = "regex"


class TargetField(StrEnum):
    """Which transaction text a rule is matched against."""

    PAYEE = "payee"
    MEMO = "memo"
    COMBINED = "combined"


class Rule(BaseModel):
    """A user-authored classification rule."""

    id: uuid.UUID = Field(default_factory=uuid.uuid4)
    name: str = Field(min_length=1, max_length=100)
    pattern: str = Field(min_length=1, max_length=500)
    pattern_type: PatternType = PatternType.CONTAINS
    target_field: TargetField = TargetField.COMBINED
    category_id: str
    category_name: str = ""
    payee_override: str | None = Field(default=None, min_length=1, max_length=200)
    priority: int = Field(default=100, ge=0, le=10000)
    enabled: bool = True
    created_at: datetime | None = None
    updated_at: datetime | None = None


class RuleCreate(BaseModel):
    """Payload for creating a rule."""

    name: str = Field(min_length=1, max_length=100)
    pattern: str = Field(min_length=1, max_length=500)
    pattern_type: PatternType = PatternType.CONTAINS
    target_field: TargetField = TargetField.COMBINED
    category_id: str
    category_name: str = ""
    payee_override: str | None = Field(default=None, min_length=1, max_length=200)
    priority: int = Field(default=100, ge=0, le=10000)
    enabled: bool = True


class RuleUpdate(BaseModel):
    """Partial update for a rule; only set fields are applied."""

    name: str | None = Field(default=None, min_length=1, max_length=100)
    pattern: str | None = Field(default=None, min_length=1, max_length=500)
    pattern_type: PatternType | None = None
    target_field: TargetField | None = None
    category_id: str | None = None
    category_name: str | None = None
    payee_override: str | None = Field(default=None, min_length=1, max_length=200)
    priority: int | None = Field(default=None, ge=0, le=10000)
    enabled: bool | None = None


# --- Bank transactions ---


class BankTransaction(BaseModel):
    """An immutable transaction as reported by the bank."""

    model_config = ConfigDict(frozen=True)

    id: str
    booking_date: date
    amount: Money
    payee: str | None = None
    memo: str = ""
    reference: str
    raw_data: str = ""


class BankAccount(BaseModel):
    account_id: str
    display_id: str = ""
    account_type: str = ""


class ExternalLink(BaseModel):
    """A link the user can follow to look up the real counterparty."""

    label: str
    url: str


class TransactionSplit(BaseModel):
    """One category share of a split transaction."""

    category_id: str
    category_name: str = ""
    amount: Money
    memo: str | None = None


# --- Duplicate status ---


class DuplicateDetails(BaseModel):
    """Diagnostics recorded for every duplicate check, whatever the outcome."""

    transaction_reference: str
    reference_found: bool = False
    import_id_found: bool = False
    fuzzy_match_date: date | None = None
    fuzzy_match_amount: Decimal | None = None
    fuzzy_match_payee: str | None = None


class NotDuplicate(BaseModel):
    kind: Literal["not_duplicate"] = "not_duplicate"
    details: DuplicateDetails


class PossibleDuplicate(BaseModel):
    kind: Literal["possible_duplicate"] = "possible_duplicate"
    reason: str
    details: DuplicateDetails


class ConfirmedDuplicate(BaseModel):
    kind: Literal["confirmed_duplicate"] = "confirmed_duplicate"
    reference: str
    details: DuplicateDetails


DuplicateStatus = Annotated[NotDuplicate | PossibleDuplicate | ConfirmedDuplicate, Field(discriminator="kind")]


# --- Ledger import status ---


class NotAttempted(BaseModel):
    kind: Literal["not_attempted"] = "not_attempted"


class LedgerImported(BaseModel):
    kind: Literal["imported"] = "imported"


class RejectedByLedger(BaseModel):
    kind: Literal["rejected"] = "rejected"
    reason: str
    import_id: str | None = None


LedgerImportStatus = Annotated[NotAttempted | LedgerImported | RejectedByLedger, Field(discriminator="kind")]


# --- Sync transactions ---


class TransactionStatus(StrEnum):
    """Review state of a transaction within a sync."""

    PENDING = "pending"
    AUTO_CATEGORIZED = "auto_categorized"
    MANUAL_CATEGORIZED = "manual_categorized"
    NEEDS_ATTENTION = "needs_attention"
    SKIPPED = "skipped"
    IMPORTED = "imported"


class SyncTransaction(BaseModel):
    """A bank transaction wrapped with its mutable review state."""

    transaction: BankTransaction
    status: TransactionStatus = TransactionStatus.PENDING
    category_id: str | None = None
    category_name: str | None = None
    matched_rule_id: uuid.UUID | None = None
    payee_override: str | None = None
    external_links: list[ExternalLink] = Field(default_factory=list)
    user_notes: str | None = None
    duplicate_status: DuplicateStatus
    import_status: LedgerImportStatus = Field(default_factory=NotAttempted)
    splits: list[TransactionSplit] | None = None
    import_id: str | None = None

    @property
    def id(self) -> str:
        """The bank transaction id, used as the review key."""
        return self.transaction.id


# --- Ledger ---


class LedgerCategory(BaseModel):
    id: str
    name: str
    group_name: str = ""


class LedgerBudget(BaseModel):
    id: str
    name: str


class LedgerEntry(BaseModel):
    """An existing ledger transaction, used only for duplicate detection."""

    id: str
    date: date
    amount: Money
    payee: str | None = None
    memo: str | None = None
    import_id: str | None = None


class ImportResult(BaseModel):
    """Ledger response to a batch submission."""

    created_count: int
    duplicate_import_ids: list[str] = Field(default_factory=list)
    # bank transaction id -> import id it was submitted under
    import_ids: dict[str, str] = Field(default_factory=dict)


# --- Auth session ---


class Tokens(BaseModel):
    access: str
    refresh: str


class Challenge(BaseModel):
    """A pending push-TAN challenge the user must confirm on their phone."""

    id: str
    type: str


class RequestInfo(BaseModel):
    """Request correlation ids the bank expects on every call."""

    request_id: str
    session_id: str

    def encode(self) -> str:
        """Render the value of the ``x-http-request-info`` header."""
        payload = {"clientRequestId": {"sessionId": self.session_id, "requestId": self.request_id}}
        return json.dumps(payload, separators=(",", ":"))


class AuthState(StrEnum):
    NO_SESSION = "no_session"
    CHALLENGE_ISSUED = "challenge_issued"
    AUTHENTICATED = "authenticated"
    FAILED = "failed"


class AuthSession(BaseModel):
    """State of the single bank authentication in progress or completed."""

    request_info: RequestInfo
    tokens: Tokens
    session_identifier: str
    challenge: Challenge | None = None
    state: AuthState = AuthState.CHALLENGE_ISSUED
    failure_reason: str | None = None


# --- Sync session ---


class SyncSessionStatus(StrEnum):
    AWAITING_BANK_AUTH = "awaiting_bank_auth"
    AWAITING_USER_CONFIRMATION = "awaiting_user_confirmation"
    FETCHING_TRANSACTIONS = "fetching_transactions"
    REVIEWING_TRANSACTIONS = "reviewing_transactions"
    IMPORTING = "importing"
    COMPLETED = "completed"
    FAILED = "failed"

    @property
    def is_terminal(self) -> bool:
        """Completed and failed sessions accept no further transitions."""
        return self in (SyncSessionStatus.COMPLETED, SyncSessionStatus.FAILED)


class SyncSession(BaseModel):
    """One run of the fetch, review and import flow."""

    id: uuid.UUID = Field(default_factory=uuid.uuid4)
    started_at: datetime
    completed_at: datetime | None = None
    status: SyncSessionStatus = SyncSessionStatus.AWAITING_BANK_AUTH
    failure_reason: str | None = None
    transaction_count: int = 0
    imported_count: int = 0
    skipped_count: int = 0
