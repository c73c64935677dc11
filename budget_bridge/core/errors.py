"""Error taxonomy for Budget Bridge.

Every error carries a stable, matchable ``code`` plus a free-text message. The API layer
turns these into ``{"code": ..., "message": ...}`` responses; callers match on the class or
the code, never on the message.
"""


class BudgetBridgeError(Exception):
    """Base class for all expected failures."""

    code = "error"

    def __init__(self, message: str) -> None:
        """Initialize the error with a human-readable message."""
        super().__init__(message)
        self.message = message

    def to_dict(self) -> dict:
        """Return the error as a JSON-serializable dict."""
        return {"code": self.code, "message": self.message}


# --- Bank ---


class BankError(BudgetBridgeError):
    """Failure talking to the bank."""

    code = "bank-error"


class AuthenticationFailedError(BankError):
    code = "authentication-failed"


class ChallengeExpiredError(BankError):
    code = "challenge-expired"

    def __init__(self, message: str = "The push-TAN challenge expired, restart the authentication") -> None:
        super().__init__(message)


class ChallengeRejectedError(BankError):
    code = "challenge-rejected"

    def __init__(self, message: str = "The push-TAN challenge was rejected") -> None:
        super().__init__(message)


class SessionExpiredError(BankError):
    code = "session-expired"

    def __init__(self, message: str = "No authenticated bank session") -> None:
        super().__init__(message)


class InvalidCredentialsError(BankError):
    code = "invalid-credentials"

    def __init__(self, message: str = "The bank rejected the configured credentials") -> None:
        super().__init__(message)


class BankNetworkError(BankError):
    code = "network-error"

    def __init__(self, status: int, message: str) -> None:
        """Initialize with the HTTP status (0 when no response was received)."""
        super().__init__(f"HTTP {status}: {message}" if status else message)
        self.status = status

    def to_dict(self) -> dict:
        return {**super().to_dict(), "status": self.status}


class InvalidResponseError(BankError):
    code = "invalid-response"


# --- Ledger ---


class LedgerError(BudgetBridgeError):
    """Failure talking to the budgeting ledger."""

    code = "ledger-error"


class LedgerUnauthorizedError(LedgerError):
    code = "ledger-unauthorized"


class BudgetNotFoundError(LedgerError):
    code = "budget-not-found"


class AccountNotFoundError(LedgerError):
    code = "account-not-found"


class RateLimitExceededError(LedgerError):
    code = "rate-limited"

    def __init__(self, retry_after_seconds: int) -> None:
        super().__init__(f"Rate limit exceeded, retry after {retry_after_seconds}s")
        self.retry_after_seconds = retry_after_seconds


class LedgerNetworkError(LedgerError):
    code = "ledger-network-error"


class LedgerInvalidResponseError(LedgerError):
    code = "ledger-invalid-response"


# --- Rules / classification ---


class InvalidPatternError(BudgetBridgeError):
    code = "invalid-pattern"

    def __init__(self, pattern: str, reason: str) -> None:
        """Initialize with the offending pattern and the parser's message."""
        super().__init__(f"Failed to compile pattern '{pattern}': {reason}")
        self.pattern = pattern
        self.reason = reason

    def to_dict(self) -> dict:
        return {**super().to_dict(), "pattern": self.pattern, "reason": self.reason}


class RuleCompilationError(BudgetBridgeError):
    """One or more rules failed to compile; carries every failure, not just the first."""

    code = "rule-compilation-failed"

    def __init__(self, errors: list[InvalidPatternError]) -> None:
        super().__init__("; ".join(e.message for e in errors))
        self.errors = errors

    def to_dict(self) -> dict:
        return {**super().to_dict(), "errors": [e.to_dict() for e in self.errors]}


class RuleNotFoundError(BudgetBridgeError):
    code = "rule-not-found"


class RuleValidationError(BudgetBridgeError):
    code = "rule-validation-failed"


# --- Sync orchestration ---


class SyncError(BudgetBridgeError):
    code = "sync-error"


class SessionNotFoundError(SyncError):
    code = "session-not-found"

    def __init__(self, message: str = "No active sync session") -> None:
        super().__init__(message)


class BankAuthFailedError(SyncError):
    code = "bank-auth-failed"

    def __init__(self, reason: str) -> None:
        super().__init__(reason)
        self.reason = reason


class ConfirmationTimeoutError(SyncError):
    code = "confirmation-timeout"


class TransactionFetchFailedError(SyncError):
    code = "transaction-fetch-failed"


class LedgerImportFailedError(SyncError):
    code = "ledger-import-failed"

    def __init__(self, failed_count: int, message: str) -> None:
        super().__init__(message)
        self.failed_count = failed_count

    def to_dict(self) -> dict:
        return {**super().to_dict(), "failed_count": self.failed_count}


class InvalidSessionStateError(SyncError):
    code = "invalid-session-state"

    def __init__(self, expected: str, actual: str) -> None:
        super().__init__(f"Expected session state '{expected}', but it is '{actual}'")
        self.expected = expected
        self.actual = actual

    def to_dict(self) -> dict:
        return {**super().to_dict(), "expected": self.expected, "actual": self.actual}


class SyncAlreadyActiveError(InvalidSessionStateError):
    """A second sync was started while one is still running."""

    def __init__(self, actual: str) -> None:
        super().__init__("no active session", actual)


class TransactionNotFoundError(SyncError):
    code = "transaction-not-found"

    def __init__(self, transaction_id: str) -> None:
        super().__init__(f"Transaction '{transaction_id}' is not part of the current sync")
        self.transaction_id = transaction_id


class InvalidTransactionStateError(SyncError):
    code = "invalid-transaction-state"


class InvalidSplitError(SyncError):
    code = "invalid-split"
