"""Base abstraction for special-transaction detectors.

A detector recognizes transactions whose real counterparty is hidden behind an
intermediary (a marketplace or a payment processor) and returns a link where the
user can look the purchase up.
"""

from abc import ABC, abstractmethod

from budget_bridge.core.models import BankTransaction, ExternalLink


def combined_text(transaction: BankTransaction) -> str:
    """Payee and memo joined by a space, or the memo alone when there is no payee."""
    if transaction.payee is None:
        return transaction.memo
    return f"{transaction.payee} {transaction.memo}"


class BaseDetector(ABC):
    """Abstract base class for all special-transaction detectors."""

    @abstractmethod
    def detect(self, transaction: BankTransaction) -> ExternalLink | None:
        """Return a lookup link if the transaction belongs to this detector's family."""
