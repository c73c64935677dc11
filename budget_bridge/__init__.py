"""Budget Bridge: reconcile bank transactions with a budgeting ledger."""

__version__ = "1.0.0"
