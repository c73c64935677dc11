"""Core package: provides models, errors, database helpers, settings, and shared utilities."""

from .db import DBHelper  # noqa: F401
from .errors import BudgetBridgeError  # noqa: F401
from .models import BankTransaction, Rule, SyncSession, SyncTransaction  # noqa: F401
from .settings import Settings  # noqa: F401
from .utils import get_logger  # noqa: F401
