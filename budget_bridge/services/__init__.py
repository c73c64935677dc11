"""Services: bank and ledger HTTP clients, rule storage and session state."""

from .auth_session import AuthSessionManager  # noqa: F401
from .bank_client import BankClient  # noqa: F401
from .ledger_client import LedgerClient  # noqa: F401
from .rules_service import RulesService  # noqa: F401
from .session_store import SessionStore  # noqa: F401
