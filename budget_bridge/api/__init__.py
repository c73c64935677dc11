"""API package: provides FastAPI dependencies and route definitions for the application."""

from .dependencies import get_db, get_orchestrator, get_rules_service  # noqa: F401
from .routes import router  # noqa: F401
from .rules_routes import router as rules_router  # noqa: F401
