"""Configuration and environment settings for Budget Bridge."""

from functools import lru_cache

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict

from budget_bridge.core.models import BankCredentials


class Settings(BaseSettings):
    """Application settings for Budget Bridge."""

    bank_client_id: str | None = None
    bank_client_secret: str | None = None
    bank_username: str | None = None
    bank_password: str | None = None
    bank_account_id: str | None = None
    bank_base_url: str = "https://api.comdirect.de/"
    bank_page_size: int = Field(default=50, ge=1, le=500)

    ledger_token: str | None = Field(default=None, min_length=10, max_length=500)
    ledger_budget_id: str | None = None
    ledger_account_id: str | None = None
    ledger_base_url: str = "https://api.youneedabudget.com/v1"

    sync_days_to_fetch: int = Field(default=30, ge=1, le=90)
    duplicate_date_tolerance_days: int = Field(default=1, ge=0, le=14)
    http_timeout_seconds: float = 30.0

    database_url: str = "sqlite:///budget_bridge.db"
    log_file: str = "logs/budget_bridge.log"
    server_host: str = "127.0.0.1"
    server_port: int = 8000

    model_config = SettingsConfigDict(env_file=".env", env_file_encoding="utf-8", extra="ignore")

    @property
    def bank_credentials(self) -> BankCredentials | None:
        """Return the bank credentials, or None unless every secret is configured."""
        values = (self.bank_client_id, self.bank_client_secret, self.bank_username, self.bank_password)
        if not all(v and v.strip() for v in values):
            return None
        return BankCredentials(
            client_id=self.bank_client_id,
            client_secret=self.bank_client_secret,
            username=self.bank_username,
            password=self.bank_password,
            account_id=self.bank_account_id,
        )

    @property
    def ledger_configured(self) -> bool:
        """Whether token, budget and account are all set for the ledger."""
        return bool(self.ledger_token and self.ledger_budget_id and self.ledger_account_id)


@lru_cache
def get_settings() -> "Settings":
    """Return the cached application settings."""
    return Settings()
