"""Bank authentication state machine.

    no_session --start_auth--> challenge_issued --confirm_challenge--> authenticated
                                        \\------------------------------> failed

Authentication is split in two entry points because the middle step is a human confirming
a push notification on their phone, which may take arbitrarily long. ``start_auth``
returns as soon as the challenge is issued; ``confirm_challenge`` resumes from the stored
session. No step is retried here: failures are reported and the caller decides whether to
start over.
"""

import time
import uuid
from collections.abc import Callable
from datetime import datetime

from budget_bridge.core.errors import (
    AuthenticationFailedError,
    BankError,
    ChallengeExpiredError,
    ChallengeRejectedError,
    InvalidSessionStateError,
    SessionExpiredError,
)
from budget_bridge.core.models import (
    AuthSession,
    AuthState,
    BankAccount,
    BankCredentials,
    BankTransaction,
    Challenge,
    RequestInfo,
    Tokens,
)
from budget_bridge.core.utils import get_logger, utcnow
from budget_bridge.services.bank_client import BankClient
from budget_bridge.services.session_store import SessionStore

logger = get_logger("budget-bridge.auth")


def new_request_info(now: datetime) -> RequestInfo:
    """Correlation ids for one auth session: a 9-digit timestamp request id and a random session id."""
    return RequestInfo(request_id=str(int(now.timestamp()))[:9], session_id=str(uuid.uuid4()))


class AuthSessionManager:
    """Drives the bank's OAuth + push-TAN protocol and holds its tokens."""

    def __init__(
        self, client: BankClient, store: SessionStore, clock: Callable[[], datetime] = utcnow
    ) -> None:
        """Initialize the manager with a bank client and the session store it writes to."""
        self.client = client
        self.store = store
        self.clock = clock
        self._credentials: BankCredentials | None = None

    @property
    def state(self) -> AuthState:
        session = self.store.auth
        return session.state if session is not None else AuthState.NO_SESSION

    @property
    def is_authenticated(self) -> bool:
        return self.state is AuthState.AUTHENTICATED

    def start_auth(self, credentials: BankCredentials) -> Challenge:
        """Run token, session and challenge steps; store the session only if all succeed."""
        self.clear()
        self._credentials = credentials
        request_info = new_request_info(self.clock())
        started = time.monotonic()
        logger.info(f"Starting bank authentication (request {request_info.request_id})")
        tokens = self.client.obtain_initial_token(credentials)
        session_identifier = self.client.get_session_id(request_info, tokens)
        challenge = self.client.request_challenge(request_info, tokens, session_identifier)
        self.store.set_auth(
            AuthSession(
                request_info=request_info,
                tokens=tokens,
                session_identifier=session_identifier,
                challenge=challenge,
                state=AuthState.CHALLENGE_ISSUED,
            )
        )
        logger.info(f"Push-TAN challenge {challenge.id} issued after {time.monotonic() - started:.2f}s")
        return challenge

    def confirm_challenge(self, credentials: BankCredentials | None = None) -> Tokens:
        """Activate the session after the user confirmed, then upgrade the token.

        A 403 on activation means the user rejected the challenge, a 408 that it expired;
        every other failure is reported as a generic authentication failure. All of them
        leave the session in the failed state.
        """
        session = self.store.auth
        if session is None or session.state is not AuthState.CHALLENGE_ISSUED:
            raise InvalidSessionStateError(AuthState.CHALLENGE_ISSUED.value, self.state.value)
        credentials = credentials or self._credentials
        if credentials is None:
            msg = "No API keys configured"
            raise AuthenticationFailedError(msg)
        if session.challenge is None:
            msg = "No challenge found in session"
            raise AuthenticationFailedError(msg)

        try:
            self.client.activate_session(
                session.request_info, session.tokens, session.session_identifier, session.challenge.id
            )
            tokens = self.client.upgrade_token(credentials, session.tokens)
        except (ChallengeRejectedError, ChallengeExpiredError) as exc:
            self._fail(session, exc.code)
            raise
        except BankError as exc:
            self._fail(session, exc.message)
            raise AuthenticationFailedError(exc.message) from exc

        self.store.set_auth(
            session.model_copy(update={"tokens": tokens, "state": AuthState.AUTHENTICATED, "challenge": None})
        )
        logger.info("Bank session activated")
        return tokens

    def clear(self) -> None:
        """Discard the session; safe to call at any time."""
        if self.store.auth is not None:
            logger.info("Clearing bank session")
        self.store.clear_auth()

    def status_text(self) -> str:
        """Describe the session for logs and the status endpoint."""
        session = self.store.auth
        if session is None:
            return "No active session"
        if session.state is AuthState.CHALLENGE_ISSUED and session.challenge is not None:
            return f"Waiting for TAN confirmation (Challenge: {session.challenge.id})"
        if session.state is AuthState.FAILED:
            return f"Authentication failed: {session.failure_reason}"
        return "Session active"

    def fetch_transactions(self, account_id: str, days: int) -> list[BankTransaction]:
        """List transactions with the authenticated session."""
        session = self._authenticated()
        return self.client.list_transactions(session.request_info, session.tokens, account_id, days)

    def fetch_accounts(self) -> list[BankAccount]:
        session = self._authenticated()
        return self.client.list_accounts(session.request_info, session.tokens)

    def _authenticated(self) -> AuthSession:
        session = self.store.auth
        if session is None or session.state is not AuthState.AUTHENTICATED:
            raise SessionExpiredError
        return session

    def _fail(self, session: AuthSession, reason: str) -> None:
        logger.warning(f"Bank authentication failed: {reason}")
        self.store.set_auth(session.model_copy(update={"state": AuthState.FAILED, "failure_reason": reason}))
