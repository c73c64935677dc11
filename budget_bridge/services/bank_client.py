"""HTTP client for the bank's REST API (OAuth2 + push-TAN session protocol).

Each method performs exactly one protocol step, or for transactions one paginated listing,
and raises a ``BankError`` subclass on failure. Sequencing and state live in the auth
session manager; this module only speaks the wire format.
"""

import json
from datetime import date, timedelta
from decimal import Decimal, InvalidOperation

import httpx

from budget_bridge.core.errors import (
    AuthenticationFailedError,
    BankNetworkError,
    ChallengeExpiredError,
    ChallengeRejectedError,
    InvalidCredentialsError,
    InvalidResponseError,
    SessionExpiredError,
)
from budget_bridge.core.models import (
    BankAccount,
    BankCredentials,
    BankTransaction,
    Challenge,
    Money,
    RequestInfo,
    Tokens,
)
from budget_bridge.core.utils import get_logger

logger = get_logger("budget-bridge.bank")

PUSH_TAN = "P_TAN_PUSH"
REQUEST_INFO_HEADER = "x-http-request-info"
AUTH_INFO_HEADER = "x-once-authentication-info"
AUTH_HEADER = "x-once-authentication"
# The TAN was confirmed on the phone, so the activation carries a placeholder instead of a code.
TAN_CONFIRMED_OUT_OF_BAND = "000000"

HTTP_FORBIDDEN = 403
HTTP_REQUEST_TIMEOUT = 408
HTTP_UNAUTHORIZED = 401
HTTP_BAD_REQUEST = 400


class BankClient:
    """Thin wrapper over the bank API; one instance per process is enough."""

    def __init__(
        self,
        base_url: str,
        timeout: float = 30.0,
        page_size: int = 50,
        transport: httpx.BaseTransport | None = None,
    ) -> None:
        """Initialize the client with the API base URL and an optional test transport."""
        self.page_size = page_size
        self.http = httpx.Client(
            base_url=base_url,
            timeout=timeout,
            transport=transport,
            headers={"Accept": "application/json"},
        )

    def close(self) -> None:
        """Close the underlying HTTP connection pool."""
        self.http.close()

    # --- OAuth / session steps ---

    def obtain_initial_token(self, credentials: BankCredentials) -> Tokens:
        """Step 1: password grant for the base token pair."""
        data = {
            "client_id": credentials.client_id,
            "client_secret": credentials.client_secret,
            "username": credentials.username,
            "password": credentials.password,
            "grant_type": "password",
        }
        response = self._send("POST", "oauth/token", data=data)
        if response.status_code in (HTTP_BAD_REQUEST, HTTP_UNAUTHORIZED):
            raise InvalidCredentialsError
        return _decode_tokens(self._checked(response))

    def get_session_id(self, request_info: RequestInfo, tokens: Tokens) -> str:
        """Step 2: fetch the bank-side session identifier."""
        response = self._send(
            "GET", "api/session/clients/user/v1/sessions", headers=self._auth_headers(request_info, tokens)
        )
        body = _json(self._checked(response))
        try:
            return body[0]["identifier"]
        except (IndexError, KeyError, TypeError) as exc:
            msg = f"Unexpected session response: {body!r}"
            raise InvalidResponseError(msg) from exc

    def request_challenge(self, request_info: RequestInfo, tokens: Tokens, session_identifier: str) -> Challenge:
        """Step 3: ask the bank to push a TAN challenge to the user's phone."""
        response = self._send(
            "POST",
            f"api/session/clients/user/v1/sessions/{session_identifier}/validate",
            headers=self._auth_headers(request_info, tokens),
            json=_session_payload(session_identifier),
        )
        self._checked(response)
        header = response.headers.get(AUTH_INFO_HEADER)
        if header is None:
            msg = f"Missing {AUTH_INFO_HEADER} header"
            raise InvalidResponseError(msg)
        try:
            info = json.loads(header)
            challenge = Challenge(id=info["id"], type=info["typ"])
        except (ValueError, KeyError, TypeError) as exc:
            msg = f"Malformed {AUTH_INFO_HEADER} header: {header}"
            raise InvalidResponseError(msg) from exc
        if challenge.type != PUSH_TAN:
            msg = f"Only push-TAN ({PUSH_TAN}) is supported, the bank offered {challenge.type}"
            raise AuthenticationFailedError(msg)
        return challenge

    def activate_session(
        self, request_info: RequestInfo, tokens: Tokens, session_identifier: str, challenge_id: str
    ) -> None:
        """Step 4: activate the session once the user confirmed the challenge."""
        headers = {
            **self._auth_headers(request_info, tokens),
            AUTH_INFO_HEADER: json.dumps({"id": challenge_id}, separators=(",", ":")),
            AUTH_HEADER: TAN_CONFIRMED_OUT_OF_BAND,
        }
        response = self._send(
            "PATCH",
            f"api/session/clients/user/v1/sessions/{session_identifier}",
            headers=headers,
            json=_session_payload(session_identifier),
        )
        if response.status_code == HTTP_FORBIDDEN:
            raise ChallengeRejectedError
        if response.status_code == HTTP_REQUEST_TIMEOUT:
            raise ChallengeExpiredError
        if not response.is_success:
            raise BankNetworkError(response.status_code, response.text)

    def upgrade_token(self, credentials: BankCredentials, tokens: Tokens) -> Tokens:
        """Step 5: exchange the base token for one with banking data scope."""
        data = {
            "client_id": credentials.client_id,
            "client_secret": credentials.client_secret,
            "token": tokens.access,
            "grant_type": "cd_secondary",
        }
        return _decode_tokens(self._checked(self._send("POST", "oauth/token", data=data)))

    # --- Banking data ---

    def list_accounts(self, request_info: RequestInfo, tokens: Tokens) -> list[BankAccount]:
        """List the user's accounts; needs the upgraded token."""
        response = self._send(
            "GET", "api/banking/clients/user/v1/accounts/balances", headers=self._auth_headers(request_info, tokens)
        )
        body = _json(self._checked(response))
        try:
            return [
                BankAccount(
                    account_id=item["accountId"],
                    display_id=item.get("account", {}).get("accountDisplayId", ""),
                    account_type=item.get("account", {}).get("accountType", {}).get("text", ""),
                )
                for item in body["values"]
            ]
        except (KeyError, TypeError, AttributeError) as exc:
            msg = f"Unexpected accounts response: {exc}"
            raise InvalidResponseError(msg) from exc

    def list_transactions(
        self,
        request_info: RequestInfo,
        tokens: Tokens,
        account_id: str,
        since_days: int,
        today: date | None = None,
    ) -> list[BankTransaction]:
        """Fetch booked transactions of the last `since_days` days, newest first.

        Pages are requested until one comes back empty or short, or contains a booking older
        than the window; the bank returns newest first, so nothing later can be in range.
        """
        cutoff = (today or date.today()) - timedelta(days=since_days)
        collected: list[BankTransaction] = []
        offset = 0
        while True:
            page = self._transactions_page(request_info, tokens, account_id, offset)
            in_range = [tx for tx in page if tx.booking_date >= cutoff]
            collected.extend(in_range)
            if not page or len(in_range) < len(page) or len(page) < self.page_size:
                break
            offset += len(page)
        logger.info(f"Fetched {len(collected)} transactions for the last {since_days} days")
        return collected

    def _transactions_page(
        self, request_info: RequestInfo, tokens: Tokens, account_id: str, offset: int
    ) -> list[BankTransaction]:
        params = {"transactionState": "BOOKED", "paging-first": offset, "paging-count": self.page_size}
        response = self._send(
            "GET",
            f"api/banking/v1/accounts/{account_id}/transactions",
            headers=self._auth_headers(request_info, tokens),
            params=params,
        )
        body = _json(self._checked(response))
        try:
            return [decode_transaction(item) for item in body["values"]]
        except (KeyError, TypeError, AttributeError) as exc:
            msg = f"Unexpected transactions response: {exc}"
            raise InvalidResponseError(msg) from exc

    # --- helpers ---

    def _auth_headers(self, request_info: RequestInfo, tokens: Tokens) -> dict[str, str]:
        return {"Authorization": f"Bearer {tokens.access}", REQUEST_INFO_HEADER: request_info.encode()}

    def _send(self, method: str, url: str, **kwargs: object) -> httpx.Response:
        try:
            return self.http.request(method, url, **kwargs)
        except httpx.HTTPError as exc:
            logger.warning(f"Bank request {method} {url} failed: {exc}")
            raise BankNetworkError(0, str(exc)) from exc

    def _checked(self, response: httpx.Response) -> httpx.Response:
        """Map non-success statuses onto the bank error taxonomy."""
        if response.is_success:
            return response
        if response.status_code == HTTP_UNAUTHORIZED:
            raise AuthenticationFailedError(response.text or "Unauthorized")
        if response.status_code == HTTP_FORBIDDEN:
            raise SessionExpiredError
        raise BankNetworkError(response.status_code, response.text)


def _session_payload(session_identifier: str) -> dict:
    return {"identifier": session_identifier, "sessionTanActive": True, "activated2FA": True}


def _json(response: httpx.Response) -> object:
    try:
        return response.json()
    except ValueError as exc:
        msg = f"Response is not JSON: {response.text[:200]!r}"
        raise InvalidResponseError(msg) from exc


def _decode_tokens(response: httpx.Response) -> Tokens:
    try:
        body = response.json()
        return Tokens(access=body["access_token"], refresh=body["refresh_token"])
    except (ValueError, KeyError, TypeError) as exc:
        msg = f"Unexpected token response: {exc}"
        raise InvalidResponseError(msg) from exc


def decode_transaction(item: dict) -> BankTransaction:
    """Build a BankTransaction from one entry of the bank's `values` list."""
    payee = (item.get("remitter") or {}).get("holderName") or (item.get("creditor") or {}).get("holderName")
    try:
        amount = Decimal(str(item["amount"]["value"]))
        booking_date = date.fromisoformat(item["bookingDate"][:10])
    except (InvalidOperation, ValueError) as exc:
        msg = f"Unparsable transaction {item.get('reference')!r}: {exc}"
        raise InvalidResponseError(msg) from exc
    reference = item["reference"]
    return BankTransaction(
        id=reference,
        booking_date=booking_date,
        amount=Money(amount=amount, currency=item["amount"].get("unit") or "EUR"),
        payee=payee,
        memo=item.get("remittanceInfo") or "",
        reference=reference,
        raw_data=json.dumps(item, separators=(",", ":")),
    )
