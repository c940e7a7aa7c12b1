"""Auth session — sign-in state against a remote identity provider.

State machine:

    signed_out ──sign_in()──▶ signing_in ──token──▶ signed_in
                                  │                    │
                                  └─fail/deny/timeout─▶ signed_out ◀─sign_out()/revoked─┘

The session persists two local-only records through the local store: the
auto-login flag and the timestamp of the last successful sign-in. They are
never mirrored remotely, so turning silent sign-in back on does not depend
on the remote being reachable.

The identity provider is injected and must match the protocol:

    async def request_token(self, silent: bool) -> str: ...
    async def revoke(self, token: str) -> None: ...

Denial is signalled by raising SignInError. OAuthTokenProvider is the
production implementation; tests use small fakes.
"""

from __future__ import annotations

import asyncio
import logging
import time
from typing import TYPE_CHECKING, Awaitable, Callable, Protocol

import httpx

from monk_journey.keys import StorageKeys
from monk_journey.models import AuthState, AuthStatus

if TYPE_CHECKING:
    from monk_journey.storage.local import LocalStore

logger = logging.getLogger(__name__)

AuthListener = Callable[[AuthState], None]


class IdentityProvider(Protocol):
    async def request_token(self, silent: bool) -> str: ...
    async def revoke(self, token: str) -> None: ...


# ---------------------------------------------------------------------------
# AuthSession
# ---------------------------------------------------------------------------

class AuthSession:
    """Tracks the sign-in state and the auto-login policy.

    Args:
        provider: Identity provider used to obtain and revoke tokens.
        local:    Local store holding the local-only session records.
        clock:    Returns the current time in seconds. Defaults to time.time.
    """

    def __init__(
        self,
        provider: IdentityProvider,
        local: LocalStore,
        clock: Callable[[], float] = time.time,
    ) -> None:
        self._provider = provider
        self._local = local
        self._clock = clock
        self._status: AuthStatus = "signed_out"
        self._token: str | None = None
        self._attempt: asyncio.Future[bool] | None = None
        self._attempt_silent = False
        self._listeners: list[AuthListener] = []

    # ------------------------------------------------------------------
    # State
    # ------------------------------------------------------------------

    @property
    def status(self) -> AuthStatus:
        return self._status

    @property
    def token(self) -> str | None:
        return self._token

    @property
    def state(self) -> AuthState:
        return AuthState(
            status=self._status,
            token=self._token,
            auto_login_enabled=self.auto_login_enabled,
            last_login=self.last_login,
        )

    def is_signed_in(self) -> bool:
        return self._status == "signed_in" and self._token is not None

    @property
    def auto_login_enabled(self) -> bool:
        return self._local.load(StorageKeys.GOOGLE_AUTO_LOGIN) is True

    @property
    def last_login(self) -> int | None:
        value = self._local.load(StorageKeys.GOOGLE_LAST_LOGIN)
        return value if isinstance(value, int) and not isinstance(value, bool) else None

    def set_auto_login(self, enabled: bool) -> None:
        self._local.save(StorageKeys.GOOGLE_AUTO_LOGIN, enabled)

    def should_attempt_auto_login(self) -> bool:
        return not self.is_signed_in() and self.auto_login_enabled

    def subscribe(self, listener: AuthListener) -> Callable[[], None]:
        """Register a state-change listener. Returns a function that removes it."""
        self._listeners.append(listener)

        def unsubscribe() -> None:
            if listener in self._listeners:
                self._listeners.remove(listener)

        return unsubscribe

    def _notify(self) -> None:
        state = self.state
        for listener in list(self._listeners):
            try:
                listener(state)
            except Exception:
                logger.exception("Auth listener %r failed", listener)

    # ------------------------------------------------------------------
    # Transitions
    # ------------------------------------------------------------------

    async def sign_in(self, silent: bool = False, timeout: float | None = None) -> bool:
        """Obtain a token. Returns True when signed in afterwards.

        Concurrent callers share the attempt already in flight. An
        interactive caller that joined a silent attempt which then failed
        starts its own interactive attempt. `timeout` bounds the provider
        call; expiry counts as a failure.
        """
        if self.is_signed_in():
            return True
        if self._attempt is not None:
            joined_silent = self._attempt_silent
            ok = await asyncio.shield(self._attempt)
            if ok or silent or not joined_silent:
                return ok
            logger.debug("silent sign-in failed, falling back to interactive")
            return await self.sign_in(silent=False, timeout=timeout)

        self._attempt_silent = silent
        self._attempt = asyncio.ensure_future(self._sign_in(silent, timeout))
        self._attempt.add_done_callback(self._clear_attempt)
        return await asyncio.shield(self._attempt)

    def _clear_attempt(self, _fut: asyncio.Future) -> None:
        self._attempt = None

    async def _sign_in(self, silent: bool, timeout: float | None) -> bool:
        self._status = "signing_in"
        self._notify()
        mode = "silent" if silent else "interactive"
        logger.debug("sign-in started mode=%s timeout=%s", mode, timeout)

        try:
            token = await asyncio.wait_for(self._provider.request_token(silent), timeout)
        except asyncio.TimeoutError:
            logger.warning("%s sign-in timed out after %ss, disabling auto-login", mode, timeout)
            self._fail()
            return False
        except SignInError as e:
            logger.warning("%s sign-in denied: %s", mode, e)
            self._fail()
            return False
        except Exception:
            logger.exception("%s sign-in failed", mode)
            self._fail()
            return False

        if not token:
            logger.warning("%s sign-in returned no token", mode)
            self._fail()
            return False

        self._token = token
        self._status = "signed_in"
        self._record_successful_login()
        logger.info("Signed in (%s)", mode)
        self._notify()
        return True

    def _fail(self) -> None:
        self._token = None
        self._status = "signed_out"
        self.set_auto_login(False)
        self._notify()

    def _record_successful_login(self) -> None:
        self._local.save(StorageKeys.GOOGLE_LAST_LOGIN, int(self._clock() * 1000))
        self.set_auto_login(True)

    def _record_logout(self) -> None:
        self.set_auto_login(False)
        self._local.delete(StorageKeys.GOOGLE_LAST_LOGIN)

    async def sign_out(self) -> None:
        """Revoke the token (best effort) and forget the session."""
        token = self._token
        if token:
            try:
                await self._provider.revoke(token)
            except Exception:
                logger.exception("Token revocation failed")
        self._token = None
        self._status = "signed_out"
        self._record_logout()
        logger.info("Signed out")
        self._notify()

    def handle_revoked(self) -> None:
        """The provider or the remote API rejected our token."""
        if self._status == "signed_out":
            return
        logger.warning("Access token revoked, signing out")
        self._token = None
        self._status = "signed_out"
        self._record_logout()
        self._notify()


# ---------------------------------------------------------------------------
# OAuthTokenProvider: OAuth2 against Google's endpoints
# ---------------------------------------------------------------------------

GOOGLE_AUTH_URL = "https://accounts.google.com/o/oauth2/v2/auth"
GOOGLE_TOKEN_URL = "https://oauth2.googleapis.com/token"
GOOGLE_REVOKE_URL = "https://oauth2.googleapis.com/revoke"
DRIVE_SCOPES = (
    "https://www.googleapis.com/auth/drive.appdata",
    "https://www.googleapis.com/auth/drive.file",
)


class OAuthTokenProvider:
    """Identity provider speaking the OAuth2 token endpoint over HTTP.

    Silent sign-in exchanges the stored refresh token for an access token
    and never shows UI. Interactive sign-in hands the consent URL to the
    application's `authorize` coroutine, which returns the authorization
    code the user obtained; the code is exchanged and the refresh token kept
    for later silent sign-ins.

    Args:
        client_id:     OAuth client id.
        client_secret: OAuth client secret, empty for public clients.
        refresh_token: Refresh token from an earlier session, if any.
        authorize:     async (consent_url) -> authorization code. Without it
                       only silent sign-in is possible.
        redirect_uri:  Redirect URI registered for the client.
        timeout:       HTTP timeout in seconds. Defaults to 30.
        transport:     Optional httpx transport, e.g. httpx.MockTransport.
    """

    def __init__(
        self,
        client_id: str,
        client_secret: str = "",
        refresh_token: str | None = None,
        authorize: Callable[[str], Awaitable[str]] | None = None,
        redirect_uri: str = "http://localhost",
        token_url: str = GOOGLE_TOKEN_URL,
        revoke_url: str = GOOGLE_REVOKE_URL,
        scopes: tuple[str, ...] = DRIVE_SCOPES,
        timeout: float = 30.0,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        self._client_id = client_id
        self._client_secret = client_secret
        self._refresh_token = refresh_token
        self._authorize = authorize
        self._redirect_uri = redirect_uri
        self._token_url = token_url
        self._revoke_url = revoke_url
        self._scopes = scopes
        self._timeout = timeout
        self._transport = transport

    @property
    def refresh_token(self) -> str | None:
        return self._refresh_token

    def consent_url(self) -> str:
        params = {
            "client_id": self._client_id,
            "redirect_uri": self._redirect_uri,
            "response_type": "code",
            "scope": " ".join(self._scopes),
            "access_type": "offline",
            "prompt": "consent",
        }
        return str(httpx.URL(GOOGLE_AUTH_URL, params=params))

    async def request_token(self, silent: bool) -> str:
        if self._refresh_token:
            try:
                return await self._token_request({
                    "grant_type": "refresh_token",
                    "refresh_token": self._refresh_token,
                })
            except SignInError:
                if silent:
                    raise
                logger.info("Stored refresh token rejected, falling back to consent")

        if silent:
            raise SignInError("No stored credentials for silent sign-in")
        if self._authorize is None:
            raise SignInError("Interactive sign-in is not available")

        code = await self._authorize(self.consent_url())
        if not code:
            raise SignInError("User declined consent")
        return await self._token_request({
            "grant_type": "authorization_code",
            "code": code,
            "redirect_uri": self._redirect_uri,
        })

    async def _token_request(self, grant: dict[str, str]) -> str:
        data = {"client_id": self._client_id, **grant}
        if self._client_secret:
            data["client_secret"] = self._client_secret

        try:
            async with httpx.AsyncClient(
                timeout=self._timeout, transport=self._transport
            ) as client:
                resp = await client.post(self._token_url, data=data)
                resp.raise_for_status()
        except httpx.HTTPStatusError as e:
            raise SignInError(
                f"Token endpoint returned HTTP {e.response.status_code}"
            ) from e
        except httpx.HTTPError as e:
            raise SignInError(f"Cannot reach token endpoint: {e}") from e

        body = resp.json()
        token = body.get("access_token")
        if not token:
            raise SignInError("Token endpoint response carries no access_token")
        if body.get("refresh_token"):
            self._refresh_token = body["refresh_token"]
        return token

    async def revoke(self, token: str) -> None:
        try:
            async with httpx.AsyncClient(
                timeout=self._timeout, transport=self._transport
            ) as client:
                resp = await client.post(self._revoke_url, params={"token": token})
                resp.raise_for_status()
        except httpx.HTTPError as e:
            raise SignInError(f"Token revocation failed: {e}") from e


# ---------------------------------------------------------------------------
# SignInError: raised by identity providers on failure or denial
# ---------------------------------------------------------------------------

class SignInError(RuntimeError):
    """Raised when a token cannot be obtained or the user denies consent."""
