"""OAuth2 Device Authorization Grant (:rfc:`8628`) with cached, refreshable tokens.

:class:`DeviceAuthorizationFlow` produces a valid access token for one SSO
session with as few network calls as possible:

1. A cached, unexpired token is returned immediately.
2. Otherwise a client registration is resolved: the registration cache
   first, then the client embedded in the token record, and finally a new
   registration with the OAuth server.
3. A cached refresh token is exchanged for a new access token.
4. Failing that, the device flow runs: the user opens a verification URL
   on any device while the flow polls the token endpoint until approval,
   denial, or expiry of the device code.

Server errors from the token endpoint are mapped to a recovery action by
:func:`classify_create_token_error`. Every successful acquisition is
written back to the :class:`~ssocli.auth.cache_store.CredentialCache`;
nothing is written on failure.

See Also:
    :class:`~ssocli.auth.sso.SsoService` for login, logout and role
    credentials built on top of this flow.
"""

from __future__ import annotations

import enum
import logging
import time
import uuid
import webbrowser
from dataclasses import dataclass
from datetime import datetime
from typing import Callable, Optional

from ssocli.auth.cache_store import (
    CacheKind,
    CredentialCache,
    registration_fingerprint,
    token_fingerprint,
)
from ssocli.client.oauth import OAuthClientAPI
from ssocli.config import normalize_registration_scopes
from ssocli.exceptions import AuthError, ConfigError, DeviceAuthorizationTimeout, OAuthAPIError
from ssocli.models import (
    DEVICE_CODE_GRANT_TYPE,
    REFRESH_TOKEN_GRANT_TYPE,
    ClientRegistration,
    CreateTokenRequest,
    CreateTokenResponse,
    RegisterClientRequest,
    SsoSession,
    StartDeviceAuthorizationRequest,
    StartDeviceAuthorizationResponse,
    TokenRecord,
    utcnow,
)
from ssocli.output import OutputManager

logger = logging.getLogger(__name__)

DEFAULT_POLL_INTERVAL = 5
SLOW_DOWN_INCREMENT = 5
CLIENT_NAME_PREFIX = "ssocli"


# --------------------------------------------------------------------- #
# Error classification
# --------------------------------------------------------------------- #


class TokenErrorAction(str, enum.Enum):
    """What the flow does after the token endpoint rejects a request."""

    RETRY = "retry"
    SLOW_DOWN = "slow_down"
    RE_REGISTER = "re_register"
    FALLBACK_TO_DEVICE_AUTH = "fallback_to_device_auth"
    FAIL = "fail"


@dataclass(frozen=True)
class TokenErrorDecision:
    action: TokenErrorAction
    message: str


_DECISIONS: dict[str, TokenErrorDecision] = {
    "authorization_pending": TokenErrorDecision(
        TokenErrorAction.RETRY, "authorization is still pending"
    ),
    "slow_down": TokenErrorDecision(
        TokenErrorAction.SLOW_DOWN, "the authorization server asked to poll more slowly"
    ),
    "invalid_client": TokenErrorDecision(
        TokenErrorAction.RE_REGISTER, "client registration is invalid; please retry login"
    ),
    "invalid_token": TokenErrorDecision(
        TokenErrorAction.FALLBACK_TO_DEVICE_AUTH, "token is invalid; please retry login"
    ),
    "invalid_device_code": TokenErrorDecision(
        TokenErrorAction.FAIL, "device code is invalid or expired; please retry login"
    ),
    "expired_token": TokenErrorDecision(
        TokenErrorAction.FAIL, "device code is invalid or expired; please retry login"
    ),
    "access_denied": TokenErrorDecision(
        TokenErrorAction.FAIL, "authorization was denied; please retry login"
    ),
    "invalid_request": TokenErrorDecision(
        TokenErrorAction.FAIL, "token request parameters are invalid"
    ),
    "unsupported_grant_type": TokenErrorDecision(
        TokenErrorAction.FAIL, "token grant type is not supported"
    ),
    "server_error": TokenErrorDecision(
        TokenErrorAction.FAIL, "server error while requesting token"
    ),
}


def classify_create_token_error(exc: Exception) -> Optional[TokenErrorDecision]:
    """Map a token-endpoint failure to a recovery action.

    Returns:
        The decision for an :class:`~ssocli.exceptions.OAuthAPIError`, or
        ``None`` when *exc* is not a protocol error (transport failures
        and malformed responses are the caller's to propagate).
    """
    if not isinstance(exc, OAuthAPIError):
        return None
    return _classify_oauth_error(exc)


def _classify_oauth_error(exc: OAuthAPIError) -> TokenErrorDecision:
    decision = _DECISIONS.get(exc.error)
    if decision is None:
        return TokenErrorDecision(TokenErrorAction.FAIL, f"unknown error: {exc.error or exc.raw_body}")
    return decision


def _decision_error(decision: TokenErrorDecision, exc: OAuthAPIError, context: str = "") -> AuthError:
    message = f"{context}{decision.message}"
    if exc.request_id:
        message += f" (requestId={exc.request_id})"
    return AuthError(message)


# --------------------------------------------------------------------- #
# Flow
# --------------------------------------------------------------------- #


class DeviceAuthorizationFlow:
    """Obtain a valid access token for one SSO session.

    Args:
        session: The SSO session to log in to.
        oauth: OAuth server capability.
        cache: Token and registration cache.
        output: Where login instructions are printed.
        no_browser: Only print the verification URL; never launch a browser.
        sleep: Poll sleep, injected for tests.
        clock: Monotonic clock used for the device-code deadline.
        now: Wall clock used for token expiry.
        open_browser: Browser launcher; returns False when none is available.
    """

    def __init__(
        self,
        session: SsoSession,
        oauth: OAuthClientAPI,
        cache: CredentialCache,
        output: OutputManager,
        no_browser: bool = False,
        sleep: Callable[[float], None] = time.sleep,
        clock: Callable[[], float] = time.monotonic,
        now: Callable[[], datetime] = utcnow,
        open_browser: Callable[[str], bool] = webbrowser.open,
    ) -> None:
        if not session.start_url:
            raise ConfigError(f"SSO session '{session.name}' has no start_url configured")
        self._session = session
        self._oauth = oauth
        self._cache = cache
        self._output = output
        self._no_browser = no_browser
        self._sleep = sleep
        self._clock = clock
        self._now = now
        self._open_browser = open_browser
        self._scopes = normalize_registration_scopes(session.registration_scopes)
        self.token_key = token_fingerprint(session.start_url, session.name)
        self.registration_key = registration_fingerprint(
            session.start_url, session.region, self._scopes, session.name
        )

    def cached_token(self) -> Optional[TokenRecord]:
        """Return the cached token record without any network call."""
        return self._cache.get_token(self.token_key)

    def get_token(self) -> TokenRecord:
        """Return a usable token record, logging in or refreshing as needed.

        Raises:
            AuthError: When the server rejects the login with a terminal
                error; the message says how to recover.
            DeviceAuthorizationTimeout: When the user does not approve the
                device code before it expires.
            CacheCorruptionError: When the registration cache is unreadable.
            ConnectionError_: On network failures after retries.
        """
        record = self.cached_token()
        if record is not None and record.access_token and not record.is_expired(self._now()):
            logger.debug("Using cached access token for session %s", self._session.name)
            return record

        if record is None:
            record = TokenRecord(
                start_url=self._session.start_url,
                session_name=self._session.name,
                region=self._session.region,
            )

        client = self._resolve_client(record)

        if record.refresh_token:
            try:
                return self._refresh(record, client)
            except OAuthAPIError as exc:
                decision = _classify_oauth_error(exc)
                if decision.action == TokenErrorAction.RE_REGISTER:
                    logger.debug("Refresh rejected the client (%s); registering a new one", exc.error)
                    client = self._register(record)
                elif decision.action == TokenErrorAction.FALLBACK_TO_DEVICE_AUTH:
                    # The stale refresh token is not revoked before re-authorizing.
                    logger.debug("Refresh token rejected (%s); starting device authorization", exc.error)
                else:
                    raise _decision_error(decision, exc, "token refresh failed: ") from exc

        return self._authorize_device(record, client)

    # ------------------------------------------------------------------ #
    # Client registration
    # ------------------------------------------------------------------ #

    def _resolve_client(self, record: TokenRecord) -> ClientRegistration:
        registration = self._cache.get_registration(self.registration_key)
        if registration is None and record.client.is_usable:
            logger.debug("No registration cache entry; reusing the client from the token cache")
            registration = record.client

        if registration is None or registration.is_expired(self._now()):
            return self._register(record)

        if record.client != registration.model_copy(update={"client_name": ""}):
            record.set_client(registration)
            self._cache.put(CacheKind.TOKEN, self.token_key, record)
        return registration

    def _register(self, record: TokenRecord) -> ClientRegistration:
        client_name = f"{CLIENT_NAME_PREFIX}-{uuid.uuid4()}"
        response = self._oauth.register_client(
            RegisterClientRequest(client_name=client_name, scopes=self._scopes)
        )
        registration = ClientRegistration(client_name=client_name, **response.model_dump())
        self._cache.put(CacheKind.CLIENT_REGISTRATION, self.registration_key, registration)

        record.set_client(registration)
        # Refresh tokens are bound to the client that obtained them.
        record.refresh_token = ""
        self._cache.put(CacheKind.TOKEN, self.token_key, record)
        logger.debug("Registered client %s for session %s", registration.client_id, self._session.name)
        return registration

    # ------------------------------------------------------------------ #
    # Token acquisition
    # ------------------------------------------------------------------ #

    def _refresh(self, record: TokenRecord, client: ClientRegistration) -> TokenRecord:
        response = self._oauth.create_token(
            CreateTokenRequest(
                grant_type=REFRESH_TOKEN_GRANT_TYPE,
                client_id=client.client_id,
                client_secret=client.client_secret,
                refresh_token=record.refresh_token,
            )
        )
        return self._store_token(record, response)

    def _authorize_device(self, record: TokenRecord, client: ClientRegistration) -> TokenRecord:
        authorization = self._oauth.start_device_authorization(
            StartDeviceAuthorizationRequest(
                client_id=client.client_id,
                client_secret=client.client_secret,
                scopes=self._scopes,
                portal_url=self._session.start_url,
            )
        )
        url = authorization.verification_uri_complete
        if not url and authorization.verification_uri and authorization.user_code:
            url = f"{authorization.verification_uri}?user_code={authorization.user_code}"
        if not url:
            raise AuthError("device authorization returned no verification URL; please retry login")

        self._present(url, authorization)

        interval = authorization.interval if authorization.interval > 0 else DEFAULT_POLL_INTERVAL
        deadline = self._clock() + authorization.expires_in
        request = CreateTokenRequest(
            grant_type=DEVICE_CODE_GRANT_TYPE,
            client_id=client.client_id,
            client_secret=client.client_secret,
            device_code=authorization.device_code,
        )

        while self._clock() < deadline:
            self._sleep(interval)
            try:
                response = self._oauth.create_token(request)
            except OAuthAPIError as exc:
                decision = _classify_oauth_error(exc)
                if decision.action == TokenErrorAction.RETRY:
                    continue
                if decision.action == TokenErrorAction.SLOW_DOWN:
                    interval += SLOW_DOWN_INCREMENT
                    logger.debug("Server asked to slow down; polling every %ss", interval)
                    continue
                raise _decision_error(decision, exc) from exc
            return self._store_token(record, response)

        raise DeviceAuthorizationTimeout("authorization has timed out. Please try again")

    def _store_token(self, record: TokenRecord, response: CreateTokenResponse) -> TokenRecord:
        if not response.access_token:
            raise AuthError("token response did not include an access token; please retry login")
        record.set_access_token(response.access_token, response.expires_in, self._now())
        if response.refresh_token:
            record.refresh_token = response.refresh_token
        self._cache.put(CacheKind.TOKEN, self.token_key, record)
        return record

    def _present(self, url: str, authorization: StartDeviceAuthorizationResponse) -> None:
        out = self._output
        if self._no_browser:
            out.notice("Open the following URL on any device to complete the login:")
            out.notice(url)
        else:
            out.notice(
                "Attempting to open your default browser. If the browser does not open, "
                "open the following URL:"
            )
            out.notice(url)
            try:
                opened = self._open_browser(url)
            except (webbrowser.Error, OSError) as exc:
                out.warning(f"Failed to open a browser: {exc}")
            else:
                if not opened:
                    out.warning("No browser is available; open the URL above manually.")
        if authorization.user_code:
            out.notice(f"Verification code: {authorization.user_code}")
        out.info(f"The login request expires in {authorization.expires_in} seconds.")
