"""HTTP client for the cloud identity OAuth server.

The server exposes four JSON endpoints under
``https://cloudidentity-oauth.<region>.bytepluses.com``:

====================================  ====================================
``POST /client/register``             register a public device client
``POST /token``                       exchange a device code or refresh token
``POST /revoke``                      revoke a refresh token
``POST /device_authorization``        start a device login
====================================  ====================================

:class:`OAuthClientAPI` is the capability the rest of the package depends
on; :class:`OAuthClient` implements it over :class:`httpx.Client`. Tests
either substitute a fake implementation of the ABC or drive the real
client through :class:`httpx.MockTransport`.

Every operation validates its request before touching the network and
raises :class:`~ssocli.exceptions.InvalidUsageError` naming the missing
field. Registration is attempted once; the other calls are retried on
transport failures and 5xx responses (see :mod:`ssocli.client.retry`).
"""

from __future__ import annotations

import time
from abc import ABC, abstractmethod
from typing import Any, Callable, Optional, TypeVar

import httpx
from pydantic import BaseModel, ValidationError

from ssocli.client.retry import call_with_retry
from ssocli.exceptions import APIError, ConnectionError_, InvalidUsageError, OAuthAPIError
from ssocli.models import (
    DEFAULT_SSO_REGION,
    DEVICE_CODE_GRANT_TYPE,
    REFRESH_TOKEN_GRANT_TYPE,
    CreateTokenRequest,
    CreateTokenResponse,
    RegisterClientRequest,
    RegisterClientResponse,
    RevokeTokenRequest,
    StartDeviceAuthorizationRequest,
    StartDeviceAuthorizationResponse,
)

OAUTH_URL_TEMPLATE = "https://cloudidentity-oauth.{region}.bytepluses.com"
REQUEST_ID_HEADER = "X-Tt-Logid"
DEFAULT_TIMEOUT = 10.0

_DEVICE_GRANT_TYPES = (DEVICE_CODE_GRANT_TYPE, "device_code")

ResponseT = TypeVar("ResponseT", bound=BaseModel)


def oauth_base_url(region: str = "") -> str:
    return OAUTH_URL_TEMPLATE.format(region=region or DEFAULT_SSO_REGION)


class OAuthClientAPI(ABC):
    """The four OAuth operations the device flow needs."""

    @abstractmethod
    def register_client(self, request: RegisterClientRequest) -> RegisterClientResponse:
        """Register a public client able to use the device-code and refresh grants."""

    @abstractmethod
    def create_token(self, request: CreateTokenRequest) -> CreateTokenResponse:
        """Exchange a device code or a refresh token for an access token."""

    @abstractmethod
    def revoke_token(self, request: RevokeTokenRequest) -> None:
        """Revoke a refresh token. An empty token is a no-op."""

    @abstractmethod
    def start_device_authorization(
        self, request: StartDeviceAuthorizationRequest
    ) -> StartDeviceAuthorizationResponse:
        """Start a device login and return the codes to show the user."""


class OAuthClient(OAuthClientAPI):
    """Synchronous :class:`OAuthClientAPI` backed by :class:`httpx.Client`.

    Args:
        region: Region used to derive the server URL.
        base_url: Explicit server URL; overrides *region*.
        timeout: Per-request timeout in seconds.
        max_attempts: Attempts for the retryable operations.
        transport: Optional httpx transport (tests pass a
            :class:`httpx.MockTransport`).
        sleep: Backoff sleep, injected for tests.

    Example::

        with OAuthClient(region="ap-southeast-1") as oauth:
            reg = oauth.register_client(RegisterClientRequest(client_name="ssocli-x"))
    """

    def __init__(
        self,
        region: str = DEFAULT_SSO_REGION,
        base_url: Optional[str] = None,
        timeout: float = DEFAULT_TIMEOUT,
        max_attempts: int = 3,
        transport: Optional[httpx.BaseTransport] = None,
        sleep: Callable[[float], None] = time.sleep,
    ) -> None:
        self._max_attempts = max_attempts
        self._sleep = sleep
        self._client = httpx.Client(
            base_url=base_url or oauth_base_url(region),
            timeout=timeout,
            transport=transport,
            headers={"Accept": "application/json"},
        )

    @property
    def base_url(self) -> str:
        return str(self._client.base_url)

    def close(self) -> None:
        self._client.close()

    def __enter__(self) -> OAuthClient:
        return self

    def __exit__(self, *args: object) -> None:
        self.close()

    # ------------------------------------------------------------------ #
    # Operations
    # ------------------------------------------------------------------ #

    def register_client(self, request: RegisterClientRequest) -> RegisterClientResponse:
        if not request.client_name:
            raise InvalidUsageError("RegisterClient: client_name is required")
        return self._post(
            "/client/register",
            request.model_dump(mode="json"),
            RegisterClientResponse,
            "RegisterClient",
            max_attempts=1,
        )

    def create_token(self, request: CreateTokenRequest) -> CreateTokenResponse:
        if not request.grant_type:
            raise InvalidUsageError("CreateToken: grant_type is required")
        _require_client(request.client_id, request.client_secret, "CreateToken")
        if request.grant_type == REFRESH_TOKEN_GRANT_TYPE:
            if not request.refresh_token:
                raise InvalidUsageError("CreateToken: refresh_token is required for the refresh_token grant")
        elif request.grant_type in _DEVICE_GRANT_TYPES:
            if not request.device_code:
                raise InvalidUsageError("CreateToken: device_code is required for the device code grant")
        else:
            raise InvalidUsageError(f"CreateToken: unsupported grant_type '{request.grant_type}'")
        return self._post(
            "/token",
            request.model_dump(mode="json", exclude_none=True),
            CreateTokenResponse,
            "CreateToken",
        )

    def revoke_token(self, request: RevokeTokenRequest) -> None:
        if not request.token:
            return
        _require_client(request.client_id, request.client_secret, "RevokeToken")
        self._post(
            "/revoke",
            request.model_dump(mode="json"),
            None,
            "RevokeToken",
        )

    def start_device_authorization(
        self, request: StartDeviceAuthorizationRequest
    ) -> StartDeviceAuthorizationResponse:
        _require_client(request.client_id, request.client_secret, "StartDeviceAuthorization")
        result = self._post(
            "/device_authorization",
            request.model_dump(mode="json"),
            StartDeviceAuthorizationResponse,
            "StartDeviceAuthorization",
        )
        if not result.verification_uri_complete and result.verification_uri and result.user_code:
            result.verification_uri_complete = (
                f"{result.verification_uri}?user_code={result.user_code}"
            )
        return result

    # ------------------------------------------------------------------ #
    # Private helpers
    # ------------------------------------------------------------------ #

    def _post(
        self,
        path: str,
        body: dict[str, Any],
        response_model: Optional[type[ResponseT]],
        operation: str,
        max_attempts: Optional[int] = None,
    ) -> Any:
        def attempt() -> Any:
            return self._post_once(path, body, response_model, operation)

        return call_with_retry(
            attempt,
            operation,
            max_attempts=max_attempts or self._max_attempts,
            sleep=self._sleep,
        )

    def _post_once(
        self,
        path: str,
        body: dict[str, Any],
        response_model: Optional[type[ResponseT]],
        operation: str,
    ) -> Optional[ResponseT]:
        try:
            response = self._client.post(path, json=body)
        except httpx.TransportError as exc:
            raise ConnectionError_(f"{operation} request failed: {exc}") from exc

        request_id = response.headers.get(REQUEST_ID_HEADER)
        if not response.is_success:
            raise _oauth_error(response, request_id)
        if response_model is None:
            return None

        data = _decode_json(response, operation)
        try:
            result = response_model.model_validate(data)
        except ValidationError as exc:
            raise ConnectionError_(f"{operation} returned a malformed response: {exc}") from exc
        if result == response_model():
            raise APIError(
                f"{operation} succeeded but response was empty",
                status_code=response.status_code,
                request_id=request_id,
                raw_body=response.text,
            )
        return result


def _require_client(client_id: str, client_secret: str, operation: str) -> None:
    if not client_id:
        raise InvalidUsageError(f"{operation}: client_id is required")
    if not client_secret:
        raise InvalidUsageError(f"{operation}: client_secret is required")


def _decode_json(response: httpx.Response, operation: str) -> dict[str, Any]:
    if not response.content.strip():
        return {}
    try:
        data = response.json()
    except ValueError as exc:
        raise ConnectionError_(f"{operation} returned a malformed response: {exc}") from exc
    if not isinstance(data, dict):
        raise ConnectionError_(f"{operation} returned a malformed response: expected a JSON object")
    return data


def _oauth_error(response: httpx.Response, request_id: Optional[str]) -> OAuthAPIError:
    code = ""
    description = ""
    try:
        data = response.json()
    except ValueError:
        data = None
    if isinstance(data, dict):
        code = str(data.get("error") or "")
        description = str(data.get("error_description") or "")
    return OAuthAPIError(
        code,
        description,
        status_code=response.status_code,
        request_id=request_id,
        raw_body=response.text,
    )
