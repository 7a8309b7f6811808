"""HTTP client for the cloud identity portal.

The portal lists the accounts and roles assigned to a signed-in user and
exchanges an access token for short-lived role credentials. All calls are
``GET`` requests under ``https://cloudidentity-portal.<region>.bytepluses.com``
that carry the access token in the ``x-bd-cloudidentity-bearer-token``
header and answer with an envelope::

    {
      "ResponseMetadata": {"RequestId": "...", "Error": {"Code": "...", "Message": "..."}},
      "Result": {...}
    }

An ``Error`` inside ``ResponseMetadata`` is a failure even when the HTTP
status is 2xx.

Listing is page-number based. The portal does not hand out cursors, so the
client synthesises one: the cursor is the next page number as a string,
returned while ``Total > PageNumber * PageSize``. :func:`paginate` walks
the cursors until none is left.
"""

from __future__ import annotations

import logging
import time
from abc import ABC, abstractmethod
from typing import Any, Callable, Optional, TypeVar

import httpx
from pydantic import ValidationError

from ssocli.client.retry import call_with_retry
from ssocli.exceptions import APIError, ConnectionError_, InvalidUsageError, PortalAPIError
from ssocli.models import (
    DEFAULT_SSO_REGION,
    AccountInfo,
    ListAccountRolesResponse,
    ListAccountsResponse,
    RoleCredentials,
    RoleInfo,
)

logger = logging.getLogger(__name__)

PORTAL_URL_TEMPLATE = "https://cloudidentity-portal.{region}.bytepluses.com"
BEARER_TOKEN_HEADER = "x-bd-cloudidentity-bearer-token"
DEFAULT_PAGE_SIZE = 50
DEFAULT_TIMEOUT = 30.0

T = TypeVar("T")


def portal_base_url(region: str = "") -> str:
    return PORTAL_URL_TEMPLATE.format(region=region or DEFAULT_SSO_REGION)


# --- Pagination ---


def resolve_page_number(next_token: Optional[str], page_number: Optional[int] = None) -> int:
    """Turn a cursor into a 1-based page number.

    An explicit *page_number* wins. An absent or blank cursor means page 1.

    Raises:
        InvalidUsageError: If the cursor is not a positive integer.
    """
    if page_number is not None and page_number > 0:
        return page_number
    if next_token is None or not next_token.strip():
        return 1
    try:
        value = int(next_token.strip())
    except ValueError:
        raise InvalidUsageError(f"invalid next token '{next_token}': expected a page number") from None
    if value <= 0:
        raise InvalidUsageError(f"invalid next token '{next_token}': page numbers start at 1")
    return value


def compute_next_token(total: int, page_number: int, page_size: int) -> Optional[str]:
    """Return the cursor of the page after *page_number*, or ``None`` on the last page."""
    if page_size <= 0 or page_number <= 0:
        return None
    if total > page_number * page_size:
        return str(page_number + 1)
    return None


def paginate(fetch: Callable[[Optional[str]], tuple[list[T], Optional[str]]]) -> list[T]:
    """Collect every item by following cursors until none is returned.

    Args:
        fetch: Called with the current cursor (``None`` for the first
            page); returns the page's items and the next cursor.
    """
    items: list[T] = []
    seen: set[str] = set()
    token: Optional[str] = None
    while True:
        page, token = fetch(token)
        items.extend(page)
        if not token:
            return items
        if token in seen:
            logger.debug("Portal repeated page cursor %s; stopping pagination", token)
            return items
        seen.add(token)


# --- Client ---


class PortalClientAPI(ABC):
    """Account, role and credential lookups for a signed-in user."""

    @abstractmethod
    def list_accounts(
        self,
        access_token: str,
        next_token: Optional[str] = None,
        page_size: Optional[int] = None,
    ) -> ListAccountsResponse:
        """Return one page of accounts assigned to the user."""

    @abstractmethod
    def list_account_roles(
        self,
        access_token: str,
        account_id: str,
        next_token: Optional[str] = None,
        page_size: Optional[int] = None,
    ) -> ListAccountRolesResponse:
        """Return one page of roles the user may assume in *account_id*."""

    @abstractmethod
    def get_role_credentials(
        self, access_token: str, account_id: str, role_name: str
    ) -> RoleCredentials:
        """Exchange the access token for credentials of one role."""

    def list_all_accounts(self, access_token: str) -> list[AccountInfo]:
        def fetch(token: Optional[str]) -> tuple[list[AccountInfo], Optional[str]]:
            page = self.list_accounts(access_token, next_token=token)
            return page.accounts, page.next_token

        return paginate(fetch)

    def list_all_roles(self, access_token: str, account_id: str) -> list[RoleInfo]:
        def fetch(token: Optional[str]) -> tuple[list[RoleInfo], Optional[str]]:
            page = self.list_account_roles(access_token, account_id, next_token=token)
            return page.roles, page.next_token

        return paginate(fetch)


class PortalClient(PortalClientAPI):
    """Synchronous :class:`PortalClientAPI` backed by :class:`httpx.Client`.

    Args:
        region: Region used to derive the portal URL.
        base_url: Explicit portal URL; overrides *region*.
        timeout: Per-request timeout in seconds.
        max_attempts: Attempts per call; transport failures and 5xx
            responses are retried.
        transport: Optional httpx transport for tests.
        sleep: Backoff sleep, injected for tests.
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
            base_url=base_url or portal_base_url(region),
            timeout=timeout,
            transport=transport,
            headers={"Accept": "application/json"},
        )

    def close(self) -> None:
        self._client.close()

    def __enter__(self) -> PortalClient:
        return self

    def __exit__(self, *args: object) -> None:
        self.close()

    def list_accounts(
        self,
        access_token: str,
        next_token: Optional[str] = None,
        page_size: Optional[int] = None,
    ) -> ListAccountsResponse:
        page_number = resolve_page_number(next_token)
        size = page_size or DEFAULT_PAGE_SIZE
        result = self._get(
            "/assignment/accounts",
            {"page_size": size, "page_number": page_number},
            access_token,
            "ListAccounts",
        )
        accounts = _validate_items(AccountInfo, result.get("AccountList"), "ListAccounts")
        return ListAccountsResponse(
            accounts=accounts,
            next_token=_next_token_from(result, page_number, size, "ListAccounts"),
        )

    def list_account_roles(
        self,
        access_token: str,
        account_id: str,
        next_token: Optional[str] = None,
        page_size: Optional[int] = None,
    ) -> ListAccountRolesResponse:
        if not account_id:
            raise InvalidUsageError("ListAccountRoles: account_id is required")
        page_number = resolve_page_number(next_token)
        size = page_size or DEFAULT_PAGE_SIZE
        result = self._get(
            "/assignment/roles",
            {"account_id": account_id, "page_size": size, "page_number": page_number},
            access_token,
            "ListAccountRoles",
        )
        roles = _validate_items(RoleInfo, result.get("RoleList"), "ListAccountRoles")
        return ListAccountRolesResponse(
            roles=roles,
            next_token=_next_token_from(result, page_number, size, "ListAccountRoles"),
        )

    def get_role_credentials(
        self, access_token: str, account_id: str, role_name: str
    ) -> RoleCredentials:
        if not account_id:
            raise InvalidUsageError("GetRoleCredentials: account_id is required")
        if not role_name:
            raise InvalidUsageError("GetRoleCredentials: role_name is required")
        result = self._get(
            "/federation/credentials",
            {"account_id": account_id, "role_name": role_name},
            access_token,
            "GetRoleCredentials",
        )
        raw = result.get("RoleCredentials")
        if not isinstance(raw, dict):
            raise APIError("GetRoleCredentials succeeded but returned no credentials")
        try:
            return RoleCredentials.model_validate(raw)
        except ValidationError as exc:
            raise ConnectionError_(f"GetRoleCredentials returned a malformed response: {exc}") from exc

    # ------------------------------------------------------------------ #
    # Private helpers
    # ------------------------------------------------------------------ #

    def _get(
        self,
        path: str,
        params: dict[str, Any],
        access_token: str,
        operation: str,
    ) -> dict[str, Any]:
        if not access_token:
            raise InvalidUsageError(f"{operation}: access token is required")
        headers = {BEARER_TOKEN_HEADER: access_token}

        def attempt() -> dict[str, Any]:
            return self._get_once(path, params, headers, operation)

        return call_with_retry(attempt, operation, max_attempts=self._max_attempts, sleep=self._sleep)

    def _get_once(
        self,
        path: str,
        params: dict[str, Any],
        headers: dict[str, str],
        operation: str,
    ) -> dict[str, Any]:
        try:
            response = self._client.get(path, params=params, headers=headers)
        except httpx.TransportError as exc:
            raise ConnectionError_(f"{operation} request failed: {exc}") from exc

        try:
            data = response.json()
        except ValueError:
            data = None

        if not isinstance(data, dict):
            if response.is_success:
                raise ConnectionError_(f"{operation} returned a malformed response: {response.text[:200]}")
            raise PortalAPIError("", status_code=response.status_code, raw_body=response.text)

        metadata = data.get("ResponseMetadata") or {}
        if not isinstance(metadata, dict):
            raise ConnectionError_(
                f"{operation} returned a malformed response: ResponseMetadata is not an object"
            )
        request_id = str(metadata.get("RequestId") or "") or None
        error = metadata.get("Error")
        if error and not isinstance(error, dict):
            raise ConnectionError_(f"{operation} returned a malformed response: Error is not an object")
        if isinstance(error, dict) and (error.get("Code") or error.get("Message")):
            raise PortalAPIError(
                str(error.get("Code") or ""),
                str(error.get("Message") or ""),
                status_code=response.status_code,
                request_id=request_id,
                raw_body=response.text,
            )
        if not response.is_success:
            raise PortalAPIError(
                "",
                status_code=response.status_code,
                request_id=request_id,
                raw_body=response.text,
            )

        result = data.get("Result")
        if not isinstance(result, dict):
            raise APIError(
                f"{operation} succeeded but response was empty",
                status_code=response.status_code,
                request_id=request_id,
                raw_body=response.text,
            )
        return result


def _validate_items(model: type[T], raw: Any, operation: str) -> list[T]:
    if raw is None:
        return []
    if not isinstance(raw, list):
        raise ConnectionError_(f"{operation} returned a malformed response: expected a list")
    try:
        return [model.model_validate(item) for item in raw]  # type: ignore[attr-defined]
    except ValidationError as exc:
        raise ConnectionError_(f"{operation} returned a malformed response: {exc}") from exc


def _next_token_from(
    result: dict[str, Any], requested_page: int, requested_size: int, operation: str
) -> Optional[str]:
    try:
        total = int(result.get("Total") or 0)
        page_number = int(result.get("PageNumber") or requested_page)
        page_size = int(result.get("PageSize") or requested_size)
    except (TypeError, ValueError) as exc:
        raise ConnectionError_(f"{operation} returned a malformed response: invalid paging fields") from exc
    return compute_next_token(total, page_number, page_size)
