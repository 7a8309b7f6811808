"""Canonical Pydantic models shared across all ssocli modules.

This is the single source of truth for data shapes in the project. Every other
module imports from here rather than defining its own models. The models fall
into three groups:

**Configuration models** -- serialised as JSON in the user's config directory:
    :class:`SsoSession`, :class:`Profile`, :class:`RequestConfig` and
    :class:`AppConfig`.

**Cache records** -- one JSON file per fingerprint under the SSO cache
directory:
    :class:`TokenRecord` and :class:`ClientRegistration`.

**Wire models** -- request and response bodies of the OAuth server and the
identity portal:
    :class:`RegisterClientRequest`, :class:`CreateTokenRequest`,
    :class:`StartDeviceAuthorizationResponse`, :class:`AccountInfo`,
    :class:`RoleCredentials` and friends.

All models use Pydantic v2. Portal payloads use PascalCase keys on the wire;
those models declare aliases and ``populate_by_name`` so that Python code
always works with snake_case attributes.
"""

from __future__ import annotations

import enum
from datetime import datetime, timedelta, timezone
from typing import Optional

from pydantic import AliasChoices, BaseModel, ConfigDict, Field

DEFAULT_SSO_REGION = "ap-southeast-1"
DEVICE_CODE_GRANT_TYPE = "urn:ietf:params:oauth:grant-type:device_code"
REFRESH_TOKEN_GRANT_TYPE = "refresh_token"


# --- Time helpers ---


def utcnow() -> datetime:
    """Current time as an aware UTC datetime."""
    return datetime.now(timezone.utc)


def format_rfc3339(value: datetime) -> str:
    """Serialise *value* as an RFC 3339 timestamp with second precision."""
    return value.astimezone(timezone.utc).replace(microsecond=0).isoformat().replace("+00:00", "Z")


def parse_rfc3339(value: str) -> Optional[datetime]:
    """Parse an RFC 3339 timestamp, returning ``None`` when it is empty or malformed."""
    if not value:
        return None
    text = value.strip()
    if text.endswith(("Z", "z")):
        text = text[:-1] + "+00:00"
    try:
        parsed = datetime.fromisoformat(text)
    except ValueError:
        return None
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed


def epoch_to_datetime(value: int) -> datetime:
    """Convert an epoch timestamp of unknown unit into an aware datetime.

    The identity portal has returned expirations in seconds, milliseconds,
    microseconds and nanoseconds. The unit is inferred from the magnitude.
    """
    if value >= 10**18:
        seconds = value / 1e9
    elif value >= 10**15:
        seconds = value / 1e6
    elif value >= 10**12:
        seconds = value / 1e3
    else:
        seconds = float(value)
    return datetime.fromtimestamp(seconds, tz=timezone.utc)


def epoch_millis(value: datetime) -> int:
    return int(value.timestamp() * 1000)


# --- Configuration ---


class ProfileMode(str, enum.Enum):
    """How a profile obtains its API credentials."""

    SSO = "sso"
    AK = "ak"


class SsoSession(BaseModel):
    """A named login context: where to sign in and which scopes to register.

    Example::

        SsoSession(name="corp", start_url="https://corp.example/start")
    """

    name: str
    start_url: str = ""
    region: str = DEFAULT_SSO_REGION
    registration_scopes: list[str] = Field(default_factory=list)


class Profile(BaseModel):
    """A named credential target.

    For SSO-mode profiles the ``access_key``, ``secret_key``,
    ``session_token`` and ``sts_expiration`` fields are derived state:
    they are overwritten whenever fresh role credentials are fetched and
    cleared on logout. ``sts_expiration`` is an epoch value whose unit is
    detected by :func:`epoch_to_datetime`.
    """

    name: str
    mode: ProfileMode = ProfileMode.AK
    region: str = ""
    endpoint: str = ""
    disable_ssl: bool = False
    access_key: str = ""
    secret_key: str = ""
    session_token: str = ""
    sts_expiration: int = 0
    sso_session_name: str = ""
    account_id: str = ""
    role_name: str = ""

    @property
    def is_sso(self) -> bool:
        return self.mode == ProfileMode.SSO

    def has_valid_sts_credentials(self, now: Optional[datetime] = None) -> bool:
        """Return True while the cached STS credentials can still be used."""
        if not self.session_token or self.sts_expiration <= 0:
            return False
        return (now or utcnow()) < epoch_to_datetime(self.sts_expiration)

    def apply_role_credentials(self, credentials: RoleCredentials) -> None:
        self.access_key = credentials.access_key_id
        self.secret_key = credentials.secret_access_key
        self.session_token = credentials.session_token
        self.sts_expiration = credentials.expiration

    def clear_sts_credentials(self) -> None:
        self.access_key = ""
        self.secret_key = ""
        self.session_token = ""
        self.sts_expiration = 0


class RequestConfig(BaseModel):
    """HTTP settings shared by the OAuth and portal clients."""

    oauth_timeout: float = Field(default=10.0, description="Per-request timeout for the OAuth server")
    portal_timeout: float = Field(default=30.0, description="Per-request timeout for the identity portal")
    max_attempts: int = Field(default=3, ge=1, description="Attempts for retryable calls")
    oauth_base_url: Optional[str] = Field(
        default=None, description="Override of the region-derived OAuth server URL"
    )
    portal_base_url: Optional[str] = Field(
        default=None, description="Override of the region-derived portal URL"
    )


class AppConfig(BaseModel):
    """The whole profile store, persisted as ``config.json``."""

    current: Optional[str] = None
    profiles: dict[str, Profile] = Field(default_factory=dict)
    sso_sessions: dict[str, SsoSession] = Field(default_factory=dict)
    enable_color: bool = True
    request: RequestConfig = Field(default_factory=RequestConfig)


# --- Cache records ---


class ClientRegistration(BaseModel):
    """A dynamically registered public OAuth client.

    ``client_secret_expires_at`` is in epoch milliseconds; ``0`` means the
    secret never expires.
    """

    client_name: str = ""
    client_id: str = ""
    client_secret: str = ""
    client_id_issued_at: int = 0
    client_secret_expires_at: int = 0

    @property
    def is_usable(self) -> bool:
        return bool(self.client_id and self.client_secret)

    def is_expired(self, now: Optional[datetime] = None) -> bool:
        if self.client_secret_expires_at == 0:
            return False
        return epoch_millis(now or utcnow()) >= self.client_secret_expires_at


class TokenRecord(BaseModel):
    """The cached login state of one SSO session.

    Besides the access and refresh tokens the record carries a copy of the
    client credentials, so a session can still refresh when the separate
    registration cache entry has been lost.
    """

    start_url: str = ""
    session_name: str = ""
    access_token: str = ""
    expires_at: str = Field(default="", description="RFC 3339 expiry of access_token")
    client_id: str = ""
    client_secret: str = ""
    client_id_issued_at: int = 0
    client_secret_expires_at: int = 0
    refresh_token: str = ""
    region: str = ""

    def is_expired(self, now: Optional[datetime] = None) -> bool:
        expires = parse_rfc3339(self.expires_at)
        if expires is None:
            return True
        return (now or utcnow()) >= expires

    @property
    def client(self) -> ClientRegistration:
        """The client credentials embedded in this record."""
        return ClientRegistration(
            client_id=self.client_id,
            client_secret=self.client_secret,
            client_id_issued_at=self.client_id_issued_at,
            client_secret_expires_at=self.client_secret_expires_at,
        )

    def set_client(self, client: ClientRegistration) -> None:
        self.client_id = client.client_id
        self.client_secret = client.client_secret
        self.client_id_issued_at = client.client_id_issued_at
        self.client_secret_expires_at = client.client_secret_expires_at

    def set_access_token(self, access_token: str, expires_in: int, now: Optional[datetime] = None) -> None:
        self.access_token = access_token
        self.expires_at = format_rfc3339((now or utcnow()) + timedelta(seconds=expires_in))


# --- OAuth wire models ---


class RegisterClientRequest(BaseModel):
    client_name: str
    client_type: str = "public"
    grant_types: list[str] = Field(
        default_factory=lambda: [DEVICE_CODE_GRANT_TYPE, REFRESH_TOKEN_GRANT_TYPE]
    )
    scopes: list[str] = Field(default_factory=list)


class RegisterClientResponse(BaseModel):
    client_id: str = ""
    client_secret: str = ""
    client_id_issued_at: int = 0
    client_secret_expires_at: int = 0


class CreateTokenRequest(BaseModel):
    """Body of the token endpoint; exactly one of the grant fields is sent."""

    grant_type: str
    client_id: str = ""
    client_secret: str = ""
    refresh_token: Optional[str] = None
    device_code: Optional[str] = None


class CreateTokenResponse(BaseModel):
    access_token: str = ""
    token_type: str = ""
    refresh_token: str = ""
    expires_in: int = 0


class RevokeTokenRequest(BaseModel):
    client_id: str = ""
    client_secret: str = ""
    token: str = ""


class StartDeviceAuthorizationRequest(BaseModel):
    client_id: str = ""
    client_secret: str = ""
    scopes: list[str] = Field(default_factory=list)
    portal_url: str = Field(default="", description="The SSO session's start URL")


class StartDeviceAuthorizationResponse(BaseModel):
    device_code: str = ""
    user_code: str = ""
    verification_uri: str = ""
    verification_uri_complete: str = ""
    expires_in: int = 0
    interval: int = 0


# --- Portal wire models ---


class AccountInfo(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    account_id: str = Field(default="", alias="AccountId")
    account_name: str = Field(default="", alias="AccountName")


class RoleInfo(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    account_id: str = Field(default="", alias="AccountId")
    role_name: str = Field(default="", alias="RoleName")


class ListAccountsResponse(BaseModel):
    accounts: list[AccountInfo] = Field(default_factory=list)
    next_token: Optional[str] = None


class ListAccountRolesResponse(BaseModel):
    roles: list[RoleInfo] = Field(default_factory=list)
    next_token: Optional[str] = None


class RoleCredentials(BaseModel):
    """Short-lived API credentials for one (account, role) pair."""

    model_config = ConfigDict(populate_by_name=True)

    access_key_id: str = Field(default="", alias="AccessKeyId")
    secret_access_key: str = Field(default="", alias="SecretAccessKey")
    session_token: str = Field(
        default="",
        alias="SessionToken",
        validation_alias=AliasChoices("sessionToken", "SessionToken", "session_token"),
    )
    expiration: int = Field(default=0, alias="Expiration")

    @property
    def expires(self) -> datetime:
        return epoch_to_datetime(self.expiration)
