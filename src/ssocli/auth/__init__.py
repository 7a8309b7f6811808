"""Device-authorization login and the SSO credential cache.

The main entry points are:

- :class:`CredentialCache` -- fingerprint-keyed, atomically written token
  and client-registration records.
- :class:`DeviceAuthorizationFlow` -- obtains a valid access token,
  reusing, refreshing or re-authorizing as needed.
- :class:`Picker` -- the selection contract used for accounts and roles.

Session lifecycle operations live in :mod:`ssocli.auth.sso`, which
depends on :mod:`ssocli.context` and is therefore imported directly.

Typical usage::

    from ssocli.auth.sso import SsoService

    service = SsoService(context, "corp")
    token = service.get_access_token()
"""

from ssocli.auth.cache_store import (
    CacheKind,
    CredentialCache,
    registration_fingerprint,
    token_fingerprint,
)
from ssocli.auth.device_flow import (
    DeviceAuthorizationFlow,
    TokenErrorAction,
    TokenErrorDecision,
    classify_create_token_error,
)
from ssocli.auth.picker import Picker, PromptPicker

__all__ = [
    "CacheKind",
    "CredentialCache",
    "DeviceAuthorizationFlow",
    "Picker",
    "PromptPicker",
    "TokenErrorAction",
    "TokenErrorDecision",
    "classify_create_token_error",
    "registration_fingerprint",
    "token_fingerprint",
]
