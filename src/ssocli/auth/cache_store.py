"""File-backed cache of SSO tokens and client registrations.

Records live under ``<config_dir>/sso/cache`` (mode ``0o700``), one JSON
file per *fingerprint*. A fingerprint is the lowercase SHA-1 hex digest of
the compact JSON encoding of the fields that identify a record:

* token records -- ``start_url`` and ``session_name``;
* client registrations -- ``start_url``, ``region``, ``scopes`` and
  ``session_name``.

Identical inputs always produce the same file name, so repeated logins of
the same session overwrite one file instead of piling up new ones. Files
are written atomically with ``0o600`` permissions via
:func:`~ssocli.config.atomic_write`.

Unreadable records are treated differently by kind. A corrupted token is
deleted and reported as absent, because the next login simply rewrites
it. A corrupted registration raises
:class:`~ssocli.exceptions.CacheCorruptionError`, because silently
re-registering would orphan the client the server still knows about.

See Also:
    :class:`~ssocli.auth.device_flow.DeviceAuthorizationFlow` -- the main
    reader and writer of both record kinds.
"""

from __future__ import annotations

import enum
import hashlib
import json
import logging
from pathlib import Path
from typing import Optional, Sequence, Union

from pydantic import ValidationError

from ssocli.config import atomic_write
from ssocli.exceptions import CacheCorruptionError
from ssocli.models import ClientRegistration, TokenRecord

logger = logging.getLogger(__name__)

CacheRecord = Union[TokenRecord, ClientRegistration]


class CacheKind(str, enum.Enum):
    """The two record types kept in the SSO cache directory."""

    TOKEN = "token"
    CLIENT_REGISTRATION = "client_registration"


# HTML-sensitive characters are escaped inside fingerprint JSON, so a start
# URL with a query string keeps the file name other SSO tools expect.
_HTML_SAFE_ESCAPES = {
    "&": "\\u0026",
    "<": "\\u003c",
    ">": "\\u003e",
    "\u2028": "\\u2028",
    "\u2029": "\\u2029",
}


def _fingerprint(fields: dict[str, object]) -> str:
    encoded = json.dumps(fields, separators=(",", ":"), ensure_ascii=False)
    for char, escape in _HTML_SAFE_ESCAPES.items():
        encoded = encoded.replace(char, escape)
    return hashlib.sha1(encoded.encode("utf-8")).hexdigest()


def token_fingerprint(start_url: str, session_name: str) -> str:
    """Fingerprint of the token record for one SSO session."""
    return _fingerprint({"start_url": start_url, "session_name": session_name})


def registration_fingerprint(
    start_url: str, region: str, scopes: Sequence[str], session_name: str
) -> str:
    """Fingerprint of the client registration for one SSO session.

    Scopes are part of the key, so changing a session's registration
    scopes registers a new client instead of reusing one with the wrong
    grants.
    """
    return _fingerprint(
        {
            "start_url": start_url,
            "region": region,
            "scopes": list(scopes),
            "session_name": session_name,
        }
    )


class CredentialCache:
    """Read/write access to the SSO cache directory.

    No locking is performed. Concurrent writers of the same fingerprint
    race and the last rename wins; readers never see a partial file.

    Args:
        cache_dir: Directory holding the ``<fingerprint>.json`` files.

    Example::

        cache = CredentialCache(get_sso_cache_dir())
        key = token_fingerprint(session.start_url, session.name)
        record = cache.get(CacheKind.TOKEN, key)
    """

    def __init__(self, cache_dir: Path) -> None:
        self._dir = Path(cache_dir)

    @property
    def directory(self) -> Path:
        return self._dir

    def path_for(self, fingerprint: str) -> Path:
        return self._dir / f"{fingerprint}.json"

    def get(self, kind: CacheKind, fingerprint: str) -> Optional[CacheRecord]:
        """Load a record, or return ``None`` if there is no usable one.

        Raises:
            CacheCorruptionError: If a client registration exists but
                cannot be parsed.
            OSError: If the file exists but cannot be read.
        """
        if kind == CacheKind.TOKEN:
            return self.get_token(fingerprint)
        return self.get_registration(fingerprint)

    def get_token(self, fingerprint: str) -> Optional[TokenRecord]:
        path = self.path_for(fingerprint)
        raw = self._read(path)
        if raw is None:
            return None
        return self._parse_token(path, raw)

    def get_registration(self, fingerprint: str) -> Optional[ClientRegistration]:
        path = self.path_for(fingerprint)
        raw = self._read(path)
        if raw is None:
            return None
        return self._parse_registration(path, raw)

    def put(self, kind: CacheKind, fingerprint: str, record: CacheRecord) -> None:
        """Atomically write *record* as ``<fingerprint>.json`` with mode ``0o600``."""
        expected = TokenRecord if kind == CacheKind.TOKEN else ClientRegistration
        if not isinstance(record, expected):
            raise TypeError(f"{kind.value} cache entries must be {expected.__name__}")
        self._ensure_dir()
        data = record.model_dump(mode="json")
        atomic_write(self.path_for(fingerprint), json.dumps(data, indent=2) + "\n")

    def delete(self, kind: CacheKind, fingerprint: str) -> None:
        """Remove a record. Deleting a missing record is not an error."""
        path = self.path_for(fingerprint)
        try:
            path.unlink()
        except FileNotFoundError:
            return
        logger.debug("Removed %s cache entry %s", kind.value, path.name)

    # ------------------------------------------------------------------ #
    # Private helpers
    # ------------------------------------------------------------------ #

    def _ensure_dir(self) -> None:
        self._dir.mkdir(mode=0o700, parents=True, exist_ok=True)
        self._dir.chmod(0o700)

    def _read(self, path: Path) -> Optional[bytes]:
        try:
            raw = path.read_bytes()
        except FileNotFoundError:
            return None
        if not raw.strip():
            return None
        return raw

    def _parse_token(self, path: Path, raw: bytes) -> Optional[TokenRecord]:
        try:
            return TokenRecord.model_validate(json.loads(raw.decode("utf-8")))
        except (UnicodeDecodeError, json.JSONDecodeError, ValidationError) as exc:
            logger.debug("Discarding unreadable token cache %s: %s", path.name, exc)
            path.unlink(missing_ok=True)
            return None

    def _parse_registration(self, path: Path, raw: bytes) -> Optional[ClientRegistration]:
        try:
            record = ClientRegistration.model_validate(json.loads(raw.decode("utf-8")))
        except (UnicodeDecodeError, json.JSONDecodeError, ValidationError) as exc:
            raise CacheCorruptionError(
                f"client registration cache {path} is corrupted: {exc}; "
                "remove the file and log in again"
            ) from exc
        if not record.is_usable:
            return None
        return record
