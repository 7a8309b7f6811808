"""Exception hierarchy for ssocli.

All exceptions inherit from :class:`SsoError`, which carries an
``exit_code`` attribute mapped to a constant from :mod:`ssocli.exit_codes`.
The top-level error handler in :func:`ssocli.app.main` catches
``SsoError`` and exits with the appropriate code, while unexpected
exceptions produce a crash log and exit with :data:`EXIT_GENERIC_FAILURE`.

Subclass hierarchy::

    SsoError (exit 1)
    +-- InvalidUsageError            (exit 2)
    +-- AuthError                    (exit 3)
    |   +-- DeviceAuthorizationTimeout
    +-- APIError                     (exit 5)
    |   +-- OAuthAPIError
    |   +-- PortalAPIError
    +-- ConnectionError_             (exit 6)
    +-- ConfigError                  (exit 1)
    |   +-- CacheCorruptionError
    +-- SelectionAbortedError        (exit 130)
"""

from __future__ import annotations

from typing import Optional

from ssocli.exit_codes import (
    EXIT_API_ERROR,
    EXIT_AUTH_FAILURE,
    EXIT_CANCELLED,
    EXIT_CONNECTION_ERROR,
    EXIT_GENERIC_FAILURE,
    EXIT_INVALID_USAGE,
)


class SsoError(Exception):
    """Base exception for all ssocli errors.

    Every subclass sets a class-level ``exit_code`` corresponding to one of
    the constants in :mod:`ssocli.exit_codes`. The entry point catches
    this exception type and calls ``sys.exit(exc.exit_code)``.

    Args:
        message: Human-readable error description printed to stderr.
        exit_code: Optional override for the class-level exit code.
    """

    exit_code: int = EXIT_GENERIC_FAILURE

    def __init__(self, message: str, exit_code: int | None = None):
        super().__init__(message)
        if exit_code is not None:
            self.exit_code = exit_code


class InvalidUsageError(SsoError):
    """Raised for invalid arguments or request fields missing before a network call."""

    exit_code = EXIT_INVALID_USAGE


class AuthError(SsoError):
    """Raised when login cannot complete; the message tells the user what to do next."""

    exit_code = EXIT_AUTH_FAILURE


class DeviceAuthorizationTimeout(AuthError):
    """Raised when the device code expires before the user approves it."""


class APIError(SsoError):
    """Raised when a remote endpoint answers with an error.

    Args:
        message: Human-readable description.
        status_code: HTTP status of the failing response.
        request_id: Server-side request identifier, when one was returned.
        raw_body: Undecoded response body for troubleshooting.
    """

    exit_code = EXIT_API_ERROR

    def __init__(
        self,
        message: str,
        status_code: int = 0,
        request_id: Optional[str] = None,
        raw_body: str = "",
    ):
        super().__init__(message)
        self.status_code = status_code
        self.request_id = request_id
        self.raw_body = raw_body


class OAuthAPIError(APIError):
    """An OAuth protocol error (``{"error": ..., "error_description": ...}``)."""

    def __init__(
        self,
        error: str,
        error_description: str = "",
        status_code: int = 0,
        request_id: Optional[str] = None,
        raw_body: str = "",
    ):
        if error:
            message = f"request failed: {error}"
            if error_description:
                message += f" ({error_description})"
        else:
            message = f"request failed: {raw_body.strip() or 'empty response body'}"
        message += f" [status {status_code}"
        if request_id:
            message += f", requestId={request_id}"
        message += "]"
        super().__init__(message, status_code, request_id, raw_body)
        self.error = error
        self.error_description = error_description


class PortalAPIError(APIError):
    """An identity-portal error taken from the response envelope metadata."""

    def __init__(
        self,
        code: str,
        message: str = "",
        status_code: int = 0,
        request_id: Optional[str] = None,
        raw_body: str = "",
    ):
        if code or message:
            detail = f"{code}: {message}" if code and message else (code or message)
        else:
            detail = raw_body.strip() or "empty response body"
        text = f"portal API request failed: {detail} [status {status_code}"
        if request_id:
            text += f", requestId={request_id}"
        text += "]"
        super().__init__(text, status_code, request_id, raw_body)
        self.code = code
        self.message = message


class ConnectionError_(SsoError):
    """Raised on network-level failures (timeout, DNS resolution, connection refused).

    Also used when a server answers 2xx with a body that cannot be decoded.
    Named with a trailing underscore to avoid shadowing the built-in
    ``ConnectionError``.
    """

    exit_code = EXIT_CONNECTION_ERROR


class ConfigError(SsoError):
    """Raised for configuration problems (unknown sessions, invalid JSON, bad scopes)."""

    exit_code = EXIT_GENERIC_FAILURE


class CacheCorruptionError(ConfigError):
    """Raised when a cached client registration exists but cannot be parsed."""


class SelectionAbortedError(SsoError):
    """Raised when the user aborts an interactive account or role selection."""

    exit_code = EXIT_CANCELLED
