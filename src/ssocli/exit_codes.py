"""Numeric process exit codes following `clig.dev <https://clig.dev/>`_ conventions.

Each constant maps to a specific error category and is referenced by the
corresponding :class:`~ssocli.exceptions.SsoError` subclass.
Shell wrappers that call ``ssocli sso credentials`` can inspect the exit
code to tell a missing login apart from a network outage without parsing
stderr.

Example::

    $ ssocli sso token --no-login
    $ echo $?
    3   # EXIT_AUTH_FAILURE -- no usable cached token
"""

EXIT_SUCCESS = 0
"""The command completed successfully."""

EXIT_GENERIC_FAILURE = 1
"""An unclassified error occurred."""

EXIT_INVALID_USAGE = 2
"""The command was invoked with invalid arguments or missing required parameters."""

EXIT_AUTH_FAILURE = 3
"""Authentication or authorisation failed."""

EXIT_API_ERROR = 5
"""The OAuth server or identity portal returned an error response."""

EXIT_CONNECTION_ERROR = 6
"""A network-level error occurred (timeout, DNS failure, connection refused)."""

EXIT_CANCELLED = 130
"""The user interrupted the command or aborted a selection."""
