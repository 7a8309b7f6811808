"""Built-in CLI sub-commands for ssocli.

This package groups the Typer sub-command modules of the CLI:

* :mod:`~ssocli.commands.sso` -- log in and out of SSO sessions, print
  access tokens and role credentials.
* :mod:`~ssocli.commands.configure` -- define SSO sessions and bind
  profiles to an account and role.

Each module exports a :class:`typer.Typer` sub-application registered on
the root app in :func:`ssocli.app.main`.
"""

from __future__ import annotations

from contextlib import contextmanager
from typing import Iterator

import typer

from ssocli.exceptions import SsoError
from ssocli.output import error


@contextmanager
def handle_errors() -> Iterator[None]:
    """Report an :class:`~ssocli.exceptions.SsoError` and exit with its code."""
    try:
        yield
    except SsoError as exc:
        error(str(exc))
        raise typer.Exit(code=exc.exit_code) from None
