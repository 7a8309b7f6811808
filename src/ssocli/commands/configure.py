"""Configure commands -- define SSO sessions and SSO profiles.

Provides the ``ssocli configure`` sub-command group:

* ``sso-session`` creates or updates a named SSO session (start URL,
  region, registration scopes). Missing values are prompted for.
* ``sso`` logs in to a session, lets the user pick an account and role,
  and stores the result as the current profile.

Typical workflow::

    ssocli configure sso-session --name corp --start-url https://corp.example/start
    ssocli configure sso --sso-session corp
"""

from __future__ import annotations

from typing import Optional

import typer

from ssocli.auth.sso import SsoService, resolve_session_name
from ssocli.commands import handle_errors
from ssocli.config import load_config, normalize_registration_scopes, save_config
from ssocli.context import create_context
from ssocli.exceptions import InvalidUsageError
from ssocli.models import DEFAULT_SSO_REGION, SsoSession
from ssocli.output import get_output, success, suggest


configure_app = typer.Typer(no_args_is_help=True)


@configure_app.command("sso-session")
def configure_sso_session(
    name: Optional[str] = typer.Option(None, "--name", help="SSO session name."),
    start_url: Optional[str] = typer.Option(None, "--start-url", help="SSO start URL."),
    region: Optional[str] = typer.Option(None, "--region", help="SSO region."),
    registration_scopes: Optional[str] = typer.Option(
        None,
        "--registration-scopes",
        help="Comma-separated scopes to register the client with.",
    ),
) -> None:
    """Create or update an SSO session."""
    with handle_errors():
        config = load_config()
        if not name:
            name = typer.prompt("SSO session name", err=True)
        name = name.strip()
        if not name:
            raise InvalidUsageError("SSO session name must not be empty")

        existing = config.sso_sessions.get(name)
        if not start_url:
            start_url = typer.prompt(
                "SSO start URL", default=existing.start_url if existing else None, err=True
            )
        start_url = start_url.strip()
        if not start_url:
            raise InvalidUsageError("SSO start URL must not be empty")

        if region is None:
            region = existing.region if existing else DEFAULT_SSO_REGION
        if registration_scopes is not None:
            scopes = normalize_registration_scopes(registration_scopes.split(","))
        else:
            scopes = normalize_registration_scopes(existing.registration_scopes if existing else [])

        config.sso_sessions[name] = SsoSession(
            name=name,
            start_url=start_url,
            region=region.strip() or DEFAULT_SSO_REGION,
            registration_scopes=scopes,
        )
        save_config(config)

    success(f"SSO session '{name}' saved.")
    suggest(f"Configure a profile: ssocli configure sso --sso-session {name}")


@configure_app.command("sso")
def configure_sso(
    ctx: typer.Context,
    sso_session: Optional[str] = typer.Option(
        None, "--sso-session", "-s", help="SSO session to use."
    ),
    no_browser: bool = typer.Option(
        False, "--no-browser", help="Print the login URL instead of opening a browser."
    ),
) -> None:
    """Log in and bind a profile to an account and role.

    The profile name comes from the global ``--profile`` option; without
    it the profile is named ``<role>-<account_id>``.
    """
    profile_name = (ctx.obj or {}).get("profile")
    with handle_errors(), create_context(get_output()) as sso_ctx:
        name = resolve_session_name(sso_ctx, session_name=sso_session)
        profile = SsoService(sso_ctx, name, no_browser=no_browser).configure_profile(profile_name)

    success(
        f"Profile '{profile.name}' now uses role '{profile.role_name}' "
        f"in account {profile.account_id}."
    )
    suggest("Fetch credentials: ssocli sso credentials")
