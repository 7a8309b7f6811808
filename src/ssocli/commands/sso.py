"""SSO commands -- log in, log out, and fetch credentials.

Provides the ``ssocli sso`` sub-command group. Login state is kept per
SSO session in the credential cache; role credentials are stored on the
profile that requested them.

Typical workflow::

    ssocli sso login --sso-session corp     # device login in the browser
    ssocli sso token                        # print the access token
    ssocli --profile dev sso credentials    # STS credentials for a profile
    ssocli sso logout --all                 # revoke and forget everything
"""

from __future__ import annotations

from typing import Optional

import typer

from ssocli.auth.sso import SsoService, ensure_valid_sts_token, logout_all_sessions, resolve_session_name
from ssocli.commands import handle_errors
from ssocli.config import resolve_profile_name
from ssocli.context import create_context
from ssocli.exceptions import ConfigError
from ssocli.models import epoch_to_datetime, format_rfc3339
from ssocli.output import get_output, info, success, suggest


sso_app = typer.Typer(no_args_is_help=True)


def _profile_flag(ctx: typer.Context) -> Optional[str]:
    return (ctx.obj or {}).get("profile")


@sso_app.command("login")
def sso_login(
    ctx: typer.Context,
    sso_session: Optional[str] = typer.Option(
        None, "--sso-session", "-s", help="SSO session to log in to."
    ),
    no_browser: bool = typer.Option(
        False, "--no-browser", help="Print the login URL instead of opening a browser."
    ),
) -> None:
    """Log in to an SSO session.

    The session is taken from ``--sso-session``, from the session bound to
    ``--profile``, or chosen automatically when only one is configured.
    A still-valid cached token is reused without contacting the server.
    """
    with handle_errors(), create_context(get_output()) as sso_ctx:
        name = resolve_session_name(sso_ctx, _profile_flag(ctx), sso_session)
        record = SsoService(sso_ctx, name, no_browser=no_browser).login()
    success(f"Logged in to SSO session '{name}'. Token valid until {record.expires_at}.")


@sso_app.command("logout")
def sso_logout(
    ctx: typer.Context,
    sso_session: Optional[str] = typer.Option(
        None, "--sso-session", "-s", help="SSO session to log out of."
    ),
    all_sessions: bool = typer.Option(
        False, "--all", help="Log out of every configured SSO session."
    ),
) -> None:
    """Revoke the refresh token and clear cached credentials."""
    with handle_errors(), create_context(get_output()) as sso_ctx:
        if all_sessions:
            names = logout_all_sessions(sso_ctx)
            success(f"Logged out of {len(names)} SSO session(s).")
            return
        name = resolve_session_name(sso_ctx, _profile_flag(ctx), sso_session)
        cleared = SsoService(sso_ctx, name).logout()
    success(f"Logged out of SSO session '{name}'.")
    if cleared:
        info("Cleared credentials of profile(s): " + ", ".join(sorted(cleared)))


@sso_app.command("token")
def sso_token(
    ctx: typer.Context,
    sso_session: Optional[str] = typer.Option(
        None, "--sso-session", "-s", help="SSO session whose token to print."
    ),
    no_login: bool = typer.Option(
        False, "--no-login", help="Fail instead of logging in when no valid token is cached."
    ),
    no_browser: bool = typer.Option(
        False, "--no-browser", help="Print the login URL instead of opening a browser."
    ),
) -> None:
    """Print a valid access token to stdout."""
    with handle_errors(), create_context(get_output()) as sso_ctx:
        name = resolve_session_name(sso_ctx, _profile_flag(ctx), sso_session)
        token = SsoService(sso_ctx, name, no_browser=no_browser).get_access_token(
            allow_login=not no_login
        )
    get_output().print_data(token)


@sso_app.command("credentials")
def sso_credentials(
    ctx: typer.Context,
    no_browser: bool = typer.Option(
        False, "--no-browser", help="Print the login URL instead of opening a browser."
    ),
) -> None:
    """Print the active profile's API credentials, refreshing them when expired.

    Example::

        ssocli --profile dev --json sso credentials
    """
    with handle_errors(), create_context(get_output()) as sso_ctx:
        name = resolve_profile_name(sso_ctx.config, _profile_flag(ctx))
        if not name:
            raise ConfigError("no profile selected; pass --profile or run `ssocli configure sso`")
        profile = sso_ctx.config.profiles.get(name)
        if profile is None:
            raise ConfigError(f"profile '{name}' does not exist")
        refreshed = ensure_valid_sts_token(sso_ctx, profile, no_browser=no_browser)

    data = {
        "AccessKeyId": profile.access_key,
        "SecretAccessKey": profile.secret_key,
    }
    if profile.session_token:
        data["SessionToken"] = profile.session_token
    if profile.sts_expiration:
        data["Expiration"] = format_rfc3339(epoch_to_datetime(profile.sts_expiration))
    get_output().format_response(data)
    if refreshed:
        info(f"Fetched new credentials for profile '{name}'.")
    elif not profile.is_sso:
        suggest("This profile uses static keys; run `ssocli configure sso` to switch it to SSO.")
