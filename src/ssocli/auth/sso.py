"""SSO session lifecycle and role-credential resolution.

:class:`SsoService` is what the CLI layer talks to. It is bound to one
configured SSO session and offers:

* :meth:`~SsoService.login` / :meth:`~SsoService.get_access_token` --
  run the :class:`~ssocli.auth.device_flow.DeviceAuthorizationFlow`.
* :meth:`~SsoService.logout` -- revoke the refresh token, drop the cached
  token, and clear the derived STS credentials of every profile bound to
  the session.
* :meth:`~SsoService.get_role_credentials` -- turn the access token into
  short-lived credentials for the profile's account and role, asking the
  user to pick them when the profile does not name them yet.
* :meth:`~SsoService.configure_profile` -- bind a profile to an account
  and role of this session.

Module-level helpers work across sessions: :func:`ensure_valid_sts_token`
keeps a profile's STS credentials fresh, :func:`logout_all_sessions`
logs out of everything, and :func:`resolve_session_name` decides which
session a command applies to.
"""

from __future__ import annotations

import logging
from typing import Optional

from ssocli.auth.cache_store import CacheKind
from ssocli.auth.device_flow import DeviceAuthorizationFlow
from ssocli.client.portal import PortalClientAPI
from ssocli.config import get_sso_session
from ssocli.context import SsoContext
from ssocli.exceptions import AuthError, ConfigError, SsoError
from ssocli.models import (
    AccountInfo,
    Profile,
    ProfileMode,
    RevokeTokenRequest,
    RoleCredentials,
    RoleInfo,
    TokenRecord,
)

logger = logging.getLogger(__name__)


class SsoService:
    """Operations on one configured SSO session.

    Args:
        context: Runtime collaborators.
        session_name: Name of the SSO session in the profile store.
        no_browser: Print the login URL instead of opening a browser.

    Raises:
        ConfigError: If *session_name* is empty or not configured.
    """

    def __init__(self, context: SsoContext, session_name: str, no_browser: bool = False) -> None:
        self._ctx = context
        self._no_browser = no_browser
        self.session = get_sso_session(context.config, session_name)

    def flow(self) -> DeviceAuthorizationFlow:
        ctx = self._ctx
        return DeviceAuthorizationFlow(
            self.session,
            ctx.oauth_for(self.session),
            ctx.cache,
            ctx.output,
            no_browser=self._no_browser,
            sleep=ctx.sleep,
            clock=ctx.clock,
            now=ctx.now,
            open_browser=ctx.open_browser,
        )

    # ------------------------------------------------------------------ #
    # Tokens
    # ------------------------------------------------------------------ #

    def login(self) -> TokenRecord:
        """Return a valid token record, refreshing or logging in as needed."""
        return self.flow().get_token()

    def get_access_token(self, allow_login: bool = True) -> str:
        """Return a valid access token.

        Args:
            allow_login: When ``False`` only the cache is consulted and a
                missing or expired token is an error instead of a login.

        Raises:
            AuthError: If *allow_login* is ``False`` and no unexpired
                token is cached.
        """
        if allow_login:
            return self.login().access_token

        record = self.flow().cached_token()
        if record is None or not record.access_token:
            raise AuthError("no cached access token found; please log in using `ssocli sso login`")
        if record.is_expired(self._ctx.now()):
            raise AuthError(
                "your access token has expired; please log in again using `ssocli sso login`"
            )
        return record.access_token

    def logout(self) -> list[str]:
        """Log out of the session.

        The refresh token is revoked first; if revocation fails nothing
        else is changed. Then the cached token is deleted and the STS
        credentials of bound profiles are cleared. Account and role
        bindings are kept so the next login can reuse them.

        Returns:
            Names of the profiles whose credentials were cleared.

        Raises:
            AuthError: If a refresh token is cached without the client
                credentials needed to revoke it.
        """
        flow = self.flow()
        record = flow.cached_token()
        if record is not None:
            if record.refresh_token:
                if not (record.client_id and record.client_secret):
                    raise AuthError("client credentials are missing in the cache, please login first")
                self._ctx.oauth_for(self.session).revoke_token(
                    RevokeTokenRequest(
                        client_id=record.client_id,
                        client_secret=record.client_secret,
                        token=record.refresh_token,
                    )
                )
            self._ctx.cache.delete(CacheKind.TOKEN, flow.token_key)
        else:
            logger.debug("No cached token for session %s; nothing to revoke", self.session.name)
        return self._clear_profiles()

    # ------------------------------------------------------------------ #
    # Role credentials
    # ------------------------------------------------------------------ #

    def get_role_credentials(self, profile: Profile) -> RoleCredentials:
        """Exchange the access token for credentials of the profile's role.

        When the profile does not yet name an account and role, all
        accounts and then all roles of the chosen account are listed and
        the user picks one of each; the choice is recorded on *profile*
        (the caller persists it).

        Raises:
            AuthError: If the user has no accounts, or the chosen account
                has no roles.
            SelectionAbortedError: If the user aborts a selection.
        """
        access_token = self.get_access_token()
        portal = self._ctx.portal_for(self.session)
        if not (profile.account_id and profile.role_name):
            account, role = self.select_account_and_role(portal, access_token)
            profile.account_id = account.account_id
            profile.role_name = role.role_name
        return portal.get_role_credentials(access_token, profile.account_id, profile.role_name)

    def select_account_and_role(
        self, portal: PortalClientAPI, access_token: str
    ) -> tuple[AccountInfo, RoleInfo]:
        picker = self._ctx.picker
        accounts = portal.list_all_accounts(access_token)
        if not accounts:
            raise AuthError("no available accounts found for the current user")
        account = picker.select("account", accounts, _describe_account)

        roles = portal.list_all_roles(access_token, account.account_id)
        if not roles:
            raise AuthError(f"no roles available under account {account.account_id}")
        role = picker.select("role", roles, lambda r: r.role_name)
        return account, role

    def configure_profile(self, profile_name: Optional[str] = None) -> Profile:
        """Bind a profile to an account and role of this session and make it current.

        The profile is created when it does not exist; its default name is
        ``<role>-<account_id>``.
        """
        access_token = self.get_access_token()
        portal = self._ctx.portal_for(self.session)
        account, role = self.select_account_and_role(portal, access_token)

        config = self._ctx.config
        name = profile_name or f"{role.role_name}-{account.account_id}"
        profile = config.profiles.get(name) or Profile(name=name)
        profile.mode = ProfileMode.SSO
        profile.sso_session_name = self.session.name
        profile.account_id = account.account_id
        profile.role_name = role.role_name
        if not profile.region:
            profile.region = self.session.region
        profile.clear_sts_credentials()

        config.profiles[name] = profile
        config.current = name
        self._ctx.persist()
        return profile

    # ------------------------------------------------------------------ #
    # Private helpers
    # ------------------------------------------------------------------ #

    def _clear_profiles(self) -> list[str]:
        cleared: list[str] = []
        for profile in self._ctx.config.profiles.values():
            if not profile.is_sso or profile.sso_session_name != self.session.name:
                continue
            if profile.access_key or profile.secret_key or profile.session_token or profile.sts_expiration:
                profile.clear_sts_credentials()
                cleared.append(profile.name)
        if cleared:
            self._ctx.persist()
        return cleared


def _describe_account(account: AccountInfo) -> str:
    if account.account_name:
        return f"{account.account_name} ({account.account_id})"
    return account.account_id


def ensure_valid_sts_token(context: SsoContext, profile: Profile, no_browser: bool = False) -> bool:
    """Refresh an SSO profile's STS credentials unless they are still valid.

    Profiles that are not in SSO mode carry static keys and are left
    untouched.

    Returns:
        ``True`` if new credentials were fetched and persisted.

    Raises:
        ConfigError: If the profile names no SSO session, or one that does
            not exist.
    """
    if not profile.is_sso:
        return False
    if profile.has_valid_sts_credentials(context.now()):
        return False

    service = SsoService(context, profile.sso_session_name, no_browser=no_browser)
    credentials = service.get_role_credentials(profile)
    profile.apply_role_credentials(credentials)
    context.config.profiles[profile.name] = profile
    context.persist()
    return True


def logout_all_sessions(context: SsoContext) -> list[str]:
    """Log out of every configured session, in name order.

    Every session is attempted even when an earlier one fails; failures
    are reported together afterwards.

    Returns:
        Names of the sessions that were logged out.

    Raises:
        SsoError: Listing each session that could not be logged out.
    """
    done: list[str] = []
    failures: list[str] = []
    for name in sorted(context.config.sso_sessions):
        try:
            SsoService(context, name).logout()
        except SsoError as exc:
            failures.append(f"{name}: {exc}")
            continue
        done.append(name)
    if failures:
        raise SsoError("failed to logout some sso sessions: " + "; ".join(failures))
    return done


def resolve_session_name(
    context: SsoContext,
    profile_name: Optional[str] = None,
    session_name: Optional[str] = None,
) -> str:
    """Decide which SSO session a command applies to.

    Precedence: an explicit session, then the session bound to an explicit
    profile, then the only configured session. With several sessions and
    no hint the user picks one.

    Raises:
        ConfigError: If the profile is missing or not an SSO profile, or
            no session is configured.
    """
    config = context.config
    if session_name:
        return session_name
    if profile_name:
        profile = config.profiles.get(profile_name)
        if profile is None:
            raise ConfigError(f"profile '{profile_name}' does not exist")
        if not profile.is_sso or not profile.sso_session_name:
            raise ConfigError(f"profile '{profile_name}' is not configured for SSO")
        return profile.sso_session_name

    names = sorted(config.sso_sessions)
    if not names:
        raise ConfigError("no sso-session configured; run `ssocli configure sso-session` first")
    if len(names) == 1:
        return names[0]
    return context.picker.select("SSO session", names, str)
