"""Tests for the SSO session lifecycle: login, logout, role credentials."""

from __future__ import annotations

from datetime import timedelta

import pytest

from ssocli.auth.cache_store import CacheKind
from ssocli.auth.sso import (
    SsoService,
    ensure_valid_sts_token,
    logout_all_sessions,
    resolve_session_name,
)
from ssocli.exceptions import (
    AuthError,
    ConfigError,
    ConnectionError_,
    OAuthAPIError,
    SelectionAbortedError,
    SsoError,
)
from ssocli.models import (
    AccountInfo,
    ClientRegistration,
    Profile,
    ProfileMode,
    RoleCredentials,
    RoleInfo,
    SsoSession,
    TokenRecord,
    epoch_millis,
    format_rfc3339,
)


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------


def _login(harness, **fields) -> TokenRecord:
    """Put a valid token for the harness session in the cache."""
    flow = SsoService(harness.context, harness.session.name).flow()
    record = TokenRecord(
        start_url=harness.session.start_url,
        session_name=harness.session.name,
        region=harness.session.region,
        access_token=fields.pop("access_token", "cached-access"),
        expires_at=fields.pop(
            "expires_at", format_rfc3339(harness.clock.now() + timedelta(hours=1))
        ),
        refresh_token=fields.pop("refresh_token", "cached-refresh"),
        **fields,
    )
    record.set_client(ClientRegistration(client_id="cid", client_secret="csecret"))
    harness.cache.put(CacheKind.TOKEN, flow.token_key, record)
    return record


def _sso_profile(name: str = "dev", session: str = "corp", **fields) -> Profile:
    defaults = {
        "access_key": "AK-old",
        "secret_key": "SK-old",
        "session_token": "ST-old",
        "sts_expiration": 1,
        "account_id": "1001",
        "role_name": "Admin",
    }
    defaults.update(fields)
    return Profile(name=name, mode=ProfileMode.SSO, sso_session_name=session, **defaults)


# ---------------------------------------------------------------------------
# Service construction and tokens
# ---------------------------------------------------------------------------


class TestSsoService:
    def test_unknown_session(self, harness) -> None:
        with pytest.raises(ConfigError, match="no SSO session named 'ghost'"):
            SsoService(harness.context, "ghost")

    def test_empty_session_name(self, harness) -> None:
        with pytest.raises(ConfigError, match="must be specified"):
            SsoService(harness.context, "")

    def test_login_returns_cached_token(self, harness) -> None:
        _login(harness)
        record = SsoService(harness.context, "corp").login()
        assert record.access_token == "cached-access"
        assert harness.oauth.calls == []

    def test_get_access_token_logs_in(self, harness) -> None:
        token = SsoService(harness.context, "corp").get_access_token()
        assert token == "access-new"
        assert "start_device_authorization" in harness.oauth.ops


class TestCacheOnlyToken:
    def test_returns_cached(self, harness) -> None:
        _login(harness)
        assert SsoService(harness.context, "corp").get_access_token(allow_login=False) == "cached-access"

    def test_missing(self, harness) -> None:
        with pytest.raises(AuthError, match="no cached access token"):
            SsoService(harness.context, "corp").get_access_token(allow_login=False)
        assert harness.oauth.calls == []

    def test_expired(self, harness) -> None:
        _login(harness, expires_at=format_rfc3339(harness.clock.now()))
        with pytest.raises(AuthError, match="expired"):
            SsoService(harness.context, "corp").get_access_token(allow_login=False)
        assert harness.oauth.calls == []


# ---------------------------------------------------------------------------
# Logout
# ---------------------------------------------------------------------------


class TestLogout:
    def test_revokes_deletes_and_clears_bound_profiles(self, harness) -> None:
        _login(harness)
        config = harness.context.config
        config.profiles["dev"] = _sso_profile("dev")
        config.profiles["other"] = _sso_profile("other", session="elsewhere")
        config.profiles["static"] = Profile(name="static", access_key="AK", secret_key="SK")
        service = SsoService(harness.context, "corp")

        cleared = service.logout()

        revoke = harness.oauth.requests("revoke_token")
        assert len(revoke) == 1
        assert (revoke[0].client_id, revoke[0].client_secret, revoke[0].token) == (
            "cid",
            "csecret",
            "cached-refresh",
        )
        assert service.flow().cached_token() is None
        assert cleared == ["dev"]
        dev = config.profiles["dev"]
        assert dev.access_key == dev.secret_key == dev.session_token == ""
        assert dev.sts_expiration == 0
        assert (dev.account_id, dev.role_name) == ("1001", "Admin")
        assert config.profiles["other"].session_token == "ST-old"
        assert config.profiles["static"].access_key == "AK"
        assert len(harness.saved) == 1

    def test_without_cached_token_skips_revoke(self, harness) -> None:
        harness.context.config.profiles["dev"] = _sso_profile("dev")

        cleared = SsoService(harness.context, "corp").logout()

        assert harness.oauth.calls == []
        assert cleared == ["dev"]
        assert harness.context.config.profiles["dev"].session_token == ""

    def test_without_refresh_token_skips_revoke(self, harness) -> None:
        _login(harness, refresh_token="")
        service = SsoService(harness.context, "corp")

        service.logout()

        assert harness.oauth.calls == []
        assert service.flow().cached_token() is None

    def test_nothing_to_clear_does_not_save(self, harness) -> None:
        assert SsoService(harness.context, "corp").logout() == []
        assert harness.saved == []

    def test_revoke_failure_changes_nothing(self, harness) -> None:
        _login(harness)
        harness.context.config.profiles["dev"] = _sso_profile("dev")
        harness.oauth.revoke_results = [OAuthAPIError("invalid_request", status_code=400)]
        service = SsoService(harness.context, "corp")

        with pytest.raises(OAuthAPIError):
            service.logout()

        assert service.flow().cached_token().access_token == "cached-access"
        assert harness.context.config.profiles["dev"].session_token == "ST-old"
        assert harness.saved == []

    def test_missing_client_credentials(self, harness) -> None:
        record = _login(harness)
        record.client_secret = ""
        service = SsoService(harness.context, "corp")
        harness.cache.put(CacheKind.TOKEN, service.flow().token_key, record)

        with pytest.raises(AuthError, match="client credentials are missing"):
            service.logout()
        assert service.flow().cached_token() is not None


class TestLogoutAll:
    def test_logs_out_every_session_in_order(self, harness) -> None:
        harness.context.config.sso_sessions["alpha"] = SsoSession(
            name="alpha", start_url="https://alpha.example/start"
        )
        assert logout_all_sessions(harness.context) == ["alpha", "corp"]

    def test_aggregates_failures(self, harness) -> None:
        harness.context.config.sso_sessions["alpha"] = SsoSession(
            name="alpha", start_url="https://alpha.example/start"
        )
        harness.context.config.sso_sessions["broken"] = SsoSession(name="broken")
        _login(harness)
        harness.context.config.profiles["dev"] = _sso_profile("dev")
        harness.oauth.revoke_results = [ConnectionError_("network down")]

        with pytest.raises(SsoError) as excinfo:
            logout_all_sessions(harness.context)

        message = str(excinfo.value)
        assert message.startswith("failed to logout some sso sessions: ")
        assert "broken:" in message
        assert "corp: network down" in message
        assert "alpha" not in message


# ---------------------------------------------------------------------------
# Role credentials
# ---------------------------------------------------------------------------


class TestRoleCredentials:
    def test_bound_profile_skips_selection(self, harness) -> None:
        _login(harness)
        profile = _sso_profile("dev")

        creds = SsoService(harness.context, "corp").get_role_credentials(profile)

        assert creds.access_key_id == "AK"
        assert harness.portal.calls == [("get_role_credentials", ("cached-access", "1001", "Admin"))]
        assert harness.picker.prompts == []

    def test_unbound_profile_selects_and_records(self, harness) -> None:
        _login(harness)
        harness.portal.accounts = [
            AccountInfo(account_id="1001", account_name="dev"),
            AccountInfo(account_id="1002", account_name="prod"),
            AccountInfo(account_id="1003"),
        ]
        harness.portal.roles["1003"] = [
            RoleInfo(account_id="1003", role_name="ReadOnly"),
            RoleInfo(account_id="1003", role_name="Admin"),
        ]
        harness.picker.choices = [2, 1]
        profile = _sso_profile("dev", account_id="", role_name="")

        SsoService(harness.context, "corp").get_role_credentials(profile)

        assert (profile.account_id, profile.role_name) == ("1003", "Admin")
        assert harness.picker.prompts == [
            ("account", ["dev (1001)", "prod (1002)", "1003"]),
            ("role", ["ReadOnly", "Admin"]),
        ]
        # Three accounts with a page size of two means two list calls.
        assert [c for c in harness.portal.calls if c[0] == "list_accounts"] == [
            ("list_accounts", None),
            ("list_accounts", "2"),
        ]

    def test_no_accounts(self, harness) -> None:
        _login(harness)
        harness.portal.accounts = []
        with pytest.raises(AuthError, match="no available accounts"):
            SsoService(harness.context, "corp").get_role_credentials(_sso_profile(account_id=""))

    def test_no_roles(self, harness) -> None:
        _login(harness)
        harness.portal.roles = {}
        with pytest.raises(AuthError, match="no roles available under account 1001"):
            SsoService(harness.context, "corp").get_role_credentials(_sso_profile(role_name=""))

    def test_aborted_selection(self, harness) -> None:
        _login(harness)
        harness.picker.abort = True
        with pytest.raises(SelectionAbortedError):
            SsoService(harness.context, "corp").get_role_credentials(_sso_profile(account_id=""))


class TestEnsureValidStsToken:
    def test_non_sso_profile_is_untouched(self, harness) -> None:
        profile = Profile(name="static", access_key="AK", secret_key="SK")
        assert ensure_valid_sts_token(harness.context, profile) is False
        assert harness.portal.calls == []

    def test_valid_credentials_are_kept(self, harness) -> None:
        future = epoch_millis(harness.clock.now() + timedelta(hours=1))
        profile = _sso_profile(sts_expiration=future)

        assert ensure_valid_sts_token(harness.context, profile) is False
        assert harness.oauth.calls == []
        assert harness.portal.calls == []
        assert harness.saved == []

    def test_expired_credentials_are_refreshed_and_saved(self, harness) -> None:
        _login(harness)
        harness.portal.credentials = RoleCredentials(
            access_key_id="AK-new",
            secret_access_key="SK-new",
            session_token="ST-new",
            expiration=epoch_millis(harness.clock.now() + timedelta(hours=1)),
        )
        profile = _sso_profile()
        harness.context.config.profiles["dev"] = profile

        assert ensure_valid_sts_token(harness.context, profile) is True

        assert profile.access_key == "AK-new"
        assert profile.session_token == "ST-new"
        assert len(harness.saved) == 1
        assert harness.saved[0].profiles["dev"].secret_key == "SK-new"

    def test_dangling_session(self, harness) -> None:
        profile = _sso_profile(session="gone")
        with pytest.raises(ConfigError, match="no SSO session named 'gone'"):
            ensure_valid_sts_token(harness.context, profile)

    def test_missing_session_name(self, harness) -> None:
        profile = _sso_profile(session="")
        with pytest.raises(ConfigError, match="must be specified"):
            ensure_valid_sts_token(harness.context, profile)


class TestConfigureProfile:
    def test_default_name_and_current(self, harness) -> None:
        _login(harness)

        profile = SsoService(harness.context, "corp").configure_profile()

        assert profile.name == "Admin-1001"
        assert profile.mode == ProfileMode.SSO
        assert profile.sso_session_name == "corp"
        assert profile.region == harness.session.region
        config = harness.saved[-1]
        assert config.current == "Admin-1001"
        assert config.profiles["Admin-1001"].account_id == "1001"

    def test_existing_profile_is_rebound(self, harness) -> None:
        _login(harness)
        harness.context.config.profiles["dev"] = Profile(
            name="dev", region="cn-beijing", access_key="AK", secret_key="SK"
        )

        profile = SsoService(harness.context, "corp").configure_profile("dev")

        assert profile.region == "cn-beijing"
        assert profile.is_sso
        assert profile.access_key == ""
        assert harness.context.config.current == "dev"


class TestResolveSessionName:
    def test_explicit_session(self, harness) -> None:
        assert resolve_session_name(harness.context, session_name="anything") == "anything"

    def test_from_profile(self, harness) -> None:
        harness.context.config.profiles["dev"] = _sso_profile("dev")
        assert resolve_session_name(harness.context, profile_name="dev") == "corp"

    def test_unknown_profile(self, harness) -> None:
        with pytest.raises(ConfigError, match="profile 'ghost' does not exist"):
            resolve_session_name(harness.context, profile_name="ghost")

    def test_non_sso_profile(self, harness) -> None:
        harness.context.config.profiles["static"] = Profile(name="static")
        with pytest.raises(ConfigError, match="not configured for SSO"):
            resolve_session_name(harness.context, profile_name="static")

    def test_single_session(self, harness) -> None:
        assert resolve_session_name(harness.context) == "corp"
        assert harness.picker.prompts == []

    def test_several_sessions_prompt(self, harness) -> None:
        harness.context.config.sso_sessions["alpha"] = SsoSession(name="alpha", start_url="https://a")
        harness.picker.choices = [1]
        assert resolve_session_name(harness.context) == "corp"
        assert harness.picker.prompts == [("SSO session", ["alpha", "corp"])]

    def test_no_sessions(self, harness) -> None:
        harness.context.config.sso_sessions.clear()
        with pytest.raises(ConfigError, match="no sso-session configured"):
            resolve_session_name(harness.context)
