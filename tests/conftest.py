"""Shared test fixtures for ssocli.

Provides isolated config environments, output state management, a CLI
runner, and in-memory fakes of the OAuth server, the identity portal, the
picker and the clock. The fakes implement the same abstract capabilities
as the real clients so that the device flow and the SSO service can be
exercised without network access.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime, timedelta, timezone
from pathlib import Path
from typing import Any, Callable, Optional, Sequence

import pytest

from ssocli.auth.cache_store import CredentialCache
from ssocli.auth.picker import Picker
from ssocli.client.oauth import OAuthClientAPI
from ssocli.client.portal import PortalClientAPI, compute_next_token, resolve_page_number
from ssocli.context import SsoContext
from ssocli.exceptions import SelectionAbortedError
from ssocli.models import (
    AccountInfo,
    AppConfig,
    CreateTokenRequest,
    CreateTokenResponse,
    ListAccountRolesResponse,
    ListAccountsResponse,
    RegisterClientRequest,
    RegisterClientResponse,
    RevokeTokenRequest,
    RoleCredentials,
    RoleInfo,
    SsoSession,
    StartDeviceAuthorizationRequest,
    StartDeviceAuthorizationResponse,
)
from ssocli.output import OutputFormat, OutputManager, reset_output, set_output


START_URL = "https://corp.example/start"
SESSION_NAME = "corp"
REGION = "ap-southeast-1"


# ---------------------------------------------------------------------------
# Auto-reset global output state between tests
# ---------------------------------------------------------------------------


@pytest.fixture(autouse=True)
def _reset_output_between_tests() -> None:
    """Reset the global OutputManager after every test.

    The OutputManager caches references to sys.stdout/sys.stderr at
    creation time. When Typer's CliRunner redirects those streams the
    cached references go stale, so a fresh manager is created on next use.
    """
    yield
    reset_output()


# ---------------------------------------------------------------------------
# Config isolation fixture
# ---------------------------------------------------------------------------


@pytest.fixture
def isolated_config(tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> Path:
    """Isolate configuration to a temporary directory.

    Sets XDG_CONFIG_HOME and XDG_DATA_HOME to subdirectories of tmp_path
    so that tests never touch real user config, and clears SSOCLI_*
    environment variables.

    Returns:
        The tmp_path root directory for additional file creation.
    """
    monkeypatch.setattr("ssocli.config._is_xdg_platform", lambda: True)
    monkeypatch.setenv("XDG_CONFIG_HOME", str(tmp_path / "config"))
    monkeypatch.setenv("XDG_DATA_HOME", str(tmp_path / "data"))
    monkeypatch.delenv("SSOCLI_PROFILE", raising=False)
    monkeypatch.setenv("NO_COLOR", "1")
    monkeypatch.chdir(tmp_path)
    return tmp_path


# ---------------------------------------------------------------------------
# Output fixtures
# ---------------------------------------------------------------------------


@pytest.fixture
def quiet_output() -> OutputManager:
    """Install a PLAIN-format, quiet OutputManager as the global output."""
    output = OutputManager(format=OutputFormat.PLAIN, quiet=True, no_color=True)
    set_output(output)
    yield output
    reset_output()


@pytest.fixture
def cli_runner():
    """Typer CLI test runner."""
    from typer.testing import CliRunner

    return CliRunner()


# ---------------------------------------------------------------------------
# Fakes
# ---------------------------------------------------------------------------


def _next_result(results: list[Any], default: Any) -> Any:
    item = results.pop(0) if results else default
    if isinstance(item, Exception):
        raise item
    return item


class FakeOAuth(OAuthClientAPI):
    """Scripted OAuth server. Each ``*_results`` list is consumed in order;
    an exception in the list is raised instead of returned."""

    def __init__(self) -> None:
        self.calls: list[tuple[str, Any]] = []
        self.register_results: list[Any] = []
        self.token_results: list[Any] = []
        self.device_results: list[Any] = []
        self.revoke_results: list[Any] = []

    @property
    def ops(self) -> list[str]:
        return [name for name, _ in self.calls]

    def requests(self, op: str) -> list[Any]:
        return [req for name, req in self.calls if name == op]

    def register_client(self, request: RegisterClientRequest) -> RegisterClientResponse:
        self.calls.append(("register_client", request))
        n = len(self.requests("register_client"))
        return _next_result(
            self.register_results,
            RegisterClientResponse(
                client_id=f"client-{n}",
                client_secret=f"secret-{n}",
                client_id_issued_at=1_700_000_000,
                client_secret_expires_at=0,
            ),
        )

    def create_token(self, request: CreateTokenRequest) -> CreateTokenResponse:
        self.calls.append(("create_token", request))
        return _next_result(
            self.token_results,
            CreateTokenResponse(
                access_token="access-new",
                token_type="Bearer",
                refresh_token="refresh-new",
                expires_in=3600,
            ),
        )

    def revoke_token(self, request: RevokeTokenRequest) -> None:
        self.calls.append(("revoke_token", request))
        _next_result(self.revoke_results, None)

    def start_device_authorization(
        self, request: StartDeviceAuthorizationRequest
    ) -> StartDeviceAuthorizationResponse:
        self.calls.append(("start_device_authorization", request))
        return _next_result(
            self.device_results,
            StartDeviceAuthorizationResponse(
                device_code="device-code",
                user_code="ABCD-1234",
                verification_uri="https://verify.example/device",
                verification_uri_complete="https://verify.example/device?user_code=ABCD-1234",
                expires_in=600,
                interval=5,
            ),
        )


class FakePortal(PortalClientAPI):
    """In-memory portal serving accounts and roles in pages of ``page_size``."""

    def __init__(self, page_size: int = 2) -> None:
        self.page_size = page_size
        self.accounts: list[AccountInfo] = [AccountInfo(account_id="1001", account_name="dev")]
        self.roles: dict[str, list[RoleInfo]] = {
            "1001": [RoleInfo(account_id="1001", role_name="Admin")]
        }
        self.credentials = RoleCredentials(
            access_key_id="AK",
            secret_access_key="SK",
            session_token="ST",
            expiration=0,
        )
        self.calls: list[tuple[str, Any]] = []

    def _page(self, items: list[Any], next_token: Optional[str]) -> tuple[list[Any], Optional[str]]:
        page = resolve_page_number(next_token)
        start = (page - 1) * self.page_size
        return (
            items[start : start + self.page_size],
            compute_next_token(len(items), page, self.page_size),
        )

    def list_accounts(self, access_token, next_token=None, page_size=None):
        self.calls.append(("list_accounts", next_token))
        items, token = self._page(self.accounts, next_token)
        return ListAccountsResponse(accounts=items, next_token=token)

    def list_account_roles(self, access_token, account_id, next_token=None, page_size=None):
        self.calls.append(("list_account_roles", (account_id, next_token)))
        items, token = self._page(self.roles.get(account_id, []), next_token)
        return ListAccountRolesResponse(roles=items, next_token=token)

    def get_role_credentials(self, access_token, account_id, role_name):
        self.calls.append(("get_role_credentials", (access_token, account_id, role_name)))
        return self.credentials


class FakePicker(Picker):
    """Picks scripted indexes (default: first item); records every prompt."""

    def __init__(self) -> None:
        self.choices: list[int] = []
        self.abort = False
        self.prompts: list[tuple[str, list[str]]] = []

    def select(self, label: str, items: Sequence[Any], describe: Callable[[Any], str]) -> Any:
        self.prompts.append((label, [describe(item) for item in items]))
        if self.abort:
            raise SelectionAbortedError(f"{label} selection aborted")
        index = self.choices.pop(0) if self.choices else 0
        return items[index]


class FakeClock:
    """Wall and monotonic clocks that only move when ``sleep`` is called."""

    def __init__(self, start: Optional[datetime] = None) -> None:
        self.current = start or datetime(2026, 3, 1, 12, 0, tzinfo=timezone.utc)
        self.mono = 1000.0
        self.sleeps: list[float] = []

    def now(self) -> datetime:
        return self.current

    def monotonic(self) -> float:
        return self.mono

    def sleep(self, seconds: float) -> None:
        self.sleeps.append(seconds)
        self.advance(seconds)

    def advance(self, seconds: float) -> None:
        self.mono += seconds
        self.current += timedelta(seconds=seconds)


@dataclass
class Harness:
    context: SsoContext
    oauth: FakeOAuth
    portal: FakePortal
    picker: FakePicker
    clock: FakeClock
    cache: CredentialCache
    session: SsoSession
    saved: list[AppConfig] = field(default_factory=list)
    opened_urls: list[str] = field(default_factory=list)


@pytest.fixture
def session() -> SsoSession:
    return SsoSession(name=SESSION_NAME, start_url=START_URL, region=REGION)


@pytest.fixture
def harness(tmp_path: Path, session: SsoSession) -> Harness:
    """An SsoContext wired to fakes, with one configured SSO session."""
    oauth = FakeOAuth()
    portal = FakePortal()
    picker = FakePicker()
    clock = FakeClock()
    cache = CredentialCache(tmp_path / "sso" / "cache")
    output = OutputManager(format=OutputFormat.PLAIN, quiet=True, no_color=True)
    config = AppConfig(sso_sessions={session.name: session})
    saved: list[AppConfig] = []
    opened: list[str] = []

    def open_browser(url: str) -> bool:
        opened.append(url)
        return True

    context = SsoContext(
        config=config,
        save_config=lambda cfg: saved.append(cfg.model_copy(deep=True)),
        cache=cache,
        output=output,
        picker=picker,
        oauth_factory=lambda _session: oauth,
        portal_factory=lambda _session: portal,
        sleep=clock.sleep,
        clock=clock.monotonic,
        now=clock.now,
        open_browser=open_browser,
    )
    return Harness(
        context=context,
        oauth=oauth,
        portal=portal,
        picker=picker,
        clock=clock,
        cache=cache,
        session=session,
        saved=saved,
        opened_urls=opened,
    )
