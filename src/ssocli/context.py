"""Runtime collaborators of the SSO service, passed explicitly.

An :class:`SsoContext` bundles the loaded profile store, the credential
cache, the output manager, the picker, and factories for the OAuth and
portal clients. Commands build one with :func:`create_context`; tests
construct it directly with fakes. Nothing in the service layer reads
process-wide state.
"""

from __future__ import annotations

import time
import webbrowser
from dataclasses import dataclass, field
from datetime import datetime
from pathlib import Path
from typing import Callable, Optional

from ssocli.auth.cache_store import CredentialCache
from ssocli.auth.picker import Picker, PromptPicker
from ssocli.client.oauth import OAuthClient, OAuthClientAPI
from ssocli.client.portal import PortalClient, PortalClientAPI
from ssocli.config import get_sso_cache_dir, load_config, save_config
from ssocli.models import AppConfig, SsoSession, utcnow
from ssocli.output import OutputManager


@dataclass
class SsoContext:
    """Everything an SSO operation needs.

    Attributes:
        config: The loaded profile store. Mutated in place by operations
            and written back through :meth:`persist`.
        save_config: Persists *config*; atomic and synchronous.
        cache: Token and registration cache.
        output: Diagnostics sink.
        picker: Account and role selection.
        oauth_factory: Builds an OAuth client for a session's region.
        portal_factory: Builds a portal client for a session's region.
        sleep: Device-flow poll sleep.
        clock: Monotonic clock for the device-code deadline.
        now: Wall clock for token and credential expiry.
        open_browser: Browser launcher for the device login URL.
    """

    config: AppConfig
    save_config: Callable[[AppConfig], None]
    cache: CredentialCache
    output: OutputManager
    picker: Picker
    oauth_factory: Callable[[SsoSession], OAuthClientAPI]
    portal_factory: Callable[[SsoSession], PortalClientAPI]
    sleep: Callable[[float], None] = time.sleep
    clock: Callable[[], float] = time.monotonic
    now: Callable[[], datetime] = utcnow
    open_browser: Callable[[str], bool] = webbrowser.open
    _oauth_clients: dict[str, OAuthClientAPI] = field(default_factory=dict, repr=False)
    _portal_clients: dict[str, PortalClientAPI] = field(default_factory=dict, repr=False)

    def persist(self) -> None:
        self.save_config(self.config)

    def oauth_for(self, session: SsoSession) -> OAuthClientAPI:
        if session.region not in self._oauth_clients:
            self._oauth_clients[session.region] = self.oauth_factory(session)
        return self._oauth_clients[session.region]

    def portal_for(self, session: SsoSession) -> PortalClientAPI:
        if session.region not in self._portal_clients:
            self._portal_clients[session.region] = self.portal_factory(session)
        return self._portal_clients[session.region]

    def close(self) -> None:
        """Close every HTTP client created through the factories."""
        for client in [*self._oauth_clients.values(), *self._portal_clients.values()]:
            close = getattr(client, "close", None)
            if close is not None:
                close()
        self._oauth_clients.clear()
        self._portal_clients.clear()

    def __enter__(self) -> SsoContext:
        return self

    def __exit__(self, *args: object) -> None:
        self.close()


def create_context(output: OutputManager, config_path: Optional[Path] = None) -> SsoContext:
    """Wire the production collaborators from the on-disk profile store."""
    config = load_config(config_path)
    request = config.request

    def make_oauth(session: SsoSession) -> OAuthClientAPI:
        return OAuthClient(
            region=session.region,
            base_url=request.oauth_base_url,
            timeout=request.oauth_timeout,
            max_attempts=request.max_attempts,
        )

    def make_portal(session: SsoSession) -> PortalClientAPI:
        return PortalClient(
            region=session.region,
            base_url=request.portal_base_url,
            timeout=request.portal_timeout,
            max_attempts=request.max_attempts,
        )

    return SsoContext(
        config=config,
        save_config=lambda cfg: save_config(cfg, config_path),
        cache=CredentialCache(get_sso_cache_dir()),
        output=output,
        picker=PromptPicker(output),
        oauth_factory=make_oauth,
        portal_factory=make_portal,
    )
