"""ssocli -- single sign-on login and short-lived cloud credentials for the terminal.

This package implements an OAuth2 device-authorization client together with
a local credential cache. A user logs in once per *SSO session* (a start URL
plus region), and every later invocation turns the cached, silently
refreshed access token into short-lived role credentials for the active
profile.

Typical workflow::

    ssocli configure sso-session --name corp --start-url https://corp.example
    ssocli configure sso --sso-session corp   # login, pick account and role
    ssocli sso credentials                    # STS credentials, refreshed on demand

Modules:
    app: Typer application and CLI entry point.
    models: Pydantic models shared across the entire package.
    config: XDG-aware configuration and profile store.
    context: Runtime collaborators passed explicitly to the SSO service.
    exceptions: Exception hierarchy with exit-code mapping.
    exit_codes: Numeric exit codes following clig.dev conventions.
    output: stdout/stderr formatting system with Rich support.
"""

__version__ = "0.1.0"
