"""HTTP clients for the cloud identity service.

Two clients wrap :mod:`httpx` with request validation, error decoding and
retry with exponential backoff:

    :class:`OAuthClient` -- client registration, token exchange,
    revocation and device authorization.
    :class:`PortalClient` -- account and role listing and role
    credential exchange.

Both implement an abstract capability (:class:`OAuthClientAPI`,
:class:`PortalClientAPI`) so that callers can be tested against fakes.

Example::

    from ssocli.client import PortalClient

    with PortalClient(region="ap-southeast-1") as portal:
        accounts = portal.list_all_accounts(access_token)
"""

from ssocli.client.oauth import OAuthClient, OAuthClientAPI
from ssocli.client.portal import PortalClient, PortalClientAPI, paginate

__all__ = ["OAuthClient", "OAuthClientAPI", "PortalClient", "PortalClientAPI", "paginate"]
