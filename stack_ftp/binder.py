"""
Connection binder: turns an FTP login into an authenticated StackSession.

FTP username format: <SHARE>@<STACK_DOMAIN>, password is the share password.
"""

import logging
from dataclasses import dataclass
from typing import Optional

import httpx

from .errors import AuthenticationFailed
from .session import StackSession

log = logging.getLogger(__name__)

DEFAULT_URL_TEMPLATE = "https://{domain}/public-share/{share}/"


@dataclass(frozen=True)
class Identity:
    """Parsed login. Only lives long enough to derive the session's base URL."""
    share: str
    domain: str
    password: str

    def base_url(self, url_template: str = DEFAULT_URL_TEMPLATE) -> str:
        return url_template.format(share=self.share, domain=self.domain)

    def __repr__(self) -> str:
        return f"Identity(share={self.share!r}, domain={self.domain!r})"


def parse_identity(login: str, password: str) -> Identity:
    """Split ``share@domain`` on the first ``@``.

    Raises:
        AuthenticationFailed: no ``@``, or an empty share or domain
    """
    share, sep, domain = (login or "").partition("@")
    if not sep:
        raise AuthenticationFailed(login, "username must be <share>@<domain>")
    if not share or not domain:
        raise AuthenticationFailed(login, "share and domain must both be set")
    return Identity(share=share, domain=domain, password=password)


def bind(connection_id: str, login: str, password: str, *,
         timeout: float = 30.0,
         url_template: str = DEFAULT_URL_TEMPLATE,
         transport: Optional[httpx.BaseTransport] = None) -> StackSession:
    """Authenticate an FTP login against its STACK share.

    Args:
        connection_id: FTP connection identifier (diagnostics only)
        login: FTP username, ``share@domain``
        password: Share password (never logged)
        timeout: HTTP timeout for the session's requests
        url_template: Base URL pattern with ``{share}`` and ``{domain}``
        transport: Optional httpx transport override

    Returns:
        Authenticated session for the protocol engine to attach to the connection

    Raises:
        AuthenticationFailed: malformed identity or login rejected
    """
    log.info(f"client={connection_id}, action=login, username={login}")
    identity = parse_identity(login, password)
    base_url = identity.base_url(url_template)

    try:
        session = StackSession.create(
            connection_id, base_url, login, identity.password,
            timeout=timeout, transport=transport,
        )
    except AuthenticationFailed as e:
        log.warning(f"client={connection_id}, login rejected for {login}: {e.reason}")
        raise

    log.info(f"client={connection_id}, logged in to {base_url}")
    return session
