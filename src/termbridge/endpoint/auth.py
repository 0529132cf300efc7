"""Authentication hook for incoming terminal connections.

The bridge never checks credentials itself. The acceptor asks an
Authenticator for an identity before accepting the WebSocket; hosting
applications plug in their own (session cookies, OAuth, ...).
"""

from __future__ import annotations

import hmac
import logging
from abc import ABC, abstractmethod

from starlette.requests import HTTPConnection

logger = logging.getLogger(__name__)

ANONYMOUS = "anonymous"


class Authenticator(ABC):
    """Decides whether a connection may open a terminal session."""

    @abstractmethod
    async def authenticate(self, connection: HTTPConnection) -> str | None:
        """Return the authenticated identity, or None to deny the upgrade."""
        ...


class TokenAuthenticator(Authenticator):
    """Shared-secret check on the ``token`` query parameter or bearer header.

    With an empty token every connection is accepted as ``anonymous``.
    """

    def __init__(self, token: str = "") -> None:
        self._token = token

    async def authenticate(self, connection: HTTPConnection) -> str | None:
        if not self._token:
            return ANONYMOUS

        supplied = connection.query_params.get("token", "")
        if not supplied:
            scheme, _, credentials = connection.headers.get("authorization", "").partition(" ")
            if scheme.lower() == "bearer":
                supplied = credentials.strip()

        if supplied and hmac.compare_digest(supplied.encode(), self._token.encode()):
            return "token"
        logger.warning(
            "Rejected terminal connection from %s",
            connection.client.host if connection.client else "unknown",
        )
        return None
