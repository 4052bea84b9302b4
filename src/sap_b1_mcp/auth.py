# SAP B1 Query MCP Server
# File: auth.py
# Version: v3

"""Service Layer login handshake with session reuse."""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Any, Optional

import httpx
from httpx import RequestError

from .cache import SessionCache
from .config import B1Config
from .errors import AuthFailure, extract_service_layer_message
from .httpclient import make_async_client
from .models import ConnectionCredentials

logger = logging.getLogger(__name__)


@dataclass
class ServiceLayerAuthenticator:
    """Obtains B1SESSION tokens via ``POST /b1s/v1/Login``.

    Tokens are stored in the injected SessionCache so concurrent requests for
    the same connection reuse one session. Every failure is reported as
    AuthFailure; nothing else escapes login().
    """

    config: B1Config
    cache: SessionCache
    transport: Optional[httpx.AsyncBaseTransport] = None

    # Number of network logins performed (diagnostics / tests).
    login_calls: int = 0

    async def login(self, credentials: ConnectionCredentials, force_new: bool = False) -> str:
        """Return a valid session token for the given connection."""
        identity = credentials.identity

        if not force_new:
            cached = self.cache.get(identity)
            if cached:
                return cached

        try:
            return await self._login_remote(credentials, force_new)
        except AuthFailure:
            raise
        except Exception as exc:  # noqa: BLE001
            self.cache.invalidate(identity)
            logger.error("Unexpected error during SAP B1 login for %s: %s", identity, exc)
            raise AuthFailure(f"SAP B1 login failed: {exc}") from exc

    async def _login_remote(self, credentials: ConnectionCredentials, force_new: bool) -> str:
        identity = credentials.identity

        if not credentials.base_url:
            raise AuthFailure("SAP B1 server URL is not set.")

        login_url = f"{credentials.base_url}/b1s/v1/Login"
        payload = {
            "CompanyDB": credentials.company_db,
            "UserName": credentials.username,
            "Password": credentials.password,
        }

        self.login_calls += 1
        logger.info("Logging in to SAP B1 at %s (company=%s, user=%s)",
                    login_url, credentials.company_db, credentials.username)

        async with make_async_client(
            credentials, self.config.login_timeout, self.transport
        ) as http_client:
            try:
                response = await http_client.post(login_url, json=payload)
            except RequestError as exc:
                self.cache.invalidate(identity)
                raise AuthFailure(
                    f"Cannot reach SAP B1 Service Layer at '{login_url}': {exc}"
                ) from exc

        if not response.is_success:
            self.cache.invalidate(identity)
            message = extract_service_layer_message(response.text)
            raise AuthFailure(
                f"SAP B1 login failed (HTTP {response.status_code}): {message}",
                status=response.status_code,
            )

        try:
            data: Any = response.json()
        except ValueError:
            data = None

        token = data.get("SessionId") if isinstance(data, dict) else None
        if not token:
            if force_new:
                # A forced login without a token means the stored credentials are bad.
                self.cache.invalidate(identity)
            raise AuthFailure(
                "SAP B1 login succeeded but the response did not contain 'SessionId'.",
                status=response.status_code,
            )

        self.cache.put(identity, str(token))
        return str(token)
