# SAP B1 Query MCP Server
# File: httpclient.py
# Version: v1

"""httpx client construction shared by the authenticator and the fetcher."""

from __future__ import annotations

from typing import Optional

import httpx

from .models import ConnectionCredentials


def make_async_client(
    credentials: ConnectionCredentials,
    timeout: float,
    transport: Optional[httpx.AsyncBaseTransport] = None,
) -> httpx.AsyncClient:
    """Return a client scoped to one connection.

    TLS verification is decided per connection and applies to this client
    only; self-signed Service Layer certificates are common, so operators can
    turn it off with verify_tls=False.
    """
    kwargs = {"timeout": timeout, "verify": bool(credentials.verify_tls)}
    if transport is not None:
        kwargs["transport"] = transport
    return httpx.AsyncClient(**kwargs)


def session_headers(token: str) -> dict:
    return {
        "Accept": "application/json",
        "Content-Type": "application/json",
        "Cookie": f"B1SESSION={token}",
    }
