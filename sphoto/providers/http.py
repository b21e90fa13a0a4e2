from __future__ import annotations

import httpx


_transport: httpx.AsyncBaseTransport | None = None


def tenant_http_client(timeout_s: float) -> httpx.AsyncClient:
    # Shared construction point for calls into tenant apps; tests swap the transport.
    return httpx.AsyncClient(timeout=timeout_s, transport=_transport)


def set_http_transport(transport: httpx.AsyncBaseTransport | None) -> None:
    global _transport
    _transport = transport
