from __future__ import annotations

import asyncio
import logging
from typing import Any

import httpx

from federation_checks.errors import DelegationError


LOGGER = logging.getLogger("federation-monitor")

DEFAULT_FEDERATION_PORT = 8448
DEFAULT_LOOKUP_TIMEOUT_SECONDS = 5.0


def well_known_url(domain: str) -> str:
    return f"https://{domain}/.well-known/matrix/server"


def srv_service_name(domain: str) -> str:
    return f"_matrix._tcp.{domain}"


def _parse_well_known(data: Any) -> str | None:
    if not isinstance(data, dict):
        return None
    server = data.get("m.server")
    if not isinstance(server, str) or not server:
        return None
    return server


async def lookup_well_known(
    domain: str, client: httpx.AsyncClient, *, timeout_seconds: float
) -> str | None:
    try:
        resp = await client.get(well_known_url(domain), follow_redirects=True, timeout=timeout_seconds)
    except (httpx.HTTPError, httpx.InvalidURL) as exc:
        # InvalidURL covers server names httpx cannot turn into a URL (e.g. "a:b:c").
        LOGGER.debug("Well-known lookup failed domain=%s error=%s: %s", domain, type(exc).__name__, exc)
        return None

    if not resp.is_success:
        LOGGER.debug("Well-known lookup non-success domain=%s status_code=%s", domain, resp.status_code)
        return None
    try:
        data = resp.json()
    except ValueError:
        LOGGER.debug("Well-known lookup returned invalid JSON domain=%s", domain)
        return None

    server = _parse_well_known(data)
    if server is None:
        LOGGER.debug("Well-known lookup has no m.server domain=%s", domain)
    return server


def _srv_query_sync(*, name: str, timeout_seconds: float) -> list[tuple[str, int]]:
    # dnspython is imported lazily to keep startup fast.
    import dns.resolver  # type: ignore

    r = dns.resolver.Resolver(configure=True)
    r.timeout = max(0.5, float(timeout_seconds))
    r.lifetime = max(0.5, float(timeout_seconds))
    try:
        ans = r.resolve(name, "SRV")
    except (dns.resolver.NoAnswer, dns.resolver.NXDOMAIN):
        return []
    out: list[tuple[str, int]] = []
    for rr in ans:
        out.append((str(rr.target), int(rr.port)))
    return out


async def lookup_srv(domain: str, *, timeout_seconds: float) -> str | None:
    name = srv_service_name(domain)
    try:
        records = await asyncio.to_thread(_srv_query_sync, name=name, timeout_seconds=timeout_seconds)
    except Exception as exc:
        # dnspython raises Timeout, NoNameservers and friends; all are a miss here.
        LOGGER.debug("SRV lookup failed name=%s error=%s: %s", name, type(exc).__name__, exc)
        return None

    if not records:
        LOGGER.debug("SRV lookup returned no records name=%s", name)
        return None

    host, port = records[0]
    host = host.rstrip(".")
    if not host:
        return None
    return f"{host}:{port}"


async def resolve_server(
    domain: str,
    client: httpx.AsyncClient,
    *,
    timeout_seconds: float = DEFAULT_LOOKUP_TIMEOUT_SECONDS,
) -> str:
    """
    Resolve a server name to the endpoint that serves its federation API.

    Order: .well-known/matrix/server, then the first _matrix._tcp SRV record,
    then the default federation port. Always returns a target for a non-empty domain.
    """
    cleaned = str(domain or "").strip()
    if not cleaned:
        raise DelegationError("empty server name")

    server = await lookup_well_known(cleaned, client, timeout_seconds=timeout_seconds)
    if server is not None:
        LOGGER.debug("Resolved via well-known domain=%s target=%s", cleaned, server)
        return server

    server = await lookup_srv(cleaned, timeout_seconds=timeout_seconds)
    if server is not None:
        LOGGER.debug("Resolved via SRV domain=%s target=%s", cleaned, server)
        return server

    target = f"{cleaned}:{DEFAULT_FEDERATION_PORT}"
    LOGGER.debug("Resolved via default port domain=%s target=%s", cleaned, target)
    return target
