from __future__ import annotations

import logging

import httpx


LOGGER = logging.getLogger("federation-monitor")

PROBE_TIMEOUT_SECONDS = 5.0


def version_url(target: str) -> str:
    return f"https://{target}/_matrix/federation/v1/version"


async def probe_server(
    target: str,
    client: httpx.AsyncClient,
    *,
    timeout_seconds: float = PROBE_TIMEOUT_SECONDS,
) -> bool:
    """
    True when the target answers the federation version endpoint with a JSON object.

    Only structure is checked, not the fields or the status code. No retries.
    """
    try:
        resp = await client.get(version_url(target), timeout=timeout_seconds)
    except (httpx.HTTPError, httpx.InvalidURL) as exc:
        LOGGER.debug("Probe failed target=%s error=%s: %s", target, type(exc).__name__, exc)
        return False

    try:
        data = resp.json()
    except ValueError:
        LOGGER.debug("Probe got non-JSON body target=%s status_code=%s", target, resp.status_code)
        return False

    if not isinstance(data, dict):
        LOGGER.debug("Probe got non-object JSON target=%s type=%s", target, type(data).__name__)
        return False
    return True
