"""Shared async HTTP client for package registry lookups.

A thin wrapper around ``httpx.AsyncClient`` with one timeout, one
user-agent and two error policies. By default network and HTTP failures
are logged as warnings and yield an empty result. With ``strict=True``
they raise ``RegistryUnavailable`` instead, so callers that build lock
artifacts can tell "the registry has nothing" apart from "the registry
did not answer". A 404 is an answer and yields an empty result either way.
"""

from __future__ import annotations

import logging
from typing import Any

import httpx

from lockstep import __version__
from lockstep.exceptions import RegistryUnavailable

logger = logging.getLogger(__name__)

# Timeout for all registry HTTP requests (seconds).
DEFAULT_TIMEOUT: float = 30.0

USER_AGENT: str = f"Lockstep-Resolver/{__version__}"


async def fetch_json(
    url: str,
    *,
    params: dict[str, str] | None = None,
    timeout: float = DEFAULT_TIMEOUT,
    client: httpx.AsyncClient | None = None,
    strict: bool = False,
) -> dict[str, Any] | list[Any]:
    """Fetch a URL and parse the response as JSON.

    Args:
        url: The URL to fetch.
        params: Optional query parameters.
        timeout: Request timeout in seconds.
        client: Reuse an open client instead of creating one per request.
        strict: Raise on failures instead of returning an empty result.

    Returns:
        Parsed JSON response (dict or list). Empty dict on a 404, and on
        any error when not ``strict``.

    Raises:
        RegistryUnavailable: With ``strict``, on timeouts, connection
            errors, non-404 HTTP errors and bodies that are not JSON.
    """
    try:
        if client is not None:
            resp = await client.get(url, params=params)
            resp.raise_for_status()
            return resp.json()
        async with httpx.AsyncClient(
            timeout=timeout,
            headers={"User-Agent": USER_AGENT},
            follow_redirects=True,
        ) as fresh:
            resp = await fresh.get(url, params=params)
            resp.raise_for_status()
            return resp.json()
    except httpx.TimeoutException as exc:
        logger.warning("Timeout fetching %s", url)
        if strict:
            raise RegistryUnavailable(url, "timeout") from exc
        return {}
    except httpx.HTTPStatusError as exc:
        status = exc.response.status_code
        logger.warning("HTTP %d from %s", status, url)
        if strict and status != 404:
            raise RegistryUnavailable(url, f"HTTP {status}") from exc
        return {}
    except (httpx.RequestError, ValueError) as exc:
        logger.warning("Request error for %s: %s", url, exc)
        if strict:
            raise RegistryUnavailable(url, type(exc).__name__) from exc
        return {}
