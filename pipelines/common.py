"""Shared HTTP helper for downloading published SHF files."""

from __future__ import annotations

from typing import Mapping

import httpx
from tenacity import retry, retry_if_exception_type, stop_after_attempt, wait_exponential

DEFAULT_TIMEOUT_SECONDS = 60.0
_DEFAULT_WAIT = wait_exponential(min=1, max=16)
_DEFAULT_STOP = stop_after_attempt(5)


Headers = Mapping[str, str] | None


@retry(
    wait=_DEFAULT_WAIT,
    stop=_DEFAULT_STOP,
    retry=retry_if_exception_type(httpx.TransportError),
    reraise=True,
)
async def fetch_bytes(
    url: str,
    *,
    headers: Headers = None,
    timeout: float = DEFAULT_TIMEOUT_SECONDS,
) -> bytes:
    """GET ``url`` and return the undecoded response body.

    Transport failures are retried with exponential backoff; HTTP error
    statuses are raised immediately as ``httpx.HTTPStatusError``. The body is
    returned as bytes because SHF files do not declare their encoding.
    """

    async with httpx.AsyncClient(timeout=timeout, follow_redirects=True) as client:
        response = await client.get(url, headers=headers)

    response.raise_for_status()
    return response.content


__all__ = ["fetch_bytes", "DEFAULT_TIMEOUT_SECONDS"]
