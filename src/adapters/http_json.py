"""aiohttp JSON fetcher used by entitlement checks."""

from __future__ import annotations

import uuid
from typing import Any

import aiohttp


class AiohttpJsonFetcher:
    """Bearer-authenticated GET returning (status, decoded JSON body)."""

    def __init__(self, session: aiohttp.ClientSession) -> None:
        self._session = session

    async def get_json(self, url: str, token: str, timeout: float) -> tuple[int, Any]:
        headers = {
            "X-Request-Id": uuid.uuid4().hex,
            "Authorization": f"Bearer {token}",
            "Accept": "application/json",
            "Content-Type": "application/json",
        }
        async with self._session.get(
            url,
            headers=headers,
            timeout=aiohttp.ClientTimeout(total=timeout),
        ) as response:
            # A body that is not JSON raises here; the verifier treats that as deny.
            body = await response.json(content_type=None)
            return response.status, body
