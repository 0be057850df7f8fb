"""Member service adapter (IdentityDirectory port)."""

from __future__ import annotations

import asyncio
import logging

import aiohttp

from core.config import DEFAULT_REMOTE_TIMEOUT
from core.errors import ProfileResolutionFailed
from core.models import Profile

LOGGER = logging.getLogger(__name__)


class MemberServiceDirectory:
    """Resolve a platform handle to its profile via the member service."""

    def __init__(
        self,
        base_url: str,
        session: aiohttp.ClientSession,
        timeout: float = DEFAULT_REMOTE_TIMEOUT,
    ) -> None:
        self._base_url = base_url.rstrip("/")
        self._session = session
        self._timeout = timeout

    async def get_profile(self, handle: str, token: str) -> Profile:
        """Fetch ``result.content`` for a handle, using the caller's token."""

        headers = {
            "Authorization": f"Bearer {token}",
            "Accept": "application/json",
            "Content-Type": "application/json",
        }
        try:
            async with self._session.get(
                f"{self._base_url}/{handle}",
                headers=headers,
                timeout=aiohttp.ClientTimeout(total=self._timeout),
            ) as response:
                if response.status != 200:
                    text = await response.text()
                    raise ProfileResolutionFailed(
                        f"Unable to resolve profile for {handle}",
                        upstream={"status": response.status, "body": text[:500]},
                    )
                body = await response.json(content_type=None)
        except (aiohttp.ClientError, asyncio.TimeoutError, ValueError) as exc:
            raise ProfileResolutionFailed(f"Unable to resolve profile for {handle}", upstream=str(exc)) from exc

        content = (body.get("result") or {}).get("content") if isinstance(body, dict) else None
        if not isinstance(content, dict):
            raise ProfileResolutionFailed(f"Unexpected member service response for {handle}", upstream=body)

        LOGGER.debug("Resolved profile for %s", handle)
        return Profile(
            handle=content.get("handle") or handle,
            first_name=content.get("firstName") or "",
            last_name=content.get("lastName") or "",
            email=content.get("email") or "",
        )
