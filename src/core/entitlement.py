"""Entitlement checks against per reference type authorization endpoints.

Policy is asymmetric:
- a reference type with no configured route is open (default-allow);
- a configured route that cannot give a clear yes is a deny (fail-closed).
The two are not the same "unknown" case and must not be merged.
"""

from __future__ import annotations

import asyncio
import logging
from typing import Any

from core.config import DEFAULT_ENTITLEMENT_TIMEOUT
from core.ports import JsonFetcher, RouteTable

LOGGER = logging.getLogger(__name__)


def _has_content(content: Any) -> bool:
    # An empty object still counts as an entity payload; null, "" and 0 do not.
    if isinstance(content, (dict, list)):
        return True
    return bool(content)


def is_granted(status: int, body: Any) -> bool:
    """Return True only for HTTP 200 with result.status == 200 and content."""

    if status != 200 or not isinstance(body, dict):
        return False
    result = body.get("result")
    if not isinstance(result, dict):
        return False
    if result.get("status") not in (200, "200"):
        return False
    return _has_content(result.get("content"))


class EntitlementVerifier:
    """Decides whether an actor may access an entity reference."""

    def __init__(
        self,
        routes: RouteTable,
        fetcher: JsonFetcher,
        timeout: float = DEFAULT_ENTITLEMENT_TIMEOUT,
    ) -> None:
        self._routes = routes
        self._fetcher = fetcher
        self._timeout = timeout

    async def check_access(self, actor_token: str, reference_type: str, reference_id: str) -> bool:
        """Re-derive the entitlement decision; never cached."""

        # Route lookup errors propagate: an unreadable table is not "no route".
        route = await self._routes.get_route(reference_type)
        if route is None:
            LOGGER.info("No authorization route for %s, access allowed by policy", reference_type)
            return True

        url = route.url_for(reference_id)
        try:
            status, body = await asyncio.wait_for(
                self._fetcher.get_json(url, actor_token, self._timeout),
                timeout=self._timeout,
            )
        except asyncio.TimeoutError:
            LOGGER.warning("Authorization check timed out for %s %s", reference_type, reference_id)
            return False
        except Exception as exc:  # transport and decode errors deny access
            LOGGER.warning(
                "Authorization check failed for %s %s: %s",
                reference_type,
                reference_id,
                exc,
            )
            return False

        granted = is_granted(status, body)
        LOGGER.info(
            "Authorization check for %s %s returned %s (granted=%s)",
            reference_type,
            reference_id,
            status,
            granted,
        )
        return granted
