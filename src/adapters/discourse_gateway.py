"""Discourse forum gateway adapter.

Implements the core ForumGateway port on top of an injected
aiohttp.ClientSession. Every request carries Api-Key/Api-Username headers:
the acting actor for user-facing calls, the system user for administrative
ones, so the forum's own audit trail stays accurate.
"""

from __future__ import annotations

import asyncio
import logging
from typing import Any, Iterable, Optional

import aiohttp

from core.config import ForumGatewayConfig
from core.errors import ForumRequestError
from core.models import CreatedThread, ForumUser

LOGGER = logging.getLogger(__name__)

# Reading time credited per post when marking posts read.
READ_TIME_MS = 1000


async def _read_payload(response: aiohttp.ClientResponse) -> Any:
    try:
        return await response.json(content_type=None)
    except ValueError:
        text = await response.text(errors="replace")
        return {"raw": text[:500]}


class DiscourseGateway:
    """Stateless client over the Discourse HTTP API."""

    def __init__(self, config: ForumGatewayConfig, session: aiohttp.ClientSession) -> None:
        self._config = config
        self._session = session
        self._base_url = config.base_url.rstrip("/")

    def _headers(self, acting_user: Optional[str]) -> dict[str, str]:
        return {
            "Api-Key": self._config.api_key,
            "Api-Username": acting_user or self._config.system_username,
            "Accept": "application/json",
        }

    async def _request(
        self,
        operation: str,
        method: str,
        path: str,
        *,
        acting_user: Optional[str] = None,
        params: Any = None,
        payload: Optional[dict[str, Any]] = None,
        form: Optional[dict[str, Any]] = None,
    ) -> tuple[int, Any]:
        url = f"{self._base_url}{path}"
        timeout = aiohttp.ClientTimeout(total=self._config.timeout)
        LOGGER.debug("%s %s as %s", method, path, acting_user or self._config.system_username)
        try:
            async with self._session.request(
                method,
                url,
                headers=self._headers(acting_user),
                params=params,
                json=payload,
                data={key: str(value) for key, value in form.items()} if form else None,
                timeout=timeout,
            ) as response:
                body = await _read_payload(response)
                if not 200 <= response.status < 300:
                    LOGGER.info("Forum %s returned %s", operation, response.status)
                    raise ForumRequestError(operation, response.status, body)
                return response.status, body
        except (aiohttp.ClientError, asyncio.TimeoutError) as exc:
            LOGGER.warning("Forum %s transport error: %s", operation, exc)
            raise ForumRequestError(operation, None, str(exc)) from exc

    async def get_user(self, handle: str) -> ForumUser:
        """Fetch a forum user by username.

        Looked up as the system user: Discourse answers 403 rather than 404
        when Api-Username names an account that does not exist yet.
        """

        _, body = await self._request("get_user", "GET", f"/users/{handle}.json")
        user = body.get("user", {}) if isinstance(body, dict) else {}
        return ForumUser(username=user.get("username", handle), user_id=user.get("id"), payload=body)

    async def create_user(self, name: str, handle: str, email: str, password: str) -> dict[str, Any]:
        """Create an active forum user. The password is unused under SSO."""

        LOGGER.debug("Creating forum user %s", handle)
        _, body = await self._request(
            "create_user",
            "POST",
            "/users",
            payload={
                "name": name,
                "username": handle,
                "email": email,
                "password": password,
                "active": True,
            },
        )
        return body if isinstance(body, dict) else {"success": False, "raw": body}

    async def create_thread(
        self,
        title: str,
        body: str,
        target_usernames: Iterable[str],
        acting_user: Optional[str] = None,
    ) -> CreatedThread:
        """Create a private message thread between the owner and targets."""

        status, payload = await self._request(
            "create_thread",
            "POST",
            "/posts",
            acting_user=acting_user,
            payload={
                "archetype": "private_message",
                "target_recipients": ",".join(target_usernames),
                "title": title,
                "raw": body,
            },
        )
        topic_id = payload.get("topic_id") if isinstance(payload, dict) else None
        if topic_id is None:
            raise ForumRequestError("create_thread", status, payload)
        return CreatedThread(thread_id=str(topic_id), status=status, payload=payload)

    async def get_thread(self, thread_id: str, acting_user: str) -> dict[str, Any]:
        """Fetch a topic as ``acting_user`` so the forum enforces its access rules."""

        _, body = await self._request("get_thread", "GET", f"/t/{thread_id}.json", acting_user=acting_user)
        return body

    async def grant_access(self, username: str, thread_id: str) -> dict[str, Any]:
        """Invite a user into a private topic."""

        _, body = await self._request(
            "grant_access",
            "POST",
            f"/t/{thread_id}/invite",
            payload={"user": username},
        )
        return body

    async def create_post(
        self,
        acting_user: str,
        body: str,
        thread_id: str,
        reply_to: Optional[int] = None,
    ) -> dict[str, Any]:
        """Reply to a topic, optionally to a specific post number."""

        form: dict[str, Any] = {"topic_id": thread_id, "raw": body}
        if reply_to:
            form["reply_to_post_number"] = reply_to
        _, payload = await self._request("create_post", "POST", "/posts", acting_user=acting_user, form=form)
        return payload

    async def list_posts(self, acting_user: str, thread_id: str, post_ids: Iterable[int]) -> dict[str, Any]:
        params = [("post_ids[]", str(post_id)) for post_id in post_ids]
        _, payload = await self._request(
            "list_posts",
            "GET",
            f"/t/{thread_id}/posts.json",
            acting_user=acting_user,
            params=params,
        )
        return payload

    async def mark_read(self, acting_user: str, thread_id: str, post_ids: Iterable[int]) -> dict[str, Any]:
        """Record read timings for posts in a topic."""

        post_ids = list(post_ids)
        form: dict[str, Any] = {
            "topic_id": thread_id,
            "topic_time": READ_TIME_MS * max(len(post_ids), 1),
        }
        for post_id in post_ids:
            form[f"timings[{post_id}]"] = READ_TIME_MS
        _, payload = await self._request(
            "mark_read",
            "POST",
            "/topics/timings.json",
            acting_user=acting_user,
            form=form,
        )
        return payload

    async def change_trust_level(self, user_id: int, level: int) -> dict[str, Any]:
        _, payload = await self._request(
            "change_trust_level",
            "PUT",
            f"/admin/users/{user_id}/trust_level",
            payload={"level": level},
        )
        return payload
