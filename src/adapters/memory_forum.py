"""In-memory forum gateway.

Satisfies the ForumGateway port without a network, for local runs
(forum backend "memory") and tests. Behavior can be overridden per call with
scripted responses: queued values are returned and queued exceptions raised,
in order, before falling back to the default in-memory behavior.
"""

from __future__ import annotations

import asyncio
import itertools
from collections import defaultdict, deque
from typing import Any, Iterable, Optional

from core.errors import ForumRequestError
from core.models import CreatedThread, ForumUser

_UNSET = object()


class InMemoryForum:
    """ForumGateway double that keeps users, threads, and posts in dicts."""

    def __init__(self, system_username: str = "system") -> None:
        self.system_username = system_username
        self.users: dict[str, ForumUser] = {}
        self.threads: dict[str, dict[str, Any]] = {}
        self.members: dict[str, set[str]] = defaultdict(set)
        self.posts: dict[str, list[dict[str, Any]]] = defaultdict(list)
        self.read_marks: dict[tuple[str, str], set[int]] = defaultdict(set)
        self.trust_levels: dict[int, int] = {}
        self.calls: list[tuple[Any, ...]] = []
        self._scripts: dict[str, deque] = defaultdict(deque)
        self._ids = itertools.count(1)

    def script(self, operation: str, *responses: Any) -> None:
        """Queue responses (values or exceptions) for the next calls of ``operation``."""

        self._scripts[operation].extend(responses)

    def add_user(self, username: str) -> ForumUser:
        user = ForumUser(username=username, user_id=next(self._ids), payload={"user": {"username": username}})
        self.users[username] = user
        return user

    def count(self, operation: str) -> int:
        return sum(1 for call in self.calls if call[0] == operation)

    async def _enter(self, operation: str, *args: Any) -> Any:
        self.calls.append((operation, *args))
        # Yield so concurrent workflows interleave like they would on a network.
        await asyncio.sleep(0)
        queue = self._scripts.get(operation)
        if queue:
            response = queue.popleft()
            if isinstance(response, BaseException):
                raise response
            return response
        return _UNSET

    async def get_user(self, handle: str) -> ForumUser:
        scripted = await self._enter("get_user", handle)
        if scripted is not _UNSET:
            return scripted
        if handle not in self.users:
            raise ForumRequestError("get_user", 404, {"errors": ["The requested URL or resource could not be found."]})
        return self.users[handle]

    async def create_user(self, name: str, handle: str, email: str, password: str) -> dict[str, Any]:
        scripted = await self._enter("create_user", name, handle, email)
        if scripted is not _UNSET:
            return scripted
        if handle in self.users:
            return {"success": False, "message": "Username is not available"}
        user = self.add_user(handle)
        return {"success": True, "active": True, "user_id": user.user_id}

    async def create_thread(
        self,
        title: str,
        body: str,
        target_usernames: Iterable[str],
        acting_user: Optional[str] = None,
    ) -> CreatedThread:
        targets = list(target_usernames)
        scripted = await self._enter("create_thread", title, tuple(targets), acting_user)
        if scripted is not _UNSET:
            return scripted
        thread_id = str(next(self._ids))
        owner = acting_user or self.system_username
        self.threads[thread_id] = {"id": int(thread_id), "title": title, "archetype": "private_message"}
        self.members[thread_id] = {owner, *targets}
        post = {"id": next(self._ids), "post_number": 1, "username": owner, "raw": body}
        self.posts[thread_id].append(post)
        return CreatedThread(thread_id=thread_id, status=200, payload={"topic_id": int(thread_id), **post})

    async def get_thread(self, thread_id: str, acting_user: str) -> dict[str, Any]:
        scripted = await self._enter("get_thread", thread_id, acting_user)
        if scripted is not _UNSET:
            return scripted
        if thread_id not in self.threads:
            raise ForumRequestError("get_thread", 404, {"errors": ["not found"]})
        if acting_user not in self.members[thread_id]:
            raise ForumRequestError("get_thread", 403, {"errors": ["You are not permitted to view the requested resource."]})
        return {**self.threads[thread_id], "post_stream": {"posts": list(self.posts[thread_id])}}

    async def grant_access(self, username: str, thread_id: str) -> dict[str, Any]:
        scripted = await self._enter("grant_access", username, thread_id)
        if scripted is not _UNSET:
            return scripted
        if thread_id not in self.threads:
            raise ForumRequestError("grant_access", 404, {"errors": ["not found"]})
        self.members[thread_id].add(username)
        return {"success": "OK"}

    async def create_post(
        self,
        acting_user: str,
        body: str,
        thread_id: str,
        reply_to: Optional[int] = None,
    ) -> dict[str, Any]:
        scripted = await self._enter("create_post", acting_user, thread_id, reply_to)
        if scripted is not _UNSET:
            return scripted
        if acting_user not in self.members[thread_id]:
            raise ForumRequestError("create_post", 403, {"errors": ["not permitted"]})
        post = {
            "id": next(self._ids),
            "post_number": len(self.posts[thread_id]) + 1,
            "username": acting_user,
            "raw": body,
            "reply_to_post_number": reply_to,
            "topic_id": int(thread_id),
        }
        self.posts[thread_id].append(post)
        return post

    async def list_posts(self, acting_user: str, thread_id: str, post_ids: Iterable[int]) -> dict[str, Any]:
        wanted = set(post_ids)
        scripted = await self._enter("list_posts", acting_user, thread_id, tuple(sorted(wanted)))
        if scripted is not _UNSET:
            return scripted
        posts = [post for post in self.posts[thread_id] if post["id"] in wanted]
        return {"post_stream": {"posts": posts}}

    async def mark_read(self, acting_user: str, thread_id: str, post_ids: Iterable[int]) -> dict[str, Any]:
        post_ids = list(post_ids)
        scripted = await self._enter("mark_read", acting_user, thread_id, tuple(post_ids))
        if scripted is not _UNSET:
            return scripted
        self.read_marks[(acting_user, thread_id)].update(post_ids)
        return {}

    async def change_trust_level(self, user_id: int, level: int) -> dict[str, Any]:
        scripted = await self._enter("change_trust_level", user_id, level)
        if scripted is not _UNSET:
            return scripted
        self.trust_levels[user_id] = level
        return {"admin_user": {"id": user_id, "trust_level": level}}
