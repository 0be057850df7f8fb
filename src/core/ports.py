"""Ports (interfaces) used by the core workflow.

Ports define the minimal contracts for storage, forum, and directory adapters
so that the core can be reused with different backends and tested with fakes.
"""

from __future__ import annotations

from typing import Any, Iterable, Optional, Protocol

from core.models import (
    AuthorizationRoute,
    CreatedThread,
    EntityReference,
    ForumUser,
    Profile,
    ThreadMapping,
)


class MappingStore(Protocol):
    """Durable (reference_type, reference_id) -> thread_id mapping."""

    async def get_mapping(self, reference: EntityReference) -> Optional[ThreadMapping]:
        ...

    async def insert_mapping(self, mapping: ThreadMapping) -> ThreadMapping:
        """Persist a new mapping.

        Returns the stored mapping. Raises MappingConflict when a mapping with
        a different thread id already exists for the same reference.
        """
        ...


class RouteTable(Protocol):
    """Lookup of authorization routes by reference type."""

    async def get_route(self, reference_type: str) -> Optional[AuthorizationRoute]:
        ...


class JsonFetcher(Protocol):
    """Authenticated JSON GET used for entitlement checks."""

    async def get_json(self, url: str, token: str, timeout: float) -> tuple[int, Any]:
        """Return (http_status, decoded_body). Transport errors raise."""
        ...


class IdentityDirectory(Protocol):
    async def get_profile(self, handle: str, token: str) -> Profile:
        ...


class ForumGateway(Protocol):
    """Operations the core needs from the remote forum.

    Failures raise ForumRequestError. Calls that act for a non-privileged
    actor are attributed to that actor; administrative calls use the
    gateway's system identity.
    """

    async def get_user(self, handle: str) -> ForumUser:
        ...

    async def create_user(self, name: str, handle: str, email: str, password: str) -> dict[str, Any]:
        ...

    async def create_thread(
        self,
        title: str,
        body: str,
        target_usernames: Iterable[str],
        acting_user: Optional[str] = None,
    ) -> CreatedThread:
        ...

    async def get_thread(self, thread_id: str, acting_user: str) -> dict[str, Any]:
        ...

    async def grant_access(self, username: str, thread_id: str) -> dict[str, Any]:
        ...

    async def create_post(
        self,
        acting_user: str,
        body: str,
        thread_id: str,
        reply_to: Optional[int] = None,
    ) -> dict[str, Any]:
        ...

    async def list_posts(self, acting_user: str, thread_id: str, post_ids: Iterable[int]) -> dict[str, Any]:
        ...

    async def mark_read(self, acting_user: str, thread_id: str, post_ids: Iterable[int]) -> dict[str, Any]:
        ...

    async def change_trust_level(self, user_id: int, level: int) -> dict[str, Any]:
        ...
