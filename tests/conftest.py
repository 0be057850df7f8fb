"""Shared fakes and fixtures for topicgate tests."""

from __future__ import annotations

import asyncio
from datetime import datetime, timezone
from typing import Any, Optional

import pytest

from adapters.memory_forum import InMemoryForum
from core.config import ProvisioningConfig
from core.entitlement import EntitlementVerifier
from core.errors import MappingConflict
from core.locks import KeyedLocks
from core.models import Actor, AuthorizationRoute, EntityReference, Profile, ThreadMapping
from core.orchestrator import TopicProvisioningOrchestrator
from core.provisioning import ForumUserProvisioner

GRANTED = {"result": {"status": 200, "content": {}}}


class FakeStore:
    """MappingStore double with the same uniqueness rule as SQLite."""

    def __init__(self) -> None:
        self.mappings: dict[tuple[str, str], ThreadMapping] = {}
        self.inserts: list[ThreadMapping] = []

    async def get_mapping(self, reference: EntityReference) -> Optional[ThreadMapping]:
        await asyncio.sleep(0)
        return self.mappings.get((reference.reference_type, reference.reference_id))

    async def insert_mapping(self, mapping: ThreadMapping) -> ThreadMapping:
        await asyncio.sleep(0)
        self.inserts.append(mapping)
        key = (mapping.reference_type, mapping.reference_id)
        existing = self.mappings.get(key)
        if existing is not None:
            if existing.thread_id != mapping.thread_id:
                raise MappingConflict(existing, mapping.thread_id)
            return existing
        self.mappings[key] = mapping
        return mapping


class FakeRoutes:
    def __init__(self, routes: Optional[dict[str, str]] = None) -> None:
        self.routes = routes or {}
        self.lookups: list[str] = []

    async def get_route(self, reference_type: str) -> Optional[AuthorizationRoute]:
        self.lookups.append(reference_type)
        template = self.routes.get(reference_type)
        if template is None:
            return None
        return AuthorizationRoute(reference_type=reference_type, endpoint_template=template)


class FakeFetcher:
    """JsonFetcher double returning queued (status, body) pairs or raising."""

    def __init__(self, *responses: Any) -> None:
        self.responses = list(responses)
        self.default: Any = (200, GRANTED)
        self.calls: list[tuple[str, str, float]] = []

    async def get_json(self, url: str, token: str, timeout: float) -> tuple[int, Any]:
        self.calls.append((url, token, timeout))
        response = self.responses.pop(0) if self.responses else self.default
        if isinstance(response, BaseException):
            raise response
        return response


class FakeDirectory:
    def __init__(self, error: Optional[Exception] = None) -> None:
        self.error = error
        self.calls: list[tuple[str, str]] = []

    async def get_profile(self, handle: str, token: str) -> Profile:
        self.calls.append((handle, token))
        if self.error is not None:
            raise self.error
        return Profile(handle=handle, first_name="Ada", last_name="Lovelace", email=f"{handle}@example.com")


def make_mapping(reference_type: str, reference_id: str, thread_id: str, by: str = "creator") -> ThreadMapping:
    created = datetime(2024, 1, 1, tzinfo=timezone.utc)
    return ThreadMapping(
        reference_type=reference_type,
        reference_id=reference_id,
        thread_id=thread_id,
        created_by=by,
        created_at=created,
        updated_by=by,
        updated_at=created,
    )


@pytest.fixture
def actor() -> Actor:
    return Actor(handle="ada", token="token-ada")


@pytest.fixture
def forum() -> InMemoryForum:
    return InMemoryForum(system_username="system")


@pytest.fixture
def store() -> FakeStore:
    return FakeStore()


@pytest.fixture
def routes() -> FakeRoutes:
    return FakeRoutes(
        {
            "project": "https://auth.example.com/projects/{id}",
            "challenge": "https://auth.example.com/challenges/{id}",
        }
    )


@pytest.fixture
def fetcher() -> FakeFetcher:
    return FakeFetcher()


@pytest.fixture
def directory() -> FakeDirectory:
    return FakeDirectory()


@pytest.fixture
def provisioner(forum: InMemoryForum, directory: FakeDirectory) -> ForumUserProvisioner:
    return ForumUserProvisioner(forum, directory, ProvisioningConfig(sentinel_password="sso-only"))


@pytest.fixture
def locks() -> KeyedLocks:
    return KeyedLocks()


@pytest.fixture
def orchestrator(
    store: FakeStore,
    forum: InMemoryForum,
    routes: FakeRoutes,
    fetcher: FakeFetcher,
    provisioner: ForumUserProvisioner,
    locks: KeyedLocks,
) -> TopicProvisioningOrchestrator:
    verifier = EntitlementVerifier(routes, fetcher, timeout=0.5)
    return TopicProvisioningOrchestrator(
        store=store,
        gateway=forum,
        verifier=verifier,
        provisioner=provisioner,
        locks=locks,
        clock=lambda: datetime(2024, 6, 1, tzinfo=timezone.utc),
    )


@pytest.fixture
def mapping_factory():
    return make_mapping
