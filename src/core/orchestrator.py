"""Topic provisioning and access reconciliation.

The workflow is an explicit state machine:

    LookupMapping
      -> VerifyAndCreate            (no mapping yet)
      -> FetchExisting(mapping)     (mapping found)

    VerifyAndCreate
      -> Failed(EntitlementDenied)  (actor not entitled)
      -> Done                       (user ensured, thread created, mapping stored)
      -> FetchExisting(winner)      (another writer stored a mapping first)

    FetchExisting(mapping, after_grant)
      -> Done                       (forum returned the thread)
      -> ReconcileAccess(mapping)   (403 and no grant attempted yet)
      -> Failed(RemoteFetchFailed)  (anything else, or 403 after the grant)

    ReconcileAccess(mapping)
      -> Failed(EntitlementDenied)
      -> FetchExisting(mapping, after_grant=True)

The local mapping only records that a thread exists. Whether this actor can
currently see it is decided by the forum on every fetch.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Callable, Optional, Union

from core.entitlement import EntitlementVerifier
from core.errors import (
    EntitlementDenied,
    ForumRequestError,
    MappingConflict,
    RemoteCreateFailed,
    RemoteFetchFailed,
    TopicGateError,
)
from core.locks import KeyedLocks
from core.models import Actor, EntityReference, ThreadMapping, TopicResult
from core.ports import ForumGateway, MappingStore
from core.provisioning import ForumUserProvisioner
from core.references import lock_key, thread_title

LOGGER = logging.getLogger(__name__)


@dataclass(frozen=True)
class LookupMapping:
    pass


@dataclass(frozen=True)
class VerifyAndCreate:
    pass


@dataclass(frozen=True)
class FetchExisting:
    mapping: ThreadMapping
    after_grant: bool = False


@dataclass(frozen=True)
class ReconcileAccess:
    mapping: ThreadMapping


@dataclass(frozen=True)
class Done:
    result: TopicResult


@dataclass(frozen=True)
class Failed:
    error: TopicGateError


WorkflowState = Union[LookupMapping, VerifyAndCreate, FetchExisting, ReconcileAccess, Done, Failed]


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class TopicProvisioningOrchestrator:
    """Get-or-create the forum thread for an entity, reconciling access."""

    def __init__(
        self,
        store: MappingStore,
        gateway: ForumGateway,
        verifier: EntitlementVerifier,
        provisioner: ForumUserProvisioner,
        locks: Optional[KeyedLocks] = None,
        clock: Callable[[], datetime] = _utcnow,
    ) -> None:
        self._store = store
        self._gateway = gateway
        self._verifier = verifier
        self._provisioner = provisioner
        self._locks = locks if locks is not None else KeyedLocks()
        self._clock = clock

    async def get_or_create(self, actor: Actor, reference: EntityReference) -> TopicResult:
        """Run the workflow to a terminal state and return the thread."""

        state: WorkflowState = LookupMapping()
        while not isinstance(state, (Done, Failed)):
            LOGGER.debug("%s %s: %s", reference.reference_type, reference.reference_id, type(state).__name__)
            state = await self.step(state, actor, reference)

        if isinstance(state, Failed):
            error = state.error
            LOGGER.error(
                "Topic workflow failed for %s %s (actor=%s, kind=%s, upstream=%s): %s",
                reference.reference_type,
                reference.reference_id,
                actor.handle,
                error.kind,
                error.upstream,
                error.message,
            )
            raise error
        return state.result

    async def step(self, state: WorkflowState, actor: Actor, reference: EntityReference) -> WorkflowState:
        """Advance one state. Taxonomy errors become Failed states."""

        try:
            if isinstance(state, LookupMapping):
                return await self._lookup(reference)
            if isinstance(state, VerifyAndCreate):
                return await self._verify_and_create(actor, reference)
            if isinstance(state, FetchExisting):
                return await self._fetch_existing(state, actor)
            if isinstance(state, ReconcileAccess):
                return await self._reconcile(state, actor, reference)
        except TopicGateError as exc:
            return Failed(exc)
        raise ValueError(f"Unsupported workflow state: {state!r}")

    async def _lookup(self, reference: EntityReference) -> WorkflowState:
        mapping = await self._store.get_mapping(reference)
        if mapping is None:
            LOGGER.info("No thread mapped for %s %s", reference.reference_type, reference.reference_id)
            return VerifyAndCreate()
        return FetchExisting(mapping)

    async def _verify_and_create(self, actor: Actor, reference: EntityReference) -> WorkflowState:
        # Only one creation per entity at a time in this process; the store's
        # unique constraint covers other processes.
        async with self._locks.lock(lock_key(reference)):
            existing = await self._store.get_mapping(reference)
            if existing is not None:
                return FetchExisting(existing)

            denied = await self._require_access(actor, reference)
            if denied is not None:
                return denied
            await self._provisioner.ensure_user(actor)

            title = thread_title(reference)
            try:
                created = await self._gateway.create_thread(title, title, [actor.handle])
            except ForumRequestError as exc:
                return Failed(RemoteCreateFailed("Unable to create forum thread", upstream=exc.status))
            if not 200 <= created.status < 300:
                return Failed(RemoteCreateFailed("Unable to create forum thread", upstream=created.status))

            now = self._clock()
            mapping = ThreadMapping(
                reference_type=reference.reference_type,
                reference_id=reference.reference_id,
                thread_id=created.thread_id,
                created_by=actor.handle,
                created_at=now,
                updated_by=actor.handle,
                updated_at=now,
            )
            try:
                stored = await self._store.insert_mapping(mapping)
            except MappingConflict as conflict:
                LOGGER.warning(
                    "Thread %s for %s %s is orphaned, mapping already points at %s",
                    conflict.rejected_thread_id,
                    reference.reference_type,
                    reference.reference_id,
                    conflict.existing.thread_id,
                )
                return FetchExisting(conflict.existing)

        LOGGER.info(
            "Thread %s created for %s %s",
            stored.thread_id,
            reference.reference_type,
            reference.reference_id,
        )
        return Done(TopicResult(mapping=stored, thread=created.payload, created=True))

    async def _fetch_existing(self, state: FetchExisting, actor: Actor) -> WorkflowState:
        mapping = state.mapping
        try:
            thread = await self._gateway.get_thread(mapping.thread_id, actor.handle)
        except ForumRequestError as exc:
            if exc.forbidden and not state.after_grant:
                LOGGER.info("Actor %s has no access to thread %s yet", actor.handle, mapping.thread_id)
                return ReconcileAccess(mapping)
            return Failed(RemoteFetchFailed(f"Unable to fetch thread {mapping.thread_id}", upstream=exc.status))
        return Done(TopicResult(mapping=mapping, thread=thread, reconciled=state.after_grant))

    async def _reconcile(self, state: ReconcileAccess, actor: Actor, reference: EntityReference) -> WorkflowState:
        denied = await self._require_access(actor, reference)
        if denied is not None:
            return denied
        await self._provisioner.ensure_user(actor)

        thread_id = state.mapping.thread_id
        try:
            await self._gateway.grant_access(actor.handle, thread_id)
        except ForumRequestError as exc:
            return Failed(RemoteFetchFailed(f"Unable to grant access to thread {thread_id}", upstream=exc.status))
        LOGGER.info("Granted %s access to thread %s", actor.handle, thread_id)
        return FetchExisting(state.mapping, after_grant=True)

    async def _require_access(self, actor: Actor, reference: EntityReference) -> Optional[Failed]:
        allowed = await self._verifier.check_access(actor.token, reference.reference_type, reference.reference_id)
        if allowed:
            return None
        return Failed(EntitlementDenied("User doesn't have access to entity"))
