"""Error taxonomy for the topic workflow.

Callers only ever see ``kind`` and ``message``. The ``upstream`` attribute
keeps the raw remote payload or status for logging.
"""

from __future__ import annotations

from typing import Any, Optional

from core.models import ThreadMapping


class TopicGateError(Exception):
    """Base class for failures surfaced by the topic workflow."""

    kind = "topic_error"
    http_status = 500

    def __init__(self, message: str, upstream: Any = None) -> None:
        super().__init__(message)
        self.message = message
        self.upstream = upstream

    def to_dict(self) -> dict[str, str]:
        return {"kind": self.kind, "message": self.message}


class ValidationError(TopicGateError):
    kind = "validation_error"
    http_status = 400


class AuthenticationFailed(TopicGateError):
    kind = "authentication_failed"
    http_status = 401


class EntitlementDenied(TopicGateError):
    kind = "entitlement_denied"
    http_status = 403


class ProfileResolutionFailed(TopicGateError):
    kind = "profile_resolution_failed"
    http_status = 502


class ProvisioningFailed(TopicGateError):
    kind = "provisioning_failed"
    http_status = 502


class RemoteCreateFailed(TopicGateError):
    kind = "remote_create_failed"
    http_status = 502


class RemoteFetchFailed(TopicGateError):
    kind = "remote_fetch_failed"
    http_status = 502


class WorkflowTimeout(TopicGateError):
    kind = "workflow_timeout"
    http_status = 504


class MappingConflict(TopicGateError):
    """Raised by a mapping store when another writer already won the insert."""

    kind = "mapping_conflict"
    http_status = 409

    def __init__(self, existing: ThreadMapping, rejected_thread_id: str) -> None:
        super().__init__(
            f"Mapping for {existing.reference_type} {existing.reference_id} "
            f"already points at thread {existing.thread_id}"
        )
        self.existing = existing
        self.rejected_thread_id = rejected_thread_id


class ForumRequestError(Exception):
    """Gateway-level failure: non-2xx response or transport error.

    ``status`` is None when no HTTP response was received at all.
    """

    def __init__(self, operation: str, status: Optional[int], payload: Any = None) -> None:
        super().__init__(f"{operation} failed with status {status}")
        self.operation = operation
        self.status = status
        self.payload = payload

    @property
    def forbidden(self) -> bool:
        return self.status == 403

    @property
    def not_found(self) -> bool:
        return self.status == 404
