"""Core domain models.

These dataclasses are shared across the core and adapters to avoid tight
coupling to any forum or storage specific types.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Optional


@dataclass(frozen=True)
class EntityReference:
    """A platform object (project, challenge, ...) a thread is attached to."""

    reference_type: str
    reference_id: str


@dataclass(frozen=True)
class Actor:
    """The caller on whose behalf forum operations are attributed."""

    handle: str
    token: str


@dataclass(frozen=True)
class ThreadMapping:
    """Persisted link between an entity reference and its forum thread."""

    reference_type: str
    reference_id: str
    thread_id: str
    created_by: str
    created_at: datetime
    updated_by: str
    updated_at: datetime

    @property
    def reference(self) -> EntityReference:
        return EntityReference(self.reference_type, self.reference_id)


@dataclass(frozen=True)
class AuthorizationRoute:
    """Per reference type endpoint used to verify entitlement."""

    reference_type: str
    endpoint_template: str

    def url_for(self, reference_id: str) -> str:
        return self.endpoint_template.replace("{id}", reference_id)


@dataclass(frozen=True)
class Profile:
    """Canonical platform profile used to provision forum accounts."""

    handle: str
    first_name: str
    last_name: str
    email: str

    @property
    def full_name(self) -> str:
        return " ".join(part for part in (self.first_name, self.last_name) if part)


@dataclass(frozen=True)
class ForumUser:
    username: str
    user_id: Optional[int] = None
    payload: dict[str, Any] = field(default_factory=dict, compare=False)


@dataclass(frozen=True)
class CreatedThread:
    """Result of a successful remote thread creation."""

    thread_id: str
    status: int
    payload: dict[str, Any] = field(default_factory=dict, compare=False)


@dataclass(frozen=True)
class TopicResult:
    """Outcome of one get-or-create run."""

    mapping: ThreadMapping
    thread: dict[str, Any]
    created: bool = False
    reconciled: bool = False
