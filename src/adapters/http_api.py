"""HTTP surface for the topic workflow (aiohttp.web).

GET /topics?filter=reference%3Dproject%26referenceId%3D42

The upstream auth gateway verifies the caller's JWT, then forwards the handle
in X-Actor-Handle, the token in Authorization, and an HMAC-SHA256 over both in
X-Actor-Signature keyed with the shared ACTOR_SIGNING_SECRET. Requests whose
signature does not match never reach the workflow. Callers only see the
error kind and message; upstream payloads stay in the logs.
"""

from __future__ import annotations

import asyncio
import hashlib
import hmac
import logging
from typing import Mapping

from aiohttp import web

from core.errors import AuthenticationFailed, TopicGateError, ValidationError, WorkflowTimeout
from core.models import Actor
from core.orchestrator import TopicProvisioningOrchestrator
from core.references import parse_filter, reference_from_filter

LOGGER = logging.getLogger(__name__)

HANDLE_HEADER = "X-Actor-Handle"
SIGNATURE_HEADER = "X-Actor-Signature"


def sign_actor(secret: str, handle: str, token: str) -> str:
    """Signature the auth gateway attaches for a verified (handle, token) pair."""

    message = f"{handle}\n{token}".encode("utf-8", "surrogateescape")
    return hmac.new(secret.encode("utf-8"), message, hashlib.sha256).hexdigest()


def actor_from_headers(headers: Mapping[str, str], secret: str) -> Actor:
    """Build the Actor from request headers.

    Raises ValidationError for an incomplete identity and AuthenticationFailed
    when the handle is not signed together with the presented token.
    """

    handle = (headers.get(HANDLE_HEADER) or "").strip()
    authorization = (headers.get("Authorization") or "").strip()
    scheme, _, token = authorization.partition(" ")
    if scheme.lower() != "bearer":
        token = ""
    token = token.strip()
    if not handle or not token:
        raise ValidationError("Missing actor identity")

    signature = (headers.get(SIGNATURE_HEADER) or "").strip().lower().encode("utf-8", "replace")
    expected = sign_actor(secret, handle, token).encode("ascii")
    if not hmac.compare_digest(signature, expected):
        raise AuthenticationFailed("Actor identity could not be verified")
    return Actor(handle=handle, token=token)


def _error_response(error: TopicGateError) -> web.Response:
    return web.json_response(error.to_dict(), status=error.http_status)


def create_web_app(
    *,
    orchestrator: TopicProvisioningOrchestrator,
    workflow_timeout: float,
    actor_secret: str,
) -> web.Application:
    if not actor_secret:
        raise ValueError("actor_secret is required to verify actor identities")

    app = web.Application()

    async def health(_: web.Request) -> web.Response:
        return web.json_response({"status": "ok"})

    async def get_topic(request: web.Request) -> web.Response:
        # Validation and authentication happen before any remote call is made.
        try:
            reference = reference_from_filter(parse_filter(request.query.get("filter")))
            actor = actor_from_headers(request.headers, actor_secret)
        except AuthenticationFailed as exc:
            LOGGER.warning(
                "Rejected unsigned identity %r from %s",
                request.headers.get(HANDLE_HEADER),
                request.remote,
            )
            return _error_response(exc)
        except ValidationError as exc:
            LOGGER.info("Rejected topic request: %s", exc.message)
            return _error_response(exc)

        try:
            result = await asyncio.wait_for(
                orchestrator.get_or_create(actor, reference),
                timeout=workflow_timeout,
            )
        except asyncio.TimeoutError:
            LOGGER.error(
                "Topic workflow timed out for %s %s (actor=%s)",
                reference.reference_type,
                reference.reference_id,
                actor.handle,
            )
            return _error_response(WorkflowTimeout("Timed out fetching topic"))
        except TopicGateError as exc:
            return _error_response(exc)
        except Exception:
            LOGGER.exception("Error fetching topic for %s %s", reference.reference_type, reference.reference_id)
            return web.json_response({"kind": "internal_error", "message": "Error fetching topic!"}, status=500)

        LOGGER.info(
            "Returning thread %s for %s %s (created=%s, reconciled=%s)",
            result.mapping.thread_id,
            reference.reference_type,
            reference.reference_id,
            result.created,
            result.reconciled,
        )
        return web.json_response(result.thread)

    app.router.add_get("/health", health)
    app.router.add_get("/topics", get_topic)
    return app
