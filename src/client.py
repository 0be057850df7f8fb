"""Forum client factory for topicgate.

The gateway is an explicitly constructed value handed to the orchestrator,
never a module-level singleton, so tests can pass a fake instead.
"""

from __future__ import annotations

import logging
import os

import aiohttp

import settings
from adapters.discourse_gateway import DiscourseGateway
from adapters.memory_forum import InMemoryForum
from core.config import ForumGatewayConfig
from core.ports import ForumGateway


def build_gateway_config() -> ForumGatewayConfig:
    """Create the forum gateway config from settings and the environment.

    The API key is read from FORUM_API_KEY to keep secrets out of the repo.
    """

    api_key = os.getenv("FORUM_API_KEY")

    # Fail fast on missing credentials rather than on the first forum call.
    if not api_key:
        raise RuntimeError("Missing FORUM_API_KEY in environment")
    if not settings.FORUM_URL:
        raise RuntimeError("forum.base_url is required in config.json")

    return ForumGatewayConfig(
        base_url=settings.FORUM_URL,
        api_key=api_key,
        system_username=settings.FORUM_SYSTEM_USERNAME,
        timeout=settings.FORUM_TIMEOUT,
    )


def build_gateway(session: aiohttp.ClientSession) -> ForumGateway:
    """Select the forum backend configured in config.json."""

    logger = logging.getLogger(__name__)
    if settings.FORUM_BACKEND == "memory":
        logger.warning("Using the in-memory forum backend; nothing is sent to a real forum")
        return InMemoryForum(system_username=settings.FORUM_SYSTEM_USERNAME)
    if settings.FORUM_BACKEND != "discourse":
        raise RuntimeError("forum.backend must be 'discourse' or 'memory'")

    logger.info("Initializing Discourse gateway for %s", settings.FORUM_URL)
    return DiscourseGateway(build_gateway_config(), session)
