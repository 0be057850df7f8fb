"""Forum account provisioning (ensure-exists)."""

from __future__ import annotations

import logging

from core.config import ProvisioningConfig
from core.errors import ForumRequestError, ProfileResolutionFailed, ProvisioningFailed
from core.models import Actor, ForumUser
from core.ports import ForumGateway, IdentityDirectory

LOGGER = logging.getLogger(__name__)


class ForumUserProvisioner:
    """Turns a platform identity into a forum identity, idempotently."""

    def __init__(
        self,
        gateway: ForumGateway,
        directory: IdentityDirectory,
        config: ProvisioningConfig,
    ) -> None:
        self._gateway = gateway
        self._directory = directory
        self._config = config

    async def ensure_user(self, actor: Actor) -> ForumUser:
        """Return the forum user for ``actor``, creating it when missing.

        Existence is always asked of the forum; nothing is cached here.
        """

        try:
            user = await self._gateway.get_user(actor.handle)
        except ForumRequestError as exc:
            if not exc.not_found:
                raise ProvisioningFailed(
                    f"Unable to look up forum user {actor.handle}",
                    upstream=exc.payload if exc.payload is not None else exc.status,
                ) from exc
        else:
            LOGGER.debug("Forum user %s already exists", actor.handle)
            return user

        LOGGER.info("Forum user %s does not exist, creating one", actor.handle)
        try:
            profile = await self._directory.get_profile(actor.handle, actor.token)
        except ProfileResolutionFailed:
            raise
        except Exception as exc:
            raise ProfileResolutionFailed(
                f"Unable to resolve profile for {actor.handle}",
                upstream=str(exc),
            ) from exc

        try:
            response = await self._gateway.create_user(
                profile.full_name,
                profile.handle,
                profile.email,
                self._config.sentinel_password,
            )
        except ForumRequestError as exc:
            LOGGER.error("Failed to create forum user %s: status=%s", actor.handle, exc.status)
            raise ProvisioningFailed(
                f"Unable to create forum user {actor.handle}",
                upstream=exc.payload,
            ) from exc

        if not response.get("success"):
            LOGGER.error("Forum rejected user %s: %s", actor.handle, response)
            raise ProvisioningFailed(f"Unable to create forum user {actor.handle}", upstream=response)

        LOGGER.info("Forum user %s created", actor.handle)
        return ForumUser(
            username=profile.handle,
            user_id=response.get("user_id"),
            payload=response,
        )
