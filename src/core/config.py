"""Core configuration dataclasses.

We keep config parsing outside the core, but these dataclasses define the
shape the core and adapters expect so the app layer can build them safely.
"""

from __future__ import annotations

from dataclasses import dataclass

DEFAULT_ENTITLEMENT_TIMEOUT = 3.0
DEFAULT_REMOTE_TIMEOUT = 10.0


@dataclass(frozen=True)
class ForumGatewayConfig:
    """Immutable connection settings shared by every forum gateway call."""

    base_url: str
    api_key: str
    system_username: str
    timeout: float = DEFAULT_REMOTE_TIMEOUT


@dataclass(frozen=True)
class ProvisioningConfig:
    """Settings for creating forum accounts on first use."""

    # Forum login goes through SSO; the account API still insists on a password.
    sentinel_password: str

