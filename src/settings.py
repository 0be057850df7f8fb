"""Static configuration for topicgate.

Non-secret settings (forum URL, authorization routes, timeouts, logging) live
in a single JSON file; secrets come from the environment via python-dotenv.
"""

import json
import os

from dotenv import load_dotenv

from core.config import DEFAULT_ENTITLEMENT_TIMEOUT, DEFAULT_REMOTE_TIMEOUT
from core.models import AuthorizationRoute

PROJECT_ROOT = os.path.abspath(os.path.join(os.path.dirname(__file__), ".."))

load_dotenv(os.path.join(PROJECT_ROOT, ".env"))

# config.json sits at the project root unless TOPICGATE_CONFIG points elsewhere.
CONFIG_PATH = os.getenv("TOPICGATE_CONFIG", os.path.join(PROJECT_ROOT, "config.json"))

# Where to store the SQLite database.
DB_PATH = os.getenv("TOPICGATE_DB_PATH", os.path.join(PROJECT_ROOT, "topicgate.db"))


def _load_json_config() -> dict:
    """Load config.json with a flat, user-friendly schema."""

    if not os.path.exists(CONFIG_PATH):
        raise FileNotFoundError(f"Config file not found: {CONFIG_PATH}")

    with open(CONFIG_PATH, "r", encoding="utf-8") as handle:
        return json.load(handle)


def _normalize_routes(raw_routes: dict) -> list[AuthorizationRoute]:
    """Build authorization routes, skipping templates without an {id} slot."""

    routes: list[AuthorizationRoute] = []
    for reference_type, template in (raw_routes or {}).items():
        if not reference_type or not template or "{id}" not in template:
            continue
        routes.append(AuthorizationRoute(reference_type=reference_type, endpoint_template=template))
    return routes


_CONFIG = _load_json_config()

# Expose the raw config for modules that need structured access.
CONFIG = _CONFIG

# Forum connection. The API key is a secret and only read from the environment.
_forum = _CONFIG.get("forum", {})
FORUM_BACKEND = _forum.get("backend", "discourse")
FORUM_URL = _forum.get("base_url", "")
FORUM_SYSTEM_USERNAME = _forum.get("system_username", "system")
FORUM_TIMEOUT = float(_forum.get("timeout", DEFAULT_REMOTE_TIMEOUT))

# Placeholder password for new forum accounts; login happens through SSO.
DEFAULT_FORUM_PASSWORD = os.getenv("DEFAULT_FORUM_PASSWORD", "sso-only-placeholder")

# Shared with the upstream auth gateway, which signs every verified actor.
ACTOR_SIGNING_SECRET = os.getenv("ACTOR_SIGNING_SECRET", "")

# Member service resolves handles to names and emails for account creation.
_member_service = _CONFIG.get("member_service", {})
MEMBER_SERVICE_URL = _member_service.get("url", "")
MEMBER_SERVICE_TIMEOUT = float(_member_service.get("timeout", DEFAULT_REMOTE_TIMEOUT))

# Authorization routes are seeded into reference_lookups at startup.
# Reference types without a route need no authorization.
_authorization = _CONFIG.get("authorization", {})
ENTITLEMENT_TIMEOUT = float(_authorization.get("timeout", DEFAULT_ENTITLEMENT_TIMEOUT))
AUTHORIZATION_ROUTES = _normalize_routes(_authorization.get("routes", {}))

# HTTP server and the overall per-request deadline.
_server = _CONFIG.get("server", {})
SERVER_HOST = _server.get("host", "127.0.0.1")
SERVER_PORT = int(_server.get("port", 8080))
WORKFLOW_TIMEOUT = float(_server.get("workflow_timeout", 30))

# Logging configuration (optional).
LOGGING = _CONFIG.get("logging", {})
