"""Application entry point for the topicgate service."""

from __future__ import annotations

import argparse
import asyncio
import json
import logging
import os
import re
from logging.handlers import RotatingFileHandler
from typing import Optional

import aiohttp
from aiohttp import web
from art import tprint

import settings
from adapters.http_api import create_web_app
from adapters.http_json import AiohttpJsonFetcher
from adapters.member_directory import MemberServiceDirectory
from adapters.sqlite_storage import SQLiteStorage
from client import build_gateway
from core.config import ProvisioningConfig
from core.entitlement import EntitlementVerifier
from core.errors import TopicGateError, WorkflowTimeout
from core.models import Actor, EntityReference
from core.orchestrator import TopicProvisioningOrchestrator
from core.provisioning import ForumUserProvisioner

NAME = "TOPICGATE"
FONT = "tarty-1"


def _print_banner() -> None:
    tprint(NAME, FONT, space=1)


# The service's own secrets are always masked; logging.redact may name more.
SECRET_ENV_VARS = ("FORUM_API_KEY", "DEFAULT_FORUM_PASSWORD", "ACTOR_SIGNING_SECRET")
_BEARER_RE = re.compile(r"(Bearer\s+)[^\s,;'\"]+", re.IGNORECASE)


class _RedactingFormatter(logging.Formatter):
    """Mask configured secrets and any forwarded actor bearer token."""

    def __init__(self, secrets: list[str], fmt: str, datefmt: Optional[str] = None) -> None:
        super().__init__(fmt=fmt, datefmt=datefmt)
        # Longest first, so a secret containing another is masked whole.
        self._secrets = sorted({secret for secret in secrets if secret}, key=len, reverse=True)

    def format(self, record: logging.LogRecord) -> str:
        message = _BEARER_RE.sub(r"\1***", super().format(record))
        for secret in self._secrets:
            message = message.replace(secret, "***")
        return message


def _secret_values(extra_names: list[str]) -> list[str]:
    names = list(SECRET_ENV_VARS) + [name for name in extra_names if name not in SECRET_ENV_VARS]
    return [os.environ[name] for name in names if os.environ.get(name)]


def _configure_logging(config: Optional[dict] = None) -> None:
    config = settings.LOGGING if config is None else config
    level = getattr(logging, str(config.get("level", "INFO")).upper(), logging.INFO)
    formatter = _RedactingFormatter(
        _secret_values(config.get("redact", [])),
        fmt="%(asctime)s %(levelname)s %(name)s: %(message)s",
        datefmt="%Y-%m-%d %H:%M:%S",
    )

    handlers: list[logging.Handler] = [logging.StreamHandler()]
    file_cfg = config.get("file")
    if file_cfg:
        path = file_cfg.get("path", "logs/topicgate.log")
        if not os.path.isabs(path):
            path = os.path.join(settings.PROJECT_ROOT, path)
        os.makedirs(os.path.dirname(path), exist_ok=True)
        handlers.append(
            RotatingFileHandler(
                path,
                maxBytes=int(file_cfg.get("max_bytes", 5 * 1024 * 1024)),
                backupCount=int(file_cfg.get("backup_count", 5)),
                encoding="utf-8",
            )
        )

    for handler in handlers:
        handler.setFormatter(formatter)
    logging.basicConfig(level=level, handlers=handlers, force=True)


def _open_storage() -> SQLiteStorage:
    storage = SQLiteStorage(settings.DB_PATH)
    storage.init_db()
    seeded = storage.seed_routes(settings.AUTHORIZATION_ROUTES)
    logging.getLogger(__name__).info("%s authorization routes are loaded", seeded)
    return storage


def build_orchestrator(
    session: aiohttp.ClientSession,
    storage: SQLiteStorage,
) -> TopicProvisioningOrchestrator:
    """Wire the core workflow to its adapters for one client session."""

    gateway = build_gateway(session)
    if not settings.MEMBER_SERVICE_URL:
        raise RuntimeError("member_service.url is required in config.json")
    directory = MemberServiceDirectory(
        settings.MEMBER_SERVICE_URL,
        session,
        timeout=settings.MEMBER_SERVICE_TIMEOUT,
    )
    verifier = EntitlementVerifier(
        routes=storage,
        fetcher=AiohttpJsonFetcher(session),
        timeout=settings.ENTITLEMENT_TIMEOUT,
    )
    provisioner = ForumUserProvisioner(
        gateway,
        directory,
        ProvisioningConfig(sentinel_password=settings.DEFAULT_FORUM_PASSWORD),
    )
    return TopicProvisioningOrchestrator(
        store=storage,
        gateway=gateway,
        verifier=verifier,
        provisioner=provisioner,
    )


async def _serve() -> None:
    logger = logging.getLogger(__name__)
    if not settings.ACTOR_SIGNING_SECRET:
        raise RuntimeError("Missing ACTOR_SIGNING_SECRET in environment")
    storage = _open_storage()

    async with aiohttp.ClientSession() as session:
        orchestrator = build_orchestrator(session, storage)
        web_app = create_web_app(
            orchestrator=orchestrator,
            workflow_timeout=settings.WORKFLOW_TIMEOUT,
            actor_secret=settings.ACTOR_SIGNING_SECRET,
        )

        runner = web.AppRunner(web_app)
        await runner.setup()
        site = web.TCPSite(runner, settings.SERVER_HOST, settings.SERVER_PORT)
        await site.start()
        logger.info("Listening on http://%s:%s", settings.SERVER_HOST, settings.SERVER_PORT)
        try:
            await asyncio.Event().wait()
        finally:
            await runner.cleanup()


async def _fetch_topic(actor: Actor, reference: EntityReference) -> dict:
    storage = _open_storage()
    async with aiohttp.ClientSession() as session:
        orchestrator = build_orchestrator(session, storage)
        try:
            result = await asyncio.wait_for(
                orchestrator.get_or_create(actor, reference),
                timeout=settings.WORKFLOW_TIMEOUT,
            )
        except asyncio.TimeoutError as exc:
            raise WorkflowTimeout("Timed out fetching topic") from exc
    return result.thread


def _run_serve() -> None:
    _print_banner()
    _configure_logging()
    logging.getLogger(__name__).info("Starting topicgate")
    try:
        asyncio.run(_serve())
    except KeyboardInterrupt:
        logging.getLogger(__name__).info("Shutting down")


def _run_topic(args: argparse.Namespace) -> int:
    _configure_logging()
    actor = Actor(handle=args.handle, token=args.token)
    reference = EntityReference(reference_type=args.reference, reference_id=args.reference_id)
    try:
        thread = asyncio.run(_fetch_topic(actor, reference))
    except TopicGateError as exc:
        print(json.dumps(exc.to_dict()))
        return 1
    print(json.dumps(thread, indent=2))
    return 0


def _run_routes(args: argparse.Namespace) -> None:
    storage = _open_storage()
    if args.routes_command == "set":
        storage.set_route(args.reference_type, args.template)
    for route in storage.list_routes():
        print(f"{route.reference_type} | {route.endpoint_template}")


def main(argv: Optional[list[str]] = None) -> int:
    parser = argparse.ArgumentParser(prog="topicgate")
    subparsers = parser.add_subparsers(dest="command")

    subparsers.add_parser("serve", help="Start the HTTP service")
    subparsers.add_parser("init-db", help="Create tables and seed authorization routes")

    topic = subparsers.add_parser("topic", help="Get or create the thread for one entity")
    topic.add_argument("--reference", required=True)
    topic.add_argument("--reference-id", required=True)
    topic.add_argument("--handle", required=True)
    topic.add_argument("--token", required=True)

    routes = subparsers.add_parser("routes", help="Show or change authorization routes")
    routes_sub = routes.add_subparsers(dest="routes_command")
    routes_sub.add_parser("list", help="List configured routes")
    route_set = routes_sub.add_parser("set", help="Add or replace the route for a reference type")
    route_set.add_argument("reference_type")
    route_set.add_argument("template", help="Endpoint URL containing {id}")

    args = parser.parse_args(argv)
    if args.command == "init-db":
        _open_storage()
        return 0
    if args.command == "topic":
        return _run_topic(args)
    if args.command == "routes":
        if args.routes_command == "set" and "{id}" not in args.template:
            parser.error("template must contain {id}")
        _run_routes(args)
        return 0
    _run_serve()
    return 0


if __name__ == "__main__":
    raise SystemExit(main())
