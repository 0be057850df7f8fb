from __future__ import annotations

import asyncio

import aiohttp
import pytest
from aiohttp import web
from aiohttp.test_utils import TestServer

from adapters.discourse_gateway import DiscourseGateway
from core.config import ForumGatewayConfig, ProvisioningConfig
from core.errors import ForumRequestError
from core.models import Actor
from core.provisioning import ForumUserProvisioner


def _fake_discourse(seen: list) -> web.Application:
    app = web.Application()

    async def record(request: web.Request) -> dict:
        entry = {
            "method": request.method,
            "path": request.path,
            "api_key": request.headers.get("Api-Key"),
            "api_username": request.headers.get("Api-Username"),
            "query": list(request.query.items()),
        }
        if request.content_type == "application/json":
            entry["json"] = await request.json()
        elif request.method in ("POST", "PUT"):
            entry["form"] = dict(await request.post())
        seen.append(entry)
        return entry

    accounts = {"system", "ada", "outsider"}

    async def get_user(request: web.Request) -> web.Response:
        await record(request)
        # Discourse refuses API calls made on behalf of a username it does not know.
        if request.headers.get("Api-Username") not in accounts:
            return web.json_response({"errors": ["invalid_api_credentials"]}, status=403)
        username = request.match_info["username"]
        if username not in accounts:
            return web.json_response({"errors": ["not found"]}, status=404)
        return web.json_response({"user": {"id": 12, "username": username}})

    async def create_user(request: web.Request) -> web.Response:
        entry = await record(request)
        accounts.add(entry["json"]["username"])
        return web.json_response({"success": True, "active": True, "user_id": 13})

    async def create_post(request: web.Request) -> web.Response:
        entry = await record(request)
        if "json" in entry:
            return web.json_response({"id": 55, "topic_id": 321, "post_number": 1})
        return web.json_response({"id": 56, "topic_id": int(entry["form"]["topic_id"]), "post_number": 2})

    async def get_topic(request: web.Request) -> web.Response:
        await record(request)
        if request.match_info["topic_id"] == "999":
            return web.Response(body=b"\xff\xfe bad gateway \xfa", status=502, content_type="text/plain")
        if request.headers.get("Api-Username") == "outsider":
            return web.json_response({"errors": ["You are not permitted"]}, status=403)
        return web.json_response({"id": int(request.match_info["topic_id"]), "title": "Discussion for project 42"})

    async def invite(request: web.Request) -> web.Response:
        await record(request)
        return web.json_response({"success": "OK"})

    async def list_posts(request: web.Request) -> web.Response:
        await record(request)
        return web.json_response({"post_stream": {"posts": []}})

    async def timings(request: web.Request) -> web.Response:
        await record(request)
        return web.Response(text="")

    async def trust_level(request: web.Request) -> web.Response:
        await record(request)
        return web.json_response({"admin_user": {"id": 12, "trust_level": 2}})

    app.router.add_get("/users/{username}.json", get_user)
    app.router.add_post("/users", create_user)
    app.router.add_post("/posts", create_post)
    app.router.add_get("/t/{topic_id}.json", get_topic)
    app.router.add_post("/t/{topic_id}/invite", invite)
    app.router.add_get("/t/{topic_id}/posts.json", list_posts)
    app.router.add_post("/topics/timings.json", timings)
    app.router.add_put("/admin/users/{user_id}/trust_level", trust_level)
    return app


def _run_with_gateway(scenario):
    """Start a fake forum, build a gateway against it, and run ``scenario``."""

    seen: list = []

    async def _main():
        async with TestServer(_fake_discourse(seen)) as server:
            config = ForumGatewayConfig(
                base_url=str(server.make_url("/")),
                api_key="secret-key",
                system_username="system",
                timeout=5,
            )
            async with aiohttp.ClientSession() as session:
                return await scenario(DiscourseGateway(config, session))

    return asyncio.run(_main()), seen


def test_get_user_looks_up_as_system() -> None:
    user, seen = _run_with_gateway(lambda gateway: gateway.get_user("ada"))

    assert user.username == "ada"
    assert user.user_id == 12
    assert seen[0]["api_username"] == "system"
    assert seen[0]["api_key"] == "secret-key"


def test_get_user_not_found_is_signalled() -> None:
    async def scenario(gateway):
        with pytest.raises(ForumRequestError) as excinfo:
            await gateway.get_user("ghost")
        return excinfo.value

    error, _ = _run_with_gateway(scenario)

    assert error.not_found
    assert error.payload == {"errors": ["not found"]}


def test_create_user_runs_as_system() -> None:
    response, seen = _run_with_gateway(lambda gateway: gateway.create_user("Ada L", "ada", "ada@x.com", "pw"))

    assert response["success"] is True
    assert seen[0]["api_username"] == "system"
    assert seen[0]["json"] == {
        "name": "Ada L",
        "username": "ada",
        "email": "ada@x.com",
        "password": "pw",
        "active": True,
    }


def test_create_thread_is_private_message() -> None:
    created, seen = _run_with_gateway(
        lambda gateway: gateway.create_thread("Discussion for project 42", "Discussion for project 42", ["ada"])
    )

    assert created.thread_id == "321"
    assert created.status == 200
    assert seen[0]["api_username"] == "system"
    assert seen[0]["json"]["archetype"] == "private_message"
    assert seen[0]["json"]["target_recipients"] == "ada"


def test_get_thread_forbidden_carries_status() -> None:
    async def scenario(gateway):
        ok = await gateway.get_thread("321", "ada")
        with pytest.raises(ForumRequestError) as excinfo:
            await gateway.get_thread("321", "outsider")
        return ok, excinfo.value

    (thread, error), seen = _run_with_gateway(scenario)

    assert thread["id"] == 321
    assert error.forbidden
    assert [entry["api_username"] for entry in seen] == ["ada", "outsider"]


def test_grant_access_invites_as_system() -> None:
    _, seen = _run_with_gateway(lambda gateway: gateway.grant_access("ada", "321"))

    assert seen[0]["path"] == "/t/321/invite"
    assert seen[0]["api_username"] == "system"
    assert seen[0]["json"] == {"user": "ada"}


def test_post_operations_act_as_the_actor() -> None:
    async def scenario(gateway):
        post = await gateway.create_post("ada", "hello & welcome", "321", reply_to=1)
        await gateway.list_posts("ada", "321", [55, 56])
        await gateway.mark_read("ada", "321", [55, 56])
        return post

    post, seen = _run_with_gateway(scenario)

    assert post["topic_id"] == 321
    create, listing, timings = seen
    assert create["form"] == {"topic_id": "321", "raw": "hello & welcome", "reply_to_post_number": "1"}
    assert listing["query"] == [("post_ids[]", "55"), ("post_ids[]", "56")]
    assert timings["form"] == {
        "topic_id": "321",
        "topic_time": "2000",
        "timings[55]": "1000",
        "timings[56]": "1000",
    }
    assert {entry["api_username"] for entry in seen} == {"ada"}


def test_change_trust_level_runs_as_system() -> None:
    response, seen = _run_with_gateway(lambda gateway: gateway.change_trust_level(12, 2))

    assert response["admin_user"]["trust_level"] == 2
    assert seen[0]["method"] == "PUT"
    assert seen[0]["api_username"] == "system"
    assert seen[0]["json"] == {"level": 2}


def test_transport_error_has_no_status() -> None:
    async def _main():
        config = ForumGatewayConfig(base_url="http://127.0.0.1:1", api_key="k", system_username="system", timeout=2)
        async with aiohttp.ClientSession() as session:
            with pytest.raises(ForumRequestError) as excinfo:
                await DiscourseGateway(config, session).get_thread("1", "ada")
        return excinfo.value

    error = asyncio.run(_main())

    assert error.status is None
    assert not error.forbidden


def test_first_time_user_is_provisioned_through_the_gateway(directory) -> None:
    async def scenario(gateway):
        provisioner = ForumUserProvisioner(gateway, directory, ProvisioningConfig(sentinel_password="sso-only"))
        created = await provisioner.ensure_user(Actor(handle="newbie", token="tok"))
        existing = await provisioner.ensure_user(Actor(handle="newbie", token="tok"))
        return created, existing

    (created, existing), seen = _run_with_gateway(scenario)

    assert created.username == "newbie"
    assert created.user_id == 13
    assert existing.username == "newbie"
    assert [entry["path"] for entry in seen] == ["/users/newbie.json", "/users", "/users/newbie.json"]
    assert {entry["api_username"] for entry in seen} == {"system"}
    assert directory.calls == [("newbie", "tok")]


def test_undecodable_error_body_is_still_a_forum_error() -> None:
    async def scenario(gateway):
        with pytest.raises(ForumRequestError) as excinfo:
            await gateway.get_thread("999", "ada")
        return excinfo.value

    error, _ = _run_with_gateway(scenario)

    assert error.status == 502
    assert "bad gateway" in error.payload["raw"]
