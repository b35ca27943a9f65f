from __future__ import annotations

import asyncio

import httpx
import pytest
import pytest_asyncio
from fastapi import FastAPI, WebSocketDisconnect

from assistant_shells.api.fastapi_router import get_cli_dep, router
from assistant_shells.api.websocket import session_events_ws
from assistant_shells.events import EventType, get_event_bus

from tests.fakes import settle


@pytest.fixture
def app(cli):
    app = FastAPI()
    app.include_router(router)
    app.dependency_overrides[get_cli_dep] = lambda: cli
    return app


@pytest_asyncio.fixture
async def client(app):
    transport = httpx.ASGITransport(app=app)
    async with httpx.AsyncClient(transport=transport, base_url="http://test") as client:
        yield client


@pytest.mark.asyncio
async def test_tools_are_listed(client):
    resp = await client.get("/api/tools")
    assert resp.status_code == 200
    data = {t["name"]: t for t in resp.json()["data"]}
    assert data["alpha"]["installed"] is True
    assert data["ghost"]["installed"] is False


@pytest.mark.asyncio
async def test_new_session_errors(client, cli):
    resp = await client.post("/api/sessions", json={"name": "nope"})
    assert resp.status_code == 404
    resp = await client.post("/api/sessions", json={"name": "ghost"})
    assert resp.status_code == 409
    assert len(cli.registry) == 0


@pytest.mark.asyncio
async def test_session_lifecycle_over_http(client, cli, backend):
    resp = await client.post("/api/sessions", json={"name": "alpha"})
    assert resp.status_code == 200
    session_id = resp.json()["data"]["id"]
    await settle(cli)

    listed = (await client.get("/api/sessions", params={"attached": "true"})).json()["data"]
    assert [s["id"] for s in listed] == [session_id]
    assert listed[0]["terminal"] == {"open": True, "focused": False}

    resp = await client.post("/api/send", json={"session": session_id, "msg": "hello {file}", "submit": True})
    assert resp.status_code == 200
    await settle(cli)
    assert backend.payloads(session_id) == ["hello main.py\n", "<submit>"]

    resp = await client.post(f"/api/sessions/{session_id}/hide")
    assert resp.json()["data"]["terminal"]["open"] is False

    resp = await client.post(f"/api/sessions/{session_id}/close")
    assert resp.status_code == 200
    assert len(cli.registry) == 0
    assert (await client.get("/api/sessions")).json()["data"] == []


@pytest.mark.asyncio
async def test_bad_requests(client, cli):
    state = cli.new("alpha")
    await settle(cli)

    assert (await client.post(f"/api/sessions/{state.id}/explode")).status_code == 400
    assert (await client.post("/api/sessions/missing/show")).status_code == 404
    assert (await client.post("/api/send", json={"name": "alpha"})).status_code == 400
    assert (await client.post("/api/send", json={"session": "missing", "msg": "x"})).status_code == 404
    assert (await client.get("/api/sessions/missing/output")).status_code == 404


@pytest.mark.asyncio
async def test_output_returns_scrollback(client, cli):
    state = cli.new("alpha")
    await settle(cli)
    state.session.feed_output("one\ntwo\nthree\n")

    resp = await client.get(f"/api/sessions/{state.id}/output", params={"lines": 2})
    assert resp.json()["content"] == "two\nthree"


class _Socket:
    def __init__(self, limit: int) -> None:
        self.accepted = False
        self.sent = []
        self._limit = limit

    async def accept(self) -> None:
        self.accepted = True

    async def send_json(self, data) -> None:
        self.sent.append(data)
        if len(self.sent) >= self._limit:
            raise WebSocketDisconnect()


@pytest.mark.asyncio
async def test_events_websocket_filters_by_session():
    bus = get_event_bus()
    socket = _Socket(limit=2)
    task = asyncio.ensure_future(session_events_ws(socket, session="s1", output=False))
    await asyncio.sleep(0)

    bus.emit(EventType.SESSION_OUTPUT, "s1", chunk="noise")
    bus.emit(EventType.STATE_CREATED, "s2")
    bus.emit(EventType.STATE_ATTACHED, "s1", tool="alpha")
    bus.emit(EventType.TERMINAL_SHOWN, "s1", tool="alpha")
    await asyncio.wait_for(task, timeout=1)

    assert socket.accepted
    assert [(e["type"], e["session_id"]) for e in socket.sent] == [
        ("state.attached", "s1"),
        ("terminal.shown", "s1"),
    ]
    assert socket.sent[0]["tool"] == "alpha"
