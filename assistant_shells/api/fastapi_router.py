from fastapi import APIRouter, Body, Depends, HTTPException, Query
from fastapi.responses import FileResponse
from typing import Optional
from pathlib import Path

from ..commands import Commands, NewOptions
from ..state import Filter, State
from .. import get_cli as get_shared_cli

router = APIRouter()

SESSION_ACTIONS = ("show", "hide", "focus", "toggle", "close")


def get_cli_dep() -> Commands:
    # Always use the package-level singleton so hosts can configure hooks once.
    return get_shared_cli()


def _state_or_404(cli: Commands, session_id: str) -> State:
    state = cli.registry.by_id(session_id)
    if state is None:
        raise HTTPException(404, "Session not found")
    return state


@router.get("/api/sessions")
async def list_sessions(
    name: Optional[str] = Query(None),
    attached: Optional[bool] = Query(None),
    cli: Commands = Depends(get_cli_dep),
):
    states = cli.registry.get(Filter(name=name, attached=attached))
    return {"ok": True, "data": [s.to_payload() for s in states]}


@router.get("/api/sessions/discover")
async def discover_sessions(
    name: Optional[str] = Query(None),
    cli: Commands = Depends(get_cli_dep),
):
    """Sessions left running by tmux/dtach that are not attached yet."""
    records = await cli.discover(Filter(name=name))
    return {"ok": True, "data": [r.to_payload() for r in records]}


@router.get("/api/tools")
async def list_tools(cli: Commands = Depends(get_cli_dep)):
    return {"ok": True, "data": [t.to_payload() for t in cli.tools]}


@router.post("/api/sessions")
async def new_session(
    payload: dict = Body(...),
    cli: Commands = Depends(get_cli_dep),
):
    name = payload.get("name") or cli.config.default_tool
    tool = cli.tools.get_tool(name)
    if tool is None:
        raise HTTPException(404, f"Unknown tool: {name}")
    if not tool.is_installed():
        raise HTTPException(409, f"{name} is not installed")

    state = cli.new(NewOptions(
        name=name,
        backend=payload.get("backend"),
        cwd=payload.get("cwd"),
        focus=payload.get("focus"),
    ))
    if state is None:
        raise HTTPException(400, "Failed to start session")
    return {"ok": True, "data": state.to_payload()}


@router.post("/api/send")
async def send_message(
    payload: dict = Body(...),
    cli: Commands = Depends(get_cli_dep),
):
    if not payload.get("msg") and not payload.get("prompt"):
        raise HTTPException(400, "msg or prompt required")

    flt = {}
    if payload.get("session"):
        _state_or_404(cli, payload["session"])
        flt["session"] = payload["session"]
    opts = {
        "name": payload.get("name"),
        "msg": payload.get("msg"),
        "prompt": payload.get("prompt"),
        "submit": bool(payload.get("submit", False)),
        "filter": flt,
    }
    if payload.get("create"):
        result = cli.my_send(opts)
    else:
        result = cli.send(opts)
    data = result.to_payload() if isinstance(result, State) else None
    return {"ok": True, "data": data}


@router.post("/api/sessions/{session_id}/{action}")
async def session_action(
    session_id: str,
    action: str,
    cli: Commands = Depends(get_cli_dep),
):
    if action not in SESSION_ACTIONS:
        raise HTTPException(400, f"Unknown action: {action}")
    state = _state_or_404(cli, session_id)
    getattr(cli, action)({"filter": {"session": session_id}})
    return {"ok": True, "data": state.to_payload()}


@router.get("/api/sessions/{session_id}/output")
async def session_output(
    session_id: str,
    lines: Optional[int] = Query(None, ge=1),
    cli: Commands = Depends(get_cli_dep),
):
    """Recent output from the terminal scrollback, or the full stdout log."""
    state = _state_or_404(cli, session_id)
    if state.terminal is not None and state.terminal.scrollback:
        return {"ok": True, "content": "\n".join(state.terminal.lines(lines))}

    log = state.session.record.stdout_log
    if not log or not Path(log).exists():
        return {"ok": True, "content": ""}
    return FileResponse(log, media_type="text/plain")
