"""Session, search, aggregation, pin and tag routes."""

import asyncio
import json
import logging
from typing import AsyncGenerator, Literal

from fastapi import APIRouter, HTTPException, Query, Request
from sse_starlette.sse import EventSourceResponse

from ..broadcasting import LiveStreamBroadcaster, Subscription
from ..config import ConfigSnapshot, ConfigStore
from ..models import AddTagsRequest
from ..search import search_sessions
from ..sessions import SessionAggregator, SessionNotFoundError

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api")

PING_INTERVAL = 30  # seconds


def _store(request: Request) -> ConfigStore:
    return request.app.state.store


def _broadcaster(request: Request) -> LiveStreamBroadcaster:
    return request.app.state.broadcaster


def _aggregator(request: Request) -> SessionAggregator:
    """Build an aggregator over a freshly loaded configuration."""
    return SessionAggregator(_store(request).load())


def _config_changed(request: Request, snapshot: ConfigSnapshot) -> None:
    _broadcaster(request).update_config(snapshot)


@router.get("/sessions")
def list_sessions(request: Request) -> dict:
    """List all sessions (summary fields only)."""
    sessions = _aggregator(request).discover_sessions()
    return {"sessions": [s.to_dict() for s in sessions]}


@router.get("/sessions/{session_id}")
def get_session(session_id: str, request: Request) -> dict:
    """Get one session with its full message list."""
    session = _aggregator(request).get_session(session_id)
    if session is None:
        raise HTTPException(status_code=404, detail="Session not found")
    return {"session": session.to_dict(include_messages=True)}


async def event_generator(
    request: Request, subscription: Subscription
) -> AsyncGenerator[dict, None]:
    """Relay a session subscription as SSE events until the client leaves."""
    try:
        while True:
            if await request.is_disconnected():
                break

            try:
                event = await asyncio.wait_for(subscription.get(), timeout=PING_INTERVAL)
            except asyncio.TimeoutError:
                yield {"event": "ping", "data": "{}"}
                continue

            if event is None:
                break
            yield {"event": event["event"], "data": json.dumps(event["data"])}
    finally:
        await subscription.close()


@router.get("/sessions/{session_id}/events")
async def session_events(session_id: str, request: Request) -> EventSourceResponse:
    """SSE feed of new messages and status changes for one session."""
    try:
        subscription = await _broadcaster(request).subscribe(session_id)
    except SessionNotFoundError:
        raise HTTPException(status_code=404, detail="Session not found")
    return EventSourceResponse(event_generator(request, subscription))


@router.get("/search")
def search(
    request: Request,
    q: str = "",
    mode: Literal["quick", "deep"] = Query("quick"),
) -> dict:
    """Search sessions by metadata (quick) or by full content (deep)."""
    results = search_sessions(_aggregator(request), q, mode)
    return {"results": [s.to_dict() for s in results]}


@router.get("/directories")
def list_directories(request: Request) -> dict:
    return {"directories": _aggregator(request).get_directory_list()}


@router.get("/projects")
def list_projects(request: Request) -> dict:
    return {"projects": _aggregator(request).get_project_list()}


@router.get("/tags")
def list_tags(request: Request) -> dict:
    return {"tags": _aggregator(request).get_tag_counts()}


@router.post("/pins/{session_id}")
def pin_session(session_id: str, request: Request) -> dict:
    snapshot = _store(request).add_pin(session_id)
    _config_changed(request, snapshot)
    logger.info(f"Pinned session {session_id}")
    return {"success": True, "pinned": True}


@router.delete("/pins/{session_id}")
def unpin_session(session_id: str, request: Request) -> dict:
    snapshot = _store(request).remove_pin(session_id)
    _config_changed(request, snapshot)
    logger.info(f"Unpinned session {session_id}")
    return {"success": True, "pinned": False}


@router.post("/sessions/{session_id}/tags")
def add_tags(session_id: str, body: AddTagsRequest, request: Request) -> dict:
    tags = [t.strip() for t in body.tags if t.strip()]
    if not tags:
        raise HTTPException(status_code=400, detail="No tags given")
    snapshot = _store(request).add_custom_tags(session_id, tags)
    _config_changed(request, snapshot)
    return {"success": True, "tags": list(snapshot.get_custom_tags(session_id))}


@router.delete("/sessions/{session_id}/tags/{tag}")
def remove_tag(session_id: str, tag: str, request: Request) -> dict:
    snapshot = _store(request).remove_custom_tag(session_id, tag)
    _config_changed(request, snapshot)
    return {"success": True, "tags": list(snapshot.get_custom_tags(session_id))}
