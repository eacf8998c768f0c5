"""
Terminal API - interactive command sessions for project workspaces

Endpoints:
1. POST /terminal/session  - create | execute | input | kill | status
2. GET  /terminal/session  - polling view of the session output
3. GET  /terminal/stream   - Server-Sent Events, live output as it happens
4. GET  /terminal/stats    - registry / reaper counters

The caller's (project_id, user_id) pair addresses the session; a user can
never reach a session keyed by someone else's id.
"""

import asyncio
import json
from typing import Any, AsyncGenerator, Dict, Optional

from fastapi import APIRouter, Depends, HTTPException, Query, Request, status
from sse_starlette.sse import EventSourceResponse

from workspace_terminal.core.exceptions import (
    NoActiveProcessError,
    ProcessSpawnError,
    SessionNotFoundError,
    ValidationError,
)
from workspace_terminal.core.logging_config import bind_context, logger
from workspace_terminal.modules.auth.dependencies import (
    get_current_user_id,
    get_session_reaper,
    get_session_registry,
)
from workspace_terminal.modules.terminal.session import SessionKey
from workspace_terminal.modules.terminal.session_registry import SessionRegistry
from workspace_terminal.schemas.terminal import (
    ExecutionResponse,
    SessionCreatedResponse,
    SessionStatusResponse,
    SuccessResponse,
    TerminalAction,
    TerminalSessionRequest,
)
from workspace_terminal.services.session_reaper import SessionReaper

router = APIRouter()

# How long the stream waits for output before checking the client is still there
STREAM_POLL_SECONDS = 1.0


@router.post("/session")
async def terminal_session(
    body: TerminalSessionRequest,
    user_id: str = Depends(get_current_user_id),
    registry: SessionRegistry = Depends(get_session_registry),
):
    """Single action endpoint for a user's terminal in one project"""
    bind_context(project_id=body.project_id)
    key = SessionKey(body.project_id, user_id)

    try:
        action = TerminalAction(body.action)
    except ValueError:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=f"Invalid action: {body.action}")

    try:
        if action == TerminalAction.CREATE:
            try:
                session = registry.create(body.project_id, user_id)
            except ValidationError as e:
                raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=e.to_dict())
            return SessionCreatedResponse(session_id=session.id, cwd=session.cwd)

        if action == TerminalAction.EXECUTE:
            if not body.command or not body.command.strip():
                raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="Command required")
            return await _execute(registry, key, body.command)

        if action == TerminalAction.INPUT:
            if not body.command:
                raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="Input required")
            try:
                await registry.send_input(key, body.command)
            except NoActiveProcessError as e:
                raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=e.to_dict())
            return SuccessResponse()

        if action == TerminalAction.KILL:
            await registry.kill(key)
            return SuccessResponse()

        # TerminalAction.STATUS
        return registry.status(key, tail=body.tail).to_dict()

    except SessionNotFoundError as e:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=e.to_dict())


async def _execute(registry: SessionRegistry, key: SessionKey, command: str) -> ExecutionResponse:
    try:
        result = await registry.execute(key, command)
    except ValidationError as e:
        # Disallowed program: reported as a failed run, nothing was spawned
        return ExecutionResponse(success=False, output=e.message, exit_code=1)
    except ProcessSpawnError as e:
        return ExecutionResponse(
            success=False,
            output=f"$ {command}\nError: {e.details.get('reason')}\n",
            exit_code=1,
            error=e.message,
        )
    return ExecutionResponse(**result.to_dict())


@router.get("/session", response_model=SessionStatusResponse)
async def poll_terminal_session(
    project_id: str = Query(..., min_length=1),
    tail: Optional[int] = Query(default=None, ge=0),
    user_id: str = Depends(get_current_user_id),
    registry: SessionRegistry = Depends(get_session_registry),
):
    """Polling endpoint for clients that cannot hold an event stream open"""
    bind_context(project_id=project_id)
    key = SessionKey(project_id, user_id)

    if registry.get(key) is None:
        return SessionStatusResponse(active=False, output=[], message="No active session")

    try:
        return registry.status(key, tail=tail).to_dict()
    except SessionNotFoundError:
        # Reaped between the lookup and the snapshot
        return SessionStatusResponse(active=False, output=[], message="No active session")


@router.get("/stream")
async def stream_terminal_output(
    request: Request,
    project_id: str = Query(..., min_length=1),
    user_id: str = Depends(get_current_user_id),
    registry: SessionRegistry = Depends(get_session_registry),
):
    """
    Live terminal output over Server-Sent Events.

    Events:
    - connected: {"type": "connected", "session_id": ...}
    - output:    {"type": "output", "text": ..., "kind": stdout|stderr|exit, "timestamp": ...}
    - port:      {"type": "port", "port": 5173}  (dev server detected)
    - closed:    session was reaped
    """
    bind_context(project_id=project_id)
    key = SessionKey(project_id, user_id)

    if registry.get(key) is None:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Session not found")

    return EventSourceResponse(
        terminal_event_stream(request, registry, key),
        ping=15,
        headers={
            "Cache-Control": "no-cache, no-store, must-revalidate",
            "X-Accel-Buffering": "no",  # Disable nginx buffering
        }
    )


def emit(event_type: str, data: Optional[Dict[str, Any]] = None) -> Dict[str, str]:
    """SSE event dict for sse-starlette"""
    event = {"type": event_type}
    if data:
        event.update(data)
    return {"data": json.dumps(event)}


async def terminal_event_stream(
    request: Request,
    registry: SessionRegistry,
    key: SessionKey,
) -> AsyncGenerator[Dict[str, str], None]:
    """Bridge a session subscription into SSE events; unsubscribes on disconnect"""
    queue: asyncio.Queue = asyncio.Queue()
    subscription = registry.subscribe(key, queue.put_nowait)
    session = subscription.session
    last_port = session.preview_port

    logger.log_terminal_event("stream_opened", session.id, token=subscription.token)
    try:
        yield emit("connected", {"session_id": session.id})
        if last_port:
            yield emit("port", {"port": last_port})

        while True:
            if await request.is_disconnected():
                break

            try:
                chunk = await asyncio.wait_for(queue.get(), timeout=STREAM_POLL_SECONDS)
            except asyncio.TimeoutError:
                if session.closed:
                    yield emit("closed", {"session_id": session.id})
                    break
                continue

            yield emit("output", chunk.to_dict())

            if session.preview_port and session.preview_port != last_port:
                last_port = session.preview_port
                yield emit("port", {"port": last_port})
    finally:
        registry.unsubscribe(subscription)
        logger.log_terminal_event("stream_closed", session.id, token=subscription.token)


@router.get("/stats")
async def terminal_stats(
    user_id: str = Depends(get_current_user_id),
    registry: SessionRegistry = Depends(get_session_registry),
    reaper: Optional[SessionReaper] = Depends(get_session_reaper),
):
    """Session counters, plus reaper counters when the reaper is enabled"""
    if reaper is not None:
        return reaper.get_stats()
    return registry.get_stats()
