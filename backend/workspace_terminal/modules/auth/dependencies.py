from fastapi import Depends, Header, HTTPException, Request, status
from typing import Optional

from workspace_terminal.core.logging_config import bind_context
from workspace_terminal.modules.terminal.session_registry import SessionRegistry
from workspace_terminal.services.session_reaper import SessionReaper


async def get_current_user_id(
    x_user_id: Optional[str] = Header(default=None, alias="X-User-ID")
) -> str:
    """
    Get the caller's user id.

    Authentication happens upstream (gateway / platform backend); by the time a
    request reaches this service the X-User-ID header carries a verified id.
    """
    if not x_user_id or not x_user_id.strip():
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Unauthorized"
        )

    user_id = x_user_id.strip()
    bind_context(user_id=user_id)
    return user_id


def get_session_registry(request: Request) -> SessionRegistry:
    """Registry owned by the running application (set up in lifespan)"""
    registry = getattr(request.app.state, "session_registry", None)
    if registry is None:
        raise HTTPException(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            detail="Terminal sessions are not available"
        )
    return registry


def get_session_reaper(request: Request) -> Optional[SessionReaper]:
    return getattr(request.app.state, "session_reaper", None)
