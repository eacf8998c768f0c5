from fastapi import APIRouter
from workspace_terminal.api.v1.endpoints import terminal

api_router = APIRouter()

api_router.include_router(terminal.router, prefix="/terminal", tags=["Terminal"])
