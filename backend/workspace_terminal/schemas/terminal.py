from pydantic import BaseModel, Field
from typing import Optional, List
from datetime import datetime
from enum import Enum


class TerminalAction(str, Enum):
    CREATE = "create"
    EXECUTE = "execute"
    INPUT = "input"
    KILL = "kill"
    STATUS = "status"


class TerminalSessionRequest(BaseModel):
    project_id: str = Field(..., min_length=1, max_length=200)
    action: str  # TerminalAction value, checked by the endpoint
    command: Optional[str] = None  # Command line for execute, text for input
    tail: Optional[int] = Field(default=None, ge=0)  # status: only the last N chunks


class SessionCreatedResponse(BaseModel):
    session_id: str
    cwd: str
    message: str = "Terminal session ready"


class ExecutionResponse(BaseModel):
    success: bool
    output: str
    exit_code: Optional[int] = None
    streaming: bool = False
    pid: Optional[int] = None
    error: Optional[str] = None


class SuccessResponse(BaseModel):
    success: bool = True


class OutputChunkResponse(BaseModel):
    text: str
    kind: str
    timestamp: datetime


class SessionStatusResponse(BaseModel):
    session_id: Optional[str] = None
    active: bool
    cwd: Optional[str] = None
    output: List[OutputChunkResponse] = []
    last_activity: Optional[datetime] = None
    pid: Optional[int] = None
    preview_port: Optional[int] = None
    message: Optional[str] = None
