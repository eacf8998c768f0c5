# Pydantic schemas
from workspace_terminal.schemas.terminal import (
    TerminalAction,
    TerminalSessionRequest,
    SessionCreatedResponse,
    ExecutionResponse,
    SuccessResponse,
    OutputChunkResponse,
    SessionStatusResponse,
)
