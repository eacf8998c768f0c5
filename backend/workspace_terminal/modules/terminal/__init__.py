"""
Terminal Module - Interactive command sessions inside project workspaces

Lets a user run allowlisted programs in their workspace from the browser,
watch live output, type into long-running processes, and have abandoned
sessions reclaimed automatically.

Key Components:
- CommandValidator: Allowlist gate on the program name
- ProcessExecutor: Spawns processes and streams ordered output
- Session: One per (project, user); process slot, history, subscribers
- SessionRegistry: Shared table of sessions and the public operations
"""

from .command_validator import (
    ALLOWED_COMMANDS,
    CommandValidator,
    ParsedCommand,
    get_command_validator,
)

from .session import (
    OutputChunk,
    OutputKind,
    Session,
    SessionKey,
    SessionStatus,
    Subscription,
    detect_preview_port,
)

from .process_executor import (
    ExecutionResult,
    ProcessExecutor,
    ProcessRun,
)

from .session_registry import SessionRegistry

__all__ = [
    # Validation
    "ALLOWED_COMMANDS",
    "CommandValidator",
    "ParsedCommand",
    "get_command_validator",

    # Sessions
    "OutputChunk",
    "OutputKind",
    "Session",
    "SessionKey",
    "SessionStatus",
    "Subscription",
    "detect_preview_port",

    # Execution
    "ExecutionResult",
    "ProcessExecutor",
    "ProcessRun",

    # Registry
    "SessionRegistry",
]
