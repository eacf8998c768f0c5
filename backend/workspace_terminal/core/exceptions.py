"""
Custom Exceptions for Workspace Terminal
========================================

Use these instead of generic Exception to:
1. Make errors more specific and debuggable
2. Enable proper error handling at API layer
3. Provide meaningful error messages to users

Usage:
    from workspace_terminal.core.exceptions import SessionNotFoundError

    session = registry.get(key)
    if not session:
        raise SessionNotFoundError(str(key))

None of these are fatal to a session or to the service.
A non-zero exit code is a normal execution result, never an exception.
"""

from typing import Optional, Any, Dict, Iterable


class WorkspaceTerminalError(Exception):
    """Base exception for all Workspace Terminal errors"""

    def __init__(
        self,
        message: str,
        code: str = "INTERNAL_ERROR",
        details: Optional[Dict[str, Any]] = None
    ):
        self.message = message
        self.code = code
        self.details = details or {}
        super().__init__(self.message)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "code": self.code,
            "message": self.message,
            "details": self.details
        }


# ============================================
# Resource Errors (404-type)
# ============================================

class ResourceNotFoundError(WorkspaceTerminalError):
    """Base class for not found errors"""

    def __init__(self, resource_type: str, resource_id: str):
        super().__init__(
            f"{resource_type} with ID '{resource_id}' not found",
            code=f"{resource_type.upper()}_NOT_FOUND",
            details={"resource_type": resource_type, "resource_id": resource_id}
        )


class SessionNotFoundError(ResourceNotFoundError):
    """No terminal session is registered for the (project, user) key"""

    def __init__(self, session_ref: str):
        super().__init__("Session", session_ref)


# ============================================
# Validation Errors (400-type)
# ============================================

class ValidationError(WorkspaceTerminalError):
    """Input validation failed"""

    def __init__(self, message: str, field: Optional[str] = None):
        details = {"field": field} if field else {}
        super().__init__(message, code="VALIDATION_ERROR", details=details)


class CommandNotAllowedError(ValidationError):
    """Requested program is not in the allowlist"""

    def __init__(self, program: str, allowed: Iterable[str]):
        allowed = list(allowed)
        super().__init__(
            f"Command '{program}' is not allowed. Allowed: {', '.join(allowed)}",
            field="command"
        )
        self.code = "COMMAND_NOT_ALLOWED"
        self.details["program"] = program
        self.details["allowed"] = allowed


# ============================================
# Process Errors
# ============================================

class NoActiveProcessError(WorkspaceTerminalError):
    """Input was sent to a session with no live process"""

    def __init__(self, session_id: str):
        super().__init__(
            "No active process",
            code="NO_ACTIVE_PROCESS",
            details={"session_id": session_id}
        )


class ProcessSpawnError(WorkspaceTerminalError):
    """The OS failed to start the process"""

    def __init__(self, command: str, reason: str):
        super().__init__(
            f"Failed to start '{command}': {reason}",
            code="PROCESS_SPAWN_FAILED",
            details={"command": command, "reason": reason}
        )
