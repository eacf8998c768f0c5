"""
Unit Tests for Core Modules
Tests for: exceptions, settings helpers, structured logging
"""
import json
import logging
import pytest

from workspace_terminal.core.config import Settings, parse_cors_origins
from workspace_terminal.core.exceptions import (
    CommandNotAllowedError,
    NoActiveProcessError,
    ProcessSpawnError,
    ResourceNotFoundError,
    SessionNotFoundError,
    ValidationError,
    WorkspaceTerminalError,
)
from workspace_terminal.core.logging_config import (
    JSONFormatter,
    WorkspaceTerminalLogger,
    bind_context,
    clear_context,
    current_context,
    logger,
)


class TestExceptions:

    def test_base_error_to_dict(self):
        error = WorkspaceTerminalError("broken", code="BROKEN", details={"a": 1})

        assert error.to_dict() == {"code": "BROKEN", "message": "broken", "details": {"a": 1}}
        assert str(error) == "broken"

    def test_session_not_found(self):
        error = SessionNotFoundError("p1-u1")

        assert isinstance(error, ResourceNotFoundError)
        assert error.code == "SESSION_NOT_FOUND"
        assert error.details["resource_id"] == "p1-u1"

    def test_command_not_allowed(self):
        error = CommandNotAllowedError("sudo", ["git", "npm"])

        assert isinstance(error, ValidationError)
        assert error.code == "COMMAND_NOT_ALLOWED"
        assert error.message == "Command 'sudo' is not allowed. Allowed: git, npm"
        assert error.details == {"field": "command", "program": "sudo", "allowed": ["git", "npm"]}

    def test_no_active_process(self):
        error = NoActiveProcessError("session-1")

        assert error.message == "No active process"
        assert error.code == "NO_ACTIVE_PROCESS"

    def test_process_spawn_error(self):
        error = ProcessSpawnError("cd src", "Command not found: cd")

        assert error.code == "PROCESS_SPAWN_FAILED"
        assert error.details["reason"] == "Command not found: cd"


class TestSettings:

    @pytest.mark.parametrize("value,expected", [
        ("http://a.com,http://b.com", ["http://a.com", "http://b.com"]),
        ('["http://a.com"]', ["http://a.com"]),
        (" http://a.com , ", ["http://a.com"]),
        (["http://x.com"], ["http://x.com"]),
        (None, []),
    ])
    def test_parse_cors_origins(self, value, expected):
        assert parse_cors_origins(value) == expected

    def test_terminal_defaults(self, monkeypatch):
        for name in ("TERMINAL_HISTORY_LIMIT", "TERMINAL_IDLE_TIMEOUT_SECONDS", "TERMINAL_REAPER_INTERVAL_SECONDS"):
            monkeypatch.delenv(name, raising=False)

        settings = Settings(_env_file=None)

        assert settings.TERMINAL_HISTORY_LIMIT == 1000
        assert settings.TERMINAL_IDLE_TIMEOUT_SECONDS == 3600
        assert settings.TERMINAL_REAPER_INTERVAL_SECONDS == 60

    def test_environment_override(self, monkeypatch):
        monkeypatch.setenv("TERMINAL_HISTORY_LIMIT", "50")

        assert Settings(_env_file=None).TERMINAL_HISTORY_LIMIT == 50


class TestLogging:

    def test_logger_is_custom_class(self):
        assert isinstance(logger, WorkspaceTerminalLogger)
        assert logger.name == "workspace_terminal"

    def test_json_formatter_includes_context_and_extras(self):
        bind_context(request_id="req-1", user_id="user-1")
        try:
            record = logger.makeRecord(
                "workspace_terminal", logging.INFO, __file__, 1, "process_spawned", None, None,
                extra={"event_type": "process_spawned", "session_id": "s1", "pid": 42},
            )
            data = json.loads(JSONFormatter().format(record))
        finally:
            clear_context()

        assert data["message"] == "process_spawned"
        assert data["request_id"] == "req-1"
        assert data["user_id"] == "user-1"
        assert data["session_id"] == "s1"
        assert data["pid"] == 42

    def test_bind_context_skips_empty_and_unknown_fields(self):
        try:
            bind_context(request_id="req-2", user_id="", project_id=None, session_id="s1")
            bind_context(project_id="proj-1")

            assert current_context() == {"request_id": "req-2", "project_id": "proj-1"}
        finally:
            clear_context()

        assert current_context() == {}

    def test_log_terminal_event(self, caplog):
        with caplog.at_level(logging.INFO, logger="workspace_terminal"):
            logger.log_terminal_event("session_reaped", "s1", idle_seconds=7200, had_process=True)

        record = caplog.records[-1]
        assert record.event_type == "session_reaped"
        assert record.session_id == "s1"
        assert record.idle_seconds == 7200
        assert "[Terminal:s1] session_reaped" in record.getMessage()
