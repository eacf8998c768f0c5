"""
Session Registry - the shared table of terminal sessions

One registry instance is created by the application and handed to request
handlers and to the reaper. It is never a module-level global.

Locking model:
- _lock guards only the table itself (insert / lookup / remove)
- each Session carries its own process_lock; unrelated sessions never wait
  on each other
"""

import threading
from datetime import datetime, timedelta
from typing import Any, Dict, List, Optional

from workspace_terminal.core.exceptions import SessionNotFoundError
from workspace_terminal.core.logging_config import logger
from workspace_terminal.modules.terminal.command_validator import CommandValidator
from workspace_terminal.modules.terminal.process_executor import ExecutionResult, ProcessExecutor
from workspace_terminal.modules.terminal.session import (
    OutputCallback,
    Session,
    SessionKey,
    SessionStatus,
    Subscription,
)
from workspace_terminal.services.workspace_resolver import WorkspacePathResolver, WorkspaceResolver


class SessionRegistry:
    """
    Concurrency-safe table of Sessions keyed by (project_id, user_id).

    Usage:
        registry = SessionRegistry()
        session = registry.create("p1", "u1")
        result = await registry.execute(session.key, "npm install")
        registry.status(session.key).active
    """

    def __init__(
        self,
        executor: Optional[ProcessExecutor] = None,
        resolver: Optional[WorkspacePathResolver] = None,
        history_limit: Optional[int] = None,
    ):
        self.executor = executor or ProcessExecutor()
        self.resolver = resolver or WorkspaceResolver()
        self.history_limit = history_limit

        self._sessions: Dict[SessionKey, Session] = {}
        self._lock = threading.Lock()

    @property
    def validator(self) -> CommandValidator:
        return self.executor.validator

    # ------------------------------------------------------------------
    # Table access
    # ------------------------------------------------------------------

    def get(self, key: SessionKey) -> Optional[Session]:
        with self._lock:
            return self._sessions.get(key)

    def require(self, key: SessionKey) -> Session:
        session = self.get(key)
        if session is None:
            raise SessionNotFoundError(str(key))
        return session

    def list_sessions(self) -> List[Session]:
        with self._lock:
            return list(self._sessions.values())

    def __len__(self) -> int:
        with self._lock:
            return len(self._sessions)

    def __contains__(self, key: SessionKey) -> bool:
        with self._lock:
            return key in self._sessions

    def _remove(self, session: Session) -> bool:
        with self._lock:
            if self._sessions.get(session.key) is not session:
                return False
            del self._sessions[session.key]
        session.closed = True
        session.clear_subscribers()
        return True

    # ------------------------------------------------------------------
    # Operations
    # ------------------------------------------------------------------

    def create(self, project_id: str, user_id: str, cwd: Optional[str] = None) -> Session:
        """
        Create or get the session for (project_id, user_id).

        Idempotent: a second call returns the same session. When cwd is
        omitted the workspace resolver supplies it.
        """
        key = SessionKey(project_id, user_id)

        existing = self.get(key)
        if existing is not None:
            existing.touch()
            return existing

        if cwd is None:
            cwd = self.resolver.resolve(project_id)

        with self._lock:
            session = self._sessions.get(key)
            if session is None:
                session = Session(key, cwd, history_limit=self.history_limit)
                self._sessions[key] = session
                created = True
            else:
                created = False
        session.touch()

        if created:
            logger.log_terminal_event(
                "session_created", session.id,
                project_id=project_id, user_id=user_id, cwd=cwd,
            )
        return session

    async def execute(self, key: SessionKey, command_line: str) -> ExecutionResult:
        """
        Validate and run a command in the session.

        Raises:
            SessionNotFoundError: No session for key
            ValidationError / CommandNotAllowedError: Program not allowlisted
            ProcessSpawnError: The OS could not start the program
        """
        session = self.require(key)
        command = self.validator.validate(command_line)

        with session.operation():
            return await self.executor.execute(session, command)

    async def send_input(self, key: SessionKey, text: str) -> None:
        """
        Raises:
            SessionNotFoundError: No session for key
            NoActiveProcessError: Nothing is running in the session
        """
        session = self.require(key)
        await self.executor.send_input(session, text)
        session.touch()

    async def kill(self, key: SessionKey) -> bool:
        """Terminate the live process. Succeeds (idempotently) when nothing runs."""
        session = self.require(key)
        with session.operation():
            await self.executor.kill(session)
        return True

    def status(self, key: SessionKey, tail: Optional[int] = None) -> SessionStatus:
        session = self.require(key)
        session.touch()
        return session.snapshot(tail)

    def subscribe(self, key: SessionKey, callback: OutputCallback) -> Subscription:
        """Register a live-output listener; chunks arrive in publish order"""
        session = self.require(key)
        subscription = session.add_subscriber(callback)
        logger.debug(f"[Terminal:{session.id}] Subscriber {subscription.token} added")
        return subscription

    def unsubscribe(self, subscription: Subscription) -> None:
        """Remove a listener. Safe to call more than once."""
        subscription.cancel()

    # ------------------------------------------------------------------
    # Reaping / shutdown
    # ------------------------------------------------------------------

    async def evict_if_idle(
        self,
        session: Session,
        idle_timeout: timedelta,
        now: Optional[datetime] = None,
    ) -> bool:
        """
        Terminate and remove a session if it is still idle once its lock is held.

        Returns True when the session was removed.
        """
        now = now or datetime.now()

        async with session.process_lock:
            if not session.is_idle(now, idle_timeout):
                return False

            had_process = self.executor.terminate(session)
            if not self._remove(session):
                return False

        logger.log_terminal_event(
            "session_reaped", session.id,
            project_id=session.key.project_id,
            user_id=session.key.user_id,
            idle_seconds=round((now - session.last_activity_at).total_seconds()),
            had_process=had_process,
        )
        return True

    async def remove(self, key: SessionKey) -> bool:
        """Terminate the session's process and drop the session. False if unknown."""
        session = self.get(key)
        if session is None:
            return False

        async with session.process_lock:
            self.executor.terminate(session)
            return self._remove(session)

    async def shutdown(self) -> None:
        """Terminate every tracked process and drop all sessions"""
        sessions = self.list_sessions()
        for session in sessions:
            await self.remove(session.key)

        await self.executor.close()
        if sessions:
            logger.info(f"[SessionRegistry] Shut down {len(sessions)} sessions")

    def get_stats(self) -> Dict[str, Any]:
        sessions = self.list_sessions()
        return {
            "sessions": len(sessions),
            "active_processes": sum(1 for s in sessions if s.active),
            "subscribers": sum(s.subscriber_count for s in sessions),
            "supervisor_tasks": self.executor.running_tasks,
        }
