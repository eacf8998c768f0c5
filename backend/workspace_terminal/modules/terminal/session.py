"""
Terminal Session - per (project, user) logical terminal

A Session owns:
- at most one live process (the "process slot")
- a bounded output history (oldest chunks evicted first)
- the set of live output subscribers
- the last-activity timestamp the reaper looks at

Locks:
- process_lock (asyncio.Lock) serializes process-slot transitions
  (spawn, replace, kill, reap)
- _output_lock (threading.RLock) guards history + subscribers, so chunks
  published by concurrent readers never interleave inside the structures
"""

import asyncio
import itertools
import re
import threading
import uuid
from collections import deque
from contextlib import contextmanager
from dataclasses import dataclass, field
from datetime import datetime, timedelta
from enum import Enum
from typing import Any, Callable, Deque, Dict, Iterator, List, NamedTuple, Optional

from workspace_terminal.core.config import settings
from workspace_terminal.core.logging_config import logger


class SessionKey(NamedTuple):
    """Registry key - one session per (project, user)"""
    project_id: str
    user_id: str

    def __str__(self) -> str:
        return f"{self.project_id}-{self.user_id}"


class OutputKind(str, Enum):
    """Where a chunk came from"""
    STDOUT = "stdout"   # primary stream
    STDERR = "stderr"   # secondary stream
    EXIT = "exit"       # process termination notice


@dataclass(frozen=True)
class OutputChunk:
    """Single block of process output"""
    text: str
    kind: OutputKind
    timestamp: datetime = field(default_factory=datetime.now)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "text": self.text,
            "kind": self.kind.value,
            "timestamp": self.timestamp.isoformat(),
        }


OutputCallback = Callable[[OutputChunk], None]


# Dev server announcements, most specific first
PREVIEW_PORT_PATTERNS = [
    re.compile(r'Local:\s*https?://localhost:(\d+)', re.IGNORECASE),      # Vite, CRA
    re.compile(r'localhost:(\d+)', re.IGNORECASE),                         # Generic localhost:port
    re.compile(r'127\.0\.0\.1:(\d+)'),
    re.compile(r'0\.0\.0\.0:(\d+)'),
    re.compile(r'started server on.*:(\d+)', re.IGNORECASE),               # Next.js
    re.compile(r'listening on.*:(\d+)', re.IGNORECASE),                    # Express
    re.compile(r'\bport\s+(\d+)', re.IGNORECASE),                          # "Server running on port 3000"
]


def detect_preview_port(text: str) -> Optional[int]:
    """
    Detect a dev server port from terminal output.

    Parses output like:
    - Vite: "Local: http://localhost:5173/"
    - Next.js: "ready - started server on 0.0.0.0:3000"
    - Express: "Server running on port 3000"
    """
    for pattern in PREVIEW_PORT_PATTERNS:
        match = pattern.search(text)
        if match:
            port = int(match.group(1))
            if 1000 <= port <= 65535:
                return port
    return None


@dataclass
class SessionStatus:
    """Snapshot returned by status()"""
    session_id: str
    active: bool
    cwd: str
    buffered_output: List[OutputChunk]
    last_activity_at: datetime
    pid: Optional[int] = None
    preview_port: Optional[int] = None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "session_id": self.session_id,
            "active": self.active,
            "cwd": self.cwd,
            "output": [chunk.to_dict() for chunk in self.buffered_output],
            "last_activity": self.last_activity_at.isoformat(),
            "pid": self.pid,
            "preview_port": self.preview_port,
        }


class Subscription:
    """Handle returned by subscribe(); pass it back to unsubscribe()"""

    def __init__(self, session: "Session", token: int):
        self.session = session
        self.token = token

    @property
    def active(self) -> bool:
        return self.session.has_subscriber(self.token)

    def cancel(self) -> None:
        self.session.remove_subscriber(self.token)

    def __repr__(self) -> str:
        return f"<Subscription session={self.session.id} token={self.token}>"


class Session:
    """
    A logical terminal bound to one project workspace and one user.

    The process slot holds a ProcessRun (see process_executor) or None.
    Only the executor fills and clears it, always under process_lock.
    """

    def __init__(
        self,
        key: SessionKey,
        cwd: str,
        history_limit: Optional[int] = None,
    ):
        self.id = str(uuid.uuid4())
        self.key = key
        self.cwd = cwd
        self.created_at = datetime.now()
        self.last_activity_at = self.created_at
        self.preview_port: Optional[int] = None
        self.closed = False

        self.run = None  # Optional[ProcessRun]
        self._process_lock: Optional[asyncio.Lock] = None

        self._history: Deque[OutputChunk] = deque(
            maxlen=history_limit or settings.TERMINAL_HISTORY_LIMIT
        )
        self._subscribers: Dict[int, OutputCallback] = {}
        self._tokens = itertools.count(1)
        self._output_lock = threading.RLock()
        self._operations = 0

    # ------------------------------------------------------------------
    # Activity
    # ------------------------------------------------------------------

    def touch(self, now: Optional[datetime] = None) -> None:
        self.last_activity_at = now or datetime.now()

    def is_idle(self, now: datetime, idle_timeout: timedelta) -> bool:
        return self._operations == 0 and now - self.last_activity_at > idle_timeout

    @property
    def busy(self) -> bool:
        return self._operations > 0

    @contextmanager
    def operation(self) -> Iterator["Session"]:
        """Mark the session in use for the duration of a request"""
        self._operations += 1
        self.touch()
        try:
            yield self
        finally:
            self._operations -= 1
            self.touch()

    # ------------------------------------------------------------------
    # Process slot
    # ------------------------------------------------------------------

    @property
    def active(self) -> bool:
        return self.run is not None

    @property
    def pid(self) -> Optional[int]:
        return self.run.pid if self.run is not None else None

    @property
    def process_lock(self) -> asyncio.Lock:
        # Created on first use, inside the running event loop
        if self._process_lock is None:
            self._process_lock = asyncio.Lock()
        return self._process_lock

    def claim(self, run) -> None:
        """Put `run` in the slot; port detection starts over for it"""
        self.run = run
        self.preview_port = None

    def release(self, run) -> bool:
        """Clear the slot if it still holds `run`"""
        if self.run is run:
            self.run = None
            self.preview_port = None
            return True
        return False

    # ------------------------------------------------------------------
    # Output
    # ------------------------------------------------------------------

    def publish(self, chunk: OutputChunk) -> None:
        """Append to history and push to every subscriber, in order"""
        with self._output_lock:
            self._history.append(chunk)

            if chunk.kind is not OutputKind.EXIT:
                port = detect_preview_port(chunk.text) if self.preview_port is None else None
                if port:
                    self.preview_port = port
                    logger.log_terminal_event("preview_port_detected", self.id, port=port)

            for token, callback in list(self._subscribers.items()):
                try:
                    callback(chunk)
                except Exception as e:
                    logger.warning(
                        f"[Terminal:{self.id}] Subscriber {token} failed: {e}",
                        exc_info=True,
                    )

    def history(self, tail: Optional[int] = None) -> List[OutputChunk]:
        with self._output_lock:
            chunks = list(self._history)
        if tail is not None:
            chunks = chunks[-tail:] if tail > 0 else []
        return chunks

    def add_subscriber(self, callback: OutputCallback) -> Subscription:
        with self._output_lock:
            token = next(self._tokens)
            self._subscribers[token] = callback
        return Subscription(self, token)

    def remove_subscriber(self, token: int) -> None:
        with self._output_lock:
            self._subscribers.pop(token, None)

    def has_subscriber(self, token: int) -> bool:
        with self._output_lock:
            return token in self._subscribers

    @property
    def subscriber_count(self) -> int:
        with self._output_lock:
            return len(self._subscribers)

    def clear_subscribers(self) -> None:
        with self._output_lock:
            self._subscribers.clear()

    # ------------------------------------------------------------------

    def snapshot(self, tail: Optional[int] = None) -> SessionStatus:
        return SessionStatus(
            session_id=self.id,
            active=self.active,
            cwd=self.cwd,
            buffered_output=self.history(tail),
            last_activity_at=self.last_activity_at,
            pid=self.pid,
            preview_port=self.preview_port,
        )

    def __repr__(self) -> str:
        return f"<Session {self.key} id={self.id} active={self.active}>"
