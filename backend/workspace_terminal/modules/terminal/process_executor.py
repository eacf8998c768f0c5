"""
Process Executor - spawns terminal commands and streams their output

One ProcessRun per spawned command. Its supervisor task:
1. Pumps stdout and stderr concurrently, chunk by chunk
2. Publishes every chunk to the owning Session (history + subscribers)
3. Waits for exit, publishes the exit notice, frees the process slot

Callers get one of two answers from the same machinery:
- Synchronous: wait for exit, return full output + exit code
- Streaming (dev servers): answer after a short delay with the pid while
  the supervisor keeps streaming in the background
"""

import asyncio
import codecs
import logging
import os
import signal
import time
from dataclasses import dataclass
from typing import Any, Dict, List, Optional, Set

from workspace_terminal.core.config import settings
from workspace_terminal.core.exceptions import (
    NoActiveProcessError,
    ProcessSpawnError,
    SessionNotFoundError,
)
from workspace_terminal.core.logging_config import logger
from workspace_terminal.modules.terminal.command_validator import (
    CommandValidator,
    ParsedCommand,
    get_command_validator,
)
from workspace_terminal.modules.terminal.session import OutputChunk, OutputKind, Session


@dataclass
class ExecutionResult:
    """Caller-facing result of execute()"""
    success: bool
    output: str
    exit_code: Optional[int]
    streaming: bool = False
    pid: Optional[int] = None
    error: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        data = {
            "success": self.success,
            "output": self.output,
            "exit_code": self.exit_code,
            "streaming": self.streaming,
        }
        if self.pid is not None:
            data["pid"] = self.pid
        if self.error:
            data["error"] = self.error
        return data


def describe_exit(returncode: int) -> str:
    """Terminal line announcing process termination"""
    if returncode < 0:
        try:
            name = signal.Signals(-returncode).name
        except ValueError:
            name = str(-returncode)
        return f"\n[Process terminated by signal {name}]\n"
    return f"\n[Process exited with code {returncode}]\n"


class ProcessRun:
    """A single spawned command bound to a session"""

    def __init__(self, command: ParsedCommand):
        self.command = command
        self.process: Optional[asyncio.subprocess.Process] = None
        self.exit_code: Optional[int] = None
        self.signaled = False
        self.started_at = time.perf_counter()
        self.detached = False
        self._output: List[str] = []
        self._done = asyncio.Event()

    @property
    def pid(self) -> Optional[int]:
        return self.process.pid if self.process else None

    @property
    def finished(self) -> bool:
        return self._done.is_set()

    @property
    def output(self) -> str:
        return "".join(self._output)

    def record(self, text: str) -> None:
        if not self.detached:
            self._output.append(text)

    def detach(self) -> None:
        """Stop collecting output; the session history keeps what follows"""
        self.detached = True
        self._output.clear()

    def finish(self, exit_code: int) -> None:
        self.exit_code = exit_code
        self._done.set()

    async def wait(self) -> Optional[int]:
        await self._done.wait()
        return self.exit_code

    def result(self) -> ExecutionResult:
        return ExecutionResult(
            success=self.exit_code == 0,
            output=self.output,
            exit_code=self.exit_code,
        )


class ProcessExecutor:
    """
    Spawns validated commands inside a session's working directory.

    Every public method that changes the process slot runs under
    session.process_lock. terminate() expects the caller to hold it.
    """

    def __init__(
        self,
        validator: Optional[CommandValidator] = None,
        read_chunk_size: Optional[int] = None,
        streaming_ack_seconds: Optional[float] = None,
        replace_grace_seconds: Optional[float] = None,
        env: Optional[Dict[str, str]] = None,
    ):
        self.validator = validator or get_command_validator()
        self.read_chunk_size = read_chunk_size or settings.TERMINAL_READ_CHUNK_SIZE
        self.streaming_ack_seconds = (
            settings.TERMINAL_STREAMING_ACK_SECONDS if streaming_ack_seconds is None else streaming_ack_seconds
        )
        self.replace_grace_seconds = (
            settings.TERMINAL_REPLACE_GRACE_SECONDS if replace_grace_seconds is None else replace_grace_seconds
        )
        self._extra_env = {"FORCE_COLOR": "1", **(env or {})}

        # Supervisor tasks outlive the request that spawned them
        self._tasks: Set[asyncio.Task] = set()

    # ------------------------------------------------------------------
    # Public API
    # ------------------------------------------------------------------

    async def execute(self, session: Session, command: ParsedCommand) -> ExecutionResult:
        """
        Run a validated command in the session.

        A live process is terminated first; the new one only claims the slot
        once the old one is gone (or detached after the grace period).

        Raises:
            SessionNotFoundError: Session was reaped while we waited for the lock
            ProcessSpawnError: The OS could not start the program
        """
        streaming = self.validator.is_streaming(command)

        async with session.process_lock:
            if session.closed:
                raise SessionNotFoundError(str(session.key))
            await self._replace_running(session)
            run = await self._spawn(session, command)

        if streaming:
            return await self._acknowledge(run)

        await run.wait()
        return run.result()

    async def send_input(self, session: Session, text: str) -> None:
        """
        Write a line to the live process's stdin.

        Raises:
            NoActiveProcessError: Nothing is running, or it closed its stdin
        """
        async with session.process_lock:
            run = session.run
            stdin = run.process.stdin if run is not None else None
            if stdin is None or stdin.is_closing():
                raise NoActiveProcessError(session.id)

            try:
                stdin.write((text + "\n").encode("utf-8"))
                await stdin.drain()
            except (BrokenPipeError, ConnectionResetError):
                raise NoActiveProcessError(session.id)

    async def kill(self, session: Session) -> bool:
        """Send SIGTERM to the live process, if any, and free the slot"""
        async with session.process_lock:
            return self.terminate(session)

    def terminate(self, session: Session) -> bool:
        """
        Signal and release the session's process. Caller holds process_lock.

        Only one SIGTERM is sent; a process that ignores it keeps running
        until it exits on its own.
        """
        run = session.run
        if run is None:
            return False

        self._signal(run)
        session.release(run)
        logger.log_terminal_event("process_killed", session.id, pid=run.pid)
        return True

    async def close(self) -> None:
        """Cancel supervisor tasks still running (service shutdown)"""
        tasks = list(self._tasks)
        for task in tasks:
            task.cancel()
        if tasks:
            await asyncio.gather(*tasks, return_exceptions=True)

    @property
    def running_tasks(self) -> int:
        return len(self._tasks)

    # ------------------------------------------------------------------
    # Spawn / supervise
    # ------------------------------------------------------------------

    async def _replace_running(self, session: Session) -> None:
        run = session.run
        if run is None:
            return

        logger.log_terminal_event("process_replaced", session.id, pid=run.pid)
        self._signal(run)

        try:
            await asyncio.wait_for(run.wait(), timeout=self.replace_grace_seconds)
        except asyncio.TimeoutError:
            logger.warning(
                f"[Terminal:{session.id}] pid {run.pid} ignored SIGTERM for "
                f"{self.replace_grace_seconds}s - detaching it",
                extra={"event_type": "process_detached", "session_id": session.id, "pid": run.pid},
            )

        session.release(run)

    async def _spawn(self, session: Session, command: ParsedCommand) -> ProcessRun:
        run = ProcessRun(command)
        self._publish(session, run, f"$ {command.raw}\n", OutputKind.STDOUT)

        env = os.environ.copy()
        env.update(self._extra_env)

        try:
            process = await asyncio.create_subprocess_exec(
                command.program,
                *command.args,
                cwd=session.cwd,
                stdin=asyncio.subprocess.PIPE,
                stdout=asyncio.subprocess.PIPE,
                stderr=asyncio.subprocess.PIPE,
                env=env,
            )
        except FileNotFoundError as e:
            raise self._spawn_failed(session, run, f"Command not found: {e.filename or command.program}")
        except PermissionError:
            raise self._spawn_failed(session, run, f"Permission denied: {command.program}")
        except OSError as e:
            raise self._spawn_failed(session, run, f"OS error: {e}")

        run.process = process
        session.claim(run)
        session.touch()
        logger.log_terminal_event(
            "process_spawned", session.id,
            pid=process.pid, command=command.raw, cwd=session.cwd,
        )

        task = asyncio.create_task(self._supervise(session, run))
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)
        return run

    def _spawn_failed(self, session: Session, run: ProcessRun, reason: str) -> ProcessSpawnError:
        self._publish(session, run, f"Error: {reason}\n", OutputKind.STDERR)
        logger.log_terminal_event(
            "process_spawn_failed", session.id,
            level=logging.WARNING, command=run.command.raw, reason=reason,
        )
        return ProcessSpawnError(run.command.raw, reason)

    async def _supervise(self, session: Session, run: ProcessRun) -> None:
        process = run.process
        returncode: Optional[int] = None
        try:
            await asyncio.gather(
                self._pump(session, run, process.stdout, OutputKind.STDOUT),
                self._pump(session, run, process.stderr, OutputKind.STDERR),
            )
            returncode = await process.wait()
        except asyncio.CancelledError:
            self._signal(run)
            raise
        except Exception as e:
            logger.log_error_with_context(e, context=f"terminal supervisor {session.id}")
            returncode = process.returncode if process.returncode is not None else -1
        finally:
            if returncode is None:
                returncode = process.returncode if process.returncode is not None else -1
            self._publish(session, run, describe_exit(returncode), OutputKind.EXIT)
            session.release(run)
            session.touch()
            run.finish(returncode)

            duration_ms = (time.perf_counter() - run.started_at) * 1000
            logger.log_terminal_event(
                "process_exited", session.id,
                pid=run.pid, exit_code=returncode, duration_ms=round(duration_ms, 2),
            )

    async def _pump(
        self,
        session: Session,
        run: ProcessRun,
        stream: asyncio.StreamReader,
        kind: OutputKind,
    ) -> None:
        # Incremental decoder so multi-byte characters split across reads survive
        decoder = codecs.getincrementaldecoder("utf-8")(errors="replace")
        while True:
            data = await stream.read(self.read_chunk_size)
            if not data:
                tail = decoder.decode(b"", final=True)
                if tail:
                    self._publish(session, run, tail, kind)
                return
            text = decoder.decode(data)
            if text:
                self._publish(session, run, text, kind)

    async def _acknowledge(self, run: ProcessRun) -> ExecutionResult:
        """Answer a streaming command without waiting for it to exit"""
        try:
            await asyncio.wait_for(run.wait(), timeout=self.streaming_ack_seconds)
        except asyncio.TimeoutError:
            result = ExecutionResult(
                success=True,
                output=run.output,
                exit_code=None,
                streaming=True,
                pid=run.pid,
            )
            run.detach()
            return result
        # Exited before the acknowledgement window closed
        return run.result()

    # ------------------------------------------------------------------

    @staticmethod
    def _publish(session: Session, run: ProcessRun, text: str, kind: OutputKind) -> None:
        run.record(text)
        session.publish(OutputChunk(text=text, kind=kind))

    @staticmethod
    def _signal(run: ProcessRun) -> None:
        process = run.process
        if process is None or process.returncode is not None:
            return
        try:
            process.terminate()
            run.signaled = True
        except ProcessLookupError:
            pass  # Process already gone
