"""
Workspace Terminal - Test Configuration and Fixtures
"""
import os
import asyncio
import sys
import tempfile
import textwrap
from pathlib import Path
from typing import AsyncGenerator, Awaitable, Callable
import pytest
import pytest_asyncio
from faker import Faker

# Set testing environment
os.environ['ENVIRONMENT'] = 'testing'
os.environ['LOG_LEVEL'] = 'WARNING'
os.environ['LOG_FILE'] = ''
os.environ['WORKSPACE_ROOT'] = tempfile.mkdtemp(prefix='workspace-terminal-tests-')
os.environ['TERMINAL_REAPER_ENABLED'] = 'false'

from workspace_terminal.modules.terminal.command_validator import (
    ALLOWED_COMMANDS,
    DEV_SERVER_COMMANDS,
    CommandValidator,
)
from workspace_terminal.modules.terminal.process_executor import ProcessExecutor
from workspace_terminal.modules.terminal.session_registry import SessionRegistry
from workspace_terminal.services.workspace_resolver import WorkspaceResolver

fake = Faker()

# The interpreter running the tests; allowlisted and treated as a dev server
# program whenever "run" appears in its arguments
PYTHON = sys.executable

SCRIPTS = {
    # A, B, C on stdout, in that order
    "abc.py": """
        import time
        for line in ("A", "B", "C"):
            print(line, flush=True)
            time.sleep(0.05)
    """,
    # Announces itself, then idles until signaled
    "sleeper.py": """
        import time
        print("ready", flush=True)
        time.sleep(60)
    """,
    # Echoes one line from stdin
    "echo_input.py": """
        import sys
        print("waiting", flush=True)
        line = sys.stdin.readline()
        print("got: " + line.strip(), flush=True)
    """,
    # Dev server: prints its URL, then keeps producing output
    "server.py": """
        import time
        print("  VITE ready", flush=True)
        print("  Local: http://localhost:5173/", flush=True)
        for i in range(600):
            print("tick %d" % i, flush=True)
            time.sleep(0.05)
    """,
    # Non-zero exit with stderr output
    "fail.py": """
        import sys
        print("something broke", file=sys.stderr, flush=True)
        sys.exit(3)
    """,
    # Many lines, to push history past its bound
    "flood.py": """
        for i in range(50):
            print("line %d" % i, flush=True)
    """,
}


@pytest.fixture
def project_id() -> str:
    return f"proj-{fake.uuid4()[:8]}"


@pytest.fixture
def user_id() -> str:
    return fake.uuid4()


@pytest.fixture
def install_scripts() -> Callable[[Path], Path]:
    """Copy the helper scripts into a directory"""

    def _install(path: Path) -> Path:
        path.mkdir(parents=True, exist_ok=True)
        for name, body in SCRIPTS.items():
            (path / name).write_text(textwrap.dedent(body))
        return path

    return _install


@pytest.fixture
def scripts_dir(tmp_path: Path, install_scripts) -> Path:
    """Workspace directory pre-populated with the helper scripts"""
    return install_scripts(tmp_path)


@pytest.fixture
def validator() -> CommandValidator:
    return CommandValidator(
        allowed_commands=ALLOWED_COMMANDS | {PYTHON},
        dev_server_commands=DEV_SERVER_COMMANDS | {PYTHON},
    )


@pytest.fixture
def executor(validator: CommandValidator) -> ProcessExecutor:
    return ProcessExecutor(
        validator=validator,
        streaming_ack_seconds=0.3,
        replace_grace_seconds=3,
    )


@pytest_asyncio.fixture
async def registry(executor: ProcessExecutor, tmp_path: Path) -> AsyncGenerator[SessionRegistry, None]:
    """Registry with test executor; every process is terminated afterwards"""
    registry = SessionRegistry(
        executor=executor,
        resolver=WorkspaceResolver(tmp_path / "workspaces"),
    )
    yield registry
    await registry.shutdown()


@pytest.fixture
def eventually() -> Callable[..., Awaitable[None]]:
    """Poll a predicate until it holds or the timeout expires"""

    async def _eventually(predicate: Callable[[], bool], timeout: float = 5.0, interval: float = 0.02) -> None:
        loop = asyncio.get_running_loop()
        deadline = loop.time() + timeout
        while not predicate():
            if loop.time() > deadline:
                raise AssertionError("condition not met within %.1fs" % timeout)
            await asyncio.sleep(interval)

    return _eventually
