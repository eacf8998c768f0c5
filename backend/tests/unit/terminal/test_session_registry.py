"""
Unit Tests for Session Registry
Tests the public terminal operations end to end (real processes)
"""
import signal
import sys
from datetime import datetime, timedelta
from pathlib import Path
import pytest

from workspace_terminal.core.exceptions import (
    CommandNotAllowedError,
    NoActiveProcessError,
    SessionNotFoundError,
    ValidationError,
)
from workspace_terminal.modules.terminal.session import SessionKey

PYTHON = sys.executable


def history_text(registry, key):
    return "".join(c["text"] for c in registry.status(key).to_dict()["output"])


class TestCreate:

    def test_create_is_idempotent(self, registry, project_id, user_id):
        first = registry.create(project_id, user_id)
        second = registry.create(project_id, user_id)

        assert first is second
        assert first.id == second.id
        assert len(registry) == 1

    def test_cwd_from_workspace_resolver(self, registry, project_id, user_id):
        session = registry.create(project_id, user_id)

        assert Path(session.cwd).is_dir()
        assert Path(session.cwd).name == project_id

    def test_explicit_cwd(self, registry, project_id, user_id, scripts_dir):
        session = registry.create(project_id, user_id, cwd=str(scripts_dir))

        assert session.cwd == str(scripts_dir)

    def test_one_session_per_user(self, registry, project_id):
        first = registry.create(project_id, "user-a")
        second = registry.create(project_id, "user-b")

        assert first.id != second.id
        assert SessionKey(project_id, "user-a") in registry
        assert SessionKey(project_id, "user-b") in registry

    def test_invalid_project_id(self, registry, user_id):
        with pytest.raises(ValidationError):
            registry.create("../etc", user_id)

        assert len(registry) == 0

    def test_new_session_is_inactive(self, registry, project_id, user_id):
        session = registry.create(project_id, user_id)

        status = registry.status(session.key)

        assert status.active is False
        assert status.buffered_output == []


class TestExecute:

    @pytest.fixture
    def key(self, registry, project_id, user_id, scripts_dir):
        return registry.create(project_id, user_id, cwd=str(scripts_dir)).key

    @pytest.mark.asyncio
    async def test_unknown_session(self, registry):
        with pytest.raises(SessionNotFoundError):
            await registry.execute(SessionKey("nope", "nobody"), "ls")

    @pytest.mark.asyncio
    async def test_disallowed_program_spawns_nothing(self, registry, key):
        with pytest.raises(CommandNotAllowedError):
            await registry.execute(key, "sudo ls")

        status = registry.status(key)
        assert status.active is False
        assert status.buffered_output == []

    @pytest.mark.asyncio
    async def test_empty_command(self, registry, key):
        with pytest.raises(ValidationError):
            await registry.execute(key, "   ")

    @pytest.mark.asyncio
    async def test_output_order_in_history(self, registry, key):
        result = await registry.execute(key, f"{PYTHON} abc.py")

        assert result.success is True
        output = history_text(registry, key)
        assert output.index("A\n") < output.index("B\n") < output.index("C\n")
        assert output.endswith("[Process exited with code 0]\n")

    @pytest.mark.asyncio
    async def test_status_while_running(self, registry, key, eventually):
        result = await registry.execute(key, f"{PYTHON} server.py run")

        status = registry.status(key)
        assert status.active is True
        assert status.pid == result.pid

        await eventually(lambda: registry.status(key).preview_port == 5173)

    @pytest.mark.asyncio
    async def test_status_tail(self, registry, key):
        await registry.execute(key, f"{PYTHON} flood.py")

        status = registry.status(key, tail=2)

        assert len(status.buffered_output) == 2
        assert status.buffered_output[-1].text == "\n[Process exited with code 0]\n"


class TestInputAndKill:

    @pytest.fixture
    def key(self, registry, project_id, user_id, scripts_dir):
        return registry.create(project_id, user_id, cwd=str(scripts_dir)).key

    @pytest.mark.asyncio
    async def test_input_without_process_changes_nothing(self, registry, key, project_id):
        session = registry.get(key)
        neighbour = registry.create(project_id, "someone-else")
        stale = datetime.now() - timedelta(minutes=30)
        session.touch(stale)
        neighbour.touch(stale - timedelta(minutes=5))

        with pytest.raises(NoActiveProcessError):
            await registry.send_input(key, "y")

        assert session.last_activity_at == stale
        assert session.history() == []
        assert neighbour.last_activity_at == stale - timedelta(minutes=5)
        assert neighbour.history() == []

    @pytest.mark.asyncio
    async def test_input_to_running_process(self, registry, key, eventually):
        await registry.execute(key, f"{PYTHON} echo_input.py run")
        await eventually(lambda: "waiting" in history_text(registry, key))

        await registry.send_input(key, "yes")

        await eventually(lambda: "got: yes" in history_text(registry, key))

    @pytest.mark.asyncio
    async def test_kill_running_process(self, registry, key, eventually):
        await registry.execute(key, f"{PYTHON} sleeper.py run")
        run = registry.get(key).run

        assert await registry.kill(key) is True

        assert registry.status(key).active is False
        await eventually(lambda: run.finished)
        assert run.exit_code == -signal.SIGTERM

    @pytest.mark.asyncio
    async def test_kill_is_idempotent(self, registry, key):
        assert await registry.kill(key) is True
        assert await registry.kill(key) is True

    @pytest.mark.asyncio
    async def test_kill_unknown_session(self, registry):
        with pytest.raises(SessionNotFoundError):
            await registry.kill(SessionKey("nope", "nobody"))


class TestSubscriptions:

    @pytest.mark.asyncio
    async def test_subscribe_receives_live_output(self, registry, project_id, user_id, scripts_dir):
        key = registry.create(project_id, user_id, cwd=str(scripts_dir)).key
        received = []
        subscription = registry.subscribe(key, received.append)

        await registry.execute(key, f"{PYTHON} abc.py")

        assert "".join(c.text for c in received) == history_text(registry, key)

        registry.unsubscribe(subscription)
        registry.unsubscribe(subscription)
        assert registry.get(key).subscriber_count == 0

    def test_subscribe_unknown_session(self, registry):
        with pytest.raises(SessionNotFoundError):
            registry.subscribe(SessionKey("nope", "nobody"), lambda chunk: None)


class TestEviction:

    @pytest.mark.asyncio
    async def test_idle_session_evicted_and_process_signaled(self, registry, project_id, user_id, scripts_dir, eventually):
        session = registry.create(project_id, user_id, cwd=str(scripts_dir))
        await registry.execute(session.key, f"{PYTHON} sleeper.py run")
        run = session.run
        later = datetime.now() + timedelta(hours=2)

        assert await registry.evict_if_idle(session, timedelta(hours=1), now=later) is True

        assert registry.get(session.key) is None
        assert session.closed is True
        assert run.signaled is True
        await eventually(lambda: run.finished)

        recreated = registry.create(project_id, user_id)
        assert recreated.id != session.id
        assert recreated.history() == []

    @pytest.mark.asyncio
    async def test_recent_session_kept(self, registry, project_id, user_id):
        session = registry.create(project_id, user_id)

        assert await registry.evict_if_idle(session, timedelta(hours=1)) is False
        assert registry.get(session.key) is session

    @pytest.mark.asyncio
    async def test_operations_on_evicted_session_fail(self, registry, project_id, user_id):
        session = registry.create(project_id, user_id)
        await registry.evict_if_idle(session, timedelta(hours=1), now=datetime.now() + timedelta(hours=2))

        with pytest.raises(SessionNotFoundError):
            registry.status(session.key)


class TestRemove:

    @pytest.mark.asyncio
    async def test_remove_terminates_and_drops(self, registry, project_id, user_id, scripts_dir):
        session = registry.create(project_id, user_id, cwd=str(scripts_dir))
        await registry.execute(session.key, f"{PYTHON} sleeper.py run")
        run = session.run

        assert await registry.remove(session.key) is True

        assert run.signaled is True
        assert session.closed is True
        assert session.key not in registry

    @pytest.mark.asyncio
    async def test_remove_unknown_key(self, registry):
        assert await registry.remove(SessionKey("nope", "nobody")) is False


class TestShutdown:

    @pytest.mark.asyncio
    async def test_shutdown_terminates_everything(self, registry, scripts_dir, eventually):
        first = registry.create("proj-a", "user-1", cwd=str(scripts_dir))
        second = registry.create("proj-b", "user-1", cwd=str(scripts_dir))
        await registry.execute(first.key, f"{PYTHON} sleeper.py run")
        await registry.execute(second.key, f"{PYTHON} sleeper.py run")
        runs = [first.run, second.run]

        await registry.shutdown()

        assert len(registry) == 0
        assert all(run.signaled for run in runs)

    @pytest.mark.asyncio
    async def test_stats(self, registry, project_id, user_id, scripts_dir):
        key = registry.create(project_id, user_id, cwd=str(scripts_dir)).key
        await registry.execute(key, f"{PYTHON} sleeper.py run")
        registry.subscribe(key, lambda chunk: None)

        stats = registry.get_stats()

        assert stats["sessions"] == 1
        assert stats["active_processes"] == 1
        assert stats["subscribers"] == 1
