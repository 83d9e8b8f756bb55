#!/usr/bin/env python3
"""
Pytest configuration and fixtures for the Cronos tests.

Provides a scripted command runner for adapter tests and an in-memory
engine for lifecycle, resolver and CLI tests.
"""

import sys
import asyncio
import pytest
from pathlib import Path
from typing import Dict, List, Optional

# Add parent directory to path for imports
sys.path.insert(0, str(Path(__file__).parent.parent))

from cronos.core.context import AppContext, Settings
from cronos.core.engine import CommandOutput, LogStream
from cronos.core.events import EventHub
from cronos.core.exceptions import CommandExecutionError
from cronos.core.lifecycle import LifecycleManager
from cronos.core.models import ContainerAction, ContainerRecord, ContainerStatus, HealthStatus


def make_record(name: str, status: ContainerStatus = ContainerStatus.RUNNING, ports=(), health=None, image='img:latest'):
    """Build a container record with a 12+ character id derived from its name."""
    return ContainerRecord(
        id=f"{name}-0123456789abcdef",
        name=name,
        image=image,
        status=status,
        ports=tuple(ports),
        health=health,
    )


class FakeRunner:
    """
    Scripted replacement for run_command.

    Responses are matched by substring in the order they were added;
    unmatched commands succeed with empty output.
    """

    def __init__(self):
        self.responses = []
        self.commands: List[str] = []

    def add(self, fragment: str, stdout: str = '', returncode: int = 0, stderr: str = ''):
        self.responses.append((fragment, returncode, stdout, stderr))
        return self

    async def __call__(self, command: str, cwd=None) -> CommandOutput:
        self.commands.append(command)
        for fragment, returncode, stdout, stderr in self.responses:
            if fragment in command:
                return CommandOutput(command, returncode, stdout, stderr)
        return CommandOutput(command, 0, '', '')


class FakeStdout:
    def __init__(self, chunks, error: Optional[Exception] = None):
        self.chunks = list(chunks)
        self.error = error

    async def read(self, n: int = -1) -> bytes:
        if self.chunks:
            return self.chunks.pop(0)
        if self.error is not None:
            raise self.error
        return b''


class FakeProcess:
    def __init__(self, chunks, error: Optional[Exception] = None, exit_code: int = 0, stderr: bytes = b''):
        self.stdout = FakeStdout(chunks, error)
        self.stderr = FakeStdout([stderr] if stderr else [])
        self.exit_code = exit_code
        self.returncode = None
        self.terminated = False

    def terminate(self):
        self.terminated = True
        self.returncode = -15

    async def wait(self):
        if self.returncode is None:
            self.returncode = self.exit_code
        return self.returncode


class FakeSpawner:
    def __init__(self, chunks=(b'line one\n', b'line two\n'), error: Optional[Exception] = None,
                 exit_code: int = 0, stderr: bytes = b''):
        self.chunks = chunks
        self.error = error
        self.exit_code = exit_code
        self.stderr = stderr
        self.commands: List[str] = []
        self.processes: List[FakeProcess] = []

    async def __call__(self, command: str, cwd=None) -> FakeProcess:
        self.commands.append(command)
        process = FakeProcess(self.chunks, self.error, self.exit_code, self.stderr)
        self.processes.append(process)
        return process


_ACTION_RESULTS = {
    ContainerAction.START: ContainerStatus.RUNNING,
    ContainerAction.STOP: ContainerStatus.STOPPED,
    ContainerAction.RESTART: ContainerStatus.RUNNING,
    ContainerAction.PAUSE: ContainerStatus.PAUSED,
    ContainerAction.UNPAUSE: ContainerStatus.RUNNING,
}


class FakeEngine:
    """In-memory container engine keyed by container name."""

    def __init__(self, containers: Optional[List[ContainerRecord]] = None):
        self.containers: Dict[str, ContainerRecord] = {c.name: c for c in containers or []}
        self.status = 'online'
        self.name = 'fake'
        self.calls: List[tuple] = []
        self.failures: Dict[tuple, Exception] = {}
        self.health_after_start: Dict[str, HealthStatus] = {}
        self.stats_rows: List[str] = []
        self.list_error: Optional[Exception] = None
        self.log_output = b'hello from the fake engine\n'

    @property
    def offline(self) -> bool:
        return self.status == 'offline'

    def fail(self, operation: str, name: str, stderr: str = 'boom'):
        self.failures[(operation, name)] = CommandExecutionError(f"fake {operation} {name}", 1, stderr)

    def _check(self, operation: str, name: str):
        error = self.failures.get((operation, name))
        if error is not None:
            raise error

    async def initialize(self) -> str:
        return self.status

    async def list_containers(self) -> List[ContainerRecord]:
        self.calls.append(('list',))
        if self.list_error is not None:
            raise self.list_error
        return list(self.containers.values())

    async def start_services(self, names=()):
        self.calls.append(('start_services', list(names)))
        await asyncio.sleep(0)
        for name in names:
            self._check('start_services', name)
            self.containers[name] = make_record(
                name, ContainerStatus.RUNNING, health=self.health_after_start.get(name)
            )

    async def stop_services(self, names=()):
        self.calls.append(('stop_services', list(names)))
        for name in names:
            if name in self.containers:
                self.containers[name] = make_record(name, ContainerStatus.STOPPED)

    async def restart_services(self, names=()):
        self.calls.append(('restart_services', list(names)))

    async def get_logs(self, name=None, follow=False) -> LogStream:
        self.calls.append(('logs', name, follow))
        return LogStream(placeholder=self.log_output, name=name or '')

    async def get_stats(self) -> List[str]:
        self.calls.append(('stats',))
        if self.list_error is not None:
            raise self.list_error
        return list(self.stats_rows)

    async def inspect(self, name: str):
        return []

    async def container_action(self, action, name: str, command: Optional[str] = None):
        action = ContainerAction(action)
        self.calls.append(('action', action.value, name))
        await asyncio.sleep(0)
        self._check(action.value, name)

        if action == ContainerAction.LOGS:
            return LogStream(placeholder=self.log_output, name=name)
        if action == ContainerAction.EXEC:
            return f"ran {command}"
        if action == ContainerAction.REMOVE:
            self.containers.pop(name, None)
            return ''

        old = self.containers[name]
        health = self.health_after_start.get(name, old.health)
        self.containers[name] = ContainerRecord(
            id=old.id,
            name=old.name,
            image=old.image,
            status=_ACTION_RESULTS[action],
            ports=old.ports,
            health=health,
        )
        return ''

    def action_calls(self, action: str) -> List[str]:
        return [c[2] for c in self.calls if c[0] == 'action' and c[1] == action]


@pytest.fixture
def fake_runner():
    return FakeRunner()


@pytest.fixture
def fake_spawner():
    return FakeSpawner()


@pytest.fixture
def fake_engine():
    return FakeEngine()


@pytest.fixture
def events():
    return EventHub()


@pytest.fixture
def lifecycle(fake_engine, events):
    return LifecycleManager(fake_engine, events)


@pytest.fixture
def fast_settings(tmp_path):
    """Settings with short timers so waits finish quickly."""
    return Settings(
        health_timeout=0.2,
        health_poll_interval=0.01,
        health_grace_period=0.01,
        restart_delay=0,
        metrics_interval=0.01,
        log_dir=tmp_path / 'logs',
    )


@pytest.fixture
def app_context(fast_settings, fake_engine):
    return AppContext(fast_settings, engine=fake_engine)


@pytest.fixture
def compose_file(tmp_path):
    """Write a compose file and return its path."""
    def _write(content: str, name: str = 'compose.yaml') -> Path:
        path = tmp_path / name
        path.write_text(content)
        return path
    return _write
