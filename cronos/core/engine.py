"""
Container runtime detection and command dispatch.

A ContainerEngine probes for Docker, then Podman, and drives the first one
that answers through a RuntimeAdapter. When neither is installed the engine
switches to an OfflineAdapter whose operations return harmless placeholders.
"""
import abc
import asyncio
import json
import logging
import shlex
from dataclasses import dataclass
from pathlib import Path
from typing import Any, AsyncIterator, Awaitable, Callable, Dict, List, Optional, Sequence, Union

from .exceptions import CommandExecutionError, EngineNotFoundError
from .models import ContainerAction, ContainerRecord
from .parser import is_header, parse_container_listing

logger = logging.getLogger('cronos.engine')

# Literal tabs: "table" formats are aligned with spaces by the runtime
LIST_FORMAT = '{{.ID}}\t{{.Names}}\t{{.Image}}\t{{.Status}}\t{{.Ports}}\t{{.CreatedAt}}'
STATS_FORMAT = '{{.Name}}\t{{.CPUPerc}}\t{{.MemUsage}}\t{{.MemPerc}}\t{{.NetIO}}'

ENGINE_UNINITIALIZED = 'uninitialized'
ENGINE_ONLINE = 'online'
ENGINE_OFFLINE = 'offline'


@dataclass
class CommandOutput:
    command: str
    returncode: int
    stdout: str
    stderr: str


CommandRunner = Callable[[str, Optional[Path]], Awaitable[CommandOutput]]
ProcessSpawner = Callable[[str, Optional[Path]], Awaitable[Any]]


async def run_command(command: str, cwd: Optional[Path] = None) -> CommandOutput:
    """Run a shell command without blocking the event loop."""
    logger.debug(f"Running: {command}")
    process = await asyncio.create_subprocess_shell(
        command,
        stdout=asyncio.subprocess.PIPE,
        stderr=asyncio.subprocess.PIPE,
        cwd=str(cwd) if cwd else None,
    )
    stdout, stderr = await process.communicate()
    return CommandOutput(
        command=command,
        returncode=process.returncode,
        stdout=stdout.decode(errors='replace'),
        stderr=stderr.decode(errors='replace'),
    )


async def spawn_process(command: str, cwd: Optional[Path] = None):
    """Start a long running command whose stdout is consumed as a stream."""
    logger.debug(f"Spawning: {command}")
    return await asyncio.create_subprocess_shell(
        command,
        stdin=asyncio.subprocess.DEVNULL,
        stdout=asyncio.subprocess.PIPE,
        stderr=asyncio.subprocess.PIPE,
        cwd=str(cwd) if cwd else None,
    )


class LogStream:
    """
    Async iterator over the byte chunks of a log command.

    I/O errors end the stream and are recorded in ``errors`` instead of
    propagating to the consumer. Stderr is drained alongside stdout, and a
    command that exits non-zero is recorded as a CommandExecutionError.
    """

    CHUNK_SIZE = 4096

    def __init__(self, process=None, placeholder: bytes = b'', name: str = '', command: str = ''):
        self.process = process
        self.placeholder = placeholder
        self.name = name
        self.command = command
        self.errors: List[Exception] = []
        self._closed = False

    def __aiter__(self) -> AsyncIterator[bytes]:
        return self._iterate()

    async def _iterate(self) -> AsyncIterator[bytes]:
        if self.process is None:
            if self.placeholder:
                yield self.placeholder
            return

        stderr = getattr(self.process, 'stderr', None)
        stderr_task = asyncio.ensure_future(stderr.read()) if stderr is not None else None
        finished = False
        try:
            while True:
                chunk = await self.process.stdout.read(self.CHUNK_SIZE)
                if not chunk:
                    finished = True
                    break
                yield chunk
        except (OSError, asyncio.IncompleteReadError, ValueError) as e:
            self.errors.append(e)
            logger.error(f"Log stream error for {self.name or 'services'}: {e}")
        finally:
            if not finished and stderr_task is not None:
                stderr_task.cancel()

        if finished:
            await self._check_exit(stderr_task)

    async def _check_exit(self, stderr_task):
        returncode = await self.process.wait()
        output = b''
        if stderr_task is not None:
            try:
                output = await stderr_task
            except (OSError, ValueError) as e:
                logger.debug(f"Could not read stderr for {self.name or 'services'}: {e}")
        if returncode and not self._closed:
            error = CommandExecutionError(self.command, returncode, output.decode(errors='replace'))
            self.errors.append(error)
            logger.error(f"Log command for {self.name or 'services'} failed: {error}")

    async def read_all(self) -> bytes:
        chunks = [chunk async for chunk in self]
        return b''.join(chunks)

    async def close(self):
        """Terminate the underlying process if it is still running."""
        self._closed = True
        if self.process is not None and self.process.returncode is None:
            try:
                self.process.terminate()
            except ProcessLookupError:
                pass
            await self.process.wait()


class RuntimeAdapter(abc.ABC):
    """
    Uniform command set over one container runtime.

    Subclasses declare the binary and compose front-end; everything else is
    built from those.
    """

    name = ''
    binary = ''
    compose = ''
    supports_restart = True
    offline = False

    def __init__(
        self,
        runner: Optional[CommandRunner] = None,
        spawner: Optional[ProcessSpawner] = None,
        compose_file: Optional[Union[str, Path]] = None,
        cwd: Optional[Union[str, Path]] = None,
        restart_delay: float = 2.0,
    ):
        self.runner = runner or run_command
        self.spawner = spawner or spawn_process
        self.compose_file = Path(compose_file) if compose_file else None
        self.cwd = Path(cwd) if cwd else (self.compose_file.parent if self.compose_file else None)
        self.restart_delay = restart_delay

    # Command construction

    def version_command(self) -> str:
        return f"{self.binary} --version"

    def compose_command(self, subcommand: str, services: Sequence[str] = ()) -> str:
        parts = [self.compose]
        if self.compose_file:
            parts += ['-f', shlex.quote(str(self.compose_file))]
        parts.append(subcommand)
        parts += [shlex.quote(s) for s in services]
        return ' '.join(parts)

    def list_command(self) -> str:
        return f'{self.binary} ps -a --format "{LIST_FORMAT}"'

    def stats_command(self) -> str:
        return f'{self.binary} stats --no-stream --format "{STATS_FORMAT}"'

    def logs_command(self, name: Optional[str], follow: bool) -> str:
        services = [name] if name else []
        return self.compose_command('logs -f' if follow else 'logs', services)

    def container_command(self, action: ContainerAction, name: str, command: Optional[str] = None) -> str:
        target = shlex.quote(name)
        if action == ContainerAction.REMOVE:
            return f"{self.binary} rm {target}"
        if action == ContainerAction.EXEC:
            return f"{self.binary} exec {target} {command or 'sh'}"
        return f"{self.binary} {action.value} {target}"

    # Execution

    async def execute(self, command: str) -> CommandOutput:
        result = await self.runner(command, self.cwd)
        if result.returncode != 0:
            raise CommandExecutionError(command, result.returncode, result.stderr)
        return result

    async def probe(self) -> bool:
        """Return True if the runtime answers a version query."""
        try:
            result = await self.runner(self.version_command(), None)
        except OSError as e:
            logger.debug(f"{self.name} probe failed: {e}")
            return False
        return result.returncode == 0

    # Operations

    async def list_containers(self) -> List[ContainerRecord]:
        result = await self.execute(self.list_command())
        return parse_container_listing(result.stdout)

    async def start_services(self, names: Sequence[str]):
        await self.execute(self.compose_command('up -d', names))

    async def stop_services(self, names: Sequence[str]):
        await self.execute(self.compose_command('stop', names))

    async def restart_services(self, names: Sequence[str]):
        if self.supports_restart:
            await self.execute(self.compose_command('restart', names))
            return
        logger.debug(f"{self.name} has no atomic restart, using stop/start")
        await self.stop_services(names)
        await asyncio.sleep(self.restart_delay)
        await self.start_services(names)

    async def get_logs(self, name: Optional[str] = None, follow: bool = False) -> LogStream:
        command = self.logs_command(name, follow)
        process = await self.spawner(command, self.cwd)
        return LogStream(process=process, name=name or '', command=command)

    async def get_container_logs(self, name: str, follow: bool = False) -> LogStream:
        flag = ' -f' if follow else ''
        command = f"{self.binary} logs{flag} {shlex.quote(name)}"
        process = await self.spawner(command, self.cwd)
        return LogStream(process=process, name=name, command=command)

    async def get_stats(self) -> List[str]:
        result = await self.execute(self.stats_command())
        return [
            line for line in result.stdout.splitlines()
            if line.strip() and not is_header(line)
        ]

    async def inspect(self, name: str) -> List[Dict[str, Any]]:
        result = await self.execute(f"{self.binary} inspect {shlex.quote(name)}")
        try:
            data = json.loads(result.stdout or '[]')
        except json.JSONDecodeError as e:
            logger.error(f"Error parsing inspect output for {name}: {e}")
            return []
        return data if isinstance(data, list) else [data]

    async def container_action(self, action: ContainerAction, name: str, command: Optional[str] = None):
        if action == ContainerAction.LOGS:
            return await self.get_container_logs(name)
        result = await self.execute(self.container_command(action, name, command))
        return result.stdout


class DockerAdapter(RuntimeAdapter):
    name = 'docker'
    binary = 'docker'
    compose = 'docker compose'


class PodmanAdapter(RuntimeAdapter):
    name = 'podman'
    binary = 'podman'
    compose = 'podman-compose'
    supports_restart = False


class OfflineAdapter(RuntimeAdapter):
    """Placeholder runtime used when no container runtime is installed."""

    name = 'offline'
    offline = True

    async def probe(self) -> bool:
        return True

    async def list_containers(self) -> List[ContainerRecord]:
        return []

    async def start_services(self, names: Sequence[str]):
        logger.info(f"Offline mode: not starting {', '.join(names) or 'services'}")

    async def stop_services(self, names: Sequence[str]):
        logger.info(f"Offline mode: not stopping {', '.join(names) or 'services'}")

    async def restart_services(self, names: Sequence[str]):
        logger.info(f"Offline mode: not restarting {', '.join(names) or 'services'}")

    async def get_logs(self, name: Optional[str] = None, follow: bool = False) -> LogStream:
        return LogStream(placeholder=b'No logs available in offline mode\n', name=name or '')

    async def get_container_logs(self, name: str, follow: bool = False) -> LogStream:
        return await self.get_logs(name, follow)

    async def get_stats(self) -> List[str]:
        return []

    async def inspect(self, name: str) -> List[Dict[str, Any]]:
        return []

    async def container_action(self, action: ContainerAction, name: str, command: Optional[str] = None):
        if action == ContainerAction.LOGS:
            return await self.get_logs(name)
        logger.info(f"Offline mode: ignoring {action.value} for {name}")
        return ''


ADAPTERS = {
    'docker': DockerAdapter,
    'podman': PodmanAdapter,
}
DETECTION_ORDER = ('docker', 'podman')


class ContainerEngine:
    """
    Detects the available runtime once and delegates every operation to it.

    Attributes:
        preference: 'auto', 'docker' or 'podman'
        adapter: Active RuntimeAdapter, None until initialized
        status: One of uninitialized, online, offline
    """

    def __init__(
        self,
        preference: str = 'auto',
        compose_file: Optional[Union[str, Path]] = None,
        cwd: Optional[Union[str, Path]] = None,
        restart_delay: float = 2.0,
        runner: Optional[CommandRunner] = None,
        spawner: Optional[ProcessSpawner] = None,
    ):
        self.preference = preference
        self._adapter_options = {
            'runner': runner,
            'spawner': spawner,
            'compose_file': compose_file,
            'cwd': cwd,
            'restart_delay': restart_delay,
        }
        self.adapter: Optional[RuntimeAdapter] = None
        self.status = ENGINE_UNINITIALIZED
        self._lock = asyncio.Lock()

    @property
    def offline(self) -> bool:
        return self.status == ENGINE_OFFLINE

    @property
    def name(self) -> str:
        return self.adapter.name if self.adapter else ENGINE_UNINITIALIZED

    def _candidates(self) -> Sequence[str]:
        if self.preference in ADAPTERS:
            return (self.preference,)
        return DETECTION_ORDER

    async def detect(self) -> RuntimeAdapter:
        """
        Probe candidate runtimes in priority order.

        Raises:
            EngineNotFoundError: If no candidate answers
        """
        candidates = self._candidates()
        for name in candidates:
            adapter = ADAPTERS[name](**self._adapter_options)
            if await adapter.probe():
                logger.info(f"Using container runtime: {name}")
                return adapter
            logger.debug(f"Runtime {name} not available")
        raise EngineNotFoundError(candidates)

    async def initialize(self) -> str:
        """Detect the runtime. Repeated calls after the first are no-ops."""
        async with self._lock:
            if self.adapter is not None:
                return self.status
            try:
                self.adapter = await self.detect()
                self.status = ENGINE_ONLINE
            except EngineNotFoundError as e:
                logger.warning(f"{e} - running in offline mode")
                self.adapter = OfflineAdapter(**self._adapter_options)
                self.status = ENGINE_OFFLINE
            return self.status

    async def _active(self) -> RuntimeAdapter:
        if self.adapter is None:
            await self.initialize()
        return self.adapter

    async def list_containers(self) -> List[ContainerRecord]:
        return await (await self._active()).list_containers()

    async def start_services(self, names: Sequence[str] = ()):
        await (await self._active()).start_services(list(names))

    async def stop_services(self, names: Sequence[str] = ()):
        await (await self._active()).stop_services(list(names))

    async def restart_services(self, names: Sequence[str] = ()):
        await (await self._active()).restart_services(list(names))

    async def get_logs(self, name: Optional[str] = None, follow: bool = False) -> LogStream:
        return await (await self._active()).get_logs(name, follow)

    async def get_stats(self) -> List[str]:
        return await (await self._active()).get_stats()

    async def inspect(self, name: str) -> List[Dict[str, Any]]:
        return await (await self._active()).inspect(name)

    async def container_action(self, action: ContainerAction, name: str, command: Optional[str] = None):
        return await (await self._active()).container_action(ContainerAction(action), name, command)
