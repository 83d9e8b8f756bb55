"""
Settings and the application context that wires the components together.
"""
import os
import logging
from dataclasses import dataclass, field, fields
from pathlib import Path
from typing import List, Mapping, Optional

from dotenv import find_dotenv, load_dotenv

from .compose import ComposeConfig
from .dependencies import DependencyResolver
from .engine import ContainerEngine
from .events import ENGINE_STATUS, PRIORITY_HIGH, PRIORITY_NORMAL, EventHub
from .exceptions import ComposeFileNotFound, ConfigurationError
from .lifecycle import LifecycleManager
from .metrics import MetricsCollector
from .models import ServiceDefinition
from .utils import get_compose_path

logger = logging.getLogger('cronos.context')

ENV_PREFIX = 'CRONOS_'
ENGINE_CHOICES = ('auto', 'docker', 'podman')


@dataclass
class Settings:
    """Runtime configuration, read from CRONOS_* environment variables."""
    engine: str = 'auto'
    compose_file: Optional[Path] = None
    project_dir: Optional[Path] = None
    health_timeout: float = 30.0
    health_poll_interval: float = 1.0
    health_grace_period: float = 2.0
    restart_delay: float = 2.0
    event_buffer_size: int = 100
    urgent_threshold: int = 5
    metrics_interval: float = 2.0
    log_dir: Path = field(default_factory=lambda: Path.home() / '.cronos' / 'logs')
    debug: bool = False

    @classmethod
    def from_env(cls, env_file: Optional[str] = None, environ: Optional[Mapping[str, str]] = None) -> 'Settings':
        """
        Build settings from the environment.

        A ``.env`` file is loaded first (``env_file`` or the nearest one to the
        working directory); variables already set take precedence.

        Raises:
            ConfigurationError: If a value cannot be converted
        """
        if environ is None:
            load_dotenv(env_file or find_dotenv(usecwd=True), override=False)
            environ = os.environ

        settings = cls()
        for f in fields(cls):
            raw = environ.get(f"{ENV_PREFIX}{f.name.upper()}")
            if raw is None or raw.strip() == '':
                continue
            setattr(settings, f.name, _convert(f.name, getattr(settings, f.name), raw.strip()))

        settings.validate()
        return settings

    def validate(self):
        if self.engine not in ENGINE_CHOICES:
            raise ConfigurationError(
                f"Invalid engine '{self.engine}', expected one of: {', '.join(ENGINE_CHOICES)}"
            )
        for name in ('health_timeout', 'health_poll_interval', 'metrics_interval'):
            if getattr(self, name) <= 0:
                raise ConfigurationError(f"{name} must be positive")
        for name in ('health_grace_period', 'restart_delay'):
            if getattr(self, name) < 0:
                raise ConfigurationError(f"{name} must not be negative")
        if self.event_buffer_size < 1:
            raise ConfigurationError("event_buffer_size must be at least 1")


def _convert(name: str, default, raw: str):
    if name in ('compose_file', 'project_dir', 'log_dir'):
        return Path(raw).expanduser()
    if name == 'debug':
        return raw.lower() in ('1', 'true', 'yes', 'on')
    if name == 'engine':
        return raw.lower()
    try:
        return type(default)(raw)
    except ValueError:
        raise ConfigurationError(f"Invalid value for {ENV_PREFIX}{name.upper()}: {raw!r}")


class AppContext:
    """
    Owns the engine, event hub, lifecycle manager and metrics collector.

    Built once at startup and passed to whatever needs the components.
    """

    def __init__(self, settings: Optional[Settings] = None, runner=None, spawner=None, engine=None):
        self.settings = settings or Settings()
        s = self.settings

        self.engine = engine or ContainerEngine(
            preference=s.engine,
            compose_file=s.compose_file,
            cwd=s.project_dir,
            restart_delay=s.restart_delay,
            runner=runner,
            spawner=spawner,
        )
        self.events = EventHub(buffer_size=s.event_buffer_size, urgent_threshold=s.urgent_threshold)
        self.lifecycle = LifecycleManager(self.engine, self.events)
        self.metrics = MetricsCollector(self.engine, self.events, interval=s.metrics_interval)
        self.definitions: List[ServiceDefinition] = []

    def load_definitions(self) -> List[ServiceDefinition]:
        """Read service definitions from the configured or discovered compose file."""
        path = self.settings.compose_file or get_compose_path(self.settings.project_dir)
        if path is None:
            raise ComposeFileNotFound()
        compose = ComposeConfig(path)
        self.definitions = compose.definitions
        self.lifecycle.set_definitions(self.definitions)
        logger.info(f"Loaded {len(self.definitions)} services from {compose.path}")
        return self.definitions

    def resolver(self, definitions: Optional[List[ServiceDefinition]] = None) -> DependencyResolver:
        s = self.settings
        return DependencyResolver(
            definitions if definitions is not None else self.definitions,
            self.lifecycle,
            self.events,
            health_timeout=s.health_timeout,
            poll_interval=s.health_poll_interval,
            grace_period=s.health_grace_period,
        )

    async def initialize(self) -> str:
        """Detect the runtime and start event dispatch."""
        status = await self.engine.initialize()
        await self.events.start()
        self.events.emit(ENGINE_STATUS, {
            'status': status,
            'engine': self.engine.name,
        }, priority=PRIORITY_HIGH if self.engine.offline else PRIORITY_NORMAL)
        return status

    async def close(self):
        await self.metrics.stop()
        await self.events.stop()
