"""
Data model shared by the engine, lifecycle and dependency modules.
"""
from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Dict, List, Mapping, Optional, Tuple


class ContainerStatus(str, Enum):
    """Lifecycle state of a container."""
    CREATED = 'created'
    RUNNING = 'running'
    STOPPED = 'stopped'
    PAUSED = 'paused'
    RESTARTING = 'restarting'
    DEAD = 'dead'
    EXITED = 'exited'
    REMOVED = 'removed'


class HealthStatus(str, Enum):
    HEALTHY = 'healthy'
    UNHEALTHY = 'unhealthy'
    UNKNOWN = 'unknown'


class ContainerAction(str, Enum):
    """Actions that can be requested against a container."""
    START = 'start'
    STOP = 'stop'
    RESTART = 'restart'
    PAUSE = 'pause'
    UNPAUSE = 'unpause'
    REMOVE = 'remove'
    LOGS = 'logs'
    EXEC = 'exec'


class ServiceHealthStatus(str, Enum):
    NOT_FOUND = 'not_found'
    UNHEALTHY = 'unhealthy'
    HEALTHY = 'healthy'
    ERROR = 'error'


@dataclass(frozen=True)
class ContainerRecord:
    """
    A container as reported by the runtime.

    Records are replaced wholesale on every refresh and never mutated.

    Attributes:
        id: Runtime container id
        name: Human readable container name
        image: Image reference
        status: Normalized lifecycle state
        ports: Port mappings in runtime order
        created_at: Creation time, if the runtime value could be parsed
        health: Health status when the container declares a health check
    """
    id: str
    name: str
    image: str
    status: ContainerStatus
    ports: Tuple[str, ...] = ()
    created_at: Optional[datetime] = None
    health: Optional[HealthStatus] = None

    @property
    def host_ports(self) -> List[str]:
        """Host side of each port mapping, deduplicated."""
        seen = []
        for mapping in self.ports:
            host = host_port(mapping)
            if host and host not in seen:
                seen.append(host)
        return seen

    def to_dict(self) -> Dict[str, Any]:
        return {
            'id': self.id,
            'name': self.name,
            'image': self.image,
            'status': self.status.value,
            'ports': list(self.ports),
            'created_at': self.created_at.isoformat() if self.created_at else None,
            'health': self.health.value if self.health else None,
        }


def host_port(mapping: str) -> Optional[str]:
    """
    Extract the host port from a port mapping.

    Handles runtime output (``0.0.0.0:8080->80/tcp``) and declared
    ``HOST:CONTAINER`` pairs. Returns None for unpublished ports.
    """
    mapping = mapping.strip()
    if '->' in mapping:
        published = mapping.split('->', 1)[0]
        port = published.rsplit(':', 1)[-1]
        return port or None
    parts = mapping.split('/')[0].split(':')
    if len(parts) >= 2:
        # ip:host:container or host:container
        return parts[-2] or None
    return None


@dataclass(frozen=True)
class ServiceDefinition:
    """
    A declared service, immutable for the duration of a run.

    Attributes:
        name: Unique service name
        depends_on: Services this one must start after
        links: Network links, ``service`` or ``service:alias``
        volumes_from: Shared volume sources, ``service`` or ``service:mode``
        volumes: Volume mounts ``source:target[:mode]``
        ports: Declared port mappings
        image: Image reference
        directory: Directory the service's compose file lives in
        health_check: Whether the service declares a health probe
    """
    name: str
    depends_on: Tuple[str, ...] = ()
    links: Tuple[str, ...] = ()
    volumes_from: Tuple[str, ...] = ()
    volumes: Tuple[str, ...] = ()
    ports: Tuple[str, ...] = ()
    image: Optional[str] = None
    directory: Optional[str] = None
    health_check: bool = False


@dataclass(frozen=True)
class ActionRequest:
    """A transient request to run an action against a container."""
    target: str
    action: ContainerAction
    command: Optional[str] = None


@dataclass
class ActionResult:
    """Outcome of a lifecycle action."""
    container: str
    action: ContainerAction
    success: bool
    duration: float = 0.0
    vetoed: bool = False
    previous_status: Optional[ContainerStatus] = None
    current_status: Optional[ContainerStatus] = None
    warnings: List[str] = field(default_factory=list)
    output: Any = None


@dataclass(frozen=True)
class ServiceHealth:
    status: ServiceHealthStatus
    message: str

    @property
    def is_healthy(self) -> bool:
        return self.status == ServiceHealthStatus.HEALTHY


@dataclass(frozen=True)
class ContainerMetrics:
    """Resource usage parsed from one stats row. Sizes are in bytes."""
    name: str
    cpu: float
    memory_used: float
    memory_limit: float
    memory_percentage: float
    network_rx: float
    network_tx: float


@dataclass(frozen=True)
class Event:
    """
    An immutable event distributed by the event hub.

    Attributes:
        type: Event type tag, e.g. ``container.action``
        data: Read-only payload
        timestamp: UTC time the event was emitted
        priority: 0 is normal, values above the urgent threshold are urgent
        sequence: Arrival order within the hub
    """
    type: str
    data: Mapping[str, Any]
    timestamp: datetime = field(default_factory=lambda: datetime.now(timezone.utc))
    priority: int = 0
    sequence: int = 0
