"""
Dependency graph construction and ordered, health-gated startup.
"""
import asyncio
import logging
import time
from dataclasses import dataclass, field
from typing import Dict, Iterable, List, Optional

from .events import DEPENDENCY_CHAIN_FAILED, DEPENDENCY_NODE_STARTED, PRIORITY_URGENT
from .exceptions import (
    CircularDependencyError,
    CronosError,
    HealthCheckTimeoutError,
    OperationCancelledError,
    ServiceNotFoundError,
)
from .models import ContainerStatus, ServiceDefinition, ServiceHealth, ServiceHealthStatus
from .result import Err, Ok, Result

logger = logging.getLogger('cronos.dependencies')

NODE_ALREADY_RUNNING = 'already_running'
NODE_STARTED = 'started'
NODE_FAILED = 'failed'
NODE_SKIPPED = 'skipped'

_UNVISITED, _VISITING, _VISITED = 0, 1, 2


@dataclass
class DependencyGraph:
    """
    Forward and reverse dependency mappings.

    Attributes:
        dependencies: service -> services it depends on, in declaration order
        dependents: service -> services that depend on it
        missing: service -> declared dependencies that are not defined
    """
    dependencies: Dict[str, List[str]] = field(default_factory=dict)
    dependents: Dict[str, List[str]] = field(default_factory=dict)
    missing: Dict[str, List[str]] = field(default_factory=dict)

    @property
    def services(self) -> List[str]:
        return list(self.dependencies)


@dataclass
class NodeResult:
    name: str
    status: str
    message: str = ''
    duration: float = 0.0


@dataclass
class StartReport:
    """Outcome of a dependency-ordered start."""
    root: str
    order: List[str]
    success: bool = False
    started_count: int = 0
    results: Dict[str, NodeResult] = field(default_factory=dict)
    failed_node: Optional[str] = None
    error: Optional[Exception] = None


def _append_unique(target: List[str], values: Iterable[str]):
    for value in values:
        if value and value not in target:
            target.append(value)


def declared_dependencies(definition: ServiceDefinition) -> List[str]:
    """
    Union of depends_on, the service part of links and volumes_from sources.
    """
    names: List[str] = []
    _append_unique(names, (d.strip() for d in definition.depends_on))
    _append_unique(names, (link.split(':', 1)[0].strip() for link in definition.links))
    for source in definition.volumes_from:
        if source.startswith('container:'):
            continue
        _append_unique(names, [source.split(':', 1)[0].strip()])
    return names


def build_dependency_graph(definitions: Iterable[ServiceDefinition]) -> DependencyGraph:
    """Build the graph from scratch for the given definitions."""
    definitions = list(definitions)
    known = {d.name for d in definitions}
    graph = DependencyGraph()

    for definition in definitions:
        graph.dependencies[definition.name] = []
        graph.dependents.setdefault(definition.name, [])

    for definition in definitions:
        for dependency in declared_dependencies(definition):
            if dependency not in known:
                logger.warning(f"Service {definition.name} depends on undefined service {dependency}")
                graph.missing.setdefault(definition.name, []).append(dependency)
                continue
            graph.dependencies[definition.name].append(dependency)
            _append_unique(graph.dependents[dependency], [definition.name])

    logger.debug(f"Built dependency graph with {len(graph.dependencies)} services")
    return graph


class DependencyResolver:
    """
    Orders services by their dependencies and starts them one at a time.

    Attributes:
        lifecycle: LifecycleManager used to start and probe services
        events: EventHub receiving startup events
        health_timeout: Seconds to wait for a declared health probe
        poll_interval: Seconds between health polls
        grace_period: Seconds to wait for services without a health probe
    """

    def __init__(
        self,
        definitions: Iterable[ServiceDefinition],
        lifecycle,
        events,
        health_timeout: float = 30.0,
        poll_interval: float = 1.0,
        grace_period: float = 2.0,
    ):
        self.definitions: Dict[str, ServiceDefinition] = {d.name: d for d in definitions}
        self.lifecycle = lifecycle
        self.events = events
        self.health_timeout = health_timeout
        self.poll_interval = poll_interval
        self.grace_period = grace_period
        self.graph = self.build_dependency_graph()

    def build_dependency_graph(self, definitions: Optional[Iterable[ServiceDefinition]] = None) -> DependencyGraph:
        if definitions is not None:
            self.definitions = {d.name: d for d in definitions}
        self.graph = build_dependency_graph(self.definitions.values())
        self.lifecycle.dependency_graph = self.graph
        self.lifecycle.set_definitions(list(self.definitions.values()))
        return self.graph

    def calculate_start_order(self, root_id: Optional[str] = None) -> List[str]:
        """
        Depth-first post-order over the graph.

        Args:
            root_id: Service to start; all services when None

        Returns:
            Service names, each after all of its dependencies

        Raises:
            ServiceNotFoundError: If root_id is not defined
            CircularDependencyError: On the first node reached while still
                being visited
        """
        graph = self.graph
        if root_id is not None and root_id not in graph.dependencies:
            raise ServiceNotFoundError(root_id)

        marks = {name: _UNVISITED for name in graph.dependencies}
        order: List[str] = []
        path: List[str] = []

        def visit(root: str):
            if marks[root] == _VISITED:
                return
            marks[root] = _VISITING
            path.append(root)
            # One dependency iterator per node on the current path
            stack = [iter(graph.dependencies[root])]
            while stack:
                for dependency in stack[-1]:
                    if marks[dependency] == _VISITED:
                        continue
                    if marks[dependency] == _VISITING:
                        cycle = path[path.index(dependency):] + [dependency]
                        raise CircularDependencyError(dependency, cycle)
                    marks[dependency] = _VISITING
                    path.append(dependency)
                    stack.append(iter(graph.dependencies[dependency]))
                    break
                else:
                    stack.pop()
                    name = path.pop()
                    marks[name] = _VISITED
                    order.append(name)

        roots = [root_id] if root_id is not None else list(graph.dependencies)
        for root in roots:
            visit(root)
        return order

    async def _sleep_or_cancel(self, seconds: float, cancel_event: Optional[asyncio.Event]) -> bool:
        """Sleep, returning True early if cancel_event is set."""
        if cancel_event is None:
            await asyncio.sleep(seconds)
            return False
        if cancel_event.is_set():
            return True
        try:
            await asyncio.wait_for(cancel_event.wait(), timeout=seconds)
            return True
        except asyncio.TimeoutError:
            return False

    async def wait_for_healthy(
        self,
        name: str,
        timeout: Optional[float] = None,
        cancel_event: Optional[asyncio.Event] = None,
    ) -> Result:
        """
        Block until a service is healthy.

        Services without a health probe are assumed healthy after the grace
        period.

        Returns:
            Ok(ServiceHealth), or Err carrying HealthCheckTimeoutError or
            OperationCancelledError
        """
        definition = self.definitions.get(name)
        timeout = self.health_timeout if timeout is None else timeout

        if definition is None or not definition.health_check:
            if await self._sleep_or_cancel(self.grace_period, cancel_event):
                return Err(OperationCancelledError(name))
            return Ok(ServiceHealth(ServiceHealthStatus.HEALTHY, "Assumed healthy after grace period"))

        loop = asyncio.get_running_loop()
        deadline = loop.time() + timeout
        while True:
            health = await self.lifecycle.check_service_health(name)
            if health.is_healthy:
                return Ok(health)
            remaining = deadline - loop.time()
            if remaining <= 0:
                logger.warning(f"Health check for {name} timed out: {health.message}")
                return Err(HealthCheckTimeoutError(name, timeout))
            logger.debug(f"Waiting for {name}: {health.message}")
            if await self._sleep_or_cancel(min(self.poll_interval, remaining), cancel_event):
                return Err(OperationCancelledError(name))

    async def start_with_dependencies(self, root_id: str, cancel_event: Optional[asyncio.Event] = None) -> StartReport:
        """
        Start a service and everything it depends on, in order.

        Nodes are started strictly sequentially. The first failing node
        aborts the chain; services already started are left running.
        Container records are refreshed once up front, so a node counts as
        already running only if the runtime reports it so.

        Raises:
            CircularDependencyError: If the graph has a cycle
            ServiceNotFoundError: If root_id is not defined
            CommandExecutionError: If the container listing fails
        """
        self.build_dependency_graph()
        order = self.calculate_start_order(root_id)
        await self.lifecycle.refresh()
        report = StartReport(root=root_id, order=order)
        logger.info(f"Starting {root_id} with dependencies: {' -> '.join(order)}")

        for index, name in enumerate(order):
            started = time.monotonic()
            if cancel_event is not None and cancel_event.is_set():
                self._abort(report, order, index, name, OperationCancelledError(name, 'start'))
                return report

            try:
                record = self.lifecycle.find_record(name)
                if record is not None and record.status == ContainerStatus.RUNNING:
                    report.results[name] = NodeResult(name, NODE_ALREADY_RUNNING, "Already running")
                    continue

                await self.lifecycle.start_service(name)
                health = (await self.wait_for_healthy(name, cancel_event=cancel_event)).unwrap()
            except CronosError as e:
                report.results[name] = NodeResult(name, NODE_FAILED, str(e), time.monotonic() - started)
                self._abort(report, order, index, name, e)
                return report

            duration = time.monotonic() - started
            report.results[name] = NodeResult(name, NODE_STARTED, health.message, duration)
            report.started_count += 1
            self.events.emit(DEPENDENCY_NODE_STARTED, {
                'root': root_id,
                'service': name,
                'position': index + 1,
                'total': len(order),
                'duration': duration,
            })

        report.success = True
        logger.info(f"Started {report.started_count} of {len(order)} services for {root_id}")
        return report

    def _abort(self, report: StartReport, order: List[str], index: int, name: str, error: Exception):
        report.failed_node = name
        report.error = error
        if name not in report.results:
            report.results[name] = NodeResult(name, NODE_FAILED, str(error))
        for skipped in order[index + 1:]:
            report.results[skipped] = NodeResult(skipped, NODE_SKIPPED, f"Not started: {name} failed")
        logger.error(f"Dependency chain for {report.root} aborted at {name}: {error}")
        self.events.emit(DEPENDENCY_CHAIN_FAILED, {
            'root': report.root,
            'service': name,
            'error': str(error),
            'started': [n for n, r in report.results.items() if r.status == NODE_STARTED],
        }, priority=PRIORITY_URGENT)
