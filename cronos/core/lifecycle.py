"""
Container lifecycle state machine.

Actions are validated against the container's current status before they
reach the runtime, and every executed action refreshes the container records
and emits an event.
"""
import asyncio
import inspect
import logging
import time
from typing import Any, Awaitable, Callable, Dict, FrozenSet, List, Optional, Union

from .events import (
    CONTAINER_ACTION,
    CONTAINER_DEPENDENTS_WARNING,
    CONTAINER_ERROR,
    CONTAINER_STATUS,
    CONTAINERS_REFRESHED,
    PRIORITY_HIGH,
    PRIORITY_URGENT,
    EventHub,
)
from .exceptions import (
    CommandExecutionError,
    ContainerActionError,
    InvalidActionError,
    ResourceConflictError,
    ServiceNotFoundError,
)
from .models import (
    ActionRequest,
    ActionResult,
    ContainerAction,
    ContainerRecord,
    ContainerStatus,
    HealthStatus,
    ServiceDefinition,
    ServiceHealth,
    ServiceHealthStatus,
    host_port,
)
from .result import Err, Ok, Result
from .utils import get_contextual_logger

logger = logging.getLogger('cronos.lifecycle')

S = ContainerStatus
A = ContainerAction

TRANSITIONS: Dict[ContainerStatus, FrozenSet[ContainerStatus]] = {
    S.CREATED: frozenset({S.RUNNING, S.REMOVED}),
    S.RUNNING: frozenset({S.STOPPED, S.PAUSED, S.RESTARTING}),
    S.STOPPED: frozenset({S.RUNNING, S.REMOVED}),
    S.PAUSED: frozenset({S.RUNNING, S.STOPPED}),
    S.RESTARTING: frozenset({S.RUNNING, S.STOPPED}),
    S.DEAD: frozenset({S.REMOVED}),
    S.EXITED: frozenset({S.RUNNING, S.REMOVED}),
    S.REMOVED: frozenset(),
}

# Current states each action may be requested from
ACTION_REQUIREMENTS: Dict[ContainerAction, FrozenSet[ContainerStatus]] = {
    A.START: frozenset({S.CREATED, S.STOPPED, S.DEAD, S.EXITED}),
    A.STOP: frozenset({S.RUNNING, S.PAUSED}),
    A.RESTART: frozenset({S.RUNNING, S.STOPPED, S.EXITED}),
    A.PAUSE: frozenset({S.RUNNING}),
    A.UNPAUSE: frozenset({S.PAUSED}),
    A.REMOVE: frozenset({S.CREATED, S.STOPPED, S.DEAD, S.EXITED}),
    A.LOGS: frozenset(set(S) - {S.REMOVED}),
    A.EXEC: frozenset({S.RUNNING}),
}

# Actions that change state and therefore refresh records afterwards
MUTATING_ACTIONS = frozenset({A.START, A.STOP, A.RESTART, A.PAUSE, A.UNPAUSE, A.REMOVE})

PreActionHook = Callable[[ContainerRecord, ContainerAction], Union[bool, Awaitable[bool]]]
PostActionHook = Callable[[ContainerRecord, ContainerAction, ActionResult], Union[None, Awaitable[None]]]


def can_transition(current: ContainerStatus, target: ContainerStatus) -> bool:
    return target in TRANSITIONS.get(current, frozenset())


def valid_actions_for(status: ContainerStatus) -> List[ContainerAction]:
    return [action for action in ContainerAction if status in ACTION_REQUIREMENTS[action]]


async def _maybe_await(value):
    if inspect.isawaitable(value):
        return await value
    return value


class LifecycleManager:
    """
    Validates and executes actions against containers.

    Attributes:
        engine: ContainerEngine used for runtime calls
        events: EventHub receiving lifecycle events
        definitions (Dict[str, ServiceDefinition]): Known service definitions
        dependency_graph: Graph used to warn about running dependents
    """

    def __init__(self, engine, events: EventHub, definitions: Optional[List[ServiceDefinition]] = None):
        self.engine = engine
        self.events = events
        self.definitions: Dict[str, ServiceDefinition] = {d.name: d for d in definitions or []}
        self.dependency_graph = None

        self._records: Dict[str, ContainerRecord] = {}
        self._locks: Dict[str, asyncio.Lock] = {}
        self._pre_hooks: List[PreActionHook] = []
        self._post_hooks: List[PostActionHook] = []

    @property
    def records(self) -> List[ContainerRecord]:
        return list(self._records.values())

    def set_definitions(self, definitions: List[ServiceDefinition]):
        self.definitions = {d.name: d for d in definitions}

    def add_pre_hook(self, hook: PreActionHook):
        """Register a hook run before each action; returning False vetoes it."""
        self._pre_hooks.append(hook)

    def add_post_hook(self, hook: PostActionHook):
        self._post_hooks.append(hook)

    def _lock_for(self, key: str) -> asyncio.Lock:
        if key not in self._locks:
            self._locks[key] = asyncio.Lock()
        return self._locks[key]

    # Records

    async def refresh(self) -> List[ContainerRecord]:
        """Replace all records with the runtime's current listing."""
        listing = await self.engine.list_containers()
        previous = self._records
        self._records = {record.id: record for record in listing}

        for record in listing:
            old = previous.get(record.id)
            if old is not None and old.status != record.status:
                if not can_transition(old.status, record.status):
                    logger.debug(
                        f"Unexpected transition for {record.name}: "
                        f"{old.status.value} -> {record.status.value}"
                    )
                self.events.emit(CONTAINER_STATUS, {
                    'container': record.name,
                    'previous': old.status.value,
                    'current': record.status.value,
                })
        for record_id, old in previous.items():
            if record_id not in self._records and old.status != S.REMOVED:
                self.events.emit(CONTAINER_STATUS, {
                    'container': old.name,
                    'previous': old.status.value,
                    'current': S.REMOVED.value,
                })

        self.events.emit(CONTAINERS_REFRESHED, {
            'containers': [record.to_dict() for record in listing],
        })
        return listing

    def find_record(self, name_or_id: str) -> Optional[ContainerRecord]:
        """
        Find a record by id, id prefix, exact name, or compose-style name
        (``project-service-1`` / ``project_service_1``).
        """
        if name_or_id in self._records:
            return self._records[name_or_id]
        for record in self._records.values():
            if record.name == name_or_id:
                return record
        for record in self._records.values():
            if len(name_or_id) >= 12 and record.id.startswith(name_or_id):
                return record
        for record in self._records.values():
            for sep in ('-', '_'):
                parts = record.name.split(sep)
                if len(parts) >= 3 and parts[-1].isdigit() and sep.join(parts[1:-1]) == name_or_id:
                    return record
        return None

    # Validation

    def validate_action(self, container: ContainerRecord, action: Union[str, ContainerAction]) -> Result:
        """
        Check that action is allowed from the container's current status.

        Returns:
            Ok(action) or Err(InvalidActionError) listing the valid actions
        """
        action = ContainerAction(action)
        if container.status in ACTION_REQUIREMENTS[action]:
            return Ok(action)
        return Err(InvalidActionError(
            container.name,
            action.value,
            container.status.value,
            [a.value for a in valid_actions_for(container.status)],
        ))

    def running_dependents(self, container: ContainerRecord) -> List[str]:
        """Names of running services that depend on this container's service."""
        if self.dependency_graph is None:
            return []
        service = self._service_name(container)
        running = []
        for dependent in sorted(self.dependency_graph.dependents.get(service, ())):
            record = self.find_record(dependent)
            if record is not None and record.status == S.RUNNING:
                running.append(dependent)
        return running

    def check_resource_conflicts(self, container: ContainerRecord) -> List[str]:
        """
        Find host ports and bind mounts the container would share with a
        running container.
        """
        conflicts = []
        service = self._service_name(container)
        definition = self.definitions.get(service)

        wanted_ports = set(container.host_ports)
        if definition:
            wanted_ports.update(p for p in (host_port(m) for m in definition.ports) if p)

        for other in self._records.values():
            if other.id == container.id or other.status != S.RUNNING:
                continue
            for port in sorted(wanted_ports.intersection(other.host_ports)):
                conflicts.append(f"port {port} is in use by {other.name}")

            other_definition = self.definitions.get(self._service_name(other))
            if definition and other_definition:
                shared = _writable_binds(definition).intersection(_writable_binds(other_definition))
                for source in sorted(shared):
                    conflicts.append(f"volume {source} is mounted read-write by {other.name}")
        return conflicts

    def _service_name(self, container: ContainerRecord) -> str:
        if container.name in self.definitions:
            return container.name
        for name in self.definitions:
            record = self.find_record(name)
            if record is not None and record.id == container.id:
                return name
        return container.name

    # Execution

    async def execute_action(
        self,
        container: ContainerRecord,
        action: Union[str, ContainerAction],
        command: Optional[str] = None,
    ) -> ActionResult:
        """
        Validate and run an action against a container.

        Runs pre-action hooks, the dependents warning (stop/remove), the
        resource conflict check (start), the runtime call, post-action hooks,
        a refresh and finally emits an event.

        Args:
            container: Target container record
            action: Action to execute
            command: Command line for exec

        Returns:
            ActionResult with timing and any warnings

        Raises:
            InvalidActionError: If the action is not valid in the current state
            ContainerActionError: If the runtime call or a pre-check failed
        """
        action = ContainerAction(action)
        log = get_contextual_logger('cronos.lifecycle', container=container.name, action=action.value)

        async with self._lock_for(container.id):
            # Re-read under the lock so queued requests see the latest state
            container = self._records.get(container.id, container)
            self.validate_action(container, action).unwrap()
            started = time.monotonic()
            result = ActionResult(
                container=container.name,
                action=action,
                success=False,
                previous_status=container.status,
            )

            for hook in self._pre_hooks:
                if await _maybe_await(hook(container, action)) is False:
                    log.info("Action vetoed by pre-action hook")
                    result.vetoed = True
                    result.duration = time.monotonic() - started
                    return result

            if action in (A.STOP, A.REMOVE):
                dependents = self.running_dependents(container)
                if dependents:
                    warning = f"Running services depend on {container.name}: {', '.join(dependents)}"
                    log.warning(warning)
                    result.warnings.append(warning)
                    self.events.emit(CONTAINER_DEPENDENTS_WARNING, {
                        'container': container.name,
                        'action': action.value,
                        'dependents': dependents,
                    }, priority=PRIORITY_HIGH)

            try:
                if action == A.START:
                    conflicts = self.check_resource_conflicts(container)
                    if conflicts:
                        raise ResourceConflictError(container.name, conflicts)
                log.info("Executing action")
                result.output = await self.engine.container_action(action, container.name, command)
            except Exception as e:
                result.duration = time.monotonic() - started
                log.error(f"Action failed after {result.duration:.2f}s: {e}")
                self._emit_failure(container.name, action, e, result.duration)
                raise ContainerActionError(container.name, action.value, e) from e

            result.success = True
            for hook in self._post_hooks:
                try:
                    await _maybe_await(hook(container, action, result))
                except Exception as e:
                    log.error(f"Post-action hook failed: {e}")
                    result.warnings.append(f"post-action hook failed: {e}")

            if action in MUTATING_ACTIONS:
                try:
                    await self.refresh()
                except CommandExecutionError as e:
                    raise ContainerActionError(container.name, action.value, e) from e
            current = self._records.get(container.id)
            result.current_status = current.status if current else S.REMOVED
            result.duration = time.monotonic() - started

        log.info(f"Action completed in {result.duration:.2f}s")
        self.events.emit(CONTAINER_ACTION, {
            'container': container.name,
            'action': action.value,
            'previous': result.previous_status.value,
            'current': result.current_status.value,
            'duration': result.duration,
            'warnings': list(result.warnings),
        })
        return result

    async def execute_request(self, request: ActionRequest) -> ActionResult:
        """Resolve the request's target and execute its action."""
        container = self.find_record(request.target)
        if container is None:
            await self.refresh()
            container = self.find_record(request.target)
        if container is None:
            raise ServiceNotFoundError(request.target)
        return await self.execute_action(container, request.action, request.command)

    async def start_service(self, name: str) -> ActionResult:
        """
        Start a service by name.

        An existing container is started (or unpaused); a service without a
        container is brought up through the compose front-end.
        A container that is already running is left untouched.
        """
        container = self.find_record(name)
        if container is None:
            await self.refresh()
            container = self.find_record(name)

        if container is not None:
            if container.status == S.RUNNING:
                logger.debug(f"{name} is already running")
                return ActionResult(
                    container=name,
                    action=A.START,
                    success=True,
                    previous_status=S.RUNNING,
                    current_status=S.RUNNING,
                )
            action = A.UNPAUSE if container.status == S.PAUSED else A.START
            return await self.execute_action(container, action)

        log = get_contextual_logger('cronos.lifecycle', container=name, action='start')
        async with self._lock_for(name):
            started = time.monotonic()
            try:
                log.info("Creating service container")
                await self.engine.start_services([name])
                await self.refresh()
            except Exception as e:
                duration = time.monotonic() - started
                self._emit_failure(name, A.START, e, duration)
                raise ContainerActionError(name, A.START.value, e) from e

            current = self.find_record(name)
            result = ActionResult(
                container=name,
                action=A.START,
                success=True,
                previous_status=None,
                current_status=current.status if current else None,
                duration=time.monotonic() - started,
            )

        self.events.emit(CONTAINER_ACTION, {
            'container': name,
            'action': A.START.value,
            'previous': None,
            'current': result.current_status.value if result.current_status else None,
            'duration': result.duration,
            'warnings': [],
        })
        return result

    def _emit_failure(self, container: str, action: ContainerAction, error: Exception, duration: float):
        payload: Dict[str, Any] = {
            'container': container,
            'action': action.value,
            'error': str(error),
            'duration': duration,
        }
        if isinstance(error, CommandExecutionError):
            payload['stderr'] = error.stderr
        self.events.emit(CONTAINER_ERROR, payload, priority=PRIORITY_URGENT)

    # Health

    async def check_service_health(self, name: str) -> ServiceHealth:
        """Report whether a service's container is running and healthy."""
        try:
            await self.refresh()
        except CommandExecutionError as e:
            return ServiceHealth(ServiceHealthStatus.ERROR, f"Could not list containers: {e.stderr or e}")

        container = self.find_record(name)
        if container is None:
            return ServiceHealth(ServiceHealthStatus.NOT_FOUND, f"No container found for {name}")
        if container.status != S.RUNNING:
            return ServiceHealth(ServiceHealthStatus.UNHEALTHY, f"Container is {container.status.value}")
        if container.health == HealthStatus.UNHEALTHY:
            return ServiceHealth(ServiceHealthStatus.UNHEALTHY, "Health check failing")
        if container.health == HealthStatus.UNKNOWN:
            return ServiceHealth(ServiceHealthStatus.UNHEALTHY, "Health check starting")
        if container.health == HealthStatus.HEALTHY:
            return ServiceHealth(ServiceHealthStatus.HEALTHY, "Container is healthy")
        return ServiceHealth(ServiceHealthStatus.HEALTHY, "Container is running (no health check)")


def _writable_binds(definition: ServiceDefinition) -> set:
    binds = set()
    for volume in definition.volumes:
        parts = volume.split(':')
        source = parts[0]
        mode = parts[2] if len(parts) > 2 else 'rw'
        if len(parts) > 1 and source.startswith(('/', '.', '~')) and 'ro' not in mode.split(','):
            binds.add(source)
    return binds
