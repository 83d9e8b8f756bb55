"""
Priority-aware publish/subscribe hub for lifecycle and metrics events.

Events are queued by priority, then arrival. Events above the urgent
threshold skip the queue and are delivered straight away when an event loop
is running. Every type keeps a bounded replay buffer for late subscribers.
"""
import asyncio
import copy
import heapq
import inspect
import itertools
import logging
from collections import defaultdict, deque
from datetime import datetime
from types import MappingProxyType
from typing import Any, Awaitable, Callable, Deque, Dict, List, Mapping, Optional, Set, Tuple, Union

from .models import Event

logger = logging.getLogger('cronos.events')

# Event types
CONTAINER_ACTION = 'container.action'
CONTAINER_STATUS = 'container.status'
CONTAINER_ERROR = 'container.error'
CONTAINER_DEPENDENTS_WARNING = 'container.dependents_warning'
CONTAINERS_REFRESHED = 'containers.refreshed'
DEPENDENCY_NODE_STARTED = 'dependency.node_started'
DEPENDENCY_CHAIN_FAILED = 'dependency.chain_failed'
ENGINE_STATUS = 'engine.status'
METRICS_UPDATE = 'metrics.update'

WILDCARD = '*'

PRIORITY_NORMAL = 0
PRIORITY_HIGH = 5
PRIORITY_URGENT = 10
DEFAULT_URGENT_THRESHOLD = 5

Subscriber = Callable[[Event], Union[None, Awaitable[None]]]


def _freeze_value(value: Any) -> Any:
    if isinstance(value, Mapping):
        return MappingProxyType({key: _freeze_value(item) for key, item in value.items()})
    if isinstance(value, (list, tuple)):
        return tuple(_freeze_value(item) for item in value)
    if isinstance(value, (set, frozenset)):
        return frozenset(_freeze_value(item) for item in value)
    return copy.deepcopy(value)


def _freeze(data: Optional[Mapping[str, Any]]) -> Mapping[str, Any]:
    """Read-only copy of a payload; nested mappings and sequences are frozen too."""
    return _freeze_value(data or {})


class EventHub:
    """
    Publish/subscribe bus with priority ordering and replay.

    Attributes:
        buffer_size (int): Events kept per type for replay
        urgent_threshold (int): Priorities above this are delivered immediately
    """

    def __init__(self, buffer_size: int = 100, urgent_threshold: int = DEFAULT_URGENT_THRESHOLD):
        self.buffer_size = buffer_size
        self.urgent_threshold = urgent_threshold

        self._subscribers: Dict[str, List[Subscriber]] = defaultdict(list)
        self._buffers: Dict[str, Deque[Event]] = defaultdict(lambda: deque(maxlen=self.buffer_size))
        self._queue: List[Tuple[int, int, Event]] = []
        self._sequence = itertools.count()
        self._urgent_tasks: Set[asyncio.Task] = set()

        self._dispatcher: Optional[asyncio.Task] = None
        self._wakeup: Optional[asyncio.Event] = None
        self._flush_lock: Optional[asyncio.Lock] = None
        self._running = False

        self._emitted = 0
        self._delivered = 0
        self._failed = 0

    # Subscription

    def subscribe(self, event_type: str, subscriber: Subscriber) -> Callable[[], None]:
        """
        Register a subscriber for an event type, or '*' for all types.

        Returns:
            A callable that removes the subscription
        """
        self._subscribers[event_type].append(subscriber)
        logger.debug(f"Subscribed {getattr(subscriber, '__name__', subscriber)} to {event_type}")

        def unsubscribe():
            self.unsubscribe(event_type, subscriber)

        return unsubscribe

    def unsubscribe(self, event_type: str, subscriber: Subscriber):
        subscribers = self._subscribers.get(event_type, [])
        if subscriber in subscribers:
            subscribers.remove(subscriber)

    # Emission

    def emit(self, event_type: str, data: Optional[Mapping[str, Any]] = None, priority: int = PRIORITY_NORMAL) -> Event:
        """
        Wrap data in an Event, buffer it for replay and schedule delivery.

        Args:
            event_type: Event type tag
            data: Payload, copied so later changes by the caller are not seen
            priority: 0 for normal; above the urgent threshold is urgent

        Returns:
            The enqueued Event
        """
        event = Event(
            type=event_type,
            data=_freeze(data),
            priority=priority,
            sequence=next(self._sequence),
        )
        self._buffers[event_type].append(event)
        self._emitted += 1

        if priority > self.urgent_threshold and self._dispatch_now(event):
            return event

        heapq.heappush(self._queue, (-priority, event.sequence, event))
        if self._wakeup is not None:
            self._wakeup.set()
        return event

    def _dispatch_now(self, event: Event) -> bool:
        try:
            loop = asyncio.get_running_loop()
        except RuntimeError:
            return False
        task = loop.create_task(self._deliver(event))
        self._urgent_tasks.add(task)
        task.add_done_callback(self._urgent_tasks.discard)
        return True

    # Delivery

    def _subscribers_for(self, event_type: str) -> List[Subscriber]:
        return list(self._subscribers.get(event_type, [])) + list(self._subscribers.get(WILDCARD, []))

    async def _call(self, subscriber: Subscriber, event: Event) -> bool:
        try:
            result = subscriber(event)
            if inspect.isawaitable(result):
                await result
            return True
        except Exception as e:
            self._failed += 1
            logger.error(
                f"Subscriber {getattr(subscriber, '__name__', subscriber)} failed on {event.type}: {e}"
            )
            return False

    async def _deliver(self, event: Event) -> int:
        delivered = 0
        for subscriber in self._subscribers_for(event.type):
            if await self._call(subscriber, event):
                delivered += 1
        self._delivered += delivered
        return delivered

    async def flush(self) -> int:
        """Deliver every queued event in priority-then-arrival order."""
        if self._flush_lock is None:
            self._flush_lock = asyncio.Lock()
        count = 0
        async with self._flush_lock:
            while self._queue:
                _, _, event = heapq.heappop(self._queue)
                await self._deliver(event)
                count += 1
        return count

    async def _dispatch_loop(self):
        logger.debug("Event dispatcher started")
        while self._running:
            await self._wakeup.wait()
            self._wakeup.clear()
            await self.flush()
        logger.debug("Event dispatcher stopped")

    async def start(self):
        """Start the background dispatcher."""
        if self._running:
            return
        self._running = True
        self._wakeup = asyncio.Event()
        self._flush_lock = asyncio.Lock()
        if self._queue:
            self._wakeup.set()
        self._dispatcher = asyncio.create_task(self._dispatch_loop())

    async def stop(self):
        """Stop the dispatcher after draining queued and urgent events."""
        if self._running:
            self._running = False
            self._wakeup.set()
            await self._dispatcher
            self._dispatcher = None
            self._wakeup = None
        await self.flush()
        if self._urgent_tasks:
            await asyncio.gather(*list(self._urgent_tasks), return_exceptions=True)

    # Replay

    def history(self, event_type: str, since: Optional[datetime] = None) -> List[Event]:
        events = list(self._buffers.get(event_type, ()))
        if since is not None:
            events = [e for e in events if e.timestamp > since]
        return events

    async def replay_events(self, event_type: str, subscriber: Subscriber, since: Optional[datetime] = None) -> int:
        """
        Deliver buffered history of a type to a single subscriber.

        Args:
            event_type: Type whose buffer is replayed
            subscriber: Late subscriber receiving the events
            since: Only replay events emitted after this time

        Returns:
            Number of events delivered successfully
        """
        delivered = 0
        for event in self.history(event_type, since):
            if await self._call(subscriber, event):
                delivered += 1
        logger.debug(f"Replayed {delivered} {event_type} events")
        return delivered

    def get_stats(self) -> Dict[str, Any]:
        return {
            'emitted': self._emitted,
            'delivered': self._delivered,
            'failed': self._failed,
            'queued': len(self._queue),
            'running': self._running,
            'types': sorted(self._buffers.keys()),
        }
