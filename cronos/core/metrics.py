"""
Periodic resource usage collection.
"""
import asyncio
import logging
from typing import Dict, Optional

from .events import METRICS_UPDATE, EventHub
from .models import ContainerMetrics
from .parser import parse_stats_line

logger = logging.getLogger('cronos.metrics')


class MetricsCollector:
    """
    Polls runtime stats and publishes them as metrics.update events.

    Attributes:
        engine: ContainerEngine queried for stats
        events: EventHub receiving snapshots
        interval (float): Seconds between collections
        latest (Dict[str, ContainerMetrics]): Most recent snapshot by container
    """

    def __init__(self, engine, events: EventHub, interval: float = 2.0):
        self.engine = engine
        self.events = events
        self.interval = interval
        self.latest: Dict[str, ContainerMetrics] = {}
        self._task: Optional[asyncio.Task] = None

    async def collect_once(self) -> Dict[str, ContainerMetrics]:
        """Collect one snapshot. Failures are logged and yield an empty snapshot."""
        try:
            rows = await self.engine.get_stats()
        except Exception as e:
            logger.error(f"Error collecting metrics: {e}")
            return {}

        snapshot = {}
        for row in rows:
            metrics = parse_stats_line(row)
            if metrics is None:
                logger.debug(f"Skipping stats row: {row!r}")
                continue
            snapshot[metrics.name] = metrics

        self.latest = snapshot
        self.events.emit(METRICS_UPDATE, {
            'containers': {
                name: {
                    'cpu': m.cpu,
                    'memory_used': m.memory_used,
                    'memory_limit': m.memory_limit,
                    'memory_percentage': m.memory_percentage,
                    'network_rx': m.network_rx,
                    'network_tx': m.network_tx,
                }
                for name, m in snapshot.items()
            },
        })
        return snapshot

    async def _run(self):
        logger.info(f"Metrics collection started (interval {self.interval}s)")
        while True:
            await self.collect_once()
            await asyncio.sleep(self.interval)

    @property
    def running(self) -> bool:
        return self._task is not None and not self._task.done()

    def start(self):
        if self.running:
            return
        self._task = asyncio.create_task(self._run())

    async def stop(self):
        if self._task is None:
            return
        self._task.cancel()
        try:
            await self._task
        except asyncio.CancelledError:
            pass
        self._task = None
        logger.info("Metrics collection stopped")
