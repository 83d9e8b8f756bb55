"""
Parsing of tabular runtime output into typed records.

Runtime listings are tab separated with a fixed column order:
id, name, image, status text, ports, created at.
"""
import logging
import re
from datetime import datetime
from typing import List, Optional

from .models import ContainerMetrics, ContainerRecord, ContainerStatus, HealthStatus

logger = logging.getLogger('cronos.parser')

CONTAINER_COLUMNS = 6
STATS_COLUMNS = 5

# Ordered: the first matching substring wins
_STATUS_PATTERNS = (
    (('up',), ContainerStatus.RUNNING),
    (('exited', 'exit'), ContainerStatus.STOPPED),
    (('paused',), ContainerStatus.PAUSED),
    (('restarting',), ContainerStatus.RESTARTING),
    (('dead',), ContainerStatus.DEAD),
)

_FRACTION_PATTERN = re.compile(r'(\d{2}:\d{2}:\d{2})\.\d+')
_TIMESTAMP_FORMATS = (
    '%Y-%m-%d %H:%M:%S %z',
    '%Y-%m-%d %H:%M:%S',
    '%Y-%m-%dT%H:%M:%S%z',
    '%Y-%m-%dT%H:%M:%S',
    '%Y-%m-%d',
)

_BINARY_UNITS = (('ki', 1024), ('mi', 1024 ** 2), ('gi', 1024 ** 3), ('ti', 1024 ** 4))
_DECIMAL_UNITS = (('kb', 1000), ('mb', 1000 ** 2), ('gb', 1000 ** 3), ('tb', 1000 ** 4))


def parse_status(status_text: str) -> ContainerStatus:
    """Normalize runtime status text to a ContainerStatus."""
    lowered = status_text.lower()
    for needles, status in _STATUS_PATTERNS:
        if any(needle in lowered for needle in needles):
            return status
    return ContainerStatus.STOPPED


def parse_health(status_text: str) -> Optional[HealthStatus]:
    """Read the health annotation Docker and Podman append to status text."""
    lowered = status_text.lower()
    if '(unhealthy)' in lowered:
        return HealthStatus.UNHEALTHY
    if '(healthy)' in lowered:
        return HealthStatus.HEALTHY
    if 'health: starting' in lowered or '(starting)' in lowered:
        return HealthStatus.UNKNOWN
    return None


def parse_ports(ports_text: str) -> List[str]:
    ports_text = ports_text.strip()
    if not ports_text or ports_text == '-':
        return []
    return [p.strip() for p in ports_text.split(',') if p.strip()]


def parse_created(created_text: str) -> Optional[datetime]:
    """Parse a runtime creation timestamp, returning None when unrecognized."""
    text = _FRACTION_PATTERN.sub(r'\1', created_text.strip())
    # Drop a trailing zone name such as "UTC" or "CEST"
    parts = text.split(' ')
    if len(parts) == 4 and parts[3].isalpha():
        text = ' '.join(parts[:3])
    for fmt in _TIMESTAMP_FORMATS:
        try:
            return datetime.strptime(text, fmt)
        except ValueError:
            continue
    return None


def parse_container_line(line: str) -> Optional[ContainerRecord]:
    """
    Convert one tab separated line into a ContainerRecord.

    Args:
        line: Raw runtime output line

    Returns:
        The parsed record, or None if the line has the wrong column count
    """
    columns = line.rstrip('\r\n').split('\t')
    if len(columns) != CONTAINER_COLUMNS:
        logger.debug(f"Skipping malformed line ({len(columns)} columns): {line!r}")
        return None

    container_id, name, image, status_text, ports, created = (c.strip() for c in columns)
    return ContainerRecord(
        id=container_id,
        name=name,
        image=image,
        status=parse_status(status_text),
        ports=tuple(parse_ports(ports)),
        created_at=parse_created(created),
        health=parse_health(status_text),
    )


def is_header(line: str) -> bool:
    return line.upper().startswith(('CONTAINER ID', 'CONTAINER\t', 'NAME\t'))


def parse_container_listing(output: str) -> List[ContainerRecord]:
    """Parse a full listing, skipping headers, blank and malformed lines."""
    records = []
    for line in output.splitlines():
        if not line.strip() or is_header(line):
            continue
        record = parse_container_line(line)
        if record is not None:
            records.append(record)
    return records


def parse_memory_value(value: str) -> float:
    """Convert a size such as ``12.5MiB`` or ``3kB`` to bytes."""
    cleaned = value.strip().lower()
    match = re.match(r'[-+]?\d*\.?\d+', cleaned)
    if not match:
        return 0.0
    number = float(match.group(0))
    for suffix, factor in _BINARY_UNITS:
        if suffix in cleaned:
            return number * factor
    for suffix, factor in _DECIMAL_UNITS:
        if suffix in cleaned:
            return number * factor
    return number


def _parse_percentage(value: str) -> float:
    try:
        return float(value.replace('%', '').strip() or 0)
    except ValueError:
        return 0.0


def parse_stats_line(line: str) -> Optional[ContainerMetrics]:
    """Parse one stats row: name, CPU %, used / limit, mem %, rx / tx."""
    parts = [p.strip() for p in line.split('\t')]
    if len(parts) < STATS_COLUMNS:
        return None

    name, cpu, mem_usage, mem_perc, net_io = parts[:STATS_COLUMNS]
    mem_parts = mem_usage.split(' / ')
    net_parts = net_io.split(' / ')
    return ContainerMetrics(
        name=name,
        cpu=round(_parse_percentage(cpu), 2),
        memory_used=parse_memory_value(mem_parts[0]),
        memory_limit=parse_memory_value(mem_parts[1]) if len(mem_parts) > 1 else 0.0,
        memory_percentage=round(_parse_percentage(mem_perc), 2),
        network_rx=parse_memory_value(net_parts[0]),
        network_tx=parse_memory_value(net_parts[1]) if len(net_parts) > 1 else 0.0,
    )
