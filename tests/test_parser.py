#!/usr/bin/env python3
"""
Tests for parsing runtime output.
"""

import pytest
from datetime import datetime, timedelta

from cronos.core.models import ContainerStatus, HealthStatus
from cronos.core.parser import (
    is_header,
    parse_container_line,
    parse_container_listing,
    parse_created,
    parse_health,
    parse_memory_value,
    parse_stats_line,
    parse_status,
)


class TestStatusParsing:
    """Status text normalization."""

    @pytest.mark.parametrize('text,expected', [
        ('Up 5 minutes', ContainerStatus.RUNNING),
        ('Up 2 hours (healthy)', ContainerStatus.RUNNING),
        ('Exited (0) 3 hours ago', ContainerStatus.STOPPED),
        ('exit 137', ContainerStatus.STOPPED),
        ('Paused', ContainerStatus.PAUSED),
        ('Restarting (1) 4 seconds ago', ContainerStatus.RESTARTING),
        ('Dead', ContainerStatus.DEAD),
    ])
    def test_known_statuses(self, text, expected):
        assert parse_status(text) == expected

    @pytest.mark.parametrize('text', ['Created', 'Removal In Progress', '', 'something odd'])
    def test_unrecognized_defaults_to_stopped(self, text):
        assert parse_status(text) == ContainerStatus.STOPPED

    def test_up_wins_over_later_patterns(self):
        """Matching is ordered, so 'up' is checked before 'paused'."""
        assert parse_status('Up 5 minutes (Paused)') == ContainerStatus.RUNNING

    def test_result_is_always_enum_member(self):
        for text in ('Up', 'weird', 'DEAD', 'Exited'):
            assert parse_status(text) in set(ContainerStatus)


class TestHealthParsing:
    def test_health_annotations(self):
        assert parse_health('Up 2 minutes (healthy)') == HealthStatus.HEALTHY
        assert parse_health('Up 2 minutes (unhealthy)') == HealthStatus.UNHEALTHY
        assert parse_health('Up 3 seconds (health: starting)') == HealthStatus.UNKNOWN

    def test_no_annotation(self):
        assert parse_health('Up 2 minutes') is None


class TestContainerLine:
    def test_scenario_line(self):
        record = parse_container_line("id1\tweb\tnginx:latest\tUp 5 minutes\t80:8080\t2024-01-01")

        assert record.id == 'id1'
        assert record.name == 'web'
        assert record.image == 'nginx:latest'
        assert record.status == ContainerStatus.RUNNING
        assert list(record.ports) == ['80:8080']
        assert record.created_at == datetime(2024, 1, 1)
        assert record.health is None

    def test_multiple_ports_and_health(self):
        line = "abc\tapi\tapi:1\tUp 1 minute (healthy)\t0.0.0.0:8080->80/tcp, 0.0.0.0:8443->443/tcp\t2024-01-01 10:00:00 +0000 UTC"
        record = parse_container_line(line)

        assert record.ports == ('0.0.0.0:8080->80/tcp', '0.0.0.0:8443->443/tcp')
        assert record.host_ports == ['8080', '8443']
        assert record.health == HealthStatus.HEALTHY

    def test_empty_ports(self):
        record = parse_container_line("abc\tdb\tpostgres\tExited (0) 1 hour ago\t\t2024-01-01")
        assert record.ports == ()
        assert record.status == ContainerStatus.STOPPED

    @pytest.mark.parametrize('line', [
        "id1\tweb\tnginx",
        "id1\tweb\tnginx\tUp\t80:80\t2024-01-01\textra",
        "",
    ])
    def test_wrong_column_count(self, line):
        assert parse_container_line(line) is None

    def test_listing_skips_headers_and_blank_lines(self):
        output = (
            "CONTAINER ID\tNAMES\tIMAGE\tSTATUS\tPORTS\tCREATED AT\n"
            "id1\tweb\tnginx\tUp 5 minutes\t\t2024-01-01\n"
            "\n"
            "broken line\n"
            "id2\tdb\tpostgres\tExited (1) 2 minutes ago\t\t2024-01-02\n"
        )
        records = parse_container_listing(output)

        assert [r.name for r in records] == ['web', 'db']
        assert is_header("CONTAINER ID\tNAMES")
        assert not is_header("id1\tweb")


class TestCreatedParsing:
    def test_runtime_timestamp_with_zone(self):
        created = parse_created('2024-01-01 10:00:00 +0000 UTC')
        assert created.year == 2024 and created.hour == 10
        assert created.utcoffset() == timedelta(0)

    def test_fractional_seconds(self):
        created = parse_created('2024-03-05 12:30:45.123456789 +0100 CET')
        assert created.second == 45
        assert created.utcoffset() == timedelta(hours=1)

    def test_unparseable(self):
        assert parse_created('about an hour ago') is None


class TestStatsParsing:
    @pytest.mark.parametrize('value,expected', [
        ('1.5GiB', 1.5 * 1024 ** 3),
        ('512MiB', 512 * 1024 ** 2),
        ('4KiB', 4096),
        ('3kB', 3000),
        ('2MB', 2_000_000),
        ('1GB', 1_000_000_000),
        ('100B', 100),
        ('garbage', 0),
    ])
    def test_memory_values(self, value, expected):
        assert parse_memory_value(value) == pytest.approx(expected)

    def test_stats_line(self):
        metrics = parse_stats_line("web\t0.50%\t10MiB / 1GiB\t0.98%\t1.2kB / 3.4kB")

        assert metrics.name == 'web'
        assert metrics.cpu == pytest.approx(0.5)
        assert metrics.memory_used == pytest.approx(10 * 1024 ** 2)
        assert metrics.memory_limit == pytest.approx(1024 ** 3)
        assert metrics.memory_percentage == pytest.approx(0.98)
        assert metrics.network_rx == pytest.approx(1200)
        assert metrics.network_tx == pytest.approx(3400)

    def test_short_stats_line(self):
        assert parse_stats_line("web\t0.50%\t10MiB / 1GiB") is None
