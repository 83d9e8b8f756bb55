#!/usr/bin/env python3
"""
Tests for the command line interface.
"""

import pytest
from click.testing import CliRunner

from cronos.cronos import VERSION, cli
from cronos.core.context import AppContext
from cronos.core.models import ContainerStatus

from conftest import FakeEngine, FakeRunner, make_record

COMPOSE = """
services:
  db:
    image: postgres
  api:
    image: api
    depends_on: [db]
"""


@pytest.fixture
def invoke(fast_settings):
    """Invoke the CLI against an in-memory engine."""
    def _invoke(args, engine=None, runner=None):
        app = AppContext(fast_settings, engine=engine, runner=runner)
        obj = {'SETTINGS': fast_settings, 'CONTEXT': app}
        return CliRunner().invoke(cli, args, obj=obj)
    return _invoke


def test_version():
    result = CliRunner().invoke(cli, ['--version'])
    assert VERSION in result.output


def test_status(invoke):
    engine = FakeEngine([make_record('web', ContainerStatus.RUNNING), make_record('db', ContainerStatus.EXITED)])

    result = invoke(['status'], engine=engine)

    assert result.exit_code == 0
    assert 'web' in result.output
    assert 'running' in result.output
    assert 'exited' in result.output


def test_status_offline(invoke):
    runner = FakeRunner().add('--version', returncode=127)

    result = invoke(['status'], runner=runner)

    assert result.exit_code == 0
    assert 'offline mode' in result.output
    assert 'No containers found' in result.output


def test_invalid_action_reports_valid_actions(invoke):
    engine = FakeEngine([make_record('web', ContainerStatus.STOPPED)])

    result = invoke(['action', 'stop', 'web'], engine=engine)

    assert result.exit_code == 1
    assert 'Cannot stop' in result.output
    assert engine.action_calls('stop') == []


def test_action_pause(invoke):
    engine = FakeEngine([make_record('web', ContainerStatus.RUNNING)])

    result = invoke(['action', 'pause', 'web'], engine=engine)

    assert result.exit_code == 0
    assert engine.containers['web'].status == ContainerStatus.PAUSED


def test_action_unknown_container(invoke):
    result = invoke(['action', 'start', 'ghost'], engine=FakeEngine())

    assert result.exit_code == 1
    assert 'ghost' in result.output


def test_order(invoke, fast_settings, compose_file):
    fast_settings.compose_file = compose_file(COMPOSE)

    result = invoke(['order', 'api'], engine=FakeEngine())

    assert result.exit_code == 0
    assert result.output.index('db') < result.output.index('api')


def test_order_cycle(invoke, fast_settings, compose_file):
    fast_settings.compose_file = compose_file("services:\n  a:\n    depends_on: [b]\n  b:\n    depends_on: [a]\n")

    result = invoke(['order'], engine=FakeEngine())

    assert result.exit_code == 1
    assert 'Circular' in result.output


def test_start_with_deps(invoke, fast_settings, compose_file):
    fast_settings.compose_file = compose_file(COMPOSE)
    engine = FakeEngine()

    result = invoke(['start', 'api', '--with-deps'], engine=engine)

    assert result.exit_code == 0
    started = [c[1] for c in engine.calls if c[0] == 'start_services']
    assert started == [['db'], ['api']]
    assert 'Started 2' in result.output


def test_start_with_deps_failure(invoke, fast_settings, compose_file):
    fast_settings.compose_file = compose_file(COMPOSE)
    engine = FakeEngine()
    engine.fail('start_services', 'db')

    result = invoke(['start', 'api', '--with-deps'], engine=engine)

    assert result.exit_code == 1
    assert ('start_services', ['api']) not in engine.calls


def test_start_without_deps(invoke):
    engine = FakeEngine()

    result = invoke(['start', 'web'], engine=engine)

    assert result.exit_code == 0
    assert ('start_services', ['web']) in engine.calls


def test_stop_and_restart(invoke):
    engine = FakeEngine([make_record('web', ContainerStatus.RUNNING)])

    assert invoke(['stop', 'web'], engine=engine).exit_code == 0
    assert invoke(['restart', 'web'], engine=engine).exit_code == 0
    assert ('stop_services', ['web']) in engine.calls
    assert ('restart_services', ['web']) in engine.calls


def test_logs(invoke):
    engine = FakeEngine()
    engine.log_output = b'hello from web\n'

    result = invoke(['logs', 'web'], engine=engine)

    assert result.exit_code == 0
    assert 'hello from web' in result.output


def test_stats(invoke):
    engine = FakeEngine()
    engine.stats_rows = ["web\t3.00%\t64MiB / 1GiB\t6.25%\t1kB / 2kB"]

    result = invoke(['stats'], engine=engine)

    assert result.exit_code == 0
    assert 'web' in result.output


def test_health(invoke):
    engine = FakeEngine([make_record('web', ContainerStatus.RUNNING)])

    result = invoke(['health', 'web'], engine=engine)

    assert result.exit_code == 0
    assert 'healthy' in result.output
