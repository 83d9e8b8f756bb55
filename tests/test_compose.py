#!/usr/bin/env python3
"""
Tests for reading service definitions from compose files.
"""

import pytest

from cronos.core.compose import ComposeConfig
from cronos.core.exceptions import ComposeFileNotFound, ComposeParseError
from cronos.core.utils import get_compose_path

COMPOSE = """
name: demo
services:
  db:
    image: postgres:16
    healthcheck:
      test: ["CMD", "pg_isready"]
    volumes:
      - ./data:/var/lib/postgresql/data
  cache:
    image: redis:7
    healthcheck:
      disable: true
  api:
    image: api:latest
    depends_on:
      db:
        condition: service_healthy
    links:
      - cache:redis
    ports:
      - "8080:80"
    labels:
      cronos.depends_on: "worker, db"
  worker:
    image: worker:latest
    depends_on: [db]
    volumes_from:
      - db:ro
      - container:legacy
"""


class TestComposeConfig:
    def test_definitions(self, compose_file, tmp_path):
        config = ComposeConfig(compose_file(COMPOSE))

        assert config.project_name == 'demo'
        assert [d.name for d in config.definitions] == ['db', 'cache', 'api', 'worker']

        api = config.services['api']
        assert api.depends_on == ('db', 'worker')
        assert api.links == ('cache:redis',)
        assert api.ports == ('8080:80',)
        assert api.image == 'api:latest'
        assert api.directory == str(tmp_path)

    def test_healthchecks(self, compose_file):
        config = ComposeConfig(compose_file(COMPOSE))

        assert config.services['db'].health_check
        assert not config.services['cache'].health_check
        assert not config.services['worker'].health_check

    def test_volumes(self, compose_file):
        config = ComposeConfig(compose_file(COMPOSE))

        assert config.services['db'].volumes == ('./data:/var/lib/postgresql/data',)
        assert config.services['worker'].volumes_from == ('db:ro',)
        assert config.services['worker'].depends_on == ('db',)

    def test_label_list_and_long_port_syntax(self, compose_file):
        path = compose_file("""
services:
  web:
    image: nginx
    labels:
      - "cronos.depends_on=api"
    ports:
      - target: 80
        published: 8081
  api:
    image: api
""")
        config = ComposeConfig(path)

        assert config.services['web'].depends_on == ('api',)
        assert config.services['web'].ports == ('8081:80',)
        assert config.project_name == path.parent.name

    def test_empty_service(self, compose_file):
        config = ComposeConfig(compose_file("services:\n  bare:\n"))
        assert config.services['bare'].depends_on == ()

    def test_missing_file(self, tmp_path):
        with pytest.raises(ComposeFileNotFound):
            ComposeConfig(tmp_path / 'missing.yaml')

    def test_invalid_yaml(self, compose_file):
        with pytest.raises(ComposeParseError):
            ComposeConfig(compose_file("services: [unclosed"))

    def test_services_must_be_mapping(self, compose_file):
        with pytest.raises(ComposeParseError):
            ComposeConfig(compose_file("services:\n  - web\n  - db\n"))


class TestDiscovery:
    def test_finds_docker_compose_file(self, compose_file, tmp_path):
        path = compose_file(COMPOSE, name='docker-compose.yml')
        assert get_compose_path(tmp_path) == path

    def test_prefers_compose_yaml(self, compose_file, tmp_path):
        compose_file(COMPOSE, name='docker-compose.yml')
        preferred = compose_file(COMPOSE, name='compose.yaml')
        assert get_compose_path(tmp_path) == preferred

    def test_nothing_found(self, tmp_path):
        assert get_compose_path(tmp_path) is None
