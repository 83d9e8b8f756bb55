"""
Compose file parsing into service definitions.
"""
import yaml
import logging
from pathlib import Path
from typing import Any, Dict, List, Optional, Union

from .exceptions import ComposeFileNotFound, ComposeParseError
from .models import ServiceDefinition
from .utils import get_compose_path

logger = logging.getLogger('cronos.compose')

DEPENDS_ON_LABEL = 'cronos.depends_on'


def _as_list(value: Any) -> List[str]:
    """Normalize a compose list-or-mapping field to a list of strings."""
    if value is None:
        return []
    if isinstance(value, dict):
        return [str(k) for k in value.keys()]
    if isinstance(value, (list, tuple)):
        return [_entry_to_str(v) for v in value if v is not None]
    return [str(value)]


def _entry_to_str(entry: Any) -> str:
    # Long syntax entries for ports and volumes
    if isinstance(entry, dict):
        if 'published' in entry or 'target' in entry:
            published = entry.get('published')
            target = entry.get('target', '')
            if 'source' in entry:
                mode = ':ro' if entry.get('read_only') else ''
                return f"{entry['source']}:{target}{mode}"
            return f"{published}:{target}" if published else str(target)
        return ','.join(f"{k}={v}" for k, v in entry.items())
    return str(entry)


def _labels(config: Dict[str, Any]) -> Dict[str, str]:
    labels = config.get('labels') or {}
    if isinstance(labels, list):
        parsed = {}
        for item in labels:
            key, _, value = str(item).partition('=')
            parsed[key] = value
        return parsed
    return {str(k): str(v) for k, v in labels.items()}


def _has_healthcheck(config: Dict[str, Any]) -> bool:
    healthcheck = config.get('healthcheck')
    if not isinstance(healthcheck, dict):
        return False
    return not healthcheck.get('disable', False)


class ComposeConfig:
    """
    Loads a compose file and exposes its services.

    Attributes:
        path (Path): Compose file in use
        project_name (str): Top-level ``name`` of the compose project
        services (Dict[str, ServiceDefinition]): Definitions keyed by name, in
            file order
    """

    def __init__(self, path: Optional[Union[str, Path]] = None):
        self.path = Path(path) if path else get_compose_path()
        if self.path is None:
            raise ComposeFileNotFound()
        self.raw_config = self._load_compose_file()
        self.project_name = self.raw_config.get('name', '') or self.path.parent.name
        self.services: Dict[str, ServiceDefinition] = {}
        self._parse_config()

    @property
    def definitions(self) -> List[ServiceDefinition]:
        return list(self.services.values())

    def _load_compose_file(self) -> dict:
        """Load and parse compose file."""
        try:
            with open(self.path) as f:
                config = yaml.safe_load(f)
        except FileNotFoundError:
            raise ComposeFileNotFound(f"Compose file not found: {self.path}")
        except yaml.YAMLError as e:
            raise ComposeParseError(f"Failed to parse compose file: {e}")

        if config is None:
            return {}
        if not isinstance(config, dict):
            raise ComposeParseError(f"Compose file {self.path} must contain a mapping")
        return config

    def _parse_config(self):
        services_config = self.raw_config.get('services') or {}
        if not isinstance(services_config, dict):
            raise ComposeParseError("The 'services' section must be a mapping")

        directory = str(self.path.parent)
        for name, config in services_config.items():
            config = config or {}
            if not isinstance(config, dict):
                raise ComposeParseError(f"Service '{name}' must be a mapping")

            depends_on = _as_list(config.get('depends_on'))
            labels = _labels(config)
            if DEPENDS_ON_LABEL in labels:
                for dep in labels[DEPENDS_ON_LABEL].split(','):
                    dep = dep.strip()
                    if dep and dep not in depends_on:
                        depends_on.append(dep)

            self.services[name] = ServiceDefinition(
                name=name,
                depends_on=tuple(depends_on),
                links=tuple(_as_list(config.get('links'))),
                volumes_from=tuple(
                    v for v in _as_list(config.get('volumes_from')) if not v.startswith('container:')
                ),
                volumes=tuple(_as_list(config.get('volumes'))),
                ports=tuple(_as_list(config.get('ports'))),
                image=config.get('image'),
                directory=directory,
                health_check=_has_healthcheck(config),
            )

        logger.debug(f"Parsed {len(self.services)} services from {self.path}")
