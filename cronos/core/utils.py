"""Utility functions for Cronos."""
import logging
from pathlib import Path
from typing import Optional, Union

COMPOSE_FILENAMES = (
    'compose.yaml',
    'compose.yml',
    'docker-compose.yaml',
    'docker-compose.yml',
    'podman-compose.yaml',
    'podman-compose.yml',
)


def setup_logging(debug=False, log_dir: Optional[Union[str, Path]] = None):
    """Set up logging configuration."""
    log_level = logging.DEBUG if debug else logging.INFO
    log_dir = Path(log_dir) if log_dir else Path.home() / '.cronos' / 'logs'
    log_dir.mkdir(parents=True, exist_ok=True)
    log_file = log_dir / 'cronos.log'

    # Configure root logger
    logging.basicConfig(
        level=log_level,
        format='%(asctime)s [%(levelname)s] %(name)s: %(message)s',
        handlers=[
            logging.FileHandler(log_file),
            logging.StreamHandler() if debug else logging.NullHandler()
        ]
    )


def get_compose_path(directory: Optional[Union[str, Path]] = None) -> Optional[Path]:
    """Return the first compose file found in directory, or None."""
    base = Path(directory) if directory else Path.cwd()
    for filename in COMPOSE_FILENAMES:
        candidate = base / filename
        if candidate.is_file():
            return candidate
    return None


class LoggerAdapter(logging.LoggerAdapter):
    """
    Logger adapter that adds contextual information to log messages.

    This adapter allows adding context (like container, action) to log
    messages without passing them to each log call.
    """

    def process(self, msg, kwargs):
        # Add contextual info to the message
        context_str = ' '.join(f'{k}={v}' for k, v in self.extra.items())
        if context_str:
            return f"{msg} [{context_str}]", kwargs
        return msg, kwargs


def get_contextual_logger(name: str, **context) -> LoggerAdapter:
    """
    Get a logger that automatically adds contextual information to messages.

    Args:
        name: Base logger name.
        **context: Contextual information to add to each log message.

    Returns:
        LoggerAdapter that adds the specified context to log messages.

    Example:
        >>> logger = get_contextual_logger('cronos.lifecycle', container='web', action='stop')
        >>> logger.info("Stopping")
        # Output: "... [INFO] cronos.lifecycle: Stopping [container=web action=stop]"
    """
    return LoggerAdapter(logging.getLogger(name), context)
