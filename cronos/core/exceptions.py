"""Custom exceptions for Cronos."""
from typing import Iterable, Optional


class CronosError(Exception):
    """Base exception for all Cronos errors."""
    pass


class ConfigurationError(CronosError):
    """Raised when settings cannot be read or are invalid"""
    pass


class ComposeFileNotFound(CronosError):
    """Exception raised when compose file is not found."""
    def __init__(self, message="Compose file not found in current directory"):
        self.message = message
        super().__init__(self.message)


class ComposeParseError(CronosError):
    """Raised when the compose file cannot be parsed"""
    pass


class EngineNotFoundError(CronosError):
    """Raised when no supported container runtime answers a version query"""
    def __init__(self, candidates: Iterable[str]):
        self.candidates = list(candidates)
        super().__init__(
            f"No container runtime found (tried: {', '.join(self.candidates)})"
        )


class CommandExecutionError(CronosError):
    """Raised when a runtime command exits with a non-zero status"""
    def __init__(self, command: str, returncode: int, stderr: str = ""):
        self.command = command
        self.returncode = returncode
        self.stderr = stderr.strip()
        detail = f": {self.stderr}" if self.stderr else ""
        super().__init__(f"Command '{command}' failed with exit code {returncode}{detail}")


class ServiceNotFoundError(CronosError):
    """Raised when a service or container name is unknown"""
    def __init__(self, name: str):
        self.name = name
        super().__init__(f"Service or container not found: {name}")


class InvalidActionError(CronosError):
    """Raised when an action is not allowed in the container's current state"""
    def __init__(self, container: str, action: str, status: str, valid_actions: Iterable[str]):
        self.container = container
        self.action = action
        self.status = status
        self.valid_actions = list(valid_actions)
        valid = ", ".join(self.valid_actions) if self.valid_actions else "none"
        super().__init__(
            f"Cannot {action} container '{container}' in state '{status}'. "
            f"Valid actions: {valid}"
        )


class CircularDependencyError(CronosError):
    """Raised when the dependency graph contains a cycle"""
    def __init__(self, node: str, path: Optional[Iterable[str]] = None):
        self.node = node
        self.path = list(path or [])
        cycle = f" ({' -> '.join(self.path)})" if self.path else ""
        super().__init__(f"Circular dependency detected at service '{node}'{cycle}")


class HealthCheckTimeoutError(CronosError):
    """Raised when a service does not report healthy within the timeout"""
    def __init__(self, service: str, timeout: float):
        self.service = service
        self.timeout = timeout
        super().__init__(
            f"Service '{service}' did not become healthy within {timeout:g}s"
        )


class OperationCancelledError(CronosError):
    """Raised when a wait is aborted through its cancel signal"""
    def __init__(self, service: str, operation: str = "health wait"):
        self.service = service
        self.operation = operation
        super().__init__(f"{operation.capitalize()} for '{service}' was cancelled")


class ResourceConflictError(CronosError):
    """Raised when starting a container would collide with a running one"""
    def __init__(self, container: str, conflicts: Iterable[str]):
        self.container = container
        self.conflicts = list(conflicts)
        super().__init__(
            f"Resource conflicts for '{container}': {'; '.join(self.conflicts)}"
        )


class ContainerActionError(CronosError):
    """Wraps any failure of an action with its container and action context"""
    def __init__(self, container: str, action: str, cause: Exception):
        self.container = container
        self.action = action
        self.cause = cause
        super().__init__(f"Failed to {action} '{container}': {cause}")


def handle_error(error: Exception) -> str:
    """
    Convert an error to a user-friendly message.

    Args:
        error: The error to handle

    Returns:
        A formatted error message
    """
    if isinstance(error, ContainerActionError):
        message = f"{error.action} failed for {error.container}: {error.cause}"
        if isinstance(error.cause, CommandExecutionError) and error.cause.stderr:
            message += f"\n  Runtime output: {error.cause.stderr}"
        return message
    elif isinstance(error, InvalidActionError):
        return str(error)
    elif isinstance(error, CircularDependencyError):
        return f"Cannot order services: {error}"
    elif isinstance(error, HealthCheckTimeoutError):
        return f"Health check timed out for {error.service} after {error.timeout:g}s"
    elif isinstance(error, EngineNotFoundError):
        return f"{error}. Running in offline mode."
    elif isinstance(error, CommandExecutionError):
        return f"Runtime command failed ({error.returncode}): {error.stderr or error.command}"
    else:
        return str(error)
