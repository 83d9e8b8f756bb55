"""
Cronos
Dependency-aware container lifecycle manager for local development services.
"""

# Version information
__version__ = "1.0.0"

# Make key components available at package level
from .core.context import AppContext, Settings
from .core.exceptions import CronosError, handle_error
