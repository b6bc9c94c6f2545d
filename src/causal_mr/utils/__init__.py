"""
Utilities: configuration and logging.
"""

from .config import MRConfig, DEFAULT_METHODS
from .logging import setup_logger, get_logger

__all__ = ["MRConfig", "DEFAULT_METHODS", "setup_logger", "get_logger"]
