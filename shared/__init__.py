"""
RegWatch Shared Library
=======================

Common utilities, configuration and infrastructure clients shared by the
RegWatch services.

Modules:
    - config: Configuration management with Pydantic Settings
    - logging: Structured logging with structlog
    - database: PostgreSQL (SQLAlchemy async) and Redis clients
    - models: Shared Pydantic response models

Version: 0.1.0
"""

__version__ = "0.1.0"
__author__ = "RegWatch Team"

from shared.config import settings
from shared.logging import get_logger, setup_logging

__all__ = [
    "settings",
    "get_logger",
    "setup_logging",
    "__version__",
]
