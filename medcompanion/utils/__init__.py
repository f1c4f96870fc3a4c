"""
Utilities Module
================

Common utilities shared across the application:
- logger: Context-aware logging with levels and bound fields
- config: Centralized configuration management
"""

from medcompanion.utils.logger import Logger, logger
from medcompanion.utils.config import get_config, Config

__all__ = ["Logger", "logger", "get_config", "Config"]
