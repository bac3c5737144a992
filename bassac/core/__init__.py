"""
Bassac Core
===========

Core utilities and shared functionality for Bassac modules.
"""

from .config import Config, get_config_value
from .database import Database
from .logging_service import LoggingService, logger, db_log
from .cache import CacheService, cache

__all__ = ['Config', 'get_config_value', 'Database', 'LoggingService', 'logger', 'db_log',
           'CacheService', 'cache']
