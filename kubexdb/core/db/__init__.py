from .base import Driver, DriverFactory, Migrator, MigratorFactory, Validator
from .connection import DBConnection
from .manager import ConnectionHealthWatcher, DatabaseManager
from .registry import DriverRegistry, default_registry
from .rwlock import AsyncRWLock
from .validators import validate_host_or_dsn, validate_postgres

__all__ = [
    "AsyncRWLock",
    "ConnectionHealthWatcher",
    "DBConnection",
    "DatabaseManager",
    "Driver",
    "DriverFactory",
    "DriverRegistry",
    "Migrator",
    "MigratorFactory",
    "Validator",
    "default_registry",
    "validate_host_or_dsn",
    "validate_postgres",
]
