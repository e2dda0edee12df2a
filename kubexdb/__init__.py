from .core.config.models import DBConfigResolved, DBConfigSpec, MigrationInfo, RootConfig
from .core.db.manager import DatabaseManager
from .core.db.registry import DriverRegistry, default_registry
from .core.runtime.bootstrap import Runtime, RuntimeOptions, bootstrap, get_app_version

__all__ = [
    "DBConfigResolved",
    "DBConfigSpec",
    "DatabaseManager",
    "DriverRegistry",
    "MigrationInfo",
    "RootConfig",
    "Runtime",
    "RuntimeOptions",
    "bootstrap",
    "default_registry",
    "get_app_version",
]
