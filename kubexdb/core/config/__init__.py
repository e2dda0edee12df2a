from .constants import (
    NAMESPACE,
    ENVVAR_PREFIX,
    SENSITIVE_KEYWORDS,
    CONNECT_TIMEOUT,
    PING_TIMEOUT,
    DEFAULT_PORTS,
)
from .dsn import build_dsn, redact_dsn
from .enums import ConnState, DBType
from .loader import (
    default_config_path,
    default_root_config,
    generate_random_password,
    load_or_bootstrap,
    load_root_config,
    save_root_config,
)
from .local_settings import LocalSettings, LoggingSettings, load_local_settings
from .models import DBConfigResolved, DBConfigSpec, MigrationInfo, RootConfig
from .path_settings import PathSettings, get_path_settings

__all__ = [
    # constants
    "NAMESPACE",
    "ENVVAR_PREFIX",
    "SENSITIVE_KEYWORDS",
    "CONNECT_TIMEOUT",
    "PING_TIMEOUT",
    "DEFAULT_PORTS",
    # enums
    "DBType",
    "ConnState",
    # models
    "RootConfig",
    "DBConfigSpec",
    "DBConfigResolved",
    "MigrationInfo",
    # dsn
    "build_dsn",
    "redact_dsn",
    # loader
    "load_or_bootstrap",
    "load_root_config",
    "save_root_config",
    "default_root_config",
    "default_config_path",
    "generate_random_password",
    # local settings
    "LocalSettings",
    "LoggingSettings",
    "load_local_settings",
    # path settings
    "PathSettings",
    "get_path_settings",
]
