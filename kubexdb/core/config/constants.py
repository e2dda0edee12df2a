from __future__ import annotations

from typing import Final

# ========== 命名空间 ==========

# 命名空间决定了：用户目录下的根目录名、环境变量前缀、密钥环服务名、容器规范名前缀
NAMESPACE: Final[str] = "kubexdb"

# 数据库模块目录名（~/.kubexdb/database/config.json）
MODULE_DIR_NAME: Final[str] = "database"

# 默认配置文件名
CONFIG_FILE_NAME: Final[str] = "config.json"

# 本地进程配置文件（dynaconf 读取，可选）
SETTINGS_FILE_NAME: Final[str] = "settings.toml"

# ========== 运行时目录名称 ==========

LOG_DIR_NAME: Final[str] = "logs"

VOLUME_DIR_NAME: Final[str] = "volumes"

# ========== 环境变量 ==========

# Dynaconf 会自动读取带有此前缀的环境变量并合并到配置中
# 例如：KUBEXDB_CONFIGFILE 会覆盖 settings.toml 中的 configfile
ENVVAR_PREFIX: Final[str] = "KUBEXDB"

# 显式指定根目录（最高优先级），适用于容器化部署或测试隔离
HOME_ENV_VAR: Final[str] = f"{ENVVAR_PREFIX}_HOME"

CONFIG_FILE_ENV_VAR: Final[str] = f"{ENVVAR_PREFIX}_CONFIGFILE"
KEY_FILE_ENV_VAR: Final[str] = f"{ENVVAR_PREFIX}_KEYFILE"
CERT_FILE_ENV_VAR: Final[str] = f"{ENVVAR_PREFIX}_CERTFILE"
HIDE_BANNER_ENV_VAR: Final[str] = f"{ENVVAR_PREFIX}_HIDEBANNER"
HOST_IP_ENV_VAR: Final[str] = f"{ENVVAR_PREFIX}_HOST_IP"

# 运行环境类型（dev / test / prod），对应 settings.toml 中的环境分节
RUN_ENV_TYPE_VAR: Final[str] = "RUN_ENV_TYPE"
DEFAULT_ENV_TYPE: Final[str] = "dev"

# 布尔型环境变量的真值集合
TRUTHY_VALUES: Final[frozenset[str]] = frozenset({"true", "1", "yes", "y"})

# ========== 超时（秒） ==========

CONNECT_TIMEOUT: Final[float] = 15.0
PING_TIMEOUT: Final[float] = 5.0
HEALTH_INTERVAL: Final[float] = 30.0

# ========== 文件权限 ==========

CONFIG_FILE_MODE: Final[int] = 0o640
CONFIG_DIR_MODE: Final[int] = 0o750

# ========== 默认 PostgreSQL 配置 ==========

DEFAULT_ROOT_NAME: Final[str] = "kubexdb_ds"
DEFAULT_DB_ID: Final[str] = "kubexdb_pg"
DEFAULT_DB_HOST: Final[str] = "127.0.0.1"
DEFAULT_DB_USER: Final[str] = "kubexdb_adm"
DEFAULT_DB_NAME: Final[str] = "kubexdb_db"
DEFAULT_DB_SCHEMA: Final[str] = "public"

# 随机密码长度与字母表
PASSWORD_LENGTH: Final[int] = 40
PASSWORD_ALPHABET: Final[str] = (
    "abcdefghijklmnopqrstuvwxyzABCDEFGHIJKLMNOPQRSTUVWXYZ0123456789_-"
)

# ========== 端口探测 ==========

PORT_PROBE_ATTEMPTS: Final[int] = 10
MIN_USER_PORT: Final[int] = 1024
MAX_USER_PORT: Final[int] = 49151

# ========== 敏感信息关键词（用于日志脱敏） ==========

SENSITIVE_KEYWORDS: Final[frozenset[str]] = frozenset(
    {
        "password",
        "passwd",
        "pass",
        "pwd",
        "secret",
        "token",
        "credential",
        "dsn",
        "keyfile",
        "private_key",
    }
)


class AppConstants:
    """应用级常量与默认值"""

    DEFAULT_APP_NAME = "kubexdb"

    DEFAULT_VERSION = "0.1.0"

    # importlib.metadata 中查找的发行包名
    DISTRIBUTION_NAMES = ("kubexdb",)


# ========== 各数据库类型的默认端口 ==========

DEFAULT_PORTS: Final[dict[str, int]] = {
    "postgres": 5432,
    "mysql": 3306,
    "mssql": 1433,
    "oracle": 1521,
    "mongodb": 27017,
    "redis": 6379,
    "rabbitmq": 5672,
}
