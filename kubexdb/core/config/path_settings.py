from __future__ import annotations

import os
from dataclasses import dataclass
from functools import lru_cache
from pathlib import Path

from loguru import logger

from .constants import (
    NAMESPACE,
    MODULE_DIR_NAME,
    CONFIG_FILE_NAME,
    SETTINGS_FILE_NAME,
    LOG_DIR_NAME,
    VOLUME_DIR_NAME,
    HOME_ENV_VAR,
    CONFIG_FILE_ENV_VAR,
)


@dataclass(frozen=True)
class PathSettings:
    """kubexdb 运行时路径配置（不可变数据类）

    与面向"项目目录"的工具不同，kubexdb 是运维侧工具，所有持久化状态都放在用户主目录下的命名空间目录中：

        ~/.kubexdb/
            settings.toml            本地进程配置（可选，dynaconf 读取）
            database/config.json     根配置（RootConfig）
            volumes/<kind>/{init,data}  容器卷
            logs/kubexdb.log         文件日志

    设计考量：
    - 使用 dataclass(frozen=True) 保证不可变性，避免运行时误修改路径
    - 所有路径均为 pathlib.Path 对象，便于跨平台拼接
    - 根目录可通过 KUBEXDB_HOME 覆盖（测试隔离 / 容器化部署）
    - 根配置文件可单独通过 KUBEXDB_CONFIGFILE 覆盖

    Attributes:
        home_root (Path): 命名空间根目录（默认 ~/.kubexdb）
        config_file (Path): 默认根配置文件路径
        settings_file (Path): 本地进程配置文件路径
        volume_root (Path): 容器卷根目录
        log_dir (Path): 日志目录
    """
    home_root: Path
    config_file: Path
    settings_file: Path
    volume_root: Path
    log_dir: Path

    @staticmethod
    def _resolve_home_root() -> Path:
        """解析命名空间根目录

        优先级：
        1. 环境变量 KUBEXDB_HOME
        2. ~/.kubexdb

        Returns:
            Path: 根目录的绝对路径（不保证存在）
        """
        explicit = os.getenv(HOME_ENV_VAR)
        if explicit:
            return Path(explicit).expanduser().absolute()
        return Path.home() / f".{NAMESPACE}"

    @classmethod
    def detect(cls) -> "PathSettings":
        """探测并构造 PathSettings 实例

        Returns:
            PathSettings: 包含所有路径信息的不可变配置对象

        Note:
            - 该方法只做路径推导，不触发任何写操作
            - 根配置文件的环境变量覆盖在这里生效，LocalSettings 中的 configfile 字段可再次覆盖
        """
        home_root = cls._resolve_home_root()

        config_file = home_root / MODULE_DIR_NAME / CONFIG_FILE_NAME
        override = os.getenv(CONFIG_FILE_ENV_VAR)
        if override:
            config_file = Path(override).expanduser().absolute()
            logger.debug(f"根配置文件路径由环境变量覆盖: {config_file}")

        return cls(
            home_root=home_root,
            config_file=config_file,
            settings_file=home_root / SETTINGS_FILE_NAME,
            volume_root=home_root / VOLUME_DIR_NAME,
            log_dir=home_root / LOG_DIR_NAME,
        )

    def ensure_runtime_dirs(self) -> None:
        """确保日志目录存在

        Note:
            - 卷目录与配置目录由各自的组件按需创建（权限要求不同）
        """
        self.log_dir.mkdir(parents=True, exist_ok=True)


@lru_cache(maxsize=1)
def get_path_settings() -> PathSettings:
    """获取全局路径配置（进程内缓存）

    Note:
        - 测试中修改 KUBEXDB_HOME 后需调用 get_path_settings.cache_clear()
    """
    return PathSettings.detect()
