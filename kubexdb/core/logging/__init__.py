from __future__ import annotations

from .logger import (
    LogLevel,
    LoggingConfig,
    SinkKind,
    ConsoleSinkConfig,
    FileSinkConfig,
    THIRD_PARTY_LOGGERS,
    configure_loguru_logger,
    create_app_logger,
    build_logging_config_from_local,
    intercept_loggers,
    restore_loggers,
)

__all__ = [
    # 基础类型
    "LogLevel",
    "LoggingConfig",
    # Sink 相关
    "SinkKind",
    "ConsoleSinkConfig",
    "FileSinkConfig",
    # 核心 API
    "THIRD_PARTY_LOGGERS",
    "configure_loguru_logger",
    "create_app_logger",
    "build_logging_config_from_local",
    "intercept_loggers",
    "restore_loggers",
]
