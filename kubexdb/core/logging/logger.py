from __future__ import annotations

import logging
import sys
from dataclasses import dataclass
from enum import Enum
from pathlib import Path
from typing import Any, Callable, Dict, Iterable, Mapping
from typing_extensions import override

from loguru import logger as loguru_logger

from ..config.constants import AppConstants
from ..config.local_settings import LocalSettings, LoggingSettings
from ..config.path_settings import PathSettings, get_path_settings
from ..tracing.context import get_op_id


class LogLevel(str, Enum):
    """统一日志级别枚举（兼容 Loguru 和 logging 模块）"""

    DEBUG = "DEBUG"
    INFO = "INFO"
    WARNING = "WARNING"
    ERROR = "ERROR"
    CRITICAL = "CRITICAL"


# 默认日志格式字符串（Loguru 模板语法）
#   - <magenta>{extra[op_id]}</magenta>: 当前操作 ID，便于把一次 bootstrap 的全部日志串起来
DEFAULT_LOG_FORMAT: str = (
    "[<green>{time:YYYY-MM-DD HH:mm:ss.SSS}</green> | "
    "<level>{level}</level> | "
    "<cyan>{name}</cyan>:<cyan>{function}</cyan>:<cyan>{line}</cyan> | "
    "<magenta>{extra[op_id]}</magenta>] "
    "- <level>{message}</level>"
)

# 第三方库的标准库 logger，统一路由到 Loguru
THIRD_PARTY_LOGGERS: tuple[str, ...] = (
    "sqlalchemy.engine",
    "sqlalchemy.pool",
    "docker",
    "urllib3",
    "aio_pika",
    "aiormq",
    "pymongo",
)


@dataclass
class LoggingConfig:
    """核心日志运行时配置（不包含 Sink 配置）

    Attributes:
        level (LogLevel): 日志级别，低于此级别的日志会被丢弃
        format_str (str): 日志格式字符串，必须包含 {extra[op_id]}
        enqueue (bool): 是否启用异步队列
        backtrace (bool): 是否启用堆栈回溯
        diagnose (bool): 是否启用诊断模式

    Warning:
        - diagnose=True 会在异常中打印局部变量，可能泄漏数据库密码
    """

    level: LogLevel = LogLevel.INFO
    format_str: str = DEFAULT_LOG_FORMAT
    enqueue: bool = False
    backtrace: bool = False
    diagnose: bool = False


def _parse_level(level_str: str) -> LogLevel:
    """解析日志级别字符串（大小写不敏感）

    Raises:
        ValueError: 当输入的级别字符串无效时抛出（包含所有有效选项的提示）
    """
    upper = (level_str or "").strip().upper()

    try:
        return LogLevel(upper)
    except ValueError as exc:
        valid = ", ".join(log_level.name for log_level in LogLevel)
        raise ValueError(f"无效的日志级别: {level_str!r}. 有效选项: {valid}") from exc


def _op_id_patcher(record: dict[str, Any]) -> None:
    """Loguru patcher：把上下文中的 op_id 注入 extra 字段"""
    extra = record.setdefault("extra", {})
    if "op_id" not in extra:
        extra["op_id"] = get_op_id()


class SinkKind(str, Enum):
    """Sink 类型枚举（与 settings.toml 中 logging.sinks 的取值对应）"""
    CONSOLE = "console"
    FILE = "file"


@dataclass
class ConsoleSinkConfig:
    """控制台 Sink 配置（输出到 sys.stderr，避免与命令的标准输出混在一起）"""
    enabled: bool = True


@dataclass
class FileSinkConfig:
    """文件 Sink 配置（支持轮转和压缩）

    Attributes:
        enabled (bool): 是否启用此 Sink
        filename (Path | None): 日志文件路径
        rotation (str): 轮转策略
        compression (str): 压缩算法
    """
    enabled: bool = True
    filename: Path | None = None
    rotation: str = "20 MB"
    compression: str = "zip"


SinkInstaller = Callable[[Any, LoggingConfig, Any], None]


def _build_common_sink_args(cfg: LoggingConfig) -> Dict[str, Any]:
    return {
        "format": cfg.format_str,
        "level": cfg.level.value,
        "enqueue": cfg.enqueue,
        "backtrace": cfg.backtrace,
        "diagnose": cfg.diagnose,
    }


def _install_console_sink(logger_obj: Any, cfg: LoggingConfig, sink_cfg: ConsoleSinkConfig) -> None:
    if not sink_cfg.enabled:
        return
    logger_obj.add(sys.stderr, **_build_common_sink_args(cfg))


def _install_file_sink(logger_obj: Any, cfg: LoggingConfig, sink_cfg: FileSinkConfig) -> None:
    """安装文件 Sink

    Raises:
        ValueError: 当 enabled=True 但 filename=None 时抛出
    """
    if not sink_cfg.enabled:
        return

    if sink_cfg.filename is None:
        raise ValueError("当 enabled=True 时，FileSinkConfig.filename 不能为空")

    logger_obj.add(
        str(sink_cfg.filename),
        rotation=sink_cfg.rotation,
        compression=sink_cfg.compression,
        **_build_common_sink_args(cfg),
    )


_SINK_REGISTRY: Dict[SinkKind, SinkInstaller] = {
    SinkKind.CONSOLE: _install_console_sink,
    SinkKind.FILE: _install_file_sink,
}

_LOGGING_TO_LOGURU_LEVEL: Dict[int, str] = {
    logging.CRITICAL: LogLevel.CRITICAL.value,
    logging.ERROR: LogLevel.ERROR.value,
    logging.WARNING: LogLevel.WARNING.value,
    logging.INFO: LogLevel.INFO.value,
    logging.DEBUG: LogLevel.DEBUG.value,
    logging.NOTSET: LogLevel.DEBUG.value,
}

# 备份原始配置（用于恢复），避免测试之间相互污染
_INTERCEPT_ORIGINAL_CONFIG: Dict[str, tuple[list[logging.Handler], bool, int]] = {}


class _InterceptHandler(logging.Handler):
    """标准库 logging.Handler 适配器（将日志重定向到 Loguru）

    Note:
        - Loguru 通过栈帧定位调用位置，拦截后需跳过 logging 模块内部的帧
        - 不要拦截 Loguru 自己的 logger（会导致递归）
    """

    @override
    def emit(self, record: logging.LogRecord) -> None:
        try:
            level = _LOGGING_TO_LOGURU_LEVEL.get(record.levelno, LogLevel.INFO.value)

            frame = logging.currentframe()
            depth = 2
            while frame and frame.f_code.co_filename == logging.__file__:
                frame = frame.f_back
                depth += 1
                if depth > 20:
                    break

            loguru_logger.opt(depth=depth, exception=record.exc_info).log(level, record.getMessage())
        except Exception:
            self.handleError(record)


def intercept_loggers(logger_names: Iterable[str], level: int | None = None) -> None:
    """拦截标准库 logger 并重定向到 Loguru

    Args:
        logger_names: 需要拦截的 logger 名称列表，例如 ["sqlalchemy.engine", "docker"]
        level: 可选的日志级别（如 logging.WARNING），None 表示不修改

    Note:
        - 多次调用只会备份一次原始配置，可安全地在每次建立连接时调用
    """
    handler = _InterceptHandler()

    for name in logger_names:
        lg = logging.getLogger(name)

        if name not in _INTERCEPT_ORIGINAL_CONFIG:
            _INTERCEPT_ORIGINAL_CONFIG[name] = (lg.handlers[:], lg.propagate, lg.level)

        lg.handlers = [handler]
        lg.propagate = False
        if level is not None:
            lg.setLevel(level)


def restore_loggers(logger_names: Iterable[str]) -> None:
    """恢复被拦截 logger 的原始配置（未拦截的直接跳过）"""
    for name in logger_names:
        if name in _INTERCEPT_ORIGINAL_CONFIG:
            handlers, propagate, level = _INTERCEPT_ORIGINAL_CONFIG.pop(name)
            lg = logging.getLogger(name)
            lg.handlers = handlers
            lg.propagate = propagate
            lg.setLevel(level)


def build_logging_config_from_local(local_logging: LoggingSettings, *, debug: bool = False) -> LoggingConfig:
    """从本地配置构建 LoggingConfig 对象

    Args:
        local_logging: 本地日志配置
        debug: CLI --debug，强制使用 DEBUG 级别
    """
    cfg = LoggingConfig(
        level=LogLevel.DEBUG if debug else _parse_level(local_logging.level),
        enqueue=local_logging.enqueue,
        backtrace=local_logging.backtrace,
        diagnose=local_logging.diagnose,
    )

    if local_logging.format_str:
        cfg.format_str = local_logging.format_str

    return cfg


def _build_sink_configs_from_local(
        local_logging: LoggingSettings,
        log_dir: Path,
        app_name: str,
        *,
        allow_file_sink: bool = True,
) -> Dict[SinkKind, ConsoleSinkConfig | FileSinkConfig]:
    """从本地配置构建 Sink 配置字典

    Note:
        - 文件名使用 app_name（如 ~/.kubexdb/logs/kubexdb.log）
        - 日志目录不可写时 allow_file_sink=False，降级为仅控制台输出
    """
    sink_cfgs: Dict[SinkKind, ConsoleSinkConfig | FileSinkConfig] = {}

    sink_names = {name.strip().lower() for name in (local_logging.sinks or []) if name and name.strip()}

    if SinkKind.CONSOLE.value in sink_names and local_logging.console.enabled:
        sink_cfgs[SinkKind.CONSOLE] = ConsoleSinkConfig(enabled=True)

    if SinkKind.FILE.value in sink_names and local_logging.file.enabled and allow_file_sink:
        sink_cfgs[SinkKind.FILE] = FileSinkConfig(
            enabled=True,
            filename=log_dir / f"{app_name}.log",
            rotation=local_logging.file.rotation,
            compression=local_logging.file.compression,
        )

    return sink_cfgs


def configure_loguru_logger(
        logging_cfg: LoggingConfig,
        sink_cfgs: Mapping[SinkKind, ConsoleSinkConfig | FileSinkConfig],
) -> Any:
    """配置 Loguru logger（移除默认 Sink、注入 op_id、按配置安装 Sink）

    Note:
        - 单个 Sink 安装失败不会影响其他 Sink，错误写入 sys.stderr
    """
    loguru_logger.remove()
    loguru_logger.configure(patcher=_op_id_patcher)

    for kind, cfg in sink_cfgs.items():
        installer = _SINK_REGISTRY.get(kind)
        if installer:
            try:
                installer(loguru_logger, logging_cfg, cfg)
            except Exception as e:
                sys.stderr.write(f"[logging] Failed to install sink {kind}: {e}\n")

    return loguru_logger


# 幂等性标记，防止重复添加 Sink 导致日志重复输出
_LOGGER_INITIALIZED = False


def create_app_logger(
        settings: LocalSettings,
        *,
        paths: PathSettings | None = None,
        debug: bool = False,
        force: bool = False,
) -> Any:
    """初始化全局日志系统（CLI 入口调用一次）

    执行以下步骤：
        1. 幂等性检查（已初始化且非强制模式时直接返回）
        2. 确保日志目录可访问，失败时禁用文件 Sink
        3. 构建 LoggingConfig 与 Sink 配置并安装
        4. 把第三方库的标准库日志拦截到 Loguru

    Args:
        settings (LocalSettings): 本地配置
        paths (PathSettings | None): 路径配置，None 时使用全局探测结果
        debug (bool): CLI --debug
        force (bool): 是否强制重新初始化

    Returns:
        Any: Loguru logger 实例（全局单例）
    """
    global _LOGGER_INITIALIZED

    if _LOGGER_INITIALIZED and not force:
        return loguru_logger

    paths = paths or get_path_settings()
    local_logging = settings.logging

    allow_file_sink = True
    try:
        paths.ensure_runtime_dirs()
    except OSError as exc:
        allow_file_sink = False
        sys.stderr.write(f"[logging] 无法访问日志目录: {exc}. 文件 Sink 已禁用。\n")

    logging_cfg = build_logging_config_from_local(local_logging, debug=debug)
    sink_cfgs = _build_sink_configs_from_local(
        local_logging=local_logging,
        log_dir=paths.log_dir,
        app_name=settings.app_name or AppConstants.DEFAULT_APP_NAME,
        allow_file_sink=allow_file_sink,
    )

    logger_obj = configure_loguru_logger(logging_cfg, sink_cfgs)
    intercept_loggers(THIRD_PARTY_LOGGERS, level=logging.DEBUG if debug else logging.WARNING)

    _LOGGER_INITIALIZED = True
    return logger_obj
