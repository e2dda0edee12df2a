from __future__ import annotations

import io
import locale
import os
from functools import lru_cache
from pathlib import Path
from typing import Any, Dict, List, Optional

from dynaconf import Dynaconf
from pydantic import BaseModel, ConfigDict, Field, field_validator

from .constants import (
    AppConstants,
    CONNECT_TIMEOUT,
    DEFAULT_ENV_TYPE,
    ENVVAR_PREFIX,
    HEALTH_INTERVAL,
    PING_TIMEOUT,
    RUN_ENV_TYPE_VAR,
    SENSITIVE_KEYWORDS,
    TRUTHY_VALUES,
)
from .path_settings import get_path_settings


# ------------------------------------------------------------------
# 日志配置相关 Pydantic 模型
# ------------------------------------------------------------------
class LoggingConsoleSettings(BaseModel):
    """控制台日志输出配置"""
    model_config = ConfigDict(extra="forbid")

    enabled: bool = True


class LoggingFileSettings(BaseModel):
    """文件日志输出配置

    Attributes:
        enabled (bool): 是否启用文件日志输出。默认为 True
        rotation (str): 日志文件滚动策略。默认为 "20 MB"
        compression (str): 日志文件压缩格式。默认为 "zip"
    """
    model_config = ConfigDict(extra="forbid")

    enabled: bool = True
    rotation: str = "20 MB"
    compression: str = "zip"


class LoggingSettings(BaseModel):
    """日志系统总配置

    Attributes:
        level (str): 全局日志级别。默认为 "INFO"
        enqueue (bool): 是否启用异步日志队列。默认为 False（CLI 进程生命周期短，同步写入更可靠）
        backtrace (bool): 是否在异常日志中包含完整堆栈追踪
        diagnose (bool): 是否启用诊断模式（显示变量值，可能泄露密码，生产环境禁止）
        format_str (Optional[str]): 自定义日志格式字符串
        sinks (List[str]): 启用的日志输出方式列表
        console (LoggingConsoleSettings): 控制台日志配置
        file (LoggingFileSettings): 文件日志配置
    """
    model_config = ConfigDict(extra="forbid")

    level: str = "INFO"
    enqueue: bool = False
    backtrace: bool = False
    diagnose: bool = False
    format_str: Optional[str] = None
    sinks: List[str] = Field(default_factory=lambda: ["console", "file"])
    console: LoggingConsoleSettings = Field(default_factory=LoggingConsoleSettings)
    file: LoggingFileSettings = Field(default_factory=LoggingFileSettings)


def _safe_load_dotenv(env_file: str | os.PathLike[str] | None = None, override: bool = False) -> Path | None:
    """以跨平台兼容的编码策略把 .env 加载进 os.environ

    优先按 UTF-8（含 BOM）读取，失败回退到系统首选编码/GBK，避免 Windows 中文环境下的 UnicodeDecodeError

    Args:
        env_file: 显式指定的 .env 路径（CLI --env-file）。为空时查找当前工作目录下的 .env
        override: 是否覆盖已存在的环境变量

    Returns:
        成功加载的路径；文件不存在时返回 None
    """
    dotenv_path = Path(env_file) if env_file else Path.cwd() / ".env"
    if not dotenv_path.is_file():
        return None

    # Dynaconf vendor 的 python-dotenv（随 dynaconf 依赖一起安装）
    from dynaconf.vendor.dotenv.main import load_dotenv

    preferred = locale.getpreferredencoding(False) or ""
    encodings: tuple[str, ...] = tuple(dict.fromkeys(("utf-8-sig", "utf-8", preferred, "gbk")))

    for enc in encodings:
        if not enc:
            continue
        try:
            text = dotenv_path.read_text(encoding=enc)
        except UnicodeDecodeError:
            continue
        # vendor 版 dotenv 只把 StringIO 当作流处理
        load_dotenv(stream=io.StringIO(text), override=override)
        return dotenv_path

    text = dotenv_path.read_text(encoding="utf-8", errors="replace")
    load_dotenv(stream=io.StringIO(text), override=override)
    return dotenv_path


def _coerce_truthy(value: Any) -> bool:
    """把环境变量风格的取值规范化为布尔值（true|1|yes|y 为真）"""
    if isinstance(value, bool):
        return value
    if value is None:
        return False
    return str(value).strip().lower() in TRUTHY_VALUES


# ------------------------------------------------------------------
# 本地配置主模型
# ------------------------------------------------------------------
class LocalSettings(BaseModel):
    """本地进程配置（基于 Dynaconf 加载）

    配置加载优先级（从高到低）：
    1. 环境变量（带 KUBEXDB_ 前缀，如 KUBEXDB_CONFIGFILE）
    2. ~/.kubexdb/settings.toml 中的环境特定配置（如 [dev]、[prod]）
    3. ~/.kubexdb/settings.toml 中的默认配置
    4. Pydantic 模型的字段默认值

    Attributes:
        env (str): 当前运行环境标识
        app_name (str): 应用名，写入默认 PostgreSQL 配置的 application_name
        configfile (Optional[str]): 根配置文件路径覆盖
        keyfile (Optional[str]): TLS 私钥文件路径
        certfile (Optional[str]): TLS 证书文件路径
        hidebanner (bool): 是否隐藏 CLI 启动横幅
        host_ip (Optional[str]): 端口绑定使用的宿主机 IP 覆盖
        volume_root (Optional[str]): 容器卷根目录覆盖
        connect_timeout (float): 单库 connect 截止时间（秒）
        ping_timeout (float): 单库 ping 截止时间（秒）
        health_interval (float): keep-alive 模式下后台巡检间隔（秒）
        logging (LoggingSettings): 日志系统配置
    """
    model_config = ConfigDict(extra="ignore")

    env: str = Field(default=DEFAULT_ENV_TYPE, description="当前运行环境标识（dev/test/prod...）。")
    app_name: str = Field(default=AppConstants.DEFAULT_APP_NAME, min_length=1)
    configfile: Optional[str] = None
    keyfile: Optional[str] = None
    certfile: Optional[str] = None
    hidebanner: bool = False
    host_ip: Optional[str] = None
    volume_root: Optional[str] = None
    connect_timeout: float = Field(default=CONNECT_TIMEOUT, gt=0)
    ping_timeout: float = Field(default=PING_TIMEOUT, gt=0)
    health_interval: float = Field(default=HEALTH_INTERVAL, gt=0)
    logging: LoggingSettings = Field(default_factory=LoggingSettings)

    @field_validator("hidebanner", mode="before")
    @classmethod
    def validate_hidebanner(cls, v: Any) -> bool:
        # dynaconf 会把 "1" 解析成整数、"yes" 保留为字符串，这里统一规范化
        return _coerce_truthy(v)

    @field_validator("configfile", "keyfile", "certfile", "host_ip", "volume_root", mode="before")
    @classmethod
    def blank_as_none(cls, v: Any) -> Any:
        if isinstance(v, str) and not v.strip():
            return None
        return v

    def _mask_value(self, key: str, value: Any) -> Any:
        """对敏感字段值进行脱敏处理

        Note:
            - 短字符串（长度 <= 6）全部替换为 "******"
            - 长字符串显示前 2 位和后 2 位
        """
        if isinstance(value, dict):
            return {k: self._mask_value(k, v) for k, v in value.items()}

        if any(keyword in key.lower() for keyword in SENSITIVE_KEYWORDS):
            if isinstance(value, str) and value:
                if len(value) <= 6:
                    return "******"
                return f"{value[:2]}****{value[-2:]}"
            if value is None:
                return None
            return "*****"

        return value

    def model_dump_safe(self) -> Dict[str, Any]:
        """返回脱敏后的配置字典（用于日志输出）"""
        raw = self.model_dump(mode="json")
        return {k: self._mask_value(k, v) for k, v in raw.items()}

    def __repr__(self) -> str:
        return f"LocalSettings({self.model_dump_safe()})"


@lru_cache(maxsize=1)
def _create_dynaconf() -> Dynaconf:
    """创建 Dynaconf 实例（通过 lru_cache 缓存）

    Note:
        - settings.toml 不存在时 Dynaconf 只读取环境变量，不会报错
        - load_dotenv=False：.env 由 _safe_load_dotenv 先行注入 os.environ
    """
    paths = get_path_settings()
    env = os.getenv(RUN_ENV_TYPE_VAR, DEFAULT_ENV_TYPE)

    return Dynaconf(
        env=env,
        environments=True,
        settings_files=[str(paths.settings_file)],
        load_dotenv=False,
        merge_enabled=True,
        envvar_prefix=ENVVAR_PREFIX,
    )


def load_local_settings(env_file: str | os.PathLike[str] | None = None) -> LocalSettings:
    """加载本地配置并生成强类型 Pydantic 模型

    Args:
        env_file: 可选的 .env 文件路径（CLI --env-file）

    Returns:
        LocalSettings: 强类型配置对象

    Raises:
        ValidationError: 当字段值不符合约束时抛出
    """
    _safe_load_dotenv(env_file, override=False)
    dynaconf = _create_dynaconf()

    data: Dict[str, Any] = {
        "env": dynaconf.get("env", DEFAULT_ENV_TYPE),
        "app_name": dynaconf.get("app_name", AppConstants.DEFAULT_APP_NAME),
        "configfile": dynaconf.get("configfile"),
        "keyfile": dynaconf.get("keyfile"),
        "certfile": dynaconf.get("certfile"),
        "hidebanner": dynaconf.get("hidebanner", False),
        "host_ip": dynaconf.get("host_ip"),
        "volume_root": dynaconf.get("volume_root"),
        "connect_timeout": dynaconf.get("connect_timeout", CONNECT_TIMEOUT),
        "ping_timeout": dynaconf.get("ping_timeout", PING_TIMEOUT),
        "health_interval": dynaconf.get("health_interval", HEALTH_INTERVAL),
        "logging": LoggingSettings(**(dynaconf.get("logging", {}) or {})),
    }

    return LocalSettings(**data)
