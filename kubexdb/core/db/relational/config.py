from __future__ import annotations

import re
from typing import Any

from pydantic import BaseModel, ConfigDict, Field

# Go 风格时长："30m"、"1h30m"、"90s"、"500ms"
_DURATION_RE = re.compile(r"(\d+(?:\.\d+)?)(ms|h|m|s)")
_DURATION_UNITS = {"h": 3600.0, "m": 60.0, "s": 1.0, "ms": 0.001}


def parse_duration(value: Any) -> int:
    """把时长解析为整秒

    - 数字按秒处理
    - 字符串支持 h / m / s / ms 组合（如 "1h30m"）
    - 空值返回 -1（永不回收）

    Raises:
        ValueError: 无法解析的时长
    """
    if value is None or value == "":
        return -1
    if isinstance(value, (int, float)) and not isinstance(value, bool):
        return int(value)

    text = str(value).strip().lower()
    if text.lstrip("-").isdigit():
        return int(text)

    total = 0.0
    pos = 0
    for match in _DURATION_RE.finditer(text):
        if match.start() != pos:
            break
        total += float(match.group(1)) * _DURATION_UNITS[match.group(2)]
        pos = match.end()
    if pos != len(text) or pos == 0:
        raise ValueError(f"无效的时长: {value!r}")
    return int(total)


class PostgresPoolConfig(BaseModel):
    """PostgreSQL 连接池参数

    由 DBConfig.options 推导：
    - max_connections -> pool_size
    - pool_max_lifetime -> pool_recycle（秒）
    - connect_timeout -> asyncpg 建连超时（秒）
    - application_name -> server_settings.application_name

    Attributes:
        pool_size (int): 连接池核心大小
        max_overflow (int): 允许的溢出连接数
        pool_recycle (int): 连接最大存活时间，-1 表示不回收
        connect_timeout (float): 单次建连超时
        application_name (str): 服务端可见的应用名
        echo (bool): 输出 SQL 调试日志
    """
    model_config = ConfigDict(extra="forbid")

    pool_size: int = Field(default=10, ge=1)
    max_overflow: int = Field(default=0, ge=0)
    pool_recycle: int = Field(default=-1, ge=-1)
    connect_timeout: float = Field(default=10.0, gt=0)
    application_name: str = ""
    echo: bool = False

    @classmethod
    def from_options(cls, options: dict[str, Any], *, debug: bool = False) -> "PostgresPoolConfig":
        data: dict[str, Any] = {"echo": debug}
        if options.get("max_connections") not in (None, ""):
            data["pool_size"] = int(options["max_connections"])
        if options.get("max_overflow") not in (None, ""):
            data["max_overflow"] = int(options["max_overflow"])
        if "pool_max_lifetime" in options:
            data["pool_recycle"] = parse_duration(options["pool_max_lifetime"])
        if options.get("connect_timeout") not in (None, ""):
            data["connect_timeout"] = float(options["connect_timeout"])
        if options.get("application_name"):
            data["application_name"] = str(options["application_name"])
        return cls(**data)
