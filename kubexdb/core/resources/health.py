from __future__ import annotations

import time
from dataclasses import dataclass, field
from enum import Enum
from typing import Any

from ..config.enums import DBType


class HealthStatus(str, Enum):
    """连接健康状态

    - UNKNOWN: 尚未探测
    - INIT: 连接尚未建立
    - HEALTHY: 最近一次 ping 成功
    - DEGRADED: ping 成功但耗时超过阈值
    - UNHEALTHY: ping 返回 False
    - DOWN: ping 抛出异常（包括超时）或连接已关闭
    """
    UNKNOWN = "unknown"
    INIT = "init"
    HEALTHY = "healthy"
    DEGRADED = "degraded"
    UNHEALTHY = "unhealthy"
    DOWN = "down"

    @property
    def is_healthy(self) -> bool:
        return self is HealthStatus.HEALTHY

    @property
    def is_available(self) -> bool:
        return self not in (HealthStatus.DOWN, HealthStatus.UNHEALTHY)


@dataclass(slots=True)
class ResourceHealth:
    """单个连接的健康快照

    Attributes:
        kind (DBType): 数据库类型
        name (str): 连接 ID
        status (HealthStatus): 探测结论
        message (str | None): 状态说明
        last_error (str | None): 最近一次失败原因
        details (dict[str, Any]): 附加信息（latency_ms、redacted DSN 等）
        checked_at (float): 探测时间（monotonic）
    """
    kind: DBType
    name: str
    status: HealthStatus
    message: str | None = None
    last_error: str | None = None
    details: dict[str, Any] = field(default_factory=dict)
    checked_at: float = field(default_factory=time.monotonic)

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.name,
            "type": self.kind.value,
            "status": self.status.value,
            "message": self.message,
            "last_error": self.last_error,
            **self.details,
        }
