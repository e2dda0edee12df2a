from __future__ import annotations

import asyncio
import time
from dataclasses import dataclass, field
from typing import Any

from loguru import logger

from ..config.enums import ConnState, DBType
from ..config.models import DBConfigResolved, DBConfigSpec
from ..errors import ConnectTimeout
from .base import Driver


@dataclass(eq=False)
class DBConnection:
    """运行期连接句柄：声明式配置 + 协调结果 + 独占的驱动实例

    Attributes:
        spec (DBConfigSpec): 原始声明式配置
        resolved (DBConfigResolved): 协调后的最终配置（端口、密码、DSN）
        driver (Driver): 驱动实例，由本连接独占
        state (ConnState): 生命周期状态
        lock (asyncio.Lock): 串行化同一连接上的 ping / 重连
    """
    spec: DBConfigSpec
    resolved: DBConfigResolved
    driver: Driver
    state: ConnState = ConnState.UNCONNECTED
    lock: asyncio.Lock = field(default_factory=asyncio.Lock)

    @property
    def id(self) -> str:
        return self.spec.id

    @property
    def kind(self) -> DBType:
        return self.spec.type

    @property
    def handle(self) -> Any:
        """底层客户端。调用方不应在 get_* 调用范围之外保留该引用"""
        return self.driver.handle

    @property
    def is_live(self) -> bool:
        return self.state is ConnState.CONNECTED

    async def connect(self, timeout: float) -> None:
        """在截止时间内建立连接

        Raises:
            ConnectTimeout: 超过 timeout 秒
            asyncio.CancelledError: 调用方取消，状态回到 UNCONNECTED
        """
        try:
            await asyncio.wait_for(self.driver.connect(self.resolved), timeout=timeout)
        except asyncio.TimeoutError as exc:
            self.state = ConnState.UNCONNECTED
            raise ConnectTimeout(self.id, timeout) from exc
        except BaseException:
            self.state = ConnState.UNCONNECTED
            raise
        self.state = ConnState.CONNECTED
        logger.info(f"数据库连接已建立 id={self.id} type={self.kind.value} dsn={self.resolved.redacted_dsn}")

    async def probe(self, timeout: float) -> tuple[bool, BaseException | None, float]:
        """执行一次带截止时间的 ping

        Returns:
            (是否可用, 失败原因, 耗时毫秒)
        """
        if self.state is ConnState.CLOSED:
            return False, None, 0.0

        started = time.perf_counter()
        try:
            ok = bool(await asyncio.wait_for(self.driver.ping(), timeout=timeout))
            error = None
        except asyncio.TimeoutError as exc:
            ok, error = False, exc
        except asyncio.CancelledError:
            raise
        except Exception as exc:
            ok, error = False, exc
        latency_ms = (time.perf_counter() - started) * 1000
        if not ok:
            logger.debug(f"数据库 ping 失败 id={self.id}: {error!r}")
        return ok, error, latency_ms

    async def ping(self, timeout: float) -> bool:
        ok, _, _ = await self.probe(timeout)
        return ok

    async def close(self) -> None:
        try:
            await self.driver.close()
        finally:
            self.state = ConnState.CLOSED
