from __future__ import annotations

import asyncio
import random
import time
from abc import ABC, abstractmethod
from typing import Final

from loguru import logger

# 单次 tick 的最长执行时间（秒）
DEFAULT_TICK_TIMEOUT: Final[float] = 60.0

# stop() 等待后台任务退出的最长时间（秒）
STOP_TIMEOUT: Final[float] = 5.0


class BackgroundWatcher(ABC):
    """周期性后台任务骨架

    子类实现 tick()；基类负责调度循环、失败退避（间隔翻倍直到 max_interval）、
    抖动以及可中断的休眠。start()/stop() 均幂等，只能在事件循环内使用
    """

    def __init__(
            self,
            *,
            name: str,
            min_interval: float = 2.0,
            max_interval: float = 30.0,
            jitter: float = 0.1,
            tick_timeout: float = DEFAULT_TICK_TIMEOUT,
            stop_timeout: float = STOP_TIMEOUT,
    ) -> None:
        self._name = name
        self._jitter = max(0.0, min(jitter, 1.0))
        self._tick_timeout = max(0.1, tick_timeout)
        self._stop_timeout = max(0.1, stop_timeout)
        self._min_interval = max(0.1, min_interval)
        self._max_interval = max(self._min_interval, max_interval)
        self._task: asyncio.Task[None] | None = None
        self._stopped = asyncio.Event()

    @property
    def running(self) -> bool:
        return self._task is not None and not self._task.done()

    async def start(self) -> None:
        if self._task is not None:
            return
        self._stopped.clear()
        self._task = asyncio.create_task(self._run_loop(), name=f"watcher:{self._name}")
        await asyncio.sleep(0)
        logger.info(f"后台观察者[{self._name}] 已启动。")

    async def stop(self) -> None:
        if self._task is None:
            return

        self._stopped.set()
        self._task.cancel()
        try:
            await asyncio.wait_for(self._task, timeout=self._stop_timeout)
        except asyncio.TimeoutError:
            logger.warning(f"后台观察者[{self._name}] 在 {self._stop_timeout}秒内未能停止，放弃等待。")
        except asyncio.CancelledError:
            current = asyncio.current_task()
            if current is not None and current.cancelling():
                raise
        finally:
            self._task = None
        logger.info(f"后台观察者[{self._name}] 已停止。")

    async def wait(self) -> None:
        """阻塞直到观察者被停止（用于 --keep-alive 前台驻留）"""
        await self._stopped.wait()

    async def _run_loop(self) -> None:
        interval = self._min_interval
        while not self._stopped.is_set():
            started = time.perf_counter()
            try:
                await asyncio.wait_for(self.tick(), timeout=self._tick_timeout)
                interval = self._min_interval
            except asyncio.CancelledError:
                logger.debug(f"后台观察者[{self._name}] 任务被取消。")
                raise
            except asyncio.TimeoutError:
                logger.error(f"后台观察者[{self._name}] 执行超时 (> {self._tick_timeout}秒)。")
                interval = min(interval * 2, self._max_interval)
            except Exception:
                logger.exception(f"后台观察者[{self._name}] 执行出错")
                interval = min(interval * 2, self._max_interval)

            sleep_for = max(interval - (time.perf_counter() - started), 0.1)
            if self._jitter > 0:
                sleep_for *= random.uniform(1 - self._jitter, 1 + self._jitter)

            try:
                await asyncio.wait_for(self._stopped.wait(), timeout=sleep_for)
                break
            except asyncio.TimeoutError:
                continue

    @abstractmethod
    async def tick(self) -> None:
        """单次轮询逻辑，应当幂等并能响应取消"""
