from __future__ import annotations

import asyncio
from contextlib import asynccontextmanager
from typing import AsyncIterator, Mapping
from typing_extensions import override

from loguru import logger

from ..config.constants import CONNECT_TIMEOUT, HEALTH_INTERVAL, PING_TIMEOUT
from ..config.enums import ConnState
from ..config.models import DBConfigResolved, RootConfig
from ..errors import (
    ConnectionClosed,
    DriverUnavailable,
    HealthCheckFailed,
    NoConnectionsAvailable,
    ReconnectFailed,
    RootConfigDisabled,
    ValidationFailed,
)
from ..resources.health import HealthStatus, ResourceHealth
from ..resources.watcher import BackgroundWatcher
from .connection import DBConnection
from .registry import DriverRegistry
from .rwlock import AsyncRWLock

# ping 耗时超过该阈值（毫秒）时健康快照标记为 DEGRADED
SLOW_PING_MS = 1000.0


class DatabaseManager:
    """运行期连接注册表

    连接表与 default_id 由同一把读写锁保护：
    - init_from_root / shutdown 持有写锁
    - get_default / get_by_id / borrow / secure_conn / health_check 持有读锁
    - secure_conn 的重连分支额外持有该连接自己的互斥锁，同一连接上的重连互相串行

    连接表的键永远等于其值的配置 id；default_id 要么为空，要么是有效的键

    Attributes:
        self._registry (DriverRegistry): 驱动注册表（由构造方传入，不依赖进程级全局状态）
        self._connect_timeout (float): connect 截止时间（秒）
        self._ping_timeout (float): ping 截止时间（秒）
        self._conns (dict[str, DBConnection]): 连接表
        self._default_id (str): 默认连接 ID
    """

    def __init__(
            self,
            registry: DriverRegistry,
            *,
            connect_timeout: float = CONNECT_TIMEOUT,
            ping_timeout: float = PING_TIMEOUT,
    ) -> None:
        self._registry = registry
        self._connect_timeout = connect_timeout
        self._ping_timeout = ping_timeout
        self._lock = AsyncRWLock()
        self._conns: dict[str, DBConnection] = {}
        self._default_id = ""

    @property
    def registry(self) -> DriverRegistry:
        return self._registry

    @property
    def default_id(self) -> str:
        return self._default_id

    # ------------------------------------------------------------------
    # 初始化
    # ------------------------------------------------------------------
    async def init_from_root(
            self,
            root: RootConfig | None,
            resolved: Mapping[str, DBConfigResolved] | None = None,
    ) -> None:
        """按根配置建立全部连接

        对每个启用的条目：校验 -> 查找驱动工厂 -> 构造驱动 -> 在截止时间内 connect
        校验失败、缺少驱动、连接失败或超时都只记录日志并跳过该条目

        Args:
            root: 根配置
            resolved: Stack Provider 的协调结果（按 id），缺失的条目由 DBConfigResolved.from_spec() 推导

        Raises:
            RootConfigDisabled: root 为空或被禁用
            NoConnectionsAvailable: 遍历结束后连接表为空
        """
        if root is None or not root.enabled:
            raise RootConfigDisabled(f"根配置不存在或已被禁用: {getattr(root, 'name', '')}")

        resolved = resolved or {}
        async with self._lock.write():
            if self._conns:
                logger.info("重新初始化数据库管理器，正在关闭现有连接")
                await self._close_all()

            for spec in root.databases:
                if not spec.is_enabled:
                    logger.info(f"数据库 '{spec.id}' ({spec.type.value}) 已禁用，跳过")
                    continue

                cfg = resolved.get(spec.id) or DBConfigResolved.from_spec(spec)
                try:
                    conn = await self._open(cfg)
                except (ValidationFailed, DriverUnavailable) as exc:
                    logger.warning(f"跳过数据库 '{spec.id}': {exc}")
                    continue
                except asyncio.CancelledError:
                    raise
                except Exception as exc:
                    logger.error(f"连接数据库 '{spec.id}' 失败 ({cfg.redacted_dsn}): {exc}")
                    continue

                self._conns[spec.id] = conn
                if not self._default_id or spec.is_default:
                    self._default_id = spec.id

            if not self._conns:
                raise NoConnectionsAvailable()

        logger.success(f"数据库管理器初始化完成: {list(self._conns)}，默认连接: {self._default_id}")

    async def _open(self, cfg: DBConfigResolved) -> DBConnection:
        validator = self._registry.validator(cfg.type)
        if validator is not None:
            validator(cfg)

        factory = self._registry.driver_factory(cfg.type)
        if factory is None:
            raise DriverUnavailable(cfg.type.value)

        conn = DBConnection(spec=cfg.spec, resolved=cfg, driver=factory())
        await conn.connect(self._connect_timeout)
        return conn

    # ------------------------------------------------------------------
    # 查询
    # ------------------------------------------------------------------
    def _lookup(self, db_id: str) -> DBConnection | None:
        conn = self._conns.get(db_id)
        if conn is None or conn.state is ConnState.CLOSED:
            return None
        return conn

    async def get_default(self) -> DBConnection | None:
        async with self._lock.read():
            return self._lookup(self._default_id) if self._default_id else None

    async def get_by_id(self, db_id: str) -> DBConnection | None:
        async with self._lock.read():
            return self._lookup(db_id)

    async def ids(self) -> list[str]:
        async with self._lock.read():
            return list(self._conns)

    @asynccontextmanager
    async def borrow(self, db_id: str | None = None) -> AsyncIterator[DBConnection]:
        """在读锁内借出连接，块内 shutdown 不会关闭它

        Raises:
            ConnectionClosed: 连接不存在或已关闭
        """
        async with self._lock.read():
            conn = self._lookup(db_id or self._default_id)
            if conn is None:
                raise ConnectionClosed(f"连接不存在或已关闭: {db_id or '<default>'}")
            yield conn

    async def secure_conn(self, db_id: str) -> DBConnection:
        """返回一个确认可用的连接，必要时透明重连

        ping 失败时复用同一份配置重新 connect；整个过程持有读锁与该连接的互斥锁

        Raises:
            ConnectionClosed: 连接不存在或已关闭
            ReconnectFailed: 重连失败或超时
        """
        async with self._lock.read():
            conn = self._lookup(db_id)
            if conn is None:
                raise ConnectionClosed(f"连接不存在或已关闭: {db_id}")

            async with conn.lock:
                if await conn.ping(self._ping_timeout):
                    return conn

                logger.warning(f"数据库 '{db_id}' ping 失败，正在重连")
                conn.state = ConnState.RECONNECTING
                try:
                    await conn.connect(self._connect_timeout)
                except asyncio.CancelledError:
                    raise
                except Exception as exc:
                    logger.error(f"数据库 '{db_id}' 重连失败: {exc}")
                    raise ReconnectFailed(db_id, exc) from exc
                return conn

    # ------------------------------------------------------------------
    # 健康检查
    # ------------------------------------------------------------------
    async def health_check(self) -> None:
        """逐个 ping 全部连接

        Raises:
            HealthCheckFailed: 第一个不可用连接的 id 与类型
        """
        async with self._lock.read():
            for conn in self._conns.values():
                ok, error, _ = await conn.probe(self._ping_timeout)
                if not ok:
                    raise HealthCheckFailed(conn.id, conn.kind.value, error)

    async def health_snapshot(self) -> list[ResourceHealth]:
        """并发 ping 全部连接并返回健康快照（不抛出异常）"""
        async with self._lock.read():
            conns = list(self._conns.values())
            results = await asyncio.gather(*(c.probe(self._ping_timeout) for c in conns))

        snapshot: list[ResourceHealth] = []
        for conn, (ok, error, latency_ms) in zip(conns, results):
            if ok:
                status = HealthStatus.DEGRADED if latency_ms > SLOW_PING_MS else HealthStatus.HEALTHY
            elif error is None and conn.state is not ConnState.CLOSED:
                status = HealthStatus.UNHEALTHY
            else:
                status = HealthStatus.DOWN
            snapshot.append(
                ResourceHealth(
                    kind=conn.kind,
                    name=conn.id,
                    status=status,
                    message=f"state={conn.state.value}",
                    last_error=repr(error) if error is not None else None,
                    details={
                        "latency_ms": round(latency_ms, 2),
                        "dsn": conn.resolved.redacted_dsn,
                        "default": conn.id == self._default_id,
                    },
                )
            )
        return snapshot

    # ------------------------------------------------------------------
    # 迁移
    # ------------------------------------------------------------------
    async def migrate(
            self,
            *,
            dry_run: bool | None = None,
            reset: bool | None = None,
            force: bool | None = None,
    ) -> list[str]:
        """对启用了迁移块的连接调用已注册的迁移器

        命令行覆盖项为 None 时沿用 MigrationInfo 中的值

        Returns:
            list[str]: 实际执行了迁移的连接 ID
        """
        migrated: list[str] = []
        async with self._lock.read():
            for conn in self._conns.values():
                info = conn.spec.migration
                if info is None or not info.enabled:
                    continue
                migrator = self._registry.migrator(conn.kind)
                if migrator is None:
                    logger.warning(f"数据库 '{conn.id}' 启用了迁移，但类型 {conn.kind.value} 没有注册迁移器")
                    continue
                logger.info(f"正在迁移数据库 '{conn.id}' (path={info.migration_path or '-'})")
                await migrator.migrate(
                    conn,
                    info,
                    dry_run=info.dry_run if dry_run is None else dry_run,
                    reset=info.reset if reset is None else reset,
                    force=info.force if force is None else force,
                )
                migrated.append(conn.id)
        return migrated

    # ------------------------------------------------------------------
    # 关闭
    # ------------------------------------------------------------------
    async def _close_all(self) -> list[BaseException]:
        errors: list[BaseException] = []
        try:
            for conn in self._conns.values():
                try:
                    await conn.close()
                except Exception as exc:
                    logger.error(f"关闭数据库 '{conn.id}' 时出错: {exc}")
                    errors.append(exc)
        finally:
            self._conns.clear()
            self._default_id = ""
        return errors

    async def shutdown(self) -> list[BaseException]:
        """关闭全部驱动并清空连接表

        单个驱动关闭失败不会中断其余驱动的关闭

        Returns:
            list[BaseException]: 关闭过程中收集到的错误（全部成功时为空）
        """
        async with self._lock.write():
            errors = await self._close_all()
        logger.info("数据库管理器已关闭")
        return errors


class ConnectionHealthWatcher(BackgroundWatcher):
    """周期性地对每个连接调用 secure_conn，失败的连接会被尝试重连"""

    def __init__(self, manager: DatabaseManager, *, interval: float = HEALTH_INTERVAL) -> None:
        super().__init__(
            name="database-health",
            min_interval=interval,
            max_interval=interval * 4,
        )
        self._manager = manager

    @override
    async def tick(self) -> None:
        failed: list[str] = []
        for db_id in await self._manager.ids():
            try:
                await self._manager.secure_conn(db_id)
            except (ReconnectFailed, ConnectionClosed) as exc:
                logger.error(str(exc))
                failed.append(db_id)
        if failed:
            raise HealthCheckFailed(",".join(failed), "mixed")
