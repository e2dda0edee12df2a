from __future__ import annotations

import importlib.metadata
from dataclasses import dataclass, field
from typing import Any, Callable

from loguru import logger

from ..config.constants import CONNECT_TIMEOUT, PING_TIMEOUT, AppConstants
from ..config.loader import load_or_bootstrap
from ..config.local_settings import LocalSettings
from ..config.models import RootConfig
from ..config.path_settings import PathSettings, get_path_settings
from ..container.adapter import ContainerEngineAdapter
from ..container.ports import is_port_free
from ..db.connection import DBConnection
from ..db.manager import DatabaseManager
from ..db.registry import DriverRegistry, default_registry
from ..errors import ConnectionClosed, NoConfigSource, RootConfigDisabled
from ..resources.health import ResourceHealth
from ..security.credentials import CredentialStore
from ..stack.provider import StackProvider, StackReport
from ..tracing.context import new_op_id


def _get_installed_version(candidates: tuple[str, ...]) -> str:
    for dist_name in candidates:
        try:
            return importlib.metadata.version(dist_name)
        except importlib.metadata.PackageNotFoundError:
            continue
    return AppConstants.DEFAULT_VERSION


def get_app_version() -> str:
    """读取已安装发行包的版本号，未安装（开发模式）时返回默认版本号"""
    return _get_installed_version(AppConstants.DISTRIBUTION_NAMES)


@dataclass(slots=True)
class RuntimeOptions:
    """bootstrap 的可选参数

    Attributes:
        app_name (str): 合成默认配置时写入的应用名
        file_path (str): 根配置文件路径
        provision (bool): 是否先通过 Stack Provider 拉起容器
        registry (DriverRegistry | None): 驱动注册表，None 时使用 default_registry()
        engine (ContainerEngineAdapter | None): 容器引擎适配器，provision 时按需创建
        credentials (CredentialStore | None): 凭据存储，provision 时按需创建
        connect_timeout (float): connect 截止时间（秒）
        ping_timeout (float): ping 截止时间（秒）
        volume_root (str): 容器卷根目录，为空时使用 ~/.kubexdb/volumes
        port_probe (Callable[[int], bool]): 本机端口探测函数
        host_ip (str | None): 端口绑定使用的宿主机 IP，None 时自动探测
    """
    app_name: str = AppConstants.DEFAULT_APP_NAME
    file_path: str = ""
    provision: bool = False
    registry: DriverRegistry | None = None
    engine: ContainerEngineAdapter | None = None
    credentials: CredentialStore | None = None
    connect_timeout: float = CONNECT_TIMEOUT
    ping_timeout: float = PING_TIMEOUT
    volume_root: str = ""
    port_probe: Callable[[int], bool] = field(default=is_port_free)
    host_ip: str | None = None

    @classmethod
    def from_settings(
            cls,
            settings: LocalSettings,
            *,
            paths: PathSettings | None = None,
            **overrides: Any,
    ) -> "RuntimeOptions":
        """由本地配置（环境变量 / settings.toml）推导运行参数，显式参数优先"""
        paths = paths or get_path_settings()
        data: dict[str, Any] = {
            "app_name": settings.app_name,
            "file_path": settings.configfile or str(paths.config_file),
            "connect_timeout": settings.connect_timeout,
            "ping_timeout": settings.ping_timeout,
            "volume_root": settings.volume_root or str(paths.volume_root),
            "host_ip": settings.host_ip,
        }
        data.update({k: v for k, v in overrides.items() if v is not None})
        return cls(**data)


class Runtime:
    """bootstrap 返回的运行期句柄

    调用方只与该对象交互，连接获取委托给 DatabaseManager.secure_conn
    """

    def __init__(
            self,
            config: RootConfig,
            manager: DatabaseManager,
            report: StackReport | None = None,
            *,
            engine: ContainerEngineAdapter | None = None,
    ) -> None:
        self._config = config
        self._manager = manager
        self._report = report
        # 仅持有 bootstrap 自行创建的适配器，调用方传入的由调用方关闭
        self._engine = engine

    @property
    def config(self) -> RootConfig:
        return self._config

    @property
    def manager(self) -> DatabaseManager:
        return self._manager

    @property
    def report(self) -> StackReport | None:
        return self._report

    async def health_check(self) -> None:
        await self._manager.health_check()

    async def health_snapshot(self) -> list[ResourceHealth]:
        return await self._manager.health_snapshot()

    async def conn(self, name: str | None = None) -> DBConnection:
        """获取经过存活确认的连接，name 为空时使用默认连接

        Raises:
            ConnectionClosed: 连接不存在或已关闭
            ReconnectFailed: 重连失败
        """
        db_id = name or self._manager.default_id
        if not db_id:
            raise ConnectionClosed("没有可用的默认连接")
        return await self._manager.secure_conn(db_id)

    async def migrate(
            self,
            *,
            dry_run: bool | None = None,
            reset: bool | None = None,
            force: bool | None = None,
    ) -> list[str]:
        return await self._manager.migrate(dry_run=dry_run, reset=reset, force=force)

    async def shutdown(self) -> list[BaseException]:
        errors = await self._manager.shutdown()
        if self._engine is not None:
            self._engine.close()
            self._engine = None
        return errors

    async def __aenter__(self) -> "Runtime":
        return self

    async def __aexit__(self, *exc_info: Any) -> None:
        await self.shutdown()


async def bootstrap(cfg: RootConfig | None = None, opts: RuntimeOptions | None = None) -> Runtime:
    """一次调用完成：加载根配置 ->（可选）容器编排 -> 建立连接

    Args:
        cfg: 已有的根配置；为 None 时从 opts.file_path 加载（不存在则合成默认配置）
        opts: 运行参数

    Returns:
        Runtime: 运行期句柄

    Raises:
        NoConfigSource: cfg 为空且 opts.file_path 为空
        RootConfigDisabled: 根配置被禁用
        NoConnectionsAvailable: 没有任何可用连接
    """
    opts = opts or RuntimeOptions()
    if cfg is None and not opts.file_path:
        raise NoConfigSource("既没有传入根配置，也没有指定配置文件路径")

    new_op_id()
    root = cfg if cfg is not None else await load_or_bootstrap(opts.file_path, app_name=opts.app_name)
    if not root.enabled:
        raise RootConfigDisabled(f"根配置已被禁用: {root.name}")

    report: StackReport | None = None
    owned_engine: ContainerEngineAdapter | None = None
    try:
        if opts.provision:
            engine = opts.engine
            if engine is None:
                engine = owned_engine = ContainerEngineAdapter()
            provider = StackProvider(
                engine,
                opts.credentials or CredentialStore(),
                volume_root=opts.volume_root or get_path_settings().volume_root,
                port_probe=opts.port_probe,
                host_ip=opts.host_ip,
            )
            report = await provider.start_services(root)
            if report.skipped:
                root = root.model_copy(
                    update={"databases": [db for db in root.databases if db.id not in report.skipped]}
                )

        manager = DatabaseManager(
            opts.registry or default_registry(),
            connect_timeout=opts.connect_timeout,
            ping_timeout=opts.ping_timeout,
        )
        await manager.init_from_root(root, report.resolved if report else None)
    except BaseException:
        if owned_engine is not None:
            owned_engine.close()
        raise

    logger.info(f"运行时已就绪: {root.name or '<unnamed>'}")
    return Runtime(root, manager, report, engine=owned_engine)
