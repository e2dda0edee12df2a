from __future__ import annotations

import asyncio
import secrets
import string
from dataclasses import dataclass, field
from pathlib import Path
from typing import Callable

from loguru import logger

from ..config.constants import NAMESPACE
from ..config.enums import DBType
from ..config.models import DBConfigResolved, DBConfigSpec, RootConfig
from ..container.adapter import ContainerEngineAdapter
from ..container.models import VolumeBinding
from ..container.ports import find_available_port, is_port_free, map_ports
from ..errors import ContainerNotFound, PortConflict, RootConfigDisabled
from ..security.credentials import CredentialStore
from .flavors import StackFlavor, get_flavor

INIT_DIR_NAME = "init"
DATA_DIR_NAME = "data"
INIT_SQL_NAME = "init.sql"


@dataclass(frozen=True, slots=True)
class Endpoint:
    """对外暴露的连接端点（redacted 用于日志与状态输出）"""
    dsn: str
    redacted: str
    host: str
    port: int


@dataclass(slots=True)
class Capabilities:
    managed: bool
    notes: list[str] = field(default_factory=list)
    features: dict[str, bool] = field(default_factory=dict)


@dataclass(slots=True)
class StackReport:
    """一次协调的结果

    Attributes:
        resolved (dict[str, DBConfigResolved]): 按 id 的协调后配置
        endpoints (dict[str, Endpoint]): 按 id 的连接端点
        skipped (dict[str, str]): 因端口冲突等原因被跳过的条目及原因
    """
    resolved: dict[str, DBConfigResolved] = field(default_factory=dict)
    endpoints: dict[str, Endpoint] = field(default_factory=dict)
    skipped: dict[str, str] = field(default_factory=dict)


def _random_name(namespace: str = NAMESPACE, length: int = 5) -> str:
    return f"{namespace}-{''.join(secrets.choice(string.ascii_lowercase) for _ in range(length))}"


def _quote_ident(name: str) -> str:
    return '"' + name.replace('"', '""') + '"'


def render_init_sql(schema: str, user: str) -> str:
    """生成创建 schema 的初始化脚本（可重复执行）"""
    return (
        f"CREATE SCHEMA IF NOT EXISTS {_quote_ident(schema)} AUTHORIZATION {_quote_ident(user)};\n"
        f"ALTER ROLE {_quote_ident(user)} SET search_path TO {_quote_ident(schema)}, public;\n"
    )


class StackProvider:
    """把根配置协调为正在运行的容器集合（docker 单机栈）

    按声明顺序逐个处理启用的条目：
    1. 解析密码：条目未配置时从凭据存储获取（首次访问自动生成）
    2. 规范容器 kubexdb-<short> 已在运行 -> 直接沿用
    3. 否则尝试按名称启动已存在的规范容器
    4. 否则准备全新容器：卷目录、端口探测、名称、环境变量、端口与卷绑定，然后 start_container

    端口冲突只跳过当前条目；其余错误（引擎 I/O、凭据存储不可用）立即向上抛出，
    已经启动的容器不会回滚，由运维人员手动处理

    Attributes:
        self._engine (ContainerEngineAdapter): 容器引擎适配器
        self._credentials (CredentialStore): 凭据存储
        self._volume_root (Path): 卷根目录，每种类型一个子目录
        self._port_probe (Callable[[int], bool]): 本机端口探测函数
        self._host_ip (str | None): 端口绑定使用的宿主机 IP，None 时自动探测
    """
    name = "dockerstack"

    def __init__(
            self,
            engine: ContainerEngineAdapter,
            credentials: CredentialStore,
            *,
            volume_root: str | Path,
            port_probe: Callable[[int], bool] = is_port_free,
            host_ip: str | None = None,
    ) -> None:
        self._engine = engine
        self._credentials = credentials
        self._volume_root = Path(volume_root)
        self._port_probe = port_probe
        self._host_ip = host_ip

    async def capabilities(self) -> Capabilities:
        return Capabilities(
            managed=False,
            notes=["本地 docker 引擎编排，容器按 kubexdb-<short> 命名"],
            features={
                "network.internal": True,
                "publish.ports": True,
                "volumes.persist": True,
            },
        )

    async def start_services(self, root: RootConfig | None) -> StackReport:
        """协调根配置中所有启用的条目

        Raises:
            RootConfigDisabled: root 为空或被禁用（无副作用）
            EngineUnavailable: 容器引擎不可达
            CredentialStoreUnavailable: 密钥环不可用
        """
        if root is None or not root.enabled:
            raise RootConfigDisabled(f"根配置不存在或已被禁用: {getattr(root, 'name', '')}")

        report = StackReport()
        entries = root.enabled_databases()
        if not entries:
            logger.info("根配置中没有启用的数据库，跳过容器编排")
            return report

        await self._engine.initialize()

        assigned: set[int] = set()
        for spec in entries:
            flavor = get_flavor(spec.type)
            if flavor is None:
                logger.warning(f"数据库 '{spec.id}' 的类型 {spec.type.value} 不支持容器编排，跳过")
                continue

            try:
                resolved = await self._reconcile(spec, flavor, assigned)
            except PortConflict as exc:
                logger.warning(f"跳过数据库 '{spec.id}': {exc}")
                report.skipped[spec.id] = str(exc)
                continue

            assigned.add(resolved.port)
            report.resolved[spec.id] = resolved
            report.endpoints[spec.id] = Endpoint(
                dsn=resolved.dsn,
                redacted=resolved.redacted_dsn,
                host=resolved.host,
                port=resolved.port,
            )
            logger.info(f"数据库 '{spec.id}' 就绪: {resolved.redacted_dsn} (容器 {resolved.container_name})")

        return report

    async def stop_services(self, root: RootConfig | None) -> list[str]:
        """停止根配置中启用条目对应的规范容器（幂等）

        Returns:
            list[str]: 处理过的容器名
        """
        if root is None or not root.enabled:
            raise RootConfigDisabled(f"根配置不存在或已被禁用: {getattr(root, 'name', '')}")

        names: list[str] = []
        for spec in root.enabled_databases():
            flavor = get_flavor(spec.type)
            if flavor is None or flavor.canonical_name in names:
                continue
            names.append(flavor.canonical_name)

        if names:
            await self._engine.initialize()
        for name in names:
            await self._engine.stop_container(name)
        return names

    async def _reconcile(self, spec: DBConfigSpec, flavor: StackFlavor, assigned: set[int]) -> DBConfigResolved:
        password = spec.password or await self._credentials.get_or_generate(flavor.credential_name)
        user = flavor.default_user(spec)
        canonical = flavor.canonical_name

        if await self._engine.is_running(canonical):
            logger.debug(f"容器 {canonical} 已在运行，跳过创建")
            return await self._attach(spec, flavor, user, password)

        try:
            await self._engine.start_container_by_name(canonical)
        except ContainerNotFound:
            pass
        else:
            return await self._attach(spec, flavor, user, password)

        return await self._create(spec, flavor, user, password, assigned)

    async def _attach(self, spec: DBConfigSpec, flavor: StackFlavor, user: str, password: str) -> DBConfigResolved:
        # 以容器实际发布的端口为准，创建时可能因端口占用改用了其它端口
        published = await self._engine.published_port(flavor.canonical_name, flavor.port)
        port = published or spec.port_number or flavor.port
        if spec.port_number and published and published != spec.port_number:
            logger.info(f"容器 {flavor.canonical_name} 发布在端口 {published}，数据库 '{spec.id}' 不再使用声明的端口 {spec.port_number}")
        return DBConfigResolved.from_spec(
            spec,
            port=port,
            user=user,
            password=password,
            container_name=flavor.canonical_name,
        )

    async def _create(
            self,
            spec: DBConfigSpec,
            flavor: StackFlavor,
            user: str,
            password: str,
            assigned: set[int],
    ) -> DBConfigResolved:
        volume = Path(spec.options.get("volume") or self._volume_root / flavor.kind.value)
        init_dir, data_dir = await asyncio.to_thread(self._prepare_volume, volume, spec, flavor, user)

        requested = spec.port_number
        if requested is not None and requested in assigned:
            raise PortConflict(f"端口 {requested} 已分配给本轮协调中的其它条目", port=requested)
        port = find_available_port(
            requested or flavor.port,
            probe=self._port_probe,
            exclude=assigned,
        )
        if requested is not None and port != requested:
            logger.warning(f"端口 {requested} 已被占用，数据库 '{spec.id}' 改用端口 {port}")

        name = spec.name or _random_name()
        bindings = [map_ports(port, flavor.port, host_ip=self._host_ip)]
        volumes = [VolumeBinding(host_path=str(data_dir), container_path=flavor.data_path)]
        if flavor.init_path:
            volumes.append(VolumeBinding(host_path=str(init_dir), container_path=flavor.init_path))

        await self._engine.start_container(
            flavor.canonical_name,
            flavor.image,
            flavor.environment(spec, user, password, port),
            bindings,
            volumes,
            command=flavor.command(password),
        )

        return DBConfigResolved.from_spec(
            spec,
            port=port,
            name=name,
            user=user,
            password=password,
            volume=str(volume),
            container_name=flavor.canonical_name,
        )

    @staticmethod
    def _prepare_volume(volume: Path, spec: DBConfigSpec, flavor: StackFlavor, user: str) -> tuple[Path, Path]:
        init_dir = volume / INIT_DIR_NAME
        data_dir = volume / DATA_DIR_NAME
        init_dir.mkdir(parents=True, exist_ok=True)
        data_dir.mkdir(parents=True, exist_ok=True)

        schema = spec.schema_name
        if flavor.init_path and flavor.kind is DBType.POSTGRES and schema and schema != "public":
            script = init_dir / INIT_SQL_NAME
            content = render_init_sql(schema, user)
            if not script.exists() or script.read_text(encoding="utf-8") != content:
                script.write_text(content, encoding="utf-8")
                logger.debug(f"已写入初始化脚本 {script}")
        return init_dir, data_dir
