from __future__ import annotations

import asyncio
from pathlib import Path
from typing import Any, AsyncIterator, Iterable, Mapping, Sequence

import docker
from docker.errors import DockerException, ImageNotFound, NotFound
from loguru import logger

from ..config.constants import NAMESPACE
from ..errors import ContainerNotFound, EngineUnavailable
from .models import ContainerInfo, PortBinding, ServiceSpec, VolumeBinding, VolumeInfo
from .ports import check_port_conflicts, map_ports

# 容器重启策略：除非被显式停止，否则随引擎自动拉起
RESTART_POLICY: dict[str, str] = {"Name": "unless-stopped"}

STOP_TIMEOUT_SECONDS = 10


def _published_ports(container: Any) -> dict[str, int]:
    """提取容器已发布的端口映射 {"5432/tcp": 5433}

    运行中的容器读取 NetworkSettings.Ports，已停止的容器回退到 HostConfig.PortBindings
    """
    raw = container.ports or container.attrs.get("HostConfig", {}).get("PortBindings") or {}
    result: dict[str, int] = {}
    for key, bindings in raw.items():
        for binding in bindings or []:
            host_port = binding.get("HostPort")
            if host_port:
                result[key] = int(host_port)
                break
    return result


def _to_info(container: Any) -> ContainerInfo:
    return ContainerInfo(
        id=container.short_id,
        name=container.name,
        image=container.attrs.get("Config", {}).get("Image", ""),
        status=container.status,
        ports=_published_ports(container),
    )


class ContainerEngineAdapter:
    """容器引擎适配器（docker SDK 的精简类型化封装）

    只暴露 Stack Provider 与 CLI 需要的最小操作集合，隐藏引擎原生 API
    docker SDK 是同步阻塞的，所有调用都通过 asyncio.to_thread 下放到线程池，避免阻塞事件循环

    幂等语义：
    - start_container：已运行 -> 空操作；已停止 -> 重新启动；不存在 -> 拉取镜像、创建并启动
    - stop_container：不存在或已停止 -> 成功
    - create_volume：同名卷已存在 -> 成功

    失败语义：
    - 引擎不可达 -> EngineUnavailable
    - 按名称操作但容器不存在 -> ContainerNotFound
    - 其余引擎 I/O 错误原样抛出，由上层决定是否重试

    Attributes:
        self._client (docker.DockerClient | None): 引擎客户端，initialize() 之后可用
        self._namespace (str): 卷标签 created_by 的取值
        self._services (dict[str, ServiceSpec]): add_service 登记的服务目录
    """

    def __init__(self, client: Any | None = None, *, namespace: str = NAMESPACE) -> None:
        self._client = client
        self._namespace = namespace
        self._services: dict[str, ServiceSpec] = {}

    # ------------------------------------------------------------------
    # 连接
    # ------------------------------------------------------------------
    async def initialize(self) -> None:
        """确认引擎可达

        Raises:
            EngineUnavailable: 无法创建客户端或 ping 失败
        """

        def _connect() -> Any:
            client = self._client or docker.from_env()
            client.ping()
            return client

        try:
            self._client = await asyncio.to_thread(_connect)
        except (DockerException, OSError) as exc:
            raise EngineUnavailable(f"容器引擎不可达: {exc}") from exc
        logger.debug("容器引擎连接正常")

    @property
    def client(self) -> Any:
        if self._client is None:
            raise EngineUnavailable("容器引擎适配器尚未初始化，请先调用 initialize()")
        return self._client

    def close(self) -> None:
        if self._client is not None and hasattr(self._client, "close"):
            self._client.close()

    # ------------------------------------------------------------------
    # 同步实现（在线程池中执行）
    # ------------------------------------------------------------------
    def _find(self, name: str) -> Any | None:
        try:
            return self.client.containers.get(name)
        except NotFound:
            return None

    def _ensure_image(self, image: str) -> None:
        try:
            self.client.images.get(image)
        except ImageNotFound:
            logger.info(f"正在拉取镜像 {image} ...")
            self.client.images.pull(image)

    def _start_container_sync(
            self,
            name: str,
            image: str,
            env: Mapping[str, str],
            port_bindings: Sequence[PortBinding],
            volumes: Sequence[VolumeBinding],
            command: Sequence[str] | None,
    ) -> ContainerInfo:
        existing = self._find(name)
        if existing is not None:
            if existing.status == "running":
                logger.debug(f"容器 {name} 已在运行，跳过")
                return _to_info(existing)
            logger.info(f"容器 {name} 已存在但未运行，正在启动")
            existing.start()
            existing.reload()
            return _to_info(existing)

        self._ensure_image(image)
        container = self.client.containers.create(
            image,
            command=list(command) if command else None,
            name=name,
            environment=dict(env),
            ports={b.container_key: (b.host_ip, b.host_port) for b in port_bindings},
            volumes={v.host_path: {"bind": v.container_path, "mode": v.mode} for v in volumes},
            restart_policy=RESTART_POLICY,
            detach=True,
        )
        container.start()
        container.reload()
        logger.success(f"容器 {name} ({image}) 已启动")
        return _to_info(container)

    def _stop_sync(self, name: str, *, missing_ok: bool) -> bool:
        container = self._find(name)
        if container is None:
            if missing_ok:
                return False
            raise ContainerNotFound(name)
        if container.status != "running":
            return False
        container.stop(timeout=STOP_TIMEOUT_SECONDS)
        return True

    def _start_by_name_sync(self, name: str) -> bool:
        container = self._find(name)
        if container is None:
            raise ContainerNotFound(name)
        if container.status == "running":
            return False
        container.start()
        return True

    def _create_volume_sync(self, name: str, host_path: str) -> VolumeInfo:
        try:
            volume = self.client.volumes.get(name)
            logger.debug(f"卷 {name} 已存在，跳过创建")
        except NotFound:
            Path(host_path).mkdir(parents=True, exist_ok=True)
            volume = self.client.volumes.create(
                name=name,
                driver="local",
                driver_opts={"type": "none", "device": host_path, "o": "bind"},
                labels={"created_by": self._namespace},
            )
            logger.info(f"卷 {name} 已创建 -> {host_path}")
        return VolumeInfo(
            name=volume.name,
            mountpoint=volume.attrs.get("Mountpoint", ""),
            labels=volume.attrs.get("Labels") or {},
        )

    # ------------------------------------------------------------------
    # 公共 API
    # ------------------------------------------------------------------
    async def start_container(
            self,
            name: str,
            image: str,
            env: Mapping[str, str],
            port_bindings: Sequence[PortBinding],
            volumes: Sequence[VolumeBinding] = (),
            *,
            command: Sequence[str] | None = None,
    ) -> ContainerInfo:
        """幂等地确保容器处于运行状态

        Raises:
            PortConflict: 本次调用内的端口绑定重叠
        """
        check_port_conflicts(port_bindings)
        return await asyncio.to_thread(
            self._start_container_sync, name, image, env, port_bindings, volumes, command
        )

    async def stop_container(self, name: str) -> None:
        """停止容器（不存在或已停止视为成功）"""
        if await asyncio.to_thread(self._stop_sync, name, missing_ok=True):
            logger.info(f"容器 {name} 已停止")

    async def remove_container(self, name: str, *, force: bool = False) -> None:
        """删除容器（不存在视为成功）"""

        def _remove() -> None:
            container = self._find(name)
            if container is not None:
                container.remove(force=force)

        await asyncio.to_thread(_remove)

    async def start_container_by_name(self, name: str) -> None:
        """启动已存在的容器（运行中为空操作）

        Raises:
            ContainerNotFound: 容器不存在
        """
        if await asyncio.to_thread(self._start_by_name_sync, name):
            logger.info(f"容器 {name} 已启动")

    async def stop_container_by_name(self, name: str) -> None:
        """停止已存在的容器（已停止为空操作）

        Raises:
            ContainerNotFound: 容器不存在
        """
        if await asyncio.to_thread(self._stop_sync, name, missing_ok=False):
            logger.info(f"容器 {name} 已停止")

    async def is_running(self, name: str) -> bool:
        container = await asyncio.to_thread(self._find, name)
        return container is not None and container.status == "running"

    async def inspect(self, name: str) -> ContainerInfo | None:
        container = await asyncio.to_thread(self._find, name)
        return _to_info(container) if container is not None else None

    async def published_port(self, name: str, container_port: int | str) -> int | None:
        """查询容器某个内部端口发布到宿主机的端口"""
        info = await self.inspect(name)
        if info is None:
            return None
        key = str(container_port) if "/" in str(container_port) else f"{container_port}/tcp"
        return info.ports.get(key)

    async def list_containers(self, *, all_: bool = True) -> list[ContainerInfo]:
        containers = await asyncio.to_thread(self.client.containers.list, all=all_)
        return [_to_info(c) for c in containers]

    async def list_volumes(self) -> list[VolumeInfo]:
        volumes = await asyncio.to_thread(self.client.volumes.list)
        return [
            VolumeInfo(
                name=v.name,
                mountpoint=v.attrs.get("Mountpoint", ""),
                labels=v.attrs.get("Labels") or {},
            )
            for v in volumes
        ]

    async def create_volume(self, name: str, host_path: str) -> VolumeInfo:
        """幂等地创建绑定到宿主机目录的本地卷"""
        return await asyncio.to_thread(self._create_volume_sync, name, host_path)

    async def get_container_logs(self, name: str, *, follow: bool = False, tail: int | str = "all") -> AsyncIterator[str]:
        """逐行产出容器日志

        follow=True 时持续跟随，调用方取消任务即可中止（finally 中关闭底层流以释放阻塞线程）

        Raises:
            ContainerNotFound: 容器不存在
        """
        container = await asyncio.to_thread(self._find, name)
        if container is None:
            raise ContainerNotFound(name)

        if not follow:
            raw = await asyncio.to_thread(container.logs, stream=False, tail=tail)
            for line in raw.decode("utf-8", errors="replace").splitlines():
                yield line
            return

        stream = await asyncio.to_thread(container.logs, stream=True, follow=True, tail=tail)
        buffer = ""
        try:
            while True:
                chunk = await asyncio.to_thread(next, stream, None)
                if chunk is None:
                    break
                buffer += chunk.decode("utf-8", errors="replace")
                *lines, buffer = buffer.split("\n")
                for line in lines:
                    yield line.rstrip("\r")
            if buffer:
                yield buffer
        finally:
            close = getattr(stream, "close", None)
            if close is not None:
                close()

    # ------------------------------------------------------------------
    # 服务目录
    # ------------------------------------------------------------------
    def map_ports(self, host_port: int | str, container_port: int | str) -> PortBinding:
        return map_ports(host_port, container_port)

    def add_service(
            self,
            name: str,
            image: str,
            env: Mapping[str, str] | None = None,
            ports: Iterable[PortBinding] = (),
            volumes: Iterable[VolumeBinding] = (),
            *,
            command: Sequence[str] | None = None,
    ) -> ServiceSpec:
        """在内部目录中登记一个服务（不启动）

        Raises:
            PortConflict: 端口绑定重叠
        """
        port_list = list(ports)
        check_port_conflicts(port_list)
        if name in self._services:
            logger.warning(f"服务 '{name}' 已经登记。正在覆盖。")
        spec = ServiceSpec(
            name=name,
            image=image,
            env=dict(env or {}),
            ports=port_list,
            volumes=list(volumes),
            command=list(command) if command else None,
        )
        self._services[name] = spec
        return spec

    def services(self) -> list[ServiceSpec]:
        return list(self._services.values())

    async def start_service(self, name: str) -> ContainerInfo:
        """启动目录中登记过的服务

        Raises:
            KeyError: 服务未登记
        """
        spec = self._services.get(name)
        if spec is None:
            raise KeyError(f"服务 '{name}' 未登记。已登记服务: {list(self._services)}")
        return await self.start_container(
            spec.name, spec.image, spec.env, spec.ports, spec.volumes, command=spec.command
        )
