from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any


@dataclass(frozen=True, slots=True)
class PortBinding:
    """单条端口绑定（宿主机 host_ip:host_port -> 容器 container_port/protocol）"""
    host_ip: str
    host_port: int
    container_port: int
    protocol: str = "tcp"

    @property
    def container_key(self) -> str:
        """docker SDK 使用的容器端口键（如 5432/tcp）"""
        return f"{self.container_port}/{self.protocol}"


@dataclass(frozen=True, slots=True)
class VolumeBinding:
    """宿主机目录到容器路径的绑定"""
    host_path: str
    container_path: str
    mode: str = "rw"


@dataclass(slots=True)
class ContainerInfo:
    """容器快照

    Attributes:
        id (str): 容器短 ID
        name (str): 容器名
        image (str): 镜像标签
        status (str): 引擎报告的状态（running / exited / created ...）
        ports (dict[str, int]): 已发布端口，键为 "5432/tcp"，值为宿主机端口
    """
    id: str
    name: str
    image: str
    status: str
    ports: dict[str, int] = field(default_factory=dict)

    @property
    def running(self) -> bool:
        return self.status == "running"


@dataclass(slots=True)
class VolumeInfo:
    """卷快照"""
    name: str
    mountpoint: str
    labels: dict[str, str] = field(default_factory=dict)


@dataclass(slots=True)
class ServiceSpec:
    """服务目录中的一条登记（add_service 只登记不启动）"""
    name: str
    image: str
    env: dict[str, str] = field(default_factory=dict)
    ports: list[PortBinding] = field(default_factory=list)
    volumes: list[VolumeBinding] = field(default_factory=list)
    command: list[str] | None = None

    def to_dict(self) -> dict[str, Any]:
        return {
            "name": self.name,
            "image": self.image,
            "env": dict(self.env),
            "ports": [f"{p.host_ip}:{p.host_port}->{p.container_key}" for p in self.ports],
            "volumes": [f"{v.host_path}:{v.container_path}:{v.mode}" for v in self.volumes],
        }
