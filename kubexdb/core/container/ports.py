from __future__ import annotations

import os
import socket
import sys
from typing import Callable, Iterable

from ..config.constants import (
    HOST_IP_ENV_VAR,
    MAX_USER_PORT,
    MIN_USER_PORT,
    PORT_PROBE_ATTEMPTS,
)
from ..errors import PortConflict
from .models import PortBinding

# 桌面虚拟化引擎（Docker Desktop）中宿主机只能通过该别名访问
DESKTOP_HOST_ALIAS = "host.docker.internal"
LOOPBACK = "127.0.0.1"


def resolve_host_ip(platform: str | None = None) -> str:
    """解析端口绑定使用的宿主机 IP

    优先级：
    1. 环境变量 KUBEXDB_HOST_IP
    2. macOS / Windows（桌面虚拟化引擎）返回 host.docker.internal
    3. 其它平台返回回环地址
    """
    override = os.getenv(HOST_IP_ENV_VAR)
    if override:
        return override.strip()

    platform = platform or sys.platform
    if platform == "darwin" or platform.startswith("win"):
        return DESKTOP_HOST_ALIAS
    return LOOPBACK


def _parse_port(value: int | str) -> tuple[int, str | None]:
    """把 "5432/tcp"、"5432"、5432 统一解析为 (端口, 协议)"""
    text = str(value).strip()
    protocol = None
    if "/" in text:
        text, protocol = text.split("/", 1)
        protocol = protocol.strip().lower() or None
    try:
        return int(text), protocol
    except ValueError as exc:
        raise ValueError(f"无效的端口: {value!r}") from exc


def map_ports(host_port: int | str, container_port: int | str, *, host_ip: str | None = None) -> PortBinding:
    """构造端口绑定（纯函数：相同输入得到相等的结果）

    去掉协议后缀，默认使用 TCP，宿主机一侧绑定到解析出的宿主机 IP

    Args:
        host_port: 宿主机端口（如 5433 或 "5433"）
        container_port: 容器端口（如 "5432/tcp"）
        host_ip: 显式宿主机 IP，None 时调用 resolve_host_ip()

    Raises:
        ValueError: 端口无法解析为整数
    """
    hp, _ = _parse_port(host_port)
    cp, protocol = _parse_port(container_port)
    return PortBinding(
        host_ip=host_ip or resolve_host_ip(),
        host_port=hp,
        container_port=cp,
        protocol=protocol or "tcp",
    )


def check_port_conflicts(bindings: Iterable[PortBinding]) -> None:
    """拒绝同一次调用内重叠的端口绑定

    Raises:
        PortConflict: 宿主机端口或容器端口重复
    """
    host_seen: set[tuple[int, str]] = set()
    container_seen: set[str] = set()
    for b in bindings:
        host_key = (b.host_port, b.protocol)
        if host_key in host_seen:
            raise PortConflict(f"宿主机端口重复绑定: {b.host_port}/{b.protocol}", port=b.host_port)
        if b.container_key in container_seen:
            raise PortConflict(f"容器端口重复绑定: {b.container_key}", port=b.container_port)
        host_seen.add(host_key)
        container_seen.add(b.container_key)


def is_port_free(port: int, host: str = LOOPBACK) -> bool:
    """尝试在本机绑定端口，成功说明当前没有进程占用"""
    with socket.socket(socket.AF_INET, socket.SOCK_STREAM) as sock:
        try:
            sock.bind((host, port))
        except OSError:
            return False
    return True


def find_available_port(
        base_port: int,
        attempts: int = PORT_PROBE_ATTEMPTS,
        *,
        probe: Callable[[int], bool] = is_port_free,
        exclude: Iterable[int] = (),
) -> int:
    """从 base_port 开始向上探测连续 attempts 个候选端口，返回第一个空闲端口

    Args:
        base_port: 起始端口（包含）
        attempts: 候选数量
        probe: 端口探测函数（测试中可注入）
        exclude: 本轮协调中已分配给其它条目的端口

    Raises:
        PortConflict: 候选端口全部被占用或越界
    """
    excluded = set(exclude)
    for port in range(base_port, base_port + attempts):
        if port < MIN_USER_PORT or port > MAX_USER_PORT:
            continue
        if port in excluded:
            continue
        if probe(port):
            return port
    raise PortConflict(
        f"端口范围 {base_port}-{base_port + attempts - 1} 内没有可用端口",
        port=base_port,
    )
