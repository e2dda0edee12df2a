"""Tests for port binding helpers."""

from __future__ import annotations

import pytest

from kubexdb.core.container.models import PortBinding
from kubexdb.core.container.ports import (
    check_port_conflicts,
    find_available_port,
    map_ports,
    resolve_host_ip,
)
from kubexdb.core.errors import PortConflict


def test_map_ports_is_pure() -> None:
    first = map_ports("5433", "5432/tcp", host_ip="127.0.0.1")
    second = map_ports("5433", "5432/tcp", host_ip="127.0.0.1")

    assert first == second
    assert first == PortBinding(host_ip="127.0.0.1", host_port=5433, container_port=5432, protocol="tcp")
    assert first.container_key == "5432/tcp"


def test_map_ports_defaults_to_tcp_and_keeps_udp() -> None:
    assert map_ports(53, 53, host_ip="0.0.0.0").protocol == "tcp"
    assert map_ports(53, "53/udp", host_ip="0.0.0.0").container_key == "53/udp"


def test_map_ports_rejects_garbage() -> None:
    with pytest.raises(ValueError):
        map_ports("abc", 5432)


def test_host_ip_resolution(monkeypatch: pytest.MonkeyPatch) -> None:
    assert resolve_host_ip("linux") == "127.0.0.1"
    assert resolve_host_ip("darwin") == "host.docker.internal"
    assert resolve_host_ip("win32") == "host.docker.internal"

    monkeypatch.setenv("KUBEXDB_HOST_IP", "10.0.0.5")

    assert resolve_host_ip("darwin") == "10.0.0.5"
    assert map_ports(1, 2).host_ip == "10.0.0.5"


def test_overlapping_bindings_conflict() -> None:
    a = map_ports(5433, 5432, host_ip="127.0.0.1")
    b = map_ports(5433, 5434, host_ip="127.0.0.1")
    c = map_ports(5435, 5432, host_ip="127.0.0.1")

    check_port_conflicts([a])
    with pytest.raises(PortConflict):
        check_port_conflicts([a, b])
    with pytest.raises(PortConflict):
        check_port_conflicts([a, c])


def test_find_available_port_walks_upwards() -> None:
    busy = {5432, 5433}

    assert find_available_port(5432, probe=lambda p: p not in busy) == 5434


def test_find_available_port_skips_excluded() -> None:
    assert find_available_port(5432, probe=lambda p: True, exclude={5432}) == 5433


def test_find_available_port_exhausted() -> None:
    probed: list[int] = []

    def _probe(port: int) -> bool:
        probed.append(port)
        return False

    with pytest.raises(PortConflict) as excinfo:
        find_available_port(5432, probe=_probe)

    assert probed == list(range(5432, 5442))
    assert excinfo.value.port == 5432
