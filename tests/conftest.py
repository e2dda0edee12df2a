"""Shared fakes for the kubexdb test-suite."""

from __future__ import annotations

import asyncio
from pathlib import Path
from typing import Any, Iterator

import pytest
from docker.errors import ImageNotFound, NotFound
from keyring.backend import KeyringBackend
from keyring.errors import KeyringError, PasswordDeleteError

from kubexdb.core.config.enums import DBType
from kubexdb.core.config.models import DBConfigResolved, DBConfigSpec, RootConfig
from kubexdb.core.config.local_settings import _create_dynaconf
from kubexdb.core.config.path_settings import get_path_settings
from kubexdb.core.db.base import Driver
from kubexdb.core.db.registry import DriverRegistry


# ------------------------------------------------------------------
# 隔离 ~/.kubexdb
# ------------------------------------------------------------------
@pytest.fixture(autouse=True)
def kubexdb_home(tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> Iterator[Path]:
    home = tmp_path / "home"
    monkeypatch.setenv("KUBEXDB_HOME", str(home))
    monkeypatch.delenv("KUBEXDB_CONFIGFILE", raising=False)
    monkeypatch.delenv("KUBEXDB_HOST_IP", raising=False)
    monkeypatch.delenv("RUN_ENV_TYPE", raising=False)
    # 当前目录下的 .env 会被 load_local_settings 读取
    monkeypatch.chdir(tmp_path)
    get_path_settings.cache_clear()
    _create_dynaconf.cache_clear()
    yield home
    get_path_settings.cache_clear()
    _create_dynaconf.cache_clear()


# ------------------------------------------------------------------
# keyring
# ------------------------------------------------------------------
class MemoryKeyring(KeyringBackend):
    priority = 1  # type: ignore[assignment]

    def __init__(self, *, broken: bool = False) -> None:
        super().__init__()
        self.store: dict[tuple[str, str], str] = {}
        self.broken = broken
        self.set_calls = 0

    def _check(self) -> None:
        if self.broken:
            raise KeyringError("no backend")

    def get_password(self, service: str, username: str) -> str | None:
        self._check()
        return self.store.get((service, username))

    def set_password(self, service: str, username: str, password: str) -> None:
        self._check()
        self.set_calls += 1
        self.store[(service, username)] = password

    def delete_password(self, service: str, username: str) -> None:
        self._check()
        if (service, username) not in self.store:
            raise PasswordDeleteError("missing")
        del self.store[(service, username)]


@pytest.fixture
def memory_keyring() -> MemoryKeyring:
    return MemoryKeyring()


# ------------------------------------------------------------------
# docker SDK
# ------------------------------------------------------------------
class _FakeContainer:
    def __init__(
            self,
            name: str,
            image: str,
            *,
            ports: dict[str, tuple[str, int]] | None = None,
            environment: dict[str, str] | None = None,
            command: list[str] | None = None,
            volumes: dict[str, dict[str, str]] | None = None,
            status: str = "created",
            logs: bytes = b"",
    ) -> None:
        self.name = name
        self.short_id = f"id-{name}"
        self.image = image
        self.status = status
        self.environment = environment or {}
        self.command = command
        self.volumes = volumes or {}
        self.removed = False
        self._bindings = {
            key: [{"HostIp": ip, "HostPort": str(port)}] for key, (ip, port) in (ports or {}).items()
        }
        self._logs = logs

    @property
    def attrs(self) -> dict[str, Any]:
        return {"Config": {"Image": self.image}, "HostConfig": {"PortBindings": self._bindings}}

    @property
    def ports(self) -> dict[str, Any]:
        return self._bindings if self.status == "running" else {}

    def start(self) -> None:
        self.status = "running"

    def stop(self, timeout: int = 10) -> None:
        self.status = "exited"

    def reload(self) -> None:
        return None

    def remove(self, force: bool = False) -> None:
        self.removed = True

    def logs(self, stream: bool = False, follow: bool = False, tail: Any = "all") -> Any:
        if stream:
            return iter([self._logs[i:i + 4] for i in range(0, len(self._logs), 4)])
        return self._logs


class _FakeContainers:
    def __init__(self) -> None:
        self.items: dict[str, _FakeContainer] = {}
        self.created: list[_FakeContainer] = []

    def get(self, name: str) -> _FakeContainer:
        container = self.items.get(name)
        if container is None or container.removed:
            raise NotFound(f"No such container: {name}")
        return container

    def create(self, image: str, command: Any = None, **kwargs: Any) -> _FakeContainer:
        container = _FakeContainer(
            kwargs["name"],
            image,
            ports=kwargs.get("ports"),
            environment=kwargs.get("environment"),
            command=command,
            volumes=kwargs.get("volumes"),
        )
        self.items[container.name] = container
        self.created.append(container)
        return container

    def list(self, all: bool = False) -> list[_FakeContainer]:
        return [c for c in self.items.values() if not c.removed and (all or c.status == "running")]


class _FakeImages:
    def __init__(self) -> None:
        self.present: set[str] = set()
        self.pulled: list[str] = []

    def get(self, image: str) -> str:
        if image not in self.present:
            raise ImageNotFound(f"No such image: {image}")
        return image

    def pull(self, image: str) -> str:
        self.pulled.append(image)
        self.present.add(image)
        return image


class _FakeVolume:
    def __init__(self, name: str, mountpoint: str, labels: dict[str, str]) -> None:
        self.name = name
        self.attrs = {"Mountpoint": mountpoint, "Labels": labels}


class _FakeVolumes:
    def __init__(self) -> None:
        self.items: dict[str, _FakeVolume] = {}

    def get(self, name: str) -> _FakeVolume:
        if name not in self.items:
            raise NotFound(f"No such volume: {name}")
        return self.items[name]

    def create(self, name: str, driver: str, driver_opts: dict[str, str], labels: dict[str, str]) -> _FakeVolume:
        volume = _FakeVolume(name, driver_opts["device"], labels)
        self.items[name] = volume
        return volume

    def list(self) -> list[_FakeVolume]:
        return list(self.items.values())


class FakeDockerClient:
    def __init__(self) -> None:
        self.containers = _FakeContainers()
        self.images = _FakeImages()
        self.volumes = _FakeVolumes()
        self.pings = 0
        self.closed = False

    def ping(self) -> bool:
        self.pings += 1
        return True

    def close(self) -> None:
        self.closed = True

    def add_running(self, name: str, host_port: int, container_port: int, image: str = "postgres:17-alpine") -> _FakeContainer:
        container = _FakeContainer(
            name,
            image,
            ports={f"{container_port}/tcp": ("127.0.0.1", host_port)},
            status="running",
        )
        self.containers.items[name] = container
        return container


@pytest.fixture
def docker_client() -> FakeDockerClient:
    return FakeDockerClient()


# ------------------------------------------------------------------
# 驱动
# ------------------------------------------------------------------
class FakeDriver(Driver):
    """可编排行为的内存驱动"""
    kind = DBType.POSTGRES

    def __init__(
            self,
            *,
            connect_error: BaseException | None = None,
            connect_delay: float = 0.0,
            ping_results: list[bool | BaseException] | None = None,
    ) -> None:
        self.connect_error = connect_error
        self.connect_delay = connect_delay
        self.ping_results = list(ping_results or [])
        self.connects: list[DBConfigResolved] = []
        self.pings = 0
        self.closed = False
        self._handle: object | None = None

    @property
    def handle(self) -> Any:
        return self._handle

    async def connect(self, cfg: DBConfigResolved) -> None:
        self.connects.append(cfg)
        if self.connect_delay:
            await asyncio.sleep(self.connect_delay)
        if self.connect_error is not None:
            raise self.connect_error
        self.closed = False
        self._handle = object()

    async def ping(self) -> bool:
        self.pings += 1
        if self.ping_results:
            result = self.ping_results.pop(0)
            if isinstance(result, BaseException):
                raise result
            return result
        return self._handle is not None

    async def close(self) -> None:
        self.closed = True
        self._handle = None


@pytest.fixture
def registry() -> DriverRegistry:
    reg = DriverRegistry()
    reg.register(DBType.POSTGRES, FakeDriver)
    return reg


# ------------------------------------------------------------------
# 配置构造
# ------------------------------------------------------------------
def pg_spec(db_id: str = "a", **overrides: Any) -> DBConfigSpec:
    data: dict[str, Any] = {
        "id": db_id,
        "name": db_id,
        "type": "postgres",
        "host": "127.0.0.1",
        "port": "5432",
        "user": "adm",
        "pass": "secret",
        "db_name": "app",
    }
    data.update(overrides)
    return DBConfigSpec.model_validate(data)


def make_root(*specs: DBConfigSpec, enabled: bool = True, file_path: str = "") -> RootConfig:
    return RootConfig(name="test", file_path=file_path, enabled=enabled, databases=list(specs))
