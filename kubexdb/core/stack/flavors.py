from __future__ import annotations

from dataclasses import dataclass
from typing import Callable

from ..config.constants import DEFAULT_DB_USER, NAMESPACE
from ..config.enums import DBType
from ..config.models import DBConfigSpec

# 环境变量构造器：(声明式配置, 用户名, 密码, 宿主机端口) -> 容器环境变量
EnvBuilder = Callable[[DBConfigSpec, str, str, int], dict[str, str]]
CommandBuilder = Callable[[str], list[str]]


def _postgres_env(spec: DBConfigSpec, user: str, password: str, port: int) -> dict[str, str]:
    return {
        "POSTGRES_USER": user,
        "POSTGRES_PASSWORD": password,
        "POSTGRES_DB": spec.db_name,
        "POSTGRES_PORT": str(port),
        "PGDATA": "/var/lib/postgresql/data/pgdata",
        "POSTGRES_DB_SSLMODE": "require" if spec.tls_enabled else "disable",
        "POSTGRES_INITDB_ARGS": "--data-checksums",
    }


def _mongo_env(spec: DBConfigSpec, user: str, password: str, port: int) -> dict[str, str]:
    env = {
        "MONGO_INITDB_ROOT_USERNAME": user,
        "MONGO_INITDB_ROOT_PASSWORD": password,
    }
    if spec.db_name:
        env["MONGO_INITDB_DATABASE"] = spec.db_name
    return env


def _redis_env(spec: DBConfigSpec, user: str, password: str, port: int) -> dict[str, str]:
    return {}


def _redis_command(password: str) -> list[str]:
    return ["redis-server", "--requirepass", password, "--appendonly", "yes"]


def _rabbit_env(spec: DBConfigSpec, user: str, password: str, port: int) -> dict[str, str]:
    return {
        "RABBITMQ_DEFAULT_USER": user,
        "RABBITMQ_DEFAULT_PASS": password,
    }


@dataclass(frozen=True, slots=True)
class StackFlavor:
    """某种数据库在容器中的运行方式

    Attributes:
        kind (DBType): 数据库类型
        short (str): 规范容器名后缀（kubexdb-<short>）
        image (str): 镜像
        port (int): 容器内默认端口，也是宿主机端口探测的起点
        credential_name (str): 密钥环中的逻辑名称
        data_path (str): 镜像数据目录
        init_path (str): 镜像初始化脚本目录，空串表示镜像不支持
    """
    kind: DBType
    short: str
    image: str
    port: int
    credential_name: str
    data_path: str
    init_path: str
    env_builder: EnvBuilder
    command_builder: CommandBuilder | None = None

    @property
    def canonical_name(self) -> str:
        return canonical_container_name(self.short)

    def default_user(self, spec: DBConfigSpec) -> str:
        """redis 没有用户概念，其余类型未配置用户时使用默认管理员"""
        if self.kind is DBType.REDIS:
            return spec.user
        return spec.user or DEFAULT_DB_USER

    def environment(self, spec: DBConfigSpec, user: str, password: str, port: int) -> dict[str, str]:
        return self.env_builder(spec, user, password, port)

    def command(self, password: str) -> list[str] | None:
        return self.command_builder(password) if self.command_builder else None


def canonical_container_name(short: str, namespace: str = NAMESPACE) -> str:
    return f"{namespace}-{short}"


FLAVORS: dict[DBType, StackFlavor] = {
    DBType.POSTGRES: StackFlavor(
        kind=DBType.POSTGRES,
        short="pg",
        image="postgres:17-alpine",
        port=5432,
        credential_name="pgpass",
        data_path="/var/lib/postgresql/data",
        init_path="/docker-entrypoint-initdb.d",
        env_builder=_postgres_env,
    ),
    DBType.MONGODB: StackFlavor(
        kind=DBType.MONGODB,
        short="mongo",
        image="mongo:7",
        port=27017,
        credential_name="mongopass",
        data_path="/data/db",
        init_path="/docker-entrypoint-initdb.d",
        env_builder=_mongo_env,
    ),
    DBType.REDIS: StackFlavor(
        kind=DBType.REDIS,
        short="redis",
        image="redis:7-alpine",
        port=6379,
        credential_name="redispass",
        data_path="/data",
        init_path="",
        env_builder=_redis_env,
        command_builder=_redis_command,
    ),
    DBType.RABBITMQ: StackFlavor(
        kind=DBType.RABBITMQ,
        short="rabbit",
        image="rabbitmq:3-management-alpine",
        port=5672,
        credential_name="rabbitpass",
        data_path="/var/lib/rabbitmq",
        init_path="",
        env_builder=_rabbit_env,
    ),
}


def get_flavor(kind: DBType | str) -> StackFlavor | None:
    return FLAVORS.get(DBType(kind))
