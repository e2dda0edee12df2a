from __future__ import annotations

from typing_extensions import override

from motor.motor_asyncio import AsyncIOMotorClient, AsyncIOMotorDatabase

from ...config.dsn import build_dsn
from ...config.enums import DBType
from ...config.models import DBConfigResolved
from ..base import Driver

# 服务器选择超时（毫秒），超时由上层 wait_for 兜底，这里只避免驱动内部无限等待
SERVER_SELECTION_TIMEOUT_MS = 10_000


class MongoDriver(Driver):
    """MongoDB 驱动（motor），ping 使用 admin 库的 ping 命令"""
    kind = DBType.MONGODB

    def __init__(self) -> None:
        self._client: AsyncIOMotorClient | None = None
        self._db_name = "admin"

    @property
    @override
    def handle(self) -> AsyncIOMotorClient | None:
        return self._client

    @property
    def database(self) -> AsyncIOMotorDatabase:
        if self._client is None:
            raise RuntimeError("MongoDB 客户端尚未连接")
        return self._client.get_database(self._db_name)

    @override
    async def connect(self, cfg: DBConfigResolved) -> None:
        await self.close()

        uri = cfg.dsn or build_dsn(
            DBType.MONGODB, user=cfg.user, password=cfg.password, host=cfg.host, port=cfg.port
        )
        kwargs = {
            "serverSelectionTimeoutMS": SERVER_SELECTION_TIMEOUT_MS,
            "uuidRepresentation": "standard",
        }
        if cfg.options.get("max_connections"):
            kwargs["maxPoolSize"] = int(cfg.options["max_connections"])
        if cfg.tls_enabled:
            kwargs["tls"] = True

        client = AsyncIOMotorClient(uri, **kwargs)
        try:
            await client.admin.command("ping")
        except BaseException:
            client.close()
            raise

        self._client = client
        self._db_name = cfg.db_name or "admin"

    @override
    async def ping(self) -> bool:
        if self._client is None:
            return False
        await self._client.admin.command("ping")
        return True

    @override
    async def close(self) -> None:
        client, self._client = self._client, None
        if client is not None:
            client.close()
