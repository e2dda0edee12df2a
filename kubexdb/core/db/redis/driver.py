from __future__ import annotations

from typing_extensions import override

import redis.asyncio as redis

from ...config.dsn import build_dsn
from ...config.enums import DBType
from ...config.models import DBConfigResolved
from ..base import Driver


class RedisDriver(Driver):
    """Redis 驱动（redis.asyncio），ping 使用 PING 命令"""
    kind = DBType.REDIS

    def __init__(self) -> None:
        self._client: redis.Redis | None = None

    @property
    @override
    def handle(self) -> redis.Redis | None:
        return self._client

    @override
    async def connect(self, cfg: DBConfigResolved) -> None:
        await self.close()

        url = cfg.dsn or build_dsn(DBType.REDIS, user="", password=cfg.password, host=cfg.host, port=cfg.port)
        client = redis.from_url(
            url,
            max_connections=int(cfg.options.get("max_connections") or 50),
            socket_connect_timeout=float(cfg.options.get("connect_timeout") or 10),
            decode_responses=True,
            health_check_interval=30,
        )
        try:
            await client.ping()
        except BaseException:
            await client.aclose()
            raise
        self._client = client

    @override
    async def ping(self) -> bool:
        if self._client is None:
            return False
        return bool(await self._client.ping())

    @override
    async def close(self) -> None:
        client, self._client = self._client, None
        if client is not None:
            await client.aclose()
