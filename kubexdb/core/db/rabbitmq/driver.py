from __future__ import annotations

from typing_extensions import override

import aio_pika
from aio_pika.abc import AbstractRobustConnection

from ...config.dsn import build_dsn
from ...config.enums import DBType
from ...config.models import DBConfigResolved
from ..base import Driver


class RabbitMQDriver(Driver):
    """RabbitMQ 驱动（aio-pika 自动重连连接），ping 通过打开并关闭一个 channel 完成"""
    kind = DBType.RABBITMQ

    def __init__(self) -> None:
        self._connection: AbstractRobustConnection | None = None

    @property
    @override
    def handle(self) -> AbstractRobustConnection | None:
        return self._connection

    @override
    async def connect(self, cfg: DBConfigResolved) -> None:
        await self.close()

        url = cfg.dsn or build_dsn(
            DBType.RABBITMQ, user=cfg.user, password=cfg.password, host=cfg.host, port=cfg.port
        )
        self._connection = await aio_pika.connect_robust(
            url,
            timeout=float(cfg.options.get("connect_timeout") or 10),
        )

    @override
    async def ping(self) -> bool:
        if self._connection is None or self._connection.is_closed:
            return False
        channel = await self._connection.channel()
        await channel.close()
        return True

    @override
    async def close(self) -> None:
        connection, self._connection = self._connection, None
        if connection is not None and not connection.is_closed:
            await connection.close()
