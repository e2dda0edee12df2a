from __future__ import annotations

import logging
from typing import Any
from typing_extensions import override

from sqlalchemy import text
from sqlalchemy.engine import URL, make_url
from sqlalchemy.ext.asyncio import AsyncEngine, async_sessionmaker, create_async_engine

from ...config.enums import DBType
from ...config.models import DBConfigResolved
from ...logging.logger import intercept_loggers
from ..base import Driver
from .config import PostgresPoolConfig

LOGGER_SA_ENGINE = "sqlalchemy.engine"
LOGGER_SA_POOL = "sqlalchemy.pool"

SQL_PING_QUERY = "SELECT 1"
PG_DRIVERNAME = "postgresql+asyncpg"

# sslmode 取值直接透传给 asyncpg 的 ssl 参数
_ASYNCPG_SSL_MODES = {"disable", "allow", "prefer", "require", "verify-ca", "verify-full"}


def parse_dsn(cfg: DBConfigResolved) -> URL | None:
    """把连接串解析为 SQLAlchemy URL，没有连接串时返回 None

    Raises:
        ArgumentError: 连接串不是 URL 形式
    """
    if not cfg.dsn:
        return None
    return make_url(cfg.dsn)


def build_engine_url(cfg: DBConfigResolved) -> URL:
    """由协调后的配置构造 SQLAlchemy URL

    连接串优先（显式 dsn 或由字段拼装的 dsn），连接串缺失的部分用字段补齐；
    sslmode 查询参数由 build_connect_args() 转成 asyncpg 的 ssl 参数
    """
    url = parse_dsn(cfg)
    if url is None:
        return URL.create(
            PG_DRIVERNAME,
            username=cfg.user,
            password=cfg.password or None,
            host=cfg.host,
            port=cfg.port,
            database=cfg.db_name,
        )
    return url.set(
        drivername=PG_DRIVERNAME,
        username=url.username or cfg.user or None,
        password=url.password or cfg.password or None,
        host=url.host or cfg.host,
        port=url.port or cfg.port,
        database=url.database or cfg.db_name,
    ).difference_update_query(["sslmode"])


def _sslmode(cfg: DBConfigResolved) -> str:
    url = parse_dsn(cfg)
    if url is not None:
        mode = url.query.get("sslmode")
        if isinstance(mode, tuple):
            mode = mode[-1] if mode else None
        if mode:
            return str(mode)
    return cfg.spec.sslmode


def build_connect_args(cfg: DBConfigResolved, pool: PostgresPoolConfig) -> dict[str, Any]:
    server_settings: dict[str, str] = {}
    if pool.application_name:
        server_settings["application_name"] = pool.application_name
    if cfg.schema_name and cfg.schema_name != "public":
        server_settings["search_path"] = f"{cfg.schema_name},public"

    args: dict[str, Any] = {"timeout": pool.connect_timeout}
    if server_settings:
        args["server_settings"] = server_settings
    sslmode = _sslmode(cfg)
    if sslmode in _ASYNCPG_SSL_MODES:
        args["ssl"] = sslmode
    return args


class PostgresDriver(Driver):
    """PostgreSQL 驱动（SQLAlchemy 异步引擎 + asyncpg）"""
    kind = DBType.POSTGRES

    def __init__(self) -> None:
        self._engine: AsyncEngine | None = None
        self._session_maker: async_sessionmaker | None = None

    @property
    @override
    def handle(self) -> AsyncEngine | None:
        return self._engine

    @property
    def session_maker(self) -> async_sessionmaker:
        if self._session_maker is None:
            raise RuntimeError("PostgreSQL 引擎尚未连接")
        return self._session_maker

    def _create_engine(self, cfg: DBConfigResolved) -> AsyncEngine:
        pool = PostgresPoolConfig.from_options(cfg.options, debug=cfg.spec.debug)

        intercept_loggers(
            [LOGGER_SA_ENGINE, LOGGER_SA_POOL],
            level=logging.INFO if pool.echo else logging.WARNING,
        )

        return create_async_engine(
            build_engine_url(cfg),
            echo=False,
            pool_size=pool.pool_size,
            max_overflow=pool.max_overflow,
            pool_recycle=pool.pool_recycle,
            pool_pre_ping=True,
            connect_args=build_connect_args(cfg, pool),
        )

    @override
    async def connect(self, cfg: DBConfigResolved) -> None:
        await self.close()

        engine = self._create_engine(cfg)
        try:
            async with engine.connect() as conn:
                await conn.execute(text(SQL_PING_QUERY))
        except BaseException:
            await engine.dispose()
            raise

        self._engine = engine
        self._session_maker = async_sessionmaker(engine, expire_on_commit=False)

    @override
    async def ping(self) -> bool:
        if self._engine is None:
            return False
        async with self._engine.connect() as conn:
            await conn.execute(text(SQL_PING_QUERY))
        return True

    @override
    async def close(self) -> None:
        engine, self._engine = self._engine, None
        self._session_maker = None
        if engine is not None:
            await engine.dispose()
