from __future__ import annotations

from loguru import logger

from ..config.enums import DBType
from .base import DriverFactory, Migrator, MigratorFactory, Validator


class DriverRegistry:
    """数据库类型 -> (驱动工厂, 校验器, 迁移器工厂) 的映射

    注册只在启动阶段由单一调用方完成，之后只读查询，因此不加锁
    每个 DatabaseManager 持有自己的注册表实例，测试可以按用例构造独立的注册表

    某个类型缺少驱动不会在注册表层面报错，只有当配置中真正请求该类型时
    才由 DatabaseManager 抛出 DriverUnavailable
    """

    def __init__(self) -> None:
        self._drivers: dict[DBType, DriverFactory] = {}
        self._validators: dict[DBType, Validator] = {}
        self._migrators: dict[DBType, MigratorFactory] = {}

    def register(
            self,
            kind: DBType | str,
            driver: DriverFactory,
            *,
            validator: Validator | None = None,
            migrator: MigratorFactory | None = None,
    ) -> None:
        kind = DBType(kind)
        if kind in self._drivers:
            logger.warning(f"数据库类型 '{kind.value}' 的驱动已注册。正在覆盖。")
        self._drivers[kind] = driver
        if validator is not None:
            self._validators[kind] = validator
        if migrator is not None:
            self._migrators[kind] = migrator

    def register_validator(self, kind: DBType | str, validator: Validator) -> None:
        self._validators[DBType(kind)] = validator

    def register_migrator(self, kind: DBType | str, migrator: MigratorFactory) -> None:
        self._migrators[DBType(kind)] = migrator

    def driver_factory(self, kind: DBType | str) -> DriverFactory | None:
        return self._drivers.get(DBType(kind))

    def validator(self, kind: DBType | str) -> Validator | None:
        return self._validators.get(DBType(kind))

    def migrator(self, kind: DBType | str) -> Migrator | None:
        factory = self._migrators.get(DBType(kind))
        return factory() if factory is not None else None

    def kinds(self) -> list[DBType]:
        return list(self._drivers)

    def __contains__(self, kind: object) -> bool:
        try:
            return DBType(kind) in self._drivers
        except ValueError:
            return False


def default_registry() -> DriverRegistry:
    """注册 postgres / mongodb / redis / rabbitmq 四种内置驱动与校验器"""
    from .mongo.driver import MongoDriver
    from .rabbitmq.driver import RabbitMQDriver
    from .redis.driver import RedisDriver
    from .relational.driver import PostgresDriver
    from .validators import validate_host_or_dsn, validate_postgres

    registry = DriverRegistry()
    registry.register(DBType.POSTGRES, PostgresDriver, validator=validate_postgres)
    registry.register(DBType.MONGODB, MongoDriver, validator=validate_host_or_dsn)
    registry.register(DBType.REDIS, RedisDriver, validator=validate_host_or_dsn)
    registry.register(DBType.RABBITMQ, RabbitMQDriver, validator=validate_host_or_dsn)
    return registry
