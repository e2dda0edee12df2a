from __future__ import annotations

from abc import ABC, abstractmethod
from typing import TYPE_CHECKING, Any, Callable, ClassVar

from ..config.enums import DBType
from ..config.models import DBConfigResolved, MigrationInfo

if TYPE_CHECKING:
    from .connection import DBConnection


class Driver(ABC):
    """数据库驱动抽象基类

    每个 DBConnection 独占一个驱动实例。驱动负责：
    - connect：建立底层客户端并做一次连通性验证；重复调用时先释放旧客户端
    - ping：轻量探测，返回 False 或抛出异常都视为不可用
    - close：释放底层资源，关闭后 handle 为 None

    超时与取消由 DBConnection 通过 asyncio.wait_for 施加，驱动内部只需保证
    在 CancelledError 传播时不泄漏半初始化的客户端
    """
    kind: ClassVar[DBType]

    @property
    @abstractmethod
    def handle(self) -> Any:
        """底层客户端（AsyncEngine / AsyncIOMotorClient / Redis / RobustConnection），未连接时为 None"""

    @abstractmethod
    async def connect(self, cfg: DBConfigResolved) -> None:
        ...

    @abstractmethod
    async def ping(self) -> bool:
        ...

    @abstractmethod
    async def close(self) -> None:
        ...


class Migrator(ABC):
    """外部迁移器挂钩

    kubexdb 只负责把 MigrationInfo 和命令行覆盖项转交给迁移器，迁移算法由实现方提供
    """

    @abstractmethod
    async def migrate(
            self,
            conn: DBConnection,
            info: MigrationInfo,
            *,
            dry_run: bool = False,
            reset: bool = False,
            force: bool = False,
    ) -> None:
        ...


# 驱动工厂：每次调用返回一个全新的驱动实例
DriverFactory = Callable[[], Driver]

# 校验器：接收协调后的配置，不合法时抛出 ValidationFailed
Validator = Callable[[DBConfigResolved], None]

MigratorFactory = Callable[[], Migrator]
