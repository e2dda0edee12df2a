from __future__ import annotations

from typing import Any, Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator

from .constants import DEFAULT_PORTS
from .dsn import build_dsn, redact_dsn
from .enums import DBType


class MigrationInfo(BaseModel):
    """外部迁移器的声明式参数

    核心只负责把该对象原样转交给已注册的迁移器，迁移算法本身不在 kubexdb 范围内

    Attributes:
        migration_path (str): 迁移脚本目录
        enabled (bool): 是否启用迁移
        options (dict[str, Any]): 迁移器私有参数
        auto (bool): 启动后自动执行
        version (str): 目标版本
        bootstrap (bool): 是否执行初始化脚本
        dry_run (bool): 仅模拟
        reset (bool): 迁移前重置数据库
        force (bool): 强制重新应用
    """
    model_config = ConfigDict(extra="forbid", frozen=True)

    migration_path: str = ""
    enabled: bool = False
    options: dict[str, Any] = Field(default_factory=dict)
    auto: bool = False
    version: str = ""
    bootstrap: bool = False
    dry_run: bool = False
    reset: bool = False
    force: bool = False


class DBConfigSpec(BaseModel):
    """单个数据库实例的声明式配置（不可变输入）

    该模型对应配置文件 databases[] 中的一项，加载后在整个管理器生命周期内保持不变
    协调阶段（端口、名称、密码等）的输出写入 DBConfigResolved，而不是回写到这里

    设计考虑：
    - 使用 frozen=True，消除"磁盘上的配置"与"内存中的配置"之间的别名隐患
    - 使用 alias 兼容配置文件中的 pass / schema 字段名（两者在 Python 中分别是关键字和 BaseModel 属性）
    - port 在文件中既可能是整数也可能是字符串，统一规范化为字符串，空串表示"未指定"

    Attributes:
        id (str): 稳定的不透明标识，跨重启保持不变
        name (str): 人类可读名称
        is_default (bool): 是否为默认连接
        enabled (Optional[bool]): 三态开关，None 视为 True
        debug (bool): 驱动调试日志开关
        type (DBType): 数据库类型
        host (str): 主机地址
        port (str): 端口
        user (str): 用户名
        password (str): 密码（配置文件字段名为 pass）
        tls_enabled (bool): 是否启用 TLS
        db_name (str): 数据库名
        schema_name (str): schema（配置文件字段名为 schema）
        dsn (str): 显式连接串，为空时由各字段推导
        options (dict[str, Any]): 自由格式参数（sslmode、max_connections、volume、pool_max_lifetime 等）
        backend (str): 后端提供者标识（保留字段）
        migration (Optional[MigrationInfo]): 迁移参数
    """
    model_config = ConfigDict(extra="forbid", frozen=True, populate_by_name=True)

    id: str = Field(..., min_length=1)
    name: str = ""
    is_default: bool = False
    enabled: Optional[bool] = None
    debug: bool = False
    type: DBType
    host: str = ""
    port: str = ""
    user: str = ""
    password: str = Field(default="", alias="pass")
    tls_enabled: bool = False
    db_name: str = ""
    schema_name: str = Field(default="", alias="schema")
    dsn: str = ""
    options: dict[str, Any] = Field(default_factory=dict)
    backend: str = ""
    migration: Optional[MigrationInfo] = None

    @field_validator("port", mode="before")
    @classmethod
    def normalize_port(cls, v: Any) -> str:
        if v is None:
            return ""
        if isinstance(v, bool):
            raise ValueError("port 不能是布尔值")
        return str(v).strip()

    @property
    def is_enabled(self) -> bool:
        """三态 enabled 的有效值（未设置时为 True）"""
        return self.enabled is None or self.enabled

    @property
    def port_number(self) -> int | None:
        """端口的整数形式；未指定或无法解析时返回 None"""
        try:
            return int(self.port) if self.port else None
        except ValueError:
            return None

    @property
    def sslmode(self) -> str:
        mode = self.options.get("sslmode")
        if mode:
            return str(mode)
        return "require" if self.tls_enabled else "disable"


class DBConfigResolved(BaseModel):
    """协调后的数据库配置（不可变输出）

    由 Stack Provider 在解析端口、名称、卷、密码之后生成，或者在不经过容器编排时
    由 from_spec() 直接从声明式配置推导。DBConnection 同时持有 spec 与 resolved

    Attributes:
        spec (DBConfigSpec): 原始声明式配置
        host (str): 最终主机地址
        port (int): 最终端口
        name (str): 最终名称
        user (str): 最终用户名
        password (str): 最终密码
        db_name (str): 最终数据库名
        schema_name (str): 最终 schema
        dsn (str): 最终连接串
        volume (str): 卷根目录（仅容器化条目）
        container_name (str): 承载该实例的容器名（仅容器化条目）
    """
    model_config = ConfigDict(frozen=True)

    spec: DBConfigSpec
    host: str
    port: int
    name: str
    user: str
    password: str
    db_name: str
    schema_name: str
    dsn: str
    volume: str = ""
    container_name: str = ""

    @property
    def id(self) -> str:
        return self.spec.id

    @property
    def type(self) -> DBType:
        return self.spec.type

    @property
    def options(self) -> dict[str, Any]:
        return self.spec.options

    @property
    def tls_enabled(self) -> bool:
        return self.spec.tls_enabled

    @property
    def redacted_dsn(self) -> str:
        return redact_dsn(self.dsn)

    @classmethod
    def from_spec(
            cls,
            spec: DBConfigSpec,
            *,
            host: str | None = None,
            port: int | None = None,
            name: str | None = None,
            user: str | None = None,
            password: str | None = None,
            volume: str = "",
            container_name: str = "",
    ) -> "DBConfigResolved":
        """由声明式配置与协调结果合成最终配置

        连接串规则：
        - spec.dsn 非空且协调没有改变 host/port/user/password 时，原样保留
        - 否则按类型重新拼装（端口探测之后 DSN 反映实际选中的端口）

        Args:
            spec: 声明式配置
            host / port / name / user / password: 协调结果，None 表示沿用 spec
            volume: 卷根目录
            container_name: 容器名

        Returns:
            DBConfigResolved: 不可变的最终配置
        """
        final_host = host or spec.host or "127.0.0.1"
        final_port = port or spec.port_number or DEFAULT_PORTS.get(spec.type.value, 0)
        final_user = user or spec.user
        final_password = spec.password if password is None else password

        changed = (
                final_host != (spec.host or final_host)
                or final_port != (spec.port_number or final_port)
                or final_user != spec.user
                or final_password != spec.password
        )
        dsn = spec.dsn
        if not dsn or changed:
            dsn = build_dsn(
                spec.type,
                user=final_user,
                password=final_password,
                host=final_host,
                port=final_port,
                db_name=spec.db_name,
                sslmode=spec.sslmode,
            ) or spec.dsn

        return cls(
            spec=spec,
            host=final_host,
            port=final_port,
            name=name or spec.name,
            user=final_user,
            password=final_password,
            db_name=spec.db_name,
            schema_name=spec.schema_name,
            dsn=dsn,
            volume=volume,
            container_name=container_name,
        )


class RootConfig(BaseModel):
    """根配置：数据库实例声明的有序集合

    Attributes:
        name (str): 根配置名称
        file_path (str): 持久化位置（绝对路径），持久化时不能为空
        enabled (bool): 是否启用
        databases (list[DBConfigSpec]): 有序的数据库声明列表

    Note:
        - id 必须唯一，否则管理器的连接表无法保证"键等于配置 id"
        - 最多只能有一个 is_default 条目
    """
    model_config = ConfigDict(extra="forbid")

    name: str = ""
    file_path: str = ""
    enabled: bool = True
    databases: list[DBConfigSpec] = Field(default_factory=list)

    @model_validator(mode="after")
    def check_databases(self) -> "RootConfig":
        seen: set[str] = set()
        for db in self.databases:
            if db.id in seen:
                raise ValueError(f"重复的数据库 id: {db.id}")
            seen.add(db.id)

        defaults = [db.id for db in self.databases if db.is_default]
        if len(defaults) > 1:
            raise ValueError(f"最多只能有一个默认数据库，当前: {defaults}")
        return self

    def enabled_databases(self) -> list[DBConfigSpec]:
        """返回所有启用的条目（保持声明顺序）"""
        return [db for db in self.databases if db.is_enabled]

    def to_document(self) -> dict[str, Any]:
        """序列化为写盘用的字典（使用配置文件字段名 pass / schema）"""
        return self.model_dump(mode="json", by_alias=True)
