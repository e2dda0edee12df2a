from __future__ import annotations

from enum import Enum


class DBType(str, Enum):
    """受支持的数据库类型枚举

    通过继承 str，枚举值可直接写入 JSON/YAML 配置并参与比较（如 "postgres" == DBType.POSTGRES）

    Note:
        - 只有 postgres / mongodb / redis / rabbitmq 具备容器编排与驱动实现
        - mysql / mssql / sqlite / oracle 可以出现在配置中，但需要外部注册驱动才能建立连接
    """
    POSTGRES = "postgres"
    MYSQL = "mysql"
    MSSQL = "mssql"
    SQLITE = "sqlite"
    ORACLE = "oracle"
    MONGODB = "mongodb"
    REDIS = "redis"
    RABBITMQ = "rabbitmq"


class ConnState(str, Enum):
    """单个 DBConnection 的生命周期状态

    状态迁移：UNCONNECTED -> CONNECTED -> (RECONNECTING <-> CONNECTED) -> CLOSED

    - CLOSED 是终态：进入后该条目会从管理器中移除，只能通过新的 init_from_root 重新建立
    - 调用方取消正在进行的 connect 时回到 UNCONNECTED，而不是 CLOSED
    """
    UNCONNECTED = "unconnected"
    CONNECTED = "connected"
    RECONNECTING = "reconnecting"
    CLOSED = "closed"
