from __future__ import annotations

from typing import Any


class KubexDBError(Exception):
    """kubexdb 所有业务异常的基类

    CLI 层只捕获该基类（以及容器引擎的原生异常）来决定退出码，
    组件内部则按下列子类区分"跳过并继续"与"致命"两类策略
    """


class NoConfigSource(KubexDBError):
    """既没有传入根配置，也没有可用的配置文件路径"""


class ConfigNotFound(KubexDBError):
    """根配置路径不可读，且无法合成默认配置（致命）"""


class ConfigParseError(KubexDBError):
    """配置文件内容无法解码为合法的 RootConfig 结构（致命）"""


class RootConfigDisabled(KubexDBError):
    """根配置被显式禁用（enabled=false）"""


class ValidationFailed(KubexDBError):
    """单个 DBConfig 未通过类型专属校验器（跳过该条目）"""

    def __init__(self, db_id: str, reason: str) -> None:
        super().__init__(f"数据库配置校验失败 id={db_id}: {reason}")
        self.db_id = db_id
        self.reason = reason


class DriverUnavailable(KubexDBError):
    """该数据库类型没有注册驱动工厂（跳过该条目）"""

    def __init__(self, kind: Any) -> None:
        super().__init__(f"未注册数据库驱动: {kind}")
        self.kind = kind


class CredentialStoreUnavailable(KubexDBError):
    """系统密钥环不可用（启动期致命，运行期可重试）"""


class EngineUnavailable(KubexDBError):
    """容器引擎不可达（start_services 致命）"""


class PortConflict(KubexDBError):
    """端口绑定冲突或可用端口探测耗尽（跳过该条目）"""

    def __init__(self, message: str, port: int | None = None) -> None:
        super().__init__(message)
        self.port = port


class ContainerNotFound(KubexDBError):
    """引用的容器不存在"""

    def __init__(self, name: str) -> None:
        super().__init__(f"容器不存在: {name}")
        self.name = name


class ConnectTimeout(KubexDBError):
    """connect 超过截止时间"""

    def __init__(self, db_id: str, timeout: float) -> None:
        super().__init__(f"连接数据库超时 id={db_id} (> {timeout}秒)")
        self.db_id = db_id
        self.timeout = timeout


class NoConnectionsAvailable(KubexDBError):
    """初始化结束后没有任何可用连接（致命）"""

    def __init__(self) -> None:
        super().__init__("初始化完成后没有任何可用的数据库连接")


class ConnectionClosed(KubexDBError):
    """连接已关闭或已被管理器移除"""


class ReconnectFailed(KubexDBError):
    """secure_conn 无法恢复连接的可用性"""

    def __init__(self, db_id: str, cause: BaseException | None = None) -> None:
        detail = f": {cause}" if cause else ""
        super().__init__(f"数据库重连失败 id={db_id}{detail}")
        self.db_id = db_id


class HealthCheckFailed(KubexDBError):
    """至少有一个连接不可用"""

    def __init__(self, db_id: str, kind: Any, cause: BaseException | None = None) -> None:
        detail = f": {cause}" if cause else ""
        super().__init__(f"健康检查失败 id={db_id} kind={kind}{detail}")
        self.db_id = db_id
        self.kind = kind
