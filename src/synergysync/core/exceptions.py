"""同步引擎异常体系

Mutation Gateway 依据异常类型决定回滚还是保留乐观写入：
- MutationValidationError / AuthorizationError / StaleEditError: 回滚
- RecordNotFoundError: 本地移除（或墓碑化），不重试
- TransientNetworkError: 保留乐观写入，标记为可重试
Reconciler 从不向用户抛出异常，畸形数据只记录日志后跳过。
"""


class SyncError(Exception):
    """同步引擎基础异常"""

    def __init__(self, message: str, recoverable: bool = True) -> None:
        """
        Args:
            message: 错误描述
            recoverable: 是否可通过重试或用户修正恢复
        """
        super().__init__(message)
        self.message = message
        self.recoverable = recoverable


class MutationValidationError(SyncError):
    """输入形状校验失败

    客户端校验失败时不修改镜像、不发起网络调用；
    服务端 400 同样映射为此异常（此时回滚乐观写入）。
    """

    def __init__(self, message: str, errors: list[dict] | None = None) -> None:
        super().__init__(message, recoverable=True)
        self.errors = errors or []


class AuthorizationError(SyncError):
    """操作者无权限（401/403）"""

    def __init__(self, message: str = "无权执行该操作") -> None:
        super().__init__(message, recoverable=False)


class RecordNotFoundError(SyncError):
    """目标记录在服务端已不存在（404）"""

    def __init__(self, record_id: str, message: str = "") -> None:
        super().__init__(message or f"记录不存在: {record_id}", recoverable=False)
        self.record_id = record_id


class TransientNetworkError(SyncError):
    """临时网络错误（连接失败、超时、408/429/5xx）

    乐观写入保留在本地，可手动或自动重试。
    """

    def __init__(self, message: str, original_error: Exception | None = None) -> None:
        super().__init__(message, recoverable=True)
        self.original_error = original_error


class StaleEditError(SyncError):
    """超过编辑时间窗口（422）

    与通用失败区分，便于 UI 解释失败原因。
    """

    def __init__(self, record_id: str, message: str = "") -> None:
        super().__init__(
            message or f"消息已超过可编辑时间窗口: {record_id}",
            recoverable=True,
        )
        self.record_id = record_id


class MalformedPayloadError(SyncError):
    """推送/轮询/确认数据无法解析"""

    def __init__(self, message: str, payload: object = None) -> None:
        super().__init__(message, recoverable=False)
        self.payload = payload


class ScopeClosedError(SyncError):
    """作用域已关闭（离开项目视图后仍尝试写入）"""

    def __init__(self, scope_id: str) -> None:
        super().__init__(f"作用域已关闭: {scope_id}", recoverable=False)
        self.scope_id = scope_id
