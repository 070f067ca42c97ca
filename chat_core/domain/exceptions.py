"""统一业务异常模型。

所有跨模块抛出的业务级错误都应该继承自 BusinessError，
便于在服务层或传输适配层做统一捕获与用户提示。

错误分类：
- CostEstimationError: token 估算失败，请求在调用后端之前终止。
- BackendInvocationError: 生成请求无法建立（网络、鉴权、非 2xx 响应）。
- StreamError: 流式输出中途失败，已展示的部分文本保留但不写回历史。
- SinkWriteError: 单次写入/编辑输出消息失败，由渲染器本地溢出恢复。
"""


class BusinessError(Exception):
    """业务异常基类。

    Attributes:
        code: 机器可读错误码（如 "TOKENIZER_ERROR"）。
        message: 用户可读错误信息。
        http_status: 映射到 HTTP 时可用的状态码，默认 400。
        extra: 其他补充字段（例如 trace_id、provider 等）。
    """

    def __init__(self, code: str, message: str, http_status: int = 400, **extra):
        self.code = code
        self.message = message
        self.http_status = http_status
        self.extra = extra
        super().__init__(message)


class CostEstimationError(BusinessError):
    """Tokenizer 无法估算某条消息的 token 开销。"""


class BackendInvocationError(BusinessError):
    """生成请求未能开始（连接失败、缺少密钥、后端返回错误状态等）。"""


class RateLimitError(BackendInvocationError):
    """Provider 限流错误（HTTP 429），由上层决定是否提示用户稍后重试。"""


class StreamError(BusinessError):
    """后端流在完成信号之前中断。"""


class SinkWriteError(BusinessError):
    """输出端拒绝了本次写入，例如内容超过单条消息长度上限。"""
