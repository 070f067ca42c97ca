"""生成后端抽象接口。

上层 ResponseAssembler 不直接依赖具体厂商的 HTTP 接口，而是依赖此协议：

- 每个厂商实现一个 GenerationBackend（如 ChatCompletionsClient）。
- generate(req) 返回异步迭代器，依次产出 fragment 事件，最后产出 completion 事件。
- 流建立之前的失败抛出 BackendInvocationError，之后的失败抛出 StreamError。

这样可以在不改上层代码的前提下接入更多厂商。
"""

from typing import AsyncIterator, Protocol

from chat_core.domain.models import ChatRequest, StreamEvent


class GenerationBackend(Protocol):
    """LLM 生成后端协议。

    实现者需要提供：
    - name: Provider 名称，用于日志/统计。
    - generate(req): 执行一次流式生成。
    """

    name: str

    def generate(self, req: ChatRequest) -> AsyncIterator[StreamEvent]:
        ...
