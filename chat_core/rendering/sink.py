"""输出端（sink）协议。

一个 sink 就是聊天平台上可以创建并反复编辑的一条消息：

- open(seed_text): 创建新消息并返回句柄。
- update(handle, text): 把整条消息替换为 text。

两者在平台拒绝内容（如超过单条消息长度上限）或请求失败时都抛出
SinkWriteError，渲染器据此触发溢出恢复。
"""

from dataclasses import dataclass
from typing import List, Optional, Protocol

from chat_core.domain.exceptions import SinkWriteError


@dataclass(frozen=True)
class SinkHandle:
    """已打开消息的句柄；message_id 由具体 sink 解释。"""

    message_id: str


def check_length(text: str, max_length: int) -> None:
    if len(text) > max_length:
        raise SinkWriteError(
            code="SINK_CONTENT_TOO_LONG",
            message=f"content length {len(text)} exceeds {max_length}",
            length=len(text),
        )


class OutputSink(Protocol):
    async def open(self, seed_text: str) -> SinkHandle:
        ...

    async def update(self, handle: SinkHandle, text: str) -> None:
        ...


class MemorySink:
    """进程内 sink，按顺序保存每条消息的当前内容。

    max_length 模拟平台的单条消息长度上限；超出时拒绝写入。
    """

    def __init__(self, max_length: Optional[int] = None):
        self.max_length = max_length
        self.messages: List[str] = []
        self.opened: List[str] = []
        self.updates: List[tuple] = []

    async def open(self, seed_text: str) -> SinkHandle:
        self._check(seed_text)
        self.messages.append(seed_text)
        self.opened.append(seed_text)
        return SinkHandle(message_id=str(len(self.messages) - 1))

    async def update(self, handle: SinkHandle, text: str) -> None:
        index = int(handle.message_id)
        if index >= len(self.messages):
            raise SinkWriteError(code="SINK_UNKNOWN_MESSAGE", message=handle.message_id)
        self._check(text)
        self.messages[index] = text
        self.updates.append((index, text))

    def _check(self, text: str) -> None:
        if self.max_length is not None:
            check_length(text, self.max_length)


class BoundedSink:
    """给任意 sink 加上单条消息长度上限。

    超长的内容在到达平台之前就被拒绝，渲染器据此提前溢出到新消息。
    """

    def __init__(self, inner: OutputSink, max_length: int):
        self._inner = inner
        self.max_length = max_length

    async def open(self, seed_text: str) -> SinkHandle:
        self._check(seed_text)
        return await self._inner.open(seed_text)

    async def update(self, handle: SinkHandle, text: str) -> None:
        self._check(text)
        await self._inner.update(handle, text)

    def _check(self, text: str) -> None:
        check_length(text, self.max_length)
