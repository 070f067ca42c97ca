"""在终端里与机器人对话的最小示例。

每次可见更新都会重新打印当前消息内容；输入 /reset 清空上下文。
需要在环境变量或 config.yaml 中配置 OPENAI_API_KEY。
"""

import asyncio

from chat_core import handle_message, reset_conversation
from chat_core.domain.models import InboundMessage
from chat_core.rendering.sink import SinkHandle


class ConsoleSink:
    """把每条消息的最新内容打印到终端。"""

    def __init__(self):
        self._count = 0

    async def open(self, seed_text: str) -> SinkHandle:
        self._count += 1
        print(f"\n[message {self._count}] {seed_text}")
        return SinkHandle(message_id=str(self._count))

    async def update(self, handle: SinkHandle, text: str) -> None:
        print(f"[message {handle.message_id}] {text}")


async def main():
    while True:
        try:
            line = input("\nYou: ")
        except EOFError:
            break
        if line.strip() == "/reset":
            print(reset_conversation("console"))
            continue
        message = InboundMessage(
            conversation_id="console",
            author_name="you",
            author_id="0",
            content=line,
            venue="console",
            mentions_bot=True,
        )
        await handle_message(message, ConsoleSink())


if __name__ == "__main__":
    asyncio.run(main())
