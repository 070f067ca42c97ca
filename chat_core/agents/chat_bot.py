"""聊天机器人的便捷包装。

传输适配层（Discord、Slack 等）只需要把入站消息交给 ChatBot：

- should_respond: 判断是否应该回复（被提及，或位于自动回复频道且不以忽略前缀开头；
  来自其他机器人的消息一律忽略）。
- handle: 需要回复时交给 ResponseAssembler。
- reset: 清空当前会话的上下文并返回一句随机的提示语。
"""

import logging
import random
from typing import Iterable, Optional, Sequence

from chat_core.agents.assembler import AssemblyResult, ResponseAssembler
from chat_core.domain.conversation import ConversationStore
from chat_core.domain.models import InboundMessage
from chat_core.infrastructure.logging.logger import logger
from chat_core.rendering.sink import OutputSink


RESET_MESSAGES: Sequence[str] = (
    "*dropped anvil on head* uhh my head hurts",
    "*accidentally reboots brain* Whoopsie! Did someone forget to save?",
    "*slams head on keyboard* bzzzzt ERROR 404: MEMORY NOT FOUND",
    "*shakes head vigorously* CTRL+ALT+DELETE on my neural network!",
    "*pokes own forehead* Hello? Is this thing on? Anybody home?",
    "*performs dramatic software reset dance* SYSTEM REFRESH IN PROGRESS",
    "*taps microphone* ONE, TWO, IS THIS CONTEXT WORKING?",
    "*waves magic reset wand* Abracadabra, clean slate incoming!",
    "*bonks noggin* Memory go bye-bye!",
    "*static noise* BZZZZT! Soft reboot engaged!",
    "*karate chops own temple* HIYAA! Context cleared!",
    "*pulls imaginary reset lever* Systems returning to default mode!",
    "*summons memory tornado* WHOOOOOOSH! Clean slate incoming!",
    "*applies extreme memory defragmentation* Cleaning up neural cobwebs!",
    "*does quantum memory shuffle* Schrödinger's conversation - both remembered and forgotten!",
    "*uses giant eraser* Goodbye, previous conversation!",
    "*uses compressed air* WHOOSH! Blowing away old context!",
    "*robot voice* ATTENTION: MEMORY BANKS FORMATTING IN 3... 2... 1...",
)


class ChatBot:
    """面向聊天平台的机器人入口。"""

    def __init__(
        self,
        assembler: ResponseAssembler,
        store: ConversationStore,
        autorespond_channels: Iterable[str] = (),
        ignore_prefix: str = "~",
        rng: Optional[random.Random] = None,
    ):
        """初始化机器人。

        Args:
            assembler: 回答组装器
            store: 会话存储实例（与 assembler 共用）
            autorespond_channels: 无需提及即自动回复的会话 ID
            ignore_prefix: 自动回复频道中以该前缀开头的消息不回复
            rng: 随机数生成器，便于测试时固定 reset 提示语
        """
        self._assembler = assembler
        self._store = store
        self._autorespond = frozenset(autorespond_channels)
        self._ignore_prefix = ignore_prefix
        self._rng = rng or random.Random()

    def should_respond(self, message: InboundMessage) -> bool:
        if message.author_is_bot:
            return False
        if message.mentions_bot:
            return True
        if message.conversation_id not in self._autorespond:
            return False
        return not (self._ignore_prefix and message.content.startswith(self._ignore_prefix))

    async def handle(self, message: InboundMessage, sink: OutputSink) -> Optional[AssemblyResult]:
        """需要回复时生成回答，否则返回 None。"""
        if not self.should_respond(message):
            return None
        return await self._assembler.respond(message, sink)

    def reset(self, conversation_id: str) -> str:
        """清空会话上下文，返回一句提示语。"""
        self._store.clear(conversation_id)
        logger.log(
            logging.INFO,
            "Cleared conversation",
            extra={"extra": {"conversation_id": conversation_id}},
        )
        return self._rng.choice(RESET_MESSAGES)
