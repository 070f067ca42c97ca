"""对外 API 服务模块。

提供简化的函数接口供传输适配层调用。会话存储在进程启动时创建，
只能通过 reset_conversation 显式清空，进程退出后丢失。
"""

from typing import Optional, Dict, Any, List

from chat_core.agents.assembler import AssemblerConfig, AssemblyResult, ResponseAssembler
from chat_core.agents.chat_bot import ChatBot
from chat_core.config.settings import settings
from chat_core.context.tokenizer import create_tokenizer
from chat_core.domain.conversation import ConversationStore
from chat_core.domain.models import InboundMessage
from chat_core.infrastructure.logging.logger import logger
from chat_core.infrastructure.storage.memory_store import InMemoryConversationStore
from chat_core.prompts import load_system_prompt
from chat_core.providers import create_backend
from chat_core.rendering.sink import BoundedSink, OutputSink


_store: Optional[ConversationStore] = None
_bot: Optional[ChatBot] = None


def get_store() -> ConversationStore:
    """获取进程级会话存储（单例）。"""
    global _store
    if _store is None:
        _store = InMemoryConversationStore()
    return _store


def get_default_bot() -> ChatBot:
    """获取默认的 ChatBot 实例（单例）。"""
    global _bot
    if _bot is None:
        store = get_store()
        backend = create_backend(settings.default_provider)
        assembler = ResponseAssembler(
            store=store,
            tokenizer=create_tokenizer(settings.tokenizer, settings.tokenizer_fallback_encoding),
            backend=backend,
            config=AssemblerConfig(
                provider=backend.name,
                model=settings.ai_model,
                tokenizer_model=settings.tokenizer_model,
                token_budget=settings.submission_budget,
                max_output_tokens=settings.max_output_tokens,
                bot_name=settings.bot_name,
                temperature=settings.temperature,
                flush_interval=settings.flush_interval,
                placeholder_text=settings.placeholder_text,
                disclaimer_url=settings.disclaimer_url,
            ),
            instructions=load_system_prompt(settings.system_prompt_file),
        )
        _bot = ChatBot(
            assembler=assembler,
            store=store,
            autorespond_channels=settings.autorespond_channel_ids,
            ignore_prefix=settings.ignore_prefix,
        )
    return _bot


async def handle_message(message: InboundMessage, sink: OutputSink) -> Optional[AssemblyResult]:
    """处理一条入站消息。

    Args:
        message: 传输层解析后的消息
        sink: 用于展示回答的输出端，写入时按 settings.message_char_limit 限制单条长度

    Returns:
        组装结果；不需要回复时返回 None

    Raises:
        未被组装器处理的异常会记录日志后继续抛出
    """
    try:
        return await get_default_bot().handle(message, BoundedSink(sink, settings.message_char_limit))
    except Exception as e:
        logger.error(f"Chat failed: {e}", extra={"extra": {
            "conversation_id": message.conversation_id,
            "error": str(e),
        }})
        raise


def reset_conversation(conversation_id: str) -> str:
    """清空会话上下文，返回要展示给用户的提示语。"""
    return get_default_bot().reset(conversation_id)


def get_conversation_turns(conversation_id: str) -> List[Dict[str, Any]]:
    """获取会话当前的全部历史消息。

    Args:
        conversation_id: 会话ID

    Returns:
        消息列表
    """
    return [
        {
            "role": t.role.value,
            "speaker": t.speaker_label,
            "content": t.content,
        }
        for t in get_store().snapshot(conversation_id)
    ]
