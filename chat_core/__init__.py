"""Chat Core 顶层包。

该包提供聊天机器人的核心实现：按会话保存对话历史、
在 token 预算内选择要重新发送的上下文、调用流式生成后端，
并以受限的更新频率把回答渲染到聊天消息上（超长时自动拆分到新消息）。
"""

from chat_core.api.service import get_default_bot, handle_message, reset_conversation

__all__ = ["get_default_bot", "handle_message", "reset_conversation"]
