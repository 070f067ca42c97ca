"""LLM Provider 集成层。

该包下的模块负责：
- 定义生成后端抽象接口 (base)。
- 维护 Provider 名称与基础 URL (registry)。
- 提供 OpenAI 兼容接口的流式实现 (chat_completions_client)。
"""

from typing import Optional

from chat_core.config.settings import settings
from chat_core.providers.base import GenerationBackend
from chat_core.providers.chat_completions_client import ChatCompletionsClient
from chat_core.providers.registry import get_provider_config


def create_backend(name: Optional[str] = None) -> GenerationBackend:
    """根据名称创建生成后端实例，默认取配置中的 provider。"""

    provider_name = (name or getattr(settings, "default_provider", "openai")).lower()
    return ChatCompletionsClient(settings, get_provider_config(provider_name))
