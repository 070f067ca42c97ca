"""Token 开销估算。

Tokenizer 协议只有一个约定：estimate(turn, model_id) 返回“这条消息”的
估算开销，不是剩余容量。任何失败都包装为 CostEstimationError。

- TiktokenEstimator: 按 OpenAI chat 格式计数（每条消息 3 个固定开销
  + role + content），模型名无法识别时退回到配置的编码。
- HeuristicEstimator: 1 token ≈ 4 个字符的经验规则，不依赖编码文件。
"""

from typing import Dict, Optional, Protocol

import tiktoken

from chat_core.domain.exceptions import CostEstimationError
from chat_core.domain.models import Turn
from chat_core.infrastructure.logging.logger import logger


# OpenAI chat 格式中每条消息的固定开销（<|start|>role ... <|end|>）
TOKENS_PER_MESSAGE = 3


class Tokenizer(Protocol):
    def estimate(self, turn: Turn, model_id: str) -> int:
        ...


class TiktokenEstimator:
    """基于 tiktoken 的估算器，编码对象按模型名缓存。"""

    def __init__(self, fallback_encoding: str = "o200k_base"):
        self._fallback_encoding = fallback_encoding
        self._encodings: Dict[str, "tiktoken.Encoding"] = {}

    def estimate(self, turn: Turn, model_id: str) -> int:
        if turn.estimated_cost is not None:
            return turn.estimated_cost
        try:
            encoding = self._encoding_for(model_id)
            return (
                TOKENS_PER_MESSAGE
                + len(encoding.encode(turn.role.value))
                + len(encoding.encode(turn.content))
            )
        except Exception as e:
            raise CostEstimationError(
                code="TOKENIZER_ERROR",
                message=f"Failed to estimate tokens for model {model_id!r}: {e}",
                model=model_id,
            ) from e

    def _encoding_for(self, model_id: str) -> "tiktoken.Encoding":
        encoding = self._encodings.get(model_id)
        if encoding is not None:
            return encoding
        try:
            encoding = tiktoken.encoding_for_model(model_id)
        except KeyError:
            logger.info(
                "Unknown tokenizer model, using fallback encoding",
                extra={"extra": {"model": model_id, "encoding": self._fallback_encoding}},
            )
            encoding = tiktoken.get_encoding(self._fallback_encoding)
        self._encodings[model_id] = encoding
        return encoding


class HeuristicEstimator:
    """chars/4 经验估算，结果确定且无需下载编码文件。"""

    def __init__(self, chars_per_token: int = 4, overhead: Optional[int] = None):
        if chars_per_token < 1:
            raise ValueError("chars_per_token must be >= 1")
        self._chars_per_token = chars_per_token
        self._overhead = TOKENS_PER_MESSAGE if overhead is None else overhead

    def estimate(self, turn: Turn, model_id: str) -> int:
        if turn.estimated_cost is not None:
            return turn.estimated_cost
        text = turn.content or ""
        return self._overhead + (max(len(text) // self._chars_per_token, 1) if text else 0)


def create_tokenizer(kind: str = "tiktoken", fallback_encoding: str = "o200k_base") -> Tokenizer:
    """根据名称创建估算器，未知名称按 tiktoken 处理。"""

    if kind.lower() == "heuristic":
        return HeuristicEstimator()
    return TiktokenEstimator(fallback_encoding=fallback_encoding)
