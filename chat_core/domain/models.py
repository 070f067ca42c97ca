"""统一的对话与流式结果数据模型。

本模块定义了上下文管理、生成后端与渲染器之间共享的标准数据结构：

- Role: 封闭的消息角色枚举（system/user/assistant）。
- Turn: 对话历史中的一条不可变消息。
- InboundMessage: 传输适配层交给机器人的一条入站消息。
- ChatRequest: 发给生成后端的完整请求。
- StreamEvent: 生成后端产出的流式事件（文本片段或完成信号）。

所有 Provider 适配器都只依赖这些模型，并负责在各自的 API JSON
和这些模型之间做转换。
"""

from dataclasses import dataclass, field
from enum import Enum
from typing import Literal, Optional, Any, Dict, List


class Role(str, Enum):
    """消息角色，取值与 OpenAI 兼容接口的 role 字段一致。"""

    SYSTEM = "system"
    USER = "user"
    ASSISTANT = "assistant"


@dataclass(frozen=True)
class Turn:
    """对话中的一条消息。

    - role: 消息角色。
    - speaker_label: 说话人标签，如 "Riprod (276531165878288385)"；
      system/assistant 消息通常为机器人名称。
    - content: 发给后端的完整文本。
    - estimated_cost: 预先算好的 token 开销；为 None 时由 Tokenizer 估算。
    """

    role: Role
    speaker_label: str
    content: str
    estimated_cost: Optional[int] = None


@dataclass
class InboundMessage:
    """一条来自聊天平台的入站消息（已由传输层解析）。"""

    conversation_id: str
    author_name: str
    author_id: str
    content: str
    venue: str = ""
    author_is_bot: bool = False
    mentions_bot: bool = False

    @property
    def speaker_label(self) -> str:
        return f"{self.author_name} ({self.author_id})"


@dataclass
class ChatRequest:
    """一次完整的生成请求。

    ResponseAssembler 会将窗口裁剪后的消息列表放入 ChatRequest，
    再交给具体的 GenerationBackend。
    """

    provider: str  # Provider 名，如 "openai"
    model: str  # 后端实际使用的模型 ID
    messages: List[Turn]
    max_tokens: Optional[int] = None
    temperature: Optional[float] = None


@dataclass
class ChatUsage:
    """Provider 返回的 token 统计信息（统一格式）。"""

    prompt_tokens: int
    completion_tokens: int
    total_tokens: int


@dataclass
class StreamEvent:
    """生成后端产出的流式事件。

    kind:
        - "fragment": 一段新生成的文本，位于 text。
        - "completion": 生成结束信号，携带 finish_reason 与可选的 usage。
    """

    kind: Literal["fragment", "completion"]
    text: str = ""
    finish_reason: Optional[str] = None
    usage: Optional[ChatUsage] = None
    raw: Dict[str, Any] = field(default_factory=dict)

    @classmethod
    def fragment(cls, text: str) -> "StreamEvent":
        return cls(kind="fragment", text=text)

    @classmethod
    def completion(cls, finish_reason: Optional[str] = "stop", usage: Optional[ChatUsage] = None) -> "StreamEvent":
        return cls(kind="completion", finish_reason=finish_reason, usage=usage)
