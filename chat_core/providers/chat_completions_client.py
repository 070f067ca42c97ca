"""OpenAI 兼容接口的流式生成适配器。

本模块负责：

1. 接收统一的 ChatRequest。
2. 将其转换为 {base_url}/chat/completions 的流式请求（stream=true）。
3. 逐行解析 server-sent events，产出 fragment / completion 事件。
4. 把网络与 HTTP 错误映射为 BackendInvocationError（流建立前）
   或 StreamError（已经开始产出事件之后）。
"""

import json
from typing import Any, AsyncIterator, Dict, List, Optional

import httpx

from chat_core.domain.exceptions import BackendInvocationError, RateLimitError, StreamError
from chat_core.domain.models import ChatRequest, ChatUsage, StreamEvent, Turn
from chat_core.providers.registry import OPENAI_CONFIG, ProviderConfig


class ChatCompletionsClient:
    """OpenAI 兼容 Provider 客户端实现。

    - name: Provider 名称（供日志/调试使用）。
    - generate: 对外统一调用入口，返回 StreamEvent 的异步迭代器。
    """

    def __init__(self, settings, provider: ProviderConfig = OPENAI_CONFIG):
        # Settings 里包含 api_key、base_url、超时等配置
        self._settings = settings
        self._provider = provider
        self.name = provider.name

    async def generate(self, req: ChatRequest) -> AsyncIterator[StreamEvent]:
        """执行一次流式生成，逐步 yield StreamEvent。"""

        api_key = getattr(self._settings, "openai_api_key", None)
        if not api_key:
            raise BackendInvocationError(code="MISSING_API_KEY", message="OPENAI_API_KEY not set")
        payload = self._build_payload(req)
        base = getattr(self._settings, "openai_base_url", None) or self._provider.base_url
        started = False
        try:
            async with httpx.AsyncClient(timeout=self._settings.http_timeout, trust_env=False) as client:
                async with client.stream(
                    "POST",
                    f"{base.rstrip('/')}/chat/completions",
                    json=payload,
                    headers={
                        "Authorization": f"Bearer {api_key}",
                        "Content-Type": "application/json",
                    },
                ) as resp:
                    if resp.status_code == 429:
                        raise RateLimitError(
                            code="RATE_LIMIT",
                            message=f"{self.name} rate limit",
                            http_status=429,
                        )
                    if resp.status_code >= 400:
                        body = (await resp.aread()).decode("utf-8", errors="replace")[:500]
                        raise BackendInvocationError(
                            code="API_ERROR",
                            message=body,
                            http_status=resp.status_code,
                        )
                    started = True
                    async for line in resp.aiter_lines():
                        data_str = self._strip_sse(line)
                        if not data_str:
                            continue
                        if data_str == "[DONE]":
                            # 部分兼容实现不发送 finish_reason，只以 [DONE] 结束
                            yield StreamEvent.completion("stop")
                            return
                        try:
                            chunk = json.loads(data_str)
                        except json.JSONDecodeError:
                            continue
                        if not isinstance(chunk, dict):
                            continue
                        for event in self._parse_stream_chunk(chunk):
                            yield event
                            if event.kind == "completion":
                                return
        except (httpx.HTTPError, httpx.StreamError) as e:
            if started:
                raise StreamError(code="STREAM_ERROR", message=str(e)) from e
            raise BackendInvocationError(code="NETWORK_ERROR", message=str(e)) from e

    def _build_payload(self, req: ChatRequest) -> Dict[str, Any]:
        """将 ChatRequest 转成 chat/completions 所需的请求 JSON。"""

        payload: Dict[str, Any] = {
            "model": req.model,
            "messages": [self._turn_to_payload(t) for t in req.messages],
            "stream": True,
        }
        if req.max_tokens is not None:
            payload["max_tokens"] = req.max_tokens
        if req.temperature is not None:
            payload["temperature"] = req.temperature
        return payload

    @staticmethod
    def _turn_to_payload(turn: Turn) -> Dict[str, Any]:
        return {"role": turn.role.value, "content": turn.content}

    @staticmethod
    def _strip_sse(line: str) -> str:
        s = line.strip()
        if not s or s.startswith(":"):
            # 空行是事件分隔符，冒号开头的是注释/心跳
            return ""
        if s.startswith("data:"):
            return s[5:].strip()
        return s

    def _parse_stream_chunk(self, data: dict) -> List[StreamEvent]:
        """解析流式响应中的单条增量。"""

        error = data.get("error")
        if error:
            message = error.get("message") if isinstance(error, dict) else str(error)
            raise StreamError(code="STREAM_ERROR", message=message or "stream error")

        events: List[StreamEvent] = []
        choices = data.get("choices") or []
        if not choices:
            return events
        choice = choices[0]
        content = (choice.get("delta") or {}).get("content")
        if content:
            events.append(StreamEvent(kind="fragment", text=content, raw=data))
        finish_reason = choice.get("finish_reason")
        if finish_reason:
            events.append(
                StreamEvent(
                    kind="completion",
                    finish_reason=finish_reason,
                    usage=self._parse_usage(data.get("usage")),
                    raw=data,
                )
            )
        return events

    @staticmethod
    def _parse_usage(usage_raw: Optional[dict]) -> Optional[ChatUsage]:
        if not usage_raw:
            return None
        return ChatUsage(
            prompt_tokens=usage_raw.get("prompt_tokens", 0),
            completion_tokens=usage_raw.get("completion_tokens", 0),
            total_tokens=usage_raw.get("total_tokens", 0),
        )
