"""回答组装核心模块。

每个请求的步骤：
1. 把用户消息追加到会话历史。
2. 取历史快照，生成 preamble，按 token 预算选择窗口。
3. 调用生成后端；无法建立流时提示用户并结束（历史只多了第 1 步的用户消息）。
4. 驱动 StreamRenderer 直到 Done。
5. 成功完成时把回答（不含页脚）作为 assistant 消息写回历史。
6. 流中途失败时不写回，失败的尝试不会成为后续上下文。

同一会话的并发请求不做整体串行化，只有历史的追加是原子的。
"""

from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Any, Callable, Dict, Optional
from uuid import uuid4
import logging
import time

from chat_core.context.tokenizer import Tokenizer
from chat_core.context.window import Selection, WindowSelector
from chat_core.domain.conversation import ConversationStore
from chat_core.domain.exceptions import BackendInvocationError, BusinessError, CostEstimationError, RateLimitError
from chat_core.domain.models import ChatRequest, InboundMessage, Role, Turn
from chat_core.infrastructure.logging.logger import logger
from chat_core.prompts import build_preamble
from chat_core.providers.base import GenerationBackend
from chat_core.rendering.renderer import RenderResult, StreamRenderer
from chat_core.rendering.sink import OutputSink


GENERIC_FAILURE_MESSAGE = "Sorry, something went wrong while preparing a response. Please try again."
BACKEND_FAILURE_MESSAGE = "Sorry, I couldn't reach the language model right now. Please try again later."
RATE_LIMIT_MESSAGE = "I'm being rate limited right now. Please try again in a moment."


@dataclass
class AssemblerConfig:
    provider: str
    model: str
    tokenizer_model: str
    token_budget: int
    max_output_tokens: int
    bot_name: str = "assistant"
    temperature: Optional[float] = None
    flush_interval: float = 1.0
    placeholder_text: str = "Generating response..."
    disclaimer_url: str = ""


@dataclass
class AssemblyResult:
    conversation_id: str
    ok: bool
    text: str = ""
    error: Optional[BusinessError] = None
    selected_turns: int = 0
    render: Optional[RenderResult] = None


class ResponseAssembler:
    def __init__(
        self,
        store: ConversationStore,
        tokenizer: Tokenizer,
        backend: GenerationBackend,
        config: AssemblerConfig,
        instructions: str,
        clock: Callable[[], float] = time.monotonic,
        now: Optional[Callable[[], datetime]] = None,
    ):
        self._store = store
        self._backend = backend
        self._config = config
        self._instructions = instructions
        self._clock = clock
        self._now = now or (lambda: datetime.now(timezone.utc))
        self._selector = WindowSelector(tokenizer, config.tokenizer_model)

    @property
    def config(self) -> AssemblerConfig:
        return self._config

    async def respond(self, message: InboundMessage, sink: OutputSink) -> AssemblyResult:
        """处理一条入站消息，流式输出回答并在成功时写回历史。"""

        start_time = self._clock()
        trace_id = f"tr-{uuid4().hex}"
        cid = message.conversation_id
        log_ctx: Dict[str, Any] = {
            "trace_id": trace_id,
            "conversation_id": cid,
        }
        timings: Dict[str, float] = {"prep": 0.0}
        renderer = StreamRenderer(
            sink,
            flush_interval=self._config.flush_interval,
            clock=self._clock,
            placeholder=self._config.placeholder_text,
            footer=lambda: self._build_footer(self._clock() - start_time, timings["prep"]),
            log_ctx=log_ctx,
        )
        await renderer.open_placeholder()

        # 1. 追加用户消息
        user_turn = Turn(
            role=Role.USER,
            speaker_label=message.speaker_label,
            content=f"{message.speaker_label}: {message.content}",
        )
        self._store.append(cid, user_turn)
        self._log(logging.INFO, "Stored user message", log_ctx, chars=len(user_turn.content))

        # 2. 选择上下文窗口
        history = self._store.snapshot(cid)
        preamble = build_preamble(
            self._instructions,
            bot_name=self._config.bot_name,
            venue=message.venue,
            now=self._now(),
        )
        try:
            selection = self._selector.select(history, preamble, self._config.token_budget)
        except CostEstimationError as exc:
            self._log(logging.ERROR, "Token estimation failed", log_ctx, code=exc.code, error=exc.message)
            await renderer.report_error(GENERIC_FAILURE_MESSAGE)
            return AssemblyResult(conversation_id=cid, ok=False, error=exc)
        self._log_selection(selection, log_ctx)

        # 3-4. 调用后端并渲染
        request = ChatRequest(
            provider=self._config.provider,
            model=self._config.model,
            messages=selection.turns,
            max_tokens=self._config.max_output_tokens,
            temperature=self._config.temperature,
        )
        timings["prep"] = self._clock() - start_time
        self._log(
            logging.INFO,
            "Calling provider (stream)",
            log_ctx,
            provider=self._config.provider,
            model=self._config.model,
            message_count=len(request.messages),
            prep_seconds=round(timings["prep"], 3),
        )
        stream = None
        try:
            stream = self._backend.generate(request)
            result = await renderer.render(stream)
        except BackendInvocationError as exc:
            self._log(
                logging.ERROR,
                "Provider invocation failed",
                log_ctx,
                code=exc.code,
                error=exc.message,
                http_status=exc.http_status,
            )
            notice = RATE_LIMIT_MESSAGE if isinstance(exc, RateLimitError) else BACKEND_FAILURE_MESSAGE
            await renderer.report_error(notice)
            return AssemblyResult(
                conversation_id=cid,
                ok=False,
                error=exc,
                selected_turns=len(selection.turns),
            )
        finally:
            # generate 本身抛错时 stream 仍为 None
            aclose = getattr(stream, "aclose", None)
            if aclose is not None:
                await aclose()

        # 5-6. 只有成功完成的回答才写回历史
        if result.ok:
            self._store.append(
                cid,
                Turn(role=Role.ASSISTANT, speaker_label=self._config.bot_name, content=result.text),
            )
            self._log(
                logging.INFO,
                "Stored assistant message",
                log_ctx,
                chars=len(result.text),
                delivered=result.delivered,
                elapsed_seconds=round(self._clock() - start_time, 3),
            )
        else:
            self._log(
                logging.WARNING,
                "Discarded failed response",
                log_ctx,
                partial_chars=len(result.text),
            )
        return AssemblyResult(
            conversation_id=cid,
            ok=result.ok,
            text=result.text,
            error=result.error,
            selected_turns=len(selection.turns),
            render=result,
        )

    def _build_footer(self, elapsed: float, prep: float) -> str:
        footer = f"\n-# Generated response in {elapsed - prep:.3f}s ({prep:.3f}s prep)."
        if self._config.disclaimer_url:
            footer += (
                f" There may be [inaccuracies in AI output](<{self._config.disclaimer_url}>)."
                " Check important info."
            )
        return footer

    def _log_selection(self, selection: Selection, log_ctx: Dict[str, Any]) -> None:
        fields = dict(
            selected=len(selection.history_turns),
            dropped=selection.dropped,
            preamble_cost=selection.preamble_cost,
            history_cost=selection.history_cost,
            token_budget=self._config.token_budget,
        )
        if selection.dropped:
            self._log(logging.INFO, "Truncated context", log_ctx, **fields)
        else:
            self._log(logging.INFO, "Selected context", log_ctx, **fields)

    @staticmethod
    def _log(level: int, message: str, log_ctx: Dict[str, Any], **fields: Any) -> None:
        payload = dict(log_ctx)
        payload.update(fields)
        logger.log(level, message, extra={"extra": payload})
