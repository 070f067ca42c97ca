"""流式回答渲染器。

状态机：Idle → Streaming → Finalizing → Done，另有一个内部的
Overflow 转换（Streaming / Finalizing 中写入被拒绝时触发）。

- 收到第一个文本片段时创建 StreamSession，并确保有一条可编辑的消息。
- 片段同时追加到 buffer（尚未展示）和 total_text（全部文本）；只有距离
  上次 flush 至少 flush_interval 秒时才会 flush，更快到达的片段会被合并。
- flush 把 visible_text + buffer 写入当前消息；成功后 buffer 并入 visible_text。
- Overflow：写入被拒绝时打开新消息，种子恰好是未展示的 buffer，
  新消息的 visible_text 就是这个种子。旧消息保持上次成功展示的内容，
  因此任何字符都不会重复或丢失。
- 完成信号：追加页脚后做最后一次 flush（同样走 Overflow），
  返回不含页脚的 total_text。
- 流错误：直接进入 Done，保留已展示的文本并追加错误提示，不返回可提交的结果。
"""

import logging
import time
from dataclasses import dataclass
from enum import Enum
from typing import Any, AsyncIterable, Callable, Dict, Optional

from chat_core.domain.exceptions import BackendInvocationError, BusinessError, SinkWriteError, StreamError
from chat_core.domain.models import ChatUsage, StreamEvent
from chat_core.infrastructure.logging.logger import logger
from chat_core.rendering.sink import OutputSink, SinkHandle


class RenderState(str, Enum):
    IDLE = "idle"
    STREAMING = "streaming"
    FINALIZING = "finalizing"
    DONE = "done"


@dataclass
class StreamSession:
    """一次进行中的生成对应的渲染状态，流结束后即丢弃。"""

    started_at: float
    last_flush_time: float
    active_sink: Optional[SinkHandle] = None
    buffer: str = ""  # 上次成功 flush 之后累积、尚未展示的文本
    visible_text: str = ""  # 当前消息上已经展示的文本
    total_text: str = ""
    flush_count: int = 0
    sink_count: int = 0
    overflow_count: int = 0


@dataclass
class RenderResult:
    """渲染结束后的结果。

    ok 为 True 时 text 是完整回答（不含页脚），可以写回会话历史；
    为 False 时 text 只是中断前收到的部分文本，不应提交。
    delivered 表示最后一次 flush 是否成功展示给用户。
    """

    ok: bool
    text: str
    error: Optional[BusinessError] = None
    delivered: bool = False
    finish_reason: Optional[str] = None
    usage: Optional[ChatUsage] = None
    flush_count: int = 0
    sink_count: int = 0
    overflow_count: int = 0


class StreamRenderer:
    def __init__(
        self,
        sink: OutputSink,
        *,
        flush_interval: float = 1.0,
        clock: Callable[[], float] = time.monotonic,
        placeholder: str = "Generating response...",
        footer: Optional[Callable[[], str]] = None,
        log_ctx: Optional[Dict[str, Any]] = None,
    ):
        self._sink = sink
        self._flush_interval = flush_interval
        self._clock = clock
        self._placeholder = placeholder
        self._footer = footer
        self._log_ctx: Dict[str, Any] = dict(log_ctx or {})
        self._state = RenderState.IDLE
        self._session: Optional[StreamSession] = None
        self._placeholder_handle: Optional[SinkHandle] = None

    @property
    def state(self) -> RenderState:
        return self._state

    @property
    def session(self) -> Optional[StreamSession]:
        return self._session

    async def open_placeholder(self) -> None:
        """在生成开始前打开一条占位消息，失败时只记录日志。"""

        if self._placeholder_handle is not None or self._session is not None:
            return
        try:
            self._placeholder_handle = await self._sink.open(self._placeholder)
        except SinkWriteError as exc:
            self._log(logging.WARNING, "Failed to open placeholder", code=exc.code, error=exc.message)

    async def render(self, events: AsyncIterable[StreamEvent]) -> RenderResult:
        """消费后端事件直到 Done。

        后端在产出第一个事件之前抛出的 BackendInvocationError 会原样向上传播，
        由调用方决定如何提示用户。
        """

        if self._state is not RenderState.IDLE:
            raise RuntimeError(f"StreamRenderer cannot render from state {self._state.value}")
        try:
            async for event in events:
                if event.kind == "fragment":
                    await self._on_fragment(event.text)
                elif event.kind == "completion":
                    return await self._finalize(event)
        except StreamError as exc:
            return await self._abort(exc)
        except BackendInvocationError:
            raise
        except Exception as exc:
            # 后端漏掉的其他异常同样按流中断处理
            self._log(logging.ERROR, "Unexpected stream failure", error_type=type(exc).__name__)
            return await self._abort(StreamError(code="STREAM_ERROR", message=str(exc)))
        return await self._abort(
            StreamError(code="STREAM_TRUNCATED", message="stream ended without a completion signal")
        )

    async def report_error(self, message: str) -> None:
        """在流开始之前失败时，把错误信息展示在占位消息（或新消息）上。"""

        self._state = RenderState.DONE
        await self._show_notice(message)

    async def _on_fragment(self, text: str) -> None:
        if not text:
            return
        session = await self._ensure_session()
        session.buffer += text
        session.total_text += text
        if self._clock() - session.last_flush_time >= self._flush_interval:
            await self._flush()

    async def _finalize(self, event: StreamEvent) -> RenderResult:
        session = await self._ensure_session()
        self._state = RenderState.FINALIZING
        suffix = self._footer() if self._footer else ""
        delivered = await self._flush(suffix)
        self._state = RenderState.DONE
        self._log(
            logging.INFO,
            "Stream rendered",
            chars=len(session.total_text),
            flushes=session.flush_count,
            sinks=session.sink_count,
            overflows=session.overflow_count,
            delivered=delivered,
            finish_reason=event.finish_reason,
        )
        return RenderResult(
            ok=True,
            text=session.total_text,
            delivered=delivered,
            finish_reason=event.finish_reason,
            usage=event.usage,
            flush_count=session.flush_count,
            sink_count=session.sink_count,
            overflow_count=session.overflow_count,
        )

    async def _abort(self, exc: StreamError) -> RenderResult:
        self._state = RenderState.DONE
        session = self._session
        self._log(
            logging.ERROR,
            "Stream failed",
            code=exc.code,
            error=exc.message,
            partial_chars=len(session.total_text) if session else 0,
        )
        await self._show_notice(f"**Error:** response generation failed ({exc.code}).")
        return RenderResult(
            ok=False,
            text=session.total_text if session else "",
            error=exc,
            flush_count=session.flush_count if session else 0,
            sink_count=session.sink_count if session else 0,
            overflow_count=session.overflow_count if session else 0,
        )

    async def _ensure_session(self) -> StreamSession:
        if self._session is not None:
            return self._session
        now = self._clock()
        session = StreamSession(started_at=now, last_flush_time=now, active_sink=self._placeholder_handle)
        self._session = session
        self._state = RenderState.STREAMING
        if session.active_sink is None:
            try:
                session.active_sink = await self._sink.open(self._placeholder)
            except SinkWriteError as exc:
                # 没有可编辑的消息时，第一次 flush 会直接打开新消息
                self._log(logging.WARNING, "Failed to open output sink", code=exc.code, error=exc.message)
        if session.active_sink is not None:
            session.sink_count = 1
        return session

    async def _flush(self, suffix: str = "") -> bool:
        session = self._session
        assert session is not None
        session.last_flush_time = self._clock()
        session.flush_count += 1
        pending = session.buffer + suffix
        if session.active_sink is None:
            return await self._spill(pending)
        content = session.visible_text + pending
        try:
            await self._sink.update(session.active_sink, content)
        except SinkWriteError as exc:
            self._log(
                logging.WARNING,
                "Sink update rejected, spilling over",
                code=exc.code,
                error=exc.message,
                pending_chars=len(pending),
            )
            return await self._spill(pending)
        session.visible_text = content
        session.buffer = ""
        return True

    async def _spill(self, seed: str) -> bool:
        """Overflow：打开新消息，种子为尚未展示的文本。"""

        session = self._session
        assert session is not None
        try:
            handle = await self._sink.open(seed)
        except SinkWriteError as exc:
            # 尽力而为：文本留在 buffer 中，下次 flush 再试
            self._log(logging.ERROR, "Spillover failed", code=exc.code, error=exc.message, seed_chars=len(seed))
            return False
        if session.active_sink is not None:
            session.overflow_count += 1
        session.active_sink = handle
        session.sink_count += 1
        session.visible_text = seed
        session.buffer = ""
        return True

    async def _show_notice(self, notice: str) -> None:
        session = self._session
        handle = session.active_sink if session else self._placeholder_handle
        visible = session.visible_text if session else ""
        if handle is not None:
            content = f"{visible}\n{notice}" if visible else notice
            try:
                await self._sink.update(handle, content)
                return
            except SinkWriteError as exc:
                self._log(logging.WARNING, "Failed to edit error notice", code=exc.code, error=exc.message)
        try:
            await self._sink.open(notice)
        except SinkWriteError as exc:
            self._log(logging.ERROR, "Failed to deliver error notice", code=exc.code, error=exc.message)

    def _log(self, level: int, message: str, **fields: Any) -> None:
        payload = dict(self._log_ctx)
        payload.update(fields)
        logger.log(level, message, extra={"extra": payload})
