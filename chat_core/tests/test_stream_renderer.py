import math
import random

import pytest

from chat_core.domain.exceptions import BackendInvocationError, SinkWriteError, StreamError
from chat_core.domain.models import StreamEvent
from chat_core.rendering.renderer import RenderState, StreamRenderer
from chat_core.rendering.sink import MemorySink


class FakeClock:
    def __init__(self, now: float = 0.0):
        self.now = now

    def __call__(self) -> float:
        return self.now


async def timed_stream(clock, items):
    """按 (时间, 事件) 依次产出事件，产出前把时钟拨到对应时间。"""
    for at, event in items:
        clock.now = at
        yield event


def frag(text):
    return StreamEvent.fragment(text)


class FlakySink(MemorySink):
    """随机拒绝 update 的 sink，open 总是成功。"""

    def __init__(self, rng, fail_rate):
        super().__init__()
        self._rng = rng
        self._fail_rate = fail_rate

    async def update(self, handle, text):
        if self._rng.random() < self._fail_rate:
            raise SinkWriteError(code="SINK_FLAKY", message="rejected")
        await super().update(handle, text)


@pytest.mark.asyncio
async def test_hello_world_scenario():
    clock = FakeClock()
    sink = MemorySink()
    renderer = StreamRenderer(sink, flush_interval=1.0, clock=clock, footer=lambda: "\n-# footer")
    result = await renderer.render(
        timed_stream(
            clock,
            [
                (0.0, frag("Hel")),
                (0.5, frag("lo, ")),
                (1.2, frag("world!")),
                (1.3, StreamEvent.completion()),
            ],
        )
    )
    assert result.ok
    assert result.text == "Hello, world!"
    assert result.flush_count == 2
    assert sink.updates == [(0, "Hello, world!"), (0, "Hello, world!\n-# footer")]
    assert sink.messages == ["Hello, world!\n-# footer"]
    assert renderer.state is RenderState.DONE


@pytest.mark.asyncio
async def test_state_transitions():
    clock = FakeClock()
    sink = MemorySink()
    seen = []
    renderer = StreamRenderer(sink, clock=clock, footer=lambda: seen.append(renderer.state) or "")

    async def events():
        seen.append(renderer.state)
        yield frag("a")
        seen.append(renderer.state)
        yield StreamEvent.completion()

    await renderer.render(events())
    assert seen == [RenderState.IDLE, RenderState.STREAMING, RenderState.FINALIZING]
    assert renderer.state is RenderState.DONE


@pytest.mark.asyncio
async def test_fragments_are_coalesced_between_flushes():
    clock = FakeClock()
    sink = MemorySink()
    renderer = StreamRenderer(sink, flush_interval=1.0, clock=clock)
    items = [(i * 0.1, frag(str(i % 10))) for i in range(25)]
    items.append((2.5, StreamEvent.completion()))
    result = await renderer.render(timed_stream(clock, items))
    # 0.0 开始，1.0 与 2.0 各一次，外加最后一次
    assert result.flush_count == 3
    assert result.text == "".join(str(i % 10) for i in range(25))
    assert sink.messages == [result.text]


@pytest.mark.asyncio
async def test_spillover_seed_is_only_the_unflushed_tail():
    clock = FakeClock()
    sink = MemorySink(max_length=8)
    renderer = StreamRenderer(sink, flush_interval=1.0, clock=clock, placeholder="...")
    result = await renderer.render(
        timed_stream(
            clock,
            [
                (1.0, frag("XXXX")),  # 首个片段在 1.0 建立会话
                (2.0, frag("AB")),  # flush: "XXXXAB"
                (2.2, frag("yy")),
                (2.5, frag("zz")),
                (3.1, frag("w")),  # flush "XXXXAByyzzw" 超长 -> 溢出
                (3.2, StreamEvent.completion()),
            ],
        )
    )
    assert sink.opened == ["...", "yyzzw"]
    assert sink.messages == ["XXXXAB", "yyzzw"]
    assert result.text == "XXXXAByyzzw"
    assert result.overflow_count == 1
    assert result.sink_count == 2


@pytest.mark.asyncio
async def test_final_flush_spills_with_footer():
    clock = FakeClock()
    sink = MemorySink(max_length=10)
    renderer = StreamRenderer(sink, clock=clock, placeholder="...", footer=lambda: "\n-#f")
    result = await renderer.render(
        timed_stream(
            clock,
            [
                (0.0, frag("abc")),
                (1.0, frag("defgh")),
                (1.2, frag("ij")),
                (1.3, StreamEvent.completion()),
            ],
        )
    )
    assert sink.messages == ["abcdefgh", "ij\n-#f"]
    assert result.ok and result.delivered
    assert result.text == "abcdefghij"


@pytest.mark.asyncio
async def test_failed_spillover_is_swallowed():
    clock = FakeClock()
    sink = MemorySink(max_length=5)
    renderer = StreamRenderer(sink, clock=clock, placeholder="...")
    result = await renderer.render(
        timed_stream(
            clock,
            [
                (0.0, frag("abcdefgh")),
                (1.0, frag("i")),
                (1.1, StreamEvent.completion()),
            ],
        )
    )
    assert result.ok
    assert not result.delivered
    assert result.text == "abcdefghi"
    assert sink.messages == ["..."]


@pytest.mark.asyncio
async def test_stream_error_keeps_visible_text_and_appends_notice():
    clock = FakeClock()
    sink = MemorySink()
    renderer = StreamRenderer(sink, clock=clock)

    async def failing():
        clock.now = 0.0
        yield frag("partial")
        clock.now = 1.0
        yield frag(" answer")
        clock.now = 1.5
        yield frag(" lost")
        raise StreamError(code="STREAM_ERROR", message="connection reset")

    result = await renderer.render(failing())
    assert not result.ok
    assert result.error.code == "STREAM_ERROR"
    assert result.text == "partial answer lost"
    assert sink.messages == ["partial answer\n**Error:** response generation failed (STREAM_ERROR)."]
    assert renderer.state is RenderState.DONE


@pytest.mark.asyncio
async def test_stream_without_completion_is_an_error():
    clock = FakeClock()
    sink = MemorySink()
    renderer = StreamRenderer(sink, clock=clock)
    result = await renderer.render(timed_stream(clock, [(0.0, frag("hi"))]))
    assert not result.ok
    assert result.error.code == "STREAM_TRUNCATED"


@pytest.mark.asyncio
async def test_invocation_error_propagates_before_streaming():
    sink = MemorySink()
    renderer = StreamRenderer(sink, clock=FakeClock())
    await renderer.open_placeholder()

    async def broken():
        raise BackendInvocationError(code="NETWORK_ERROR", message="down")
        yield  # pragma: no cover

    with pytest.raises(BackendInvocationError):
        await renderer.render(broken())
    assert renderer.state is RenderState.IDLE
    await renderer.report_error("could not reach backend")
    assert sink.messages == ["could not reach backend"]
    assert renderer.state is RenderState.DONE


@pytest.mark.asyncio
async def test_placeholder_is_reused_by_stream():
    clock = FakeClock()
    sink = MemorySink()
    renderer = StreamRenderer(sink, clock=clock, placeholder="Generating response...")
    await renderer.open_placeholder()
    assert sink.messages == ["Generating response..."]
    result = await renderer.render(timed_stream(clock, [(0.0, frag("ok")), (0.1, StreamEvent.completion())]))
    assert result.sink_count == 1
    assert sink.messages == ["ok"]


@pytest.mark.asyncio
@pytest.mark.parametrize("seed", range(15))
async def test_fidelity_and_rate_bound_under_random_failures(seed):
    rng = random.Random(seed)
    clock = FakeClock()
    sink = FlakySink(rng, fail_rate=rng.choice([0.0, 0.3, 0.7]))
    interval = rng.choice([0.25, 0.5, 1.0])
    renderer = StreamRenderer(sink, flush_interval=interval, clock=clock, placeholder="", footer=lambda: "|F")

    fragments = ["".join(rng.choice("abcxyz ") for _ in range(rng.randint(1, 6))) for _ in range(rng.randint(1, 60))]
    t = 0.0
    items = []
    for f in fragments:
        items.append((t, frag(f)))
        t += rng.uniform(0.0, 0.6)
    items.append((t, StreamEvent.completion()))

    result = await renderer.render(timed_stream(clock, items))
    expected = "".join(fragments)
    assert result.ok
    assert result.text == expected
    # 开放的 sink 都能接受种子，因此拼接后的可见文本就是全文 + 页脚
    assert "".join(sink.messages) == expected + "|F"
    duration = t - items[0][0]
    assert result.flush_count <= math.ceil(duration / interval) + 1


@pytest.mark.asyncio
async def test_unexpected_exception_is_treated_as_stream_error():
    clock = FakeClock()
    sink = MemorySink()
    renderer = StreamRenderer(sink, clock=clock)

    async def broken():
        clock.now = 0.0
        yield frag("partial")
        clock.now = 1.0
        yield frag(" answer")
        raise AttributeError("'list' object has no attribute 'get'")

    result = await renderer.render(broken())
    assert not result.ok
    assert isinstance(result.error, StreamError)
    assert result.text == "partial answer"
    assert sink.messages == ["partial answer\n**Error:** response generation failed (STREAM_ERROR)."]
    assert renderer.state is RenderState.DONE
