import random

import pytest

from chat_core.context.window import WindowSelector
from chat_core.domain.exceptions import CostEstimationError
from chat_core.domain.models import Role, Turn
from chat_core.infrastructure.storage.memory_store import InMemoryConversationStore


class LengthTokenizer:
    """开销 = 内容长度，便于在测试里精确控制。"""

    def __init__(self):
        self.calls = 0

    def estimate(self, turn, model_id):
        self.calls += 1
        return len(turn.content)


class BrokenTokenizer:
    def estimate(self, turn, model_id):
        raise ValueError("no encoding")


def _turn(cost: int, tag: str = "") -> Turn:
    return Turn(role=Role.USER, speaker_label="u (1)", content=tag or "x", estimated_cost=cost)


def _preamble(cost: int) -> Turn:
    return Turn(role=Role.SYSTEM, speaker_label="bot", content="sys", estimated_cost=cost)


def _is_suffix(selected, history) -> bool:
    if not selected:
        return True
    return list(history[len(history) - len(selected):]) == list(selected)


def test_scenario_first_turn_fits():
    store = InMemoryConversationStore()
    selector = WindowSelector(LengthTokenizer(), "o1-mini")
    store.append("c1", _turn(20, "first"))
    sel = selector.select(store.snapshot("c1"), _preamble(50), 1000)
    assert [t.content for t in sel.turns] == ["sys", "first"]
    assert sel.dropped == 0


def test_scenario_drops_oldest_turns():
    store = InMemoryConversationStore()
    selector = WindowSelector(LengthTokenizer(), "o1-mini")
    for i in range(101):
        store.append("c1", _turn(20, f"t{i}"))
    history = store.snapshot("c1")
    sel = selector.select(history, _preamble(50), 1000)
    # (1000 - 50) // 20 = 47 条最新消息
    assert len(sel.history_turns) == 47
    assert sel.turns[0].content == "sys"
    assert sel.history_turns[-1].content == "t100"
    assert sel.history_turns[0].content == "t54"
    assert sel.total_cost <= 1000
    assert sel.dropped == 54


def test_preamble_alone_over_budget_is_still_sent():
    selector = WindowSelector(LengthTokenizer(), "o1-mini")
    sel = selector.select([_turn(1), _turn(0)], _preamble(500), 100)
    assert [t.role for t in sel.turns] == [Role.SYSTEM]
    assert sel.history_cost == 0


def test_empty_history_selects_only_preamble():
    selector = WindowSelector(LengthTokenizer(), "o1-mini")
    sel = selector.select([], _preamble(10), 100)
    assert len(sel.turns) == 1


def test_stops_at_first_turn_that_does_not_fit():
    # 较早的小消息不会在较新的大消息被排除后再被选中
    selector = WindowSelector(LengthTokenizer(), "o1-mini")
    history = [_turn(1, "old-small"), _turn(80, "big"), _turn(10, "new")]
    sel = selector.select(history, _preamble(10), 50)
    assert [t.content for t in sel.history_turns] == ["new"]


@pytest.mark.parametrize("seed", range(20))
def test_suffix_and_budget_properties(seed):
    rng = random.Random(seed)
    history = [_turn(rng.randint(0, 60), f"t{i}") for i in range(rng.randint(0, 40))]
    preamble_cost = rng.randint(0, 120)
    budget = rng.randint(0, 600)
    selector = WindowSelector(LengthTokenizer(), "o1-mini")
    sel = selector.select(history, _preamble(preamble_cost), budget)

    assert sel.turns[0].role is Role.SYSTEM
    assert _is_suffix(sel.history_turns, history)
    history_cost = sum(t.estimated_cost for t in sel.history_turns)
    assert history_cost == sel.history_cost
    if budget - preamble_cost > 0:
        assert history_cost <= budget - preamble_cost
    # 最大性：再多取一条就会超出预算
    if len(sel.history_turns) < len(history):
        next_older = history[len(history) - len(sel.history_turns) - 1]
        assert preamble_cost + history_cost + next_older.estimated_cost > budget


def test_uses_tokenizer_when_cost_not_cached():
    tokenizer = LengthTokenizer()
    selector = WindowSelector(tokenizer, "o1-mini")
    history = [Turn(role=Role.USER, speaker_label="u", content="abcd")]
    preamble = Turn(role=Role.SYSTEM, speaker_label="bot", content="sys")
    sel = selector.select(history, preamble, 7)
    assert len(sel.turns) == 2
    assert tokenizer.calls == 2


def test_tokenizer_failure_fails_whole_selection():
    selector = WindowSelector(BrokenTokenizer(), "o1-mini")
    history = [Turn(role=Role.USER, speaker_label="u", content="abcd")]
    with pytest.raises(CostEstimationError):
        selector.select(history, _preamble(1), 100)


def test_clear_resets_selection():
    store = InMemoryConversationStore()
    selector = WindowSelector(LengthTokenizer(), "o1-mini")
    store.append("c1", _turn(5))
    store.append("c1", _turn(5))
    store.clear("c1")
    assert store.snapshot("c1") == []
    sel = selector.select(store.snapshot("c1"), _preamble(5), 1000)
    assert len(sel.turns) == 1
