"""上下文窗口选择。

从最新一条消息开始往回累加 token 开销（起点是 preamble 的开销），
一旦加入某条消息会超过预算就停止，且不再考虑更早的消息；
最后把选中的消息恢复为时间顺序并在最前面放上 preamble。

结果永远包含 preamble，哪怕它自己就超出预算（此时只记录警告）。
"""

from dataclasses import dataclass
from typing import List, Sequence

from chat_core.context.tokenizer import Tokenizer
from chat_core.domain.exceptions import CostEstimationError
from chat_core.domain.models import Turn
from chat_core.infrastructure.logging.logger import logger


@dataclass
class Selection:
    """一次窗口选择的结果。

    turns[0] 恒为 preamble，其余为历史的一个连续尾部（时间顺序）。
    """

    turns: List[Turn]
    preamble_cost: int
    history_cost: int
    dropped: int

    @property
    def total_cost(self) -> int:
        return self.preamble_cost + self.history_cost

    @property
    def history_turns(self) -> List[Turn]:
        return self.turns[1:]


class WindowSelector:
    def __init__(self, tokenizer: Tokenizer, model_id: str):
        self._tokenizer = tokenizer
        self._model_id = model_id

    def select(self, history: Sequence[Turn], preamble: Turn, token_budget: int) -> Selection:
        preamble_cost = self._cost(preamble)
        if preamble_cost > token_budget:
            logger.warning(
                "Preamble exceeds token budget, sending it alone",
                extra={"extra": {"preamble_cost": preamble_cost, "token_budget": token_budget}},
            )

        accepted: List[Turn] = []
        running = preamble_cost
        for turn in reversed(history):
            cost = self._cost(turn)
            if running + cost > token_budget:
                break
            accepted.append(turn)
            running += cost

        accepted.reverse()
        return Selection(
            turns=[preamble, *accepted],
            preamble_cost=preamble_cost,
            history_cost=running - preamble_cost,
            dropped=len(history) - len(accepted),
        )

    def _cost(self, turn: Turn) -> int:
        if turn.estimated_cost is not None:
            return turn.estimated_cost
        try:
            cost = self._tokenizer.estimate(turn, self._model_id)
        except CostEstimationError:
            raise
        except Exception as e:
            raise CostEstimationError(code="TOKENIZER_ERROR", message=str(e), model=self._model_id) from e
        if cost < 0:
            raise CostEstimationError(
                code="TOKENIZER_ERROR",
                message=f"Tokenizer returned a negative cost ({cost})",
                model=self._model_id,
            )
        return cost
