from dataclasses import dataclass, field
from typing import List, Protocol
from datetime import datetime, timezone

from .models import Turn


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


@dataclass
class ConversationRecord:
    id: str
    history: List[Turn] = field(default_factory=list)
    created_at: datetime = field(default_factory=_utcnow)
    updated_at: datetime = field(default_factory=_utcnow)


class ConversationStore(Protocol):
    def append(self, conversation_id: str, turn: Turn) -> None:
        ...

    def snapshot(self, conversation_id: str) -> List[Turn]:
        ...

    def clear(self, conversation_id: str) -> None:
        ...

    def conversation_ids(self) -> List[str]:
        ...
