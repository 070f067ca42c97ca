"""进程内的会话存储。

每个会话 ID 对应一条 ConversationRecord，首次访问时惰性创建，
只能通过 append / snapshot / clear 修改或读取，调用方拿到的永远是副本。

并发：每个会话一把锁，锁表本身由一把短暂持有的注册锁保护。
临界区内只做内存操作，不会 await，也不会发起网络调用，
因此同一把锁既适用于多线程，也适用于同一事件循环中的多个 asyncio 任务。
历史不设上限，进程重启后丢失。
"""

import threading
from datetime import datetime, timezone
from typing import Dict, List

from chat_core.domain.conversation import ConversationRecord, ConversationStore
from chat_core.domain.models import Turn


class InMemoryConversationStore(ConversationStore):
    def __init__(self):
        self._records: Dict[str, ConversationRecord] = {}
        self._locks: Dict[str, threading.Lock] = {}
        self._registry_lock = threading.Lock()

    def append(self, conversation_id: str, turn: Turn) -> None:
        with self._lock_for(conversation_id):
            record = self._record_for(conversation_id)
            record.history.append(turn)
            record.updated_at = datetime.now(timezone.utc)

    def snapshot(self, conversation_id: str) -> List[Turn]:
        with self._lock_for(conversation_id):
            return list(self._record_for(conversation_id).history)

    def clear(self, conversation_id: str) -> None:
        with self._lock_for(conversation_id):
            record = self._record_for(conversation_id)
            record.history.clear()
            record.updated_at = datetime.now(timezone.utc)

    def conversation_ids(self) -> List[str]:
        with self._registry_lock:
            return list(self._records)

    def _lock_for(self, conversation_id: str) -> threading.Lock:
        with self._registry_lock:
            lock = self._locks.get(conversation_id)
            if lock is None:
                lock = threading.Lock()
                self._locks[conversation_id] = lock
            return lock

    def _record_for(self, conversation_id: str) -> ConversationRecord:
        # 调用方必须已持有该会话的锁
        with self._registry_lock:
            record = self._records.get(conversation_id)
            if record is None:
                record = ConversationRecord(id=conversation_id)
                self._records[conversation_id] = record
            return record
