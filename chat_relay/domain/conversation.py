from typing import Iterator, List, Optional, Tuple

from .models import Message


class Conversation:
    """进程内的会话：按因果顺序排列的消息列表。

    只有 GenerationOrchestrator（以及外部显式的 clear）会写入。
    epoch 在每次 clear 时递增，用来识别已被清空的会话上迟到的流式事件。
    """

    def __init__(self) -> None:
        self._messages: List[Message] = []
        self._epoch = 0

    @property
    def epoch(self) -> int:
        return self._epoch

    @property
    def messages(self) -> Tuple[Message, ...]:
        return tuple(self._messages)

    def __len__(self) -> int:
        return len(self._messages)

    def __iter__(self) -> Iterator[Message]:
        return iter(list(self._messages))

    def append(self, message: Message) -> Message:
        self._messages.append(message)
        return message

    def last(self) -> Optional[Message]:
        return self._messages[-1] if self._messages else None

    def get(self, message_id: str) -> Optional[Message]:
        for m in self._messages:
            if m.id == message_id:
                return m
        return None

    def snapshot(self) -> Tuple[Message, ...]:
        return tuple(m.snapshot() for m in self._messages)

    def clear(self) -> None:
        self._messages = []
        self._epoch += 1
