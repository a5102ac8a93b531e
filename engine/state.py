from __future__ import annotations

import time
from collections import deque
from dataclasses import asdict, dataclass, field
from typing import Any


@dataclass
class SignalRecord:
    symbol: str | None
    side: str | None
    action: str | None
    status: str
    trading_executed: bool
    detail: str | None = None
    strategy: str | None = None
    result: dict[str, Any] | None = None
    received_at: int = field(default_factory=lambda: int(time.time() * 1000))

    def to_dict(self) -> dict[str, Any]:
        return asdict(self)


class SignalHistory:
    def __init__(self, maxlen: int = 50) -> None:
        self._records: deque[SignalRecord] = deque(maxlen=maxlen)

    def append(self, record: SignalRecord) -> None:
        self._records.append(record)

    def recent(self, limit: int = 5) -> list[SignalRecord]:
        if limit <= 0:
            return []
        return list(reversed(self._records))[:limit]

    def __len__(self) -> int:
        return len(self._records)
