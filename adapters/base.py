from __future__ import annotations

from abc import ABC, abstractmethod
from typing import Any, Mapping


class ExchangeClient(ABC):
    @abstractmethod
    async def send(self, method: str, path: str, payload: Mapping[str, Any] | None = None) -> dict[str, Any]:
        """Return the decoded exchange payload, or ``{"code": -1, "msg": ...}`` on failure."""
        raise NotImplementedError

    async def close(self) -> None:
        return None
