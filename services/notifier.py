from __future__ import annotations

import asyncio
import contextlib
from dataclasses import dataclass
from typing import Optional

from loguru import logger

from engine.state import SignalRecord


@dataclass
class Alert:
    chat_id: str
    text: str


def format_record(record: SignalRecord) -> str:
    head = f"{record.action or 'ENTRY'} {record.symbol or '-'} {record.side or '-'}: {record.status}"
    if record.detail:
        return f"{head}\n{record.detail}"
    return head


class Notifier:
    """Queues Telegram alerts so a slow Bot API never delays order handling."""

    def __init__(self, chat_id: str = "") -> None:
        self.chat_id = chat_id
        self.pending: asyncio.Queue[Alert] = asyncio.Queue()
        self._worker: Optional[asyncio.Task] = None

    @property
    def enabled(self) -> bool:
        return bool(self.chat_id)

    async def start(self, bot) -> None:
        if self._worker and not self._worker.done():
            return
        self._worker = asyncio.create_task(self._deliver(bot))

    async def stop(self) -> None:
        if not self._worker:
            return
        self._worker.cancel()
        with contextlib.suppress(asyncio.CancelledError):
            await self._worker
        self._worker = None

    async def _deliver(self, bot) -> None:
        while True:
            alert = await self.pending.get()
            try:
                await bot.send_message(alert.chat_id, alert.text)
            except Exception as exc:
                logger.warning("Telegram alert to {} not delivered: {}", alert.chat_id, exc)
            finally:
                self.pending.task_done()

    async def send(self, text: str) -> None:
        if not self.enabled:
            return
        await self.pending.put(Alert(chat_id=self.chat_id, text=text))

    async def notify_record(self, record: SignalRecord) -> None:
        await self.send(format_record(record))
