from __future__ import annotations

from typing import Any

from engine.state import SignalRecord


def accepted_payload() -> dict[str, Any]:
    return {"accepted": True, "message": "Signal queued"}


def status_payload(mode: str, balance: float, records: list[SignalRecord], webhook_url: str) -> dict[str, Any]:
    return {
        "mode": mode,
        "exchange": "BingX",
        "balance": {"asset": "USDT", "amount": balance},
        "webhook_url": webhook_url,
        "signals": [r.to_dict() for r in records],
    }
