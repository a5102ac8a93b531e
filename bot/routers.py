from __future__ import annotations

import json

from fastapi import APIRouter, BackgroundTasks, Request
from fastapi.responses import JSONResponse

from bot import messages
from services.orchestrator import SignalProcessor


def build_router(processor: SignalProcessor) -> APIRouter:
    router = APIRouter()

    @router.post("/webhook", status_code=202)
    async def webhook(request: Request, background_tasks: BackgroundTasks) -> JSONResponse:
        try:
            body = await request.json()
        except json.JSONDecodeError:
            return JSONResponse({"accepted": False, "error": "Body must be JSON"}, status_code=400)
        if not isinstance(body, dict):
            return JSONResponse({"accepted": False, "error": "Body must be a JSON object"}, status_code=400)
        background_tasks.add_task(processor.handle, body)
        return JSONResponse(messages.accepted_payload(), status_code=202)

    @router.get("/api/status")
    async def status(request: Request, limit: int = 5) -> dict:
        balance = await processor.balance()
        return messages.status_payload(
            mode=processor.settings.MODE,
            balance=balance,
            records=processor.history.recent(limit),
            webhook_url=str(request.url_for("webhook")),
        )

    @router.post("/api/refresh-balance")
    async def refresh_balance() -> dict:
        return {"asset": "USDT", "amount": await processor.balance()}

    @router.get("/api/test-bingx")
    async def test_bingx() -> JSONResponse:
        status = await processor.exchange_status()
        return JSONResponse(status, status_code=200 if status["connected"] else 502)

    @router.post("/api/close")
    async def close_position(symbol: str) -> JSONResponse:
        record = await processor.close_position(symbol)
        return JSONResponse(
            {"success": record.trading_executed, "status": record.status, "detail": record.detail},
            status_code=200 if record.trading_executed else 502,
        )

    @router.get("/health")
    async def health() -> dict:
        return {"status": "ok", "signals": len(processor.history)}

    return router
