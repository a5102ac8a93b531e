from __future__ import annotations

import json
import re
from typing import Any, Mapping

import httpx
from loguru import logger

from adapters.base import ExchangeClient
from adapters.signer import RequestSigner


DEFAULT_HOST = "open-api.bingx.com"

# BingX order ids are 19-digit integers; json.loads would keep them exact but
# anything downstream that goes through float (or JS) would not.
_ORDER_ID_FIELD = re.compile(r'"(\w*[oO]rderId)"\s*:\s*(-?\d{16,})')


def quote_order_ids(text: str) -> str:
    return _ORDER_ID_FIELD.sub(r'"\1":"\2"', text)


def decode_response(text: str) -> dict[str, Any]:
    try:
        data = json.loads(quote_order_ids(text))
    except json.JSONDecodeError as exc:
        return {"code": -1, "msg": f"Invalid JSON from exchange: {exc}"}
    if isinstance(data, dict):
        return data
    return {"code": 0, "data": data}


class BingXClient(ExchangeClient):
    def __init__(
        self,
        api_key: str = "",
        api_secret: str = "",
        host: str = DEFAULT_HOST,
        timeout: float = 8.0,
        max_connections: int = 50,
        max_keepalive: int = 25,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        self.api_key = api_key
        self.host = host
        self.signer = RequestSigner(api_secret)
        headers = {"X-BX-APIKEY": api_key} if api_key else {}
        self._http = httpx.AsyncClient(
            base_url=f"https://{host}",
            headers=headers,
            timeout=timeout,
            limits=httpx.Limits(
                max_connections=max_connections,
                max_keepalive_connections=max_keepalive,
                keepalive_expiry=4.0,
            ),
            transport=transport,
        )

    async def send(self, method: str, path: str, payload: Mapping[str, Any] | None = None) -> dict[str, Any]:
        query = self.signer.signed_query(payload or {})
        url = f"{path}?{query}"
        try:
            resp = await self._http.request(method.upper(), url)
        except httpx.HTTPError as exc:
            logger.warning("BingX {} {} transport error: {}", method, path, exc)
            return {"code": -1, "msg": str(exc) or exc.__class__.__name__}
        if not resp.is_success:
            logger.warning("BingX {} {} returned HTTP {}", method, path, resp.status_code)
            return {"code": -1, "msg": f"HTTP {resp.status_code}: {resp.text[:200]}"}
        return decode_response(resp.text)

    async def close(self) -> None:
        await self._http.aclose()
