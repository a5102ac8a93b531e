from __future__ import annotations

import hashlib
import hmac
import time
from typing import Any, Mapping
from urllib.parse import quote


def _render(value: Any) -> str:
    if isinstance(value, bool):
        return "true" if value else "false"
    return str(value)


def build_params(payload: Mapping[str, Any], timestamp: int) -> str:
    parts = [f"{key}={_render(value)}" for key, value in payload.items()]
    parts.append(f"timestamp={timestamp}")
    return "&".join(parts)


def build_query_string(payload: Mapping[str, Any], timestamp: int) -> str:
    parts = [f"{key}={quote(_render(value), safe='')}" for key, value in payload.items()]
    parts.append(f"timestamp={timestamp}")
    return "&".join(parts)


def sign(raw: str, secret: str) -> str:
    return hmac.new(secret.encode("utf-8"), raw.encode("utf-8"), hashlib.sha256).hexdigest()


class RequestSigner:
    """Signs BingX requests.

    Keys keep their insertion order: the exchange verifies the signature
    against the exact byte sequence it receives, so nothing is sorted here.
    """

    def __init__(self, secret: str) -> None:
        self._secret = secret

    def signature(self, payload: Mapping[str, Any], timestamp: int) -> str:
        return sign(build_params(payload, timestamp), self._secret)

    def signed_query(self, payload: Mapping[str, Any], timestamp: int | None = None) -> str:
        ts = timestamp if timestamp is not None else int(time.time() * 1000)
        return f"{build_query_string(payload, ts)}&signature={self.signature(payload, ts)}"
