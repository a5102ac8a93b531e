from __future__ import annotations

import base64

from cryptography.fernet import Fernet, InvalidToken

from services.config_service import BotSettings


def build_fernet(key: str | None) -> Fernet | None:
    if not key:
        return None
    raw = key.encode("utf-8")
    if len(raw) == 32:
        raw = base64.urlsafe_b64encode(raw)
    return Fernet(raw)


def encrypt(fernet: Fernet | None, payload: str) -> str:
    if not fernet:
        return payload
    return fernet.encrypt(payload.encode("utf-8")).decode("utf-8")


def decrypt(fernet: Fernet | None, payload: str) -> str:
    if not fernet:
        return payload
    return fernet.decrypt(payload.encode("utf-8")).decode("utf-8")


def resolve_api_secret(settings: BotSettings) -> str:
    """Return the BingX secret, decrypting it when an encryption key is configured."""
    fernet = build_fernet(settings.CREDENTIAL_ENCRYPTION_KEY)
    if not fernet or not settings.BINGX_API_SECRET:
        return settings.BINGX_API_SECRET
    try:
        return decrypt(fernet, settings.BINGX_API_SECRET)
    except InvalidToken as exc:
        raise ValueError("BINGX_API_SECRET is not a valid token for CREDENTIAL_ENCRYPTION_KEY") from exc
