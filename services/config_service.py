from __future__ import annotations

from pydantic import BaseModel
from pydantic_settings import BaseSettings, SettingsConfigDict


class BotSettings(BaseSettings):
    model_config = SettingsConfigDict(env_file=".env", extra="ignore")

    MODE: str = "paper"
    BINGX_API_KEY: str = ""
    BINGX_API_SECRET: str = ""
    BINGX_HOST: str = "open-api.bingx.com"
    CREDENTIAL_ENCRYPTION_KEY: str = ""
    WEBHOOK_SECRET: str = ""
    HOST: str = "0.0.0.0"
    PORT: int = 3000
    DEFAULT_LEVERAGE: float = 5
    DEFAULT_USDT_AMOUNT: float = 10
    SETTLEMENT_DELAY: float = 1.5
    SETTLEMENT_POLL_INTERVAL: float = 1.5
    SETTLEMENT_MAX_ATTEMPTS: int = 10
    HTTP_TIMEOUT: float = 8.0
    HTTP_MAX_CONNECTIONS: int = 50
    HTTP_MAX_KEEPALIVE: int = 25
    DEDUP_TTL: float = 5.0
    HISTORY_SIZE: int = 50
    PAPER_BALANCE: float = 1000.0
    TELEGRAM_BOT_TOKEN: str = ""
    TELEGRAM_CHAT_ID: str = ""


class RuntimeConfig(BaseModel):
    default_leverage: float = 5
    default_usdt_amount: float = 10
    settlement_delay: float = 1.5
    poll_interval: float = 1.5
    max_poll_attempts: int = 10


class ConfigService:
    def __init__(self, base: BotSettings) -> None:
        self.base = base

    def load(self) -> RuntimeConfig:
        return RuntimeConfig(
            default_leverage=self.base.DEFAULT_LEVERAGE,
            default_usdt_amount=self.base.DEFAULT_USDT_AMOUNT,
            settlement_delay=self.base.SETTLEMENT_DELAY,
            poll_interval=self.base.SETTLEMENT_POLL_INTERVAL,
            max_poll_attempts=self.base.SETTLEMENT_MAX_ATTEMPTS,
        )
