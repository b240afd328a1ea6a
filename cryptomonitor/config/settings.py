from typing import List, Literal, Optional

from pydantic import Field, ValidationError, field_validator, model_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

from cryptomonitor.core.errors import ConfigError


def _split(value: str) -> List[str]:
    return [item.strip() for item in value.split(",") if item.strip()]


class Settings(BaseSettings):
    model_config = SettingsConfigDict(env_file=".env", case_sensitive=False, extra="ignore")

    # Chain node
    rpc_url: str = Field(..., description="JSON-RPC endpoint URL; comma-separated for fallbacks")
    poll_interval_seconds: float = Field(4.0, description="Seconds between chain head polls")
    rpc_timeout_seconds: Optional[float] = Field(None, description="Per-request timeout, unbounded when unset")
    rpc_rate_limit: Optional[float] = Field(None, description="Requests per second per endpoint")
    fetch_concurrency: int = Field(8, description="Concurrent transaction fetches per block")

    # Watch list
    watch_address: str = Field(..., description="Comma-separated addresses to watch")

    # Chain units
    native_decimals: int = Field(18, description="Decimals of the native currency")
    native_symbol: str = Field("ETH", description="Symbol of the native currency")

    # Notifications
    notification_type: Literal["console", "discord"] = Field("console", description="Notification sink")
    discord_webhook_url: Optional[str] = Field(None, description="Discord webhook URL for alerts")
    show_empty_blocks: bool = Field(False, description="Print a summary for blocks without matches")
    console_plain: bool = Field(False, description="Print console alerts as plain text instead of panels")

    # Logging
    log_level: str = Field("INFO", description="Logging level")
    log_format: str = Field("plain", description="Log format (json or plain)")

    @field_validator("poll_interval_seconds")
    @classmethod
    def validate_poll_interval(cls, v):
        if v <= 0:
            raise ValueError("Poll interval must be positive")
        return v

    @field_validator("fetch_concurrency")
    @classmethod
    def validate_fetch_concurrency(cls, v):
        if v < 1:
            raise ValueError("Fetch concurrency must be at least 1")
        return v

    @field_validator("native_decimals")
    @classmethod
    def validate_decimals(cls, v):
        if v < 0:
            raise ValueError("Decimals must be non-negative")
        return v

    @field_validator("discord_webhook_url")
    @classmethod
    def validate_discord_webhook(cls, v):
        if v and not v.startswith("https://discord.com/api/webhooks/"):
            raise ValueError("Invalid Discord webhook URL format")
        return v

    @field_validator("log_format")
    @classmethod
    def validate_log_format(cls, v):
        if v not in ("json", "plain"):
            raise ValueError("Log format must be 'json' or 'plain'")
        return v

    @model_validator(mode="after")
    def validate_notification_target(self):
        if self.notification_type == "discord" and not self.discord_webhook_url:
            raise ValueError("DISCORD_WEBHOOK_URL is required when NOTIFICATION_TYPE=discord")
        if not self.rpc_urls:
            raise ValueError("RPC_URL is empty")
        return self

    @property
    def rpc_urls(self) -> List[str]:
        return _split(self.rpc_url)

    @property
    def watch_addresses(self) -> List[str]:
        return _split(self.watch_address)

    def masked_rpc_url(self, url: Optional[str] = None) -> str:
        """Shorten an RPC URL so embedded API keys are not printed"""
        url = url or self.rpc_urls[0]
        if len(url) > 50:
            return f"{url[:45]}...{url[-8:]}"
        return url


def load_settings(**overrides) -> Settings:
    """Build settings from the environment, reporting problems as ConfigError"""
    try:
        return Settings(**overrides)
    except ValidationError as e:
        problems = "; ".join(
            f"{'.'.join(str(p) for p in err['loc']) or 'settings'}: {err['msg']}"
            for err in e.errors()
        )
        raise ConfigError(f"Invalid configuration - {problems}") from e
