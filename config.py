"""
Configuration loaded from environment variables. Fail-fast on invalid values.
"""

from pydantic import Field, model_validator
from pydantic_settings import BaseSettings


class Config(BaseSettings):
    model_config = {"env_file": ".env", "env_file_encoding": "utf-8", "frozen": True, "extra": "ignore"}

    # Credentials (required for live trading, optional for dry-run)
    private_key: str = Field(default="", description="Polygon wallet private key (hex)")
    polymarket_profile_address: str = Field(default="", description="Polymarket proxy/funder address")
    signature_type: int = Field(default=1, ge=0, le=2)

    # API endpoints
    clob_host: str = "https://clob.polymarket.com"
    gamma_host: str = "https://gamma-api.polymarket.com"
    ws_market_url: str = "wss://ws-subscriptions-clob.polymarket.com/ws/market"
    chain_id: int = 137  # Polygon mainnet

    # Discovery
    updown_assets: list[str] = Field(default_factory=lambda: ["btc", "eth", "sol", "xrp"])
    window_sec: int = Field(default=900, gt=0)
    # Windows scanned by the continuous scanner (1 = current window only)
    lookahead_intervals: int = Field(default=1, ge=1)
    # Start tracking the next window this long before the current one closes
    preload_buffer_sec: float = Field(default=60.0, ge=0)
    expiry_grace_sec: float = Field(default=5.0, ge=0)
    scan_interval_sec: float = Field(default=30.0, gt=0)
    discovery_retry_sec: float = Field(default=10.0, gt=0)
    catalog_timeout_sec: float = Field(default=5.0, gt=0)

    # Trading
    # YES + NO must sum below this to trigger (0.995 = 99.5c)
    arb_threshold: float = Field(default=0.995, gt=0, lt=1.0)
    min_trade_size: float = Field(default=1.0, gt=0)
    max_trade_size: float = Field(default=50.0, gt=0)
    unmatched_tolerance: float = Field(default=0.5, ge=0)
    tick_size: str = "0.01"

    # Feed
    ws_ping_interval_sec: float = Field(default=30.0, gt=0)
    ws_stale_after_sec: float = Field(default=120.0, gt=0)
    ws_reconnect_delay_sec: float = Field(default=5.0, ge=0)
    ws_idle_wait_sec: float = Field(default=10.0, gt=0)
    status_interval_sec: float = Field(default=60.0, gt=0)

    # Modes
    dry_run: bool = True
    log_level: str = "INFO"
    log_dir: str = "logs"

    # Position ledger (append-only JSON lines)
    positions_file: str = "positions_updown.jsonl"

    @model_validator(mode="after")
    def _check_size_band(self) -> "Config":
        if self.min_trade_size > self.max_trade_size:
            raise ValueError(
                f"min_trade_size ({self.min_trade_size}) exceeds max_trade_size ({self.max_trade_size})"
            )
        return self

    @property
    def has_credentials(self) -> bool:
        return bool(self.private_key and self.polymarket_profile_address)


def load_config() -> Config:
    """Load and validate config from environment. Raises on invalid fields."""
    return Config()
