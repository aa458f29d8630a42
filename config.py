"""
Configuration loaded from environment variables. Fail-fast on invalid values.
"""

from pydantic_settings import BaseSettings
from pydantic import Field, field_validator


class Config(BaseSettings):
    model_config = {"env_file": ".env", "env_file_encoding": "utf-8", "frozen": True, "extra": "ignore"}

    # Market data (Dome serves both Polymarket and Kalshi)
    dome_api_host: str = "https://api.domeapi.io/v1"
    dome_api_key: str = Field(default="", description="Dome API bearer key")

    # Fetching
    max_markets_per_platform: int = Field(default=500, ge=1)
    request_timeout_sec: float = Field(default=15.0, gt=0)
    # Per-orderbook fetch deadline; a slow book fails alone, not the cycle
    orderbook_timeout_sec: float = Field(default=5.0, gt=0)
    orderbook_workers: int = Field(default=5, ge=1, le=32)

    # Timing
    scan_interval_sec: float = Field(default=30.0, gt=0)

    # Matching
    min_similarity: float = Field(default=60.0, ge=0, le=100)
    match_scorer: str = "fuzzy"  # fuzzy | weighted
    top_matches_cap: int = Field(default=10, ge=0)
    debug_title_samples: int = Field(default=5, ge=0)

    # Opportunities
    min_spread_pct: float = Field(default=1.0, ge=0)
    fee_pct_per_platform: float = Field(default=1.0, ge=0)
    result_limit: int = Field(default=50, ge=1)

    # Alerts + API
    alerts_db: str = ""  # empty = report/data/alerts.db
    server_host: str = "0.0.0.0"
    server_port: int = Field(default=8787, ge=1, le=65535)

    log_level: str = "INFO"

    @field_validator("match_scorer")
    @classmethod
    def _known_scorer(cls, v: str) -> str:
        v = v.strip().lower()
        if v not in ("fuzzy", "weighted"):
            raise ValueError(f"match_scorer must be 'fuzzy' or 'weighted', got {v!r}")
        return v


def load_config() -> Config:
    """Load and validate config from environment. Raises on invalid fields."""
    return Config()
