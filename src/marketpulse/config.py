from __future__ import annotations

import os
from dataclasses import dataclass, field
from pathlib import Path

from dotenv import load_dotenv


def _flag(name: str, default: str = "") -> bool:
    return os.environ.get(name, default).lower() in ("1", "true", "yes")


@dataclass(frozen=True)
class VerificationPolicy:
    """Thresholds used when closing out pending predictions.

    neutral_band_pct is the move (in percent) a price must exceed to count as
    directional. A neutral call is still accurate within neutral_band_pct +
    neutral_slack_pct, and a directional call is accurate once the move in its
    direction exceeds directional_leniency_pct.
    """

    staleness_hours: float = 12.0
    neutral_band_pct: float = 1.5
    neutral_slack_pct: float = 0.5
    directional_leniency_pct: float = 0.5
    batch_limit: int = 100
    group_delay_seconds: float = 2.0

    @property
    def neutral_tolerance_pct(self) -> float:
        return self.neutral_band_pct + self.neutral_slack_pct


@dataclass(frozen=True)
class AppConfig:
    db_dsn: str
    alpha_vantage_key: str = ""
    openai_api_key: str = ""
    anthropic_api_key: str = ""
    groq_api_key: str = ""
    deepseek_api_key: str = ""
    llm_provider: str = ""
    use_llm_scorer: bool = True
    sentiment_window_days: int = 30
    quote_timeout_seconds: float = 8.0
    rate_limit_requests: int = 50
    rate_limit_window_seconds: float = 60.0
    verify_interval_minutes: int = 0
    verification: VerificationPolicy = field(default_factory=VerificationPolicy)


def load_config() -> AppConfig:
    """Load application config from environment variables.

    Loads .env file if present in the current directory.
    """
    env_path = Path(".env")
    if env_path.exists():
        load_dotenv(env_path)

    policy = VerificationPolicy(
        staleness_hours=float(os.environ.get("VERIFY_STALENESS_HOURS", "12")),
        neutral_band_pct=float(os.environ.get("NEUTRAL_BAND_PCT", "1.5")),
        directional_leniency_pct=float(os.environ.get("DIRECTIONAL_LENIENCY_PCT", "0.5")),
        batch_limit=int(os.environ.get("VERIFY_BATCH_LIMIT", "100")),
        group_delay_seconds=float(os.environ.get("VERIFY_GROUP_DELAY_SECONDS", "2")),
    )

    return AppConfig(
        db_dsn=os.environ.get("DATABASE_URL", ""),
        alpha_vantage_key=os.environ.get("ALPHA_VANTAGE_KEY", ""),
        openai_api_key=os.environ.get("OPENAI_API_KEY", ""),
        anthropic_api_key=os.environ.get("ANTHROPIC_API_KEY", ""),
        groq_api_key=os.environ.get("GROQ_API_KEY", ""),
        deepseek_api_key=os.environ.get("DEEPSEEK_API_KEY", ""),
        llm_provider=os.environ.get("LLM_PROVIDER", ""),
        use_llm_scorer=_flag("USE_LLM_SCORER", "true"),
        sentiment_window_days=int(os.environ.get("SENTIMENT_WINDOW_DAYS", "30")),
        quote_timeout_seconds=float(os.environ.get("QUOTE_TIMEOUT_SECONDS", "8")),
        rate_limit_requests=int(os.environ.get("RATE_LIMIT_REQUESTS", "50")),
        rate_limit_window_seconds=float(os.environ.get("RATE_LIMIT_WINDOW_SECONDS", "60")),
        verify_interval_minutes=int(os.environ.get("VERIFY_INTERVAL_MINUTES", "0")),
        verification=policy,
    )
