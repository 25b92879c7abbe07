import os
from dataclasses import dataclass, field
from pathlib import Path
from typing import List, Optional


class ConfigError(Exception):
    """Raised at startup when the configuration cannot support a run."""


def _env_float_opt(name: str) -> Optional[float]:
    """
    Read an optional float from env. Returns None if unset, blank, or non-numeric.
    """
    raw = os.getenv(name)
    if raw is None:
        return None
    raw = raw.strip()
    if raw == "" or raw.lower() in {"none", "null"} or raw.startswith("#"):
        return None
    try:
        return float(raw)
    except ValueError:
        return None


def _env_float(name: str, default: float) -> float:
    val = _env_float_opt(name)
    return default if val is None else val


def _env_int(name: str, default: int) -> int:
    val = _env_float_opt(name)
    return default if val is None else int(val)


def _b(name: str, default: bool) -> bool:
    return os.getenv(name, str(default)).strip().lower() in {
        "1",
        "true",
        "yes",
        "y",
        "on",
    }


def _csv(name: str, default: str) -> List[str]:
    raw = os.getenv(name, default) or ""
    return [p.strip().upper() for p in raw.split(",") if p.strip()]


def _max_cap_default() -> Optional[float]:
    # Unset means the OTC micro-cap ceiling; an explicit "none" disables it.
    if os.getenv("MAX_MARKET_CAP") is None:
        return 100_000_000.0
    return _env_float_opt("MAX_MARKET_CAP")


@dataclass
class Settings:
    # --- Pipeline gating ---
    # Minimum materiality score an item needs before it is handed to the
    # per-item pipeline.  Items below the threshold are counted and dropped.
    alert_threshold: float = _env_float("ALERT_THRESHOLD", 0.72)

    # Upper bound on simultaneously active per-item pipelines in a cycle.
    concurrency: int = _env_int("NEON_CONCURRENCY", 4)

    # Seconds between polling cycles (never below 5).
    poll_news_seconds: int = max(5, _env_int("POLL_NEWS_SECONDS", 15))

    # --- Storage / logging ---
    db_path: Path = Path(os.getenv("DB_PATH", "data/events.db"))
    data_dir: Path = Path(os.getenv("DATA_DIR", "data"))
    log_level: str = os.getenv("LOG_LEVEL", "INFO")
    log_plain: bool = _b("LOG_PLAIN", False)
    ledger_cache_size: int = _env_int("LEDGER_CACHE_SIZE", 2048)

    # --- Enrichment (remote reasoning service) ---
    feature_enrichment: bool = _b("FEATURE_ENRICHMENT", False)
    llm_endpoint_url: str = os.getenv(
        "LLM_ENDPOINT_URL", "https://api.openai.com/v1/responses"
    )
    # LLM_API_KEY is preferred; OPENAI_API_KEY kept for older deployments.
    llm_api_key: str = os.getenv("LLM_API_KEY") or os.getenv("OPENAI_API_KEY") or ""
    llm_model_name: str = os.getenv("LLM_MODEL_NAME", "gpt-5")
    llm_timeout_secs: float = _env_float("LLM_TIMEOUT_SECS", 20.0)
    llm_max_retries: int = _env_int("LLM_MAX_RETRIES", 1)
    llm_retry_delay: float = _env_float("LLM_RETRY_DELAY", 2.0)

    # Subjects below this cap get their move estimate raised to a
    # deterministic floor (see enrichment.calibrate_move).
    calibration_cap_usd: float = _env_float("CALIBRATION_CAP_USD", 50_000_000.0)

    # Context note only: moves under this p90 are flagged in the embed.
    move_alert_threshold_pct: float = _env_float("MOVE_ALERT_THRESHOLD_PCT", 40.0)

    # --- Alert sink ---
    # "discord" posts to the webhook; "log" records alerts without posting.
    alert_sink: str = os.getenv("ALERT_SINK", "discord").strip().lower()
    discord_webhook_url: str = (
        os.getenv("DISCORD_WEBHOOK_URL") or os.getenv("DISCORD_WEBHOOK") or ""
    ).strip()
    discord_add_buttons: bool = _b("DISCORD_ADD_BUTTONS", True)

    # --- Eligibility filters ---
    min_market_cap: Optional[float] = _env_float_opt("MIN_MARKET_CAP")
    max_market_cap: Optional[float] = _max_cap_default()
    include_unknown_mkt_cap: bool = _b("INCLUDE_UNKNOWN_MKT_CAP", False)
    allowed_exchanges: List[str] = field(
        default_factory=lambda: _csv("ALLOWED_EXCHANGES", "OTC")
    )

    # --- In-cycle near-duplicate collapse ---
    feature_near_dup_collapse: bool = _b("FEATURE_NEAR_DUP_COLLAPSE", True)
    near_dup_threshold: float = _env_float("NEAR_DUP_THRESHOLD", 0.9)


SETTINGS = Settings()


def get_settings() -> Settings:
    return SETTINGS


def validate_settings(settings: Settings) -> None:
    """Fail fast on configuration that cannot support a polling run.

    Called once before the loop begins.  Everything else is recovered
    locally at runtime, so anything raised here is fatal.
    """
    problems: List[str] = []
    if int(settings.concurrency) < 1:
        problems.append("NEON_CONCURRENCY must be >= 1")
    if not 0.0 <= float(settings.alert_threshold) <= 1.0:
        problems.append("ALERT_THRESHOLD must be within [0, 1]")
    if not 0 <= int(settings.llm_max_retries) <= 1:
        problems.append("LLM_MAX_RETRIES must be 0 or 1")
    if str(settings.db_path) == ":memory:":
        problems.append("DB_PATH=:memory: is not shared across worker threads")
    if settings.feature_enrichment:
        if not settings.llm_endpoint_url:
            problems.append("FEATURE_ENRICHMENT=1 requires LLM_ENDPOINT_URL")
        if not settings.llm_api_key:
            problems.append("FEATURE_ENRICHMENT=1 requires LLM_API_KEY")
    if settings.alert_sink not in {"discord", "log"}:
        problems.append(f"unknown ALERT_SINK={settings.alert_sink!r}")
    elif settings.alert_sink == "discord" and not settings.discord_webhook_url:
        problems.append("ALERT_SINK=discord requires DISCORD_WEBHOOK_URL")
    if (
        settings.min_market_cap is not None
        and settings.max_market_cap is not None
        and settings.min_market_cap > settings.max_market_cap
    ):
        problems.append("MIN_MARKET_CAP exceeds MAX_MARKET_CAP")
    if problems:
        raise ConfigError("; ".join(problems))
