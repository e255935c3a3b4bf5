"""Configuration management from environment variables."""
import os
from pathlib import Path
from dotenv import load_dotenv

# Load .env file
load_dotenv()

# Project root
PROJECT_ROOT = Path(__file__).parent.parent
DATA_DIR = Path(os.getenv("DATA_DIR", str(PROJECT_ROOT / "data")))
DEFAULT_DB_PATH = DATA_DIR / "traffic.db"
METRICS_FILE = DATA_DIR / "metrics.jsonl"

# Ensure directories exist
DATA_DIR.mkdir(parents=True, exist_ok=True)


class Config:
    """Application configuration."""

    # Upstream (traffic.cv bulk checker)
    UPSTREAM_BASE_URL: str = os.getenv("UPSTREAM_BASE_URL", "https://traffic.cv")
    USER_AGENT: str = os.getenv(
        "USER_AGENT",
        "Mozilla/5.0 (Macintosh; Intel Mac OS X 10_15_7) AppleWebKit/537.36 "
        "(KHTML, like Gecko) Chrome/120.0.0.0 Safari/537.36",
    )
    HEADLESS: bool = os.getenv("HEADLESS", "true").lower() not in ("0", "false", "no")

    # Storage
    DATABASE_PATH: Path = Path(os.getenv("DATABASE_PATH", str(DEFAULT_DB_PATH)))

    # Batching
    GROUP_SIZE: int = int(os.getenv("GROUP_SIZE", "10"))
    PARALLEL_GROUPS: int = int(os.getenv("PARALLEL_GROUPS", "5"))
    GROUP_DELAY: float = float(os.getenv("GROUP_DELAY", "2.0"))
    GROUP_TIMEOUT: float = float(os.getenv("GROUP_TIMEOUT", "120"))
    RATE_PER_DOMAIN: float = float(os.getenv("RATE_PER_DOMAIN", "1.0"))

    # Page readiness (seconds)
    NAV_TIMEOUT: float = float(os.getenv("NAV_TIMEOUT", "30"))
    NETWORK_IDLE_TIMEOUT: float = float(os.getenv("NETWORK_IDLE_TIMEOUT", "10"))
    READY_SELECTOR_TIMEOUT: float = float(os.getenv("READY_SELECTOR_TIMEOUT", "3"))
    SETTLE_DELAY_READY: float = float(os.getenv("SETTLE_DELAY_READY", "3"))
    SETTLE_DELAY_FALLBACK: float = float(os.getenv("SETTLE_DELAY_FALLBACK", "5"))
    CONTENT_VERIFY_TIMEOUT: float = float(os.getenv("CONTENT_VERIFY_TIMEOUT", "5"))
    HISTORY_TIMEOUT: float = float(os.getenv("HISTORY_TIMEOUT", "2"))

    # Cache / freshness
    CACHE_TTL_DAYS: int = int(os.getenv("CACHE_TTL_DAYS", "30"))
    # Upstream publishes monthly figures around the 10th, +2 days buffer
    UPDATE_CUTOFF_DAY: int = int(os.getenv("UPDATE_CUTOFF_DAY", "12"))
    MAX_DAILY_FAILURES: int = int(os.getenv("MAX_DAILY_FAILURES", "3"))
    RETENTION_MONTHS: int = int(os.getenv("RETENTION_MONTHS", "24"))

    # Retries (separate retry pass only)
    RETRY_ATTEMPTS: int = int(os.getenv("RETRY_ATTEMPTS", "3"))

    # Logging
    LOG_LEVEL: str = os.getenv("LOG_LEVEL", "INFO")

    # API Security
    API_KEY: str | None = os.getenv("API_KEY")

    @classmethod
    def validate(cls) -> None:
        """Validate configuration values."""
        errors = []
        if not 1 <= cls.GROUP_SIZE <= 10:
            errors.append("GROUP_SIZE must be between 1 and 10 (upstream limit)")
        if cls.PARALLEL_GROUPS < 1:
            errors.append("PARALLEL_GROUPS must be >= 1")
        if cls.GROUP_DELAY < 0:
            errors.append("GROUP_DELAY must be >= 0")
        if not 1 <= cls.UPDATE_CUTOFF_DAY <= 28:
            errors.append("UPDATE_CUTOFF_DAY must be between 1 and 28")
        if cls.CACHE_TTL_DAYS < 0:
            errors.append("CACHE_TTL_DAYS must be >= 0")
        if not cls.UPSTREAM_BASE_URL.startswith(("http://", "https://")):
            errors.append("UPSTREAM_BASE_URL must be an http(s) URL")
        if errors:
            raise ValueError(f"Configuration errors: {', '.join(errors)}")


config = Config()
