"""
Configuration settings for the Sales Dashboard data layer.

Key Design Principle: endpoints and credentials come from environment variables,
cache and retry tuning comes from config/policies.yaml, never hardcoded at call sites.
"""
import os
import logging
from dataclasses import dataclass, field
from pathlib import Path
from typing import Optional, Dict, Any

logger = logging.getLogger(__name__)

CONFIG_DIR = Path(__file__).parent
POLICIES_FILE = CONFIG_DIR / "policies.yaml"


@dataclass
class SalesApiConfig:
    """Upstream sales API configuration."""
    base_url: str = field(default_factory=lambda: os.getenv("SALES_API_BASE_URL", "http://localhost:8000"))
    token: str = field(default_factory=lambda: os.getenv("SALES_API_TOKEN", ""))
    timeout: float = field(default_factory=lambda: float(os.getenv("SALES_API_TIMEOUT", "30")))
    # Batch endpoints fan out server-side, so they get a longer budget
    batch_timeout: float = field(default_factory=lambda: float(os.getenv("SALES_API_BATCH_TIMEOUT", "60")))


@dataclass
class CachePolicy:
    """TTL and capacity for one cache instance."""
    ttl: float
    max_size: int
    stale_while_revalidate: bool = True


@dataclass
class RetryPolicy:
    """Backoff tuning for one retry profile."""
    max_attempts: int
    base_delay: float
    max_delay: float
    backoff_factor: float
    jitter: bool = True


@dataclass
class LoadingConfig:
    """Loading indicator timing."""
    minimum_loading_time: float = field(
        default_factory=lambda: float(os.getenv("LOADING_MINIMUM_TIME", "0.5"))
    )
    settle_delay: float = field(
        default_factory=lambda: float(os.getenv("LOADING_SETTLE_DELAY", "0.05"))
    )


# Monthly aggregates change less often than daily ones, so they live longer
DEFAULT_CACHE_POLICIES: Dict[str, CachePolicy] = {
    "daily": CachePolicy(ttl=120, max_size=200),
    "weekly": CachePolicy(ttl=300, max_size=100),
    "monthly": CachePolicy(ttl=600, max_size=50),
}

DEFAULT_RETRY_POLICIES: Dict[str, RetryPolicy] = {
    "critical": RetryPolicy(max_attempts=5, base_delay=2.0, max_delay=30.0, backoff_factor=2.0),
    "realtime": RetryPolicy(max_attempts=3, base_delay=1.0, max_delay=10.0, backoff_factor=1.5),
    "background": RetryPolicy(max_attempts=7, base_delay=5.0, max_delay=60.0, backoff_factor=1.8),
    "interactive": RetryPolicy(max_attempts=2, base_delay=0.5, max_delay=2.0, backoff_factor=2.0, jitter=False),
}


def load_policies(path: Optional[Path] = None) -> Dict[str, Any]:
    """
    Load cache and retry policies from YAML.

    Missing sections (or a missing file) fall back to the built-in defaults,
    so a partial policies.yaml only overrides what it names.
    """
    import yaml

    path = path or POLICIES_FILE
    cache_policies = dict(DEFAULT_CACHE_POLICIES)
    retry_policies = dict(DEFAULT_RETRY_POLICIES)

    if not path.exists():
        logger.warning(f"Policies file not found at {path}. Using defaults.")
        return {"cache": cache_policies, "retry": retry_policies}

    with open(path, "r", encoding="utf-8") as f:
        raw = yaml.safe_load(f) or {}

    for name, values in (raw.get("cache") or {}).items():
        cache_policies[name] = CachePolicy(**values)
    for name, values in (raw.get("retry") or {}).items():
        retry_policies[name] = RetryPolicy(**values)

    logger.info(f"Loaded {len(cache_policies)} cache and {len(retry_policies)} retry policies from {path}")
    return {"cache": cache_policies, "retry": retry_policies}


@dataclass
class AppConfig:
    """Main application configuration."""
    api: SalesApiConfig = field(default_factory=SalesApiConfig)
    loading: LoadingConfig = field(default_factory=LoadingConfig)
    cache_policies: Dict[str, CachePolicy] = field(default_factory=lambda: dict(DEFAULT_CACHE_POLICIES))
    retry_policies: Dict[str, RetryPolicy] = field(default_factory=lambda: dict(DEFAULT_RETRY_POLICIES))

    # Logging
    log_level: str = field(default_factory=lambda: os.getenv("LOG_LEVEL", "INFO"))

    def validate(self) -> Dict[str, str]:
        """Return a map of setting name -> problem for anything misconfigured."""
        problems = {}
        if not self.api.base_url:
            problems["SALES_API_BASE_URL"] = "not set"
        if not self.api.token:
            problems["SALES_API_TOKEN"] = "not set"
        for name in ("daily", "weekly", "monthly"):
            if name not in self.cache_policies:
                problems[f"cache.{name}"] = "missing policy"
        for name in ("critical", "realtime", "background", "interactive"):
            if name not in self.retry_policies:
                problems[f"retry.{name}"] = "missing policy"
        return problems


def get_config(policies_path: Optional[Path] = None) -> AppConfig:
    """Factory function to get application configuration."""
    policies = load_policies(policies_path)
    return AppConfig(
        cache_policies=policies["cache"],
        retry_policies=policies["retry"],
    )
