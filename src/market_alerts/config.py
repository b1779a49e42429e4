"""
Configuration management for the scanner service.
Loads settings from config.yaml, then applies environment overrides (.env supported).
"""
import os
from pathlib import Path
from typing import Any, Callable, Dict, List, Literal, Optional, Tuple

import yaml
from dotenv import load_dotenv
from pydantic import BaseModel, Field, model_validator

from market_alerts.core.errors import QuoteSourceConfigError

PACKAGE_DIR = Path(__file__).resolve().parent
DEFAULT_CONFIG_PATH = PACKAGE_DIR / "config.yaml"


class ScannerSettings(BaseModel):
    """Scan scheduling, thresholds and pacing"""
    scan_interval_minutes: float = Field(15, gt=0)
    default_universe: str = "SP100"
    scan_universes: List[str] = Field(default_factory=lambda: ["SP100"])
    normal_threshold_pct: float = Field(3.0, gt=0)
    strong_threshold_pct: float = Field(5.0, gt=0)
    min_force_scan_gap_minutes: int = Field(3, ge=0)
    max_symbols_per_scan: int = Field(100, gt=0)
    min_price: float = Field(5.0, ge=0)
    request_delay_ms: int = Field(350, ge=0)
    respect_market_hours: bool = True
    autostart: bool = True
    market_timezone: str = "America/New_York"

    @model_validator(mode="after")
    def _check_consistency(self):
        if self.strong_threshold_pct < self.normal_threshold_pct:
            raise ValueError(
                f"strong_threshold_pct ({self.strong_threshold_pct}) must be >= "
                f"normal_threshold_pct ({self.normal_threshold_pct})"
            )
        universes = [u.strip() for u in self.scan_universes if u and u.strip()]
        if self.default_universe not in universes:
            universes.insert(0, self.default_universe)
        self.scan_universes = universes
        return self


class QuotesSettings(BaseModel):
    """Quote provider selection and upstream call policy"""
    provider: Literal["finnhub", "yahoo", "alpha_vantage"] = "finnhub"
    finnhub_api_key_env: str = "FINNHUB_KEY"
    finnhub_base_url: str = "https://finnhub.io/api/v1"
    alpha_vantage_api_key_env: str = "ALPHA_VANTAGE_KEY"
    alpha_vantage_base_url: str = "https://www.alphavantage.co/query"
    timeout_seconds: float = Field(8.0, gt=0)
    max_attempts: int = Field(3, ge=1)
    backoff_ms: int = Field(500, ge=0)

    @staticmethod
    def _secret(env_name: str) -> str:
        value = os.getenv(env_name, "").strip()
        if not value:
            raise QuoteSourceConfigError(f"API key not found in environment variable: {env_name}")
        return value

    @property
    def finnhub_api_key(self) -> str:
        return self._secret(self.finnhub_api_key_env)

    @property
    def alpha_vantage_api_key(self) -> str:
        return self._secret(self.alpha_vantage_api_key_env)


class StorageSettings(BaseModel):
    db_path: str = "scanner.db"


class AISettings(BaseModel):
    """OpenAI-compatible chat endpoint (Groq by default)"""
    api_key_env: str = "GROQ_API_KEY"
    base_url: str = "https://api.groq.com/openai/v1"
    chat_model: str = "llama-3.1-8b-instant"
    insight_model: str = "llama-3.3-70b-versatile"
    max_tokens: int = 500
    insight_max_tokens: int = 300
    insight_ttl_minutes: int = 60

    @property
    def api_key(self) -> Optional[str]:
        return os.getenv(self.api_key_env) or None


class LoggingConfig(BaseModel):
    level: str = "INFO"
    format: str = "%(asctime)s - %(name)s - %(levelname)s - %(message)s"


class ServerSettings(BaseModel):
    host: str = "0.0.0.0"
    port: int = 8000


class Config(BaseModel):
    """Main configuration container"""
    scanner: ScannerSettings = Field(default_factory=ScannerSettings)
    quotes: QuotesSettings = Field(default_factory=QuotesSettings)
    storage: StorageSettings = Field(default_factory=StorageSettings)
    ai: AISettings = Field(default_factory=AISettings)
    logging: LoggingConfig = Field(default_factory=LoggingConfig)
    server: ServerSettings = Field(default_factory=ServerSettings)


def _csv(value: str) -> List[str]:
    return [v.strip() for v in value.split(",") if v.strip()]


# env var -> (section, field, parser)
ENV_OVERRIDES: Dict[str, Tuple[str, str, Callable[[str], Any]]] = {
    "SCAN_INTERVAL": ("scanner", "scan_interval_minutes", float),
    "DEFAULT_UNIVERSE": ("scanner", "default_universe", str),
    "SCAN_UNIVERSES": ("scanner", "scan_universes", _csv),
    "NORMAL_THRESHOLD": ("scanner", "normal_threshold_pct", float),
    "STRONG_THRESHOLD": ("scanner", "strong_threshold_pct", float),
    "MIN_FORCE_SCAN_GAP": ("scanner", "min_force_scan_gap_minutes", int),
    "MAX_SYMBOLS_PER_SCAN": ("scanner", "max_symbols_per_scan", int),
    "DELAY_MS": ("scanner", "request_delay_ms", int),
    "MIN_PRICE": ("scanner", "min_price", float),
    "QUOTE_PROVIDER": ("quotes", "provider", str),
    "DB_PATH": ("storage", "db_path", str),
    "PORT": ("server", "port", int),
    "LOG_LEVEL": ("logging", "level", str),
}


def apply_env_overrides(data: Dict[str, Any], environ=None) -> Dict[str, Any]:
    """Overlay recognised environment variables onto raw config data."""
    environ = os.environ if environ is None else environ
    for env_name, (section, key, parse) in ENV_OVERRIDES.items():
        raw = environ.get(env_name)
        if raw is None or raw.strip() == "":
            continue
        try:
            value = parse(raw.strip())
        except ValueError as e:
            raise ValueError(f"Invalid value for {env_name}: {raw!r}") from e
        data.setdefault(section, {})[key] = value
    return data


def load_config(config_path: str = None, env_file: str = None) -> Config:
    """
    Load configuration from YAML file and environment variables.

    Args:
        config_path: Path to a YAML file. Falls back to $MARKET_ALERTS_CONFIG,
                     then the packaged config.yaml.
        env_file: Path to a .env file. If None, python-dotenv searches from cwd.

    Returns:
        Config: Validated configuration object
    """
    if env_file is None:
        load_dotenv()
    else:
        load_dotenv(env_file)

    if config_path is None:
        config_path = os.getenv("MARKET_ALERTS_CONFIG") or DEFAULT_CONFIG_PATH

    config_data: Dict[str, Any] = {}
    if Path(config_path).exists():
        with open(config_path, "r") as f:
            config_data = yaml.safe_load(f) or {}

    return Config(**apply_env_overrides(config_data))


# Global config instance, used by the CLI entry point only
_config: Optional[Config] = None


def get_config(config_path: str = None, env_file: str = None, reload: bool = False) -> Config:
    global _config
    if _config is None or reload:
        _config = load_config(config_path=config_path, env_file=env_file)
    return _config


def set_config(config: Config) -> None:
    """Manually set the global configuration instance (tests, embedding)."""
    global _config
    _config = config


def reset_config() -> None:
    global _config
    _config = None
