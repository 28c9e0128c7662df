import os
from datetime import datetime, timezone
from typing import Dict, List, Optional

from pydantic import BaseModel, Field, field_validator, ValidationError


class ConfigError(RuntimeError):
    pass


def _unset_placeholder(v: Optional[str]) -> Optional[str]:
    # "${VAR}" left in config.yaml means the value comes from the environment
    if v is None:
        return None
    v = str(v).strip()
    if not v or "${" in v:
        return None
    return v


class Etherscan(BaseModel):
    base_url: str = "https://api.etherscan.io/v2/api"
    chain_id: int = 1
    api_key: Optional[str] = None
    user_agent: str = "GONDI-FeeTracker/1.0"
    timeout: int = 30

    @field_validator("base_url")
    @classmethod
    def must_be_https(cls, v: str) -> str:
        if "${" in v:
            return "https://api.etherscan.io/v2/api"
        if not v.startswith("https://"):
            raise ValueError("Etherscan base URL must be HTTPS")
        return v

    @field_validator("api_key")
    @classmethod
    def placeholder_is_unset(cls, v: Optional[str]) -> Optional[str]:
        return _unset_placeholder(v)


class TrackedToken(BaseModel):
    symbol: str
    contract: str
    decimals: int = 18
    aliases: List[str] = []

    @field_validator("contract")
    @classmethod
    def lower_contract(cls, v: str) -> str:
        return v.strip().lower()


def _default_tokens() -> List[TrackedToken]:
    return [
        TrackedToken(
            symbol="USDC",
            contract="0xa0b86991c6218b36c1d19d4a2e9eb0ce3606eb48",
            decimals=6,
        ),
        TrackedToken(
            symbol="WETH",
            contract="0xc02aaa39b223fe8d0a0e5c4f27ead9083c756cc2",
            decimals=18,
            aliases=["WETHEREUM"],
        ),
    ]


class Tracking(BaseModel):
    contract: str = "0x4169447a424ec645f8a24dccfd8328f714dd5562"
    network: str = "ethereum"
    native_symbol: str = "ETH"
    start_date: datetime = datetime(2025, 10, 22, tzinfo=timezone.utc)
    tokens: List[TrackedToken] = Field(default_factory=_default_tokens)

    @field_validator("contract")
    @classmethod
    def lower_contract(cls, v: str) -> str:
        return v.strip().lower()

    @field_validator("start_date")
    @classmethod
    def assume_utc(cls, v: datetime) -> datetime:
        return v if v.tzinfo else v.replace(tzinfo=timezone.utc)

    @property
    def start_timestamp(self) -> int:
        """Cutoff in unix seconds."""
        return int(self.start_date.timestamp())

    @property
    def token_contracts(self) -> Dict[str, TrackedToken]:
        return {t.contract: t for t in self.tokens}

    @property
    def symbol_aliases(self) -> Dict[str, str]:
        return {alias: t.symbol for t in self.tokens for alias in t.aliases}


class FetchPolicy(BaseModel):
    max_attempts: int = 3
    backoff_base_ms: int = 1000
    backoff_cap_ms: int = 5000
    inter_call_delay: float = 1.0
    include_normal_transactions: bool = False

    @field_validator("max_attempts")
    @classmethod
    def at_least_one(cls, v: int) -> int:
        if v < 1:
            raise ValueError("max_attempts must be at least 1")
        return v


class CacheCfg(BaseModel):
    ttl_seconds: int = 30 * 60
    max_entries: int = 256


class Prices(BaseModel):
    base_url: str = "https://api.coingecko.com/api/v3"
    vs_currency: str = "usd"
    coin_ids: Dict[str, str] = {"ETH": "ethereum", "WETH": "weth", "USDC": "usd-coin"}
    timeout: int = 10


class Api(BaseModel):
    recent_limit: int = 20
    environment: str = "production"
    debug_token: Optional[str] = None

    @field_validator("debug_token")
    @classmethod
    def placeholder_is_unset(cls, v: Optional[str]) -> Optional[str]:
        return _unset_placeholder(v)


class Settings(BaseModel):
    etherscan: Etherscan = Field(default_factory=Etherscan)
    tracking: Tracking = Field(default_factory=Tracking)
    fetch: FetchPolicy = Field(default_factory=FetchPolicy)
    cache: CacheCfg = Field(default_factory=CacheCfg)
    prices: Prices = Field(default_factory=Prices)
    api: Api = Field(default_factory=Api)

    def require_api_key(self) -> str:
        if not self.etherscan.api_key:
            raise ConfigError("ETHERSCAN_API_KEY is required but not set")
        return self.etherscan.api_key


def load_settings(path: str = "config.yaml") -> Settings:
    import yaml

    cfg: dict = {}
    if os.path.exists(path):
        with open(path, "r") as f:
            cfg = yaml.safe_load(f) or {}

    # secrets come from the environment at runtime
    env_key = os.environ.get("ETHERSCAN_API_KEY")
    if env_key:
        cfg.setdefault("etherscan", {})["api_key"] = env_key
    env_debug = os.environ.get("DEBUG_AUTH_TOKEN")
    if env_debug:
        cfg.setdefault("api", {})["debug_token"] = env_debug
    env_name = os.environ.get("APP_ENV")
    if env_name:
        cfg.setdefault("api", {})["environment"] = env_name

    try:
        return Settings.model_validate(cfg)
    except ValidationError as e:
        raise ConfigError(f"Configuration error in {path}: {e}") from e
