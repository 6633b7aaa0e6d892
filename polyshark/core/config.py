"""Configuration management for the PolyShark arbitrage agent."""

from typing import Literal, Optional

from pydantic import Field, computed_field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

# =============================================================================
# Trading Configuration
# =============================================================================


class TradingConfig(BaseSettings):
    """Signal and sizing configuration for the trading loop."""

    model_config = SettingsConfigDict(
        env_file=".env", case_sensitive=False, extra="ignore", populate_by_name=True
    )

    # Minimum |sum(prices) - 1| before a bundle is considered mispriced
    min_spread_threshold: float = Field(
        default=0.02, validation_alias="MIN_SPREAD_THRESHOLD"
    )

    # Minimum net profit (USDC) per bundle after fills and fees
    min_profit_threshold: float = Field(
        default=0.10, validation_alias="MIN_PROFIT_THRESHOLD"
    )

    # Shares requested per outcome leg
    trade_size: float = Field(default=5.0, validation_alias="TRADE_SIZE")

    # Maximum USDC committed to one bundle
    max_position_value: float = Field(
        default=50.0, validation_alias="MAX_POSITION_VALUE"
    )

    # Seconds between trading cycles
    poll_interval_secs: float = Field(default=5.0, validation_alias="POLL_INTERVAL_SECS")

    @field_validator("min_spread_threshold")
    @classmethod
    def validate_spread_threshold(cls, v):
        """Validate spread threshold is a fraction of $1."""
        if v < 0 or v >= 1:
            raise ValueError("min_spread_threshold must be between 0 and 1")
        return v

    @field_validator("trade_size", "max_position_value", "poll_interval_secs")
    @classmethod
    def validate_positive(cls, v):
        if v <= 0:
            raise ValueError("Value must be positive")
        return v


# =============================================================================
# Execution Simulation Configuration
# =============================================================================


class ExecutionConfig(BaseSettings):
    """Latency, adverse selection and fee model for simulated fills."""

    model_config = SettingsConfigDict(
        env_file=".env", case_sensitive=False, extra="ignore", populate_by_name=True
    )

    # Simulated quote-to-fill delay
    latency_base_ms: int = Field(default=50, validation_alias="LATENCY_BASE_MS")

    # Std dev of the price drift during the delay
    adverse_selection_std: float = Field(
        default=0.001, validation_alias="ADVERSE_SELECTION_STD"
    )

    # Taker fee in basis points (200 = 2%)
    taker_fee_bps: int = Field(default=200, validation_alias="TAKER_FEE_BPS")

    # Fixed seed for reproducible runs, None draws from OS entropy
    random_seed: Optional[int] = Field(default=None, validation_alias="RANDOM_SEED")

    @field_validator("latency_base_ms", "taker_fee_bps")
    @classmethod
    def validate_non_negative_int(cls, v):
        if v < 0:
            raise ValueError("Value must be non-negative")
        return v

    @field_validator("adverse_selection_std")
    @classmethod
    def validate_std(cls, v):
        """Validate the adverse selection spread is a small price fraction."""
        if v < 0 or v > 1:
            raise ValueError("adverse_selection_std must be between 0 and 1")
        return v

    @computed_field
    @property
    def taker_fee_rate(self) -> float:
        """Taker fee as a fraction of notional."""
        return self.taker_fee_bps / 10000


# =============================================================================
# Exit Configuration
# =============================================================================


class ExitConfig(BaseSettings):
    """Exit triggers for open positions."""

    model_config = SettingsConfigDict(
        env_file=".env", case_sensitive=False, extra="ignore", populate_by_name=True
    )

    position_timeout_secs: int = Field(
        default=3600, validation_alias="POSITION_TIMEOUT_SECS"
    )

    # Spread narrowing (0.005 = 0.5%) that locks in profit
    profit_target_spread: float = Field(
        default=0.005, validation_alias="PROFIT_TARGET_SPREAD"
    )

    # Spread widening (0.02 = 2%) that cuts the position
    stop_loss_spread: float = Field(default=0.02, validation_alias="STOP_LOSS_SPREAD")

    @field_validator("profit_target_spread", "stop_loss_spread")
    @classmethod
    def validate_spread(cls, v):
        if v <= 0 or v > 1:
            raise ValueError("Spread must be between 0 and 1")
        return v

    @field_validator("position_timeout_secs")
    @classmethod
    def validate_timeout(cls, v):
        if v <= 0:
            raise ValueError("position_timeout_secs must be positive")
        return v


# =============================================================================
# Permission (Daily Allowance) Configuration
# =============================================================================


class PermissionConfig(BaseSettings):
    """Daily spending allowance granted to the agent."""

    model_config = SettingsConfigDict(
        env_file=".env", case_sensitive=False, extra="ignore", populate_by_name=True
    )

    daily_limit: float = Field(default=10.0, validation_alias="DAILY_LIMIT")
    permission_active: bool = Field(default=True, validation_alias="PERMISSION_ACTIVE")

    @field_validator("daily_limit")
    @classmethod
    def validate_limit(cls, v):
        if v < 0:
            raise ValueError("daily_limit must be non-negative")
        return v


# =============================================================================
# Risk Configuration
# =============================================================================


class RiskConfig(BaseSettings):
    """Circuit breaker thresholds for the risk gate."""

    model_config = SettingsConfigDict(
        env_file=".env", case_sensitive=False, extra="ignore", populate_by_name=True
    )

    # Maximum decline from peak balance (0.20 = 20%)
    max_drawdown: float = Field(default=0.20, validation_alias="RISK_MAX_DRAWDOWN")

    # Maximum realized loss per day in USDC
    max_daily_loss: float = Field(default=50.0, validation_alias="RISK_MAX_DAILY_LOSS")

    max_consecutive_losses: int = Field(
        default=5, validation_alias="RISK_MAX_CONSECUTIVE_LOSSES"
    )

    # Std dev of per-trade return above which trading halts
    volatility_threshold: float = Field(
        default=0.15, validation_alias="RISK_VOLATILITY_THRESHOLD"
    )

    # Minimum book depth (USDC) required to trade a leg
    min_liquidity: float = Field(default=1000.0, validation_alias="RISK_MIN_LIQUIDITY")

    # Maximum USDC per leg
    max_position_size: float = Field(
        default=100.0, validation_alias="RISK_MAX_POSITION_SIZE"
    )

    # Starting balance used for drawdown and volatility
    initial_balance: float = Field(
        default=100.0, validation_alias="RISK_INITIAL_BALANCE"
    )

    @field_validator("max_drawdown", "volatility_threshold")
    @classmethod
    def validate_fraction(cls, v):
        """Validate that threshold is between 0 and 1."""
        if v <= 0 or v > 1:
            raise ValueError("Threshold must be between 0 and 1")
        return v

    @field_validator("max_consecutive_losses")
    @classmethod
    def validate_losses(cls, v):
        if v < 1:
            raise ValueError("max_consecutive_losses must be at least 1")
        return v

    @field_validator("max_daily_loss", "min_liquidity", "max_position_size", "initial_balance")
    @classmethod
    def validate_non_negative(cls, v):
        if v < 0:
            raise ValueError("Value must be non-negative")
        return v


# =============================================================================
# Adaptive Strategy Configuration
# =============================================================================


class StrategyConfig(BaseSettings):
    """Adaptive edge requirements keyed on remaining allowance."""

    model_config = SettingsConfigDict(
        env_file=".env", case_sensitive=False, extra="ignore", populate_by_name=True
    )

    # Below this fraction of allowance left, trade conservatively
    conservative_threshold: float = Field(
        default=0.30, validation_alias="STRATEGY_CONSERVATIVE_THRESHOLD"
    )

    # Above this fraction of allowance left, trade aggressively
    aggressive_threshold: float = Field(
        default=0.70, validation_alias="STRATEGY_AGGRESSIVE_THRESHOLD"
    )

    min_edge_conservative: float = Field(
        default=0.05, validation_alias="STRATEGY_MIN_EDGE_CONSERVATIVE"
    )
    min_edge_normal: float = Field(
        default=0.02, validation_alias="STRATEGY_MIN_EDGE_NORMAL"
    )
    min_edge_aggressive: float = Field(
        default=0.01, validation_alias="STRATEGY_MIN_EDGE_AGGRESSIVE"
    )

    @field_validator("conservative_threshold", "aggressive_threshold")
    @classmethod
    def validate_threshold(cls, v):
        if v < 0 or v > 1:
            raise ValueError("Threshold must be between 0 and 1")
        return v


# =============================================================================
# Safety Configuration
# =============================================================================


class SafetyConfig(BaseSettings):
    """Safe mode behaviour on repeated market data failures."""

    model_config = SettingsConfigDict(
        env_file=".env", case_sensitive=False, extra="ignore", populate_by_name=True
    )

    # Snapshots older than this are considered stale
    max_data_delay_ms: int = Field(default=5000, validation_alias="MAX_DATA_DELAY_MS")

    max_consecutive_failures: int = Field(
        default=3, validation_alias="MAX_CONSECUTIVE_FAILURES"
    )

    safe_mode_cooldown_secs: int = Field(
        default=300, validation_alias="SAFE_MODE_COOLDOWN_SECS"
    )


# =============================================================================
# Market Data API Configuration
# =============================================================================


class ApiConfig(BaseSettings):
    """Market data backend selection and endpoints."""

    model_config = SettingsConfigDict(
        env_file=".env", case_sensitive=False, extra="ignore", populate_by_name=True
    )

    source: Literal["gamma", "envio"] = Field(
        default="gamma", validation_alias="MARKET_DATA_SOURCE"
    )

    gamma_url: str = Field(
        default="https://gamma-api.polymarket.com", validation_alias="GAMMA_API_URL"
    )
    clob_url: str = Field(
        default="https://clob.polymarket.com", validation_alias="CLOB_API_URL"
    )
    envio_url: str = Field(
        default="http://localhost:8080/v1/graphql", validation_alias="ENVIO_GRAPHQL_URL"
    )

    # Upper bound on every network fetch
    fetch_timeout_secs: float = Field(default=10.0, validation_alias="FETCH_TIMEOUT_SECS")

    market_limit: int = Field(default=20, validation_alias="MARKET_LIMIT")
    retry_attempts: int = Field(default=3, validation_alias="API_RETRY_ATTEMPTS")

    @field_validator("fetch_timeout_secs")
    @classmethod
    def validate_timeout(cls, v):
        if v <= 0:
            raise ValueError("fetch_timeout_secs must be positive")
        return v


# =============================================================================
# Notification Configuration
# =============================================================================


class NotificationConfig(BaseSettings):
    """Notification configuration."""

    model_config = SettingsConfigDict(
        env_file=".env", case_sensitive=False, extra="ignore", populate_by_name=True
    )

    enabled: bool = Field(default=False, validation_alias="NOTIFICATIONS_ENABLED")

    # Telegram
    telegram_bot_token: Optional[str] = Field(
        default=None, validation_alias="TELEGRAM_BOT_TOKEN"
    )
    telegram_chat_id: Optional[str] = Field(
        default=None, validation_alias="TELEGRAM_CHAT_ID"
    )

    # Discord
    discord_webhook_url: Optional[str] = Field(
        default=None, validation_alias="DISCORD_WEBHOOK_URL"
    )


# =============================================================================
# Database Configuration
# =============================================================================


class DatabaseConfig(BaseSettings):
    """Trade journal database configuration."""

    model_config = SettingsConfigDict(
        env_file=".env", case_sensitive=False, extra="ignore", populate_by_name=True
    )

    database_url: str = Field(
        default="sqlite:///./data/polyshark.db", validation_alias="DATABASE_URL"
    )
    journal_enabled: bool = Field(default=True, validation_alias="JOURNAL_ENABLED")


# =============================================================================
# Logging Configuration
# =============================================================================


class LoggingConfig(BaseSettings):
    """Logging configuration."""

    model_config = SettingsConfigDict(
        env_file=".env", case_sensitive=False, extra="ignore", populate_by_name=True
    )

    log_level: Literal["DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"] = Field(
        default="INFO", validation_alias="LOG_LEVEL"
    )
    log_file: str = Field(default="logs/polyshark.log", validation_alias="LOG_FILE")

    # Recent events kept in memory for status readers
    log_buffer_size: int = Field(default=500, validation_alias="LOG_BUFFER_SIZE")


# =============================================================================
# Global Configuration Container
# =============================================================================


class PolySharkConfig:
    """
    Container for all PolyShark configurations.

    Usage:
        from polyshark.core.config import polyshark_config

        threshold = polyshark_config.trading.min_spread_threshold
        if polyshark_config.api.source == "envio":
            ...
    """

    def __init__(self):
        self.trading = TradingConfig()
        self.execution = ExecutionConfig()
        self.exits = ExitConfig()
        self.permission = PermissionConfig()
        self.risk = RiskConfig()
        self.strategy = StrategyConfig()
        self.safety = SafetyConfig()
        self.api = ApiConfig()
        self.notification = NotificationConfig()
        self.database = DatabaseConfig()
        self.logging = LoggingConfig()

    def validate_configuration(self) -> dict:
        """
        Validate cross-field constraints and return any issues.

        Returns:
            Dictionary with 'valid' boolean and 'issues' list
        """
        issues = []

        if self.strategy.conservative_threshold >= self.strategy.aggressive_threshold:
            issues.append(
                "Strategy conservative_threshold must be below aggressive_threshold"
            )

        if self.risk.max_position_size <= 0:
            issues.append("Risk max_position_size must be positive")

        if not self.permission.permission_active:
            issues.append("Spending permission is not active")

        if self.notification.enabled and not (
            (self.notification.telegram_bot_token and self.notification.telegram_chat_id)
            or self.notification.discord_webhook_url
        ):
            issues.append("Notifications enabled but no Telegram or Discord target set")

        return {"valid": len(issues) == 0, "issues": issues}


# =============================================================================
# Global Configuration Instances
# =============================================================================

risk_config = RiskConfig()
database_config = DatabaseConfig()
logging_config = LoggingConfig()

polyshark_config = PolySharkConfig()


__all__ = [
    "PolySharkConfig",
    "polyshark_config",
    "risk_config",
    "database_config",
    "logging_config",
    "TradingConfig",
    "ExecutionConfig",
    "ExitConfig",
    "PermissionConfig",
    "RiskConfig",
    "StrategyConfig",
    "SafetyConfig",
    "ApiConfig",
    "NotificationConfig",
    "DatabaseConfig",
    "LoggingConfig",
]
