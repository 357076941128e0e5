"""Economy settings and configuration management using Pydantic."""

from functools import lru_cache
from typing import Optional

from pydantic import field_validator, model_validator
from pydantic_settings import BaseSettings


class EconomySettings(BaseSettings):
    """Tunable parameters of the economy. Money values are in cents."""

    # Tick scheduling
    tick_interval_minutes: int = 5
    ticks_per_day: int = 72
    random_seed: Optional[int] = None

    # Bot demand
    bot_budget: int = 10_000_000
    bot_budget_jitter: float = 0.2
    bot_max_product_price: int = 5_000_000
    bot_max_draws: int = 200
    bot_min_spend_fraction: float = 0.05
    bot_max_spend_fraction: float = 0.35

    # Loans
    loan_interest_rate: float = 5.0  # percent per day
    max_loan_amount: int = 500_000_000

    # Cryptocurrencies
    crypto_creation_fee: int = 1_000_000
    crypto_total_supply: int = 1_000_000
    crypto_initial_supply: int = 100_000
    crypto_initial_market_cap: int = 1_000_000
    crypto_default_liquidity: int = 100_000
    crypto_base_volatility: float = 0.05
    crypto_impact_factor: float = 0.08
    crypto_max_trade_impact: float = 0.15
    crypto_max_tick_change: float = 0.25
    crypto_volatility_update_minutes: int = 60

    # Companies and stocks
    starting_player_balance: int = 1_000_000
    company_creation_fee: int = 0
    ipo_min_company_balance: int = 5_000_000
    ipo_market_cap_multiple: int = 5
    ipo_default_shares: int = 1_000_000
    max_shares_per_account: int = 1_000_000
    stock_base_volatility: float = 0.02
    stock_max_tick_change: float = 0.10
    stock_sub_steps: int = 5
    stock_momentum_weight: float = 0.3
    stock_mean_reversion_speed: float = 0.01

    # Logging settings
    log_level: str = "INFO"
    log_format: str = "structured"  # 'structured' or 'plain'

    model_config = {
        "env_prefix": "TICKMARKET_",
        "env_file": ".env",
        "env_file_encoding": "utf-8",
        "case_sensitive": False,
        "extra": "ignore",
    }

    @field_validator("tick_interval_minutes")
    @classmethod
    def validate_interval(cls, v):
        """Validate tick interval is reasonable."""
        if v < 1 or v > 1440:  # 1 minute to 24 hours
            raise ValueError("Tick interval must be between 1 and 1440 minutes")
        return v

    @field_validator(
        "ticks_per_day", "bot_max_draws", "stock_sub_steps",
        "crypto_total_supply", "crypto_initial_supply", "crypto_default_liquidity",
        "ipo_default_shares", "max_shares_per_account",
    )
    @classmethod
    def validate_positive_count(cls, v):
        if v < 1:
            raise ValueError("Counts must be at least 1")
        return v

    @field_validator(
        "bot_budget", "bot_max_product_price", "max_loan_amount",
        "crypto_creation_fee", "crypto_total_supply", "crypto_initial_supply",
        "crypto_initial_market_cap", "crypto_default_liquidity",
        "starting_player_balance", "company_creation_fee",
        "ipo_min_company_balance", "ipo_market_cap_multiple",
        "ipo_default_shares", "max_shares_per_account",
    )
    @classmethod
    def validate_money(cls, v):
        """Money and quantity settings must be non-negative safe integers."""
        if v < 0 or v > 2 ** 53 - 1:
            raise ValueError("Value must be a non-negative safe integer")
        return v

    @field_validator(
        "bot_budget_jitter", "bot_min_spend_fraction", "bot_max_spend_fraction",
        "crypto_max_trade_impact", "crypto_max_tick_change", "stock_max_tick_change",
        "stock_momentum_weight", "stock_mean_reversion_speed",
    )
    @classmethod
    def validate_fraction(cls, v):
        if v < 0 or v > 1:
            raise ValueError("Fraction must be between 0 and 1")
        return v

    @field_validator("loan_interest_rate")
    @classmethod
    def validate_rate(cls, v):
        if v < 0 or v > 100:
            raise ValueError("Loan interest rate must be between 0 and 100 percent")
        return v

    @field_validator("log_level")
    @classmethod
    def validate_log_level(cls, v):
        """Validate log level."""
        valid_levels = ["DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"]
        if v.upper() not in valid_levels:
            raise ValueError(f"Log level must be one of: {valid_levels}")
        return v.upper()

    @field_validator("log_format")
    @classmethod
    def validate_log_format(cls, v):
        """Validate log format."""
        valid_formats = ["structured", "plain"]
        if v.lower() not in valid_formats:
            raise ValueError(f"Log format must be one of: {valid_formats}")
        return v.lower()

    @model_validator(mode="after")
    def validate_supply_cap(self):
        if self.crypto_initial_supply > self.crypto_total_supply:
            raise ValueError("Initial crypto supply cannot exceed the total supply")
        if self.bot_min_spend_fraction > self.bot_max_spend_fraction:
            raise ValueError("Bot spend fractions are inverted")
        return self

    @property
    def crypto_initial_price(self) -> int:
        """Price per coin implied by the initial market cap and initial supply."""
        return max(1, self.crypto_initial_market_cap // self.crypto_initial_supply)


@lru_cache()
def get_settings() -> EconomySettings:
    """
    Get cached economy settings.

    Returns:
        EconomySettings: Configuration instance read from the environment
    """
    return EconomySettings()
