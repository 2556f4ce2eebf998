"""Strategy binding dataclass.

Represents one strategy-to-account configuration the scheduler iterates.
"""

from dataclasses import dataclass, field

DEFAULT_SYMBOLS = ["XAU_USD", "EUR_USD", "GBP_USD", "USD_JPY"]


@dataclass(frozen=True)
class StrategyBinding:
    """Configuration tying one strategy definition to one funded account.

    Bindings are owned by the account-management system and are read-only
    to the engine.
    """

    name: str
    account_id: str
    strategy: str = "momentum"  # strategy registry key
    timeframe: str = "M15"
    risk_level: str = "medium"  # low / medium / high / aggressive
    symbols: list[str] = field(default_factory=lambda: list(DEFAULT_SYMBOLS))
    enabled: bool = True
    max_open_positions: int = 3
    execute_trades: bool = True
    publish_signals: bool = True
    priority: str = "MEDIUM"  # priority label for signals this binding publishes
