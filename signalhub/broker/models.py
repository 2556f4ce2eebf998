"""Execution-side value objects exchanged with the venue."""

from dataclasses import dataclass
from typing import Optional

from signalhub.strategy.models import Direction

# Units per standard lot
LOT_UNITS = 100_000
METAL_LOT_UNITS = 100


def lots_to_units(symbol: str, size: float, direction: Direction) -> int:
    """Convert a lot size into signed venue units (negative = sell)."""
    per_lot = METAL_LOT_UNITS if ("XAU" in symbol or "XAG" in symbol) else LOT_UNITS
    units = max(1, int(round(size * per_lot)))
    return units if direction == Direction.BUY else -units


@dataclass(frozen=True)
class OrderRequest:
    """A market order derived from a signal, sized in lots."""

    account_id: str
    symbol: str
    direction: Direction
    size: float
    stop_loss: float
    take_profit: float
    tag: Optional[str] = None  # binding name, echoed back by the venue

    @property
    def units(self) -> int:
        return lots_to_units(self.symbol, self.size, self.direction)


@dataclass(frozen=True)
class ExecutionReceipt:
    """Fill details returned by the execution venue."""

    order_id: str
    account_id: str
    symbol: str
    units: int
    fill_price: float
    time: str

    @property
    def direction(self) -> Direction:
        return Direction.BUY if self.units > 0 else Direction.SELL


@dataclass(frozen=True)
class OpenPosition:
    """Net exposure on one instrument; hedged sides are summed."""

    symbol: str
    net_units: float
    unrealized_pl: float
