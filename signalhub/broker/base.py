"""Market data and execution interfaces.

The scheduler depends only on these protocols; ``OandaClient`` implements
both, and tests substitute ``AsyncMock`` objects.
"""

from typing import Optional, Protocol, runtime_checkable

from signalhub.broker.models import ExecutionReceipt
from signalhub.strategy.models import Candle, Direction


@runtime_checkable
class MarketDataProvider(Protocol):
    async def fetch_candles(self, symbol: str, timeframe: str, count: int = 100) -> list[Candle]:
        """Return up to *count* candles for *symbol*, oldest first."""
        ...


@runtime_checkable
class ExecutionVenue(Protocol):
    async def connected_accounts(self) -> set[str]:
        """Account ids the venue currently accepts orders for."""
        ...

    async def count_open_positions(self, account_id: str) -> int:
        ...

    async def open_position(
        self,
        account_id: str,
        symbol: str,
        direction: Direction,
        size: float,
        stop_loss: float,
        take_profit: float,
        tag: Optional[str] = None,
    ) -> ExecutionReceipt:
        """Place a market order; *tag* labels it with the originating binding."""
        ...
