"""Decision engine protocol.

Defines the interface that every strategy's decision engine must implement.
"""

from __future__ import annotations

from typing import Optional, Protocol, Sequence, runtime_checkable

from signalhub.strategy.models import Candle, CandidateSignal


@runtime_checkable
class DecisionEngineProtocol(Protocol):
    """Interface that all decision engines must satisfy."""

    def analyze(
        self,
        candles: Sequence[Candle],
        symbol: str,
        risk_level: str = "medium",
        timeframe: str = "M15",
    ) -> Optional[CandidateSignal]:
        """Evaluate candles and return a candidate signal or None."""
        ...
