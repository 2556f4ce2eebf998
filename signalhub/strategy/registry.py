"""Strategy registry — maps strategy names to decision engine factories.

Used by the scheduler to instantiate the engine named in a binding's
``strategy`` key.
"""

from typing import Callable

from signalhub.strategy.base import DecisionEngineProtocol
from signalhub.strategy.decision import MomentumDecisionEngine


STRATEGY_REGISTRY: dict[str, Callable[[], DecisionEngineProtocol]] = {
    "momentum": MomentumDecisionEngine,
    # Opt-in variant that abstains instead of forcing an entry
    "momentum_confirmed": lambda: MomentumDecisionEngine(forced_entry=False),
}


def get_strategy(name: str) -> DecisionEngineProtocol:
    """Look up and instantiate a decision engine by registry key.

    Raises ``KeyError`` if the strategy name is not registered.
    """
    if name not in STRATEGY_REGISTRY:
        raise KeyError(
            f"Unknown strategy '{name}'. "
            f"Available: {', '.join(STRATEGY_REGISTRY.keys())}"
        )
    return STRATEGY_REGISTRY[name]()
