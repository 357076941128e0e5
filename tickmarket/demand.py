"""
demand.py - Bot market demand for company products

Once per tick the bot market receives a jittered budget and spends it on
products drawn at random, weighted by attractiveness:

    (0.4 * quality + 0.3 * price_preference + 0.2 * demand + 0.1)
        * unit_price_penalty * (0.5 + company_reputation)

price_preference peaks around 1,000.00 on a log scale, demand grows with units
already sold (saturating at 100), and unit_price_penalty damps expensive
items. Each draw spends a random slice of the remaining budget on whole
units, as one atomic ledger transaction per purchase.
"""

from __future__ import annotations
import math
from dataclasses import dataclass
from typing import Any, Dict, List, Optional, Tuple

import numpy as np

from .config.logging import get_logger
from .core import LedgerError, UNIT_TYPE_PRODUCT, floor_to_minor
from .history import MarketplaceSale, SalesLog, TickError
from .ledger import Ledger
from .locks import LockManager
from .units.product import compute_bot_purchase, is_purchasable, max_order_quantity


logger = get_logger(__name__)

# Price (cents) the bots like best: log-normal preference centred here
PREFERRED_PRICE = 100_000
PRICE_PREFERENCE_WIDTH = 2.0
# Unit price penalty: 1 / (1 + (price_in_dollars / PENALTY_SCALE) ** PENALTY_EXPONENT)
PENALTY_SCALE = 5_000.0
PENALTY_EXPONENT = 1.2
DEMAND_SATURATION = 100


def price_preference(price: int) -> float:
    z = (math.log(price + 1) - math.log(PREFERRED_PRICE)) / PRICE_PREFERENCE_WIDTH
    return math.exp(-z * z / 2.0)


def unit_price_penalty(price: int) -> float:
    return 1.0 / (1.0 + (price / 100.0 / PENALTY_SCALE) ** PENALTY_EXPONENT)


def attractiveness(state: Dict[str, Any], reputation: float = 0.5) -> float:
    """Relative draw weight of a product (always > 0 for a priced product)."""
    quality = state.get('quality_rating', 0.5)
    demand = min(state.get('total_sold', 0) / DEMAND_SATURATION, 1.0)
    base = 0.4 * quality + 0.3 * price_preference(state['price']) + 0.2 * demand + 0.1
    return base * unit_price_penalty(state['price']) * (0.5 + reputation)


def draw_budget(base_budget: int, jitter: float, rng: np.random.Generator) -> int:
    """base_budget * (1 +/- jitter), floored to cents."""
    if base_budget <= 0:
        return 0
    factor = 1.0 + rng.uniform(-jitter, jitter) if jitter > 0 else 1.0
    return max(0, floor_to_minor(base_budget * factor))


@dataclass(frozen=True)
class DemandResult:
    budget: int
    spent: int
    purchases: Tuple[MarketplaceSale, ...]
    errors: Tuple[TickError, ...] = ()

    @property
    def remaining(self) -> int:
        return self.budget - self.spent


class DemandSimulator:
    """
    Spends the bot budget across purchasable products.

    Deterministic for a given generator state and ledger state.
    """

    def __init__(
        self,
        ledger: Ledger,
        settings,
        locks: Optional[LockManager] = None,
        sales_log: Optional[SalesLog] = None,
    ):
        self.ledger = ledger
        self.settings = settings
        self.locks = locks or LockManager()
        self.sales_log = sales_log if sales_log is not None else SalesLog()

    def candidates(self) -> Dict[str, float]:
        """Purchasable products and their draw weights."""
        weights = {}
        for symbol in self.ledger.list_units(UNIT_TYPE_PRODUCT):
            state = self.ledger.get_unit_state(symbol)
            if not is_purchasable(state, self.settings.bot_max_product_price):
                continue
            reputation = self._reputation(state['company_wallet'])
            weights[symbol] = attractiveness(state, reputation)
        return weights

    def _reputation(self, company_wallet: str) -> float:
        account = self.ledger.accounts.get(company_wallet)
        return account.reputation if account is not None else 0.5

    def run(self, rng: np.random.Generator, budget: Optional[int] = None) -> DemandResult:
        """
        Run one round of bot purchases.

        Args:
            rng: Source of all random draws
            budget: Override of the jittered budget (cents)
        """
        s = self.settings
        if budget is None:
            budget = draw_budget(s.bot_budget, s.bot_budget_jitter, rng)
        remaining = budget
        candidates = self.candidates()
        purchases: List[MarketplaceSale] = []
        errors: List[TickError] = []

        for _ in range(s.bot_max_draws):
            if remaining <= 0 or not candidates:
                break
            symbols = sorted(candidates)
            weights = np.array([candidates[sym] for sym in symbols], dtype=np.float64)
            total_weight = weights.sum()
            if total_weight <= 0:
                break
            symbol = symbols[int(rng.choice(len(symbols), p=weights / total_weight))]
            fraction = rng.uniform(s.bot_min_spend_fraction, s.bot_max_spend_fraction)

            try:
                sale = self._purchase(symbol, remaining, fraction)
            except LedgerError as exc:
                logger.warning("bot_purchase_failed", product=symbol, error=str(exc))
                errors.append(TickError("demand", str(exc), type(exc).__name__, symbol))
                del candidates[symbol]
                continue

            if sale is None:
                del candidates[symbol]
                continue
            purchases.append(sale)
            remaining -= sale.total_price
            stock = self.ledger.get_unit_state(symbol).get('stock')
            if stock is not None and stock <= 0:
                del candidates[symbol]

        self.sales_log.extend(purchases)
        spent = budget - remaining
        logger.info(
            "bot_demand_completed",
            budget=budget,
            spent=spent,
            purchases=len(purchases),
            errors=len(errors),
        )
        return DemandResult(budget, spent, tuple(purchases), tuple(errors))

    def _purchase(self, symbol: str, remaining: int, fraction: float) -> Optional[MarketplaceSale]:
        """Buy from one product; None when it can no longer be bought within budget."""
        company_wallet = self.ledger.get_unit_state(symbol)['company_wallet']
        with self.locks.hold(symbol, company_wallet):
            state = self.ledger.get_unit_state(symbol)
            price = state['price']
            if price > remaining or not is_purchasable(state, self.settings.bot_max_product_price):
                return None
            quantity = max(1, floor_to_minor(remaining * fraction) // price)
            cap = max_order_quantity(state)
            if cap is not None:
                quantity = min(quantity, cap)
            quantity = min(quantity, remaining // price)
            tx = self.ledger.execute(compute_bot_purchase(self.ledger, symbol, quantity))
            return MarketplaceSale(
                product=symbol,
                company_wallet=company_wallet,
                quantity=quantity,
                total_price=tx.amount,
                timestamp=tx.timestamp,
            )
