"""Exchange trading rules (lot size, price tick) read from Binance exchangeInfo."""

from __future__ import annotations
import math
from typing import Mapping, NamedTuple, Optional

# qty / step can land a hair below an integer (0.3 / 0.0001 = 2999.9999...)
_STEP_EPS = 1e-9

# filterType -> (exchange key, field)
_FILTER_FIELDS = {
    "LOT_SIZE": (("minQty", "min_qty"), ("stepSize", "lot_step")),
    "PRICE_FILTER": (("tickSize", "price_tick"),),
}


def round_quantity(qty: float, min_qty: float, step_size: float) -> float:
    """Floor to the lot step; anything below min_qty becomes 0."""
    steps = math.floor(qty / step_size + _STEP_EPS) if qty > 0 else 0
    rounded = round(steps * step_size, 8)
    return rounded if rounded > 0 and rounded >= min_qty else 0.0


def round_price(price: float, tick_size: float) -> float:
    return round(round(price / tick_size) * tick_size, 8)


class SymbolFilters(NamedTuple):
    """Lot and tick rules for one symbol. Defaults apply when the exchange gives none."""

    min_qty: float = 0.001
    lot_step: float = 0.0001
    price_tick: float = 0.01

    def quantity(self, qty: float) -> float:
        return round_quantity(qty, self.min_qty, self.lot_step)

    def price(self, price: float) -> float:
        return round_price(price, self.price_tick)


def parse_symbol_filters(symbol_info: Optional[Mapping]) -> SymbolFilters:
    """SymbolFilters from one entry of exchangeInfo["symbols"] (None gives the defaults)."""
    found = {}
    for f in (symbol_info or {}).get("filters", []):
        for key, name in _FILTER_FIELDS.get(f.get("filterType"), ()):
            if key in f:
                found[name] = float(f[key])
    return SymbolFilters(**found)
