"""
Cart and order totals.

Every place that shows or charges a total goes through `compute_totals`, so
the shipping rule below is the only copy of it.
"""
from typing import Iterable, NamedTuple, Tuple

FREE_SHIPPING_THRESHOLD = 599
SHIPPING_FEE = 49


class Totals(NamedTuple):
    subtotal: float
    shipping: float
    tax: float
    discount: float
    grand_total: float


def money(value) -> float:
    return round(float(value), 2)


def shipping_for(subtotal: float) -> float:
    # nothing to ship on an empty cart
    if 0 < subtotal < FREE_SHIPPING_THRESHOLD:
        return SHIPPING_FEE
    return 0


def compute_totals(lines: Iterable[Tuple[int, float]], tax: float = 0, discount: float = 0) -> Totals:
    subtotal = money(sum(qty * price for qty, price in lines))
    shipping = shipping_for(subtotal)
    grand_total = money(subtotal + shipping + tax - discount)
    return Totals(subtotal, shipping, money(tax), money(discount), grand_total)
