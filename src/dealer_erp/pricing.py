"""Pure cost and profit derivations plus compact money formatting.

Nothing here touches the store. ``format_compact`` is for display only and
its output must never be parsed back into a stored or compared value.
"""

from __future__ import annotations

from decimal import ROUND_HALF_UP, Decimal
from enum import Enum

from . import log
from .errors import ValidationError


MILLION = Decimal("1000000")
THOUSAND = Decimal("1000")


class ProfitKind(str, Enum):
    """Display classification of a profit figure."""

    GAIN = "gain"
    LOSS = "loss"
    BREAK_EVEN = "break_even"


def require_nonnegative_money(amount: Decimal, *, field: str = "amount") -> None:
    """Validate that a monetary value is zero or positive.

    Args:
        amount (Decimal): Currency value supplied by a command object.
        field (str): Field name reported in the error details.

    Raises:
        ValidationError: If ``amount`` is negative or not a finite number.
    """
    if not Decimal(amount).is_finite():
        log.error("Monetary value for %s is not finite: %s", field, amount)
        raise ValidationError(f"{field} must be a finite number", details={"field": field, "value": str(amount)})
    if amount < Decimal("0"):
        log.error("Monetary value validation failed for %s: %s", field, amount)
        raise ValidationError(f"{field} must be zero or positive", details={"field": field, "value": str(amount)})


def cost_price(purchase_price: Decimal, extra_costs: Decimal) -> Decimal:
    """Return the cost price of a vehicle.

    Args:
        purchase_price (Decimal): Price paid when acquiring the vehicle.
        extra_costs (Decimal): Repairs, transport, and other costs incurred
            before the sale.

    Returns:
        Decimal: ``purchase_price + extra_costs``.

    Raises:
        ValidationError: If either input is negative. Negative values are
            rejected rather than clamped.
    """
    require_nonnegative_money(purchase_price, field="purchasePrice")
    require_nonnegative_money(extra_costs, field="extraCosts")
    return purchase_price + extra_costs


def profit(sale_price: Decimal, cost: Decimal) -> Decimal:
    """Return ``sale_price - cost``. A negative result is a valid loss."""
    return sale_price - cost


def classify_profit(value: Decimal) -> ProfitKind:
    if value > 0:
        return ProfitKind.GAIN
    if value < 0:
        return ProfitKind.LOSS
    return ProfitKind.BREAK_EVEN


def format_compact(value: Decimal | int | float) -> str:
    """Render a money figure for dashboard tiles.

    ``1_250_000`` renders as ``"1.3M"``, ``12_400`` as ``"12K"`` and ``950``
    as ``"950"``. Rounding is half-up. Values below one thousand, negative
    values included, render as a plain integer.
    """
    amount = Decimal(str(value))
    if amount >= MILLION:
        scaled = (amount / MILLION).quantize(Decimal("0.1"), rounding=ROUND_HALF_UP)
        return f"{scaled}M"
    if amount >= THOUSAND:
        scaled = (amount / THOUSAND).quantize(Decimal("1"), rounding=ROUND_HALF_UP)
        return f"{scaled}K"
    whole = amount.quantize(Decimal("1"), rounding=ROUND_HALF_UP)
    # Avoid rendering "-0" for small negative fractions.
    return "0" if whole == 0 else str(whole)


__all__ = [
    "ProfitKind",
    "require_nonnegative_money",
    "cost_price",
    "profit",
    "classify_profit",
    "format_compact",
]
