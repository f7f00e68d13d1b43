import math
import re
import numpy as np
from typing import Iterable, Optional

MONTHS_PER_YEAR = 12

_NON_NUMERIC = re.compile(r'[^0-9.\-]')


def parse_optional_number(value) -> Optional[float]:
    """Like parse_number, but None when the value does not parse to a finite number."""
    if value is None or isinstance(value, bool):
        return None
    if isinstance(value, (int, float, np.integer, np.floating)):
        n = float(value)
    else:
        cleaned = _NON_NUMERIC.sub('', str(value).replace(',', ''))
        try:
            n = float(cleaned)
        except ValueError:
            return None
    return n if math.isfinite(n) else None


def parse_number(value) -> float:
    """
    Coerce a user- or provider-supplied value to a finite float.

    Strings are stripped of thousands separators, currency symbols and units ("1,480 kWh" -> 1480.0).
    Anything that does not parse to a finite number gives 0.0.
    """
    n = parse_optional_number(value)
    return 0.0 if n is None else n


def clamp(x: float, lo: float, hi: float) -> float:
    return min(max(x, lo), hi)


def safe_divide(numerator: float, denominator: float) -> float:
    """Ratio that is 0.0 instead of NaN/inf when the denominator is zero or the result is not finite."""
    if denominator == 0:
        return 0.0
    result = numerator / denominator
    return result if math.isfinite(result) else 0.0


def finite_or_zero(x: float) -> float:
    return float(x) if math.isfinite(x) else 0.0


def annuity_payment(r: float, n: int) -> float:
    """
    Payment per period per unit of principal for a fully-amortizing loan.

    Args:
        r: Interest rate per period (e.g. APR / 12)
        n: Number of periods

    Returns:
        Multiplier such that payment = principal * annuity_payment(r, n).
        A zero rate falls back to straight-line repayment, and n <= 0 gives 0.
    """
    if n <= 0:
        return 0.0
    if r == 0:
        return 1.0 / n
    return r / (1.0 - (1.0 + r) ** (-n))


def annuity_present_value_factor(r: float, n: int) -> float:
    """Present value of a unit payment per period for n periods; the inverse of annuity_payment."""
    if n <= 0:
        return 0.0
    if r == 0:
        return float(n)
    return (1.0 - (1.0 + r) ** (-n)) / r


def tiered_installed_cost(installed_kwp: float, cost_tiers: Iterable) -> float:
    """
    Installed cost for a capacity priced in marginal bands.

    Each tier prices the capacity between the previous tier's edge and its own up_to_kwp;
    the final tier (up_to_kwp=None) prices everything above.
    """
    remaining_kwp = max(0.0, installed_kwp)
    lower_edge = 0.0
    total_cost = 0.0
    for tier in cost_tiers:
        if tier.up_to_kwp is None:
            band_kwp = remaining_kwp
        else:
            band_kwp = min(remaining_kwp, max(0.0, tier.up_to_kwp - lower_edge))
            lower_edge = tier.up_to_kwp
        total_cost += band_kwp * tier.cost_per_kwp
        remaining_kwp -= band_kwp
        if remaining_kwp <= 0:
            break
    return total_cost
