"""Logging utility functions."""

from decimal import Decimal
from typing import Union


def mask_amount(amount: Union[Decimal, float], show_relative: bool = True) -> str:
    """
    Mask financial amounts in logs to prevent exposure of sensitive values.

    Args:
        amount: The amount to mask
        show_relative: If True, show relative scale (e.g., "~$X.XXk") instead of exact amount

    Returns:
        Masked string representation (e.g., "~$5.00k" instead of "$5000.00")
    """
    if not show_relative:
        return "[REDACTED]"

    sign = "-" if amount < 0 else ""
    value = abs(amount)
    if value >= 1000000:
        return f"{sign}~${value / 1000000:.2f}M"
    elif value >= 1000:
        return f"{sign}~${value / 1000:.2f}k"
    else:
        return f"{sign}~${value:.2f}"
