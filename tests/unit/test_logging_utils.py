"""Unit tests for logging helpers."""

from decimal import Decimal

from src.utils.logging_utils import mask_amount


def test_mask_amount_scales():
    assert mask_amount(Decimal("250")) == "~$250.00"
    assert mask_amount(Decimal("5000")) == "~$5.00k"
    assert mask_amount(Decimal("2500000")) == "~$2.50M"


def test_mask_negative_amount():
    assert mask_amount(Decimal("-1500")) == "-~$1.50k"


def test_mask_amount_redacted():
    assert mask_amount(Decimal("5000"), show_relative=False) == "[REDACTED]"
