"""Shared fixtures and tick factories."""

import pytest

from utils import Tick


def quote_for(digit, base=1000):
    """A quote whose last digit is `digit`; integer `base` moves the price."""
    return base + digit / 100 + 0.004


def make_ticks(quotes, symbol="R_50", start_epoch=1_700_000_000):
    return [
        Tick(epoch=start_epoch + i, quote=q, symbol=symbol, id=f"t{i}")
        for i, q in enumerate(quotes)
    ]


def ticks_for_digits(digits, bases=None, symbol="R_50"):
    bases = bases if bases is not None else [1000] * len(digits)
    return make_ticks([quote_for(d, b) for d, b in zip(digits, bases)], symbol=symbol)


@pytest.fixture
def tick_factory():
    return make_ticks


@pytest.fixture
def digit_ticks():
    return ticks_for_digits
