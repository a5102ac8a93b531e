from __future__ import annotations

import re
from decimal import ROUND_HALF_UP, Decimal


_PERPETUAL_SUFFIX = re.compile(r"\.P$", re.IGNORECASE)
_QUOTE_ASSETS = ("USDT", "USDC")


def normalize_symbol(raw: str) -> str:
    """Turn TradingView tickers (``BTCUSDT``, ``ETHUSDT.P``) into BingX form (``BTC-USDT``)."""
    if not raw:
        return raw
    base = raw.strip()
    # "ETHUSDT.P.P" and "BTCUSDT .P" must settle in one call
    while True:
        stripped = _PERPETUAL_SUFFIX.sub("", base).strip()
        if stripped == base:
            break
        base = stripped
    base = base.upper()
    if "-" in base:
        return base
    for quote in _QUOTE_ASSETS:
        if base.endswith(quote) and len(base) > len(quote):
            return f"{base[: -len(quote)]}-{quote}"
    return base


def decimal_places(tick_size: float) -> int:
    # repr handles both 0.001 and 1e-05
    exponent = Decimal(repr(float(tick_size))).normalize().as_tuple().exponent
    return max(0, -exponent)


def round_to_tick(value: float, tick_size: float) -> float:
    """Round ``value`` to the nearest multiple of ``tick_size``.

    Works on the decimal representation of both numbers so that grids like
    ``0.00001`` never produce artifacts such as ``0.15540000000000001``.
    Quantities use the same function with the contract step size.
    """
    if tick_size <= 0:
        raise ValueError(f"Invalid tick size: {tick_size}")
    tick = Decimal(repr(float(tick_size)))
    steps = (Decimal(repr(float(value))) / tick).quantize(Decimal(1), rounding=ROUND_HALF_UP)
    places = decimal_places(tick_size)
    rounded = (steps * tick).quantize(Decimal(1).scaleb(-places), rounding=ROUND_HALF_UP)
    return float(rounded)


def format_to_tick(value: float, tick_size: float) -> str:
    # str(0.00001) is "1e-05", which BingX rejects
    return f"{round_to_tick(value, tick_size):.{decimal_places(tick_size)}f}"
