"""Value formatting helpers shared by the dashboard and both export engines.

Every function here is total: unexpected input is returned as text instead of
raising, so renderers can call them on raw payload cells without guarding.
"""

from __future__ import annotations

from datetime import date, datetime
import math
import re
from typing import Any, Iterable

import numpy as np
import pandas as pd

from src.defaults import DEFAULTS, earnings_keywords


_COMPACT_STEPS = (
    (1e12, "T"),
    (1e9, "B"),
    (1e6, "M"),
    (1e3, "K"),
)

_TIMESTAMP_FORMATS = {
    "date": "%b %d, %Y",
    "datetime": "%b %d, %Y %H:%M",
    "time": "%H:%M",
    "iso": "%Y-%m-%d",
}

_WORD_START = re.compile(r"\b\w")


def to_number(value: Any) -> float | None:
    """Return a finite float for numeric-looking input, otherwise None."""
    if value is None or isinstance(value, (bool, np.bool_)):
        return None
    if isinstance(value, (int, float, np.integer, np.floating)):
        num = float(value)
    elif isinstance(value, str):
        text = value.strip().replace(",", "")
        if not text:
            return None
        try:
            num = float(text)
        except ValueError:
            return None
    else:
        return None
    if not math.isfinite(num):
        return None
    return num


def _trim_decimal(text: str) -> str:
    if "." in text:
        text = text.rstrip("0").rstrip(".")
    return text


def _plain(abs_num: float) -> str:
    if float(abs_num).is_integer():
        return str(int(abs_num))
    return _trim_decimal(f"{abs_num:.2f}")


def _compact_magnitude(abs_num: float) -> str:
    for idx, (threshold, suffix) in enumerate(_COMPACT_STEPS):
        if abs_num >= threshold:
            text = f"{abs_num / threshold:.1f}"
            # Rounding may carry into the next unit: 999_950 is "1M", not "1000K".
            if float(text) >= 1000 and idx > 0:
                threshold, suffix = _COMPACT_STEPS[idx - 1]
                text = f"{abs_num / threshold:.1f}"
            return f"{_trim_decimal(text)}{suffix}"
    return _plain(abs_num)


def format_number_compact(value: Any) -> str:
    """Scale to K/M/B/T with one decimal place, e.g. 1500 -> '1.5K'."""
    num = to_number(value)
    if num is None:
        return str(value)
    sign = "-" if num < 0 else ""
    return sign + _compact_magnitude(abs(num))


def format_currency_compact(value: Any, symbol: str | None = None) -> str:
    num = to_number(value)
    if num is None:
        return str(value)
    symbol = DEFAULTS["currency_symbol"] if symbol is None else symbol
    sign = "-" if num < 0 else ""
    abs_num = abs(num)
    if abs_num < 1e3 and not abs_num.is_integer():
        return f"{sign}{symbol}{abs_num:.2f}"
    return f"{sign}{symbol}{_compact_magnitude(abs_num)}"


def format_number(value: Any) -> str:
    num = to_number(value)
    if num is None:
        return str(value)
    if num.is_integer():
        return f"{int(num):,}"
    return _trim_decimal(f"{num:,.2f}")


def format_percentage(value: Any, decimals: int = 1) -> str:
    num = to_number(value)
    if num is None:
        return str(value)
    return f"{num:.{int(decimals)}f}%"


def format_growth(value: Any, decimals: int = 2) -> str:
    """Signed percentage, e.g. 12.345 -> '+12.35%'."""
    num = to_number(value)
    if num is None:
        return "N/A"
    sign = "+" if num > 0 else ""
    return f"{sign}{num:.{int(decimals)}f}%"


def format_earnings_range(min_value: Any, max_value: Any) -> str:
    low = to_number(min_value)
    high = to_number(max_value)
    if low is None and high is None:
        return "N/A"
    if low is None or high is None or low == high:
        return format_currency_compact(high if low is None else low)
    return f"{format_currency_compact(low)} - {format_currency_compact(high)}"


def is_earnings_key(key: Any, keywords: Iterable[str] | None = None) -> bool:
    words = earnings_keywords() if keywords is None else tuple(keywords)
    lowered = str(key).lower()
    return any(str(word).lower() in lowered for word in words if str(word))


def format_smart_value(key: Any, value: Any, earnings_keywords: Iterable[str] | None = None) -> str:
    """Pick currency or compact-number presentation from the field name.

    Strings that already carry a currency symbol are re-scaled as currency.
    Anything that is not numeric is returned verbatim; ``None`` becomes "N/A".
    """
    if value is None:
        return "N/A"
    if isinstance(value, str) and "$" in value:
        num = to_number(value.replace("$", ""))
        return value if num is None else format_currency_compact(num)
    num = to_number(value)
    if num is None:
        return str(value)
    if is_earnings_key(key, earnings_keywords):
        return format_currency_compact(num)
    return format_number_compact(num)


def convert_snake_case_to_title_case(value: Any) -> str:
    """'total_plays' -> 'Total Plays'. Applying it twice changes nothing."""
    text = str(value).replace("_", " ")
    return _WORD_START.sub(lambda m: m.group(0).upper(), text)


def _utc_now() -> pd.Timestamp:
    return pd.Timestamp.now(tz="UTC").tz_localize(None)


def _naive_utc(ts: pd.Timestamp) -> pd.Timestamp:
    if ts.tzinfo is not None:
        return ts.tz_convert("UTC").tz_localize(None)
    return ts


def parse_timestamp(value: Any, now: pd.Timestamp | None = None) -> pd.Timestamp:
    """Parse str/number/date input into a naive UTC timestamp.

    Numbers above ``timestamp_ms_threshold`` are epoch milliseconds, anything
    smaller is epoch seconds. Unparseable input yields ``now``.
    """
    fallback = _utc_now() if now is None else _naive_utc(pd.Timestamp(now))
    try:
        if isinstance(value, pd.Timestamp):
            ts = value
        elif isinstance(value, (datetime, date, np.datetime64)):
            ts = pd.Timestamp(value)
        else:
            num = to_number(value) if not isinstance(value, str) else None
            if num is None and isinstance(value, str):
                stripped = value.strip()
                if re.fullmatch(r"-?\d+(\.\d+)?", stripped):
                    num = float(stripped)
            if num is not None:
                unit = "ms" if abs(num) > float(DEFAULTS["timestamp_ms_threshold"]) else "s"
                ts = pd.Timestamp(num, unit=unit)
            elif isinstance(value, str) and value.strip():
                ts = pd.Timestamp(value.strip())
            else:
                return fallback
    except (ValueError, TypeError, OverflowError, pd.errors.OutOfBoundsDatetime):
        return fallback
    if ts is pd.NaT or pd.isna(ts):
        return fallback
    return _naive_utc(ts)


def format_timestamp(value: Any, style: str = "date", now: pd.Timestamp | None = None) -> str:
    fmt = _TIMESTAMP_FORMATS.get(style, style)
    return parse_timestamp(value, now=now).strftime(fmt)
