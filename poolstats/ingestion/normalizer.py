"""
Converts pool-reported numbers into the units stored in the database.

Hashrates arrive as floats and are stored as integers in difficulty-1 shares per
second: round(value * 2**32), rounded half to even, computed exactly with rational
arithmetic so the result never depends on float formatting. Nothing in here raises;
a value that cannot be interpreted becomes 0.
"""
import math
from datetime import datetime, timezone
from decimal import Decimal, InvalidOperation
from fractions import Fraction
from typing import Dict, Iterable, Optional

from poolstats.db.models import MAX_UNBOUNDED_INTEGER
from poolstats.schemas.snapshot import HashrateWindows, PoolSnapshot

HASHRATE_FACTOR = 2 ** 32

# Anything past 10**90 is out of range for every column
MAX_DECIMAL_EXPONENT = 90

# Snapshot window name -> model column
USER_WINDOWS = {
    "hashrate_1m": "hashrate1m",
    "hashrate_5m": "hashrate5m",
    "hashrate_1hr": "hashrate1hr",
    "hashrate_1d": "hashrate1d",
    "hashrate_7d": "hashrate7d",
}

POOL_WINDOWS = {
    "hashrate_1m": "hashrate1m",
    "hashrate_5m": "hashrate5m",
    "hashrate_15m": "hashrate15m",
    "hashrate_1hr": "hashrate1hr",
    "hashrate_6hr": "hashrate6hr",
    "hashrate_1d": "hashrate1d",
    "hashrate_7d": "hashrate7d",
}

SHARE_RATE_WINDOWS = {
    "shares_per_second_1m": "sps1m",
    "shares_per_second_5m": "sps5m",
    "shares_per_second_15m": "sps15m",
    "shares_per_second_1h": "sps1h",
}


def _to_fraction(value) -> Optional[Fraction]:
    if value is None or isinstance(value, bool):
        return None
    if isinstance(value, str):
        value = _parse_decimal(value)
        if value is None:
            return None
    try:
        return Fraction(value)
    except (ValueError, TypeError, OverflowError, ZeroDivisionError):
        return None


def _parse_decimal(text: str) -> Optional[Decimal]:
    # Exponents are range-checked before any exact conversion: Fraction("1e2000000000") never finishes
    try:
        number = Decimal(text.strip())
    except (InvalidOperation, ValueError):
        return None
    if not number.is_finite():
        return None
    if number.is_zero() or number.adjusted() < -MAX_DECIMAL_EXPONENT:
        return Decimal(0)
    if number.adjusted() > MAX_DECIMAL_EXPONENT:
        return None
    return number


def normalize_hashrate(value) -> int:
    """
    round(value * 2**32) as an unbounded int. None, negative, non-numeric,
    non-finite and out-of-range values give 0.
    """
    rate = _to_fraction(value)
    if rate is None or rate <= 0:
        return 0
    scaled = round(rate * HASHRATE_FACTOR)
    if scaled > MAX_UNBOUNDED_INTEGER:
        return 0
    return scaled


def coerce_int(value, upper: int = MAX_UNBOUNDED_INTEGER) -> int:
    """
    Counts, shares, timestamps. Truncates toward zero; negatives, junk and values above
    `upper` (the target column's limit) give 0.
    """
    number = _to_fraction(value)
    if number is None or number <= 0:
        return 0
    result = int(number)
    if result > upper:
        return 0
    return result


def coerce_float(value) -> float:
    if value is None or isinstance(value, bool):
        return 0.0
    try:
        result = float(value)
    except (ValueError, TypeError, OverflowError):
        return 0.0
    if not math.isfinite(result) or result < 0:
        return 0.0
    return result


def normalize_windows(windows: Optional[HashrateWindows], names: Dict[str, str] = USER_WINDOWS) -> Dict[str, int]:
    """Maps each snapshot window to its column with the canonical value; missing windows give 0."""
    return {
        column: normalize_hashrate(getattr(windows, field, None) if windows is not None else None)
        for field, column in names.items()
    }


def _has_any(source, fields: Iterable[str]) -> bool:
    return any(getattr(source, f, None) is not None for f in fields)


def resolve_pool_hashrate(snapshot: PoolSnapshot) -> Dict[str, int]:
    """
    Pool-wide hashrate by fallback, since pools do not always write the top-level rollup:
    the document's own rollup, else the first user's, else that user's first worker's, else zeros.
    """
    if snapshot.computed_hashrate is not None:
        return normalize_windows(snapshot.computed_hashrate, POOL_WINDOWS)
    if _has_any(snapshot, POOL_WINDOWS):
        return normalize_windows(snapshot, POOL_WINDOWS)

    first_user = next(iter(snapshot.users.values()), None)
    if first_user is not None:
        if first_user.computed_hash_rate is not None:
            return normalize_windows(first_user.computed_hash_rate, POOL_WINDOWS)
        first_worker = next(iter(first_user.workers.values()), None)
        if first_worker is not None and first_worker.computed_hash_rate is not None:
            return normalize_windows(first_worker.computed_hash_rate, POOL_WINDOWS)

    return normalize_windows(None, POOL_WINDOWS)


def resolve_pool_share_rate(snapshot: PoolSnapshot) -> Dict[str, float]:
    source: Optional[object] = snapshot.computed_share_rate
    if source is None and _has_any(snapshot, SHARE_RATE_WINDOWS):
        source = snapshot
    return {
        column: coerce_float(getattr(source, field, None) if source is not None else None)
        for field, column in SHARE_RATE_WINDOWS.items()
    }


def unix_to_datetime(value) -> datetime:
    """Unix seconds to an aware UTC datetime; junk or out-of-range values give the epoch."""
    try:
        return datetime.fromtimestamp(coerce_int(value), tz=timezone.utc)
    except (OverflowError, OSError, ValueError):
        return datetime.fromtimestamp(0, tz=timezone.utc)
