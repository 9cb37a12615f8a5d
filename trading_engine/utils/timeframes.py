"""Timeframe string to minutes / seconds conversion."""

_UNIT_SECONDS = {
    "m": 60,
    "h": 60 * 60,
    "d": 24 * 60 * 60,
    "w": 7 * 24 * 60 * 60,
    "M": 30 * 24 * 60 * 60,
}


def timeframe_seconds(tf: str) -> int:
    """Convert Binance-style timeframe ('1m', '4h', '1d', '1w', '1M') to seconds."""
    tf = tf.strip()
    unit = tf[-1:] if tf[-1:] == "M" else tf[-1:].lower()
    if unit not in _UNIT_SECONDS or not tf[:-1].isdigit():
        raise ValueError(f"Unsupported timeframe: {tf}")
    count = int(tf[:-1])
    if count <= 0:
        raise ValueError(f"Unsupported timeframe: {tf}")
    return count * _UNIT_SECONDS[unit]


def timeframe_minutes(tf: str) -> int:
    """Convert Binance-style timeframe (e.g. '5m', '1h', '1d') to minutes."""
    return timeframe_seconds(tf) // 60


def periods_per_year(tf: str) -> float:
    """Number of bars of this timeframe in a 365-day year."""
    return 365 * 24 * 60 * 60 / timeframe_seconds(tf)
