"""
backend/formatting.py

Display helpers shared by the API layer, CSV export and ingest logging.
"""

from __future__ import annotations

import ipaddress
from datetime import datetime, tzinfo

_UNITS = ("B", "KB", "MB", "GB", "TB")


def format_bytes(num: int | float | None) -> str:
    """1024-based human-readable size with two decimals, e.g. '1.50 KB'."""
    if not num:
        return "0 B"
    value = float(num)
    for unit in _UNITS:
        if abs(value) < 1024 or unit == _UNITS[-1]:
            return f"{value:.2f} {unit}"
        value /= 1024
    return f"{value:.2f} {_UNITS[-1]}"  # pragma: no cover


def mask_ip(ip: str | None) -> str | None:
    """
    Hide the host part of an address for display.

        203.0.113.45          → 203.0.xxx.xxx
        2001:db8:85a3::7334   → 2001:db8:xxx:xxx
    Anything that is not an IP literal is returned unchanged.
    """
    if not ip:
        return ip
    try:
        addr = ipaddress.ip_address(ip)
    except ValueError:
        return ip
    if addr.version == 4:
        a, b, _, _ = ip.split(".")
        return f"{a}.{b}.xxx.xxx"
    groups = ip.split(":")
    if len(groups) >= 4:
        return f"{groups[0]}:{groups[1]}:xxx:xxx"
    return ip


def to_iso(ts: float | None, tz: tzinfo) -> str | None:
    """Epoch seconds → ISO-8601 string in ``tz``; None stays None."""
    if ts is None:
        return None
    return datetime.fromtimestamp(ts, tz).isoformat(timespec="seconds")
