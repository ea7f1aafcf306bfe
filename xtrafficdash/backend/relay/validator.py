"""
relay/validator.py

Validation for relay configs before they reach storage.

A relay config is::

    {
      "source_api_host":     "203.0.113.7" | "node.example.com",
      "source_api_port":     8080,          # int or numeric string, 1..65535
      "source_api_password": "secret",      # non-blank
      "target_api_url":      "http://collector:37022/api/traffic"
    }
"""

from __future__ import annotations

import re
from typing import Any

from ..errors import ValidationError

_IPV4 = re.compile(r"^([0-9]{1,3}\.){3}[0-9]{1,3}$")
_DOMAIN = re.compile(r"^([a-zA-Z0-9\-]+\.)+[a-zA-Z]{2,}$")


def is_valid_host(host: Any) -> bool:
    if not isinstance(host, str) or not host:
        return False
    return bool(_IPV4.match(host) or _DOMAIN.match(host))


def parse_port(port: Any) -> int | None:
    """Return the port as int if it is 1..65535, else None."""
    if isinstance(port, bool):
        return None
    if isinstance(port, str):
        port = port.strip()
        if not port.isdecimal():
            return None
        port = int(port)
    if isinstance(port, int) and 0 < port <= 65535:
        return port
    return None


def is_valid_url(url: Any) -> bool:
    return isinstance(url, str) and url.startswith(("http://", "https://"))


def validate_relay_config(raw: Any, row: int | None = None) -> dict:
    """
    Check one config and return it normalised (port as int, strings stripped).

    ``row`` is the 1-based position in a batch, used in error messages.
    """
    prefix = f"row {row}: " if row is not None else ""
    if not isinstance(raw, dict):
        raise ValidationError(f"{prefix}config must be an object")

    host = raw.get("source_api_host")
    host = host.strip() if isinstance(host, str) else host
    if not is_valid_host(host):
        raise ValidationError(f"{prefix}invalid relay host (IPv4 address or domain expected)")

    port = parse_port(raw.get("source_api_port"))
    if port is None:
        raise ValidationError(f"{prefix}invalid relay port (1-65535)")

    password = raw.get("source_api_password")
    if not isinstance(password, str) or not password.strip():
        raise ValidationError(f"{prefix}relay password must not be empty")

    target = raw.get("target_api_url")
    target = target.strip() if isinstance(target, str) else target
    if not is_valid_url(target):
        raise ValidationError(f"{prefix}target API URL must start with http:// or https://")

    return {
        "source_api_host": host,
        "source_api_port": port,
        "source_api_password": password,
        "target_api_url": target,
    }


def validate_relay_configs(raws: Any) -> list[dict]:
    """Validate a full replacement set; every target URL must be identical."""
    if not isinstance(raws, list):
        raise ValidationError("expected a list of relay configs")
    configs = [validate_relay_config(raw, row=i) for i, raw in enumerate(raws, start=1)]
    if configs:
        target = configs[0]["target_api_url"]
        for cfg in configs[1:]:
            if cfg["target_api_url"] != target:
                raise ValidationError("all relay configs must share the same target API URL")
    return configs
