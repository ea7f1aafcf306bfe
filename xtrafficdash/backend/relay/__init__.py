"""relay/__init__.py"""
from .client import RelayClient, build_report, sum_traffic
from .poller import relay_poller, sync_all
from .validator import validate_relay_config, validate_relay_configs

__all__ = [
    "RelayClient",
    "build_report",
    "sum_traffic",
    "relay_poller",
    "sync_all",
    "validate_relay_config",
    "validate_relay_configs",
]
