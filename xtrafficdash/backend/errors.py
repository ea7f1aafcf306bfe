"""
backend/errors.py

Exception taxonomy shared by the core and the API layer.

    ValidationError  — malformed identifiers / payloads      → HTTP 400
    NotFoundError    — referenced source or entity missing   → HTTP 404
    StorageError     — transaction failed and rolled back    → HTTP 500
    AuthError        — missing / invalid bearer token        → HTTP 401
    RelayError       — relay pull / push failed              → HTTP 502

Parse warnings (a single bad delta inside a batch) are not exceptions:
they are logged, counted in METRICS.parse_warnings and skipped.
"""

from __future__ import annotations


class TrafficError(Exception):
    """Base class for every error the core raises on purpose."""

    status_code: int = 500

    def __init__(self, message: str) -> None:
        super().__init__(message)
        self.message = message


class ValidationError(TrafficError):
    status_code = 400


class NotFoundError(TrafficError):
    status_code = 404


class StorageError(TrafficError):
    status_code = 500


class AuthError(TrafficError):
    status_code = 401


class RelayError(TrafficError):
    """A relay pull or push failed (network, status code or body)."""

    status_code = 502
