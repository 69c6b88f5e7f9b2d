"""Utility functions and helpers for the imdeploy application."""
from typing import Any

from ..config import Config
from .poll import PollOutcome, PollResult, poll_until


def redact_sensitive_data(data: Any) -> Any:
    """Recursively redact sensitive data from dictionaries and lists.

    Args:
        data: Input data that might contain sensitive information

    Returns:
        Data with sensitive values redacted
    """
    if isinstance(data, dict):
        return {
            k: "[REDACTED]" if any(
                redact_key.lower() in k.lower()
                for redact_key in Config.REDACT_KEYS
            ) else redact_sensitive_data(v)
            for k, v in data.items()
        }
    elif isinstance(data, (list, tuple)):
        return [redact_sensitive_data(item) for item in data]
    return data


def format_duration(seconds: float) -> str:
    """Format a duration as ``{minutes}m {seconds:02}s``."""
    total = int(seconds)
    return f"{total // 60}m {total % 60:02d}s"


__all__ = [
    'PollOutcome',
    'PollResult',
    'poll_until',
    'redact_sensitive_data',
    'format_duration',
]
