"""Compact duration strings such as `30m` or `24h`."""

import re

_DURATION = re.compile(r"^(\d+)([smhd])$")

_UNIT_SECONDS = {
    "s": 1,
    "m": 60,
    "h": 60 * 60,
    "d": 24 * 60 * 60,
}


class ConfigurationError(ValueError):
    """Raised for invalid configuration, before any work is scheduled."""

    pass


def parse_duration(value: str) -> int:
    """Return the duration in seconds."""
    if not isinstance(value, str):
        raise ConfigurationError(f"Invalid interval format: {value!r}")
    match = _DURATION.match(value)
    if not match:
        raise ConfigurationError(f"Invalid interval format: {value}")
    amount, unit = match.groups()
    seconds = int(amount) * _UNIT_SECONDS[unit]
    if seconds == 0:
        raise ConfigurationError(f"Duration must be positive: {value}")
    return seconds
