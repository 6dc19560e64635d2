"""Reading ``GOVERNANCE_*`` settings from the process environment.

Settings are addressed by their short name (``tenant_column``,
``audit_buffer_size``); the variable read is always ``GOVERNANCE_<NAME>``.
Blank values count as unset.
"""

import os
import re
from typing import Iterable, List, Optional

ENV_PREFIX = "GOVERNANCE_"

_SETTING_NAME = re.compile(r"[A-Z][A-Z0-9_]*")
_TRUE = frozenset({"true", "1", "yes", "on"})
_FALSE = frozenset({"false", "0", "no", "off"})


def env_name(setting: str) -> str:
    """Return the environment variable that holds a governance setting.

    ``tenant_column``, ``TENANT_COLUMN`` and ``GOVERNANCE_TENANT_COLUMN`` all
    map to ``GOVERNANCE_TENANT_COLUMN``.
    """
    name = setting.strip().upper()
    if name.startswith(ENV_PREFIX):
        name = name[len(ENV_PREFIX) :]
    if not _SETTING_NAME.fullmatch(name):
        raise ValueError(f"'{setting}' is not a valid governance setting name.")
    return ENV_PREFIX + name


def read_setting(setting: str) -> Optional[str]:
    """Return the stripped value of a setting, or None when unset or blank."""
    value = os.getenv(env_name(setting))
    if value is None or not value.strip():
        return None
    return value.strip()


def read_names(setting: str) -> Optional[List[str]]:
    """Return a comma-separated setting as a list of non-empty names."""
    value = read_setting(setting)
    if value is None:
        return None
    return [item.strip() for item in value.split(",") if item.strip()]


def read_number(setting: str, kind: type = float):
    """Return a numeric setting parsed with ``kind`` (``int`` or ``float``)."""
    value = read_setting(setting)
    if value is None:
        return None
    try:
        return kind(value)
    except ValueError:
        expected = "an integer" if kind is int else "a number"
        raise ValueError(f"{env_name(setting)} must be {expected}, got '{value}'.") from None


def read_flag(setting: str) -> Optional[bool]:
    """Return a boolean setting (true/1/yes/on or false/0/no/off)."""
    value = read_setting(setting)
    if value is None:
        return None
    lowered = value.lower()
    if lowered in _TRUE:
        return True
    if lowered in _FALSE:
        return False
    raise ValueError(f"{env_name(setting)} must be a boolean, got '{value}'.")


def unrecognized_settings(known: Iterable[str]) -> List[str]:
    """Return set ``GOVERNANCE_*`` variables that name none of the known settings."""
    expected = {env_name(setting) for setting in known}
    return sorted(
        name for name in os.environ if name.startswith(ENV_PREFIX) and name not in expected
    )
