"""
Config Decoder & Snapshotter

Threshold configuration is stored generically as (key, value, type) rows.
This module is the only place those strings are turned into typed values.

snapshot_config() is called exactly once per inspection, at creation. The
result is stored verbatim on the inspection and never refreshed, so a
re-audit years later reproduces the same classification bands.
"""
import copy
import json
import logging
from dataclasses import dataclass
from typing import Any, Dict, Iterable

logger = logging.getLogger(__name__)


CONFIG_TYPES = ("number", "boolean", "json", "string")


@dataclass(frozen=True)
class ConfigEntry:
    """One raw config row as read from storage."""
    key: str
    value: str
    type: str = "string"


def decode_value(entry: ConfigEntry) -> Any:
    """
    Decode one config value according to its declared type.

    Raises:
        ValueError: number values that do not parse
    """
    if entry.type == "number":
        number = float(entry.value)
        return int(number) if number.is_integer() and "." not in entry.value else number
    if entry.type == "boolean":
        return entry.value.strip().lower() == "true"
    if entry.type == "json":
        try:
            return json.loads(entry.value)
        except json.JSONDecodeError:
            logger.warning(f"Config '{entry.key}' is not valid JSON, keeping raw string")
            return entry.value
    return entry.value


def decode_config(entries: Iterable[ConfigEntry]) -> Dict[str, Any]:
    """
    Decode all rows into a typed key/value map.

    A number that fails to parse is dropped (callers fall back to defaults)
    rather than leaking a string into arithmetic.
    """
    decoded: Dict[str, Any] = {}
    for entry in entries:
        try:
            decoded[entry.key] = decode_value(entry)
        except ValueError:
            logger.warning(f"Config '{entry.key}' has unparseable {entry.type} value {entry.value!r}, ignoring")
    return decoded


def snapshot_config(entries: Iterable[ConfigEntry]) -> Dict[str, Any]:
    """Freeze the live config into a plain, detached mapping for storage on an inspection."""
    return copy.deepcopy(decode_config(entries))
