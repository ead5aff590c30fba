"""Conversion between bus property maps and plain Python values.

jeepney represents a D-Bus variant as a ``(signature, value)`` tuple.
NetworkManager's connection profiles are ``a{sa{sv}}``: settings name ->
property name -> variant. Only the outermost variant layer is unwrapped;
nested values keep jeepney's representation.
"""

from __future__ import annotations

from typing import Any

NestedSettingsMap = dict[str, dict[str, Any]]

SETTINGS_SIGNATURE = "a{sa{sv}}"


def unwrap_settings(raw: dict[str, dict[str, tuple[str, Any]]]) -> NestedSettingsMap:
    """Strip the variant wrappers off a received ``a{sa{sv}}`` value."""
    return {
        setting: {name: _unwrap(variant) for name, variant in props.items()}
        for setting, props in raw.items()
    }


def _unwrap(variant: Any) -> Any:
    if isinstance(variant, tuple) and len(variant) == 2 and isinstance(variant[0], str):
        return variant[1]
    return variant


def wrap_settings(settings: NestedSettingsMap) -> dict[str, dict[str, tuple[str, Any]]]:
    """Wrap plain property values into variants for an ``a{sa{sv}}`` reply."""
    return {
        setting: wrap_properties(props)
        for setting, props in settings.items()
    }


def wrap_properties(props: dict[str, Any]) -> dict[str, tuple[str, Any]]:
    return {name: to_variant(value) for name, value in props.items()}


def to_variant(value: Any) -> tuple[str, Any]:
    """Wrap a plain value as a jeepney variant.

    Supports the shapes the settings encoders produce: strings, byte
    strings, booleans, unsigned integers, property maps and lists of
    property maps.

    Raises:
        TypeError: For values with no supported bus representation.
    """
    # bool first: it is an int subclass
    if isinstance(value, bool):
        return ("b", value)
    if isinstance(value, str):
        return ("s", value)
    if isinstance(value, bytes):
        return ("ay", value)
    if isinstance(value, int) and value >= 0:
        return ("u", value)
    if isinstance(value, dict):
        return ("a{sv}", wrap_properties(value))
    if isinstance(value, list) and all(isinstance(item, dict) for item in value):
        return ("aa{sv}", [wrap_properties(item) for item in value])
    raise TypeError(f"Cannot encode {type(value).__name__} value as a D-Bus variant")
