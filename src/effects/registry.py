"""Sort key registry — central lookup for pixel sort keys."""

from typing import Callable

import numpy as np

from effects import keys

KeyFn = Callable[[np.ndarray], np.ndarray]

_REGISTRY: dict[str, dict] = {}


def register(name: str, fn: KeyFn, max_value: int, label: str):
    """Register a sort key."""
    _REGISTRY[name] = {
        "fn": fn,
        "max": max_value,
        "label": label,
    }


def get(name: str) -> dict:
    """Get key info by name.

    Raises:
        ValueError: If no key is registered under ``name``.
    """
    info = _REGISTRY.get(name)
    if info is None:
        raise ValueError(f"unknown sort key: {name!r} (known: {sorted(_REGISTRY)})")
    return info


def key_max(name: str) -> int:
    """Largest value the named key can produce; also the top of its threshold range."""
    return get(name)["max"]


def list_all() -> list[dict]:
    """List all registered keys with metadata."""
    return [
        {"name": name, "label": info["label"], "max": info["max"]}
        for name, info in _REGISTRY.items()
    ]


def _auto_register():
    """Register the built-in keys."""
    register("luminance", keys.luminance, keys.LUMINANCE_MAX, "Luminance")
    register("hue", keys.hue, keys.HUE_MAX, "Hue")
    register("saturation", keys.saturation, keys.SATURATION_MAX, "Saturation")


_auto_register()
