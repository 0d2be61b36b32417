"""Tests for the sort key registry."""

import pytest

from effects.registry import get, key_max, list_all


def test_registry_contains_luminance():
    info = get("luminance")
    assert info["label"] == "Luminance"
    assert info["max"] == 255
    assert callable(info["fn"])


def test_key_max_per_key():
    assert key_max("luminance") == 255
    assert key_max("saturation") == 255
    assert key_max("hue") == 360


def test_list_all_has_correct_shape():
    keys = list_all()
    assert [k["name"] for k in keys] == ["luminance", "hue", "saturation"]
    for k in keys:
        assert set(k) == {"name", "label", "max"}


def test_get_nonexistent_raises():
    with pytest.raises(ValueError, match="unknown sort key"):
        get("redness")
