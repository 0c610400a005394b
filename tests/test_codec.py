from dataclasses import dataclass

import pytest

from lbproxy.codec import decode, encode


@dataclass
class _Section:
    bind: str
    max_connections: int | None = None


def test_json_uses_four_space_indent():
    assert encode({"a": 1}, "json") == '{\n    "a": 1\n}'


@pytest.mark.parametrize("fmt", ["json", "toml"])
def test_round_trip(fmt):
    data = {"servers": {"sample": {"bind": "localhost:3000", "balance": "weight", "ports": [1, 2]}}}
    assert decode(encode(data, fmt), fmt) == data


def test_toml_decode():
    assert decode("a = 1", "toml") == {"a": 1}


def test_toml_omits_none_values():
    text = encode({"section": _Section(bind="localhost:3000")}, "toml")
    assert decode(text, "toml") == {"section": {"bind": "localhost:3000"}}


def test_json_keeps_none_values():
    text = encode(_Section(bind="x"), "json")
    assert decode(text, "json") == {"bind": "x", "max_connections": None}


@pytest.mark.parametrize("fmt", ["yaml", ""])
def test_unknown_format_encode(fmt):
    with pytest.raises(ValueError, match="Unknown format"):
        encode({}, fmt)


def test_unknown_format_decode():
    with pytest.raises(ValueError, match="Unknown format yaml"):
        decode("", "yaml")


def test_invalid_json_raises():
    with pytest.raises(ValueError):
        decode("{not json", "json")


def test_invalid_toml_raises():
    with pytest.raises(ValueError):
        decode("= broken", "toml")