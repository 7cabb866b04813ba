import math

import pytest

from memsync.sizing import canonical_json, estimate_size


def test_estimate_size_uses_default_multiplier() -> None:
    # '"hello"' is 7 chars; 7 * 2.5 = 17.5 rounds up
    assert estimate_size("hello") == 18


def test_estimate_size_with_custom_multiplier() -> None:
    assert estimate_size("hi", 1.0) == 4


def test_estimate_size_of_empty_values_is_positive() -> None:
    assert estimate_size("") == 5
    assert estimate_size({}) == 5
    assert estimate_size([]) == 5


def test_canonical_json_is_compact_and_keeps_unicode() -> None:
    assert canonical_json({"key": "value", "n": [1, 2]}) == '{"key":"value","n":[1,2]}'
    assert canonical_json("żółw") == '"żółw"'


@pytest.mark.parametrize(
    "value",
    ["", "x" * 40, {"title": "note", "tags": ["a", "b"]}, [1, 2, 3], 42, None, 3.5],
)
@pytest.mark.parametrize("multiplier", [0.5, 1.0, 2.5, 7.0])
def test_estimate_size_never_underestimates_serialized_length(value, multiplier) -> None:
    assert estimate_size(value, multiplier) >= math.ceil(len(canonical_json(value)) * multiplier)


def test_estimate_size_stringifies_unserializable_values() -> None:
    class Opaque:
        def __str__(self) -> str:
            return "opaque"

    assert estimate_size(Opaque(), 1.0) == len('"opaque"')


def test_estimate_size_rejects_non_positive_multiplier() -> None:
    with pytest.raises(ValueError, match="multiplier"):
        estimate_size("hello", 0)
