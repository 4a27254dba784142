import pytest

from agonyl.utils import make_fixed_length_string_bytes, read_string_from_bytes


def test_pads_with_nul_bytes():
    assert make_fixed_length_string_bytes("abc", 5) == b"abc\x00\x00"


def test_truncates_long_text():
    assert make_fixed_length_string_bytes("abcdef", 3) == b"abc"


def test_exact_length_is_unchanged():
    assert make_fixed_length_string_bytes("abcd", 4) == b"abcd"


def test_result_length_always_matches():
    for length in range(10):
        assert len(make_fixed_length_string_bytes("hello", length)) == length


def test_negative_length_is_rejected():
    with pytest.raises(ValueError):
        make_fixed_length_string_bytes("abc", -1)


def test_read_stops_at_first_nul():
    assert read_string_from_bytes(b"abc\x00def") == "abc"


def test_read_without_nul_returns_everything():
    assert read_string_from_bytes(b"abcdef") == "abcdef"


def test_read_empty_when_first_byte_is_nul():
    assert read_string_from_bytes(b"\x00abc") == ""


def test_read_accepts_bytearray():
    assert read_string_from_bytes(bytearray(b"xy\x00z")) == "xy"


@pytest.mark.parametrize("text", ["", "a", "account", "x" * 20])
def test_round_trip(text):
    assert read_string_from_bytes(make_fixed_length_string_bytes(text, 0x15)) == text