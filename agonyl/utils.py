"""Helpers for fixed-width, NUL-padded strings used in wire messages."""


def make_fixed_length_string_bytes(text: str, length: int) -> bytes:
    """Encode ``text`` into exactly ``length`` bytes, truncating or NUL-padding."""
    if length < 0:
        raise ValueError(f"length must not be negative, got {length}")
    return text.encode("utf-8")[:length].ljust(length, b"\x00")


def read_string_from_bytes(buffer: bytes | bytearray | memoryview) -> str:
    """Decode the bytes up to the first NUL byte, or the whole buffer if there is none."""
    data = bytes(buffer)
    end = data.find(0)
    if end != -1:
        data = data[:end]
    return data.decode("utf-8", errors="replace")