"""The 562 packet cipher applied to client-bound game packets."""

_MASK64 = (1 << 64) - 1
_BLOCK = 4


class Crypto562:
    """Block-wise XOR stream cipher; the first twelve bytes are left in the clear."""

    CONST_KEY1 = 0x241AE7
    CONST_KEY2 = 0x15DCB2
    OFFSET = 0x0C

    def __init__(self, dynamic_key: int) -> None:
        self.dynamic_key = dynamic_key

    def encrypt(self, data: bytes | bytearray) -> bytes:
        return self._transform(data, decrypting=False)

    def decrypt(self, data: bytes | bytearray) -> bytes:
        return self._transform(data, decrypting=True)

    def _transform(self, data: bytes | bytearray, decrypting: bool) -> bytes:
        out = bytearray(data)
        last_start = len(out) - _BLOCK
        for start in range(self.OFFSET, last_start + 1, _BLOCK):
            out[start:start + _BLOCK] = self._transform_block(
                out[start:start + _BLOCK], decrypting
            )
        return bytes(out)

    def _transform_block(self, block: bytearray, decrypting: bool) -> bytes:
        key = self.dynamic_key & _MASK64
        result = bytearray()
        for source in block:
            produced = source ^ ((key >> 8) & 0xFF)
            feedback = source if decrypting else produced
            key = ((feedback + key) * self.CONST_KEY1 + self.CONST_KEY2) & _MASK64
            result.append(produced)
        return bytes(result)