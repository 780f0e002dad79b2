"""
Bit Utilities
=============
Fixed-width conversions between text, integers and bit arrays.

All bit arrays are numpy uint8 arrays holding 0/1 values, most significant
bit first.
"""

import numpy as np

HEADER_BITS = 32


def text_to_bits(text: str) -> np.ndarray:
    """
    Convert text to a bit array, 8 bits per character.

    Only the low 8 bits of each character code are kept.
    """
    codes = np.fromiter((ord(ch) & 0xFF for ch in text), dtype=np.uint8, count=len(text))
    return np.unpackbits(codes)


def bits_to_text(bits: np.ndarray) -> str:
    """
    Convert a bit array back to text.

    Decoding stops at the first NUL character. Trailing bits that do not
    make up a whole character are ignored.
    """
    whole = (len(bits) // 8) * 8
    codes = np.packbits(np.asarray(bits[:whole], dtype=np.uint8))

    nul = np.flatnonzero(codes == 0)
    if nul.size:
        codes = codes[:nul[0]]

    return "".join(map(chr, codes.tolist()))


def uint32_to_bits(value: int) -> np.ndarray:
    """Big-endian 32-bit representation of ``value`` (wrapped to 32 bits)."""
    raw = np.array([value & 0xFFFFFFFF], dtype=">u4").view(np.uint8)
    return np.unpackbits(raw)


def bits_to_uint32(bits: np.ndarray) -> int:
    """Inverse of :func:`uint32_to_bits`."""
    if len(bits) != HEADER_BITS:
        raise ValueError(f"Expected {HEADER_BITS} bits, got {len(bits)}")

    raw = np.packbits(np.asarray(bits, dtype=np.uint8))
    return int(raw.view(">u4")[0])
