"""
Shamir secret sharing over GF(2^8), byte-wise.

Share x-coordinates are 1..n; any `threshold` shares reconstruct the secret,
fewer reveal nothing about it.
"""

import secrets
from typing import Dict, List, Tuple

# AES polynomial x^8 + x^4 + x^3 + x + 1
_EXP = [0] * 512
_LOG = [0] * 256

_x = 1
for _i in range(255):
    _EXP[_i] = _x
    _LOG[_x] = _i
    _x ^= (_x << 1) ^ (0x11B if _x & 0x80 else 0)
    _x &= 0xFF
for _i in range(255, 512):
    _EXP[_i] = _EXP[_i - 255]


def _mul(a: int, b: int) -> int:
    if a == 0 or b == 0:
        return 0
    return _EXP[_LOG[a] + _LOG[b]]


def _div(a: int, b: int) -> int:
    if b == 0:
        raise ZeroDivisionError("division by zero in GF(256)")
    if a == 0:
        return 0
    return _EXP[(_LOG[a] - _LOG[b]) % 255]


def _eval(coeffs: List[int], x: int) -> int:
    # Horner, highest degree first
    result = 0
    for c in reversed(coeffs):
        result = _mul(result, x) ^ c
    return result


def split(secret: bytes, threshold: int, shares: int) -> List[Tuple[int, bytes]]:
    """Split `secret` into `shares` (x, y) pairs, `threshold` of which recover it"""
    if not 1 <= threshold <= shares <= 255:
        raise ValueError(f"invalid threshold {threshold} of {shares}")

    ys = [bytearray(len(secret)) for _ in range(shares)]
    for pos, byte in enumerate(secret):
        coeffs = [byte] + list(secrets.token_bytes(threshold - 1))
        for i in range(shares):
            ys[i][pos] = _eval(coeffs, i + 1)
    return [(i + 1, bytes(y)) for i, y in enumerate(ys)]


def combine(shares: Dict[int, bytes]) -> bytes:
    """Lagrange interpolation at x = 0"""
    if not shares:
        raise ValueError("no shares to combine")
    xs = list(shares.keys())
    if len(set(xs)) != len(xs) or any(not 1 <= x <= 255 for x in xs):
        raise ValueError("share indices must be distinct and in 1..255")
    lengths = {len(y) for y in shares.values()}
    if len(lengths) != 1:
        raise ValueError("shares have different lengths")

    length = lengths.pop()
    secret = bytearray(length)
    for xi in xs:
        # Lagrange basis l_i(0) = prod x_j / (x_j - x_i); subtraction is XOR
        basis = 1
        for xj in xs:
            if xj != xi:
                basis = _mul(basis, _div(xj, xj ^ xi))
        yi = shares[xi]
        for pos in range(length):
            secret[pos] ^= _mul(yi[pos], basis)
    return bytes(secret)
