# SPDX-License-Identifier: GPL-3.0-or-later
"""
goal: the content fingerprint used for duplicate detection everywhere in MemCap. the scanning agent uses it
to pre-filter blocks before sending them, and the memory store uses it as the authoritative duplicate check,
so both sides import this one function instead of carrying their own copy.

how the fingerprint is computed
1. trim leading/trailing whitespace (the same character set a browser trims) so "  hello " and "hello"
   fingerprint the same
2. fold every character's code point into a 32-bit accumulator: acc = acc * 31 + code point
3. after every step the accumulator wraps like a signed 32-bit integer (two's complement overflow)
4. render abs(acc) in base 36 (digits then lowercase letters)

this is NOT a cryptographic hash. two different blocks can collide, and a collision means the second one
is rejected as a duplicate. that is an accepted trade-off for a local single-user tool.
"""

from __future__ import annotations  # lets us use string annotations before classes are defined

_BASE36_DIGITS = "0123456789abcdefghijklmnopqrstuvwxyz"  # alphabet for base 36 rendering
_MASK_32 = 0xFFFFFFFF  # keeps the accumulator inside 32 bits
_SIGN_BIT = 0x80000000  # top bit of a 32-bit word, set means negative in two's complement

# whitespace and line terminators a browser's String.prototype.trim() removes. str.strip() differs: it also
# drops \x1c-\x1f and \x85 but keeps \ufeff, which would give a different fingerprint than the page side
_TRIM_CHARS = (
    "\t\n\v\f\r \u00a0\u1680"
    "\u2000\u2001\u2002\u2003\u2004\u2005\u2006\u2007\u2008\u2009\u200a"
    "\u2028\u2029\u202f\u205f\u3000\ufeff"
)


def _to_signed_32(value: int) -> int:
    # reinterpret the low 32 bits of value as a signed two's complement integer
    value &= _MASK_32  # drop everything above 32 bits
    if value & _SIGN_BIT:  # if the sign bit is set
        return value - (1 << 32)  # it is a negative number
    return value


def to_base36(value: int) -> str:
    """render a non-negative integer in lowercase base 36."""
    if value < 0:
        raise ValueError("to_base36 expects a non-negative integer")
    if value == 0:
        return "0"
    digits: list[str] = []
    while value:
        value, rem = divmod(value, 36)  # peel off the lowest base 36 digit
        digits.append(_BASE36_DIGITS[rem])
    return "".join(reversed(digits))


def rolling_hash_32(text: str) -> int:
    """signed 32-bit rolling hash (acc * 31 + code point) over text, without any normalization."""
    acc = 0
    for ch in text:
        acc = _to_signed_32(acc * 31 + ord(ch))  # wrap after every character, like int32 overflow
    return acc


def trim_content(content: str) -> str:
    """strip leading/trailing whitespace exactly the way the fingerprint does."""
    return content.strip(_TRIM_CHARS)


def content_hash(content: str) -> str:
    """fingerprint of content after whitespace trimming. deterministic, pure, never raises for str input."""
    return to_base36(abs(rolling_hash_32(trim_content(content))))
