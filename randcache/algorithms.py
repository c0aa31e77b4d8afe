"""
Derived random operations built on a single bit-extraction primitive.

Every function here takes `next_bits`, a callable returning an int whose low
`k` bits are uniformly random for k in 0..32 (RandomStream.next is one). The
operations never touch a stream's state directly, so any bit source can
reuse them.
"""

import operator
from typing import Callable, MutableSequence

NextBits = Callable[[int], int]

# Widest single draw from next_bits
MAX_DRAW_BITS = 32

# MASKS[k] keeps the low k bits of a 32-bit value
MASKS = tuple((1 << k) - 1 for k in range(MAX_DRAW_BITS + 1))


def is_pow2(n: int) -> bool:
    """True if n is a positive power of two."""
    return n > 0 and (n & (n - 1)) == 0


def next_pow2(n: int) -> int:
    """Smallest power of two >= n (n itself when already a power of two)."""
    if n <= 1:
        return 1
    return 1 << (n - 1).bit_length()


def log2(n: int) -> int:
    """Exact log2 of a power of two."""
    if not is_pow2(n):
        raise ValueError(f"{n} is not a power of two")
    return n.bit_length() - 1


def random_bits(next_bits: NextBits, k: int) -> int:
    """Non-negative int with k random bits, for any k >= 0.

    Draws 32-bit chunks, most significant first, then the remainder.
    """
    if k < 0:
        raise ValueError("number of bits must be non-negative")
    value = 0
    while k > MAX_DRAW_BITS:
        value = (value << MAX_DRAW_BITS) | next_bits(MAX_DRAW_BITS)
        k -= MAX_DRAW_BITS
    return (value << k) | next_bits(k)


def bounded_int(next_bits: NextBits, n: int) -> int:
    """Uniform int in [0, n).

    n == 1 costs nothing; a power of two costs exactly log2(n) bits;
    anything else draws log2(next_pow2(n)) bits at a time and rejects draws
    >= n. Fewer than two draws are needed on average.
    """
    n = operator.index(n)
    if n <= 0:
        raise ValueError("bound must be positive")
    if n == 1:
        return 0

    width = log2(next_pow2(n))
    if is_pow2(n):
        return random_bits(next_bits, width)

    while True:
        r = random_bits(next_bits, width)
        if r < n:
            return r


def randrange(next_bits: NextBits, start: int, stop: int | None = None, step: int = 1) -> int:
    """Random choice from range(start, stop, step)."""
    if stop is None:
        start, stop = 0, start
    width = len(range(start, stop, step))
    if width <= 0:
        raise ValueError(f"empty range for randrange({start}, {stop}, {step})")
    return start + step * bounded_int(next_bits, width)


def random_bytes(next_bits: NextBits, n: int) -> bytes:
    """n random bytes, one 8-bit draw each."""
    if n < 0:
        raise ValueError("number of bytes must be non-negative")
    return bytes(next_bits(8) for _ in range(n))


def random_float(next_bits: NextBits) -> float:
    """Uniform float in [0.0, 1.0) with 53 bits of precision."""
    return ((next_bits(26) << 27) + next_bits(27)) * (1.0 / (1 << 53))


def random_bool(next_bits: NextBits) -> bool:
    return next_bits(1) != 0


def shuffle(next_bits: NextBits, items: MutableSequence) -> None:
    """Fisher-Yates shuffle in place."""
    for i in range(len(items) - 1, 0, -1):
        j = bounded_int(next_bits, i + 1)
        items[i], items[j] = items[j], items[i]
