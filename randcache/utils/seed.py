"""
Seed management for the local and fallback generators.

The local request source and the pseudo-random fallback both draw from a
NumPy Generator. Tests pin the seed for reproducibility; production leaves
it unset so every generator is seeded from the OS entropy pool.

Usage:
    from randcache.utils.seed import make_rng
    rng = make_rng()            # uses config value (or OS entropy)
    rng = make_rng(123)         # explicit override
"""

import secrets
import numpy as np
from randcache.utils.config import get_config


def resolve_seed(seed: int | None = None) -> int:
    """Pick the seed a generator should use.

    Args:
        seed: Explicit seed value. If None, reads `random_seed` from
            config.yaml; a null config value draws 128 bits from `secrets`.

    Returns:
        The seed that will actually be applied.
    """
    if seed is None:
        seed = get_config().get("random_seed")
    if seed is None:
        seed = secrets.randbits(128)
    return seed


def make_rng(seed: int | None = None) -> np.random.Generator:
    """Return a PCG64-backed Generator seeded via resolve_seed()."""
    return np.random.default_rng(resolve_seed(seed))
