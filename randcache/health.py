"""
Blob health checks.

Cheap sanity tests run on each blob a RandomStream pulls from its cache:
  - Frequency (monobit), from NIST SP 800-22: are 0s and 1s balanced?
  - Shannon entropy per byte: close to 8.0 for random bytes.

A failing blob is logged, never rejected; the upstream source is trusted
and these checks only surface a source that has gone badly wrong.

Reference: https://csrc.nist.gov/publications/detail/sp/800-22/rev-1a/final
"""

from dataclasses import dataclass

import numpy as np
from scipy.special import erfc


@dataclass(frozen=True)
class BlobHealth:
    """Outcome of check_blob() for one blob."""

    num_bits: int
    frequency_p: float
    entropy: float
    passed: bool


def frequency_test(bits: np.ndarray) -> dict:
    """NIST Test 1: Frequency (Monobit) Test.

    The test statistic is |sum of ±1 mapped bits| / sqrt(n).
    """
    n = len(bits)
    if n == 0:
        return {"p_value": 1.0, "statistic": 0.0}
    # Map 0→-1, 1→+1
    s = np.sum(2 * bits.astype(np.float64) - 1)
    s_obs = abs(s) / np.sqrt(n)
    p_value = erfc(s_obs / np.sqrt(2))
    return {"p_value": float(p_value), "statistic": float(s_obs)}


def byte_entropy(data: bytes) -> float:
    """Shannon entropy of the byte-value distribution, in bits (0 to 8)."""
    if not data:
        return 0.0
    counts = np.bincount(np.frombuffer(data, dtype=np.uint8), minlength=256)
    probs = counts[counts > 0] / len(data)
    return float(-np.sum(probs * np.log2(probs)))


def check_blob(data: bytes, alpha: float = 0.01) -> BlobHealth:
    """Run the monobit test on a blob.

    Entropy is reported for logging only: short blobs cannot reach 8.0
    bits per byte even when perfectly random, so it is not a pass criterion.

    Args:
        data: Raw blob bytes.
        alpha: Significance level; p-values below it fail the blob.
    """
    bits = np.unpackbits(np.frombuffer(data, dtype=np.uint8))
    freq = frequency_test(bits)
    return BlobHealth(
        num_bits=int(bits.size),
        frequency_p=freq["p_value"],
        entropy=byte_entropy(data),
        passed=freq["p_value"] >= alpha,
    )
