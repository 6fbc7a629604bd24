"""
Secret Validator

Checks the quality of the signing secret used for consent receipts.
Returns findings; Settings decides whether they are fatal (outside
development) or warnings.
"""

import logging
import math
from collections import Counter

logger = logging.getLogger(__name__)

# Known weak or demo secrets that must never be used in production
_KNOWN_WEAK_KEYS: frozenset[str] = frozenset(
    {
        "secret",
        "changeme",
        "your-secret-key",
        "supersecret",
        "development",
        "dev_secret",
        "test_secret",
        "insecure",
        "password",
        "default-secret",
        "12345678901234567890123456789012",
        "abcdefghijklmnopqrstuvwxyzabcdef",
    }
)

_MIN_KEY_LENGTH = 32
_MIN_ENTROPY = 3.5
_MIN_DISTINCT_CHARS = 8


def _shannon_entropy(key: str) -> float:
    """Compute Shannon entropy (bits per character) of a string."""
    if not key:
        return 0.0
    counts = Counter(key)
    total = len(key)
    return -sum((c / total) * math.log2(c / total) for c in counts.values())


def validate_secret(key: str | None) -> list[str]:
    """
    Validate secret quality.

    Returns a list of problems (empty list = no issues found).
    """
    problems: list[str] = []

    if not key:
        problems.append("SECRET is not set; consent receipts cannot be signed")
        return problems

    if len(key) < _MIN_KEY_LENGTH:
        problems.append(f"SECRET is only {len(key)} chars (minimum {_MIN_KEY_LENGTH})")

    if key.lower() in _KNOWN_WEAK_KEYS:
        problems.append("SECRET matches a known weak/demo value")

    entropy = _shannon_entropy(key)
    if entropy < _MIN_ENTROPY:
        problems.append(
            f"SECRET has low entropy ({entropy:.2f} bits/char); use a randomly "
            "generated key (e.g. 'openssl rand -hex 32')"
        )

    if len(set(key)) < _MIN_DISTINCT_CHARS:
        problems.append(f"SECRET uses fewer than {_MIN_DISTINCT_CHARS} distinct characters")

    return problems
