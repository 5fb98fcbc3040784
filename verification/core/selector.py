"""
Validator pool selector - uniformly random panel selection.

The randomness source is pluggable: production uses system entropy, tests
pass a seeded ``random.Random``. Selection has no side effects; persisting the
panel is the state machine's job so a failed selection never leaves partial
assignment rows behind.
"""

import random
from typing import Iterable, Optional, Set

from .errors import InsufficientCandidates, InvalidPanelConfig

_system_random = random.SystemRandom()


def eligible_candidates(candidate_pool: Iterable[str], exclude: Optional[str]) -> Set[str]:
    """Candidate ids with the excluded submitter removed."""
    return {c for c in candidate_pool if c != exclude}


def select_panel(candidate_pool: Iterable[str], exclude: Optional[str], n: int,
                 rng: Optional[random.Random] = None) -> Set[str]:
    """Pick ``n`` distinct validators from the pool, never ``exclude``.

    Args:
        candidate_pool: ids of users eligible to validate
        exclude: the submitter of the project under review
        n: panel size
        rng: randomness source (defaults to system entropy)

    Raises:
        InsufficientCandidates: fewer than ``n`` eligible candidates
    """
    if n < 1:
        raise InvalidPanelConfig(f"Panel size must be >= 1: {n}")

    eligible = eligible_candidates(candidate_pool, exclude)
    if len(eligible) < n:
        raise InsufficientCandidates(required=n, available=len(eligible))

    rng = rng or _system_random
    # Sorted first so a seeded rng gives the same panel regardless of set order
    return set(rng.sample(sorted(eligible), n))
