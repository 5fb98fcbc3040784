"""
Consensus calculator - pure threshold evaluation over a fixed panel.

approved  iff approvals >= k
rejected  iff rejections > n - k  (k is no longer reachable)
otherwise pending, progress = min(100, 30 + round(70 * votes / n))
"""

from dataclasses import dataclass

APPROVED = "approved"
REJECTED = "rejected"
PENDING = "pending"

# Progress contributed by having a panel assigned at all
ASSIGNED_PROGRESS = 30
VOTING_PROGRESS = 70


@dataclass(frozen=True)
class ConsensusResult:
    decision: str
    progress: int

    @property
    def is_terminal(self) -> bool:
        return self.decision != PENDING


def evaluate(panel_size: int, required_approvals: int, approvals: int, rejections: int,
             votes_cast: int) -> ConsensusResult:
    """Evaluate the tally of a panel.

    ``votes_cast`` counts every live vote, abstains included, and only feeds
    the progress figure. An empty panel never yields a decision.
    """
    if panel_size <= 0:
        return ConsensusResult(PENDING, 0)

    if approvals >= required_approvals:
        return ConsensusResult(APPROVED, 100)

    if rejections > panel_size - required_approvals:
        return ConsensusResult(REJECTED, 100)

    # half-up rounding
    voting = (2 * VOTING_PROGRESS * votes_cast + panel_size) // (2 * panel_size)
    return ConsensusResult(PENDING, min(100, ASSIGNED_PROGRESS + voting))
