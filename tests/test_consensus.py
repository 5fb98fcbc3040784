"""
Consensus calculator tests - threshold decisions and progress figures.
"""

import pytest

from verification.core.consensus import evaluate, APPROVED, REJECTED, PENDING


class TestConsensusDecision:
    """Approval and early-rejection thresholds."""

    def test_approved_at_threshold(self):
        result = evaluate(5, 3, approvals=3, rejections=0, votes_cast=3)
        assert result.decision == APPROVED
        assert result.progress == 100
        assert result.is_terminal

    def test_approved_with_some_rejections(self):
        result = evaluate(5, 3, approvals=3, rejections=2, votes_cast=5)
        assert result.decision == APPROVED

    def test_rejected_when_threshold_unreachable(self):
        """Three rejections on 5/3 leave at most two possible approvals."""
        result = evaluate(5, 3, approvals=0, rejections=3, votes_cast=3)
        assert result.decision == REJECTED
        assert result.progress == 100

    def test_two_rejections_still_pending(self):
        result = evaluate(5, 3, approvals=0, rejections=2, votes_cast=2)
        assert result.decision == PENDING
        assert not result.is_terminal

    def test_abstains_never_decide(self):
        result = evaluate(5, 3, approvals=1, rejections=1, votes_cast=5)
        assert result.decision == PENDING
        assert result.progress == 100

    def test_unanimous_panel(self):
        assert evaluate(3, 3, 2, 0, 2).decision == PENDING
        assert evaluate(3, 3, 3, 0, 3).decision == APPROVED
        assert evaluate(3, 3, 2, 1, 3).decision == REJECTED

    def test_single_approval_panel(self):
        assert evaluate(3, 1, 1, 0, 1).decision == APPROVED
        assert evaluate(3, 1, 0, 2, 2).decision == PENDING
        assert evaluate(3, 1, 0, 3, 3).decision == REJECTED

    @pytest.mark.parametrize("panel_size", [0, -1])
    def test_empty_panel_is_pending(self, panel_size):
        result = evaluate(panel_size, 3, 5, 5, 5)
        assert result.decision == PENDING
        assert result.progress == 0

    def test_every_tally_on_small_panel(self):
        """Exhaustive check of 5/3 against the threshold rules."""
        n, k = 5, 3
        for a in range(n + 1):
            for r in range(n + 1 - a):
                result = evaluate(n, k, a, r, a + r)
                if a >= k:
                    assert result.decision == APPROVED
                elif r > n - k:
                    assert result.decision == REJECTED
                else:
                    assert result.decision == PENDING


class TestConsensusProgress:
    """Pending progress is 30 plus the voted share of 70, rounded half-up."""

    def test_no_votes(self):
        assert evaluate(5, 3, 0, 0, 0).progress == 30

    def test_one_vote_of_five(self):
        assert evaluate(5, 3, 1, 0, 1).progress == 44

    def test_two_votes_of_five(self):
        assert evaluate(5, 3, 1, 1, 2).progress == 58

    def test_half_rounds_up(self):
        # 70 * 1 / 4 = 17.5
        assert evaluate(4, 3, 1, 0, 1).progress == 48

    def test_thirds(self):
        # 70 * 1 / 3 = 23.33, 70 * 2 / 3 = 46.67
        assert evaluate(3, 3, 1, 0, 1).progress == 53
        assert evaluate(3, 3, 2, 0, 2).progress == 77

    def test_abstains_count_toward_progress(self):
        assert evaluate(5, 3, 0, 0, 3).progress == 72

    def test_progress_capped(self):
        assert evaluate(5, 3, 0, 0, 9).progress == 100

    def test_progress_monotonic_in_votes(self):
        values = [evaluate(7, 5, 0, 0, v).progress for v in range(8)]
        assert values == sorted(values)
