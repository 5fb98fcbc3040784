"""
Voting deadlines - auto-abstain sweep and administrator extensions.

The sweep re-enters the state machine's recompute path rather than deciding
anything itself. Every step is idempotent (abstains and their audit rows are
keyed by (request, validator), recompute is a no-op once terminal), so a sweep
that dies halfway is safe to run again.
"""

import time
from datetime import datetime, timedelta
from typing import Optional

from . import config, dao
from .db import get_db, transaction, retry_on_transient
from .errors import VerificationError, InvalidInput, NotAuthorized, NotExtendable
from .permissions import can_extend
from .schema import Actor, AutoAbstainRecord, SweepReport, VerificationRequest, VerificationStatus
from .workflow import VerificationWorkflow, SYSTEM_ACTOR, workflow as default_workflow
from ..util.logging import logger


class DeadlineSweeper:
    """Drives expired panels to auto-abstain and manages deadline extensions."""

    def __init__(self, workflow: Optional[VerificationWorkflow] = None):
        self.workflow = workflow or default_workflow

    def sweep_expired(self, now: Optional[datetime] = None) -> SweepReport:
        """Auto-abstain silent validators on every in_review request past its deadline."""
        now = dao.resolve_now(now)
        start = time.monotonic()
        report = SweepReport()

        with get_db() as conn:
            expired = dao.list_expired_request_ids(conn, now)

        for request_id in expired:
            try:
                abstained, decided, stalled = self._sweep_request(request_id, now)
            except VerificationError as e:
                # Isolate failures - the rest of the batch still gets swept
                report.failed[request_id] = e.reason
                logger.error(f"Deadline sweep failed for {request_id}: {e.reason} {e.message}")
                continue
            except Exception as e:
                report.failed[request_id] = type(e).__name__
                logger.error(f"Deadline sweep failed for {request_id}: {type(e).__name__}: {e}")
                continue

            report.requests_processed += 1
            report.validators_auto_abstained += abstained
            if decided:
                report.transitions.append(request_id)
                self.workflow.notifier.dispatch(decided)
            if stalled:
                report.stalled.append(request_id)

        logger.log_sweep(report.requests_processed, report.validators_auto_abstained, len(report.transitions),
                         len(report.stalled), len(report.failed), (time.monotonic() - start) * 1000)
        return report

    @retry_on_transient
    def _sweep_request(self, request_id: str, now: datetime):
        with transaction() as conn:
            request = dao.get_request(conn, request_id)
            # Re-checked under the lock: a vote or an extension may have landed since the scan
            if request is None or request.status != VerificationStatus.IN_REVIEW:
                return 0, None, False
            if request.voting_deadline is None or request.voting_deadline >= now:
                return 0, None, False

            abstained = []
            for validator_id in dao.list_silent_validators(conn, request_id):
                if dao.insert_auto_abstain(conn, request_id, validator_id, now):
                    abstained.append(validator_id)
                dao.insert_auto_abstain_record(conn, AutoAbstainRecord(
                    request_id=request_id,
                    validator_id=validator_id,
                    auto_abstained_at=now,
                    original_deadline=request.voting_deadline,
                ))

            if abstained:
                dao.add_event(conn, request_id, "validators_auto_abstained",
                              f"{len(abstained)} validator(s) auto-abstained due to deadline expiry",
                              SYSTEM_ACTOR,
                              {"validator_ids": abstained, "deadline": request.voting_deadline.isoformat()},
                              now)

            decided = self.workflow._recompute_locked(conn, request_id, now)

            stalled = decided is None and not self._stall_logged(conn, request)
            if stalled:
                dao.add_event(conn, request_id, "consensus_stalled",
                              "All validators accounted for without consensus; administrator action required",
                              SYSTEM_ACTOR, {"deadline": request.voting_deadline.isoformat()}, now)

        if abstained:
            logger.info(f"Auto-abstained {len(abstained)} validator(s) on {request_id}")
        if stalled:
            logger.warning(f"Verification {request_id} stalled without consensus after deadline")
        return len(abstained), decided, stalled

    def _stall_logged(self, conn, request: VerificationRequest) -> bool:
        """A stall is reported once per deadline; an extension re-arms it."""
        deadline = request.voting_deadline.isoformat()
        return any(event.metadata.get("deadline") == deadline
                   for event in dao.list_events(conn, request.id, "consensus_stalled"))

    @retry_on_transient
    def extend_deadline(self, request_id: str, extension: Optional[timedelta], actor: Actor,
                        now: Optional[datetime] = None) -> VerificationRequest:
        """Push the voting deadline of an in_review request further out."""
        now = dao.resolve_now(now)
        if extension is None:
            extension = timedelta(days=config.DEADLINE_EXTENSION_DAYS)

        if not can_extend(actor):
            error = NotAuthorized("Only administrators can extend voting deadlines")
            logger.log_rejection("deadline.extend", request_id, actor.user_id, error.reason, error.message)
            raise error
        if extension <= timedelta(0):
            raise InvalidInput("Extension must be positive")

        try:
            with transaction() as conn:
                request = self.workflow._load(conn, request_id)
                if request.status != VerificationStatus.IN_REVIEW or request.voting_deadline is None:
                    raise NotExtendable(f"Can only extend deadline for verifications in review "
                                        f"(status: {request.status.value})")

                previous = request.voting_deadline
                new_deadline = previous + extension
                original = request.original_deadline or previous
                dao.set_deadline(conn, request_id, new_deadline, original)
                dao.add_event(conn, request_id, "deadline_extended",
                              f"Voting deadline extended by {extension}", actor.user_id,
                              {"previous_deadline": previous.isoformat(), "new_deadline": new_deadline.isoformat(),
                               "original_deadline": original.isoformat(),
                               "extension_seconds": int(extension.total_seconds())},
                              now)
                request = dao.get_request(conn, request_id)
        except VerificationError as e:
            logger.log_rejection("deadline.extend", request_id, actor.user_id, e.reason, e.message)
            raise

        logger.log_deadline_extended(request_id, previous, new_deadline, actor.user_id)
        return request

    def time_remaining(self, request_id: str, now: Optional[datetime] = None) -> Optional[timedelta]:
        """Time until the voting deadline (negative once expired), or None without a deadline."""
        request = self.workflow.get_request(request_id)
        if request.voting_deadline is None:
            return None
        return request.voting_deadline - dao.resolve_now(now)

    def is_deadline_expired(self, request_id: str, now: Optional[datetime] = None) -> bool:
        remaining = self.time_remaining(request_id, now)
        return remaining is not None and remaining < timedelta(0)


# Global sweeper instance
sweeper = DeadlineSweeper()


def sweep_expired(now: Optional[datetime] = None) -> SweepReport:
    """Run one deadline sweep (scheduled entry point)."""
    return sweeper.sweep_expired(now)


def extend_deadline(request_id: str, extension: Optional[timedelta], actor: Actor) -> VerificationRequest:
    """Extend the voting deadline of an in_review request."""
    return sweeper.extend_deadline(request_id, extension, actor)
