"""
Verification state machine - panel assignment, vote casting and consensus.

pending -> in_review -> {approved, rejected}

The vote upsert, the tally recompute and the conditional terminal write all
happen inside one exclusive transaction, so concurrent votes (and the deadline
sweeper) serialize on it: whichever caller crosses a threshold performs the
transition and every later caller finds the record already terminal.
"""

import random
import uuid
from datetime import datetime, timedelta
from typing import List, Optional, Tuple

from . import config, dao, signatures
from .consensus import evaluate, ASSIGNED_PROGRESS, PENDING
from .db import get_db, transaction, retry_on_transient
from .errors import (
    VerificationError,
    InvalidInput,
    InvalidPanelConfig,
    InvalidSignature,
    NotAuthorized,
    NotAssigned,
    RequestNotFound,
    WrongState,
    DeadlinePassed,
    AlreadyAssigned,
    NotStalled,
)
from .notifications import dispatcher as default_dispatcher, NotificationDispatcher, PanelAssigned, DecisionReached
from .permissions import can_assign, can_resolve, can_vote
from .schema import (
    Actor,
    Role,
    ConsensusStatus,
    SignatureProof,
    ValidatorAssignment,
    ValidatorProfile,
    ValidatorVote,
    VerificationEvent,
    VerificationRequest,
    VerificationStatus,
    VoteDecision,
    VoteOutcome,
)
from .selector import select_panel
from ..util.logging import logger

SYSTEM_ACTOR = "system"
RESOLVED_BY_CONSENSUS = "consensus"


def parse_decision(decision) -> VoteDecision:
    try:
        return VoteDecision(decision)
    except ValueError:
        raise InvalidInput("Vote must be approve, reject, or abstain")


class VerificationWorkflow:
    """Owns verification records and every transition of their status."""

    def __init__(self, notifier: Optional[NotificationDispatcher] = None):
        self.notifier = notifier or default_dispatcher

    # Validator directory

    @retry_on_transient
    def register_validator(self, user_id: str, role, wallet_address: Optional[str] = None,
                           email_verified: bool = True, active: bool = True) -> ValidatorProfile:
        """Add or update a user in the validator directory."""
        if not user_id or not user_id.strip():
            raise InvalidInput("user_id cannot be empty")
        try:
            role = Role(role)
        except ValueError:
            raise InvalidInput(f"Unknown role: {role}")
        profile = ValidatorProfile(user_id.strip(), role, wallet_address, email_verified, active)
        with transaction() as conn:
            dao.upsert_validator(conn, profile)
        return profile

    # Requests

    @retry_on_transient
    def create_request(self, project_id: str, submitter_id: str, required_approvals: Optional[int] = None,
                       panel_size: Optional[int] = None, now: Optional[datetime] = None) -> VerificationRequest:
        """Create a pending verification request for a submitted project."""
        if not project_id or not submitter_id:
            raise InvalidInput("project_id and submitter_id are required")

        k = config.REQUIRED_APPROVALS if required_approvals is None else required_approvals
        n = config.VALIDATOR_COUNT if panel_size is None else panel_size
        self._check_panel_config(k, n)

        request = VerificationRequest(
            id=str(uuid.uuid4()),
            project_id=project_id,
            submitter_id=submitter_id,
            required_approvals=k,
            panel_size=n,
            status=VerificationStatus.PENDING,
            progress=0,
            submitted_at=dao.resolve_now(now),
        )

        with transaction() as conn:
            dao.insert_request(conn, request)
            dao.add_event(conn, request.id, "request_submitted",
                          f"Verification requested for project {project_id}", submitter_id,
                          {"required_approvals": k, "panel_size": n}, request.submitted_at)

        logger.log_request_created(request.id, project_id, submitter_id)
        return request

    def get_request(self, request_id: str) -> VerificationRequest:
        with get_db() as conn:
            return self._load(conn, request_id)

    # Panel assignment

    @retry_on_transient
    def assign_panel(self, request_id: str, actor: Actor, validator_ids: Optional[List[str]] = None,
                     rng: Optional[random.Random] = None,
                     now: Optional[datetime] = None) -> Tuple[VerificationRequest, List[ValidatorAssignment]]:
        """Persist a panel, set the voting deadline and move the request to in_review.

        The panel is drawn at random from the validator directory unless the
        administrator supplies ``validator_ids``. Either everything is written
        or nothing is.
        """
        now = dao.resolve_now(now)
        if not can_assign(actor):
            raise self._rejected("panel.assign", request_id, actor,
                                 NotAuthorized("Only administrators can assign validators"))

        try:
            with transaction() as conn:
                request = self._load(conn, request_id)
                if request.status != VerificationStatus.PENDING:
                    raise AlreadyAssigned(f"Can only assign validators to pending verifications "
                                          f"(status: {request.status.value})")
                self._check_panel_config(request.required_approvals, request.panel_size)

                candidates = dao.list_candidate_ids(conn)
                if validator_ids is None:
                    panel = sorted(select_panel(candidates, request.submitter_id, request.panel_size, rng))
                else:
                    panel = self._check_explicit_panel(request, list(validator_ids), set(candidates))

                deadline = now + timedelta(days=config.VOTING_DEADLINE_DAYS)
                assignments = dao.insert_assignments(conn, request_id, panel, actor.user_id, now)
                dao.mark_in_review(conn, request_id, actor.user_id, now, deadline, ASSIGNED_PROGRESS)
                dao.add_event(conn, request_id, "panel_assigned",
                              f"{len(panel)} validators assigned ({request.required_approvals} approvals required)",
                              actor.user_id,
                              {"validator_ids": panel, "required_approvals": request.required_approvals,
                               "voting_deadline": deadline.isoformat(), "auto_selected": validator_ids is None},
                              now)
                request = dao.get_request(conn, request_id)
        except VerificationError as e:
            raise self._rejected("panel.assign", request_id, actor, e)

        logger.log_panel_assigned(request_id, panel, request.required_approvals, deadline, actor.user_id)
        self.notifier.dispatch(PanelAssigned(request_id, request.project_id, panel,
                                             request.required_approvals, deadline))
        return request, assignments

    # Voting

    @retry_on_transient
    def cast_vote(self, request_id: str, actor: Actor, decision, proof: Optional[SignatureProof] = None,
                  notes: Optional[str] = None, now: Optional[datetime] = None) -> VoteOutcome:
        """Record (or replace) a validator's vote and recompute consensus.

        Preconditions, in order: assigned, in_review, not past the deadline,
        valid wallet signature. The returned status reflects this vote.
        """
        now = dao.resolve_now(now)
        decision = parse_decision(decision)
        if notes is not None and len(notes) > 1000:
            raise InvalidInput("Notes cannot exceed 1000 characters")

        try:
            with transaction() as conn:
                request = self._load(conn, request_id)
                assigned = dao.is_assigned(conn, request_id, actor.user_id)
                if not assigned:
                    raise NotAssigned("Validator is not assigned to this verification")
                if not can_vote(actor, assigned):
                    raise NotAuthorized(f"Role {actor.role.value} cannot vote")
                if request.status != VerificationStatus.IN_REVIEW:
                    raise WrongState(f"Verification must be in review to vote (status: {request.status.value})")
                if request.voting_deadline and now > request.voting_deadline:
                    raise DeadlinePassed("Voting deadline has passed")
                if config.is_signature_required():
                    self._check_signature(conn, request_id, actor, decision, proof, now)

                previous = dao.get_vote(conn, request_id, actor.user_id)
                vote = ValidatorVote(
                    request_id=request_id,
                    validator_id=actor.user_id,
                    decision=decision,
                    voted_at=now,
                    notes=notes,
                    wallet_signature=proof.signature if proof else None,
                    wallet_address=proof.wallet_address if proof else None,
                    signed_at=proof.issued_at if proof else None,
                )
                dao.upsert_vote(conn, vote)
                dao.add_event(conn, request_id, "vote_replaced" if previous else "vote_cast",
                              f"Validator voted {decision.value}", actor.user_id,
                              {"decision": decision.value,
                               "previous_decision": previous.decision.value if previous else None},
                              now)

                decided = self._recompute_locked(conn, request_id, now)
                status = self._consensus_status(conn, dao.get_request(conn, request_id))
        except VerificationError as e:
            raise self._rejected("vote.cast", request_id, actor, e)

        logger.log_vote_cast(request_id, actor.user_id, decision.value, replaced=previous is not None)
        if decided:
            self.notifier.dispatch(decided)
        return VoteOutcome(vote=vote, consensus=status, replaced=previous is not None)

    def list_votes(self, request_id: str) -> List[ValidatorVote]:
        with get_db() as conn:
            self._load(conn, request_id)
            return dao.list_votes(conn, request_id)

    def list_assignments(self, request_id: str) -> List[ValidatorAssignment]:
        with get_db() as conn:
            self._load(conn, request_id)
            return dao.list_assignments(conn, request_id)

    def list_events(self, request_id: str, event_type: Optional[str] = None) -> List[VerificationEvent]:
        with get_db() as conn:
            return dao.list_events(conn, request_id, event_type)

    # Consensus

    @retry_on_transient
    def recompute(self, request_id: str, now: Optional[datetime] = None) -> ConsensusStatus:
        """Re-evaluate consensus from the vote rows; no-op once terminal."""
        now = dao.resolve_now(now)
        with transaction() as conn:
            self._load(conn, request_id)
            decided = self._recompute_locked(conn, request_id, now)
            status = self._consensus_status(conn, dao.get_request(conn, request_id))
        if decided:
            self.notifier.dispatch(decided)
        return status

    def get_consensus_status(self, request_id: str) -> ConsensusStatus:
        with get_db() as conn:
            return self._consensus_status(conn, self._load(conn, request_id))

    @retry_on_transient
    def force_resolve(self, request_id: str, decision: str, actor: Actor, reason: str,
                      now: Optional[datetime] = None) -> ConsensusStatus:
        """Administrator decision for a stalled request.

        Stalled means in_review, past the deadline, every panel member holds a
        live vote and neither threshold is met.
        """
        now = dao.resolve_now(now)
        if not can_resolve(actor):
            raise self._rejected("verification.force_resolve", request_id, actor,
                                 NotAuthorized("Only administrators can resolve verifications"))
        if decision not in (VerificationStatus.APPROVED.value, VerificationStatus.REJECTED.value):
            raise InvalidInput("Decision must be approved or rejected")
        if not reason or not reason.strip():
            raise InvalidInput("A reason is required to resolve a verification")

        try:
            with transaction() as conn:
                request = self._load(conn, request_id)
                if request.status != VerificationStatus.IN_REVIEW:
                    raise WrongState(f"Verification must be in review (status: {request.status.value})")
                if request.voting_deadline is None or now <= request.voting_deadline:
                    raise NotStalled("Voting deadline has not passed")
                if dao.list_silent_validators(conn, request_id):
                    raise NotStalled("Some validators have not voted yet; run the deadline sweep first")

                decided = self._recompute_locked(conn, request_id, now)
                if decided is None:
                    status = VerificationStatus(decision)
                    dao.mark_terminal(conn, request_id, status, now, actor.user_id)
                    dao.add_event(conn, request_id, "consensus_forced",
                                  f"Verification {status.value} by administrator", actor.user_id,
                                  {"decision": status.value, "reason": reason}, now)
                    decided = self._decision_event(conn, request, status, now, actor.user_id)
                    logger.log_transition(request_id, request.status.value, status.value, actor.user_id,
                                          decided.approval_count, decided.rejection_count)
                result = self._consensus_status(conn, dao.get_request(conn, request_id))
        except VerificationError as e:
            raise self._rejected("verification.force_resolve", request_id, actor, e)

        self.notifier.dispatch(decided)
        return result

    # Internals

    def _recompute_locked(self, conn, request_id: str, now: datetime) -> Optional[DecisionReached]:
        """Tally, evaluate and conditionally transition. Caller holds the write lock."""
        request = dao.get_request(conn, request_id)
        if request is None or request.status != VerificationStatus.IN_REVIEW:
            return None

        tally = dao.count_votes_by_type(conn, request_id)
        result = evaluate(request.panel_size, request.required_approvals,
                          tally['approve'], tally['reject'], tally['total'])
        dao.update_tally(conn, request_id, tally, result.progress)

        if result.decision == PENDING:
            return None

        status = VerificationStatus(result.decision)
        if not dao.mark_terminal(conn, request_id, status, now, RESOLVED_BY_CONSENSUS):
            return None

        dao.add_event(conn, request_id, "consensus_reached", f"Consensus reached: {status.value}", SYSTEM_ACTOR,
                      {"decision": status.value, "approval_count": tally['approve'],
                       "rejection_count": tally['reject'], "abstain_count": tally['abstain']},
                      now)
        logger.log_transition(request_id, request.status.value, status.value, RESOLVED_BY_CONSENSUS,
                              tally['approve'], tally['reject'])
        return self._decision_event(conn, request, status, now, RESOLVED_BY_CONSENSUS)

    def _decision_event(self, conn, request: VerificationRequest, status: VerificationStatus, at: datetime,
                        resolved_by: str) -> DecisionReached:
        final = dao.get_request(conn, request.id)
        proofs = [
            {
                "validator_id": vote.validator_id,
                "wallet_address": vote.wallet_address,
                "wallet_signature": vote.wallet_signature,
                "signed_at": vote.signed_at.isoformat() if vote.signed_at else None,
            }
            for vote in dao.list_votes(conn, request.id)
            if vote.decision == VoteDecision.APPROVE
        ]
        return DecisionReached(
            request_id=request.id,
            project_id=request.project_id,
            decision=status.value,
            decided_at=at,
            resolved_by=resolved_by,
            approval_count=final.approval_count,
            rejection_count=final.rejection_count,
            approving_proofs=proofs,
        )

    def _consensus_status(self, conn, request: VerificationRequest) -> ConsensusStatus:
        total = dao.count_assignments(conn, request.id)
        tally = dao.count_votes_by_type(conn, request.id)

        if request.status.is_terminal:
            final_decision = request.status.value
            # cached counts are frozen at the transition
            approvals, rejections, abstains = request.approval_count, request.rejection_count, request.abstain_count
            progress = 100
        else:
            approvals, rejections, abstains = tally['approve'], tally['reject'], tally['abstain']
            if request.status == VerificationStatus.IN_REVIEW:
                result = evaluate(request.panel_size, request.required_approvals, approvals, rejections,
                                  tally['total'])
                final_decision, progress = result.decision, result.progress
            else:
                final_decision, progress = PENDING, request.progress

        return ConsensusStatus(
            request_id=request.id,
            status=request.status,
            total_validators=total,
            required_approvals=request.required_approvals,
            approval_count=approvals,
            rejection_count=rejections,
            abstain_count=abstains,
            vote_count=approvals + rejections,
            consensus_reached=final_decision != PENDING,
            final_decision=final_decision,
            progress=progress,
            voting_deadline=request.voting_deadline,
            deadline_extended=request.deadline_extended,
            consensus_reached_at=request.consensus_reached_at,
        )

    def _check_signature(self, conn, request_id: str, actor: Actor, decision: VoteDecision,
                         proof: Optional[SignatureProof], now: datetime) -> None:
        if proof is None or not proof.signature or not proof.wallet_address or proof.issued_at is None:
            raise InvalidSignature(signatures.MALFORMED_SIGNATURE,
                                   "wallet_signature, wallet_address and signed_at are required")

        profile = dao.get_validator(conn, actor.user_id)
        if profile and profile.wallet_address and profile.wallet_address != proof.wallet_address:
            raise InvalidSignature(signatures.ADDRESS_MISMATCH,
                                   "Wallet address does not match the validator's registered wallet")

        message = signatures.build_vote_message(request_id, actor.user_id, decision.value, proof.issued_at)
        check = signatures.verify(message, proof.signature, proof.wallet_address, proof.issued_at, now,
                                  timedelta(seconds=config.get_signature_tolerance_sec()))
        if not check.valid:
            raise InvalidSignature(check.reason)

    def _check_panel_config(self, required_approvals: int, panel_size: int) -> None:
        if required_approvals < 1:
            raise InvalidPanelConfig("At least 1 approval is required")
        if required_approvals > panel_size:
            raise InvalidPanelConfig("Required approvals cannot exceed the panel size")
        if panel_size < config.MINIMUM_VALIDATORS:
            raise InvalidPanelConfig(f"Panel size must be at least {config.MINIMUM_VALIDATORS}")

    def _check_explicit_panel(self, request: VerificationRequest, validator_ids: List[str],
                              candidates: set) -> List[str]:
        if len(set(validator_ids)) != len(validator_ids):
            raise InvalidInput("Validator ids must be distinct")
        if request.submitter_id in validator_ids:
            raise InvalidInput("The submitter cannot validate their own project")
        if len(validator_ids) != request.panel_size:
            raise InvalidPanelConfig(f"Panel must have exactly {request.panel_size} validators")
        ineligible = [v for v in validator_ids if v not in candidates]
        if ineligible:
            raise InvalidInput(f"Users are not eligible validators: {ineligible}")
        return validator_ids

    def _load(self, conn, request_id: str) -> VerificationRequest:
        request = dao.get_request(conn, request_id)
        if request is None:
            raise RequestNotFound("Verification request not found")
        return request

    def _rejected(self, operation: str, request_id: str, actor: Actor, error: VerificationError):
        logger.log_rejection(operation, request_id, actor.user_id, error.reason, error.message)
        return error


# Global workflow instance
workflow = VerificationWorkflow()


def create_request(project_id: str, submitter_id: str, required_approvals: Optional[int] = None,
                   panel_size: Optional[int] = None) -> VerificationRequest:
    """Create a pending verification request."""
    return workflow.create_request(project_id, submitter_id, required_approvals, panel_size)


def assign_panel(request_id: str, actor: Actor, validator_ids: Optional[List[str]] = None):
    """Assign a validator panel and open voting."""
    return workflow.assign_panel(request_id, actor, validator_ids)


def cast_vote(request_id: str, actor: Actor, decision, proof: Optional[SignatureProof] = None,
              notes: Optional[str] = None) -> VoteOutcome:
    """Cast or replace a validator vote."""
    return workflow.cast_vote(request_id, actor, decision, proof, notes)


def get_consensus_status(request_id: str) -> ConsensusStatus:
    """Current consensus status of a request."""
    return workflow.get_consensus_status(request_id)
