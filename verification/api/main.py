"""
HTTP transport for the verification consensus engine.
"""

from datetime import timedelta
from typing import Optional

from fastapi import FastAPI, Header, Depends
from fastapi.responses import JSONResponse

from .schemas import (
    ValidatorRegisterRequest,
    ValidatorResponse,
    VerificationCreateRequest,
    VerificationResponse,
    AssignPanelRequest,
    AssignPanelResponse,
    AssignmentData,
    CastVoteRequest,
    CastVoteResponse,
    VoteData,
    VoteListResponse,
    ConsensusData,
    ExtendDeadlineRequest,
    ForceResolveRequest,
    SweepResponse,
    HealthResponse,
)
from ..core import errors
from ..core.config import VERSION, debug_enabled, validate_config
from ..core.db import init_db, health_check
from ..core.deadlines import sweeper
from ..core.errors import VerificationError, InvalidInput, NotAuthorized
from ..core.permissions import can_register, can_sweep
from ..core.schema import Actor, Role, SignatureProof, ConsensusStatus, ValidatorVote, VerificationRequest
from ..core.workflow import workflow
from ..util.logging import logger

STATUS_BY_CATEGORY = {
    errors.VALIDATION: 400,
    errors.AUTHORIZATION: 403,
    errors.NOT_FOUND: 404,
    errors.STATE_CONFLICT: 409,
    errors.RESOURCE: 422,
    errors.TRANSIENT: 503,
}

app = FastAPI(
    title="Verification Consensus Engine",
    version=VERSION,
    description="Multi-validator verification panels, signed votes and voting deadlines",
    docs_url="/docs" if debug_enabled() else None,
    redoc_url="/redoc" if debug_enabled() else None
)


@app.on_event("startup")
def startup():
    init_db()
    issues = validate_config()
    if issues:
        logger.warning(f"Configuration issues: {issues}")


def get_actor(x_user_id: str = Header(...), x_user_role: str = Header(...)) -> Actor:
    """Caller identity as forwarded by the upstream identity provider."""
    try:
        role = Role(x_user_role.lower())
    except ValueError:
        raise InvalidInput(f"Unknown role: {x_user_role}")
    if not x_user_id.strip():
        raise InvalidInput("X-User-Id cannot be empty")
    return Actor(user_id=x_user_id.strip(), role=role)


def _verification_response(request: VerificationRequest) -> VerificationResponse:
    return VerificationResponse(
        id=request.id,
        project_id=request.project_id,
        submitter_id=request.submitter_id,
        status=request.status.value,
        progress=request.progress,
        required_approvals=request.required_approvals,
        panel_size=request.panel_size,
        approval_count=request.approval_count,
        rejection_count=request.rejection_count,
        abstain_count=request.abstain_count,
        vote_count=request.vote_count,
        submitted_at=request.submitted_at,
        assigned_at=request.assigned_at,
        consensus_reached_at=request.consensus_reached_at,
        completed_at=request.completed_at,
        resolved_by=request.resolved_by,
        voting_deadline=request.voting_deadline,
        original_deadline=request.original_deadline,
        deadline_extended=request.deadline_extended,
    )


def _vote_data(vote: ValidatorVote) -> VoteData:
    # Signatures stay out of API responses
    return VoteData(
        request_id=vote.request_id,
        validator_id=vote.validator_id,
        vote=vote.decision.value,
        notes=vote.notes,
        voted_at=vote.voted_at,
        wallet_address=vote.wallet_address,
        auto_abstained=vote.auto_abstained,
    )


def _consensus_data(status: ConsensusStatus) -> ConsensusData:
    return ConsensusData(
        request_id=status.request_id,
        status=status.status.value,
        total_validators=status.total_validators,
        required_approvals=status.required_approvals,
        approval_count=status.approval_count,
        rejection_count=status.rejection_count,
        abstain_count=status.abstain_count,
        vote_count=status.vote_count,
        consensus_reached=status.consensus_reached,
        final_decision=status.final_decision,
        progress_percentage=status.progress,
        voting_deadline=status.voting_deadline,
        deadline_extended=status.deadline_extended,
    )


@app.get("/health", response_model=HealthResponse)
def health_check_endpoint():
    """Check system health."""
    db_health = health_check()
    return HealthResponse(
        status="healthy" if db_health else "unhealthy",
        version=VERSION,
        db_health=db_health,
        config_issues=validate_config()
    )


@app.post("/validators", response_model=ValidatorResponse)
def register_validator_endpoint(req: ValidatorRegisterRequest, actor: Actor = Depends(get_actor)):
    """Add or update a validator directory entry (administrators only)."""
    if not can_register(actor):
        raise NotAuthorized("Only administrators can manage validators")
    profile = workflow.register_validator(req.user_id, req.role, req.wallet_address,
                                          req.email_verified, req.active)
    return ValidatorResponse(
        user_id=profile.user_id,
        role=profile.role,
        wallet_address=profile.wallet_address,
        email_verified=profile.email_verified,
        active=profile.active
    )


@app.post("/verifications", response_model=VerificationResponse, status_code=201)
def create_verification_endpoint(req: VerificationCreateRequest, actor: Actor = Depends(get_actor)):
    """Submit a project for verification; the caller is the submitter."""
    request = workflow.create_request(req.project_id, actor.user_id, req.required_approvals, req.panel_size)
    return _verification_response(request)


@app.get("/verifications/{request_id}", response_model=VerificationResponse)
def get_verification_endpoint(request_id: str):
    return _verification_response(workflow.get_request(request_id))


@app.post("/verifications/{request_id}/assign", response_model=AssignPanelResponse)
def assign_panel_endpoint(request_id: str, req: Optional[AssignPanelRequest] = None,
                          actor: Actor = Depends(get_actor)):
    """Assign validators to a pending verification (administrators only)."""
    validator_ids = req.validator_ids if req else None
    request, assignments = workflow.assign_panel(request_id, actor, validator_ids)
    return AssignPanelResponse(
        verification=_verification_response(request),
        assignments=[
            AssignmentData(validator_id=a.validator_id, assigned_by=a.assigned_by, assigned_at=a.assigned_at)
            for a in assignments
        ],
        count=len(assignments)
    )


@app.post("/verifications/{request_id}/vote", response_model=CastVoteResponse)
def cast_vote_endpoint(request_id: str, req: CastVoteRequest, actor: Actor = Depends(get_actor)):
    """Cast or replace the caller's vote."""
    proof = None
    if req.wallet_signature or req.wallet_address:
        proof = SignatureProof(
            signature=req.wallet_signature,
            wallet_address=req.wallet_address,
            issued_at=req.signed_at
        )
    outcome = workflow.cast_vote(request_id, actor, req.vote, proof, req.notes)
    return CastVoteResponse(
        vote=_vote_data(outcome.vote),
        consensus=_consensus_data(outcome.consensus),
        replaced=outcome.replaced
    )


@app.get("/verifications/{request_id}/consensus", response_model=ConsensusData)
def get_consensus_endpoint(request_id: str):
    return _consensus_data(workflow.get_consensus_status(request_id))


@app.get("/verifications/{request_id}/votes", response_model=VoteListResponse)
def list_votes_endpoint(request_id: str):
    votes = workflow.list_votes(request_id)
    return VoteListResponse(votes=[_vote_data(v) for v in votes], count=len(votes))


@app.post("/verifications/{request_id}/extend-deadline", response_model=VerificationResponse)
def extend_deadline_endpoint(request_id: str, req: Optional[ExtendDeadlineRequest] = None,
                             actor: Actor = Depends(get_actor)):
    """Extend the voting deadline (administrators only). Defaults to the configured extension."""
    extension = None
    if req and req.extension_hours:
        extension = timedelta(hours=req.extension_hours)
    request = sweeper.extend_deadline(request_id, extension, actor)
    return _verification_response(request)


@app.post("/verifications/{request_id}/force-resolve", response_model=ConsensusData)
def force_resolve_endpoint(request_id: str, req: ForceResolveRequest, actor: Actor = Depends(get_actor)):
    """Administrator decision for a verification stalled after its deadline."""
    status = workflow.force_resolve(request_id, req.decision, actor, req.reason)
    return _consensus_data(status)


@app.post("/admin/sweep", response_model=SweepResponse)
def sweep_endpoint(actor: Actor = Depends(get_actor)):
    """Run the deadline sweep now instead of waiting for the scheduler."""
    if not can_sweep(actor):
        raise NotAuthorized("Only administrators can trigger the deadline sweep")
    report = sweeper.sweep_expired()
    return SweepResponse(**report.to_dict())


@app.exception_handler(VerificationError)
async def verification_error_handler(request, exc: VerificationError):
    """Map engine rejections to HTTP status codes by category."""
    return JSONResponse(
        status_code=STATUS_BY_CATEGORY.get(exc.category, 400),
        content=exc.to_dict(),
    )


@app.exception_handler(Exception)
async def global_exception_handler(request, exc):
    """Handle all unhandled exceptions."""
    logger.error(f"Unhandled exception: {exc}")
    content = {"detail": "Internal server error"}
    if debug_enabled():
        content["debug"] = str(exc)
    return JSONResponse(
        status_code=500,
        content=content,
    )
