"""
Request and response models for the verification HTTP API.
"""

import re
from datetime import datetime
from typing import Any, Dict, List, Optional

from pydantic import BaseModel, Field, field_validator

from ..core.schema import Role, VoteDecision

WALLET_ADDRESS_RE = re.compile(r"^addr(_test)?1[a-z0-9]{53,}$", re.IGNORECASE)


class ValidatorRegisterRequest(BaseModel):
    user_id: str
    role: Role
    wallet_address: Optional[str] = None
    email_verified: bool = True
    active: bool = True

    @field_validator('user_id')
    @classmethod
    def user_id_must_not_be_empty(cls, v):
        if not v.strip():
            raise ValueError('user_id cannot be empty')
        return v.strip()

    @field_validator('wallet_address')
    @classmethod
    def wallet_address_format(cls, v):
        if v is not None and not WALLET_ADDRESS_RE.match(v):
            raise ValueError('Invalid wallet address format')
        return v


class ValidatorResponse(BaseModel):
    user_id: str
    role: Role
    wallet_address: Optional[str] = None
    email_verified: bool
    active: bool


class VerificationCreateRequest(BaseModel):
    project_id: str
    required_approvals: Optional[int] = Field(default=None, ge=1, le=10)
    panel_size: Optional[int] = Field(default=None, ge=1, le=10)

    @field_validator('project_id')
    @classmethod
    def project_id_must_not_be_empty(cls, v):
        if not v.strip():
            raise ValueError('project_id cannot be empty')
        return v


class AssignPanelRequest(BaseModel):
    # Omit to let the engine draw the panel at random
    validator_ids: Optional[List[str]] = Field(default=None, min_length=1, max_length=10)


class CastVoteRequest(BaseModel):
    vote: VoteDecision
    notes: Optional[str] = Field(default=None, max_length=1000)
    wallet_signature: Optional[str] = None
    wallet_address: Optional[str] = None
    signed_at: Optional[datetime] = None

    @field_validator('wallet_signature')
    @classmethod
    def signature_must_be_hex(cls, v):
        if v is not None and not re.fullmatch(r"[0-9a-fA-F]+", v):
            raise ValueError('Wallet signature must be a valid hex string')
        return v

    @field_validator('wallet_address')
    @classmethod
    def wallet_address_format(cls, v):
        if v is not None and not WALLET_ADDRESS_RE.match(v):
            raise ValueError('Invalid wallet address format')
        return v


class ExtendDeadlineRequest(BaseModel):
    extension_hours: Optional[int] = Field(default=None, ge=1, le=24 * 30)


class ForceResolveRequest(BaseModel):
    decision: str
    reason: str

    @field_validator('decision')
    @classmethod
    def decision_must_be_terminal(cls, v):
        if v not in ['approved', 'rejected']:
            raise ValueError('decision must be approved or rejected')
        return v

    @field_validator('reason')
    @classmethod
    def reason_must_not_be_empty(cls, v):
        if not v.strip():
            raise ValueError('reason cannot be empty')
        return v


class VerificationResponse(BaseModel):
    id: str
    project_id: str
    submitter_id: str
    status: str
    progress: int
    required_approvals: int
    panel_size: int
    approval_count: int
    rejection_count: int
    abstain_count: int
    vote_count: int
    submitted_at: datetime
    assigned_at: Optional[datetime] = None
    consensus_reached_at: Optional[datetime] = None
    completed_at: Optional[datetime] = None
    resolved_by: Optional[str] = None
    voting_deadline: Optional[datetime] = None
    original_deadline: Optional[datetime] = None
    deadline_extended: bool = False


class AssignmentData(BaseModel):
    validator_id: str
    assigned_by: str
    assigned_at: datetime


class AssignPanelResponse(BaseModel):
    verification: VerificationResponse
    assignments: List[AssignmentData]
    count: int


class VoteData(BaseModel):
    request_id: str
    validator_id: str
    vote: str
    notes: Optional[str] = None
    voted_at: datetime
    wallet_address: Optional[str] = None
    auto_abstained: bool = False


class ConsensusData(BaseModel):
    request_id: str
    status: str
    total_validators: int
    required_approvals: int
    approval_count: int
    rejection_count: int
    abstain_count: int
    vote_count: int
    consensus_reached: bool
    final_decision: str
    progress_percentage: int
    voting_deadline: Optional[datetime] = None
    deadline_extended: bool = False


class CastVoteResponse(BaseModel):
    vote: VoteData
    consensus: ConsensusData
    replaced: bool


class VoteListResponse(BaseModel):
    votes: List[VoteData]
    count: int


class SweepResponse(BaseModel):
    requests_processed: int
    validators_auto_abstained: int
    transitions: List[str]
    stalled: List[str]
    failed: Dict[str, str]


class ErrorResponse(BaseModel):
    reason: str
    category: str
    detail: str
    details: Optional[Dict[str, Any]] = None


class HealthResponse(BaseModel):
    status: str
    version: str
    db_health: bool
    config_issues: List[str]
