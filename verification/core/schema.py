"""
Typed records for verification requests, panels, votes and audit events.
"""

import json
from dataclasses import dataclass, asdict, field
from datetime import datetime
from enum import Enum
from typing import Any, Dict, List, Optional


class VerificationStatus(str, Enum):
    PENDING = "pending"
    IN_REVIEW = "in_review"
    APPROVED = "approved"
    REJECTED = "rejected"

    @property
    def is_terminal(self) -> bool:
        return self in (VerificationStatus.APPROVED, VerificationStatus.REJECTED)


class VoteDecision(str, Enum):
    APPROVE = "approve"
    REJECT = "reject"
    ABSTAIN = "abstain"


class Role(str, Enum):
    DEVELOPER = "developer"
    VERIFIER = "verifier"
    ADMINISTRATOR = "administrator"


def to_iso(value: Optional[datetime]) -> Optional[str]:
    return value.isoformat() if value else None


def from_iso(value: Optional[str]) -> Optional[datetime]:
    return datetime.fromisoformat(value) if value else None


@dataclass
class Actor:
    """Authenticated caller as supplied by the identity provider."""
    user_id: str
    role: Role


@dataclass
class VerificationRequest:
    id: str
    project_id: str
    submitter_id: str
    required_approvals: int
    panel_size: int
    status: VerificationStatus
    progress: int
    submitted_at: datetime
    approval_count: int = 0
    rejection_count: int = 0
    abstain_count: int = 0
    vote_count: int = 0
    assigned_at: Optional[datetime] = None
    assigned_by: Optional[str] = None
    consensus_reached_at: Optional[datetime] = None
    completed_at: Optional[datetime] = None
    resolved_by: Optional[str] = None
    voting_deadline: Optional[datetime] = None
    original_deadline: Optional[datetime] = None
    deadline_extended: bool = False

    def to_dict(self) -> Dict:
        """Convert to dictionary with ISO timestamps."""
        data = asdict(self)
        data['status'] = self.status.value
        for name in ('submitted_at', 'assigned_at', 'consensus_reached_at', 'completed_at',
                     'voting_deadline', 'original_deadline'):
            data[name] = to_iso(getattr(self, name))
        return data


@dataclass
class ValidatorAssignment:
    request_id: str
    validator_id: str
    assigned_by: str
    assigned_at: datetime


@dataclass
class ValidatorVote:
    request_id: str
    validator_id: str
    decision: VoteDecision
    voted_at: datetime
    notes: Optional[str] = None
    wallet_signature: Optional[str] = None
    wallet_address: Optional[str] = None
    signed_at: Optional[datetime] = None
    auto_abstained: bool = False

    def to_dict(self) -> Dict:
        return {
            'request_id': self.request_id,
            'validator_id': self.validator_id,
            'decision': self.decision.value,
            'voted_at': to_iso(self.voted_at),
            'notes': self.notes,
            'wallet_signature': self.wallet_signature,
            'wallet_address': self.wallet_address,
            'signed_at': to_iso(self.signed_at),
            'auto_abstained': self.auto_abstained,
        }


@dataclass
class AutoAbstainRecord:
    request_id: str
    validator_id: str
    auto_abstained_at: datetime
    original_deadline: datetime
    reason: str = "Voting deadline expired"


@dataclass
class VerificationEvent:
    id: int
    request_id: str
    event_type: str
    message: str
    actor: str
    metadata: Dict[str, Any]
    created_at: datetime

    @classmethod
    def from_row(cls, row) -> 'VerificationEvent':
        return cls(
            id=row['id'],
            request_id=row['request_id'],
            event_type=row['event_type'],
            message=row['message'],
            actor=row['actor'],
            metadata=json.loads(row['metadata']) if row['metadata'] else {},
            created_at=from_iso(row['created_at']),
        )


@dataclass
class ValidatorProfile:
    user_id: str
    role: Role
    wallet_address: Optional[str] = None
    email_verified: bool = True
    active: bool = True


@dataclass
class SignatureProof:
    """Client-produced wallet signature over the canonical vote message."""
    signature: str
    wallet_address: str
    issued_at: datetime


@dataclass
class ConsensusStatus:
    request_id: str
    status: VerificationStatus
    total_validators: int
    required_approvals: int
    approval_count: int
    rejection_count: int
    abstain_count: int
    vote_count: int
    consensus_reached: bool
    final_decision: str  # approved | rejected | pending
    progress: int
    voting_deadline: Optional[datetime] = None
    deadline_extended: bool = False
    consensus_reached_at: Optional[datetime] = None

    def to_dict(self) -> Dict:
        data = asdict(self)
        data['status'] = self.status.value
        data['voting_deadline'] = to_iso(self.voting_deadline)
        data['consensus_reached_at'] = to_iso(self.consensus_reached_at)
        return data


@dataclass
class VoteOutcome:
    vote: ValidatorVote
    consensus: ConsensusStatus
    replaced: bool = False


@dataclass
class SweepReport:
    requests_processed: int = 0
    validators_auto_abstained: int = 0
    transitions: List[str] = field(default_factory=list)
    stalled: List[str] = field(default_factory=list)
    failed: Dict[str, str] = field(default_factory=dict)

    def to_dict(self) -> Dict:
        return asdict(self)
