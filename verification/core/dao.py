"""
Data access for verification requests, assignments, votes and audit events.

Functions take an open connection so callers control the transaction they run
in; the state machine composes several of them inside one ``transaction()``.
"""

import json
import sqlite3
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional

from .schema import (
    VerificationRequest,
    VerificationStatus,
    ValidatorAssignment,
    ValidatorVote,
    VoteDecision,
    AutoAbstainRecord,
    VerificationEvent,
    ValidatorProfile,
    Role,
    from_iso,
)


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def resolve_now(now: Optional[datetime] = None) -> datetime:
    """Caller-supplied clock reading as aware UTC; naive values are taken as UTC."""
    if now is None:
        return utcnow()
    if now.tzinfo is None:
        return now.replace(tzinfo=timezone.utc)
    return now.astimezone(timezone.utc)


def db_time(value: Optional[datetime]) -> Optional[str]:
    """Fixed-width UTC ISO string, so text comparison in SQL orders correctly."""
    if value is None:
        return None
    if value.tzinfo is None:
        value = value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc).isoformat(timespec="microseconds")


# Verification requests

def _row_to_request(row: sqlite3.Row) -> VerificationRequest:
    return VerificationRequest(
        id=row['id'],
        project_id=row['project_id'],
        submitter_id=row['submitter_id'],
        required_approvals=row['required_approvals'],
        panel_size=row['panel_size'],
        status=VerificationStatus(row['status']),
        progress=row['progress'],
        submitted_at=from_iso(row['submitted_at']),
        approval_count=row['approval_count'],
        rejection_count=row['rejection_count'],
        abstain_count=row['abstain_count'],
        vote_count=row['vote_count'],
        assigned_at=from_iso(row['assigned_at']),
        assigned_by=row['assigned_by'],
        consensus_reached_at=from_iso(row['consensus_reached_at']),
        completed_at=from_iso(row['completed_at']),
        resolved_by=row['resolved_by'],
        voting_deadline=from_iso(row['voting_deadline']),
        original_deadline=from_iso(row['original_deadline']),
        deadline_extended=bool(row['deadline_extended']),
    )


def insert_request(conn: sqlite3.Connection, request: VerificationRequest) -> None:
    conn.execute(
        """INSERT INTO verification_requests
           (id, project_id, submitter_id, required_approvals, panel_size, status, progress, submitted_at)
           VALUES (?, ?, ?, ?, ?, ?, ?, ?)""",
        (request.id, request.project_id, request.submitter_id, request.required_approvals,
         request.panel_size, request.status.value, request.progress, db_time(request.submitted_at))
    )


def get_request(conn: sqlite3.Connection, request_id: str) -> Optional[VerificationRequest]:
    row = conn.execute("SELECT * FROM verification_requests WHERE id = ?", (request_id,)).fetchone()
    return _row_to_request(row) if row else None


def mark_in_review(conn: sqlite3.Connection, request_id: str, assigned_by: str, assigned_at: datetime,
                   voting_deadline: datetime, progress: int) -> bool:
    """Flip pending -> in_review; False if the request was not pending."""
    cursor = conn.execute(
        """UPDATE verification_requests
           SET status = 'in_review', assigned_at = ?, assigned_by = ?, voting_deadline = ?, progress = ?
           WHERE id = ? AND status = 'pending'""",
        (db_time(assigned_at), assigned_by, db_time(voting_deadline), progress, request_id)
    )
    return cursor.rowcount == 1


def update_tally(conn: sqlite3.Connection, request_id: str, tally: Dict[str, int], progress: int) -> None:
    """Cache a freshly computed tally on an in_review request."""
    conn.execute(
        """UPDATE verification_requests
           SET approval_count = ?, rejection_count = ?, abstain_count = ?, vote_count = ?, progress = ?
           WHERE id = ? AND status = 'in_review'""",
        (tally['approve'], tally['reject'], tally['abstain'], tally['approve'] + tally['reject'],
         progress, request_id)
    )


def mark_terminal(conn: sqlite3.Connection, request_id: str, status: VerificationStatus, at: datetime,
                  resolved_by: str) -> bool:
    """Move an in_review request to a terminal status; False if it already left in_review."""
    cursor = conn.execute(
        """UPDATE verification_requests
           SET status = ?, progress = 100, consensus_reached_at = ?, completed_at = ?, resolved_by = ?
           WHERE id = ? AND status = 'in_review'""",
        (status.value, db_time(at), db_time(at), resolved_by, request_id)
    )
    return cursor.rowcount == 1


def set_deadline(conn: sqlite3.Connection, request_id: str, voting_deadline: datetime,
                 original_deadline: Optional[datetime]) -> bool:
    cursor = conn.execute(
        """UPDATE verification_requests
           SET voting_deadline = ?, original_deadline = ?, deadline_extended = 1
           WHERE id = ? AND status = 'in_review'""",
        (db_time(voting_deadline), db_time(original_deadline), request_id)
    )
    return cursor.rowcount == 1


def list_expired_request_ids(conn: sqlite3.Connection, now: datetime) -> List[str]:
    """In-review requests whose voting deadline is strictly before ``now``."""
    rows = conn.execute(
        """SELECT id FROM verification_requests
           WHERE status = 'in_review' AND voting_deadline IS NOT NULL AND voting_deadline < ?
           ORDER BY voting_deadline ASC""",
        (db_time(now),)
    ).fetchall()
    return [row['id'] for row in rows]


# Assignments

def insert_assignments(conn: sqlite3.Connection, request_id: str, validator_ids: List[str],
                       assigned_by: str, assigned_at: datetime) -> List[ValidatorAssignment]:
    assignments = []
    for validator_id in validator_ids:
        conn.execute(
            """INSERT INTO validator_assignments (request_id, validator_id, assigned_by, assigned_at)
               VALUES (?, ?, ?, ?)""",
            (request_id, validator_id, assigned_by, db_time(assigned_at))
        )
        assignments.append(ValidatorAssignment(request_id, validator_id, assigned_by, assigned_at))
    return assignments


def list_assignments(conn: sqlite3.Connection, request_id: str) -> List[ValidatorAssignment]:
    rows = conn.execute(
        "SELECT * FROM validator_assignments WHERE request_id = ? ORDER BY id",
        (request_id,)
    ).fetchall()
    return [ValidatorAssignment(row['request_id'], row['validator_id'], row['assigned_by'],
                                from_iso(row['assigned_at'])) for row in rows]


def is_assigned(conn: sqlite3.Connection, request_id: str, validator_id: str) -> bool:
    row = conn.execute(
        "SELECT 1 FROM validator_assignments WHERE request_id = ? AND validator_id = ?",
        (request_id, validator_id)
    ).fetchone()
    return row is not None


def count_assignments(conn: sqlite3.Connection, request_id: str) -> int:
    row = conn.execute("SELECT COUNT(*) FROM validator_assignments WHERE request_id = ?",
                       (request_id,)).fetchone()
    return row[0]


# Votes

def _row_to_vote(row: sqlite3.Row) -> ValidatorVote:
    return ValidatorVote(
        request_id=row['request_id'],
        validator_id=row['validator_id'],
        decision=VoteDecision(row['decision']),
        voted_at=from_iso(row['voted_at']),
        notes=row['notes'],
        wallet_signature=row['wallet_signature'],
        wallet_address=row['wallet_address'],
        signed_at=from_iso(row['signed_at']),
        auto_abstained=bool(row['auto_abstained']),
    )


def get_vote(conn: sqlite3.Connection, request_id: str, validator_id: str) -> Optional[ValidatorVote]:
    row = conn.execute(
        "SELECT * FROM validator_votes WHERE request_id = ? AND validator_id = ?",
        (request_id, validator_id)
    ).fetchone()
    return _row_to_vote(row) if row else None


def upsert_vote(conn: sqlite3.Connection, vote: ValidatorVote) -> None:
    """Insert or replace the live vote of a validator."""
    voted_at = db_time(vote.voted_at)
    conn.execute(
        """INSERT INTO validator_votes
           (request_id, validator_id, decision, notes, wallet_signature, wallet_address, signed_at,
            auto_abstained, voted_at, created_at, updated_at)
           VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
           ON CONFLICT (request_id, validator_id) DO UPDATE SET
             decision = excluded.decision,
             notes = excluded.notes,
             wallet_signature = excluded.wallet_signature,
             wallet_address = excluded.wallet_address,
             signed_at = excluded.signed_at,
             auto_abstained = excluded.auto_abstained,
             voted_at = excluded.voted_at,
             updated_at = excluded.updated_at""",
        (vote.request_id, vote.validator_id, vote.decision.value, vote.notes, vote.wallet_signature,
         vote.wallet_address, db_time(vote.signed_at), int(vote.auto_abstained), voted_at, voted_at, voted_at)
    )


def insert_auto_abstain(conn: sqlite3.Connection, request_id: str, validator_id: str, at: datetime) -> bool:
    """System abstain for a silent validator; never overwrites a live vote."""
    cursor = conn.execute(
        """INSERT INTO validator_votes
           (request_id, validator_id, decision, notes, auto_abstained, voted_at, created_at, updated_at)
           VALUES (?, ?, 'abstain', 'Auto-abstained: Voting deadline expired', 1, ?, ?, ?)
           ON CONFLICT (request_id, validator_id) DO NOTHING""",
        (request_id, validator_id, db_time(at), db_time(at), db_time(at))
    )
    return cursor.rowcount == 1


def list_votes(conn: sqlite3.Connection, request_id: str) -> List[ValidatorVote]:
    rows = conn.execute(
        "SELECT * FROM validator_votes WHERE request_id = ? ORDER BY voted_at ASC, id ASC",
        (request_id,)
    ).fetchall()
    return [_row_to_vote(row) for row in rows]


def count_votes_by_type(conn: sqlite3.Connection, request_id: str) -> Dict[str, int]:
    """Tally live votes of assigned validators straight from the vote rows."""
    row = conn.execute(
        """SELECT
             COALESCE(SUM(CASE WHEN v.decision = 'approve' THEN 1 ELSE 0 END), 0) AS approve,
             COALESCE(SUM(CASE WHEN v.decision = 'reject' THEN 1 ELSE 0 END), 0) AS reject,
             COALESCE(SUM(CASE WHEN v.decision = 'abstain' THEN 1 ELSE 0 END), 0) AS abstain,
             COUNT(v.id) AS total
           FROM validator_votes v
           JOIN validator_assignments a
             ON a.request_id = v.request_id AND a.validator_id = v.validator_id
           WHERE v.request_id = ?""",
        (request_id,)
    ).fetchone()
    return {'approve': row['approve'], 'reject': row['reject'], 'abstain': row['abstain'], 'total': row['total']}


def list_silent_validators(conn: sqlite3.Connection, request_id: str) -> List[str]:
    """Assigned validators with no live vote."""
    rows = conn.execute(
        """SELECT a.validator_id FROM validator_assignments a
           LEFT JOIN validator_votes v
             ON v.request_id = a.request_id AND v.validator_id = a.validator_id
           WHERE a.request_id = ? AND v.id IS NULL
           ORDER BY a.id""",
        (request_id,)
    ).fetchall()
    return [row['validator_id'] for row in rows]


# Auto-abstain audit

def insert_auto_abstain_record(conn: sqlite3.Connection, record: AutoAbstainRecord) -> bool:
    cursor = conn.execute(
        """INSERT INTO validator_auto_abstains
           (request_id, validator_id, auto_abstained_at, original_deadline, reason)
           VALUES (?, ?, ?, ?, ?)
           ON CONFLICT (request_id, validator_id) DO NOTHING""",
        (record.request_id, record.validator_id, db_time(record.auto_abstained_at),
         db_time(record.original_deadline), record.reason)
    )
    return cursor.rowcount == 1


def list_auto_abstain_records(conn: sqlite3.Connection, request_id: str) -> List[AutoAbstainRecord]:
    rows = conn.execute(
        "SELECT * FROM validator_auto_abstains WHERE request_id = ? ORDER BY id",
        (request_id,)
    ).fetchall()
    return [AutoAbstainRecord(row['request_id'], row['validator_id'], from_iso(row['auto_abstained_at']),
                              from_iso(row['original_deadline']), row['reason']) for row in rows]


# Events

def add_event(conn: sqlite3.Connection, request_id: str, event_type: str, message: str, actor: str,
              metadata: Optional[Dict[str, Any]] = None, at: Optional[datetime] = None) -> int:
    cursor = conn.execute(
        """INSERT INTO verification_events (request_id, event_type, message, actor, metadata, created_at)
           VALUES (?, ?, ?, ?, ?, ?)""",
        (request_id, event_type, message, actor, json.dumps(metadata or {}, default=str),
         db_time(at or utcnow()))
    )
    return cursor.lastrowid


def list_events(conn: sqlite3.Connection, request_id: str, event_type: Optional[str] = None) -> List[VerificationEvent]:
    if event_type:
        rows = conn.execute(
            "SELECT * FROM verification_events WHERE request_id = ? AND event_type = ? ORDER BY id",
            (request_id, event_type)
        ).fetchall()
    else:
        rows = conn.execute(
            "SELECT * FROM verification_events WHERE request_id = ? ORDER BY id",
            (request_id,)
        ).fetchall()
    return [VerificationEvent.from_row(row) for row in rows]


# Validator directory

def upsert_validator(conn: sqlite3.Connection, profile: ValidatorProfile) -> None:
    conn.execute(
        """INSERT INTO validators (user_id, role, wallet_address, email_verified, active, created_at)
           VALUES (?, ?, ?, ?, ?, ?)
           ON CONFLICT (user_id) DO UPDATE SET
             role = excluded.role,
             wallet_address = excluded.wallet_address,
             email_verified = excluded.email_verified,
             active = excluded.active""",
        (profile.user_id, profile.role.value, profile.wallet_address, int(profile.email_verified),
         int(profile.active), db_time(utcnow()))
    )


def get_validator(conn: sqlite3.Connection, user_id: str) -> Optional[ValidatorProfile]:
    row = conn.execute("SELECT * FROM validators WHERE user_id = ?", (user_id,)).fetchone()
    if not row:
        return None
    return ValidatorProfile(row['user_id'], Role(row['role']), row['wallet_address'],
                            bool(row['email_verified']), bool(row['active']))


def list_candidate_ids(conn: sqlite3.Connection) -> List[str]:
    """Active, email-verified verifiers and administrators."""
    rows = conn.execute(
        """SELECT user_id FROM validators
           WHERE role IN ('verifier', 'administrator') AND email_verified = 1 AND active = 1
           ORDER BY user_id"""
    ).fetchall()
    return [row['user_id'] for row in rows]
