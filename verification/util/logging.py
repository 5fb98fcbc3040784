"""
Structured logging for the verification engine.
Every vote, transition, sweep and deadline change is logged as an operation
with a status and a details dict so the log doubles as an audit trail.
"""

import logging
from datetime import datetime
from typing import Any, Dict, List

# Fields never written to logs verbatim
SENSITIVE_FIELDS = ['wallet_signature', 'signature', 'private_key', 'secret', 'token']


class StructuredLogger:
    """Structured logger for verification operations."""

    def __init__(self, name: str = "verification_engine"):
        self.logger = logging.getLogger(name)
        self.logger.setLevel(logging.INFO)

        # Create handler if not already set
        if not self.logger.handlers:
            handler = logging.StreamHandler()
            formatter = logging.Formatter(
                '%(asctime)s - %(name)s - %(levelname)s - %(message)s'
            )
            handler.setFormatter(formatter)
            self.logger.addHandler(handler)

    def log_operation(self, operation: str, status: str, details: Dict[str, Any] = None, level: int = logging.INFO):
        """Log a structured operation."""
        message = f"Operation: {operation}, Status: {status}"
        if details:
            message += f", Details: {details}"

        self.logger.log(level, message)

    def log_request_created(self, request_id: str, project_id: str, submitter_id: str):
        """Log a new verification request."""
        self.log_operation("verification.created", "pending", {
            "request_id": request_id,
            "project_id": project_id,
            "submitter_id": submitter_id
        })

    def log_panel_assigned(self, request_id: str, validator_ids: List[str], required_approvals: int,
                           voting_deadline: datetime, assigned_by: str):
        """Log panel assignment."""
        self.log_operation("panel.assigned", "in_review", {
            "request_id": request_id,
            "validator_count": len(validator_ids),
            "validator_ids": list(validator_ids),
            "required_approvals": required_approvals,
            "voting_deadline": voting_deadline.isoformat(),
            "assigned_by": assigned_by
        })

    def log_vote_cast(self, request_id: str, validator_id: str, decision: str, replaced: bool = False):
        """Log an accepted vote."""
        self.log_operation("vote.cast", "replaced" if replaced else "recorded", {
            "request_id": request_id,
            "validator_id": validator_id,
            "decision": decision
        })

    def log_rejection(self, operation: str, request_id: str, actor_id: str, reason: str, detail: str = ""):
        """Log a rejected engine call with its machine-readable reason."""
        self.log_operation(operation, "rejected", {
            "request_id": request_id,
            "actor_id": actor_id,
            "reason": reason,
            "detail": detail[:100] if detail else ""
        }, level=logging.WARNING)

    def log_transition(self, request_id: str, from_status: str, to_status: str, resolved_by: str,
                       approvals: int, rejections: int):
        """Log a terminal state transition."""
        self.log_operation("verification.transition", to_status, {
            "request_id": request_id,
            "from": from_status,
            "to": to_status,
            "resolved_by": resolved_by,
            "approval_count": approvals,
            "rejection_count": rejections
        })

    def log_sweep(self, requests_processed: int, validators_auto_abstained: int, transitions: int,
                  stalled: int, failed: int, duration_ms: float):
        """Log completion of a deadline sweep."""
        self.log_operation("deadline.sweep", "failed" if failed else "success", {
            "requests_processed": requests_processed,
            "validators_auto_abstained": validators_auto_abstained,
            "transitions": transitions,
            "stalled": stalled,
            "failed": failed,
            "duration_ms": round(duration_ms, 2)
        })

    def log_deadline_extended(self, request_id: str, previous_deadline: datetime, new_deadline: datetime,
                              extended_by: str):
        """Log a voting deadline extension."""
        self.log_operation("deadline.extended", "success", {
            "request_id": request_id,
            "previous_deadline": previous_deadline.isoformat(),
            "new_deadline": new_deadline.isoformat(),
            "extended_by": extended_by
        })

    def log_scheduler_task(self, task_name: str, start_time: float, end_time: float, status: str = "success",
                           details: Dict[str, Any] = None):
        """Log scheduler task execution."""
        duration_ms = round((end_time - start_time) * 1000, 2)
        log_details = {"duration_ms": duration_ms}
        if details:
            log_details.update(details)
        elif status == "success":
            log_details["message"] = f"Scheduled task '{task_name}' completed in {duration_ms}ms"
        elif status == "failed":
            log_details["message"] = f"Scheduled task '{task_name}' failed after {duration_ms}ms"

        self.log_operation(f"scheduler.{task_name}", status, log_details)

    def log_notification_failure(self, event_type: str, request_id: str, subscriber: str, error: str):
        """Log a subscriber that failed to accept an engine event."""
        self.log_operation("notification.delivery", "failed", {
            "event_type": event_type,
            "request_id": request_id,
            "subscriber": subscriber,
            "error": error[:100]
        }, level=logging.ERROR)

    # Standard logging methods for compatibility
    def info(self, message: str) -> None:
        """Log an info message."""
        self.logger.info(message)

    def warning(self, message: str) -> None:
        """Log a warning message."""
        self.logger.warning(message)

    def error(self, message: str) -> None:
        """Log an error message."""
        self.logger.error(message)

    def debug(self, message: str) -> None:
        """Log a debug message."""
        self.logger.debug(message)


# Global logger instance
logger = StructuredLogger()


def audit_event(event_type: str, identifiers: Dict[str, Any], payload: Dict[str, Any] = None,
                sensitive_fields: List[str] = None):
    """General audit event logging with signature redaction."""
    log_details = identifiers.copy() if identifiers else {}

    if payload:
        log_details["payload"] = sanitize_payload(payload, sensitive_fields=sensitive_fields)

    logger.log_operation(event_type.replace(".", "_"), "audit", log_details)


def sanitize_payload(payload: Any, reveal_sensitive: bool = False, sensitive_fields: List[str] = None) -> Any:
    """Sanitize payloads for audit logging."""
    if sensitive_fields is None:
        sensitive_fields = SENSITIVE_FIELDS

    if isinstance(payload, dict):
        sanitized = {}
        for k, v in payload.items():
            if reveal_sensitive or k not in sensitive_fields:
                sanitized[k] = sanitize_payload(v, reveal_sensitive, sensitive_fields)
            else:
                sanitized[k] = "[REDACTED]"
        return sanitized
    elif isinstance(payload, str):
        # Truncate long strings
        return payload[:100] + "..." if len(payload) > 100 else payload
    elif isinstance(payload, list):
        return [sanitize_payload(item, reveal_sensitive, sensitive_fields) for item in payload]
    else:
        return payload
