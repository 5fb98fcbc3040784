"""
Structured logging, audit redaction and notification dispatch tests.
"""

import logging
from datetime import datetime, timezone
from unittest.mock import MagicMock

import pytest

from verification.core.notifications import NotificationDispatcher, DecisionReached, log_event
from verification.util.logging import StructuredLogger, audit_event, sanitize_payload

DECIDED_AT = datetime(2026, 2, 1, tzinfo=timezone.utc)


def _decision():
    return DecisionReached(
        request_id="req-1",
        project_id="project-1",
        decision="approved",
        decided_at=DECIDED_AT,
        resolved_by="consensus",
        approval_count=3,
        rejection_count=0,
        approving_proofs=[{"validator_id": "v1", "wallet_signature": "ab" * 96}],
    )


class TestSanitizePayload:

    def test_signatures_redacted(self):
        sanitized = sanitize_payload({"wallet_signature": "deadbeef", "decision": "approve"})
        assert sanitized == {"wallet_signature": "[REDACTED]", "decision": "approve"}

    def test_nested_lists_redacted(self):
        sanitized = sanitize_payload({"proofs": [{"wallet_signature": "x", "validator_id": "v1"}]})
        assert sanitized["proofs"][0]["wallet_signature"] == "[REDACTED]"
        assert sanitized["proofs"][0]["validator_id"] == "v1"

    def test_reveal_sensitive(self):
        assert sanitize_payload({"signature": "x"}, reveal_sensitive=True) == {"signature": "x"}

    def test_long_strings_truncated(self):
        assert sanitize_payload("a" * 150) == "a" * 100 + "..."


class TestStructuredLogger:

    def test_log_operation(self, caplog):
        structured = StructuredLogger("verification_test")
        with caplog.at_level(logging.INFO):
            structured.log_operation("vote.cast", "recorded", {"request_id": "req-1"})
        assert "Operation: vote.cast, Status: recorded" in caplog.text

    def test_rejections_are_warnings(self, caplog):
        structured = StructuredLogger("verification_test")
        with caplog.at_level(logging.INFO):
            structured.log_rejection("vote.cast", "req-1", "v9", "NOT_ASSIGNED", "not on panel")
        record = caplog.records[-1]
        assert record.levelno == logging.WARNING
        assert "NOT_ASSIGNED" in record.getMessage()

    def test_audit_event_redacts(self, caplog):
        with caplog.at_level(logging.INFO):
            audit_event("notification.decision_reached", {"request_id": "req-1"},
                        {"wallet_signature": "secret-bytes"})
        assert "secret-bytes" not in caplog.text
        assert "[REDACTED]" in caplog.text


class TestNotificationDispatcher:

    def test_dispatch_to_all_subscribers(self):
        dispatcher = NotificationDispatcher()
        first, second = MagicMock(), MagicMock()
        dispatcher.subscribe(first)
        dispatcher.subscribe(second)

        assert dispatcher.dispatch(_decision()) == 0
        first.assert_called_once()
        second.assert_called_once()

    def test_failures_counted_and_logged(self, caplog):
        dispatcher = NotificationDispatcher()
        dispatcher.subscribe(MagicMock(side_effect=ConnectionError("smtp down")))
        healthy = MagicMock()
        dispatcher.subscribe(healthy)

        with caplog.at_level(logging.INFO):
            assert dispatcher.dispatch(_decision()) == 1

        healthy.assert_called_once()
        assert "smtp down" in caplog.text

    def test_unsubscribe(self):
        dispatcher = NotificationDispatcher()
        callback = MagicMock()
        dispatcher.subscribe(callback)
        dispatcher.unsubscribe(callback)
        dispatcher.dispatch(_decision())
        callback.assert_not_called()

    def test_non_callable_subscriber(self):
        with pytest.raises(ValueError):
            NotificationDispatcher().subscribe("not callable")

    def test_default_subscriber_redacts_proofs(self, caplog):
        with caplog.at_level(logging.INFO):
            log_event(_decision())
        assert "ab" * 96 not in caplog.text
        assert "notification_decision_reached" in caplog.text

    def test_decision_to_dict(self):
        data = _decision().to_dict()
        assert data["decided_at"] == DECIDED_AT.isoformat()
        assert data["event_type"] == "decision_reached"
