"""
Shared fixtures: a throwaway SQLite database, Ed25519 test wallets and a
ready-made five-member panel.
"""

import random
from datetime import datetime, timedelta, timezone

import pytest
from cryptography.hazmat.primitives.asymmetric.ed25519 import Ed25519PrivateKey
from cryptography.hazmat.primitives.serialization import Encoding, PublicFormat

from verification.core import config
from verification.core.db import init_db
from verification.core.deadlines import DeadlineSweeper
from verification.core.notifications import NotificationDispatcher
from verification.core.schema import Actor, Role, SignatureProof
from verification.core.signatures import build_vote_message, derive_address
from verification.core.workflow import VerificationWorkflow

NOW = datetime(2026, 1, 5, 12, 0, 0, tzinfo=timezone.utc)
ADMIN = Actor("admin", Role.ADMINISTRATOR)
SUBMITTER = Actor("dev", Role.DEVELOPER)
PANEL_IDS = ["v1", "v2", "v3", "v4", "v5"]


class TestWallet:
    """Ed25519 key pair that signs votes the way a validator's wallet would."""

    __test__ = False

    def __init__(self, prefix: str = "addr1"):
        self.private_key = Ed25519PrivateKey.generate()
        self.public_key = self.private_key.public_key().public_bytes(Encoding.Raw, PublicFormat.Raw)
        self.address = derive_address(self.public_key, prefix)

    def sign(self, message: str) -> str:
        signature = self.private_key.sign(message.encode("utf-8"))
        return (self.public_key + signature).hex()

    def prove(self, request_id: str, validator_id: str, decision: str, issued_at: datetime) -> SignatureProof:
        message = build_vote_message(request_id, validator_id, decision, issued_at)
        return SignatureProof(self.sign(message), self.address, issued_at)


class Panel:
    """A request in review with five registered, wallet-holding validators."""

    def __init__(self, workflow: VerificationWorkflow, request, wallets):
        self.workflow = workflow
        self.request = request
        self.wallets = wallets

    @property
    def id(self):
        return self.request.id

    @property
    def deadline(self):
        return self.request.voting_deadline

    def vote(self, validator_id: str, decision: str, now: datetime = NOW, notes=None):
        proof = self.wallets[validator_id].prove(self.id, validator_id, decision, now)
        actor = Actor(validator_id, Role.VERIFIER)
        return self.workflow.cast_vote(self.id, actor, decision, proof, notes, now=now)


@pytest.fixture(autouse=True)
def temp_db(tmp_path, monkeypatch):
    """Point every test at its own database file."""
    db_path = tmp_path / "verification_test.db"
    monkeypatch.setenv("DB_PATH", str(db_path))
    monkeypatch.setattr(config, "STORAGE_RETRY_BASE_SEC", 0.001)
    init_db()
    yield db_path


@pytest.fixture
def dispatcher():
    return NotificationDispatcher()


@pytest.fixture
def workflow(dispatcher):
    return VerificationWorkflow(notifier=dispatcher)


@pytest.fixture
def sweeper(workflow):
    return DeadlineSweeper(workflow)


@pytest.fixture
def rng():
    return random.Random(1234)


@pytest.fixture
def wallet():
    return TestWallet()


@pytest.fixture
def directory(workflow):
    """Register admin, submitter and six verifiers with wallets."""
    wallets = {}
    workflow.register_validator(ADMIN.user_id, Role.ADMINISTRATOR)
    workflow.register_validator(SUBMITTER.user_id, Role.DEVELOPER)
    for validator_id in PANEL_IDS + ["v6"]:
        wallets[validator_id] = TestWallet()
        workflow.register_validator(validator_id, Role.VERIFIER, wallets[validator_id].address)
    return wallets


@pytest.fixture
def panel(workflow, directory):
    """Pending -> in_review request with panel v1..v5, n=5, k=3, deadline NOW + 4 days."""
    request = workflow.create_request("project-1", SUBMITTER.user_id, now=NOW - timedelta(hours=1))
    request, _ = workflow.assign_panel(request.id, ADMIN, PANEL_IDS, now=NOW)
    return Panel(workflow, request, directory)
