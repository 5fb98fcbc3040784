"""
Wallet signature verification tests.
"""

from datetime import datetime, timedelta, timezone

from verification.core import config, signatures
from verification.core.signatures import build_vote_message, derive_address, verify, split_signature

from conftest import TestWallet

NOW = datetime(2026, 3, 1, 9, 30, tzinfo=timezone.utc)
TOLERANCE = timedelta(seconds=300)


def _signed(wallet, decision="approve", issued_at=NOW):
    message = build_vote_message("req-1", "v1", decision, issued_at)
    return message, wallet.sign(message)


class TestVoteMessage:

    def test_message_binds_every_field(self):
        message = build_vote_message("req-1", "v1", "approve", NOW)
        assert message.splitlines() == [
            "verification-vote:v1",
            "request:req-1",
            "validator:v1",
            "decision:approve",
            "issued_at:2026-03-01T09:30:00+00:00",
        ]

    def test_naive_timestamp_treated_as_utc(self):
        naive = NOW.replace(tzinfo=None)
        assert build_vote_message("r", "v", "reject", naive) == build_vote_message("r", "v", "reject", NOW)

    def test_offset_timestamp_normalized(self):
        shifted = NOW.astimezone(timezone(timedelta(hours=2)))
        assert build_vote_message("r", "v", "reject", shifted) == build_vote_message("r", "v", "reject", NOW)


class TestAddresses:

    def test_address_shape(self, wallet):
        assert wallet.address.startswith("addr1")
        assert len(wallet.address) == len("addr1") + 56

    def test_testnet_prefix(self):
        assert TestWallet("addr_test1").address.startswith("addr_test1")

    def test_address_is_deterministic(self, wallet):
        assert derive_address(wallet.public_key, "addr1") == wallet.address


class TestVerify:

    def test_valid_signature(self, wallet):
        message, signature = _signed(wallet)
        check = verify(message, signature, wallet.address, NOW, NOW + timedelta(seconds=30), TOLERANCE)
        assert check.valid
        assert check.reason is None

    def test_testnet_wallet_verifies(self, monkeypatch):
        monkeypatch.setattr(config, "WALLET_NETWORK", "testnet")
        testnet = TestWallet("addr_test1")
        message, signature = _signed(testnet)
        assert verify(message, signature, testnet.address, NOW, NOW, TOLERANCE).valid

    def test_mainnet_rejects_testnet_wallet(self, monkeypatch):
        monkeypatch.setattr(config, "WALLET_NETWORK", "mainnet")
        testnet = TestWallet("addr_test1")
        message, signature = _signed(testnet)
        check = verify(message, signature, testnet.address, NOW, NOW, TOLERANCE)
        assert check.reason == signatures.ADDRESS_MISMATCH

    def test_testnet_rejects_mainnet_wallet(self, wallet, monkeypatch):
        monkeypatch.setattr(config, "WALLET_NETWORK", "testnet")
        message, signature = _signed(wallet)
        check = verify(message, signature, wallet.address, NOW, NOW, TOLERANCE)
        assert check.reason == signatures.ADDRESS_MISMATCH

    def test_malformed_hex(self, wallet):
        message, _ = _signed(wallet)
        check = verify(message, "zz-not-hex", wallet.address, NOW, NOW, TOLERANCE)
        assert check.reason == signatures.MALFORMED_SIGNATURE

    def test_wrong_length(self, wallet):
        message, signature = _signed(wallet)
        check = verify(message, signature[:-2], wallet.address, NOW, NOW, TOLERANCE)
        assert check.reason == signatures.MALFORMED_SIGNATURE

    def test_stale_timestamp(self, wallet):
        message, signature = _signed(wallet)
        check = verify(message, signature, wallet.address, NOW, NOW + timedelta(seconds=301), TOLERANCE)
        assert check.reason == signatures.STALE_TIMESTAMP

    def test_future_timestamp_beyond_tolerance(self, wallet):
        message, signature = _signed(wallet)
        check = verify(message, signature, wallet.address, NOW, NOW - timedelta(minutes=10), TOLERANCE)
        assert check.reason == signatures.STALE_TIMESTAMP

    def test_someone_elses_address(self, wallet):
        message, signature = _signed(wallet)
        other = TestWallet()
        check = verify(message, signature, other.address, NOW, NOW, TOLERANCE)
        assert check.reason == signatures.ADDRESS_MISMATCH

    def test_signature_for_other_decision(self, wallet):
        _, signature = _signed(wallet, "approve")
        message = build_vote_message("req-1", "v1", "reject", NOW)
        check = verify(message, signature, wallet.address, NOW, NOW, TOLERANCE)
        assert check.reason == signatures.CRYPTOGRAPHIC_FAILURE

    def test_split_signature(self, wallet):
        _, signature = _signed(wallet)
        public_key, raw_signature = split_signature(signature)
        assert public_key == wallet.public_key
        assert len(raw_signature) == 64

    def test_split_signature_rejects_non_string(self):
        assert split_signature(None) is None
