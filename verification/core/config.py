"""
Configuration for the verification consensus engine.
Values come from the environment (optionally a local .env file).
"""

import os
from pathlib import Path

from dotenv import load_dotenv

load_dotenv()

# Database path configuration
DB_PATH = os.getenv("DB_PATH", "./data/verification.db")

DEBUG = os.getenv("DEBUG", "false").lower() == "true"

# Panel configuration
VALIDATOR_COUNT = int(os.getenv("VALIDATOR_COUNT", "5"))
REQUIRED_APPROVALS = int(os.getenv("REQUIRED_APPROVALS", "3"))
MINIMUM_VALIDATORS = int(os.getenv("MINIMUM_VALIDATORS", "3"))

# Deadlines
VOTING_DEADLINE_DAYS = int(os.getenv("VOTING_DEADLINE_DAYS", "4"))
DEADLINE_EXTENSION_DAYS = int(os.getenv("DEADLINE_EXTENSION_DAYS", "2"))
DEADLINE_CHECK_INTERVAL_SEC = int(os.getenv("DEADLINE_CHECK_INTERVAL_SEC", "3600"))
SWEEPER_ENABLED = os.getenv("SWEEPER_ENABLED", "true").lower() == "true"

# Wallet signatures
SIGNATURE_REQUIRED = os.getenv("SIGNATURE_REQUIRED", "true").lower() != "false"
SIGNATURE_TIMESTAMP_TOLERANCE_SEC = int(os.getenv("SIGNATURE_TIMESTAMP_TOLERANCE_SEC", "300"))
WALLET_NETWORK = os.getenv("WALLET_NETWORK", "mainnet")  # mainnet|testnet

# Transient storage errors (busy/locked database)
STORAGE_RETRY_ATTEMPTS = int(os.getenv("STORAGE_RETRY_ATTEMPTS", "5"))
STORAGE_RETRY_BASE_SEC = float(os.getenv("STORAGE_RETRY_BASE_SEC", "0.05"))
STORAGE_BUSY_TIMEOUT_SEC = float(os.getenv("STORAGE_BUSY_TIMEOUT_SEC", "30"))

VERSION = "1.0.0"


def get_db_path():
    """Database path, read on every call so tests can point at a temp file."""
    return os.getenv("DB_PATH", DB_PATH)


def debug_enabled():
    """Check if debug mode is enabled."""
    return os.getenv("DEBUG", "false").lower() == "true"


def ensure_db_directory():
    """Ensure the database directory exists."""
    Path(get_db_path()).parent.mkdir(parents=True, exist_ok=True)


def is_sweeper_enabled():
    """Check if the deadline sweeper should be scheduled."""
    return SWEEPER_ENABLED


def get_sweep_interval():
    """Get deadline sweep interval in seconds."""
    return DEADLINE_CHECK_INTERVAL_SEC


def is_signature_required():
    """Check if votes must carry a wallet signature."""
    return SIGNATURE_REQUIRED


def get_signature_tolerance_sec():
    """Maximum clock skew accepted between signing and submission."""
    return SIGNATURE_TIMESTAMP_TOLERANCE_SEC


def get_address_prefix():
    """Bech32-style human readable prefix for the configured wallet network."""
    return "addr_test1" if WALLET_NETWORK == "testnet" else "addr1"


def validate_config():
    """Validate panel, deadline and storage configuration and return any issues."""
    issues = []

    if VALIDATOR_COUNT < 1:
        issues.append("VALIDATOR_COUNT must be at least 1")

    if REQUIRED_APPROVALS < 1:
        issues.append("REQUIRED_APPROVALS must be at least 1")

    if REQUIRED_APPROVALS > VALIDATOR_COUNT:
        issues.append("REQUIRED_APPROVALS cannot exceed VALIDATOR_COUNT")

    if MINIMUM_VALIDATORS < REQUIRED_APPROVALS:
        issues.append("MINIMUM_VALIDATORS must be at least equal to REQUIRED_APPROVALS")

    if VOTING_DEADLINE_DAYS < 1:
        issues.append("VOTING_DEADLINE_DAYS must be >= 1")

    if DEADLINE_CHECK_INTERVAL_SEC < 1:
        issues.append("DEADLINE_CHECK_INTERVAL_SEC must be >= 1")

    if SIGNATURE_TIMESTAMP_TOLERANCE_SEC < 0:
        issues.append("SIGNATURE_TIMESTAMP_TOLERANCE_SEC must be >= 0")

    if WALLET_NETWORK not in ["mainnet", "testnet"]:
        issues.append(f"Invalid WALLET_NETWORK: {WALLET_NETWORK}")

    if STORAGE_RETRY_ATTEMPTS < 1:
        issues.append("STORAGE_RETRY_ATTEMPTS must be >= 1")

    return issues
