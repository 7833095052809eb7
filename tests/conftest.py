"""
Pytest configuration and fixtures for ShieldLedger tests.

Provides a controllable clock, a fresh in-memory ledger and a funded ledger
with one active policy.
"""
import pytest

from shieldledger import Ledger, LedgerConfig, PolicyMetadata
from shieldledger.store import LedgerStore

T0 = 1_700_000_000
DAY = 86_400

FUNDER = "0xfunder"
USER = "0xuser"
ADMIN = "admin"


# =============================================================================
# Factory Helpers
# =============================================================================

class FixedClock:
    """Clock that only moves when told to."""

    def __init__(self, now: int = T0):
        self.now = now

    def __call__(self) -> int:
        return self.now

    def advance(self, seconds: int) -> int:
        self.now += seconds
        return self.now


def make_metadata(**overrides) -> PolicyMetadata:
    """Scenario policy: 100 coverage, 10 premium, 80 payout, 90 days (6 decimals)."""
    terms = {
        "coverage_amount": 100_000_000,
        "premium_amount": 10_000_000,
        "payout_amount": 80_000_000,
        "term_days": 90,
        "trigger_description": "Rainfall below 20mm over 30 days",
        "details": "Smallholder drought cover",
    }
    terms.update(overrides)
    return PolicyMetadata(**terms)


def make_ledger(clock, **config) -> Ledger:
    config.setdefault("retry_backoff_ms", 0)
    return Ledger(LedgerConfig(**config), clock=clock)


def active_policy(ledger: Ledger, **overrides) -> int:
    policy_id = ledger.create_policy(ADMIN, make_metadata(**overrides))
    ledger.activate_policy(policy_id)
    return policy_id


# =============================================================================
# Fixtures
# =============================================================================

@pytest.fixture
def clock():
    return FixedClock()


@pytest.fixture
def store():
    return LedgerStore(retry_backoff_ms=0)


@pytest.fixture
def ledger(clock):
    """Empty in-memory ledger at 500 bps per day."""
    return make_ledger(clock)


@pytest.fixture
def funded_ledger(ledger):
    """
    Funder staked 1_000_000; user registered; policy 1 ACTIVE.
    """
    ledger.register_user(FUNDER)
    ledger.register_user(USER)
    ledger.stake(FUNDER, 1_000_000)
    active_policy(ledger)
    return ledger
