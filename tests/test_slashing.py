"""
Slashing Engine Test Suite

Coverage:
  - proportional deduction across every delegation of a validator
  - punishment history bookkeeping
  - zero-stake no-op and unknown validator errors
  - absence threshold boundary (slash below, remove at, ignore past)
  - bad proposer amplification and removal
  - rollback of a failed slash
"""

import os
import sys
from datetime import datetime, timezone
from fractions import Fraction

import pytest

# ── Path setup ────────────────────────────────────────────────────────
ROOT = os.path.dirname(os.path.dirname(os.path.abspath(__file__)))
if ROOT not in sys.path:
    sys.path.insert(0, ROOT)

from slashkeeper.config import SlashingParams
from slashkeeper.exceptions import ConfigurationError, ValidatorNotFoundError
from slashkeeper.stake import (
    Absence,
    Candidate,
    Delegation,
    MemoryStakeStore,
    SlashingEngine,
    mul_ratio,
)


PUB_KEY = "a1" * 32
OWNER = "0x" + "11" * 20
NOW = datetime(2026, 1, 1, tzinfo=timezone.utc)


# =============================================================================
# FIXTURES
# =============================================================================

def seed_validator(store, pub_key, owner, shares):
    """Register a validator with one delegation per entry of *shares*; the first is the owner's."""
    store.add_candidate(Candidate(pub_key=pub_key, owner_address=owner, shares=sum(shares)))
    for i, amount in enumerate(shares):
        delegator = owner if i == 0 else f"0x{i:040x}"
        store.add_delegation(Delegation(delegator_address=delegator, pub_key=pub_key, shares=amount))


@pytest.fixture
def params():
    return SlashingParams(slashing_ratio=Fraction(1, 10), max_absence_blocks=12)


@pytest.fixture
def store():
    store = MemoryStakeStore()
    seed_validator(store, PUB_KEY, OWNER, [100, 50, 10])
    return store


@pytest.fixture
def engine(store, params):
    return SlashingEngine(store, store, store, params_source=lambda: params, clock=lambda: NOW)


def delegation_shares(store, pub_key=PUB_KEY):
    return [d.shares for d in store.list_by_pub_key(pub_key)]


# =============================================================================
# RATIO ARITHMETIC
# =============================================================================

class TestMulRatio:
    """Integer times rational, truncated toward zero."""

    def test_exact(self):
        assert mul_ratio(100, Fraction(1, 10)) == 10

    def test_truncates(self):
        assert mul_ratio(15, Fraction(1, 10)) == 1
        assert mul_ratio(9, Fraction(1, 10)) == 0

    def test_negative_truncates_toward_zero(self):
        assert mul_ratio(-15, Fraction(1, 10)) == -1

    def test_ratio_above_one(self):
        assert mul_ratio(10, Fraction(6, 5)) == 12


# =============================================================================
# BYZANTINE SLASHING
# =============================================================================

class TestSlashByzantine:
    """Base-ratio slash applied to every delegation."""

    def test_proportional_deductions(self, engine, store):
        """Shares [100, 50, 10] at ratio 1/10 lose [10, 5, 1]."""
        engine.slash_byzantine_validator(PUB_KEY)

        assert delegation_shares(store) == [90, 45, 9]
        assert [d.slash_amount for d in store.list_by_pub_key(PUB_KEY)] == [10, 5, 1]
        assert store.get_by_pub_key(PUB_KEY).shares == 160 - 16

    def test_single_punishment_record(self, engine, store):
        engine.slash_byzantine_validator(PUB_KEY)

        history = store.history(PUB_KEY)
        assert len(history) == 1
        record = history[0]
        assert record.slash_amount == 16
        assert record.slashing_ratio == Fraction(1, 10)
        assert record.reason == "Byzantine validator"
        assert record.created_at == NOW

    def test_validator_stays_active(self, engine, store):
        engine.slash_byzantine_validator(PUB_KEY)
        assert store.get_by_pub_key(PUB_KEY).is_active

    def test_total_matches_deductions_with_truncation(self, store, params):
        pub_key = "b2" * 32
        seed_validator(store, pub_key, "0x" + "22" * 20, [15, 7, 33])
        engine = SlashingEngine(store, store, store, params_source=lambda: params)
        before = store.get_by_pub_key(pub_key).shares

        engine.slash_byzantine_validator(pub_key)

        deductions = [d.slash_amount for d in store.list_by_pub_key(pub_key)]
        assert deductions == [1, 0, 3]
        assert store.history(pub_key)[0].slash_amount == sum(deductions)
        assert before - store.get_by_pub_key(pub_key).shares == sum(deductions)

    def test_slash_amount_accumulates(self, engine, store):
        engine.slash_byzantine_validator(PUB_KEY)
        engine.slash_byzantine_validator(PUB_KEY)

        self_delegation = store.get_delegation(PUB_KEY, OWNER)
        assert self_delegation.shares == 81
        assert self_delegation.slash_amount == 19
        assert len(store.history(PUB_KEY)) == 2

    def test_timestamps_written(self, engine, store):
        engine.slash_byzantine_validator(PUB_KEY)

        assert store.get_by_pub_key(PUB_KEY).updated_at == NOW
        assert all(d.updated_at == NOW for d in store.list_by_pub_key(PUB_KEY))

    def test_other_validators_untouched(self, engine, store):
        other = "c3" * 32
        seed_validator(store, other, "0x" + "33" * 20, [40])

        engine.slash_byzantine_validator(PUB_KEY)

        assert store.get_by_pub_key(other).shares == 40
        assert delegation_shares(store, other) == [40]
        assert store.history(other) == []

    @pytest.mark.parametrize("shares", [0, -5])
    def test_no_shares_is_noop(self, store, engine, shares):
        store.get_by_pub_key(PUB_KEY).shares = shares

        engine.slash_byzantine_validator(PUB_KEY)

        assert delegation_shares(store) == [100, 50, 10]
        assert store.get_by_pub_key(PUB_KEY).shares == shares
        assert store.history() == []

    def test_unknown_validator(self, engine, store):
        with pytest.raises(ValidatorNotFoundError) as exc_info:
            engine.slash_byzantine_validator("ff" * 32)

        assert exc_info.value.pub_key == "ff" * 32
        assert "validator not found" in str(exc_info.value)
        assert store.history() == []


# =============================================================================
# ABSENCE SLASHING
# =============================================================================

class TestSlashAbsent:
    """Exact-equality boundary between slashing and removal."""

    def test_below_threshold_slashes(self, engine, store):
        engine.slash_absent_validator(PUB_KEY, Absence(count=11, last_block_height=50))

        validator = store.get_by_pub_key(PUB_KEY)
        assert validator.shares == 144
        assert validator.is_active
        history = store.history(PUB_KEY)
        assert len(history) == 1
        assert history[0].reason == "Absent validator"
        assert history[0].slashing_ratio == Fraction(1, 10)

    def test_first_miss_slashes(self, engine, store):
        engine.slash_absent_validator(PUB_KEY, Absence(count=1, last_block_height=7))
        assert store.get_by_pub_key(PUB_KEY).shares == 144

    def test_at_threshold_removes_without_slash(self, engine, store):
        engine.slash_absent_validator(PUB_KEY, Absence(count=12, last_block_height=50))

        validator = store.get_by_pub_key(PUB_KEY)
        assert not validator.is_active
        assert validator.shares == 160
        assert delegation_shares(store) == [100, 50, 10]

        history = store.history(PUB_KEY)
        assert len(history) == 1
        assert history[0].slashing_ratio == 0
        assert history[0].slash_amount == 0
        assert history[0].reason == "Absent for up to 12 consecutive blocks"

    def test_past_threshold_does_nothing(self, engine, store):
        engine.slash_absent_validator(PUB_KEY, Absence(count=13, last_block_height=50))

        validator = store.get_by_pub_key(PUB_KEY)
        assert validator.is_active
        assert validator.shares == 160
        assert store.history() == []

    def test_unknown_validator(self, engine):
        with pytest.raises(ValidatorNotFoundError):
            engine.slash_absent_validator("ff" * 32, Absence(count=1, last_block_height=1))

    def test_unknown_validator_at_threshold(self, engine):
        with pytest.raises(ValidatorNotFoundError):
            engine.slash_absent_validator("ff" * 32, Absence(count=12, last_block_height=1))


# =============================================================================
# BAD PROPOSER
# =============================================================================

class TestSlashBadProposer:
    """Amplified slash followed by removal."""

    @pytest.fixture
    def params(self):
        return SlashingParams(slashing_ratio=Fraction(1, 100), max_absence_blocks=12)

    def test_amplified_ratio_and_removal(self, engine, store):
        engine.slash_bad_proposer(PUB_KEY)

        assert delegation_shares(store) == [88, 44, 9]
        validator = store.get_by_pub_key(PUB_KEY)
        assert validator.shares == 160 - 19
        assert not validator.is_active

        slash_record, removal_record = store.history(PUB_KEY)
        assert slash_record.slashing_ratio == Fraction(12, 100)
        assert slash_record.slash_amount == 19
        assert slash_record.reason == "Bad block proposer"
        assert removal_record.slashing_ratio == 0
        assert removal_record.slash_amount == 0

    def test_removed_even_without_shares(self, engine, store):
        store.get_by_pub_key(PUB_KEY).shares = 0

        engine.slash_bad_proposer(PUB_KEY)

        assert not store.get_by_pub_key(PUB_KEY).is_active
        history = store.history(PUB_KEY)
        assert len(history) == 1
        assert history[0].slash_amount == 0

    def test_ratio_can_exceed_one(self, store):
        params = SlashingParams(slashing_ratio=Fraction(1, 10), max_absence_blocks=12)
        engine = SlashingEngine(store, store, store, params_source=lambda: params)

        engine.slash_bad_proposer(PUB_KEY)

        assert store.history(PUB_KEY)[0].slashing_ratio == Fraction(6, 5)
        assert delegation_shares(store) == [-20, -10, -2]

    def test_unknown_validator_not_removed(self, engine, store):
        with pytest.raises(ValidatorNotFoundError):
            engine.slash_bad_proposer("ff" * 32)
        assert store.history() == []


# =============================================================================
# REMOVAL
# =============================================================================

class TestRemoveValidator:

    def test_marks_inactive(self, engine, store):
        engine.remove_validator(PUB_KEY)

        validator = store.get_by_pub_key(PUB_KEY)
        assert not validator.is_active
        assert validator.updated_at == NOW
        assert validator.shares == 160

    def test_records_zero_punishment(self, engine, store):
        engine.remove_validator(PUB_KEY)

        (record,) = store.history(PUB_KEY)
        assert record.slashing_ratio == Fraction(0)
        assert record.slash_amount == 0
        assert record.created_at == NOW

    def test_reason_follows_configured_threshold(self, store):
        params = SlashingParams(slashing_ratio=Fraction(1, 10), max_absence_blocks=5)
        engine = SlashingEngine(store, store, store, params_source=lambda: params)

        engine.remove_validator(PUB_KEY)

        assert store.history(PUB_KEY)[0].reason == "Absent for up to 5 consecutive blocks"

    def test_unknown_validator(self, engine, store):
        with pytest.raises(ValidatorNotFoundError):
            engine.remove_validator("ff" * 32)
        assert store.history() == []


# =============================================================================
# ATOMICITY
# =============================================================================

class FailingLedgerStore(MemoryStakeStore):
    """Store whose delegation writes fail after a fixed number of successes."""

    def __init__(self, fail_after):
        super().__init__()
        self.fail_after = fail_after
        self.delegation_writes = 0

    def update(self, record):
        if isinstance(record, Delegation):
            if self.delegation_writes >= self.fail_after:
                raise RuntimeError("disk full")
            self.delegation_writes += 1
        super().update(record)


class TestAtomicity:

    def test_failed_slash_rolls_back(self, params):
        store = FailingLedgerStore(fail_after=1)
        seed_validator(store, PUB_KEY, OWNER, [100, 50, 10])
        engine = SlashingEngine(store, store, store, params_source=lambda: params)

        with pytest.raises(RuntimeError):
            engine.slash_byzantine_validator(PUB_KEY)

        assert delegation_shares(store) == [100, 50, 10]
        assert [d.slash_amount for d in store.list_by_pub_key(PUB_KEY)] == [0, 0, 0]
        assert store.get_by_pub_key(PUB_KEY).shares == 160
        assert store.history() == []

    def test_failed_bad_proposer_keeps_validator_active(self, params):
        store = FailingLedgerStore(fail_after=0)
        seed_validator(store, PUB_KEY, OWNER, [100])
        engine = SlashingEngine(store, store, store, params_source=lambda: params)

        with pytest.raises(RuntimeError):
            engine.slash_bad_proposer(PUB_KEY)

        assert store.get_by_pub_key(PUB_KEY).is_active
        assert store.history() == []

    def test_nested_transaction_joins_outer(self, engine, store):
        with pytest.raises(ValueError):
            with store.transaction():
                engine.slash_byzantine_validator(PUB_KEY)
                raise ValueError("block rejected")

        assert store.get_by_pub_key(PUB_KEY).shares == 160
        assert store.history() == []

    def test_caught_failure_inside_block_commits_nothing(self, params):
        """A block transaction that swallows one failed slash keeps no part of it."""
        store = FailingLedgerStore(fail_after=1)
        seed_validator(store, PUB_KEY, OWNER, [100, 50, 10])
        other = "c3" * 32
        seed_validator(store, other, "0x" + "33" * 20, [40])
        engine = SlashingEngine(store, store, store, params_source=lambda: params)

        with store.transaction():
            with pytest.raises(RuntimeError):
                engine.slash_byzantine_validator(PUB_KEY)
            store.fail_after = 10
            engine.slash_byzantine_validator(other)

        assert delegation_shares(store) == [100, 50, 10]
        assert [d.slash_amount for d in store.list_by_pub_key(PUB_KEY)] == [0, 0, 0]
        assert store.get_by_pub_key(PUB_KEY).shares == 160
        assert store.history(PUB_KEY) == []
        assert store.get_by_pub_key(other).shares == 36
        assert store.history(other)[0].slash_amount == 4

    def test_engine_without_transaction_support(self, params):
        """Collaborators without transaction() are written directly."""
        backing = MemoryStakeStore()
        seed_validator(backing, PUB_KEY, OWNER, [100])

        class PlainRegistry:
            get_by_pub_key = staticmethod(backing.get_by_pub_key)
            get_by_address = staticmethod(backing.get_by_address)
            update = staticmethod(backing.update)

        engine = SlashingEngine(PlainRegistry(), backing, backing, params_source=lambda: params)
        engine.slash_byzantine_validator(PUB_KEY)

        assert backing.get_by_pub_key(PUB_KEY).shares == 90


# =============================================================================
# DEFAULT PARAMETERS
# =============================================================================

class TestDefaultParams:
    """An engine built without params_source reads the stake configuration."""

    @pytest.fixture(autouse=True)
    def clean_env(self, monkeypatch):
        for key in ("SLASHKEEPER_SLASHING_RATIO", "SLASHKEEPER_MAX_ABSENCE_BLOCKS", "SLASHKEEPER_CONFIG"):
            monkeypatch.delenv(key, raising=False)

    def test_reads_config_file(self, store, tmp_path, monkeypatch):
        path = tmp_path / "config.toml"
        path.write_text('[stake.slashing]\nslashing_ratio = "1/20"\nmax_absence_blocks = 4\n')
        monkeypatch.setenv("SLASHKEEPER_CONFIG", str(path))

        engine = SlashingEngine(store, store, store)

        assert engine.params.slashing_ratio == Fraction(1, 20)
        assert engine.params.max_absence_blocks == 4
        engine.slash_byzantine_validator(PUB_KEY)
        assert delegation_shares(store) == [95, 48, 10]

    def test_env_override_applies(self, store, tmp_path, monkeypatch):
        monkeypatch.setenv("SLASHKEEPER_CONFIG", str(tmp_path / "absent.toml"))
        monkeypatch.setenv("SLASHKEEPER_MAX_ABSENCE_BLOCKS", "3")

        engine = SlashingEngine(store, store, store)
        engine.slash_absent_validator(PUB_KEY, Absence(count=3, last_block_height=9))

        assert not store.get_by_pub_key(PUB_KEY).is_active

    def test_invalid_config_rejected(self, store, tmp_path, monkeypatch):
        path = tmp_path / "config.toml"
        path.write_text('[stake.slashing]\nmax_absence_blocks = 0\n')
        monkeypatch.setenv("SLASHKEEPER_CONFIG", str(path))

        with pytest.raises(ConfigurationError):
            SlashingEngine(store, store, store)
