"""
SlashKeeper Stake Module

Validator slashing for delegated proof-of-stake.

Components:
- AbsentValidators: per-validator miss counters fed once per height
- SlashingEngine: byzantine, absence and bad-proposer slashing plus removal
- BlockPunisher: routes one block's misbehaviour signals to the engine
- MemoryStakeStore: in-memory registry, delegation ledger and punishment log

Usage:
    from slashkeeper.stake import SlashingEngine, MemoryStakeStore

    store = MemoryStakeStore()
    engine = SlashingEngine(store, store, store)
    engine.slash_byzantine_validator(pub_key)
"""

from .absence import Absence, AbsentValidators
from .punisher import BlockPunisher, BlockPunishmentResult
from .slashing import SlashingEngine
from .store import (
    CandidateRegistry,
    DelegationLedger,
    PunishmentLog,
    MemoryStakeStore,
)
from .types import (
    Candidate,
    Delegation,
    PunishHistory,
    mul_ratio,
)

__all__ = [
    'Absence',
    'AbsentValidators',
    'BlockPunisher',
    'BlockPunishmentResult',
    'SlashingEngine',
    'CandidateRegistry',
    'DelegationLedger',
    'PunishmentLog',
    'MemoryStakeStore',
    'Candidate',
    'Delegation',
    'PunishHistory',
    'mul_ratio',
]
