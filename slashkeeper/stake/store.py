"""
SlashKeeper Stake Store

Contracts for the collaborators the slashing engine consumes (validator
registry, delegation ledger, punishment log) and an in-memory store that
implements all three.

MemoryStakeStore.transaction() gives the all-or-nothing boundary a slash
needs: if anything raises inside it, candidates, delegations and punishment
history are restored to their state at the start of that transaction, at
any nesting depth.
"""

import copy
import threading
from abc import ABC, abstractmethod
from contextlib import contextmanager
from typing import Dict, Iterator, List, Optional, Tuple

from ..logger import get_logger
from .types import Candidate, Delegation, PunishHistory

logger = get_logger(__name__)


class CandidateRegistry(ABC):
    """Validator registry: lookup by public key or owner address, persist updates."""

    @abstractmethod
    def get_by_pub_key(self, pub_key: str) -> Optional[Candidate]:
        pass

    @abstractmethod
    def get_by_address(self, address: str) -> Optional[Candidate]:
        pass

    @abstractmethod
    def update(self, candidate: Candidate) -> None:
        pass


class DelegationLedger(ABC):
    """Delegation ledger: enumerate delegations of a validator, persist updates."""

    @abstractmethod
    def list_by_pub_key(self, pub_key: str) -> List[Delegation]:
        pass

    @abstractmethod
    def update(self, delegation: Delegation) -> None:
        pass


class PunishmentLog(ABC):
    """Append-only punishment history."""

    @abstractmethod
    def append(self, record: PunishHistory) -> None:
        pass

    @abstractmethod
    def history(self, pub_key: Optional[str] = None) -> List[PunishHistory]:
        """Records in append order, optionally filtered by validator."""
        pass


class MemoryStakeStore(CandidateRegistry, DelegationLedger, PunishmentLog):
    """
    In-memory registry, ledger and punishment log.

    Used by tests and by nodes that keep stake state in memory between
    commits. Lookups hand out the stored objects; update() replaces them.
    """

    def __init__(self):
        self._candidates: Dict[str, Candidate] = {}
        self._delegations: Dict[Tuple[str, str], Delegation] = {}
        self._punish_history: List[PunishHistory] = []
        self._tx_depth = 0
        self._lock = threading.RLock()

    # =========================================================================
    # SEEDING
    # =========================================================================

    def add_candidate(self, candidate: Candidate) -> Candidate:
        self._candidates[candidate.pub_key] = candidate
        return candidate

    def add_delegation(self, delegation: Delegation) -> Delegation:
        self._delegations[(delegation.pub_key, delegation.delegator_address)] = delegation
        return delegation

    # =========================================================================
    # CANDIDATE REGISTRY
    # =========================================================================

    def get_by_pub_key(self, pub_key: str) -> Optional[Candidate]:
        return self._candidates.get(pub_key)

    def get_by_address(self, address: str) -> Optional[Candidate]:
        for candidate in self._candidates.values():
            if candidate.owner_address == address:
                return candidate
        return None

    def update(self, record) -> None:
        """Persist a Candidate or a Delegation."""
        if isinstance(record, Candidate):
            self._candidates[record.pub_key] = record
        elif isinstance(record, Delegation):
            self._delegations[(record.pub_key, record.delegator_address)] = record
        else:
            raise TypeError(f"Cannot store {type(record).__name__}")

    def candidates(self) -> List[Candidate]:
        return list(self._candidates.values())

    # =========================================================================
    # DELEGATION LEDGER
    # =========================================================================

    def list_by_pub_key(self, pub_key: str) -> List[Delegation]:
        return [d for (pk, _), d in self._delegations.items() if pk == pub_key]

    def get_delegation(self, pub_key: str, delegator_address: str) -> Optional[Delegation]:
        return self._delegations.get((pub_key, delegator_address))

    # =========================================================================
    # PUNISHMENT LOG
    # =========================================================================

    def append(self, record: PunishHistory) -> None:
        self._punish_history.append(record)

    def history(self, pub_key: Optional[str] = None) -> List[PunishHistory]:
        if pub_key is None:
            return list(self._punish_history)
        return [r for r in self._punish_history if r.pub_key == pub_key]

    # =========================================================================
    # TRANSACTIONS
    # =========================================================================

    @contextmanager
    def transaction(self) -> Iterator["MemoryStakeStore"]:
        """
        Run a block of writes atomically.

        Every level is a savepoint: a failure restores the state at the
        start of that level only, so an outer transaction that catches the
        error commits none of the failed inner writes.
        """
        with self._lock:
            snapshot = (
                copy.deepcopy(self._candidates),
                copy.deepcopy(self._delegations),
                list(self._punish_history),
            )
            self._tx_depth += 1
            try:
                yield self
            except BaseException:
                self._candidates, self._delegations, self._punish_history = snapshot
                logger.warning(f"Stake transaction rolled back (depth {self._tx_depth})")
                raise
            finally:
                self._tx_depth -= 1
