"""
SlashKeeper Slashing Engine

Penalizes validators for misbehaviour adjudicated elsewhere in the consensus
pipeline:

- byzantine evidence (double-signing or other equivocation)
- cumulative absence, tracked by AbsentValidators
- bad block proposals

A slash destroys the same fraction of every delegation bound to the
validator, the validator's self-delegation included, and records one
PunishHistory entry. Persistent misbehaviour deactivates the validator.
"""

from contextlib import nullcontext
from datetime import datetime
from fractions import Fraction
from typing import Callable, Optional

from ..config import SlashingParams, load_config
from ..constants import (
    BYZANTINE_REASON,
    ABSENT_REASON,
    BAD_PROPOSER_REASON,
    REMOVAL_REASON_TEMPLATE,
)
from ..exceptions import ValidatorNotFoundError
from ..logger import get_logger
from .absence import Absence
from .store import CandidateRegistry, DelegationLedger, PunishmentLog
from .types import Delegation, PunishHistory, mul_ratio, utc_now

logger = get_logger(__name__)


class SlashingEngine:
    """
    Applies slashes and removals against the registry and delegation ledger.

    The engine holds no state of its own. Each public operation runs inside
    the registry's transaction() when it has one, so a failure part-way
    through never leaves delegation and validator totals out of step.
    """

    def __init__(
        self,
        registry: CandidateRegistry,
        ledger: DelegationLedger,
        punish_log: PunishmentLog,
        params_source: Optional[Callable[[], SlashingParams]] = None,
        clock: Callable[[], datetime] = utc_now,
    ):
        """
        Args:
            registry: Validator registry
            ledger: Delegation ledger
            punish_log: Punishment history log
            params_source: Returns the current slashing parameters. Defaults to
                the [stake.slashing] section resolved once by `load_config()`
                (config.toml, SLASHKEEPER_* env overrides, `.env` defaults),
                validated at construction
            clock: Returns the current timestamp
        """
        self.registry = registry
        self.ledger = ledger
        self.punish_log = punish_log
        if params_source is None:
            slashing = load_config().slashing
            params_source = lambda: slashing
        self._params_source = params_source
        self._clock = clock

    @property
    def params(self) -> SlashingParams:
        return self._params_source()

    def _transaction(self):
        transaction = getattr(self.registry, "transaction", None)
        return transaction() if transaction is not None else nullcontext()

    # =========================================================================
    # TRIGGERS
    # =========================================================================

    def slash_byzantine_validator(self, pub_key: str) -> None:
        """
        Slash a validator for confirmed byzantine behaviour at the base ratio.

        Raises:
            ValidatorNotFoundError: if *pub_key* is not a known validator
        """
        with self._transaction():
            self._slash(pub_key, BYZANTINE_REASON, self.params.slashing_ratio)

    def slash_absent_validator(self, pub_key: str, absence: Absence) -> None:
        """
        Punish an absent validator according to its miss count.

        Below the maximum the base ratio is applied. At exactly the maximum
        the validator is removed instead. Past the maximum nothing happens.

        Raises:
            ValidatorNotFoundError: if *pub_key* is not a known validator
        """
        params = self.params
        count = absence.get_count()
        with self._transaction():
            if count < params.max_absence_blocks:
                self._slash(pub_key, ABSENT_REASON, params.slashing_ratio)
            elif count == params.max_absence_blocks:
                self._remove(pub_key, params)

    def slash_bad_proposer(self, pub_key: str) -> None:
        """
        Slash a bad block proposer as if it had been absent for the full
        run of blocks, then remove it.

        Raises:
            ValidatorNotFoundError: if *pub_key* is not a known validator
        """
        params = self.params
        ratio = params.slashing_ratio * params.max_absence_blocks
        with self._transaction():
            self._slash(pub_key, BAD_PROPOSER_REASON, ratio)
            self._remove(pub_key, params)

    def remove_validator(self, pub_key: str) -> None:
        """
        Deactivate a validator and record the removal.

        Raises:
            ValidatorNotFoundError: if *pub_key* is not a known validator
        """
        with self._transaction():
            self._remove(pub_key, self.params)

    # =========================================================================
    # DEDUCTION
    # =========================================================================

    def _slash(self, pub_key: str, reason: str, ratio: Fraction) -> None:
        validator = self.registry.get_by_pub_key(pub_key)
        if validator is None:
            raise ValidatorNotFoundError(pub_key)

        if validator.shares <= 0:
            logger.debug(f"Validator {pub_key} has no shares left, skipping slash")
            return

        now = self._clock()
        total_deduction = 0

        # Every delegation, the validator's own included
        for delegation in self.ledger.list_by_pub_key(validator.pub_key):
            amount = mul_ratio(delegation.shares, ratio)
            self._slash_delegator(delegation, validator.owner_address, amount, now)
            total_deduction += amount

        self.punish_log.append(PunishHistory(
            pub_key=pub_key,
            slashing_ratio=ratio,
            slash_amount=total_deduction,
            reason=reason,
            created_at=now,
        ))

        logger.warning(
            f"Validator slashed: {pub_key} lost {total_deduction} shares "
            f"(ratio={ratio}) for {reason}"
        )

    def _slash_delegator(
        self,
        delegation: Delegation,
        validator_address: str,
        amount: int,
        now: datetime,
    ) -> None:
        delegation.add_slash_amount(amount)
        delegation.updated_at = now
        self.ledger.update(delegation)

        validator = self.registry.get_by_address(validator_address)
        if validator is None:
            raise ValidatorNotFoundError(validator_address)
        validator.add_shares(-amount)
        validator.updated_at = now
        self.registry.update(validator)

        logger.debug(
            f"Slashed delegator {delegation.delegator_address}: -{amount} shares "
            f"({delegation.slash_amount} total)"
        )

    # =========================================================================
    # REMOVAL
    # =========================================================================

    def _remove(self, pub_key: str, params: SlashingParams) -> None:
        validator = self.registry.get_by_pub_key(pub_key)
        if validator is None:
            raise ValidatorNotFoundError(pub_key)

        now = self._clock()
        validator.active = False
        validator.updated_at = now
        self.registry.update(validator)

        self.punish_log.append(PunishHistory(
            pub_key=pub_key,
            slashing_ratio=Fraction(0),
            slash_amount=0,
            reason=REMOVAL_REASON_TEMPLATE.format(blocks=params.max_absence_blocks),
            created_at=now,
        ))

        logger.warning(f"Validator removed: {pub_key} deactivated")
