"""
SlashKeeper Stake Types

Records the slashing engine reads and writes. Candidates and delegations are
owned by the registry and the delegation ledger; the engine only borrows them
for the duration of one slashing transaction.

Shares are integers in the chain's base unit. Ratios are exact Fractions.
"""

from dataclasses import dataclass, field
from datetime import datetime, timezone
from fractions import Fraction
from typing import Optional


def utc_now() -> datetime:
    """Default clock for the engine."""
    return datetime.now(timezone.utc)


def mul_ratio(amount: int, ratio: Fraction) -> int:
    """
    Multiply an integer amount by a rational ratio, truncating toward zero.

    Stake is never created by rounding: 15 * 1/10 yields 1, not 2.
    """
    product = amount * ratio.numerator
    if product < 0:
        return -((-product) // ratio.denominator)
    return product // ratio.denominator


@dataclass
class Candidate:
    """
    A validator as seen by the slashing engine.

    Attributes:
        pub_key: Consensus public key (hex)
        owner_address: Address of the account that owns the validator
        shares: Total shares delegated to the validator, self-delegation included
        active: False once the validator has been removed
        created_at: When the candidate was registered
        updated_at: Last time the record was written
    """
    pub_key: str
    owner_address: str
    shares: int = 0
    active: bool = True
    created_at: datetime = field(default_factory=utc_now)
    updated_at: Optional[datetime] = None

    @property
    def is_active(self) -> bool:
        return self.active

    def add_shares(self, delta: int) -> None:
        """Apply a signed change to the total shares."""
        self.shares += delta

    def to_dict(self) -> dict:
        return {
            'pub_key': self.pub_key,
            'owner_address': self.owner_address,
            'shares': str(self.shares),
            'active': self.active,
            'created_at': self.created_at.isoformat(),
            'updated_at': self.updated_at.isoformat() if self.updated_at else None,
        }

    @classmethod
    def from_dict(cls, data: dict) -> 'Candidate':
        return cls(
            pub_key=data['pub_key'],
            owner_address=data['owner_address'],
            shares=int(data.get('shares', 0)),
            active=data.get('active', True),
            created_at=datetime.fromisoformat(data['created_at']) if 'created_at' in data else utc_now(),
            updated_at=datetime.fromisoformat(data['updated_at']) if data.get('updated_at') else None,
        )


@dataclass
class Delegation:
    """
    Stake bound to one validator by one delegator.

    The validator's own stake is a delegation from its owner address.

    Attributes:
        delegator_address: Address of the delegator
        pub_key: Public key of the validator the stake is bound to
        shares: Shares currently held by this delegation
        slash_amount: Lifetime total slashed from this delegation
        created_at: When the delegation was made
        updated_at: Last time the record was written
    """
    delegator_address: str
    pub_key: str
    shares: int = 0
    slash_amount: int = 0
    created_at: datetime = field(default_factory=utc_now)
    updated_at: Optional[datetime] = None

    def add_slash_amount(self, amount: int) -> None:
        """Deduct a slash from the shares and add it to the lifetime total."""
        self.shares -= amount
        self.slash_amount += amount

    def to_dict(self) -> dict:
        return {
            'delegator_address': self.delegator_address,
            'pub_key': self.pub_key,
            'shares': str(self.shares),
            'slash_amount': str(self.slash_amount),
            'created_at': self.created_at.isoformat(),
            'updated_at': self.updated_at.isoformat() if self.updated_at else None,
        }

    @classmethod
    def from_dict(cls, data: dict) -> 'Delegation':
        return cls(
            delegator_address=data['delegator_address'],
            pub_key=data['pub_key'],
            shares=int(data.get('shares', 0)),
            slash_amount=int(data.get('slash_amount', 0)),
            created_at=datetime.fromisoformat(data['created_at']) if 'created_at' in data else utc_now(),
            updated_at=datetime.fromisoformat(data['updated_at']) if data.get('updated_at') else None,
        )


@dataclass(frozen=True)
class PunishHistory:
    """
    Audit record of one slashing or removal event. Never mutated.

    Attributes:
        pub_key: Public key of the punished validator
        slashing_ratio: Ratio applied (zero for a removal)
        slash_amount: Total shares deducted across all delegations
        reason: Human-readable reason
        created_at: When the punishment happened
    """
    pub_key: str
    slashing_ratio: Fraction
    slash_amount: int
    reason: str
    created_at: datetime

    def to_dict(self) -> dict:
        return {
            'pub_key': self.pub_key,
            'slashing_ratio': f"{self.slashing_ratio.numerator}/{self.slashing_ratio.denominator}",
            'slash_amount': str(self.slash_amount),
            'reason': self.reason,
            'created_at': self.created_at.isoformat(),
        }

    @classmethod
    def from_dict(cls, data: dict) -> 'PunishHistory':
        return cls(
            pub_key=data['pub_key'],
            slashing_ratio=Fraction(data['slashing_ratio']),
            slash_amount=int(data['slash_amount']),
            reason=data['reason'],
            created_at=datetime.fromisoformat(data['created_at']),
        )
