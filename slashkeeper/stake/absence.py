"""
SlashKeeper Absence Tracking

Counts how often each validator has been absent while blocks are produced.
The block-processing loop owns one AbsentValidators instance per validator
set and feeds it once per height.
"""

from dataclasses import dataclass
from typing import Dict, Iterator, Optional, Tuple

from ..logger import get_logger

logger = get_logger(__name__)


@dataclass
class Absence:
    """
    Miss counter for one validator.

    Attributes:
        count: Number of recorded misses since the entry was created
        last_block_height: Height of the most recent recorded miss
    """
    count: int = 1
    last_block_height: int = 0

    def accumulate(self) -> None:
        # The stored height advances by one per miss, whatever height was
        # passed to AbsentValidators.add. This equals the passed height only
        # while clear() runs at every height.
        self.count += 1
        self.last_block_height += 1

    def get_count(self) -> int:
        return self.count


class AbsentValidators:
    """
    Table of validators currently accumulating misses, keyed by public key.

    Callers must serialize add/remove/clear; the table is not thread-safe.
    """

    def __init__(self):
        self.validators: Dict[str, Absence] = {}

    def add(self, pub_key: str, height: int) -> None:
        """Record a miss for *pub_key* at *height*."""
        absence = self.validators.get(pub_key)
        if absence is None:
            absence = Absence(count=1, last_block_height=height)
            self.validators[pub_key] = absence
        else:
            absence.accumulate()
        logger.debug(
            f"Absent validator {pub_key}: count={absence.count} "
            f"height={absence.last_block_height}"
        )

    def remove(self, pub_key: str) -> None:
        self.validators.pop(pub_key, None)

    def clear(self, current_block_height: int) -> None:
        """
        Drop every entry that was not marked absent at *current_block_height*.

        Call once per height after all add() calls for that height.
        """
        stale = [
            pk for pk, absence in self.validators.items()
            if absence.last_block_height != current_block_height
        ]
        for pk in stale:
            del self.validators[pk]
        if stale:
            logger.debug(
                f"Cleared {len(stale)} absence entries at height {current_block_height}"
            )

    def snapshot(self) -> Dict[str, Absence]:
        """Independent copy of the table, for restore()."""
        return {
            pk: Absence(count=a.count, last_block_height=a.last_block_height)
            for pk, a in self.validators.items()
        }

    def restore(self, snapshot: Dict[str, Absence]) -> None:
        self.validators = snapshot

    def contains(self, pub_key: str) -> bool:
        return pub_key in self.validators

    def get(self, pub_key: str) -> Optional[Absence]:
        return self.validators.get(pub_key)

    def items(self) -> Iterator[Tuple[str, Absence]]:
        """Snapshot of (pub_key, absence) pairs, safe to iterate while mutating."""
        return iter(list(self.validators.items()))

    def __contains__(self, pub_key: str) -> bool:
        return self.contains(pub_key)

    def __len__(self) -> int:
        return len(self.validators)

    def __iter__(self) -> Iterator[str]:
        return iter(list(self.validators))
