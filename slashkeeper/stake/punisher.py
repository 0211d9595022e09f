"""
SlashKeeper Block Punisher

Routes the misbehaviour signals of one block to the slashing engine. The
consensus driver calls begin_block() once per height with the validators it
has already judged absent or byzantine.
"""

from dataclasses import dataclass, field
from typing import Iterable, List

from ..logger import get_logger
from .absence import AbsentValidators
from .slashing import SlashingEngine

logger = get_logger(__name__)


@dataclass
class BlockPunishmentResult:
    """What begin_block() did at one height."""
    height: int
    byzantine: List[str] = field(default_factory=list)
    absent: List[str] = field(default_factory=list)
    removed: List[str] = field(default_factory=list)


class BlockPunisher:
    """
    Couples an AbsentValidators tracker with a SlashingEngine.

    Not thread-safe: the caller serializes blocks.
    """

    def __init__(self, engine: SlashingEngine, tracker: AbsentValidators = None):
        self.engine = engine
        self.tracker = tracker if tracker is not None else AbsentValidators()

    def punish_byzantine(self, pub_keys: Iterable[str]) -> List[str]:
        punished = []
        for pub_key in pub_keys:
            self.engine.slash_byzantine_validator(pub_key)
            punished.append(pub_key)
        return punished

    def record_absences(self, height: int, pub_keys: Iterable[str]) -> List[str]:
        """
        Mark *pub_keys* absent at *height*, drop validators that were present,
        and slash or remove every validator still tracked.

        If any engine call raises, the tracker is put back as it was before
        this height so the block can be retried.

        Returns:
            Public keys handed to the engine as absent, in tracker order
        """
        saved = self.tracker.snapshot()
        try:
            for pub_key in pub_keys:
                self.tracker.add(pub_key, height)
            self.tracker.clear(height)

            punished = []
            for pub_key, absence in self.tracker.items():
                self.engine.slash_absent_validator(pub_key, absence)
                punished.append(pub_key)
        except Exception:
            self.tracker.restore(saved)
            logger.warning(f"Absence tracking at height {height} rolled back")
            raise
        return punished

    def punish_bad_proposer(self, pub_key: str) -> None:
        self.engine.slash_bad_proposer(pub_key)
        self.tracker.remove(pub_key)

    def begin_block(
        self,
        height: int,
        absent: Iterable[str] = (),
        byzantine: Iterable[str] = (),
    ) -> BlockPunishmentResult:
        """
        Process the punishments of one block: byzantine first, then absences.
        """
        result = BlockPunishmentResult(height=height)
        result.byzantine = self.punish_byzantine(byzantine)
        result.absent = self.record_absences(height, absent)

        max_blocks = self.engine.params.max_absence_blocks
        result.removed = [
            pk for pk in result.absent
            if self.tracker.get(pk).get_count() == max_blocks
        ]

        if result.byzantine or result.absent:
            logger.info(
                f"Block punishments at height {height}: "
                f"{len(result.byzantine)} byzantine, {len(result.absent)} absent, "
                f"{len(result.removed)} removed"
            )
        return result
