"""
Store targets: the production ledger and the isolated test store.

The target is resolved once by the caller and passed explicitly to every
operation that touches persistence.
"""

import logging
import re
from enum import Enum

from ..config import StorageConfig
from ..errors import ValidationError
from .sqlite_store import StateStore

logger = logging.getLogger(__name__)

TEST_SUBJECT_MARKER = re.compile(r"\[test\]", re.IGNORECASE)


class StoreTarget(str, Enum):
    """Which database an operation reads and writes."""

    PRODUCTION = "production"
    TEST = "test"

    @classmethod
    def from_test_mode(cls, test_mode: bool) -> "StoreTarget":
        return cls.TEST if test_mode else cls.PRODUCTION


def is_test_subject(subject: str | None) -> bool:
    """True if the subject carries the case-insensitive `[test]` marker."""
    return bool(subject) and TEST_SUBJECT_MARKER.search(subject) is not None


def resolve_message_target(run_target: StoreTarget, subject: str | None) -> StoreTarget:
    """Target for one message: the test store if the run targets it or the subject is marked."""
    if run_target is StoreTarget.TEST or is_test_subject(subject):
        return StoreTarget.TEST
    return StoreTarget.PRODUCTION


class StoreRouter:
    """Opens and caches one StateStore per target."""

    def __init__(self, storage: StorageConfig):
        self.storage = storage
        self._stores: dict[StoreTarget, StateStore] = {}

    def path_for(self, target: StoreTarget):
        if target is StoreTarget.TEST:
            return self.storage.test_path
        return self.storage.production_path

    def get(self, target: StoreTarget) -> StateStore:
        if target not in self._stores:
            path = self.path_for(target)
            logger.debug("Opening %s store at %s", target.value, path)
            self._stores[target] = StateStore(path)
        return self._stores[target]

    def clear_test_store(self, target: StoreTarget = StoreTarget.TEST) -> None:
        """Empty the isolated test store.

        Raises:
            ValidationError: If asked to clear the production store.
        """
        if target is not StoreTarget.TEST:
            raise ValidationError("Refusing to clear the production store")
        self.get(StoreTarget.TEST).clear()
        logger.info("Cleared test store at %s", self.storage.test_path)
