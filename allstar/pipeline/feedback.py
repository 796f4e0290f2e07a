"""
Feedback loader - bounded samples of past buyer verdicts.
"""
import logging

from ..errors import StorageError
from ..models.grading import Feedback, FeedbackSample, Verdict
from ..storage.base import Storage


logger = logging.getLogger(__name__)


class FeedbackLoader:
    """Reads the most recent disagreements and agreements, in that priority."""

    def __init__(self, storage: Storage, disagreement_limit: int = 20, agreement_limit: int = 5):
        self.storage = storage
        self.disagreement_limit = disagreement_limit
        self.agreement_limit = agreement_limit

    def load(self) -> FeedbackSample:
        disagreements = self._load(Verdict.DISAGREE, self.disagreement_limit)
        agreements = self._load(Verdict.AGREE, self.agreement_limit)
        logger.info(
            f"Loaded {len(disagreements)} disagreements, {len(agreements)} agreements"
        )
        return FeedbackSample(disagreements=disagreements, agreements=agreements)

    def _load(self, verdict: Verdict, limit: int) -> list[Feedback]:
        """Returns an empty list when storage cannot be read."""
        if limit <= 0:
            return []
        try:
            rows = self.storage.load_feedback(verdict, limit)
        except StorageError as e:
            logger.warning(f"Failed to fetch {verdict.value} feedback: {e}")
            return []
        return list(rows[:limit])
