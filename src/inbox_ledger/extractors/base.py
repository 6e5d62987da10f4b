from abc import ABC, abstractmethod

from inbox_ledger.domain.extraction import RawExtraction
from inbox_ledger.models import CandidateMessage


class Extractor(ABC):
    @abstractmethod
    async def extract(self, message: CandidateMessage) -> RawExtraction:
        """Turn one message into an extraction outcome. Must not raise."""
        pass
