import logging
import threading
from typing import Dict, List, Optional

from app.models import TransactionPatch, TransactionRecord

logger = logging.getLogger(__name__)


class TransactionStore:
    """
    In-process mapping of reference number to reconciled TransactionRecord.

    Writes to one reference are serialized by a per-reference lock, so two
    concurrent updates can never produce two records or a mixed record.
    Writes to different references only share the short structural lock that
    guards the lock table and insertion order.
    """

    def __init__(self):
        self._records: Dict[str, TransactionRecord] = {}
        self._key_locks: Dict[str, threading.Lock] = {}
        self._guard = threading.Lock()

    def _lock_for(self, reference_number: str) -> threading.Lock:
        with self._guard:
            lock = self._key_locks.get(reference_number)
            if lock is None:
                lock = self._key_locks[reference_number] = threading.Lock()
            return lock

    def _put(self, record: TransactionRecord):
        with self._guard:
            self._records[record.reference_number] = record

    def get(self, reference_number: str) -> Optional[TransactionRecord]:
        with self._guard:
            return self._records.get(reference_number)

    def upsert(self, reference_number: str, patch: TransactionPatch) -> TransactionRecord:
        """
        Replace status and rawLastEvent of an existing record, or create one.

        referenceNumber, amount and reason of an existing record are left
        untouched.
        """
        with self._lock_for(reference_number):
            current = self.get(reference_number)
            if current is None:
                record = TransactionRecord(
                    reference_number=reference_number,
                    status=patch.status,
                    amount=patch.amount,
                    reason=patch.reason,
                    raw_last_event=patch.raw_last_event,
                )
            else:
                record = current.model_copy(update={
                    "status": patch.status,
                    "raw_last_event": patch.raw_last_event,
                })
            self._put(record)
            return record

    def insert_new(self, reference_number: str, patch: TransactionPatch) -> TransactionRecord:
        """
        Store a freshly created transaction.

        If the reference is already known (a webhook beat the creation
        response here), the reconciled status is kept and only missing
        amount/reason are filled in.
        """
        with self._lock_for(reference_number):
            current = self.get(reference_number)
            if current is None:
                record = TransactionRecord(
                    reference_number=reference_number,
                    status=patch.status,
                    amount=patch.amount,
                    reason=patch.reason,
                    raw_last_event=patch.raw_last_event,
                )
            else:
                logger.warning(
                    "Creation for already known reference %s; keeping status %s",
                    reference_number, current.status,
                )
                record = current.model_copy(update={
                    "amount": current.amount if current.amount is not None else patch.amount,
                    "reason": current.reason if current.reason is not None else patch.reason,
                })
            self._put(record)
            return record

    def list_all(self) -> List[TransactionRecord]:
        """All records, most recently inserted first."""
        with self._guard:
            return list(reversed(list(self._records.values())))

    def clear(self):
        # Per-reference locks survive so a writer holding one stays serialized.
        with self._guard:
            self._records.clear()

    def __len__(self) -> int:
        with self._guard:
            return len(self._records)

    def __contains__(self, reference_number: str) -> bool:
        return self.get(reference_number) is not None
