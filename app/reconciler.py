import logging
from datetime import datetime
from typing import Any, Mapping, Optional
from uuid import uuid4

from app.events import StatusEvent, webhook_event
from app.messaging import STATUS_CHANGED_ROUTING_KEY, EventPublisher
from app.models import TransactionRecord
from app.store import TransactionStore

logger = logging.getLogger(__name__)


class Reconciler:
    """
    Applies creation and webhook events to the TransactionStore.

    Status updates are last-writer-wins: the gateway payload carries no
    sequence number, so a late event can overwrite a newer one. Results of
    check/poll calls are returned to callers and never applied here.
    """

    def __init__(self, store: TransactionStore, publisher: Optional[EventPublisher] = None):
        self.store = store
        self.publisher = publisher

    async def apply(self, event: StatusEvent) -> TransactionRecord:
        previous = self.store.get(event.reference_number)
        record = self.store.upsert(event.reference_number, event.to_patch())

        if previous is None:
            logger.info("Webhook for unseen transaction %s. Added with status %s.",
                        event.reference_number, record.status)
        else:
            logger.info("Updated transaction %s from %s to %s",
                        event.reference_number, previous.status, record.status)

        if previous is None or previous.status != record.status:
            await self._notify(record)
        return record

    async def ingest_webhook(self, body: Optional[Mapping[str, Any]]) -> TransactionRecord:
        event = webhook_event(body)
        logger.debug("Parsed webhook data: %s", event.payload)
        return await self.apply(event)

    async def record_creation(self, event: StatusEvent) -> TransactionRecord:
        record = self.store.insert_new(event.reference_number, event.to_patch())
        logger.info("Stored new transaction %s (%s)", record.reference_number, record.status)
        return record

    async def _notify(self, record: TransactionRecord):
        if self.publisher is None:
            return
        event_to_publish = {
            "event_id": str(uuid4()),
            "event_type": "PaymentStatusChanged",
            "timestamp": datetime.utcnow().isoformat(),
            "reference_number": record.reference_number,
            "status": record.status,
            "paid": record.paid,
        }
        await self.publisher.publish(STATUS_CHANGED_ROUTING_KEY, event_to_publish)
