import pytest
from unittest.mock import AsyncMock

from app.errors import MalformedEventError
from app.events import StatusEvent, creation_event
from app.reconciler import Reconciler


@pytest.fixture
def mock_publisher():
    return AsyncMock()


@pytest.fixture
def reconciler(store, mock_publisher):
    return Reconciler(store, mock_publisher)


def webhook(reference, status, **extra):
    return StatusEvent(
        reference_number=reference,
        status=status,
        payload={"referenceNumber": reference, "transactionStatus": status, **extra},
    )


@pytest.mark.asyncio
async def test_duplicate_terminal_event_is_idempotent(reconciler, store):
    await reconciler.record_creation(creation_event("REF1", 10.0, "invoice"))

    first = await reconciler.apply(webhook("REF1", "SETTLEMENT_COMPLETED"))
    second = await reconciler.apply(webhook("REF1", "SETTLEMENT_COMPLETED"))

    assert first == second
    assert store.get("REF1") == second
    assert len(store) == 1


@pytest.mark.asyncio
@pytest.mark.parametrize("status,paid", [
    ("SETTLEMENT_COMPLETED", True),
    ("PAID", True),
    ("CANCELLED", False),
    ("FAILED", False),
])
async def test_creation_then_webhook_derives_paid(reconciler, store, status, paid):
    await reconciler.record_creation(creation_event("REF1", 10.0, "invoice"))
    record = await reconciler.apply(webhook("REF1", status))

    assert record.status == status
    assert record.paid is paid
    assert record.amount == 10.0
    assert record.reason == "invoice"


@pytest.mark.asyncio
async def test_webhook_for_unseen_reference_synthesizes_record(reconciler, store):
    event = StatusEvent(
        reference_number="NEW1", status="PAID", amount=42.0, reason="walk-in",
        payload={"referenceNumber": "NEW1"},
    )
    record = await reconciler.apply(event)

    assert record.reference_number == "NEW1"
    assert record.paid is True
    assert record.amount == 42.0
    assert record.raw_last_event == {"referenceNumber": "NEW1"}


@pytest.mark.asyncio
async def test_late_event_overwrites_terminal_status(reconciler):
    await reconciler.apply(webhook("REF1", "PAID"))
    record = await reconciler.apply(webhook("REF1", "PENDING"))

    assert record.status == "PENDING"
    assert record.paid is False


@pytest.mark.asyncio
async def test_raw_last_event_is_replaced_not_merged(reconciler):
    await reconciler.apply(webhook("REF1", "PENDING", extra_field="first"))
    record = await reconciler.apply(webhook("REF1", "PAID"))

    assert "extra_field" not in record.raw_last_event


@pytest.mark.asyncio
async def test_status_change_is_published(reconciler, mock_publisher):
    await reconciler.record_creation(creation_event("REF1", 10.0, "invoice"))
    await reconciler.apply(webhook("REF1", "PAID"))

    mock_publisher.publish.assert_called_once()
    args, _ = mock_publisher.publish.call_args
    assert args[0] == "payment.status_changed"
    assert args[1]["event_type"] == "PaymentStatusChanged"
    assert args[1]["reference_number"] == "REF1"
    assert args[1]["paid"] is True


@pytest.mark.asyncio
async def test_duplicate_event_is_not_republished(reconciler, mock_publisher):
    await reconciler.apply(webhook("REF1", "PAID"))
    await reconciler.apply(webhook("REF1", "PAID"))

    assert mock_publisher.publish.call_count == 1


@pytest.mark.asyncio
async def test_malformed_webhook_leaves_store_untouched(reconciler, store):
    await reconciler.record_creation(creation_event("REF1", 10.0, "invoice"))
    before = store.list_all()

    with pytest.raises(MalformedEventError):
        await reconciler.ingest_webhook({"unexpected": "shape"})

    assert store.list_all() == before


@pytest.mark.asyncio
async def test_reconciler_without_publisher(store):
    reconciler = Reconciler(store)
    record = await reconciler.ingest_webhook({"referenceNumber": "REF1", "transactionStatus": "PAID"})
    assert record.paid is True
