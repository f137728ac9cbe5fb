from typing import Any, Dict, Optional

from pydantic import BaseModel, ConfigDict, Field, computed_field

PENDING = "PENDING"
SETTLEMENT_COMPLETED = "SETTLEMENT_COMPLETED"
PAID = "PAID"

# The gateway reports success under either label.
SUCCESS_STATUSES = frozenset({SETTLEMENT_COMPLETED, PAID})


def is_paid(status: Optional[str]) -> bool:
    return status in SUCCESS_STATUSES


class TransactionRecord(BaseModel):
    """
    Reconciled state of one payment, keyed by the gateway reference number.

    Records are immutable; the store swaps in a new copy on every update so a
    reader never sees a half-applied change.
    """
    model_config = ConfigDict(frozen=True, populate_by_name=True)

    reference_number: str = Field(..., alias="referenceNumber")
    status: str = PENDING
    amount: Optional[float] = None
    reason: Optional[str] = None
    raw_last_event: Optional[Dict[str, Any]] = Field(default=None, alias="rawLastEvent")

    @computed_field
    @property
    def paid(self) -> bool:
        return is_paid(self.status)

    def to_dict(self) -> Dict[str, Any]:
        return self.model_dump(mode="json", by_alias=True)


class TransactionPatch(BaseModel):
    """Fields an event carries. amount and reason only seed new records."""
    status: str
    raw_last_event: Optional[Dict[str, Any]] = None
    amount: Optional[float] = None
    reason: Optional[str] = None
