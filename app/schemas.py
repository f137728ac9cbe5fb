from typing import Any, Dict, Optional

from pydantic import BaseModel, Field, model_validator


class RedirectPaymentCreate(BaseModel):
    amount: float = Field(..., gt=0.0, examples=[10.0])
    currencyCode: str = Field(..., min_length=1, examples=["USD"])
    paymentReason: str = Field(..., min_length=1, examples=["invoice"])


class SeamlessPaymentCreate(BaseModel):
    amount: float = Field(..., gt=0.0)
    currencyCode: str = Field(..., min_length=1)
    paymentReason: str = Field(..., min_length=1)
    paymentMethodCode: str = Field(..., min_length=1, examples=["PZW211"])
    customerEmail: Optional[str] = None
    customerPhone: Optional[str] = None
    customerName: Optional[str] = None
    requiredFields: Dict[str, Any] = Field(default_factory=dict)

    @model_validator(mode="after")
    def require_contact(self) -> "SeamlessPaymentCreate":
        if not self.customerEmail and not self.customerPhone:
            raise ValueError("customerEmail or customerPhone is required")
        return self


class PollRequest(BaseModel):
    pollUrl: str = Field(..., min_length=1)


class TransactionRead(BaseModel):
    referenceNumber: str
    status: str
    amount: Optional[float] = None
    reason: Optional[str] = None
    paid: bool
    rawLastEvent: Optional[Dict[str, Any]] = None
