"""Request and response bodies of the HTTP API."""

from typing import Literal, Optional, Dict, Any, List

from pydantic import BaseModel, Field, HttpUrl, TypeAdapter, ValidationError, field_validator

# Smallest charge the provider accepts, in minor units
MIN_CHARGE_AMOUNT = 50

_HTTP_URL = TypeAdapter(HttpUrl)


class CamelModel(BaseModel):
    """Accepts the camelCase wire names as well as the Python field names."""

    class Config:
        populate_by_name = True


class CreatePaymentIntentBody(CamelModel):
    amount: int = Field(..., ge=MIN_CHARGE_AMOUNT, description="Amount in minor units (cents)")
    currency: Literal["usd"]
    member_id: str = Field(..., alias="memberId", min_length=1)
    organization_id: str = Field(..., alias="organizationId", min_length=1)
    description: str = Field(..., min_length=1)


class PaymentIntentCreated(CamelModel):
    client_secret: Optional[str] = Field(None, alias="clientSecret")
    payment_intent_id: str = Field(..., alias="paymentIntentId")


class SubmitExpenseBody(CamelModel):
    submitter_name: str = Field(..., alias="submitterName", min_length=1)
    amount: float = Field(..., gt=0, description="Amount in major units (dollars)")
    category: str = Field(..., min_length=1)
    description: str = Field(..., min_length=1)
    member_id: str = Field(..., alias="memberId", min_length=1)
    organization_id: str = Field(..., alias="organizationId", min_length=1)
    receipt_url: Optional[str] = Field(None, alias="receiptUrl")


class ExpenseSubmitted(CamelModel):
    success: bool = True
    expense_id: str = Field(..., alias="expenseId")
    payment_intent_id: str = Field(..., alias="paymentIntentId")
    client_secret: Optional[str] = Field(None, alias="clientSecret")
    message: str
    demo: bool = False


class ReimbursementBody(CamelModel):
    amount: float = Field(..., gt=0, description="Amount in major units (dollars)")
    member_id: str = Field(..., alias="memberId", min_length=1)
    organization_id: str = Field(..., alias="organizationId", min_length=1)
    description: str = Field(..., min_length=1)
    receipt_url: Optional[str] = Field(None, alias="receiptUrl")
    expense_id: str = Field(..., alias="expenseId", min_length=1)

    @field_validator("receipt_url")
    @classmethod
    def receipt_url_must_be_http(cls, v: Optional[str]) -> Optional[str]:
        # Stored as sent; HttpUrl would normalize it
        if v:
            try:
                _HTTP_URL.validate_python(v)
            except ValidationError:
                raise ValueError("Receipt URL must be valid")
        return v


class ReimbursementIssued(CamelModel):
    success: bool = True
    transfer_id: str = Field(..., alias="transferId")
    message: str


class PaymentHistory(BaseModel):
    payments: List[Dict[str, Any]] = Field(default_factory=list)

