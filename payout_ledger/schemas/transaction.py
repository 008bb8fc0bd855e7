"""Transaction, refund and payout method schemas."""
from datetime import datetime
from typing import Optional, List, Dict, Any

from pydantic import BaseModel, Field, field_validator

from payout_ledger.core.enum_utils import enum_values, normalize_to_uppercase
from payout_ledger.models.payout_method import PayoutType
from payout_ledger.schemas.base import BaseResponseSchema, BaseCreateSchema
from payout_ledger.schemas.payout import PayoutItemResponse


# ============== Transactions ==============

class OrderLineItemIn(BaseCreateSchema):
    id: str = Field(..., min_length=1)
    actual_price: int = Field(..., ge=0, description="Minor currency units")
    store_id: str
    currency: Optional[str] = Field(None, description="Defaults to DEFAULT_CURRENCY")
    payment_processing_fee: Optional[int] = None


class TransactionCreate(BaseCreateSchema):
    """A paid order, recorded together with its ledger lines."""
    txn_id: str = Field(..., min_length=1)
    order_id: str = Field(..., min_length=1)
    line_items: List[OrderLineItemIn] = Field(..., min_length=1)
    taxes: int = 0
    currency: Optional[str] = None
    occurred_at: Optional[datetime] = None
    buyer_affiliate_id: Optional[str] = None
    customer_id: Optional[str] = None
    payment_processor: Optional[str] = None
    payment_intent_id: Optional[str] = None
    details: Optional[Dict[str, Any]] = None


class TransactionResponse(BaseResponseSchema):
    id: str
    subtotal: int
    taxes: int
    payment_processing_fee: int
    created_at: datetime
    currency: str
    order_id: str
    customer_id: Optional[str] = None
    payment_processor: Optional[str] = None
    payment_intent_id: Optional[str] = None
    refund_id: Optional[str] = None
    details: Optional[Dict[str, Any]] = None


class TransactionWithItemsResponse(BaseModel):
    transaction: TransactionResponse
    payout_items: List[PayoutItemResponse] = []


# ============== Refunds ==============

class RefundCreate(BaseCreateSchema):
    """A refund already issued by the card processor."""
    order_id: str = Field(..., min_length=1)
    order_item_ids: List[str] = Field(..., min_length=1)
    refund_id: str = Field(..., min_length=1)
    refund_txn_id: str = Field(..., min_length=1)
    taxes: int = 0
    reason: Optional[str] = None
    reason_details: Optional[str] = None


class RefundResponse(BaseResponseSchema):
    id: str
    transaction_id: str
    order_id: str
    order_item_ids: List[str] = []
    created_at: datetime
    reason: Optional[str] = None
    reason_details: Optional[str] = None


class RefundWithItemsResponse(BaseModel):
    refund: RefundResponse
    transaction: TransactionResponse
    refund_items: List[PayoutItemResponse] = []


# ============== Payout Methods ==============

class PayoutMethodCreate(BaseCreateSchema):
    payee_id: str = Field(..., min_length=1)
    payout_type: PayoutType = PayoutType.PAYPAL
    payout_email: Optional[str] = Field(None, max_length=255)

    @field_validator("payout_type", mode="before")
    @classmethod
    def normalize_payout_type(cls, v):
        return normalize_to_uppercase(v, set(enum_values(PayoutType)))


class PayoutMethodResponse(BaseResponseSchema):
    id: str
    payee_id: str
    payout_type: Optional[str] = None
    payout_email: Optional[str] = None
    created_at: datetime
    updated_at: datetime
