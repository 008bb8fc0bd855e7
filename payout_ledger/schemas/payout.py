"""Payout Schemas."""
from datetime import datetime
from typing import Optional, List

from pydantic import BaseModel, Field

from payout_ledger.schemas.base import BaseResponseSchema, BaseCreateSchema


# ============== Response Schemas ==============

class PayoutItemResponse(BaseResponseSchema):
    id: str
    payee_id: str
    payee_type: str
    amount: int
    payment_processing_fee: int
    created_at: datetime
    status: str
    currency: str
    order_item_id: str
    txn_id: str
    payout_id: Optional[str] = None


class PayoutResponse(BaseResponseSchema):
    id: str
    payee_id: str
    payee_type: str
    amount: int
    created_at: datetime
    period_start: datetime
    period_end: datetime
    payout_date: datetime
    status: str
    payout_email: str
    currency: str
    payout_item_ids: List[str] = []
    approver_ids: List[str] = []
    payout_batch_id: Optional[str] = None
    paid_to_payment_method_id: Optional[str] = None
    details: Optional[str] = None


class PayoutRunResponse(BaseModel):
    """Result of a payout run."""
    payouts: List[PayoutResponse] = []
    refund_payouts: List[PayoutResponse] = []
    missing_payout_method: List[PayoutResponse] = []
    total_amount: int = 0


class SignPayoutsResponse(BaseModel):
    advanced: List[PayoutResponse] = []
    still_pending: List[PayoutResponse] = []
    already_signed: List[PayoutResponse] = []
    skipped: List[PayoutResponse] = []


class ApprovePayoutsResponse(SignPayoutsResponse):
    reconciled: List[PayoutResponse] = []
    payout_batch_id: Optional[str] = None


class PayoutAggregatesResponse(BaseModel):
    period_start: datetime
    period_end: datetime
    payout_date: datetime
    amount_total: int
    count: int


# ============== Request Schemas ==============

class PayoutRunRequest(BaseCreateSchema):
    """Create payouts for a calendar month."""
    year: int = Field(..., ge=2000, le=9999)
    month: int = Field(..., description="1 to 12")
    approver_id: str = Field(..., min_length=1)


class SignPayoutsRequest(BaseCreateSchema):
    payout_ids: List[str] = Field(..., min_length=1)
    approver_id: str = Field(..., min_length=1)


class ApprovePayoutsRequest(SignPayoutsRequest):
    email_subject: Optional[str] = None
    email_message: Optional[str] = None


class FinalizeDisbursementRequest(BaseCreateSchema):
    advanced_payout_ids: List[str] = []
    refunding_payout_ids: List[str] = []
    payout_batch_id: Optional[str] = None
