"""Revenue-split policy schemas."""
from datetime import datetime
from decimal import Decimal
from typing import Optional

from pydantic import BaseModel, Field, field_validator

from payout_ledger.core.enum_utils import enum_values, normalize_to_uppercase
from payout_ledger.models.payout_split import SplitRole
from payout_ledger.schemas.base import BaseResponseSchema, BaseCreateSchema


class PayoutSplitResponse(BaseResponseSchema):
    id: str
    created_at: datetime
    payee_id: str
    role: str
    rate: Decimal
    expires_at: Optional[datetime] = None
    referrer_policy_id: Optional[str] = None


class PayoutSplitCreate(BaseCreateSchema):
    """Manual policy update by a platform admin."""
    payee_id: str = Field(..., min_length=1)
    role: SplitRole
    rate: Decimal = Field(..., ge=0, le=1)
    expires_at: Optional[datetime] = None

    @field_validator("role", mode="before")
    @classmethod
    def normalize_role(cls, v):
        return normalize_to_uppercase(v, set(enum_values(SplitRole)))


class SellerAffiliateCreate(BaseCreateSchema):
    """An affiliate referred a store."""
    store_id: str = Field(..., min_length=1)
    affiliate_id: str = Field(..., min_length=1)
    rate: Optional[Decimal] = Field(None, ge=0, le=1)
    expires_at: Optional[datetime] = None


class SellerAffiliateResponse(BaseModel):
    seller_policy: PayoutSplitResponse
    affiliate_policy: PayoutSplitResponse
