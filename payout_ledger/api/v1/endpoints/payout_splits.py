"""API endpoints for revenue-split policies."""
from typing import List

from fastapi import APIRouter, HTTPException, Query, status

from payout_ledger.api.deps import DB
from payout_ledger.core.unit_of_work import PersistenceFailure
from payout_ledger.schemas.payout_split import (
    PayoutSplitCreate,
    PayoutSplitResponse,
    SellerAffiliateCreate,
    SellerAffiliateResponse,
)
from payout_ledger.services.payout_split_service import PayoutSplitService, AffiliateError

router = APIRouter()


@router.get("", response_model=List[PayoutSplitResponse])
async def list_payout_splits(
    db: DB,
    payee_id: str = Query(..., description="Store or affiliate id"),
):
    """All policies of a payee, newest first; the first one is in force."""
    return await PayoutSplitService(db).read_payout_splits(payee_id)


@router.post("", response_model=PayoutSplitResponse, status_code=status.HTTP_201_CREATED)
async def create_payout_split(
    request: PayoutSplitCreate,
    db: DB,
):
    service = PayoutSplitService(db)
    try:
        return await service.create_payout_split(
            payee_id=request.payee_id,
            role=request.role,
            rate=request.rate,
            expires_at=request.expires_at,
        )
    except AffiliateError as e:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=e.message)
    except PersistenceFailure as e:
        raise HTTPException(status_code=status.HTTP_503_SERVICE_UNAVAILABLE, detail=e.message)


@router.post(
    "/seller-affiliate",
    response_model=SellerAffiliateResponse,
    status_code=status.HTTP_201_CREATED,
)
async def create_seller_affiliate(
    request: SellerAffiliateCreate,
    db: DB,
):
    """Record that an affiliate referred a store."""
    service = PayoutSplitService(db)
    try:
        seller_policy, affiliate_policy = await service.write_seller_affiliate_pair(
            store_id=request.store_id,
            affiliate_id=request.affiliate_id,
            rate=request.rate,
            expires_at=request.expires_at,
        )
    except PersistenceFailure as e:
        raise HTTPException(status_code=status.HTTP_503_SERVICE_UNAVAILABLE, detail=e.message)

    return SellerAffiliateResponse(
        seller_policy=PayoutSplitResponse.model_validate(seller_policy),
        affiliate_policy=PayoutSplitResponse.model_validate(affiliate_policy),
    )
