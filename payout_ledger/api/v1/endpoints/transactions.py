"""API endpoints for sales transactions, refunds and payout methods."""
from fastapi import APIRouter, HTTPException, status

from payout_ledger.api.deps import DB
from payout_ledger.core.enum_utils import EnumDecodeError
from payout_ledger.core.unit_of_work import PersistenceFailure
from payout_ledger.schemas.payout import PayoutItemResponse
from payout_ledger.schemas.transaction import (
    TransactionCreate,
    TransactionResponse,
    TransactionWithItemsResponse,
    RefundCreate,
    RefundResponse,
    RefundWithItemsResponse,
    PayoutMethodCreate,
    PayoutMethodResponse,
)
from payout_ledger.services.obligation_service import ObligationService, OrderLineItem
from payout_ledger.services.payout_service import PayoutService
from payout_ledger.services.payout_split_service import PolicyResolutionFailure
from payout_ledger.services.refund_service import RefundService, RefundError

router = APIRouter()


# ==================== Transactions ====================

@router.post(
    "/transactions",
    response_model=TransactionWithItemsResponse,
    status_code=status.HTTP_201_CREATED,
)
async def record_transaction(
    request: TransactionCreate,
    db: DB,
):
    """
    Record a paid order and the ledger lines it owes.

    One STORE and one PLATFORM line per order item, plus affiliate lines
    when an affiliate earns a positive amount.
    """
    service = ObligationService(db)
    line_items = [
        OrderLineItem(
            id=li.id,
            actual_price=li.actual_price,
            store_id=li.store_id,
            currency=li.currency,
            payment_processing_fee=li.payment_processing_fee,
        )
        for li in request.line_items
    ]
    try:
        transaction, payout_items = await service.record_transaction(
            txn_id=request.txn_id,
            order_id=request.order_id,
            line_items=line_items,
            taxes=request.taxes,
            currency=request.currency,
            occurred_at=request.occurred_at,
            buyer_affiliate_id=request.buyer_affiliate_id,
            customer_id=request.customer_id,
            payment_processor=request.payment_processor,
            payment_intent_id=request.payment_intent_id,
            details=request.details,
        )
    except (PolicyResolutionFailure, EnumDecodeError) as e:
        raise HTTPException(status_code=status.HTTP_422_UNPROCESSABLE_ENTITY, detail=e.message)
    except PersistenceFailure as e:
        raise HTTPException(status_code=status.HTTP_503_SERVICE_UNAVAILABLE, detail=e.message)

    return TransactionWithItemsResponse(
        transaction=TransactionResponse.model_validate(transaction),
        payout_items=[PayoutItemResponse.model_validate(p) for p in payout_items],
    )


# ==================== Refunds ====================

@router.post(
    "/refunds",
    response_model=RefundWithItemsResponse,
    status_code=status.HTTP_201_CREATED,
)
async def refund_order_items(
    request: RefundCreate,
    db: DB,
):
    """Record a processor refund as mirror ledger lines."""
    service = RefundService(db)
    try:
        result = await service.refund_order_items(
            order_id=request.order_id,
            order_item_ids=request.order_item_ids,
            refund_id=request.refund_id,
            refund_txn_id=request.refund_txn_id,
            taxes=request.taxes,
            reason=request.reason,
            reason_details=request.reason_details,
        )
    except RefundError as e:
        raise HTTPException(status_code=status.HTTP_409_CONFLICT, detail=e.message)
    except PersistenceFailure as e:
        raise HTTPException(status_code=status.HTTP_503_SERVICE_UNAVAILABLE, detail=e.message)

    return RefundWithItemsResponse(
        refund=RefundResponse.model_validate(result.refund),
        transaction=TransactionResponse.model_validate(result.transaction),
        refund_items=[PayoutItemResponse.model_validate(p) for p in result.refund_items],
    )


# ==================== Payout Methods ====================

@router.post("/payout-methods", response_model=PayoutMethodResponse)
async def save_payout_method(
    request: PayoutMethodCreate,
    db: DB,
):
    """Create or replace where a payee receives payouts."""
    service = PayoutService(db)
    try:
        method = await service.upsert_payout_method(
            payee_id=request.payee_id,
            payout_type=request.payout_type,
            payout_email=request.payout_email,
        )
    except PersistenceFailure as e:
        raise HTTPException(status_code=status.HTTP_503_SERVICE_UNAVAILABLE, detail=e.message)
    return method
