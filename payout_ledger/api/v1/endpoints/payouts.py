"""API endpoints for payout runs, approval and disbursement."""
from typing import List, Optional

from fastapi import APIRouter, HTTPException, Query, status

from payout_ledger.api.deps import DB, Processor
from payout_ledger.core.enum_utils import EnumDecodeError, decode_enum
from payout_ledger.core.unit_of_work import PersistenceFailure
from payout_ledger.models.payout import PayoutStatus
from payout_ledger.schemas.payout import (
    PayoutResponse,
    PayoutRunRequest,
    PayoutRunResponse,
    PayoutAggregatesResponse,
    SignPayoutsRequest,
    SignPayoutsResponse,
    ApprovePayoutsRequest,
    ApprovePayoutsResponse,
    FinalizeDisbursementRequest,
)
from payout_ledger.services.disbursement_service import DisbursementReconciler
from payout_ledger.services.payout_approval_service import PayoutApprovalService, PayoutNotFoundError
from payout_ledger.services.payout_period import PayoutPeriod, PayoutPeriodError
from payout_ledger.services.payout_service import PayoutService
from payout_ledger.services.payout_state_machine import InvalidPayoutTransition
from payout_ledger.services.paypal_payout_service import DisbursementFailure

router = APIRouter()


def _period(year: int, month: int) -> PayoutPeriod:
    try:
        return PayoutPeriod.from_month(year, month)
    except PayoutPeriodError as e:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=e.message)


def _payouts(payouts) -> List[PayoutResponse]:
    return [PayoutResponse.model_validate(p) for p in payouts]


# ==================== Payout Runs ====================

@router.post("", response_model=PayoutRunResponse, status_code=status.HTTP_201_CREATED)
async def create_payout_run(
    request: PayoutRunRequest,
    db: DB,
):
    """
    Group the month's outstanding ledger lines into one payout per payee.

    The approver triggering the run holds the first signature.
    """
    period = _period(request.year, request.month)
    try:
        run = await PayoutService(db).create_payout_run(period, request.approver_id)
    except PersistenceFailure as e:
        raise HTTPException(status_code=status.HTTP_503_SERVICE_UNAVAILABLE, detail=e.message)

    return PayoutRunResponse(
        payouts=_payouts(run.payouts),
        refund_payouts=_payouts(run.refund_payouts),
        missing_payout_method=_payouts(run.missing_payout_method),
        total_amount=run.total_amount,
    )


@router.get("", response_model=List[PayoutResponse])
async def list_payouts(
    db: DB,
    year: int = Query(..., description="Period year"),
    month: int = Query(..., description="Period month, 1 to 12"),
    payout_status: Optional[str] = Query(None, alias="status", description="PENDING_APPROVAL, PROCESSING, PAID, ..."),
    payee_id: Optional[str] = Query(None),
):
    """List payouts of a period."""
    period = _period(year, month)
    service = PayoutService(db)
    if payee_id:
        return await service.read_payouts_for_payee_in_period(payee_id, period)

    try:
        status_filter = decode_enum(payout_status.upper(), PayoutStatus) if payout_status else None
    except EnumDecodeError as e:
        raise HTTPException(status_code=status.HTTP_422_UNPROCESSABLE_ENTITY, detail=e.message)
    return await service.read_payouts_in_period(period, status_filter)


@router.get("/aggregates", response_model=PayoutAggregatesResponse)
async def get_payout_aggregates(
    db: DB,
    year: int = Query(...),
    month: int = Query(...),
):
    """Total amount and count of a period's payouts."""
    period = _period(year, month)
    amount_total, count = await PayoutService(db).read_payout_aggregates(period)
    return PayoutAggregatesResponse(
        period_start=period.start_period,
        period_end=period.end_period,
        payout_date=period.payout_date,
        amount_total=amount_total,
        count=count,
    )


# ==================== Approval ====================

@router.post("/sign", response_model=SignPayoutsResponse)
async def sign_payouts(
    request: SignPayoutsRequest,
    db: DB,
    processor: Processor,
):
    """Sign payouts; those reaching two signatures move to PROCESSING."""
    service = PayoutApprovalService(db, processor)
    try:
        result = await service.sign_payouts(request.payout_ids, request.approver_id)
    except PayoutNotFoundError as e:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=e.message)
    except InvalidPayoutTransition as e:
        raise HTTPException(status_code=status.HTTP_409_CONFLICT, detail=e.message)
    except PersistenceFailure as e:
        raise HTTPException(status_code=status.HTTP_503_SERVICE_UNAVAILABLE, detail=e.message)

    return SignPayoutsResponse(
        advanced=_payouts(result.advanced),
        still_pending=_payouts(result.still_pending),
        already_signed=_payouts(result.already_signed),
        skipped=_payouts(result.skipped),
    )


@router.post("/approve", response_model=ApprovePayoutsResponse)
async def approve_payouts(
    request: ApprovePayoutsRequest,
    db: DB,
    processor: Processor,
):
    """
    Sign payouts and disburse those reaching quorum in one processor batch.

    A rejected batch changes nothing; 402 means the operator may retry
    (e.g. after funding the account), 400 means the batch must be fixed.
    """
    service = PayoutApprovalService(db, processor)
    try:
        result = await service.approve_and_disburse(
            request.payout_ids,
            request.approver_id,
            email_subject=request.email_subject,
            email_message=request.email_message,
        )
    except PayoutNotFoundError as e:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=e.message)
    except DisbursementFailure as e:
        raise HTTPException(
            status_code=status.HTTP_402_PAYMENT_REQUIRED if e.retryable else status.HTTP_400_BAD_REQUEST,
            detail={"name": e.name, "message": e.message, "retryable": e.retryable},
        )
    except InvalidPayoutTransition as e:
        raise HTTPException(status_code=status.HTTP_409_CONFLICT, detail=e.message)
    except PersistenceFailure as e:
        raise HTTPException(status_code=status.HTTP_503_SERVICE_UNAVAILABLE, detail=e.message)

    return ApprovePayoutsResponse(
        advanced=_payouts(result.advanced),
        still_pending=_payouts(result.still_pending),
        already_signed=_payouts(result.already_signed),
        skipped=_payouts(result.skipped),
        reconciled=_payouts(result.reconciled),
        payout_batch_id=result.payout_batch_id,
    )


@router.post("/finalize", response_model=List[PayoutResponse])
async def finalize_disbursement(
    request: FinalizeDisbursementRequest,
    db: DB,
):
    """Mark payouts of a confirmed processor batch as PAID / REFUNDED."""
    reconciler = DisbursementReconciler(db)
    try:
        payouts = await reconciler.finalize_disbursement(
            request.advanced_payout_ids,
            request.refunding_payout_ids,
            request.payout_batch_id,
        )
    except InvalidPayoutTransition as e:
        raise HTTPException(status_code=status.HTTP_409_CONFLICT, detail=e.message)
    except PersistenceFailure as e:
        raise HTTPException(status_code=status.HTTP_503_SERVICE_UNAVAILABLE, detail=e.message)
    return _payouts(payouts)
