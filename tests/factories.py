"""Builders for ledger rows and a fake disbursement processor."""
from datetime import datetime, timezone
from typing import List, Optional

from payout_ledger.models.payout import PayoutItem, PayoutStatus, PayeeType, new_payout_item_id
from payout_ledger.models.payout_method import PayoutMethod, PayoutType, new_payout_method_id
from payout_ledger.services.payout_period import PayoutPeriod
from payout_ledger.services.paypal_payout_service import DisbursementFailure


MAY_2024 = PayoutPeriod.from_month(2024, 5)


def in_may(day: int = 3) -> datetime:
    return datetime(2024, 5, day, 12, 0, tzinfo=timezone.utc)


def make_item(
    payee_id: str,
    amount: int,
    payee_type: PayeeType = PayeeType.STORE,
    status: PayoutStatus = PayoutStatus.UNPAID,
    created_at: Optional[datetime] = None,
    order_item_id: str = "oitem_1",
    txn_id: str = "txn_1",
    fee: int = 0,
) -> PayoutItem:
    return PayoutItem(
        id=new_payout_item_id(),
        payee_id=payee_id,
        payee_type=payee_type.value,
        amount=amount,
        payment_processing_fee=fee,
        created_at=created_at or in_may(),
        status=status.value,
        currency="USD",
        order_item_id=order_item_id,
        txn_id=txn_id,
        payout_id=None,
    )


def make_method(
    payee_id: str,
    email: Optional[str] = None,
    payout_type: PayoutType = PayoutType.PAYPAL,
) -> PayoutMethod:
    return PayoutMethod(
        id=new_payout_method_id(),
        payee_id=payee_id,
        payout_type=payout_type.value,
        payout_email=email if email is not None else f"{payee_id}@example.com",
    )


class FakeProcessor:
    """Records dispatched batches; raises `error` instead when set."""

    def __init__(self, batch_id: str = "BATCH-1", error: Optional[DisbursementFailure] = None):
        self.batch_id = batch_id
        self.error = error
        self.batches: List[List[str]] = []

    async def dispatch_batch(self, payouts, email_subject=None, email_message=None) -> str:
        self.batches.append([p.id for p in payouts])
        if self.error is not None:
            raise self.error
        return self.batch_id
