"""
Refund mirror path.

A refund never edits existing ledger lines. Each refunded line gets a mirror
with negated amount and fee, a fresh id, the refund transaction's id and
status REFUNDING; the next payout run deducts these separately.
"""
import logging
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Dict, List, Optional, Sequence

from sqlalchemy import select, and_
from sqlalchemy.ext.asyncio import AsyncSession

from payout_ledger.core.enum_utils import is_status
from payout_ledger.core.unit_of_work import UnitOfWork
from payout_ledger.models.payout import PayoutItem, PayoutStatus, PayeeType
from payout_ledger.models.transaction import Transaction, Refund
from payout_ledger.services.payout_period import ensure_utc


logger = logging.getLogger(__name__)

MIRROR_STATUSES = (
    PayoutStatus.REFUNDING.value,
    PayoutStatus.PENDING_REFUND.value,
    PayoutStatus.REFUNDED.value,
)


class RefundError(Exception):
    """Custom exception for refund errors."""
    def __init__(self, message: str, details: Dict = None):
        self.message = message
        self.details = details or {}
        super().__init__(self.message)


@dataclass
class PayeeTypeTotals:
    total_seller_payment: int = 0
    seller_payment_processing_fees: int = 0
    total_platform_fee: int = 0
    total_buyer_affiliate_fee: int = 0
    total_seller_affiliate_fee: int = 0

    @property
    def subtotal(self) -> int:
        """Order value the lines account for, fee included."""
        return (
            self.total_seller_payment
            + self.seller_payment_processing_fees
            + self.total_platform_fee
            + self.total_buyer_affiliate_fee
            + self.total_seller_affiliate_fee
        )


@dataclass
class RefundResult:
    refund: Refund
    transaction: Transaction
    refund_items: List[PayoutItem]
    totals: PayeeTypeTotals


def sum_payouts_by_payee_type(payout_items: Sequence[PayoutItem], payee_type: PayeeType) -> int:
    return sum(p.amount for p in payout_items if p.payee_type == payee_type.value)


def sum_payouts_for_all_payees(payout_items: Sequence[PayoutItem]) -> PayeeTypeTotals:
    return PayeeTypeTotals(
        total_seller_payment=sum_payouts_by_payee_type(payout_items, PayeeType.STORE),
        seller_payment_processing_fees=sum(
            p.payment_processing_fee for p in payout_items if p.payee_type == PayeeType.STORE.value
        ),
        total_platform_fee=sum_payouts_by_payee_type(payout_items, PayeeType.PLATFORM),
        total_buyer_affiliate_fee=sum_payouts_by_payee_type(payout_items, PayeeType.BUYER_AFFILIATE),
        total_seller_affiliate_fee=sum_payouts_by_payee_type(payout_items, PayeeType.SELLER_AFFILIATE),
    )


def create_refund_payout_items(
    payout_items: Sequence[PayoutItem],
    created_at: datetime,
    txn_id: str,
) -> List[PayoutItem]:
    """One mirror per non-zero line."""
    return [p.to_refund(created_at, txn_id) for p in payout_items if p.amount != 0]


class RefundService:
    def __init__(self, db: AsyncSession):
        self.db = db

    async def read_refundable_items(self, order_item_ids: Sequence[str]) -> List[PayoutItem]:
        """Forward (non-mirror) lines of the given order items."""
        result = await self.db.execute(
            select(PayoutItem)
            .where(
                and_(
                    PayoutItem.order_item_id.in_(list(order_item_ids)),
                    PayoutItem.status.notin_(MIRROR_STATUSES),
                )
            )
            .order_by(PayoutItem.order_item_id, PayoutItem.payee_type)
        )
        return list(result.scalars().all())

    async def read_refunded_order_item_ids(self, order_item_ids: Sequence[str]) -> List[str]:
        """Order items that already have mirror lines."""
        result = await self.db.execute(
            select(PayoutItem.order_item_id)
            .where(
                and_(
                    PayoutItem.order_item_id.in_(list(order_item_ids)),
                    PayoutItem.status.in_(MIRROR_STATUSES),
                )
            )
            .distinct()
        )
        return list(result.scalars().all())

    async def refund_order_items(
        self,
        order_id: str,
        order_item_ids: Sequence[str],
        refund_id: str,
        refund_txn_id: str,
        taxes: int = 0,
        reason: Optional[str] = None,
        reason_details: Optional[str] = None,
        refunded_at: Optional[datetime] = None,
    ) -> RefundResult:
        """
        Record a refund already issued by the card processor.

        Only lines that have not entered a payout (UNPAID) can be refunded.
        Refund transaction, Refund row and mirror lines are written together.
        """
        refunded_at = ensure_utc(refunded_at) if refunded_at else datetime.now(timezone.utc)
        payout_items = await self.read_refundable_items(order_item_ids)
        if not payout_items:
            raise RefundError(
                "No ledger lines found for the refunded order items",
                details={"order_id": order_id, "order_item_ids": list(order_item_ids)},
            )

        already_refunded = await self.read_refunded_order_item_ids(order_item_ids)
        if already_refunded:
            logger.warning(f"Refund {refund_id} rejected: order items already refunded: {already_refunded}")
            raise RefundError(
                "Order items have already been refunded",
                details={"order_item_ids": already_refunded},
            )

        already_moving = [p.id for p in payout_items if not is_status(p.status, PayoutStatus.UNPAID)]
        if already_moving:
            logger.warning(f"Refund {refund_id} rejected: lines already in a payout: {already_moving}")
            raise RefundError(
                "Ledger lines are already being paid out and cannot be refunded",
                details={"payout_item_ids": already_moving},
            )

        totals = sum_payouts_for_all_payees(payout_items)
        refund_items = create_refund_payout_items(payout_items, refunded_at, refund_txn_id)

        transaction = Transaction(
            id=refund_txn_id,
            subtotal=-totals.subtotal,
            taxes=-taxes,
            payment_processing_fee=-totals.seller_payment_processing_fees,
            created_at=refunded_at,
            currency=payout_items[0].currency,
            order_id=order_id,
            refund_id=refund_id,
        )
        refund = Refund(
            id=refund_id,
            transaction_id=refund_txn_id,
            order_id=order_id,
            order_item_ids=list(order_item_ids),
            created_at=refunded_at,
            reason=reason,
            reason_details=reason_details,
        )

        async def insert_transaction(db: AsyncSession):
            db.add(transaction)

        async def insert_refund(db: AsyncSession):
            db.add(refund)

        async def insert_refund_items(db: AsyncSession):
            db.add_all(refund_items)

        uow = UnitOfWork(self.db, "refund_order_items")
        uow.add("insert refund transaction", insert_transaction)
        uow.add("insert refund", insert_refund)
        uow.add("insert refund items", insert_refund_items)
        await uow.run()

        logger.info(
            f"Refund {refund_id} for order {order_id}: {len(refund_items)} mirror lines, total {-totals.subtotal}"
        )
        return RefundResult(refund=refund, transaction=transaction, refund_items=refund_items, totals=totals)
