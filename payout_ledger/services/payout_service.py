"""
Payout run and payout reads.

A payout run gathers the period's outstanding ledger lines, aggregates
them per payee and persists the payable payouts together with the line
status changes in one unit of work.
"""
import logging
from dataclasses import dataclass, field
from typing import Dict, List, Optional, Sequence, Tuple

from sqlalchemy import select, update, func, and_
from sqlalchemy.ext.asyncio import AsyncSession

from payout_ledger.core.unit_of_work import UnitOfWork
from payout_ledger.models.payout import Payout, PayoutItem, PayoutStatus
from payout_ledger.models.payout_method import PayoutMethod, PayoutType, new_payout_method_id
from payout_ledger.services.payout_aggregator import (
    aggregate_payout_totals_by_payee_id,
    create_payout_emails_map,
    create_payout_methods_map,
    partition_by_payout_method,
)
from payout_ledger.services.payout_period import PayoutPeriod


logger = logging.getLogger(__name__)

OUTSTANDING_STATUSES = (
    PayoutStatus.UNPAID.value,
    PayoutStatus.MISSING_PAYOUT_METHOD.value,
    PayoutStatus.REFUNDING.value,
)


@dataclass
class PayoutRun:
    """Result of one payout run."""
    payouts: List[Payout] = field(default_factory=list)
    refund_payouts: List[Payout] = field(default_factory=list)
    missing_payout_method: List[Payout] = field(default_factory=list)

    @property
    def is_empty(self) -> bool:
        return not self.payouts

    @property
    def total_amount(self) -> int:
        return sum(p.amount for p in self.payouts)


def item_ids_of(payouts: Sequence[Payout]) -> List[str]:
    return [item_id for p in payouts for item_id in p.payout_item_ids]


async def set_items_status(db: AsyncSession, item_ids: Sequence[str], status: PayoutStatus) -> int:
    if not item_ids:
        return 0
    result = await db.execute(
        update(PayoutItem)
        .where(PayoutItem.id.in_(list(item_ids)))
        .values(status=status.value)
    )
    return result.rowcount


class PayoutService:
    """Creates payout runs and reads payouts."""

    def __init__(self, db: AsyncSession):
        self.db = db

    # ==================== PAYOUT RUN ====================

    async def read_outstanding_items(self, period: PayoutPeriod) -> List[PayoutItem]:
        """Lines created in the period that no payout holds yet."""
        result = await self.db.execute(
            select(PayoutItem)
            .where(
                and_(
                    PayoutItem.created_at >= period.start_period,
                    PayoutItem.created_at < period.end_period,
                    PayoutItem.status.in_(OUTSTANDING_STATUSES),
                    PayoutItem.payout_id.is_(None),
                )
            )
            .order_by(PayoutItem.payee_id, PayoutItem.created_at)
        )
        return list(result.scalars().all())

    async def read_payout_methods(self, payee_ids: Sequence[str]) -> List[PayoutMethod]:
        if not payee_ids:
            return []
        result = await self.db.execute(
            select(PayoutMethod).where(PayoutMethod.payee_id.in_(list(payee_ids)))
        )
        return list(result.scalars().all())

    async def create_payout_run(self, period: PayoutPeriod, approver_id: str) -> PayoutRun:
        """
        Aggregate the period's outstanding lines into payouts and persist them.

        Step order inside the unit of work:
        1. payable lines -> PENDING_APPROVAL
        2. missing-method lines -> MISSING_PAYOUT_METHOD
        3. refund lines -> PENDING_REFUND
        4. insert payouts
        5. link lines to their payout

        Payees without a payout email get no Payout row; their lines wait
        for the next run. If nothing is payable nothing is written.
        """
        items = await self.read_outstanding_items(period)
        refund_items = [p for p in items if p.status == PayoutStatus.REFUNDING.value]
        outstanding = [p for p in items if p.status != PayoutStatus.REFUNDING.value]

        methods = await self.read_payout_methods(sorted({p.payee_id for p in items}))
        emails = create_payout_emails_map(methods)
        methods_map = create_payout_methods_map(methods)

        aggregated = aggregate_payout_totals_by_payee_id(
            period, outstanding, emails, methods_map, approver_id
        )
        payable, missing = partition_by_payout_method(aggregated.values())
        refund_payouts = list(aggregate_payout_totals_by_payee_id(
            period, refund_items, emails, methods_map, approver_id, status=PayoutStatus.PENDING_REFUND
        ).values())

        for payout in missing:
            logger.warning(
                f"Payee {payout.payee_id} has no payout method; {len(payout.payout_item_ids)} lines held back"
            )

        if not payable:
            logger.info(f"Payout run {period}: nothing payable ({len(items)} outstanding lines)")
            return PayoutRun(missing_payout_method=missing)

        payable_item_ids = item_ids_of(payable)
        missing_item_ids = item_ids_of(missing)
        refund_item_ids = item_ids_of(refund_payouts)
        inserted = payable + refund_payouts

        async def link_items(db: AsyncSession):
            for payout in inserted:
                await db.execute(
                    update(PayoutItem)
                    .where(PayoutItem.id.in_(payout.payout_item_ids))
                    .values(payout_id=payout.id)
                )

        async def insert_payouts(db: AsyncSession):
            db.add_all(inserted)

        uow = UnitOfWork(self.db, "create_payout_run")
        uow.add("mark payable items", lambda db: set_items_status(db, payable_item_ids, PayoutStatus.PENDING_APPROVAL))
        uow.add("mark missing-method items", lambda db: set_items_status(db, missing_item_ids, PayoutStatus.MISSING_PAYOUT_METHOD))
        uow.add("mark refund items", lambda db: set_items_status(db, refund_item_ids, PayoutStatus.PENDING_REFUND))
        uow.add("insert payouts", insert_payouts)
        uow.add("link items to payouts", link_items)
        await uow.run()

        run = PayoutRun(payouts=payable, refund_payouts=refund_payouts, missing_payout_method=missing)
        logger.info(
            f"Payout run {period}: {len(payable)} payouts totalling {run.total_amount}, "
            f"{len(refund_payouts)} refund deductions, {len(missing)} missing payout method"
        )
        return run

    # ==================== READS ====================

    async def read_many_payouts(self, payout_ids: Sequence[str]) -> List[Payout]:
        if not payout_ids:
            return []
        result = await self.db.execute(
            select(Payout).where(Payout.id.in_(list(payout_ids))).order_by(Payout.payee_id)
        )
        return list(result.scalars().all())

    async def read_payouts_in_period(
        self,
        period: PayoutPeriod,
        status: Optional[PayoutStatus] = None,
    ) -> List[Payout]:
        query = select(Payout).where(
            and_(
                Payout.period_start >= period.start_period,
                Payout.period_end <= period.end_period,
            )
        )
        if status is not None:
            query = query.where(Payout.status == status.value)
        result = await self.db.execute(query.order_by(Payout.payee_id))
        return list(result.scalars().all())

    async def read_payouts_for_payee_in_period(self, payee_id: str, period: PayoutPeriod) -> List[Payout]:
        result = await self.db.execute(
            select(Payout)
            .where(
                and_(
                    Payout.payee_id == payee_id,
                    Payout.period_start >= period.start_period,
                    Payout.period_end <= period.end_period,
                )
            )
            .order_by(Payout.created_at)
        )
        return list(result.scalars().all())

    async def read_payout_aggregates(self, period: PayoutPeriod) -> Tuple[int, int]:
        """(amount_total, count) of non-refund payouts in the period."""
        result = await self.db.execute(
            select(func.coalesce(func.sum(Payout.amount), 0), func.count(Payout.id))
            .where(
                and_(
                    Payout.period_start >= period.start_period,
                    Payout.period_end <= period.end_period,
                    Payout.status.notin_([
                        PayoutStatus.PENDING_REFUND.value,
                        PayoutStatus.REFUNDED.value,
                    ]),
                )
            )
        )
        amount_total, count = result.one()
        return int(amount_total), int(count)

    async def read_payout_items_by_status(self, status: PayoutStatus) -> Dict[str, List[PayoutItem]]:
        """Lines in a status, keyed by payee."""
        result = await self.db.execute(
            select(PayoutItem).where(PayoutItem.status == status.value).order_by(PayoutItem.payee_id)
        )
        grouped: Dict[str, List[PayoutItem]] = {}
        for item in result.scalars().all():
            grouped.setdefault(item.payee_id, []).append(item)
        return grouped

    # ==================== PAYOUT METHODS ====================

    async def upsert_payout_method(
        self,
        payee_id: str,
        payout_type: PayoutType,
        payout_email: Optional[str] = None,
    ) -> PayoutMethod:
        """Create or replace the payee's payout method; lines held back join the next run."""
        result = await self.db.execute(
            select(PayoutMethod).where(PayoutMethod.payee_id == payee_id)
        )
        method = result.scalar_one_or_none()

        async def save_method(db: AsyncSession):
            if method is None:
                created = PayoutMethod(
                    id=new_payout_method_id(),
                    payee_id=payee_id,
                    payout_type=payout_type.value,
                    payout_email=payout_email,
                )
                db.add(created)
                return created
            method.payout_type = payout_type.value
            method.payout_email = payout_email
            return method

        saved, = await UnitOfWork(self.db, "upsert_payout_method").add("save payout method", save_method).run()
        logger.info(f"Saved {payout_type.value} payout method for {payee_id}")
        return saved
