"""
Disbursement Reconciler.

Runs after the processor confirmed a batch. For the payouts in the batch:
- advanced payouts and their lines: PROCESSING -> PAID, batch id attached
- refunding payouts and their lines: PENDING_REFUND -> REFUNDED
- PLATFORM lines stuck in MISSING_PAYOUT_METHOD or PENDING_REFUND -> RETAINED

Every transition is validated before the first write.
"""
import logging
from typing import Dict, List, Optional, Sequence

from sqlalchemy import select, update, and_
from sqlalchemy.ext.asyncio import AsyncSession

from payout_ledger.core.unit_of_work import UnitOfWork
from payout_ledger.models.payout import Payout, PayoutItem, PayoutStatus, PayeeType
from payout_ledger.services.payout_service import set_items_status
from payout_ledger.services.payout_state_machine import InvalidPayoutTransition, validate_transition


logger = logging.getLogger(__name__)

RETAINABLE_STATUSES = (
    PayoutStatus.MISSING_PAYOUT_METHOD.value,
    PayoutStatus.PENDING_REFUND.value,
)


class DisbursementReconciler:
    """Marks disbursed payouts and their ledger lines as settled."""

    def __init__(self, db: AsyncSession):
        self.db = db

    async def _lock_payouts(self, db: AsyncSession, payout_ids: Sequence[str]) -> Dict[str, Payout]:
        if not payout_ids:
            return {}
        result = await db.execute(
            select(Payout)
            .where(Payout.id.in_(list(payout_ids)))
            .order_by(Payout.id)
            .with_for_update()
        )
        payouts = {p.id: p for p in result.scalars().all()}
        unknown = [pid for pid in payout_ids if pid not in payouts]
        if unknown:
            raise InvalidPayoutTransition(
                "Cannot reconcile unknown payouts",
                details={"payout_ids": unknown},
            )
        return payouts

    async def _read_items(self, db: AsyncSession, item_ids: Sequence[str]) -> List[PayoutItem]:
        if not item_ids:
            return []
        result = await db.execute(select(PayoutItem).where(PayoutItem.id.in_(list(item_ids))))
        return list(result.scalars().all())

    async def retain_platform_items(self, db: AsyncSession) -> int:
        """Platform-owned lines the platform keeps instead of paying to itself."""
        result = await db.execute(
            update(PayoutItem)
            .where(
                and_(
                    PayoutItem.payee_type == PayeeType.PLATFORM.value,
                    PayoutItem.status.in_(RETAINABLE_STATUSES),
                )
            )
            .values(status=PayoutStatus.RETAINED.value)
        )
        return result.rowcount

    async def apply(
        self,
        db: AsyncSession,
        advanced_ids: Sequence[str],
        refunding_ids: Sequence[str],
        batch_id: Optional[str],
    ) -> List[Payout]:
        """
        Reconcile inside the caller's transaction.

        Used as a unit-of-work step both by finalize_disbursement and by the
        approval service after a successful dispatch.
        """
        advanced = await self._lock_payouts(db, advanced_ids)
        refunding = await self._lock_payouts(db, refunding_ids)

        paid_item_ids = [i for p in advanced.values() for i in p.payout_item_ids]
        refunded_item_ids = [i for p in refunding.values() for i in p.payout_item_ids]

        for payout in advanced.values():
            validate_transition(payout.status, PayoutStatus.PAID.value, payout.id)
        for payout in refunding.values():
            validate_transition(payout.status, PayoutStatus.REFUNDED.value, payout.id)
        for item in await self._read_items(db, paid_item_ids):
            validate_transition(item.status, PayoutStatus.PAID.value, item.payout_id)
        for item in await self._read_items(db, refunded_item_ids):
            validate_transition(item.status, PayoutStatus.REFUNDED.value, item.payout_id)

        await set_items_status(db, paid_item_ids, PayoutStatus.PAID)
        await set_items_status(db, refunded_item_ids, PayoutStatus.REFUNDED)
        retained = await self.retain_platform_items(db)

        for payout in advanced.values():
            payout.status = PayoutStatus.PAID.value
            payout.payout_batch_id = batch_id
        for payout in refunding.values():
            payout.status = PayoutStatus.REFUNDED.value
            if batch_id is not None:
                payout.payout_batch_id = batch_id

        logger.info(
            f"Reconciled batch {batch_id}: {len(advanced)} paid, {len(refunding)} refunded, "
            f"{retained} platform lines retained"
        )
        return list(advanced.values()) + list(refunding.values())

    async def finalize_disbursement(
        self,
        advanced_ids: Sequence[str],
        refunding_ids: Sequence[str],
        batch_id: Optional[str],
    ) -> List[Payout]:
        """Reconcile a confirmed batch in its own transaction."""
        async def reconcile(db: AsyncSession):
            return await self.apply(db, advanced_ids, refunding_ids, batch_id)

        reconciled, = await UnitOfWork(self.db, "finalize_disbursement").add("reconcile", reconcile).run()
        return reconciled
