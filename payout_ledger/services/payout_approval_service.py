"""
Payout approval service.

Persists signatures and quorum transitions:
- sign_payouts: sign, advance payouts reaching quorum, record the rest
- approve_and_disburse: same, plus one processor batch for the advanced
  payouts and reconciliation in the same transaction

Rows are read with SELECT ... FOR UPDATE, so concurrent signers serialize
and the second one sees the first one's signature.
"""
import logging
from dataclasses import dataclass, field
from typing import Dict, List, Optional, Sequence

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from payout_ledger.core.unit_of_work import UnitOfWork
from payout_ledger.models.payout import Payout, PayoutStatus
from payout_ledger.services.disbursement_service import DisbursementReconciler
from payout_ledger.services.payout_service import set_items_status
from payout_ledger.services.payout_state_machine import (
    NUM_APPROVALS_REQUIRED,
    SignedPayouts,
    approved_status_for,
    sign_payouts,
    validate_transition,
)
from payout_ledger.services.paypal_payout_service import DisbursementFailure, PaypalPayoutService


logger = logging.getLogger(__name__)


class PayoutNotFoundError(Exception):
    """Requested payouts do not exist."""
    def __init__(self, message: str, details: Dict = None):
        self.message = message
        self.details = details or {}
        super().__init__(self.message)


@dataclass
class SignResult:
    advanced: List[Payout] = field(default_factory=list)
    still_pending: List[Payout] = field(default_factory=list)
    already_signed: List[Payout] = field(default_factory=list)
    skipped: List[Payout] = field(default_factory=list)


@dataclass
class ApprovalResult(SignResult):
    reconciled: List[Payout] = field(default_factory=list)
    payout_batch_id: Optional[str] = None


class PayoutApprovalService:
    """Two-signature approval of payouts."""

    def __init__(self, db: AsyncSession, processor=None, quorum: int = NUM_APPROVALS_REQUIRED):
        self.db = db
        self.processor = processor or PaypalPayoutService()
        self.quorum = quorum
        self.reconciler = DisbursementReconciler(db)

    async def lock_payouts(self, payout_ids: Sequence[str]) -> List[Payout]:
        result = await self.db.execute(
            select(Payout)
            .where(Payout.id.in_(list(payout_ids)))
            .order_by(Payout.id)
            .with_for_update()
        )
        payouts = list(result.scalars().all())
        found = {p.id for p in payouts}
        unknown = [pid for pid in payout_ids if pid not in found]
        if unknown:
            await self.db.rollback()
            raise PayoutNotFoundError("Payouts not found", details={"payout_ids": unknown})
        return payouts

    def _advance_step(self, signed: SignedPayouts, by_id: Dict[str, Payout]):
        async def advance(db: AsyncSession):
            for snapshot in signed.approved:
                payout = by_id[snapshot.payout_id]
                new_status = approved_status_for(snapshot.status)
                validate_transition(payout.status, new_status, payout.id)
                await set_items_status(db, snapshot.payout_item_ids, PayoutStatus(new_status))
                payout.status = new_status
                payout.approver_ids = list(snapshot.approver_ids)
        return advance

    def _record_pending_step(self, signed: SignedPayouts, by_id: Dict[str, Payout]):
        async def record_pending(db: AsyncSession):
            for snapshot in signed.pending:
                by_id[snapshot.payout_id].approver_ids = list(snapshot.approver_ids)
        return record_pending

    @staticmethod
    def _result(result_type, signed: SignedPayouts, by_id: Dict[str, Payout], **extra):
        return result_type(
            advanced=[by_id[i] for i in signed.approved_ids],
            still_pending=[by_id[i] for i in signed.pending_ids],
            already_signed=[by_id[i] for i in signed.already_signed_ids],
            skipped=[by_id[i] for i in signed.skipped_ids],
            **extra,
        )

    async def sign_payouts(self, payout_ids: Sequence[str], approver_id: str) -> SignResult:
        """
        Add approver_id's signature to the payouts.

        Payouts reaching quorum move with all their lines to PROCESSING
        (PENDING_REFUND payouts to REFUNDED); the others keep their status
        and record the new signature. Signing twice changes nothing.
        """
        payouts = await self.lock_payouts(payout_ids)
        by_id = {p.id: p for p in payouts}
        signed = sign_payouts(payouts, approver_id, self.quorum)

        uow = UnitOfWork(self.db, "sign_payouts")
        uow.add("advance approved payouts", self._advance_step(signed, by_id))
        uow.add("record pending signatures", self._record_pending_step(signed, by_id))
        await uow.run()

        logger.info(
            f"{approver_id} signed {len(payout_ids)} payouts: {len(signed.approved)} advanced, "
            f"{len(signed.pending)} pending, {len(signed.already_signed_ids)} already signed"
        )
        return self._result(SignResult, signed, by_id)

    async def approve_and_disburse(
        self,
        payout_ids: Sequence[str],
        approver_id: str,
        email_subject: Optional[str] = None,
        email_message: Optional[str] = None,
    ) -> ApprovalResult:
        """
        Sign, dispatch one processor batch for the payouts reaching quorum,
        then persist signatures and reconcile in one transaction.

        The batch is dispatched before any write. If the processor rejects
        it, the transaction is rolled back and DisbursementFailure propagates
        with no local state changed.
        """
        payouts = await self.lock_payouts(payout_ids)
        by_id = {p.id: p for p in payouts}
        signed = sign_payouts(payouts, approver_id, self.quorum)

        advanced_ids = [s.payout_id for s in signed.approved if not s.is_refund]
        refunding_ids = [s.payout_id for s in signed.approved if s.is_refund]
        to_disburse = [by_id[s.payout_id] for s in signed.approved if not s.is_refund and s.amount > 0]

        batch_id = None
        if to_disburse:
            try:
                batch_id = await self.processor.dispatch_batch(to_disburse, email_subject, email_message)
            except DisbursementFailure as e:
                await self.db.rollback()
                logger.error(
                    f"Disbursement of {len(to_disburse)} payouts failed ({e.name}, retryable={e.retryable})"
                )
                raise

        async def reconcile(db: AsyncSession):
            return await self.reconciler.apply(db, advanced_ids, refunding_ids, batch_id)

        uow = UnitOfWork(self.db, "approve_and_disburse")
        uow.add("advance approved payouts", self._advance_step(signed, by_id))
        uow.add("record pending signatures", self._record_pending_step(signed, by_id))
        uow.add("reconcile disbursement", reconcile)
        _, _, reconciled = await uow.run()

        return self._result(
            ApprovalResult, signed, by_id, reconciled=reconciled, payout_batch_id=batch_id
        )
