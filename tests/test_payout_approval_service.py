"""Two-signature approval, disbursement and reconciliation."""
import pytest
from sqlalchemy import select

from payout_ledger.models.payout import Payout, PayoutItem, PayoutStatus, PayeeType
from payout_ledger.services.payout_approval_service import PayoutApprovalService, PayoutNotFoundError
from payout_ledger.services.payout_service import PayoutService
from payout_ledger.services.paypal_payout_service import DisbursementFailure
from tests.factories import MAY_2024, FakeProcessor, make_item, make_method


async def prepare_run(db, *extra):
    """store_1 is owed 150, the platform 30 (no payout method)."""
    db.add_all([
        make_item("store_1", 100),
        make_item("store_1", 50),
        make_item("gm-platform", 30, PayeeType.PLATFORM),
        make_method("store_1"),
        *extra,
    ])
    await db.commit()
    return await PayoutService(db).create_payout_run(MAY_2024, "approver_a")


async def reload(session_factory, payout_id):
    async with session_factory() as other:
        payout = await other.get(Payout, payout_id)
        items = (await other.execute(
            select(PayoutItem).where(PayoutItem.id.in_(payout.payout_item_ids))
        )).scalars().all()
    return payout, items


async def test_second_signature_moves_payout_to_processing(db, session_factory, fake_processor):
    run = await prepare_run(db)
    payout_id = run.payouts[0].id

    result = await PayoutApprovalService(db, fake_processor).sign_payouts([payout_id], "approver_b")

    assert [p.id for p in result.advanced] == [payout_id]
    payout, items = await reload(session_factory, payout_id)
    assert payout.status == PayoutStatus.PROCESSING.value
    assert payout.approver_ids == ["approver_a", "approver_b"]
    assert {i.status for i in items} == {PayoutStatus.PROCESSING.value}
    assert fake_processor.batches == []


async def test_signing_twice_changes_nothing(db, session_factory, fake_processor):
    run = await prepare_run(db)
    payout_id = run.payouts[0].id
    service = PayoutApprovalService(db, fake_processor, quorum=3)

    await service.sign_payouts([payout_id], "approver_b")
    result = await service.sign_payouts([payout_id], "approver_b")

    assert [p.id for p in result.already_signed] == [payout_id]
    assert result.advanced == [] and result.still_pending == []
    payout, _ = await reload(session_factory, payout_id)
    assert payout.approver_ids == ["approver_a", "approver_b"]
    assert payout.status == PayoutStatus.PENDING_APPROVAL.value


async def test_creator_signing_again_does_not_reach_quorum(db, fake_processor):
    run = await prepare_run(db)
    result = await PayoutApprovalService(db, fake_processor).sign_payouts([run.payouts[0].id], "approver_a")
    assert len(result.already_signed) == 1
    assert result.advanced == []


async def test_approve_disburses_and_reconciles(db, session_factory, fake_processor):
    run = await prepare_run(db)
    payout_id = run.payouts[0].id

    result = await PayoutApprovalService(db, fake_processor).approve_and_disburse([payout_id], "approver_b")

    assert fake_processor.batches == [[payout_id]]
    assert result.payout_batch_id == "BATCH-1"
    assert [p.id for p in result.reconciled] == [payout_id]

    payout, items = await reload(session_factory, payout_id)
    assert payout.status == PayoutStatus.PAID.value
    assert payout.payout_batch_id == "BATCH-1"
    assert {i.status for i in items} == {PayoutStatus.PAID.value}

    async with session_factory() as other:
        platform = (await other.execute(
            select(PayoutItem).where(PayoutItem.payee_type == PayeeType.PLATFORM.value)
        )).scalar_one()
    assert platform.status == PayoutStatus.RETAINED.value


@pytest.mark.parametrize("name,retryable", [
    ("INSUFFICIENT_FUNDS", True),
    ("VALIDATION_ERROR", False),
])
async def test_rejected_batch_leaves_state_untouched(db, session_factory, name, retryable):
    run = await prepare_run(db)
    payout_id = run.payouts[0].id
    processor = FakeProcessor(error=DisbursementFailure(name, "rejected", 422))

    with pytest.raises(DisbursementFailure) as exc:
        await PayoutApprovalService(db, processor).approve_and_disburse([payout_id], "approver_b")

    assert exc.value.retryable is retryable
    payout, items = await reload(session_factory, payout_id)
    assert payout.status == PayoutStatus.PENDING_APPROVAL.value
    assert payout.approver_ids == ["approver_a"]
    assert payout.payout_batch_id is None
    assert {i.status for i in items} == {PayoutStatus.PENDING_APPROVAL.value}


async def test_pending_payouts_are_not_dispatched(db, session_factory, fake_processor):
    run = await prepare_run(db)
    payout_id = run.payouts[0].id

    result = await PayoutApprovalService(db, fake_processor, quorum=3).approve_and_disburse(
        [payout_id], "approver_b"
    )

    assert fake_processor.batches == []
    assert result.payout_batch_id is None
    assert [p.id for p in result.still_pending] == [payout_id]
    payout, _ = await reload(session_factory, payout_id)
    assert payout.approver_ids == ["approver_a", "approver_b"]


async def test_refund_payout_is_refunded_without_dispatch(db, session_factory, fake_processor):
    run = await prepare_run(db, make_item("store_1", -40, status=PayoutStatus.REFUNDING, txn_id="txn_r"))
    refund_id = run.refund_payouts[0].id

    result = await PayoutApprovalService(db, fake_processor).approve_and_disburse([refund_id], "approver_b")

    assert fake_processor.batches == []
    assert [p.id for p in result.reconciled] == [refund_id]
    payout, items = await reload(session_factory, refund_id)
    assert payout.status == PayoutStatus.REFUNDED.value
    assert {i.status for i in items} == {PayoutStatus.REFUNDED.value}


async def test_unknown_payout_ids_raise(db, fake_processor):
    await prepare_run(db)
    with pytest.raises(PayoutNotFoundError) as exc:
        await PayoutApprovalService(db, fake_processor).sign_payouts(["payout_missing"], "approver_b")
    assert exc.value.details["payout_ids"] == ["payout_missing"]
