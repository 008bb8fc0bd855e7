"""Refund mirror path."""
from datetime import datetime, timedelta, timezone

import pytest
from sqlalchemy import select

from payout_ledger.models.payout import PayoutItem, PayoutStatus, PayeeType
from payout_ledger.models.transaction import Refund, Transaction
from payout_ledger.services.obligation_service import ObligationService, OrderLineItem
from payout_ledger.services.refund_service import (
    RefundError,
    RefundService,
    create_refund_payout_items,
    sum_payouts_for_all_payees,
)
from tests.factories import in_may, make_item


async def record_order(db):
    _, items = await ObligationService(db).record_transaction(
        "txn_1",
        "order_1",
        [OrderLineItem("oitem_1", 2345, "store_1"), OrderLineItem("oitem_2", 1000, "store_1")],
        occurred_at=in_may(),
        buyer_affiliate_id="aff_buyer_1",
    )
    return items


def test_mirror_negates_amount_and_fee():
    original = make_item("store_1", 1294, fee=114)
    mirror, = create_refund_payout_items([original], in_may(10), "txn_refund_1")

    assert mirror.amount == -1294
    assert mirror.payment_processing_fee == -114
    assert mirror.id != original.id and mirror.id.startswith("ritem_")
    assert mirror.status == PayoutStatus.REFUNDING.value
    assert mirror.txn_id == "txn_refund_1"
    assert (mirror.payee_id, mirror.order_item_id) == (original.payee_id, original.order_item_id)
    assert (original.amount, original.payment_processing_fee) == (1294, 114)


def test_zero_lines_are_not_mirrored():
    assert create_refund_payout_items([make_item("store_1", 0)], in_may(), "txn_r") == []


def test_totals_by_payee_type():
    totals = sum_payouts_for_all_payees([
        make_item("store_1", 1294, fee=114),
        make_item("gm-platform", 351, PayeeType.PLATFORM),
        make_item("aff_buyer_1", 586, PayeeType.BUYER_AFFILIATE),
    ])
    assert totals.total_seller_payment == 1294
    assert totals.seller_payment_processing_fees == 114
    assert totals.total_platform_fee == 351
    assert totals.total_buyer_affiliate_fee == 586
    assert totals.subtotal == 2345


async def test_refund_writes_transaction_refund_and_mirrors(db, session_factory):
    await record_order(db)
    result = await RefundService(db).refund_order_items(
        "order_1", ["oitem_1"], "re_1", "txn_refund_1", reason="damaged", refunded_at=in_may(20)
    )

    assert len(result.refund_items) == 3
    assert result.transaction.subtotal == -2345
    assert result.transaction.payment_processing_fee == -114
    assert result.transaction.refund_id == "re_1"

    async with session_factory() as other:
        refund = await other.get(Refund, "re_1")
        txn = await other.get(Transaction, "txn_refund_1")
        mirrors = (await other.execute(
            select(PayoutItem).where(PayoutItem.txn_id == "txn_refund_1")
        )).scalars().all()
        originals = (await other.execute(
            select(PayoutItem).where(PayoutItem.txn_id == "txn_1", PayoutItem.order_item_id == "oitem_1")
        )).scalars().all()

    assert refund.order_item_ids == ["oitem_1"]
    assert txn.subtotal == -2345
    assert sorted(m.amount for m in mirrors) == sorted(-o.amount for o in originals)
    assert all(m.status == PayoutStatus.REFUNDING.value for m in mirrors)
    assert all(o.status == PayoutStatus.UNPAID.value for o in originals)


async def test_refund_of_unknown_items_rejected(db):
    with pytest.raises(RefundError):
        await RefundService(db).refund_order_items("order_1", ["nope"], "re_1", "txn_r")


async def test_refund_of_lines_already_in_a_payout_rejected(db):
    db.add(make_item("store_1", 100, status=PayoutStatus.PENDING_APPROVAL, order_item_id="oitem_9"))
    await db.commit()
    with pytest.raises(RefundError) as exc:
        await RefundService(db).refund_order_items("order_9", ["oitem_9"], "re_9", "txn_r9")
    assert exc.value.details["payout_item_ids"]


async def test_second_refund_of_same_item_rejected(db):
    await record_order(db)
    service = RefundService(db)
    await service.refund_order_items("order_1", ["oitem_2"], "re_1", "txn_refund_1")
    with pytest.raises(RefundError) as exc:
        await service.refund_order_items("order_1", ["oitem_2"], "re_2", "txn_refund_2")
    assert exc.value.details["order_item_ids"] == ["oitem_2"]


async def test_refund_time_is_stored_in_utc(db):
    await record_order(db)
    tokyo = timezone(timedelta(hours=9))
    result = await RefundService(db).refund_order_items(
        "order_1", ["oitem_1"], "re_1", "txn_refund_1", refunded_at=datetime(2024, 6, 1, 8, 0, tzinfo=tokyo)
    )

    may_31 = datetime(2024, 5, 31, 23, 0, tzinfo=timezone.utc)
    assert result.transaction.created_at == may_31
    assert {p.created_at.tzinfo for p in result.refund_items} == {timezone.utc}
    assert {p.created_at for p in result.refund_items} == {may_31}
