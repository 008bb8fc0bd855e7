"""Pure aggregation of ledger lines into payouts."""
import pytest

from payout_ledger.models.payout import PayoutStatus, PayeeType
from payout_ledger.models.payout_method import PayoutType
from payout_ledger.services.payout_aggregator import (
    aggregate_payout_totals_by_payee_id,
    create_payout_emails_map,
    create_payout_methods_map,
    group_consecutive_by_payee,
    partition_by_payout_method,
)
from tests.factories import MAY_2024, make_item, make_method


def test_two_lines_for_one_store_make_one_payout():
    first = make_item("store_1", 100)
    second = make_item("store_1", 50)
    methods = [make_method("store_1")]

    payouts = aggregate_payout_totals_by_payee_id(
        MAY_2024,
        [first, second],
        create_payout_emails_map(methods),
        create_payout_methods_map(methods),
        "approver_a",
    )

    payout = payouts["store_1"]
    assert payout.amount == 150
    assert payout.payout_item_ids == [first.id, second.id]
    assert payout.approver_ids == ["approver_a"]
    assert payout.status == PayoutStatus.PENDING_APPROVAL.value
    assert payout.payout_email == "store_1@example.com"
    assert payout.paid_to_payment_method_id == methods[0].id
    assert payout.payout_date == MAY_2024.payout_date
    assert payout.id.startswith("payout_")


def test_unsorted_input_is_sorted_before_grouping():
    items = [
        make_item("store_b", 10),
        make_item("store_a", 1),
        make_item("store_b", 20),
        make_item("gm-platform", 5, PayeeType.PLATFORM),
    ]
    payouts = aggregate_payout_totals_by_payee_id(MAY_2024, items, {}, {}, "approver_a")

    assert {k: p.amount for k, p in payouts.items()} == {"store_a": 1, "store_b": 30, "gm-platform": 5}
    assert payouts["gm-platform"].payee_type == PayeeType.PLATFORM.value


def test_grouping_requires_sorted_input():
    items = [make_item("store_b", 10), make_item("store_a", 1)]
    with pytest.raises(ValueError):
        list(group_consecutive_by_payee(items))


def test_grouping_is_consecutive():
    items = [make_item("a", 1), make_item("a", 2), make_item("b", 3)]
    groups = [(payee, [i.amount for i in group]) for payee, group in group_consecutive_by_payee(items)]
    assert groups == [("a", [1, 2]), ("b", [3])]


def test_only_paypal_methods_with_email_yield_emails():
    methods = [
        make_method("store_1"),
        make_method("store_2", email=""),
        make_method("store_3", payout_type=PayoutType.BANK),
    ]
    assert create_payout_emails_map(methods) == {"store_1": "store_1@example.com"}
    assert set(create_payout_methods_map(methods)) == {"store_1", "store_2", "store_3"}


def test_payee_without_email_goes_to_missing_bucket():
    items = [make_item("store_1", 100), make_item("store_2", 70)]
    methods = [make_method("store_1")]
    payouts = aggregate_payout_totals_by_payee_id(
        MAY_2024, items, create_payout_emails_map(methods), create_payout_methods_map(methods), "approver_a"
    )

    payable, missing = partition_by_payout_method(payouts.values())

    assert [p.payee_id for p in payable] == ["store_1"]
    assert [p.payee_id for p in missing] == ["store_2"]
    assert missing[0].amount == 70


def test_refund_lines_aggregate_with_refund_status():
    items = [make_item("store_1", -100, status=PayoutStatus.REFUNDING)]
    payouts = aggregate_payout_totals_by_payee_id(
        MAY_2024, items, {}, {}, "approver_a", status=PayoutStatus.PENDING_REFUND
    )
    assert payouts["store_1"].amount == -100
    assert payouts["store_1"].is_refund
