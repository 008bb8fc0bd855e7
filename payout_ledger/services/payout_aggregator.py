"""
Payout Aggregator.

Pure functions that fold a period's outstanding ledger lines into one
transient Payout per payee. Nothing here touches the database; the payout
run in payout_service persists the result.

Grouping is consecutive-only: group_consecutive_by_payee requires its input
sorted by payee_id, and aggregate_payout_totals_by_payee_id sorts before
grouping.
"""
import logging
from datetime import datetime, timezone
from typing import Dict, Iterable, Iterator, List, Sequence, Tuple

from payout_ledger.models.payout import Payout, PayoutItem, PayoutStatus, new_payout_id
from payout_ledger.models.payout_method import PayoutMethod, PayoutType
from payout_ledger.services.payout_period import PayoutPeriod


logger = logging.getLogger(__name__)


def create_payout_emails_map(payout_methods: Iterable[PayoutMethod]) -> Dict[str, str]:
    """payee_id -> email, for PAYPAL methods that have an email."""
    emails: Dict[str, str] = {}
    for pm in payout_methods:
        if pm.payout_type != PayoutType.PAYPAL.value:
            continue
        if not pm.payout_email:
            logger.debug(f"No payout_email for payee {pm.payee_id}")
            continue
        emails[pm.payee_id] = pm.payout_email
    return emails


def create_payout_methods_map(payout_methods: Iterable[PayoutMethod]) -> Dict[str, PayoutMethod]:
    return {pm.payee_id: pm for pm in payout_methods}


def group_consecutive_by_payee(
    payout_items: Sequence[PayoutItem],
) -> Iterator[Tuple[str, List[PayoutItem]]]:
    """
    Yield (payee_id, lines) for each run of consecutive lines with the same payee.

    Raises:
        ValueError: input is not sorted by payee_id
    """
    payee_ids = [p.payee_id for p in payout_items]
    if payee_ids != sorted(payee_ids):
        raise ValueError("payout items must be sorted by payee_id before grouping")

    group: List[PayoutItem] = []
    for item in payout_items:
        if group and group[-1].payee_id != item.payee_id:
            yield group[0].payee_id, group
            group = []
        group.append(item)
    if group:
        yield group[0].payee_id, group


def aggregate_payout_totals_by_payee_id(
    period: PayoutPeriod,
    payout_items: Sequence[PayoutItem],
    payout_emails: Dict[str, str],
    payout_methods: Dict[str, PayoutMethod],
    approver_id: str,
    status: PayoutStatus = PayoutStatus.PENDING_APPROVAL,
) -> Dict[str, Payout]:
    """
    One Payout per payee, accumulating amount and payout_item_ids.

    The approver who triggered the run holds the first signature.
    """
    now = datetime.now(timezone.utc)
    ordered = sorted(payout_items, key=lambda p: p.payee_id)

    payouts: Dict[str, Payout] = {}
    for payee_id, group in group_consecutive_by_payee(ordered):
        method = payout_methods.get(payee_id)
        payouts[payee_id] = Payout(
            id=new_payout_id(),
            payee_id=payee_id,
            payee_type=group[0].payee_type,
            amount=sum(p.amount for p in group),
            created_at=now,
            period_start=period.start_period,
            period_end=period.end_period,
            payout_date=period.payout_date,
            status=status.value,
            payout_email=payout_emails.get(payee_id, ""),
            currency=group[0].currency,
            payout_item_ids=[p.id for p in group],
            approver_ids=[approver_id],
            payout_batch_id=None,
            paid_to_payment_method_id=method.id if method else None,
            details=None,
        )
    return payouts


def partition_by_payout_method(payouts: Iterable[Payout]) -> Tuple[List[Payout], List[Payout]]:
    """Split into (payable, missing_method); a payout without an email is not payable."""
    payable: List[Payout] = []
    missing: List[Payout] = []
    for payout in payouts:
        if payout.payout_email:
            payable.append(payout)
        else:
            missing.append(payout)
    return payable, missing
