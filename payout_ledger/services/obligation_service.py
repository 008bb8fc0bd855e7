"""
Obligation generator.

Turns the line items of a paid order into ledger lines (PayoutItems):
one STORE and one PLATFORM line per item, plus a BUYER_AFFILIATE and a
SELLER_AFFILIATE line when those parties earn something.
"""
import logging
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional, Sequence, Tuple

from sqlalchemy.ext.asyncio import AsyncSession

from payout_ledger.config import settings
from payout_ledger.core.unit_of_work import UnitOfWork
from payout_ledger.models.payout import PayoutItem, PayoutStatus, PayeeType, new_payout_item_id
from payout_ledger.models.payout_split import RevenueSplitPolicy
from payout_ledger.models.transaction import Transaction
from payout_ledger.services.payout_period import ensure_utc
from payout_ledger.services.payout_split_service import PayoutSplitService
from payout_ledger.services.pricing import FeeConfig, FeeSplit, calculate_fee_split, resolve_rate, ZERO


logger = logging.getLogger(__name__)


@dataclass
class OrderLineItem:
    """Order item as received from the shopping service."""
    id: str
    actual_price: int
    store_id: str
    currency: Optional[str] = None
    payment_processing_fee: Optional[int] = None

    def __post_init__(self):
        self.currency = (self.currency or settings.DEFAULT_CURRENCY).strip().upper()


class ObligationService:
    """Computes and records the ledger lines owed for an order."""

    def __init__(self, db: AsyncSession, fee_config: Optional[FeeConfig] = None):
        self.db = db
        self.fee_config = fee_config or FeeConfig.from_settings()
        self.splits = PayoutSplitService(db, self.fee_config)

    async def compute_obligations(
        self,
        order_id: str,
        line_items: Sequence[OrderLineItem],
        txn_id: str,
        occurred_at: Optional[datetime] = None,
        buyer_affiliate_id: Optional[str] = None,
    ) -> List[PayoutItem]:
        """
        Ledger lines for every item of an order, not yet persisted.

        The buyer-affiliate policy is resolved once for the whole order and
        created at the default rate if the affiliate has none yet.
        """
        occurred_at = ensure_utc(occurred_at) if occurred_at else datetime.now(timezone.utc)

        buyer_affiliate_policy = None
        if buyer_affiliate_id:
            buyer_affiliate_policy = await self.splits.get_or_create_buyer_affiliate_policy(
                buyer_affiliate_id
            )

        payout_items: List[PayoutItem] = []
        for line_item in line_items:
            payout_items.extend(
                await self.to_payout_items(line_item, txn_id, occurred_at, buyer_affiliate_policy)
            )

        logger.info(
            f"Order {order_id}: {len(payout_items)} ledger lines for {len(line_items)} items (txn {txn_id})"
        )
        return payout_items

    async def to_payout_items(
        self,
        line_item: OrderLineItem,
        txn_id: str,
        occurred_at: datetime,
        buyer_affiliate_policy: Optional[RevenueSplitPolicy] = None,
    ) -> List[PayoutItem]:
        seller_policy, seller_affiliate_policy = await self.splits.get_seller_policy_pair(
            line_item.store_id
        )
        split = self.split_line_item(
            line_item, occurred_at, seller_policy, seller_affiliate_policy, buyer_affiliate_policy
        )

        def line(payee_id: str, payee_type: PayeeType, amount: int, fee: int = 0) -> PayoutItem:
            return PayoutItem(
                id=new_payout_item_id(),
                payee_id=payee_id,
                payee_type=payee_type.value,
                amount=amount,
                payment_processing_fee=fee,
                created_at=occurred_at,
                status=PayoutStatus.UNPAID.value,
                currency=line_item.currency,
                order_item_id=line_item.id,
                txn_id=txn_id,
                payout_id=None,
            )

        items = [
            line(line_item.store_id, PayeeType.STORE, split.seller_earnings, split.payment_processing_fee),
            line(settings.PLATFORM_PAYEE_ID, PayeeType.PLATFORM, split.platform_earnings),
        ]
        if buyer_affiliate_policy is not None and split.buyer_affiliate_earnings > 0:
            items.append(line(
                buyer_affiliate_policy.payee_id,
                PayeeType.BUYER_AFFILIATE,
                split.buyer_affiliate_earnings,
            ))
        if seller_affiliate_policy is not None and split.seller_affiliate_earnings > 0:
            items.append(line(
                seller_affiliate_policy.payee_id,
                PayeeType.SELLER_AFFILIATE,
                split.seller_affiliate_earnings,
            ))
        return items

    def split_line_item(
        self,
        line_item: OrderLineItem,
        at: datetime,
        seller_policy: Optional[RevenueSplitPolicy],
        seller_affiliate_policy: Optional[RevenueSplitPolicy],
        buyer_affiliate_policy: Optional[RevenueSplitPolicy],
    ) -> FeeSplit:
        """Resolve each policy's rate for expiry at `at`, then run the calculator."""
        def rate_of(policy: Optional[RevenueSplitPolicy], default):
            if policy is None:
                return resolve_rate(None, None, default, at)
            return resolve_rate(policy.rate, policy.expires_at, default, at)

        return calculate_fee_split(
            subtotal=line_item.actual_price,
            incoming_processing_fee=line_item.payment_processing_fee or 0,
            seller_rate=rate_of(seller_policy, self.fee_config.seller_fee_rate),
            buyer_affiliate_rate=rate_of(buyer_affiliate_policy, ZERO),
            seller_affiliate_rate=rate_of(seller_affiliate_policy, ZERO),
            config=self.fee_config,
        )

    async def record_transaction(
        self,
        txn_id: str,
        order_id: str,
        line_items: Sequence[OrderLineItem],
        taxes: int = 0,
        currency: Optional[str] = None,
        occurred_at: Optional[datetime] = None,
        buyer_affiliate_id: Optional[str] = None,
        customer_id: Optional[str] = None,
        payment_processor: Optional[str] = None,
        payment_intent_id: Optional[str] = None,
        details: Optional[Dict[str, Any]] = None,
    ) -> Tuple[Transaction, List[PayoutItem]]:
        """Write a sale transaction and its ledger lines together."""
        occurred_at = ensure_utc(occurred_at) if occurred_at else datetime.now(timezone.utc)
        payout_items = await self.compute_obligations(
            order_id, line_items, txn_id, occurred_at, buyer_affiliate_id
        )

        transaction = Transaction(
            id=txn_id,
            subtotal=sum(li.actual_price for li in line_items),
            taxes=taxes,
            payment_processing_fee=sum(
                p.payment_processing_fee for p in payout_items if p.payee_type == PayeeType.STORE.value
            ),
            created_at=occurred_at,
            currency=(currency or settings.DEFAULT_CURRENCY).strip().upper(),
            order_id=order_id,
            customer_id=customer_id,
            payment_processor=payment_processor,
            payment_intent_id=payment_intent_id,
            details=details,
        )

        async def insert_transaction(db: AsyncSession):
            db.add(transaction)

        async def insert_payout_items(db: AsyncSession):
            db.add_all(payout_items)

        uow = UnitOfWork(self.db, "record_transaction")
        uow.add("insert transaction", insert_transaction)
        uow.add("insert payout items", insert_payout_items)
        await uow.run()

        return transaction, payout_items
