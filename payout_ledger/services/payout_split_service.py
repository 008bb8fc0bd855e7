"""
Revenue-split policy service.

Handles:
- Policy lookups used by the obligation generator
- Buyer-affiliate policy upsert-on-read
- Seller / seller-affiliate pair creation (referral onboarding)
- Manual policy updates by platform admins
"""
import logging
from datetime import datetime, timezone
from decimal import Decimal
from typing import Dict, List, Optional, Sequence, Tuple

from sqlalchemy import select, delete, and_
from sqlalchemy.orm import aliased
from sqlalchemy.ext.asyncio import AsyncSession

from payout_ledger.config import settings
from payout_ledger.core.enum_utils import get_enum_value
from payout_ledger.core.unit_of_work import UnitOfWork
from payout_ledger.models.payout_split import RevenueSplitPolicy, SplitRole, new_payout_split_id
from payout_ledger.services.payout_period import one_year_from_now
from payout_ledger.services.pricing import FeeConfig


logger = logging.getLogger(__name__)

SELLER_ROLES = (SplitRole.SELLER.value, SplitRole.REFERRED_SELLER.value)


class PolicyResolutionFailure(Exception):
    """No usable rate could be resolved for a line item."""
    def __init__(self, message: str, details: Dict = None):
        self.message = message
        self.details = details or {}
        super().__init__(self.message)


class AffiliateError(Exception):
    """Invalid affiliate policy operation."""
    def __init__(self, message: str, details: Dict = None):
        self.message = message
        self.details = details or {}
        super().__init__(self.message)


def validate_policy_rate(policy: Optional[RevenueSplitPolicy]) -> None:
    """Stored rates outside [0, 1] cannot be used for a split."""
    if policy is None:
        return
    if policy.rate is None or not (Decimal("0") <= Decimal(policy.rate) <= Decimal("1")):
        raise PolicyResolutionFailure(
            f"Policy {policy.id} has unusable rate {policy.rate}",
            details={"policy_id": policy.id, "payee_id": policy.payee_id, "rate": str(policy.rate)},
        )


class PayoutSplitService:
    """Reads and writes revenue-split policies."""

    def __init__(self, db: AsyncSession, fee_config: Optional[FeeConfig] = None):
        self.db = db
        self.fee_config = fee_config or FeeConfig.from_settings()

    # ==================== LOOKUPS ====================

    async def read_current_policy(
        self,
        payee_id: str,
        roles: Sequence[str],
    ) -> Optional[RevenueSplitPolicy]:
        """Latest policy (by created_at) for a payee in any of the given roles."""
        result = await self.db.execute(
            select(RevenueSplitPolicy)
            .where(
                and_(
                    RevenueSplitPolicy.payee_id == payee_id,
                    RevenueSplitPolicy.role.in_([get_enum_value(r) for r in roles]),
                )
            )
            .order_by(RevenueSplitPolicy.created_at.desc())
            .limit(1)
        )
        return result.scalar_one_or_none()

    async def get_seller_policy_pair(
        self,
        store_id: str,
    ) -> Tuple[Optional[RevenueSplitPolicy], Optional[RevenueSplitPolicy]]:
        """
        Current SELLER / REFERRED_SELLER policy for a store, together with the
        SELLER_AFFILIATE policy that referred it (if any).
        """
        if not store_id:
            raise PolicyResolutionFailure("Line item has no store id")

        affiliate = aliased(RevenueSplitPolicy)
        result = await self.db.execute(
            select(RevenueSplitPolicy, affiliate)
            .outerjoin(
                affiliate,
                and_(
                    affiliate.id == RevenueSplitPolicy.referrer_policy_id,
                    affiliate.role == SplitRole.SELLER_AFFILIATE.value,
                ),
            )
            .where(
                and_(
                    RevenueSplitPolicy.payee_id == store_id,
                    RevenueSplitPolicy.role.in_(SELLER_ROLES),
                )
            )
            .order_by(RevenueSplitPolicy.created_at.desc())
            .limit(1)
        )
        row = result.first()
        if row is None:
            return None, None

        seller_policy, affiliate_policy = row
        validate_policy_rate(seller_policy)
        validate_policy_rate(affiliate_policy)
        return seller_policy, affiliate_policy

    async def get_or_create_buyer_affiliate_policy(
        self,
        affiliate_id: str,
    ) -> RevenueSplitPolicy:
        """Latest BUYER_AFFILIATE policy for the affiliate, created at the default rate on first use."""
        policy = await self.read_current_policy(affiliate_id, [SplitRole.BUYER_AFFILIATE])
        if policy is not None:
            validate_policy_rate(policy)
            return policy

        policy = RevenueSplitPolicy(
            id=new_payout_split_id(),
            created_at=datetime.now(timezone.utc),
            payee_id=affiliate_id,
            role=SplitRole.BUYER_AFFILIATE.value,
            rate=self.fee_config.default_buyer_affiliate_rate,
            expires_at=None,
            referrer_policy_id=None,
        )
        self.db.add(policy)
        await self.db.flush()
        logger.info(f"Created default buyer-affiliate policy {policy.id} for {affiliate_id}")
        return policy

    async def read_payout_splits(self, payee_id: str) -> List[RevenueSplitPolicy]:
        result = await self.db.execute(
            select(RevenueSplitPolicy)
            .where(RevenueSplitPolicy.payee_id == payee_id)
            .order_by(RevenueSplitPolicy.created_at.desc())
        )
        return list(result.scalars().all())

    # ==================== ADMIN WRITES ====================

    async def write_seller_affiliate_pair(
        self,
        store_id: str,
        affiliate_id: str,
        rate: Optional[Decimal] = None,
        expires_at: Optional[datetime] = None,
    ) -> Tuple[RevenueSplitPolicy, RevenueSplitPolicy]:
        """
        Record that `affiliate_id` referred `store_id`.

        Creates the affiliate's SELLER_AFFILIATE policy and the store's
        REFERRED_SELLER policy pointing back at it, in one transaction.
        """
        now = datetime.now(timezone.utc)
        affiliate_policy = RevenueSplitPolicy(
            id=new_payout_split_id(),
            created_at=now,
            payee_id=affiliate_id,
            role=SplitRole.SELLER_AFFILIATE.value,
            rate=rate if rate is not None else self.fee_config.default_seller_affiliate_rate,
            expires_at=expires_at or one_year_from_now(now),
            referrer_policy_id=None,
        )
        seller_policy = RevenueSplitPolicy(
            id=new_payout_split_id(),
            created_at=now,
            payee_id=store_id,
            role=SplitRole.REFERRED_SELLER.value,
            rate=self.fee_config.seller_fee_rate,
            expires_at=None,
            referrer_policy_id=affiliate_policy.id,
        )

        async def insert_affiliate_policy(db: AsyncSession):
            db.add(affiliate_policy)

        async def insert_seller_policy(db: AsyncSession):
            db.add(seller_policy)

        uow = UnitOfWork(self.db, "write_seller_affiliate_pair")
        uow.add("insert seller-affiliate policy", insert_affiliate_policy)
        uow.add("insert referred-seller policy", insert_seller_policy)
        await uow.run()

        logger.info(f"Affiliate {affiliate_id} referred store {store_id} ({affiliate_policy.id})")
        return seller_policy, affiliate_policy

    async def create_payout_split(
        self,
        payee_id: str,
        role: SplitRole,
        rate: Decimal,
        expires_at: Optional[datetime] = None,
    ) -> RevenueSplitPolicy:
        """
        Create a new policy for a payee; the latest one wins on lookup.

        SELLER_AFFILIATE policies only come from write_seller_affiliate_pair.
        A store that was referred stays REFERRED_SELLER and keeps its referrer.
        """
        role_value = get_enum_value(role)
        if role_value == SplitRole.SELLER_AFFILIATE.value:
            raise AffiliateError(
                "Seller-affiliate policies are created when an affiliate refers a store",
                details={"payee_id": payee_id},
            )
        if not (Decimal("0") <= Decimal(rate) <= Decimal("1")):
            raise AffiliateError(
                f"Rate must be within [0, 1], got {rate}",
                details={"payee_id": payee_id, "rate": str(rate)},
            )

        referrer_policy_id = None
        if role_value == SplitRole.SELLER.value:
            current = await self.read_current_policy(payee_id, [SplitRole.REFERRED_SELLER])
            if current is not None and current.referrer_policy_id:
                role_value = SplitRole.REFERRED_SELLER.value
                referrer_policy_id = current.referrer_policy_id

        policy = RevenueSplitPolicy(
            id=new_payout_split_id(),
            created_at=datetime.now(timezone.utc),
            payee_id=payee_id,
            role=role_value,
            rate=rate,
            expires_at=expires_at,
            referrer_policy_id=referrer_policy_id,
        )

        async def insert_policy(db: AsyncSession):
            db.add(policy)

        await UnitOfWork(self.db, "create_payout_split").add("insert policy", insert_policy).run()
        logger.info(f"Created {role_value} policy {policy.id} for {payee_id} at {rate}")
        return policy

    async def delete_payout_splits(self, policy_ids: List[str]) -> int:
        """Remove policies. Test environments only."""
        if settings.is_production:
            raise AffiliateError("Payout splits cannot be deleted in production")

        async def delete_policies(db: AsyncSession):
            result = await db.execute(
                delete(RevenueSplitPolicy).where(RevenueSplitPolicy.id.in_(policy_ids))
            )
            return result.rowcount

        deleted, = await UnitOfWork(self.db, "delete_payout_splits").add("delete policies", delete_policies).run()
        return deleted
