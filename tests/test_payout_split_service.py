from datetime import datetime, timedelta, timezone
from decimal import Decimal

import pytest

from payout_ledger.config import settings
from payout_ledger.models.payout_split import RevenueSplitPolicy, SplitRole, new_payout_split_id
from payout_ledger.services.payout_split_service import (
    AffiliateError,
    PayoutSplitService,
    PolicyResolutionFailure,
)


def make_policy(payee_id, role, rate, created_at=None, expires_at=None, referrer_policy_id=None):
    return RevenueSplitPolicy(
        id=new_payout_split_id(),
        created_at=created_at or datetime(2024, 1, 1, tzinfo=timezone.utc),
        payee_id=payee_id,
        role=role.value,
        rate=Decimal(rate),
        expires_at=expires_at,
        referrer_policy_id=referrer_policy_id,
    )


async def test_seller_affiliate_pair_links_store_to_affiliate(db):
    service = PayoutSplitService(db)
    seller_policy, affiliate_policy = await service.write_seller_affiliate_pair("store_1", "aff_seller_1")

    assert affiliate_policy.role == SplitRole.SELLER_AFFILIATE.value
    assert affiliate_policy.rate == Decimal("0.05")
    assert affiliate_policy.expires_at > datetime.now(timezone.utc) + timedelta(days=360)
    assert seller_policy.role == SplitRole.REFERRED_SELLER.value
    assert seller_policy.rate == Decimal("0.85")
    assert seller_policy.referrer_policy_id == affiliate_policy.id

    found_seller, found_affiliate = await service.get_seller_policy_pair("store_1")
    assert found_seller.id == seller_policy.id
    assert found_affiliate.id == affiliate_policy.id


async def test_store_without_policy_resolves_to_nothing(db):
    assert await PayoutSplitService(db).get_seller_policy_pair("store_x") == (None, None)


async def test_blank_store_id_is_a_resolution_failure(db):
    with pytest.raises(PolicyResolutionFailure):
        await PayoutSplitService(db).get_seller_policy_pair("")


async def test_unusable_stored_rate_is_a_resolution_failure(db):
    db.add(make_policy("store_1", SplitRole.SELLER, "1.5"))
    await db.commit()
    with pytest.raises(PolicyResolutionFailure):
        await PayoutSplitService(db).get_seller_policy_pair("store_1")


async def test_latest_seller_policy_wins(db):
    db.add(make_policy("store_1", SplitRole.SELLER, "0.80", created_at=datetime(2024, 1, 1, tzinfo=timezone.utc)))
    db.add(make_policy("store_1", SplitRole.SELLER, "0.90", created_at=datetime(2024, 3, 1, tzinfo=timezone.utc)))
    await db.commit()
    seller_policy, affiliate_policy = await PayoutSplitService(db).get_seller_policy_pair("store_1")
    assert seller_policy.rate == Decimal("0.90")
    assert affiliate_policy is None


async def test_buyer_affiliate_policy_is_created_once(db):
    service = PayoutSplitService(db)
    first = await service.get_or_create_buyer_affiliate_policy("aff_buyer_1")
    await db.commit()
    second = await service.get_or_create_buyer_affiliate_policy("aff_buyer_1")

    assert first.id == second.id
    assert first.rate == Decimal("0.25")
    assert len(await service.read_payout_splits("aff_buyer_1")) == 1


async def test_manual_seller_affiliate_policy_rejected(db):
    with pytest.raises(AffiliateError):
        await PayoutSplitService(db).create_payout_split("aff_seller_1", SplitRole.SELLER_AFFILIATE, Decimal("0.1"))


async def test_rate_outside_unit_interval_rejected(db):
    with pytest.raises(AffiliateError):
        await PayoutSplitService(db).create_payout_split("store_1", SplitRole.SELLER, Decimal("1.2"))


async def test_new_seller_policy_keeps_referral(db):
    service = PayoutSplitService(db)
    _, affiliate_policy = await service.write_seller_affiliate_pair("store_1", "aff_seller_1")

    updated = await service.create_payout_split("store_1", SplitRole.SELLER, Decimal("0.88"))

    assert updated.role == SplitRole.REFERRED_SELLER.value
    assert updated.referrer_policy_id == affiliate_policy.id
    seller_policy, found_affiliate = await service.get_seller_policy_pair("store_1")
    assert seller_policy.id == updated.id
    assert found_affiliate.id == affiliate_policy.id


async def test_delete_payout_splits_outside_production(db):
    service = PayoutSplitService(db)
    policy = await service.create_payout_split("store_1", SplitRole.SELLER, Decimal("0.9"))
    assert await service.delete_payout_splits([policy.id]) == 1
    assert await service.read_payout_splits("store_1") == []


async def test_delete_payout_splits_refused_in_production(db, monkeypatch):
    monkeypatch.setattr(settings, "ENVIRONMENT", "production")
    with pytest.raises(AffiliateError):
        await PayoutSplitService(db).delete_payout_splits(["psplit_1"])
