from fastapi import APIRouter

from payout_ledger.api.v1.endpoints import (
    # Ledger intake
    transactions,
    # Payout runs, approval and disbursement
    payouts,
    # Revenue-split policies
    payout_splits,
)


# Create main API router
api_router = APIRouter(prefix="/api/v1")

# ==================== Transactions, Refunds & Payout Methods ====================
api_router.include_router(
    transactions.router,
    tags=["Transactions"]
)

# ==================== Payouts ====================
api_router.include_router(
    payouts.router,
    prefix="/payouts",
    tags=["Payouts"]
)

# ==================== Payout Splits ====================
api_router.include_router(
    payout_splits.router,
    prefix="/payout-splits",
    tags=["Payout Splits"]
)
