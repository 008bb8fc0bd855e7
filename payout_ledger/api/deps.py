from typing import Annotated

from fastapi import Depends
from sqlalchemy.ext.asyncio import AsyncSession

from payout_ledger.database import get_db
from payout_ledger.services.paypal_payout_service import PaypalPayoutService


def get_payout_processor() -> PaypalPayoutService:
    """Disbursement processor used by the approve endpoint."""
    return PaypalPayoutService()


DB = Annotated[AsyncSession, Depends(get_db)]
Processor = Annotated[PaypalPayoutService, Depends(get_payout_processor)]
