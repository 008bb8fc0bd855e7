# Models module
from payout_ledger.models.payout_split import RevenueSplitPolicy, SplitRole
from payout_ledger.models.payout import Payout, PayoutItem, PayoutStatus, PayeeType
from payout_ledger.models.payout_method import PayoutMethod, PayoutType
from payout_ledger.models.transaction import Transaction, Refund

__all__ = [
    "RevenueSplitPolicy",
    "SplitRole",
    "Payout",
    "PayoutItem",
    "PayoutStatus",
    "PayeeType",
    "PayoutMethod",
    "PayoutType",
    "Transaction",
    "Refund",
]
