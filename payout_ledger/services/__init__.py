# Services module
from payout_ledger.services.payout_split_service import PayoutSplitService
from payout_ledger.services.obligation_service import ObligationService
from payout_ledger.services.refund_service import RefundService
from payout_ledger.services.payout_service import PayoutService
from payout_ledger.services.payout_approval_service import PayoutApprovalService
from payout_ledger.services.disbursement_service import DisbursementReconciler

# Processor clients
from payout_ledger.services.paypal_payout_service import PaypalPayoutService

__all__ = [
    "PayoutSplitService",
    "ObligationService",
    "RefundService",
    "PayoutService",
    "PayoutApprovalService",
    "DisbursementReconciler",
    # Processor clients
    "PaypalPayoutService",
]
