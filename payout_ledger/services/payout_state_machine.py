"""
Payout State Machine

This module is the SINGLE SOURCE OF TRUTH for payout status transitions.
Payouts and the ledger lines they hold move through the same statuses.

    PENDING_APPROVAL -> PROCESSING -> PAID
    PENDING_REFUND   -> REFUNDED
    MISSING_PAYOUT_METHOD / PENDING_REFUND -> RETAINED   (platform lines only)

Signing is pure: sign_payouts works on immutable PayoutSignature snapshots
and returns which payouts reached quorum. The approval service persists the
outcome.
"""
from dataclasses import dataclass, field
from typing import Dict, List, Optional, Sequence, Tuple

from payout_ledger.config import settings
from payout_ledger.core.enum_utils import status_in
from payout_ledger.models.payout import Payout, PayoutStatus


NUM_APPROVALS_REQUIRED = settings.NUM_APPROVALS_REQUIRED


class InvalidPayoutTransition(Exception):
    """A payout or ledger line is not in a state that allows the transition."""
    def __init__(self, message: str, details: Dict = None):
        self.message = message
        self.details = details or {}
        super().__init__(self.message)


# =============================================================================
# TRANSITION RULES
# =============================================================================

# current_status -> [allowed next statuses]
PAYOUT_TRANSITIONS: Dict[str, List[str]] = {
    PayoutStatus.UNPAID.value: [
        PayoutStatus.PENDING_APPROVAL.value,       # Grouped into a payout
        PayoutStatus.MISSING_PAYOUT_METHOD.value,  # Payee has no payout email
    ],
    PayoutStatus.MISSING_PAYOUT_METHOD.value: [
        PayoutStatus.PENDING_APPROVAL.value,       # Payout method added before the next run
        PayoutStatus.RETAINED.value,               # Platform keeps its own share
    ],
    PayoutStatus.PENDING_APPROVAL.value: [
        PayoutStatus.PROCESSING.value,             # Quorum reached
    ],
    PayoutStatus.PROCESSING.value: [
        PayoutStatus.PAID.value,                   # Processor confirmed the batch
    ],
    PayoutStatus.REFUNDING.value: [
        PayoutStatus.PENDING_REFUND.value,         # Grouped into a deduction payout
    ],
    PayoutStatus.PENDING_REFUND.value: [
        PayoutStatus.REFUNDED.value,
        PayoutStatus.RETAINED.value,
    ],
    PayoutStatus.PAID.value: [],
    PayoutStatus.REFUNDED.value: [],
    PayoutStatus.RETAINED.value: [],
}


def can_transition(current_status: str, new_status: str) -> bool:
    """Check if a transition is allowed."""
    return new_status in PAYOUT_TRANSITIONS.get(current_status, [])


def get_allowed_transitions(current_status: str) -> List[str]:
    return PAYOUT_TRANSITIONS.get(current_status, [])


def validate_transition(current_status: str, new_status: str, payout_id: Optional[str] = None) -> None:
    """
    Validate a status transition. Raises InvalidPayoutTransition if invalid.
    """
    if current_status == new_status:
        return

    if not can_transition(current_status, new_status):
        allowed = get_allowed_transitions(current_status)
        details = {"payout_id": payout_id, "from": current_status, "to": new_status, "allowed": allowed}
        if not allowed:
            raise InvalidPayoutTransition(
                f"Payout in '{current_status}' status cannot change. This is a terminal state.",
                details=details,
            )
        raise InvalidPayoutTransition(
            f"Cannot change payout from '{current_status}' to '{new_status}'. "
            f"Allowed transitions: {', '.join(allowed)}",
            details=details,
        )


def is_signable(status: str) -> bool:
    """Can approvers sign a payout in this status?"""
    return status_in(status, PayoutStatus.PENDING_APPROVAL, PayoutStatus.PENDING_REFUND)


def approved_status_for(status: str) -> str:
    """Status a signable payout moves to once it reaches quorum."""
    if status == PayoutStatus.PENDING_REFUND.value:
        return PayoutStatus.REFUNDED.value
    return PayoutStatus.PROCESSING.value


# =============================================================================
# SIGNING
# =============================================================================

@dataclass(frozen=True)
class PayoutSignature:
    """Snapshot of the fields signing reads and writes."""
    payout_id: str
    payee_id: str
    status: str
    amount: int
    approver_ids: Tuple[str, ...]
    payout_item_ids: Tuple[str, ...]

    @classmethod
    def of(cls, payout: Payout) -> "PayoutSignature":
        return cls(
            payout_id=payout.id,
            payee_id=payout.payee_id,
            status=payout.status,
            amount=payout.amount,
            approver_ids=tuple(payout.approver_ids or ()),
            payout_item_ids=tuple(payout.payout_item_ids or ()),
        )

    @property
    def is_refund(self) -> bool:
        return self.status == PayoutStatus.PENDING_REFUND.value

    def signed_by(self, approver_id: str) -> bool:
        return approver_id in self.approver_ids

    def with_signature(self, approver_id: str) -> "PayoutSignature":
        if self.signed_by(approver_id):
            return self
        return PayoutSignature(
            payout_id=self.payout_id,
            payee_id=self.payee_id,
            status=self.status,
            amount=self.amount,
            approver_ids=self.approver_ids + (approver_id,),
            payout_item_ids=self.payout_item_ids,
        )

    def has_quorum(self, quorum: int = NUM_APPROVALS_REQUIRED) -> bool:
        return len(set(self.approver_ids)) >= quorum


@dataclass
class SignedPayouts:
    approved: List[PayoutSignature] = field(default_factory=list)
    pending: List[PayoutSignature] = field(default_factory=list)
    already_signed_ids: List[str] = field(default_factory=list)
    skipped_ids: List[str] = field(default_factory=list)

    @property
    def approved_ids(self) -> List[str]:
        return [s.payout_id for s in self.approved]

    @property
    def pending_ids(self) -> List[str]:
        return [s.payout_id for s in self.pending]


def sign_payouts(
    payouts: Sequence[Payout],
    approver_id: str,
    quorum: int = NUM_APPROVALS_REQUIRED,
) -> SignedPayouts:
    """
    Add approver_id's signature to every signable payout it has not signed.

    A payout already signed by approver_id is reported in already_signed_ids
    and left out of approved/pending. Payouts outside PENDING_APPROVAL and
    PENDING_REFUND are skipped.
    """
    signed = SignedPayouts()
    for payout in payouts:
        snapshot = PayoutSignature.of(payout)
        if not is_signable(snapshot.status):
            signed.skipped_ids.append(snapshot.payout_id)
            continue
        if snapshot.signed_by(approver_id):
            signed.already_signed_ids.append(snapshot.payout_id)
            continue

        snapshot = snapshot.with_signature(approver_id)
        if snapshot.has_quorum(quorum):
            signed.approved.append(snapshot)
        else:
            signed.pending.append(snapshot)
    return signed
