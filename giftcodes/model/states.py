"""
Order lifecycle.

    awaiting_confirmation --confirm--> completed   (payment confirmed)
    awaiting_confirmation --reject---> rejected    (payment rejected)
    awaiting_confirmation --cancel---> refunded    (payment rejected,
                                                    code never revealed)

``completed`` orders may additionally get ``code_revealed`` flipped once.
No other transition is legal.
"""
from __future__ import annotations

from ..errors import Conflict

# order.status
ORDER_AWAITING = "awaiting_confirmation"
ORDER_COMPLETED = "completed"
ORDER_REJECTED = "rejected"
ORDER_REFUNDED = "refunded"
ORDER_STATUSES = (ORDER_AWAITING, ORDER_COMPLETED, ORDER_REJECTED,
                  ORDER_REFUNDED)

# order.payment_status
PAYMENT_AWAITING = "awaiting_confirmation"
PAYMENT_CONFIRMED = "confirmed"
PAYMENT_REJECTED = "rejected"

# inventory_items.status
ITEM_AVAILABLE = "available"
ITEM_SOLD = "sold"

# profiles.role
ROLE_ADMIN = "admin"
ROLE_CLIENT = "cliente"
ROLE_PROVIDER = "proveedor"

ACTION_CONFIRM = "confirm"
ACTION_REJECT = "reject"
ACTIONS = (ACTION_CONFIRM, ACTION_REJECT)

# (from, action) -> (status, payment_status)
TRANSITIONS = {
    (ORDER_AWAITING, ACTION_CONFIRM): (ORDER_COMPLETED, PAYMENT_CONFIRMED),
    (ORDER_AWAITING, ACTION_REJECT): (ORDER_REJECTED, PAYMENT_REJECTED),
    (ORDER_AWAITING, "cancel"): (ORDER_REFUNDED, PAYMENT_REJECTED),
}


def is_pending(order) -> bool:
    return (order.status == ORDER_AWAITING
            and order.payment_status == PAYMENT_AWAITING)


def already_processed_message(order) -> str:
    if order.payment_status == PAYMENT_CONFIRMED:
        return "This payment was already CONFIRMED"
    if order.status == ORDER_REFUNDED:
        return "This purchase was already cancelled by the buyer"
    return "This payment was already REJECTED"


def ensure_pending(order) -> None:
    """Raise Conflict unless ``order`` can still be confirmed or rejected."""
    if not is_pending(order):
        raise Conflict(already_processed_message(order),
                       current_status=order.status)


def target_of(current: str, action: str) -> tuple[str, str]:
    try:
        return TRANSITIONS[(current, action)]
    except KeyError:
        raise Conflict(f"cannot {action} an order in status {current}",
                       current_status=current) from None
