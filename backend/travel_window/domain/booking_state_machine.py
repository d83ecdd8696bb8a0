from __future__ import annotations

from typing import Optional

from travel_window.errors import ValidationError
from travel_window.schemas.actors import Role
from travel_window.schemas.bookings import BookingStatus


DRAFT = BookingStatus.DRAFT.value
PENDING_VERIFICATION = BookingStatus.PENDING_VERIFICATION.value
UNTICKETED = BookingStatus.UNTICKETED.value
TICKED = BookingStatus.TICKED.value
ACCOUNT_VERIFIED = BookingStatus.ACCOUNT_VERIFIED.value
ADMIN_VERIFIED = BookingStatus.ADMIN_VERIFIED.value
BILLED = BookingStatus.BILLED.value
PAID = BookingStatus.PAID.value
CANCELLED = BookingStatus.CANCELLED.value

# Statuses an account verification advances from.
_ACCOUNT_VERIFIABLE = {PENDING_VERIFICATION, UNTICKETED}
# Statuses an admin verification leaves untouched.
_ADMIN_VERIFY_KEEPS = {BILLED, PAID}
_ELEVATED_CREATORS = {Role.ACCOUNT.value, Role.ADMIN.value}


class BookingStateTransitionError(ValidationError):
    """Raised when an operation is not allowed from the booking's current status."""

    def __init__(self, current: str, target: str, message: Optional[str] = None) -> None:
        super().__init__(
            message or f"Invalid booking state transition: {current} -> {target}",
            code="invalid_state_transition",
            details={"status": current, "target": target},
        )
        self.current = current
        self.target = target


def initial_status(creator_role: str, supplier_outsourced: bool) -> str:
    """Status of a newly created booking.

    Outsourced supplier wins over the creator's role.
    """

    if supplier_outsourced:
        return UNTICKETED
    if creator_role in _ELEVATED_CREATORS:
        return PENDING_VERIFICATION
    return DRAFT


def is_submitted(status: str) -> bool:
    return status != DRAFT


def submit_status(current: str, supplier_outsourced: bool) -> str:
    if current != DRAFT:
        raise BookingStateTransitionError(current, "submit", message="Booking already submitted")
    return UNTICKETED if supplier_outsourced else PENDING_VERIFICATION


def account_verified_status(current: str) -> str:
    """Advance to Account Verified from a submitted status, never downgrade."""
    if current in _ACCOUNT_VERIFIABLE:
        return ACCOUNT_VERIFIED
    return current


def admin_verified_status(current: str) -> str:
    if current in _ADMIN_VERIFY_KEEPS:
        return current
    return ADMIN_VERIFIED


def supplier_reassignment_status(current: str, was_outsourced: bool, now_outsourced: bool) -> str:
    """Status after the booking's supplier changes.

    Moving onto the outsourced channel forces Unticketed, moving off it forces
    Ticked. Cancelled bookings keep their status.
    """

    if current == CANCELLED:
        return current
    if now_outsourced:
        return UNTICKETED
    if was_outsourced:
        return TICKED
    return current


def assert_not_cancelled(current: str, operation: str) -> None:
    if current == CANCELLED:
        raise BookingStateTransitionError(
            current,
            operation,
            message=f"Cannot {operation} a cancelled booking",
        )


def validate_status_override(current: str, target: str, cancelled: bool) -> None:
    """Administrative status edits must keep status and cancellation record in step."""

    if target == CANCELLED and not cancelled:
        raise BookingStateTransitionError(
            current, target, message="Use the cancel operation to cancel a booking"
        )
    if cancelled and target != CANCELLED:
        raise BookingStateTransitionError(
            current, target, message="Revert the cancellation before changing status"
        )
