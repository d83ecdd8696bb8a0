from __future__ import annotations

"""Role x operation x field policy for bookings.

Everything the API allows a role to do is declared in the tables below and
checked in one place by `authorize`, `authorize_update` and
`authorize_assignment`. Anything not listed is forbidden.
"""

from enum import Enum
from typing import Any, Dict, FrozenSet, Iterable, Optional

from travel_window.errors import AuthorizationError
from travel_window.schemas.actors import Actor, Role
from travel_window.schemas.bookings import Booking, BookingStatus


class Operation(str, Enum):
    CREATE = "create"
    LIST = "list"
    VIEW = "view"
    UPDATE = "update"
    SUBMIT = "submit"
    VERIFY_ACCOUNT = "verify_account"
    VERIFY_ADMIN = "verify_admin"
    AMEND = "amend"
    CANCEL = "cancel"
    PROCESS_REFUND = "process_refund"
    REVERT_CANCELLATION = "revert_cancellation"
    ASSIGN = "assign"


AGENT1 = Role.AGENT1.value
AGENT2 = Role.AGENT2.value
ACCOUNT = Role.ACCOUNT.value
ADMIN = Role.ADMIN.value

ALL_ROLES: FrozenSet[str] = frozenset({AGENT1, AGENT2, ACCOUNT, ADMIN})
AGENT_ROLES: FrozenSet[str] = frozenset({AGENT1, AGENT2})

OPERATION_ROLES: Dict[Operation, FrozenSet[str]] = {
    Operation.CREATE: ALL_ROLES,
    Operation.LIST: ALL_ROLES,
    Operation.VIEW: ALL_ROLES,
    Operation.UPDATE: ALL_ROLES,
    Operation.SUBMIT: frozenset({AGENT1, AGENT2, ADMIN}),
    Operation.VERIFY_ACCOUNT: frozenset({ACCOUNT, ADMIN}),
    Operation.VERIFY_ADMIN: frozenset({ADMIN}),
    Operation.AMEND: ALL_ROLES,
    Operation.CANCEL: ALL_ROLES,
    Operation.PROCESS_REFUND: frozenset({ACCOUNT, ADMIN}),
    Operation.REVERT_CANCELLATION: frozenset({ADMIN}),
    Operation.ASSIGN: frozenset({AGENT2, ACCOUNT, ADMIN}),
}

# Roles that never see Draft bookings.
DRAFT_HIDDEN_FROM: FrozenSet[str] = frozenset({ACCOUNT})

# Roles whose updates stop once either verification flag is set.
UPDATE_REQUIRES_UNVERIFIED: FrozenSet[str] = AGENT_ROLES

# Roles allowed to edit a cancelled booking.
CANCELLED_EDITORS: FrozenSet[str] = frozenset({ADMIN})

BOOKING_FIELDS: FrozenSet[str] = frozenset(
    {
        "paxName",
        "contactPerson",
        "contactNumber",
        "sectorType",
        "travelDate",
        "from",
        "to",
        "returnDate",
        "multipleSectors",
        "note",
        "airline",
        "supplier",
        "ourCost",
        "salePrice",
        "additionalService",
        "additionalServicePrice",
        "additionalServices",
        "paymentType",
        "payments",
    }
)

ADMIN_OVERRIDE_FIELDS: FrozenSet[str] = frozenset({"pnr", "status", "billingStatus", "cancellation"})

UPDATABLE_FIELDS: Dict[str, FrozenSet[str]] = {
    AGENT1: BOOKING_FIELDS,
    AGENT2: BOOKING_FIELDS,
    ACCOUNT: BOOKING_FIELDS,
    ADMIN: BOOKING_FIELDS | ADMIN_OVERRIDE_FIELDS,
}

ASSIGNABLE_ROLES: Dict[str, FrozenSet[str]] = {
    AGENT1: frozenset(),
    AGENT2: frozenset({AGENT1}),
    ACCOUNT: frozenset({AGENT1, AGENT2}),
    ADMIN: ALL_ROLES,
}


def authorize(actor: Actor, operation: Operation, booking: Optional[Booking] = None) -> None:
    allowed = OPERATION_ROLES.get(operation, frozenset())
    if actor.role not in allowed:
        raise AuthorizationError(
            f"Role {actor.role} is not allowed to {operation.value.replace('_', ' ')} bookings",
            details={"role": actor.role, "operation": operation.value},
        )

    if booking is not None and not can_view(actor, booking):
        raise AuthorizationError(
            "You cannot view draft bookings",
            details={"role": actor.role, "status": booking.status},
        )


def can_view(actor: Actor, booking: Booking) -> bool:
    return not (actor.role in DRAFT_HIDDEN_FROM and booking.status == BookingStatus.DRAFT.value)


def visibility_filter(actor: Actor) -> Dict[str, Any]:
    """Mongo filter restricting list/search results to what the role may see."""
    if actor.role in DRAFT_HIDDEN_FROM:
        return {"status": {"$ne": BookingStatus.DRAFT.value}}
    return {}


def authorize_update(actor: Actor, booking: Booking, fields: Iterable[str]) -> None:
    authorize(actor, Operation.UPDATE, booking)

    requested = set(fields)
    allowed = UPDATABLE_FIELDS.get(actor.role, frozenset())
    forbidden = sorted(requested - allowed)
    if forbidden:
        raise AuthorizationError(
            "Role is not allowed to edit these fields",
            details={"role": actor.role, "fields": forbidden},
        )

    if booking.is_cancelled and actor.role not in CANCELLED_EDITORS:
        raise AuthorizationError(
            "Cannot edit cancelled bookings",
            details={"role": actor.role},
        )

    if actor.role in UPDATE_REQUIRES_UNVERIFIED and booking.is_verified:
        raise AuthorizationError(
            "Cannot edit verified bookings",
            details={"role": actor.role},
        )


def authorize_assignment(actor: Actor, assignee_role: Optional[str]) -> None:
    authorize(actor, Operation.ASSIGN)
    allowed = ASSIGNABLE_ROLES.get(actor.role, frozenset())
    if assignee_role not in allowed:
        raise AuthorizationError(
            f"Role {actor.role} cannot assign bookings to {assignee_role}",
            details={"role": actor.role, "assigneeRole": assignee_role},
        )
