from __future__ import annotations

from datetime import datetime
from typing import Any, Dict, Optional

from fastapi import APIRouter, Body, Depends, Header, Query, Request

from travel_window import config
from travel_window.auth import get_current_actor
from travel_window.db import get_db
from travel_window.errors import ValidationError
from travel_window.schemas.actors import Actor
from travel_window.schemas.bookings import (
    AssignRequest,
    BookingCreate,
    BookingListQuery,
    CancelRequest,
    DateChangeRequest,
    FlightChangeRequest,
    RevertCancellationRequest,
    SeatBookRequest,
)
from travel_window.services.booking_lifecycle import BookingLifecycleService

router = APIRouter(prefix=f"{config.API_PREFIX}/bookings", tags=["bookings"])


def get_lifecycle_service(request: Request, db=Depends(get_db)) -> BookingLifecycleService:
    return BookingLifecycleService(db, correlation_id=getattr(request.state, "correlation_id", None))


def _parse_if_match(value: Optional[str]) -> Optional[int]:
    """Accept `3`, `"3"` and `W/"3"` as revision 3."""
    if value is None or not value.strip():
        return None
    raw = value.strip()
    if raw.startswith("W/"):
        raw = raw[2:]
    raw = raw.strip('"')
    try:
        return int(raw)
    except ValueError:
        raise ValidationError("If-Match must carry a booking revision", details={"If-Match": value})


@router.post("", status_code=201)
async def create_booking(
    payload: BookingCreate,
    actor: Actor = Depends(get_current_actor),
    svc: BookingLifecycleService = Depends(get_lifecycle_service),
) -> Dict[str, Any]:
    booking = await svc.create_booking(actor, payload)
    return booking.to_wire()


@router.get("")
async def list_bookings(
    status: Optional[str] = Query(default=None),
    supplier: Optional[str] = Query(default=None),
    date_from: Optional[datetime] = Query(default=None, alias="dateFrom"),
    date_to: Optional[datetime] = Query(default=None, alias="dateTo"),
    pnr: Optional[str] = Query(default=None),
    contact_number: Optional[str] = Query(default=None, alias="contactNumber"),
    page: int = Query(default=1, ge=1),
    limit: int = Query(default=config.DEFAULT_PAGE_LIMIT, ge=1, le=config.MAX_PAGE_LIMIT),
    actor: Actor = Depends(get_current_actor),
    svc: BookingLifecycleService = Depends(get_lifecycle_service),
) -> Dict[str, Any]:
    query = BookingListQuery(
        status=status,
        supplier=supplier,
        date_from=date_from,
        date_to=date_to,
        pnr=pnr,
        contact_number=contact_number,
        page=page,
        limit=limit,
    )
    result = await svc.list_bookings(actor, query)
    return result.model_dump(by_alias=True, mode="json")


@router.get("/search/{query}")
async def search_bookings(
    query: str,
    actor: Actor = Depends(get_current_actor),
    svc: BookingLifecycleService = Depends(get_lifecycle_service),
) -> list[Dict[str, Any]]:
    bookings = await svc.search_bookings(actor, query)
    return [b.to_wire() for b in bookings]


@router.get("/{booking_id}")
async def get_booking(
    booking_id: str,
    actor: Actor = Depends(get_current_actor),
    svc: BookingLifecycleService = Depends(get_lifecycle_service),
) -> Dict[str, Any]:
    booking = await svc.get_booking(actor, booking_id)
    return booking.to_wire()


@router.get("/{booking_id}/audit-logs")
async def list_booking_audit_logs(
    booking_id: str,
    limit: int = Query(default=50, ge=1, le=200),
    actor: Actor = Depends(get_current_actor),
    svc: BookingLifecycleService = Depends(get_lifecycle_service),
) -> list[Dict[str, Any]]:
    return await svc.list_audit_logs(actor, booking_id, limit=limit)


@router.put("/{booking_id}")
async def update_booking(
    booking_id: str,
    updates: Dict[str, Any] = Body(...),
    if_match: Optional[str] = Header(default=None, alias="If-Match"),
    actor: Actor = Depends(get_current_actor),
    svc: BookingLifecycleService = Depends(get_lifecycle_service),
) -> Dict[str, Any]:
    booking = await svc.update_booking(
        actor,
        booking_id,
        updates,
        expected_revision=_parse_if_match(if_match),
    )
    return booking.to_wire()


@router.post("/{booking_id}/submit")
async def submit_booking(
    booking_id: str,
    actor: Actor = Depends(get_current_actor),
    svc: BookingLifecycleService = Depends(get_lifecycle_service),
) -> Dict[str, Any]:
    booking = await svc.submit_booking(actor, booking_id)
    return booking.to_wire()


@router.post("/{booking_id}/verify-account")
async def verify_account(
    booking_id: str,
    actor: Actor = Depends(get_current_actor),
    svc: BookingLifecycleService = Depends(get_lifecycle_service),
) -> Dict[str, Any]:
    booking = await svc.verify_account(actor, booking_id)
    return booking.to_wire()


@router.post("/{booking_id}/verify-admin")
async def verify_admin(
    booking_id: str,
    actor: Actor = Depends(get_current_actor),
    svc: BookingLifecycleService = Depends(get_lifecycle_service),
) -> Dict[str, Any]:
    booking = await svc.verify_admin(actor, booking_id)
    return booking.to_wire()


@router.post("/{booking_id}/date-change")
async def date_change(
    booking_id: str,
    payload: DateChangeRequest,
    actor: Actor = Depends(get_current_actor),
    svc: BookingLifecycleService = Depends(get_lifecycle_service),
) -> Dict[str, Any]:
    booking = await svc.change_date(actor, booking_id, payload)
    return booking.to_wire()


@router.post("/{booking_id}/flight-change")
async def flight_change(
    booking_id: str,
    payload: FlightChangeRequest,
    actor: Actor = Depends(get_current_actor),
    svc: BookingLifecycleService = Depends(get_lifecycle_service),
) -> Dict[str, Any]:
    booking = await svc.change_flight(actor, booking_id, payload)
    return booking.to_wire()


@router.post("/{booking_id}/seat-book")
async def seat_book(
    booking_id: str,
    payload: SeatBookRequest,
    actor: Actor = Depends(get_current_actor),
    svc: BookingLifecycleService = Depends(get_lifecycle_service),
) -> Dict[str, Any]:
    booking = await svc.seat_book(actor, booking_id, payload)
    return booking.to_wire()


@router.post("/{booking_id}/cancel")
async def cancel_booking(
    booking_id: str,
    payload: CancelRequest,
    actor: Actor = Depends(get_current_actor),
    svc: BookingLifecycleService = Depends(get_lifecycle_service),
) -> Dict[str, Any]:
    booking = await svc.cancel_booking(actor, booking_id, payload)
    return booking.to_wire()


@router.post("/{booking_id}/process-refund")
async def process_refund(
    booking_id: str,
    actor: Actor = Depends(get_current_actor),
    svc: BookingLifecycleService = Depends(get_lifecycle_service),
) -> Dict[str, Any]:
    booking = await svc.process_refund(actor, booking_id)
    return booking.to_wire()


@router.post("/{booking_id}/revert-cancellation")
async def revert_cancellation(
    booking_id: str,
    payload: Optional[RevertCancellationRequest] = Body(default=None),
    actor: Actor = Depends(get_current_actor),
    svc: BookingLifecycleService = Depends(get_lifecycle_service),
) -> Dict[str, Any]:
    booking = await svc.revert_cancellation(actor, booking_id, payload.remarks if payload else None)
    return booking.to_wire()


@router.post("/{booking_id}/assign")
async def assign_booking(
    booking_id: str,
    payload: AssignRequest,
    actor: Actor = Depends(get_current_actor),
    svc: BookingLifecycleService = Depends(get_lifecycle_service),
) -> Dict[str, Any]:
    booking = await svc.assign_booking(actor, booking_id, payload)
    return booking.to_wire()
