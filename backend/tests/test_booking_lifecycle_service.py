from __future__ import annotations

from datetime import timedelta
from typing import Any

import pytest

from travel_window.domain.booking_state_machine import BookingStateTransitionError
from travel_window.errors import AuthorizationError, NotFoundError, ValidationError
from travel_window.schemas.bookings import (
    AssignRequest,
    BookingCreate,
    BookingListQuery,
    CancelRequest,
    DateChangeRequest,
    FlightChangeRequest,
    SeatBookRequest,
)
from travel_window.services.booking_lifecycle import BookingLifecycleService
from travel_window.utils import as_utc, now_utc


async def _create(svc: BookingLifecycleService, actor, booking_payload, **overrides):
    return await svc.create_booking(actor, BookingCreate.model_validate(booking_payload(**overrides)))


@pytest.mark.anyio
async def test_create_normalises_fields_and_records_history(test_db: Any, actors, booking_payload) -> None:
    svc = BookingLifecycleService(test_db)

    booking = await _create(svc, actors["AGENT1"], booking_payload, payments=[{"paidAmount": 400}])

    assert booking.id
    assert booking.pnr == "AB123"
    assert booking.pax_name == "JOHN DOE"
    assert booking.from_ == "Delhi"
    assert booking.to == "Mumbai"
    assert booking.status == "Draft"
    assert booking.date_of_submission is None
    assert booking.total_sale_price == 1000
    assert booking.balance_amount == 600
    assert booking.billing_status == "Partial Paid"
    assert booking.payments[0].payment_mode == "Cash"
    assert [h.action for h in booking.progress_history] == ["Booking Created"]

    found = await svc.bookings.find_by_pnr("ab123")
    assert found is not None and found.id == booking.id


@pytest.mark.anyio
async def test_create_by_account_is_pending_verification(test_db: Any, actors, booking_payload) -> None:
    svc = BookingLifecycleService(test_db)

    booking = await _create(svc, actors["ACCOUNT"], booking_payload)

    assert booking.status == "Pending Verification"
    assert booking.date_of_submission is not None


@pytest.mark.anyio
async def test_create_with_outsourced_supplier_is_unticketed(test_db: Any, actors, booking_payload, suppliers) -> None:
    svc = BookingLifecycleService(test_db)

    booking = await _create(svc, actors["AGENT1"], booking_payload, supplier=suppliers["outsourced"])

    assert booking.status == "Unticketed"
    assert booking.supplier_outsourced is True
    assert booking.supplier_name == "Agent2"


@pytest.mark.anyio
async def test_create_rejects_duplicate_pnr_case_insensitively(test_db: Any, actors, booking_payload) -> None:
    svc = BookingLifecycleService(test_db)
    await _create(svc, actors["AGENT1"], booking_payload, pnr="ab123")

    with pytest.raises(ValidationError) as exc:
        await _create(svc, actors["AGENT2"], booking_payload, pnr="AB123")

    assert exc.value.code == "duplicate_pnr"
    assert await test_db.bookings.count_documents({}) == 1


@pytest.mark.anyio
async def test_create_requires_fields_and_sectors(test_db: Any, actors, booking_payload) -> None:
    svc = BookingLifecycleService(test_db)

    with pytest.raises(ValidationError) as exc:
        await _create(svc, actors["AGENT1"], booking_payload, paxName="  ", to="")
    assert exc.value.details == {"fields": ["paxName", "to"]}

    with pytest.raises(ValidationError):
        await _create(svc, actors["AGENT1"], booking_payload, sectorType="Multiple", multipleSectors=[])


@pytest.mark.anyio
async def test_create_with_unknown_supplier(test_db: Any, actors, booking_payload) -> None:
    svc = BookingLifecycleService(test_db)

    with pytest.raises(NotFoundError) as exc:
        await _create(svc, actors["AGENT1"], booking_payload, supplier="000000000000000000000000")

    assert exc.value.code == "supplier_not_found"


@pytest.mark.anyio
async def test_submit_then_verify_flow(test_db: Any, actors, booking_payload) -> None:
    svc = BookingLifecycleService(test_db)
    booking = await _create(svc, actors["AGENT1"], booking_payload)

    booking = await svc.submit_booking(actors["AGENT1"], booking.id)
    assert booking.status == "Pending Verification"
    assert booking.date_of_submission is not None

    with pytest.raises(BookingStateTransitionError):
        await svc.submit_booking(actors["AGENT1"], booking.id)

    booking = await svc.verify_account(actors["ACCOUNT"], booking.id)
    assert booking.status == "Account Verified"
    assert booking.verified_by_account is True
    assert booking.verified_by_account_user == "u_account"

    booking = await svc.verify_admin(actors["ADMIN"], booking.id)
    assert booking.status == "Admin Verified"

    # Account verification after admin verification does not downgrade.
    booking = await svc.verify_account(actors["ACCOUNT"], booking.id)
    assert booking.status == "Admin Verified"

    actions = [h.action for h in booking.progress_history]
    assert actions == [
        "Verified by Account",
        "Verified by Admin",
        "Verified by Account",
        "Booking Submitted",
        "Booking Created",
    ]
    assert booking.revision == 4


@pytest.mark.anyio
async def test_account_cannot_read_drafts(test_db: Any, actors, booking_payload) -> None:
    svc = BookingLifecycleService(test_db)
    draft = await _create(svc, actors["AGENT1"], booking_payload)

    with pytest.raises(AuthorizationError):
        await svc.get_booking(actors["ACCOUNT"], draft.id)

    page = await svc.list_bookings(actors["ACCOUNT"], BookingListQuery())
    assert page.total == 0

    page = await svc.list_bookings(actors["ACCOUNT"], BookingListQuery(status="Draft"))
    assert page.total == 0


@pytest.mark.anyio
async def test_list_filters_and_pagination(test_db: Any, actors, booking_payload, suppliers) -> None:
    svc = BookingLifecycleService(test_db)
    await _create(svc, actors["ADMIN"], booking_payload, pnr="PNR001", contactNumber="111")
    await _create(svc, actors["ADMIN"], booking_payload, pnr="PNR002", contactNumber="222")
    await _create(svc, actors["ADMIN"], booking_payload, pnr="PNR003", supplier=suppliers["outsourced"])

    page = await svc.list_bookings(actors["ADMIN"], BookingListQuery(limit=2))
    assert page.total == 3
    assert page.total_pages == 2
    assert len(page.bookings) == 2

    unticketed = await svc.list_bookings(actors["ADMIN"], BookingListQuery(status="Unticketed"))
    assert [b.pnr for b in unticketed.bookings] == ["PNR003"]

    ticked = await svc.list_bookings(actors["ADMIN"], BookingListQuery(status="Ticked"))
    assert {b.pnr for b in ticked.bookings} == {"PNR001", "PNR002"}

    by_pnr = await svc.list_bookings(actors["ADMIN"], BookingListQuery(pnr="pnr00"))
    assert by_pnr.total == 3

    by_phone = await svc.list_bookings(actors["ADMIN"], BookingListQuery(contact_number="22"))
    assert [b.pnr for b in by_phone.bookings] == ["PNR002"]

    found = await svc.search_bookings(actors["ADMIN"], "pnr002")
    assert [b.pnr for b in found] == ["PNR002"]


@pytest.mark.anyio
async def test_update_by_agent_and_lock_after_verification(test_db: Any, actors, booking_payload) -> None:
    svc = BookingLifecycleService(test_db)
    booking = await _create(svc, actors["ACCOUNT"], booking_payload)

    booking = await svc.update_booking(actors["AGENT1"], booking.id, {"salePrice": 1500, "paxName": "jane roe"})
    assert booking.total_sale_price == 1500
    assert booking.pax_name == "JANE ROE"
    assert booking.progress_history[0].action == "Booking Updated"
    assert booking.progress_history[0].changes["salePrice"] == 1500

    await svc.verify_account(actors["ACCOUNT"], booking.id)

    with pytest.raises(AuthorizationError):
        await svc.update_booking(actors["AGENT1"], booking.id, {"note": "late edit"})

    with pytest.raises(AuthorizationError):
        await svc.update_booking(actors["ACCOUNT"], booking.id, {"pnr": "NEW1"})


@pytest.mark.anyio
async def test_admin_overrides(test_db: Any, actors, booking_payload) -> None:
    svc = BookingLifecycleService(test_db)
    booking = await _create(svc, actors["ADMIN"], booking_payload)

    booking = await svc.update_booking(
        actors["ADMIN"],
        booking.id,
        {"pnr": "zz999", "status": "Billed", "billingStatus": "Fully Paid"},
    )

    assert booking.pnr == "ZZ999"
    assert booking.status == "Billed"
    assert booking.billing_status == "Fully Paid"
    assert booking.progress_history[0].action == "Booking Updated by Admin"

    with pytest.raises(BookingStateTransitionError):
        await svc.update_booking(actors["ADMIN"], booking.id, {"status": "Cancelled"})


@pytest.mark.anyio
async def test_supplier_change_drives_status(test_db: Any, actors, booking_payload, suppliers) -> None:
    svc = BookingLifecycleService(test_db)
    booking = await _create(svc, actors["ACCOUNT"], booking_payload, supplier=suppliers["direct"])
    assert booking.status == "Pending Verification"

    booking = await svc.update_booking(actors["ACCOUNT"], booking.id, {"supplier": suppliers["outsourced"]})
    assert booking.status == "Unticketed"
    assert booking.supplier_outsourced is True

    booking = await svc.update_booking(actors["ACCOUNT"], booking.id, {"supplier": suppliers["direct"]})
    assert booking.status == "Ticked"
    assert booking.supplier_name == "SkyDirect"


@pytest.mark.anyio
async def test_amendments_require_remarks_and_keep_history(test_db: Any, actors, booking_payload, suppliers) -> None:
    svc = BookingLifecycleService(test_db)
    booking = await _create(svc, actors["ADMIN"], booking_payload, supplier=suppliers["direct"])
    agent = actors["AGENT2"]

    with pytest.raises(ValidationError) as exc:
        await svc.change_date(agent, booking.id, DateChangeRequest(change_travel_date=True, new_travel_date=now_utc()))
    assert exc.value.code == "remarks_required"

    new_date = now_utc() + timedelta(days=60)
    booking = await svc.change_date(
        agent,
        booking.id,
        DateChangeRequest(change_travel_date=True, new_travel_date=new_date, new_sale_price=1200, remarks="moved"),
    )
    assert as_utc(booking.travel_date).date() == new_date.date()
    assert booking.sale_price == 1200
    assert booking.total_sale_price == 1200
    assert len(booking.date_changes) == 1
    assert booking.date_changes[0].old_sale_price == 1000

    booking = await svc.change_flight(
        agent,
        booking.id,
        FlightChangeRequest.model_validate({"newDetails": {"airline": "Vistara", "to": "goa"}, "remarks": "reroute"}),
    )
    assert booking.airline == "Vistara"
    assert booking.to == "Goa"
    assert booking.flight_changes[0].old_details.airline == "IndiGo"

    booking = await svc.seat_book(
        agent,
        booking.id,
        SeatBookRequest(new_supplier=suppliers["outsourced"], new_our_cost=900, remarks="seat sold out"),
    )
    assert booking.our_cost == 900
    assert booking.status == "Unticketed"
    assert booking.seat_book_changes[0].old_supplier == suppliers["direct"]
    assert booking.seat_book_changes[0].new_supplier == suppliers["outsourced"]

    assert [h.action for h in booking.progress_history][:3] == ["Seat Book", "Flight Change", "Date Change"]


@pytest.mark.anyio
async def test_past_travel_date_requires_explicit_selection(test_db: Any, actors, booking_payload) -> None:
    svc = BookingLifecycleService(test_db)
    past = (now_utc() - timedelta(days=3)).strftime("%Y-%m-%dT%H:%M:%SZ")
    booking = await _create(svc, actors["ADMIN"], booking_payload, travelDate=past)

    with pytest.raises(ValidationError) as exc:
        await svc.change_date(actors["ADMIN"], booking.id, DateChangeRequest(new_sale_price=900, remarks="fee"))
    assert exc.value.code == "date_selection_required"


@pytest.mark.anyio
async def test_cancel_refund_and_revert(test_db: Any, actors, booking_payload) -> None:
    svc = BookingLifecycleService(test_db)
    booking = await _create(svc, actors["ADMIN"], booking_payload, payments=[{"paidAmount": 1000, "paymentMode": "Credit Card"}])

    booking = await svc.cancel_booking(
        actors["AGENT1"],
        booking.id,
        CancelRequest(payment_mode_was="Credit Card", supplier_cancellation_charges=100, charge_from_client=500, remarks="client request"),
    )
    assert booking.status == "Cancelled"
    assert booking.cancellation.is_cancelled is True
    assert booking.cancellation.refundable_amount_to_client == 900
    assert booking.cancellation.previous_status == "Pending Verification"

    with pytest.raises(BookingStateTransitionError):
        await svc.cancel_booking(actors["ADMIN"], booking.id, CancelRequest(payment_mode_was="Cash", committed_to_client=1, remarks="x"))
    with pytest.raises(BookingStateTransitionError):
        await svc.submit_booking(actors["ADMIN"], booking.id)
    with pytest.raises(BookingStateTransitionError):
        await svc.assign_booking(
            actors["ADMIN"],
            booking.id,
            AssignRequest.model_validate({"assignedTo": {"id": "u_agent1", "role": "AGENT1"}}),
        )
    with pytest.raises(AuthorizationError):
        await svc.process_refund(actors["AGENT1"], booking.id)

    booking = await svc.process_refund(actors["ACCOUNT"], booking.id)
    assert booking.cancellation.refund_processed is True
    assert booking.cancellation.refund_processed_by == "u_account"

    booking = await svc.process_refund(actors["ADMIN"], booking.id)
    assert booking.cancellation.refund_processed_by == "u_admin"
    assert booking.progress_history[0].changes["previousRefundProcessedBy"] == "Chen Account"

    with pytest.raises(AuthorizationError):
        await svc.revert_cancellation(actors["ACCOUNT"], booking.id)

    booking = await svc.revert_cancellation(actors["ADMIN"], booking.id, "mistake")
    assert booking.status == "Pending Verification"
    assert booking.cancellation.is_cancelled is False
    assert booking.progress_history[0].action == "Cancellation Reverted"


@pytest.mark.anyio
async def test_refund_requires_cancelled_booking(test_db: Any, actors, booking_payload) -> None:
    svc = BookingLifecycleService(test_db)
    booking = await _create(svc, actors["ADMIN"], booking_payload)

    with pytest.raises(ValidationError) as exc:
        await svc.process_refund(actors["ADMIN"], booking.id)
    assert exc.value.code == "booking_not_cancelled"


@pytest.mark.anyio
async def test_assign_respects_role_matrix(test_db: Any, actors, booking_payload) -> None:
    svc = BookingLifecycleService(test_db)
    booking = await _create(svc, actors["ADMIN"], booking_payload)

    booking = await svc.assign_booking(
        actors["AGENT2"],
        booking.id,
        AssignRequest.model_validate({"assignedTo": {"id": "u_agent1", "name": "Asha Agent", "role": "AGENT1"}}),
    )
    assert booking.assigned_to is not None
    assert booking.assigned_to.id == "u_agent1"

    with pytest.raises(AuthorizationError):
        await svc.assign_booking(
            actors["AGENT2"],
            booking.id,
            AssignRequest.model_validate({"assignedTo": {"id": "u_admin", "role": "ADMIN"}}),
        )


@pytest.mark.anyio
async def test_missing_booking_is_not_found(test_db: Any, actors) -> None:
    svc = BookingLifecycleService(test_db)

    with pytest.raises(NotFoundError) as exc:
        await svc.get_booking(actors["ADMIN"], "000000000000000000000000")
    assert exc.value.code == "booking_not_found"

    with pytest.raises(NotFoundError):
        await svc.submit_booking(actors["ADMIN"], "not-an-id")


@pytest.mark.anyio
async def test_audit_mirror_rows_follow_commits(test_db: Any, actors, booking_payload) -> None:
    svc = BookingLifecycleService(test_db, correlation_id="cid-123")
    booking = await _create(svc, actors["ADMIN"], booking_payload)
    await svc.update_booking(actors["ADMIN"], booking.id, {"note": "window seat"})

    rows = await svc.list_audit_logs(actors["ADMIN"], booking.id)

    assert [r["action"] for r in rows] == ["Booking Updated by Admin", "Booking Created"]
    assert rows[0]["diff"]["note"] == {"before": "", "after": "window seat"}
    assert rows[0]["correlation_id"] == "cid-123"


@pytest.mark.anyio
async def test_wire_form_reloads_to_the_same_booking(test_db: Any, actors, booking_payload) -> None:
    from travel_window.schemas.bookings import Booking

    svc = BookingLifecycleService(test_db)
    booking = await _create(svc, actors["ADMIN"], booking_payload, payments=[{"paidAmount": 250, "paymentMode": "UPI"}])
    booking = await svc.cancel_booking(
        actors["ADMIN"],
        booking.id,
        CancelRequest(payment_mode_was="UPI", committed_to_client=200, remarks="client request"),
    )

    wire = booking.to_wire()
    reloaded = Booking.from_wire(wire)

    assert wire["from"] == "Delhi"
    assert "from_" not in wire
    assert reloaded.to_wire() == wire
    assert reloaded.cancellation.payment_mode_was == "UPI"


async def _admin_verified(svc: BookingLifecycleService, actors, booking_payload, **overrides):
    booking = await _create(svc, actors["ACCOUNT"], booking_payload, **overrides)
    await svc.verify_account(actors["ACCOUNT"], booking.id)
    return await svc.verify_admin(actors["ADMIN"], booking.id)


@pytest.mark.anyio
async def test_clearing_cancellation_on_live_booking_keeps_status(test_db: Any, actors, booking_payload) -> None:
    svc = BookingLifecycleService(test_db)
    booking = await _admin_verified(svc, actors, booking_payload)
    assert booking.status == "Admin Verified"

    booking = await svc.update_booking(
        actors["ADMIN"],
        booking.id,
        {"cancellation": {"isCancelled": False}, "note": "x"},
    )

    assert booking.status == "Admin Verified"
    assert booking.is_cancelled is False
    assert booking.note == "x"


@pytest.mark.anyio
async def test_admin_cancellation_override_sets_and_reverts(test_db: Any, actors, booking_payload) -> None:
    svc = BookingLifecycleService(test_db)
    booking = await _admin_verified(svc, actors, booking_payload)

    booking = await svc.update_booking(
        actors["ADMIN"],
        booking.id,
        {"cancellation": {"isCancelled": True, "remarks": "client called"}},
    )
    assert booking.status == "Cancelled"
    assert booking.cancellation.is_cancelled is True
    assert booking.cancellation.previous_status == "Admin Verified"

    booking = await svc.update_booking(actors["ADMIN"], booking.id, {"cancellation": {"isCancelled": False}})
    assert booking.status == "Admin Verified"
    assert booking.cancellation.is_cancelled is False
    assert booking.cancellation.previous_status is None


@pytest.mark.anyio
async def test_outsourced_supplier_forces_unticketed_from_verified(test_db: Any, actors, booking_payload, suppliers) -> None:
    svc = BookingLifecycleService(test_db)

    booking = await _create(svc, actors["ACCOUNT"], booking_payload, supplier=suppliers["direct"])
    booking = await svc.verify_account(actors["ACCOUNT"], booking.id)
    assert booking.status == "Account Verified"
    booking = await svc.update_booking(actors["ACCOUNT"], booking.id, {"supplier": suppliers["outsourced"]})
    assert booking.status == "Unticketed"

    booking = await _admin_verified(svc, actors, booking_payload, pnr="CD456", supplier=suppliers["direct"])
    assert booking.status == "Admin Verified"
    booking = await svc.update_booking(actors["ADMIN"], booking.id, {"supplier": suppliers["outsourced"]})
    assert booking.status == "Unticketed"


@pytest.mark.anyio
async def test_supplier_change_keeps_cancelled_status(test_db: Any, actors, booking_payload, suppliers) -> None:
    svc = BookingLifecycleService(test_db)
    booking = await _create(svc, actors["ADMIN"], booking_payload, supplier=suppliers["direct"])
    await svc.update_booking(actors["ADMIN"], booking.id, {"cancellation": {"isCancelled": True}})

    booking = await svc.update_booking(actors["ADMIN"], booking.id, {"supplier": suppliers["outsourced"]})

    assert booking.status == "Cancelled"
    assert booking.supplier_outsourced is True


@pytest.mark.anyio
async def test_submission_date_is_never_overwritten(test_db: Any, actors, booking_payload, suppliers) -> None:
    svc = BookingLifecycleService(test_db)
    booking = await _create(svc, actors["AGENT1"], booking_payload, supplier=suppliers["direct"])
    await svc.submit_booking(actors["AGENT1"], booking.id)
    submitted_at = (await svc.get_booking(actors["ADMIN"], booking.id)).date_of_submission
    assert submitted_at is not None

    await svc.update_booking(actors["ADMIN"], booking.id, {"supplier": suppliers["outsourced"]})
    await svc.update_booking(actors["ADMIN"], booking.id, {"status": "Billed"})

    booking = await svc.get_booking(actors["ADMIN"], booking.id)
    assert booking.status == "Billed"
    assert booking.date_of_submission == submitted_at


@pytest.mark.anyio
async def test_account_cannot_verify_draft(test_db: Any, actors, booking_payload) -> None:
    svc = BookingLifecycleService(test_db)
    booking = await _create(svc, actors["AGENT1"], booking_payload)

    with pytest.raises(AuthorizationError):
        await svc.verify_account(actors["ACCOUNT"], booking.id)

    booking = await svc.get_booking(actors["ADMIN"], booking.id)
    assert booking.status == "Draft"
    assert booking.verified_by_account is False
