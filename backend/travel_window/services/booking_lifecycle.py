from __future__ import annotations

import logging
import math
import re
from typing import Any, Dict, List, Optional

from pydantic import ValidationError as PydanticValidationError
from pymongo.errors import PyMongoError

from travel_window import config
from travel_window.domain import booking_state_machine as sm
from travel_window.domain.authorization_policy import (
    ADMIN,
    Operation,
    authorize,
    authorize_assignment,
    authorize_update,
    visibility_filter,
)
from travel_window.errors import ConflictError, NotFoundError, ValidationError
from travel_window.repositories.audit_log_repository import AuditLogRepository
from travel_window.repositories.booking_repository import BookingRepository
from travel_window.repositories.supplier_repository import SupplierRepository
from travel_window.schemas.actors import Actor
from travel_window.schemas.bookings import (
    AdditionalService,
    AssignRequest,
    Booking,
    BookingCreate,
    BookingListQuery,
    BookingPage,
    CancelRequest,
    Cancellation,
    DateChange,
    DateChangeRequest,
    FlightChange,
    FlightChangeRequest,
    FlightDetails,
    PaymentMode,
    SeatBookChange,
    SeatBookRequest,
    Sector,
    SectorType,
)
from travel_window.schemas.suppliers import Supplier
from travel_window.services.audit import build_audit_log, record_progress, shallow_diff
from travel_window.services.booking_financials import apply_totals, normalize_payments
from travel_window.services.cancellation import compute_settlement
from travel_window.utils import as_utc, capitalize_first, now_utc, parse_datetime, serialize_doc

logger = logging.getLogger(__name__)


_REQUIRED_TEXT_FIELDS = ("paxName", "contactNumber", "from", "to")
_MONEY_FIELDS = {
    "ourCost": "our_cost",
    "salePrice": "sale_price",
    "additionalServicePrice": "additional_service_price",
}
_TEXT_FIELDS = {
    "contactPerson": "contact_person",
    "note": "note",
    "airline": "airline",
    "additionalService": "additional_service",
}


def _require_remarks(remarks: Optional[str]) -> str:
    text = (remarks or "").strip()
    if not text:
        raise ValidationError("Remarks are mandatory", code="remarks_required")
    return text


def _to_money(field: str, value: Any) -> float:
    if value is None or value == "":
        return 0.0
    try:
        return float(value)
    except (TypeError, ValueError):
        raise ValidationError(f"{field} must be a number", details={"field": field, "value": str(value)})


def _to_date(field: str, value: Any, *, required: bool) -> Any:
    if value is None or value == "":
        if required:
            raise ValidationError(f"{field} is required", details={"field": field})
        return None
    parsed = parse_datetime(value)
    if parsed is None:
        raise ValidationError(f"{field} must be an ISO-8601 date", details={"field": field, "value": str(value)})
    return parsed


def _pydantic_details(exc: PydanticValidationError) -> Dict[str, Any]:
    return {"errors": [{"loc": [str(p) for p in e.get("loc", ())], "msg": e.get("msg", "")} for e in exc.errors()]}


def _check_sectors(sector_type: str, sectors: List[Sector]) -> List[Sector]:
    if sector_type == SectorType.MULTIPLE.value:
        if not sectors:
            raise ValidationError(
                "multipleSectors is required for multi-sector bookings",
                details={"field": "multipleSectors"},
            )
        return sectors
    return []


class BookingLifecycleService:
    """Create/read/update/submit/verify/amend/cancel/refund for bookings.

    Every mutating operation follows the same order: load the aggregate,
    authorize, validate, mutate in memory, recompute totals, prepend a
    progress entry, then persist aggregate and entry together with one
    compare-and-swap write. The `audit_logs` mirror is written only after the
    booking write has committed.
    """

    def __init__(self, db, *, correlation_id: Optional[str] = None) -> None:
        self.db = db
        self.bookings = BookingRepository(db)
        self.suppliers = SupplierRepository(db)
        self.audit_logs = AuditLogRepository(db)
        self.correlation_id = correlation_id

    # ------------------------------------------------------------------
    # Helpers
    # ------------------------------------------------------------------

    async def _load(self, booking_id: str) -> Booking:
        booking = await self.bookings.find_by_id(booking_id)
        if booking is None:
            raise NotFoundError("Booking not found", code="booking_not_found", details={"booking_id": booking_id})
        return booking

    async def _resolve_supplier(self, supplier_id: str) -> Supplier:
        supplier = await self.suppliers.find_by_id(supplier_id)
        if supplier is None:
            raise NotFoundError("Supplier not found", code="supplier_not_found", details={"supplier_id": supplier_id})
        return supplier

    async def _assign_supplier(self, booking: Booking, supplier_id: Optional[str]) -> None:
        """Write a supplier onto the booking and apply the outsourced-channel rule."""

        was_outsourced = booking.supplier_outsourced
        if supplier_id:
            supplier = await self._resolve_supplier(supplier_id)
            booking.supplier = supplier.id
            booking.supplier_name = supplier.name
            booking.supplier_outsourced = supplier.is_outsourced
        else:
            booking.supplier = None
            booking.supplier_name = ""
            booking.supplier_outsourced = False

        booking.status = sm.supplier_reassignment_status(
            booking.status, was_outsourced, booking.supplier_outsourced
        )
        if sm.is_submitted(booking.status) and booking.date_of_submission is None:
            booking.date_of_submission = now_utc()

    async def _commit(
        self,
        booking: Booking,
        actor: Actor,
        action: str,
        *,
        before: Dict[str, Any],
        changes: Optional[Dict[str, Any]] = None,
        remarks: str = "",
        billing_status_override: Optional[str] = None,
    ) -> Booking:
        apply_totals(booking)
        if billing_status_override is not None:
            booking.billing_status = billing_status_override
        record_progress(booking, action, actor, changes, remarks)

        try:
            await self.bookings.save(booking)
        except ConflictError:
            logger.warning("booking %s: %s by %s lost a revision race", booking.id, action, actor.id)
            raise

        logger.info(
            "booking %s: %s by %s (%s) -> revision %s status=%s",
            booking.id,
            action,
            actor.id,
            actor.role,
            booking.revision,
            booking.status,
        )
        await self._mirror_audit(booking, actor, action, before=before, remarks=remarks)
        return booking

    async def _mirror_audit(
        self,
        booking: Booking,
        actor: Actor,
        action: str,
        *,
        before: Optional[Dict[str, Any]],
        remarks: str = "",
    ) -> None:
        if not config.ENABLE_AUDIT_MIRROR:
            return
        doc = build_audit_log(
            actor=actor,
            action=action,
            booking_id=booking.id or "",
            revision=booking.revision,
            diff=shallow_diff(before, booking.to_wire()),
            remarks=remarks,
            correlation_id=self.correlation_id,
        )
        try:
            await self.audit_logs.append(doc)
        except PyMongoError as exc:
            # The booking write (including its progress history) has already
            # committed; the mirror is rebuilt from progressHistory if needed.
            logger.warning("audit mirror write failed for booking %s (%s): %s", booking.id, action, exc)

    # ------------------------------------------------------------------
    # Create / read
    # ------------------------------------------------------------------

    async def create_booking(self, actor: Actor, payload: BookingCreate) -> Booking:
        authorize(actor, Operation.CREATE)

        values = {
            "paxName": payload.pax_name,
            "contactNumber": payload.contact_number,
            "pnr": payload.pnr,
            "from": payload.from_,
            "to": payload.to,
        }
        missing = [k for k, v in values.items() if not (v or "").strip()]
        if missing:
            raise ValidationError("Missing required fields", details={"fields": missing})

        sectors = _check_sectors(payload.sector_type, payload.multiple_sectors)
        pnr = payload.pnr.strip().upper()
        if await self.bookings.find_by_pnr(pnr):
            raise ValidationError("PNR already exists", code="duplicate_pnr", details={"pnr": pnr})

        supplier: Optional[Supplier] = None
        if payload.supplier:
            supplier = await self._resolve_supplier(payload.supplier)
        outsourced = bool(supplier and supplier.is_outsourced)

        status = sm.initial_status(actor.role, outsourced)
        now = now_utc()

        try:
            booking = Booking(
                pax_name=payload.pax_name.strip().upper(),
                contact_person=payload.contact_person or "",
                contact_number=payload.contact_number.strip(),
                pnr=pnr,
                sector_type=payload.sector_type,
                travel_date=payload.travel_date,
                from_=capitalize_first(payload.from_.strip()),
                to=capitalize_first(payload.to.strip()),
                return_date=payload.return_date,
                multiple_sectors=sectors,
                note=payload.note or "",
                airline=payload.airline or "",
                supplier=supplier.id if supplier else None,
                supplier_name=supplier.name if supplier else "",
                supplier_outsourced=outsourced,
                our_cost=payload.our_cost or 0.0,
                sale_price=payload.sale_price or 0.0,
                additional_service=payload.additional_service or "",
                additional_service_price=payload.additional_service_price or 0.0,
                additional_services=payload.additional_services,
                payment_type=payload.payment_type,
                payments=normalize_payments(payload.payments),
                status=status,
                date_of_submission=now if sm.is_submitted(status) else None,
                submitted_by=actor.id,
                submitted_by_name=actor.name,
            )
        except PydanticValidationError as exc:
            raise ValidationError("Invalid booking payload", details=_pydantic_details(exc)) from exc

        apply_totals(booking)
        record_progress(
            booking,
            "Booking Created",
            actor,
            {"pnr": booking.pnr, "paxName": booking.pax_name, "status": booking.status},
            timestamp=now,
        )
        await self.bookings.insert(booking)
        logger.info("booking %s created by %s (%s) status=%s", booking.id, actor.id, actor.role, booking.status)
        await self._mirror_audit(booking, actor, "Booking Created", before=None)
        return booking

    async def get_booking(self, actor: Actor, booking_id: str) -> Booking:
        booking = await self._load(booking_id)
        authorize(actor, Operation.VIEW, booking)
        return booking

    def _list_filter(self, actor: Actor, query: BookingListQuery) -> Dict[str, Any]:
        conditions: List[Dict[str, Any]] = []
        visibility = visibility_filter(actor)
        if visibility:
            conditions.append(visibility)

        status = (query.status or "").strip()
        if status and status != "all":
            if status == sm.CANCELLED:
                conditions.append({"status": sm.CANCELLED})
            elif status in (sm.UNTICKETED, sm.TICKED):
                conditions.append({"status": {"$ne": sm.CANCELLED}})
                if status == sm.UNTICKETED:
                    conditions.append({"supplierOutsourced": True})
                else:
                    conditions.append({"supplierOutsourced": {"$ne": True}})
            else:
                conditions.append({"status": status})

        if query.supplier and query.supplier != "all":
            conditions.append({"supplier": query.supplier})
        if query.pnr:
            conditions.append({"pnr": {"$regex": re.escape(query.pnr.strip().upper()), "$options": "i"}})
        if query.contact_number:
            conditions.append({"contactNumber": {"$regex": re.escape(query.contact_number.strip()), "$options": "i"}})
        if query.date_from or query.date_to:
            date_range: Dict[str, Any] = {}
            if query.date_from:
                date_range["$gte"] = query.date_from
            if query.date_to:
                date_range["$lte"] = query.date_to
            conditions.append({"dateOfSubmission": date_range})

        if not conditions:
            return {}
        if len(conditions) == 1:
            return conditions[0]
        return {"$and": conditions}

    async def list_bookings(self, actor: Actor, query: BookingListQuery) -> BookingPage:
        authorize(actor, Operation.LIST)
        flt = self._list_filter(actor, query)
        limit = min(query.limit, config.MAX_PAGE_LIMIT)
        bookings = await self.bookings.find(
            flt,
            sort=[("dateOfSubmission", -1), ("createdAt", -1)],
            skip=(query.page - 1) * limit,
            limit=limit,
        )
        total = await self.bookings.count_documents(flt)
        return BookingPage(
            bookings=bookings,
            total_pages=math.ceil(total / limit) if total else 0,
            current_page=query.page,
            total=total,
        )

    async def search_bookings(self, actor: Actor, term: str) -> List[Booking]:
        authorize(actor, Operation.LIST)
        term = (term or "").strip()
        if not term:
            raise ValidationError("Search term is required", details={"field": "query"})

        flt: Dict[str, Any] = {
            "$or": [
                {"pnr": {"$regex": re.escape(term.upper()), "$options": "i"}},
                {"contactNumber": {"$regex": re.escape(term), "$options": "i"}},
            ]
        }
        visibility = visibility_filter(actor)
        if visibility:
            flt = {"$and": [flt, visibility]}

        return await self.bookings.find(
            flt,
            sort=[("dateOfSubmission", -1), ("createdAt", -1)],
            limit=config.SEARCH_RESULT_LIMIT,
        )

    async def list_audit_logs(self, actor: Actor, booking_id: str, *, limit: int = 50) -> List[Dict[str, Any]]:
        booking = await self.get_booking(actor, booking_id)
        rows = await self.audit_logs.list_for_booking(booking.id or "", limit=limit)
        return serialize_doc(rows)

    # ------------------------------------------------------------------
    # Update
    # ------------------------------------------------------------------

    async def _apply_field(self, booking: Booking, key: str, value: Any) -> None:
        if key in _REQUIRED_TEXT_FIELDS and not str(value or "").strip():
            raise ValidationError(f"{key} cannot be empty", details={"field": key})

        if key == "paxName":
            booking.pax_name = str(value).strip().upper()
        elif key == "contactNumber":
            booking.contact_number = str(value).strip()
        elif key == "from":
            booking.from_ = capitalize_first(str(value).strip())
        elif key == "to":
            booking.to = capitalize_first(str(value).strip())
        elif key == "travelDate":
            booking.travel_date = _to_date(key, value, required=True)
        elif key == "returnDate":
            booking.return_date = _to_date(key, value, required=False)
        elif key == "sectorType":
            booking.sector_type = value
        elif key == "multipleSectors":
            booking.multiple_sectors = [Sector.model_validate(s) for s in (value or [])]
        elif key == "additionalServices":
            booking.additional_services = [AdditionalService.model_validate(s) for s in (value or [])]
        elif key == "payments":
            booking.payments = normalize_payments(value)
        elif key == "paymentType":
            booking.payment_type = value
        elif key == "supplier":
            await self._assign_supplier(booking, value or None)
        elif key in _MONEY_FIELDS:
            setattr(booking, _MONEY_FIELDS[key], _to_money(key, value))
        elif key in _TEXT_FIELDS:
            setattr(booking, _TEXT_FIELDS[key], "" if value is None else str(value))
        elif key == "pnr":
            pnr = str(value or "").strip().upper()
            if not pnr:
                raise ValidationError("pnr cannot be empty", details={"field": "pnr"})
            if pnr != booking.pnr:
                existing = await self.bookings.find_by_pnr(pnr)
                if existing is not None and existing.id != booking.id:
                    raise ValidationError("PNR already exists", code="duplicate_pnr", details={"pnr": pnr})
            booking.pnr = pnr
        else:
            raise ValidationError(f"Unsupported field {key}", details={"field": key})

    def _apply_cancellation_override(self, booking: Booking, value: Any) -> None:
        if not isinstance(value, dict):
            raise ValidationError("cancellation must be an object", details={"field": "cancellation"})

        if value.get("isCancelled") is False:
            # Only a cancelled booking has a status to restore.
            if booking.is_cancelled:
                self._revert(booking)
            else:
                booking.cancellation = Cancellation()
            return

        record = Cancellation.model_validate({**booking.cancellation.model_dump(by_alias=True), **value})
        if record.is_cancelled and not booking.is_cancelled:
            record.previous_status = booking.status
            booking.status = sm.CANCELLED
        booking.cancellation = record

    def _revert(self, booking: Booking) -> None:
        restored = booking.cancellation.previous_status
        if not restored or restored == sm.CANCELLED:
            restored = sm.PENDING_VERIFICATION if booking.date_of_submission else sm.DRAFT
        booking.cancellation = Cancellation()
        booking.status = restored

    async def update_booking(
        self,
        actor: Actor,
        booking_id: str,
        updates: Dict[str, Any],
        *,
        expected_revision: Optional[int] = None,
    ) -> Booking:
        booking = await self._load(booking_id)
        if expected_revision is not None and expected_revision != booking.revision:
            raise ConflictError(
                "Booking was modified since it was read; reload and retry",
                details={"booking_id": booking.id, "revision": booking.revision, "expected": expected_revision},
            )

        authorize_update(actor, booking, updates.keys())
        if not updates:
            return booking

        before = booking.to_wire()
        billing_override: Optional[str] = None
        try:
            for key, value in updates.items():
                if key in ("status", "billingStatus", "cancellation"):
                    continue
                await self._apply_field(booking, key, value)

            _check_sectors(booking.sector_type, booking.multiple_sectors)
            if booking.sector_type != SectorType.MULTIPLE.value:
                booking.multiple_sectors = []

            if "cancellation" in updates:
                self._apply_cancellation_override(booking, updates["cancellation"])
            if "status" in updates:
                target = updates["status"]
                sm.validate_status_override(booking.status, target, booking.is_cancelled)
                booking.status = target
                if sm.is_submitted(booking.status) and booking.date_of_submission is None:
                    booking.date_of_submission = now_utc()
            if "billingStatus" in updates:
                booking.billing_status = updates["billingStatus"]
                billing_override = booking.billing_status
        except PydanticValidationError as exc:
            raise ValidationError("Invalid field value", details=_pydantic_details(exc)) from exc

        after = booking.to_wire()
        changes = {k: after.get(k) for k in updates.keys()}
        if before.get("status") != after.get("status"):
            changes["status"] = after.get("status")
        if "supplier" in updates:
            changes["supplierName"] = booking.supplier_name

        action = "Booking Updated by Admin" if actor.role == ADMIN else "Booking Updated"
        return await self._commit(
            booking,
            actor,
            action,
            before=before,
            changes=changes,
            billing_status_override=billing_override,
        )

    # ------------------------------------------------------------------
    # Workflow transitions
    # ------------------------------------------------------------------

    async def submit_booking(self, actor: Actor, booking_id: str) -> Booking:
        booking = await self._load(booking_id)
        authorize(actor, Operation.SUBMIT, booking)
        sm.assert_not_cancelled(booking.status, "submit")

        before = booking.to_wire()
        booking.status = sm.submit_status(booking.status, booking.supplier_outsourced)
        if booking.date_of_submission is None:
            booking.date_of_submission = now_utc()

        return await self._commit(booking, actor, "Booking Submitted", before=before, changes={"status": booking.status})

    async def verify_account(self, actor: Actor, booking_id: str) -> Booking:
        booking = await self._load(booking_id)
        authorize(actor, Operation.VERIFY_ACCOUNT, booking)
        sm.assert_not_cancelled(booking.status, "verify")

        before = booking.to_wire()
        booking.verified_by_account = True
        booking.verified_by_account_date = now_utc()
        booking.verified_by_account_user = actor.id
        booking.status = sm.account_verified_status(booking.status)

        return await self._commit(booking, actor, "Verified by Account", before=before, changes={"status": booking.status})

    async def verify_admin(self, actor: Actor, booking_id: str) -> Booking:
        booking = await self._load(booking_id)
        authorize(actor, Operation.VERIFY_ADMIN, booking)
        sm.assert_not_cancelled(booking.status, "verify")

        before = booking.to_wire()
        booking.verified_by_admin = True
        booking.verified_by_admin_date = now_utc()
        booking.verified_by_admin_user = actor.id
        booking.status = sm.admin_verified_status(booking.status)

        return await self._commit(booking, actor, "Verified by Admin", before=before, changes={"status": booking.status})

    async def assign_booking(self, actor: Actor, booking_id: str, request: AssignRequest) -> Booking:
        assignee = request.assigned_to
        if not assignee.role:
            raise ValidationError("Assignee role is required", details={"field": "assignedTo.role"})
        authorize_assignment(actor, assignee.role)

        booking = await self._load(booking_id)
        authorize(actor, Operation.VIEW, booking)
        sm.assert_not_cancelled(booking.status, "assign")

        before = booking.to_wire()
        booking.assigned_to = assignee
        return await self._commit(
            booking,
            actor,
            "Booking Assigned",
            before=before,
            changes={"assignedTo": assignee.model_dump(by_alias=True)},
        )

    # ------------------------------------------------------------------
    # Amendments
    # ------------------------------------------------------------------

    async def change_date(self, actor: Actor, booking_id: str, request: DateChangeRequest) -> Booking:
        booking = await self._load(booking_id)
        authorize(actor, Operation.AMEND, booking)
        sm.assert_not_cancelled(booking.status, "change dates of")
        remarks = _require_remarks(request.remarks)

        now = now_utc()
        travel_date = as_utc(booking.travel_date)
        if travel_date.date() < now.date() and not (request.change_travel_date or request.change_return_date):
            raise ValidationError("Please select which date(s) to change", code="date_selection_required")
        if request.change_travel_date and request.new_travel_date is None:
            raise ValidationError("newTravelDate is required to change the travel date", details={"field": "newTravelDate"})
        if request.change_return_date and request.new_return_date is None:
            raise ValidationError("newReturnDate is required to change the return date", details={"field": "newReturnDate"})

        before = booking.to_wire()
        change = DateChange(
            old_travel_date=booking.travel_date,
            new_travel_date=request.new_travel_date if request.change_travel_date else booking.travel_date,
            old_return_date=booking.return_date,
            new_return_date=request.new_return_date if request.change_return_date else booking.return_date,
            old_our_cost=booking.our_cost,
            new_our_cost=booking.our_cost if request.new_our_cost is None else request.new_our_cost,
            old_sale_price=booking.sale_price,
            new_sale_price=booking.sale_price if request.new_sale_price is None else request.new_sale_price,
            remarks=remarks,
            changed_by=actor.id,
            changed_by_name=actor.name,
            changed_at=now,
        )

        booking.travel_date = change.new_travel_date
        booking.return_date = change.new_return_date
        booking.our_cost = change.new_our_cost
        booking.sale_price = change.new_sale_price
        booking.date_changes = [*booking.date_changes, change]

        return await self._commit(
            booking,
            actor,
            "Date Change",
            before=before,
            changes=change.model_dump(by_alias=True, mode="json"),
            remarks=remarks,
        )

    async def change_flight(self, actor: Actor, booking_id: str, request: FlightChangeRequest) -> Booking:
        booking = await self._load(booking_id)
        authorize(actor, Operation.AMEND, booking)
        sm.assert_not_cancelled(booking.status, "change the flight of")
        remarks = _require_remarks(request.remarks)

        new_details = request.new_details or FlightDetails()
        before = booking.to_wire()
        change = FlightChange(
            old_details=FlightDetails(
                airline=booking.airline,
                from_=booking.from_,
                to=booking.to,
                travel_date=booking.travel_date,
                return_date=booking.return_date,
            ),
            new_details=new_details,
            remarks=remarks,
            changed_by=actor.id,
            changed_by_name=actor.name,
            changed_at=now_utc(),
        )

        if new_details.airline is not None:
            booking.airline = new_details.airline
        if new_details.from_ is not None:
            booking.from_ = capitalize_first(new_details.from_.strip())
        if new_details.to is not None:
            booking.to = capitalize_first(new_details.to.strip())
        if new_details.travel_date is not None:
            booking.travel_date = new_details.travel_date
        if new_details.return_date is not None:
            booking.return_date = new_details.return_date
        booking.flight_changes = [*booking.flight_changes, change]

        return await self._commit(
            booking,
            actor,
            "Flight Change",
            before=before,
            changes=change.model_dump(by_alias=True, mode="json"),
            remarks=remarks,
        )

    async def seat_book(self, actor: Actor, booking_id: str, request: SeatBookRequest) -> Booking:
        booking = await self._load(booking_id)
        authorize(actor, Operation.AMEND, booking)
        sm.assert_not_cancelled(booking.status, "seat-book")
        remarks = _require_remarks(request.remarks)

        payment_mode = (request.payment_mode or "").strip()
        if payment_mode and payment_mode not in {m.value for m in PaymentMode}:
            raise ValidationError(f"Unknown payment mode {payment_mode}", code="invalid_payment_mode")

        before = booking.to_wire()
        old_supplier = booking.supplier
        if request.new_supplier:
            await self._assign_supplier(booking, request.new_supplier)

        change = SeatBookChange(
            old_our_cost=booking.our_cost,
            new_our_cost=booking.our_cost if request.new_our_cost is None else request.new_our_cost,
            old_sale_price=booking.sale_price,
            new_sale_price=booking.sale_price if request.new_sale_price is None else request.new_sale_price,
            old_supplier=old_supplier,
            new_supplier=booking.supplier,
            payment_mode=payment_mode,
            remarks=remarks,
            changed_by=actor.id,
            changed_by_name=actor.name,
            changed_at=now_utc(),
        )

        booking.our_cost = change.new_our_cost
        booking.sale_price = change.new_sale_price
        booking.seat_book_changes = [*booking.seat_book_changes, change]

        changes = change.model_dump(by_alias=True, mode="json")
        if before.get("status") != booking.status:
            changes["status"] = booking.status
        return await self._commit(booking, actor, "Seat Book", before=before, changes=changes, remarks=remarks)

    # ------------------------------------------------------------------
    # Cancellation & refund
    # ------------------------------------------------------------------

    async def cancel_booking(self, actor: Actor, booking_id: str, request: CancelRequest) -> Booking:
        booking = await self._load(booking_id)
        authorize(actor, Operation.CANCEL, booking)
        if booking.is_cancelled or booking.status == sm.CANCELLED:
            raise sm.BookingStateTransitionError(booking.status, sm.CANCELLED, message="Booking is already cancelled")

        before = booking.to_wire()
        apply_totals(booking)
        booking.cancellation = compute_settlement(
            booking,
            request,
            cancelled_by=actor.id,
            cancelled_by_name=actor.name,
            cancelled_at=now_utc(),
        )
        booking.status = sm.CANCELLED

        c = booking.cancellation
        return await self._commit(
            booking,
            actor,
            "Booking Cancelled",
            before=before,
            changes={
                "paymentModeWas": c.payment_mode_was,
                "refundableAmount": c.refundable_amount,
                "oldMargin": c.old_margin,
                "newMargin": c.new_margin,
            },
            remarks=c.remarks,
        )

    async def process_refund(self, actor: Actor, booking_id: str) -> Booking:
        booking = await self._load(booking_id)
        authorize(actor, Operation.PROCESS_REFUND, booking)
        if not booking.is_cancelled:
            raise ValidationError("Booking is not cancelled", code="booking_not_cancelled")

        before = booking.to_wire()
        c = booking.cancellation
        changes: Dict[str, Any] = {}
        if c.refund_processed:
            # Re-processing overwrites the recorded processor; keep the old one in the trail.
            changes["previousRefundProcessedBy"] = c.refund_processed_by_name or c.refund_processed_by
            changes["previousRefundProcessedDate"] = c.refund_processed_date

        now = now_utc()
        c.refund_processed = True
        c.refund_processed_by = actor.id
        c.refund_processed_by_name = actor.name
        c.refund_processed_date = now
        changes.update(refundProcessedBy=actor.name, refundProcessedDate=now)

        return await self._commit(booking, actor, "Refund Processed", before=before, changes=changes)

    async def revert_cancellation(self, actor: Actor, booking_id: str, remarks: Optional[str] = None) -> Booking:
        booking = await self._load(booking_id)
        authorize(actor, Operation.REVERT_CANCELLATION, booking)
        if not booking.is_cancelled:
            raise ValidationError("Booking is not cancelled", code="booking_not_cancelled")

        before = booking.to_wire()
        self._revert(booking)
        return await self._commit(
            booking,
            actor,
            "Cancellation Reverted",
            before=before,
            changes={"cancellation": "reverted (active)", "status": booking.status},
            remarks=(remarks or "").strip(),
        )
