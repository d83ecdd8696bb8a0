from __future__ import annotations

"""Cancellation settlement calculator.

Two settlement paths, chosen by how the client originally paid:

Credit card (chargeFromClient required):
    refundableAmountToClient = totalSalePrice - supplierCharge
    currentMargin            = oldMargin + supplierCharge + refundableAmountToClient - totalSalePrice
    newMargin                = chargeFromClient + currentMargin
    refundCommittedToClient  = totalSalePrice - supplierCharge - chargeFromClient

Any other mode (committedToClient required, 0 counts as missing):
    totalCancellationCharges          = oldMargin + supplierCharge + ourCharge
    refundableAmountCommittedToClient = totalSalePrice - totalCancellationCharges
    newMargin                         = totalSalePrice - committedToClient

oldMargin is salePrice - ourCost. The result is stored once on the booking
and only read afterwards.
"""

from datetime import datetime

from travel_window.errors import ValidationError
from travel_window.schemas.bookings import Booking, CancelRequest, Cancellation, PaymentMode


def _round(value: float) -> float:
    return round(value, 2)


def compute_settlement(
    booking: Booking,
    request: CancelRequest,
    *,
    cancelled_by: str,
    cancelled_by_name: str,
    cancelled_at: datetime,
) -> Cancellation:
    """Validate mode-specific inputs and build the Cancellation record.

    Expects derived totals on `booking` to be current.
    """

    if not request.payment_mode_was or not (request.remarks or "").strip():
        raise ValidationError(
            "Payment mode and remarks are required",
            code="cancellation_input_required",
        )

    sale_price = float(booking.sale_price or 0.0)
    our_cost = float(booking.our_cost or 0.0)
    total_sale_price = float(booking.total_sale_price or 0.0)
    supplier_charge = float(request.supplier_cancellation_charges or 0.0)
    our_charge = float(request.our_cancellation_charges or 0.0)

    old_margin = _round(sale_price - our_cost)

    fields = {
        "supplier_cancellation_charges": supplier_charge,
        "our_cancellation_charges": our_charge,
        "old_margin": old_margin,
    }

    if request.payment_mode_was == PaymentMode.CREDIT_CARD.value:
        if request.charge_from_client is None:
            raise ValidationError(
                "Charge from client is required for credit card payments",
                code="charge_from_client_required",
            )
        charge_from_client = float(request.charge_from_client)
        refundable_to_client = _round(total_sale_price - supplier_charge)
        current_margin = _round(old_margin + supplier_charge + refundable_to_client - total_sale_price)
        fields.update(
            charge_from_client=charge_from_client,
            refundable_amount_to_client=refundable_to_client,
            current_margin=current_margin,
            new_margin=_round(charge_from_client + current_margin),
            refund_committed_to_client=_round(total_sale_price - supplier_charge - charge_from_client),
        )
    else:
        if not request.committed_to_client:
            raise ValidationError(
                "Committed to client is required",
                code="committed_to_client_required",
            )
        committed = float(request.committed_to_client)
        total_charges = _round(old_margin + supplier_charge + our_charge)
        fields.update(
            committed_to_client=committed,
            total_cancellation_charges=total_charges,
            refundable_amount_committed_to_client=_round(total_sale_price - total_charges),
            new_margin=_round(total_sale_price - committed),
        )

    return Cancellation(
        is_cancelled=True,
        payment_mode_was=request.payment_mode_was,
        total_amount_paid_by_client=float(booking.total_paid_amount or 0.0),
        refundable_amount=float(request.refundable_amount or 0.0),
        remarks=request.remarks.strip(),
        cancelled_by=cancelled_by,
        cancelled_by_name=cancelled_by_name,
        cancelled_at=cancelled_at,
        previous_status=booking.status,
        **fields,
    )
