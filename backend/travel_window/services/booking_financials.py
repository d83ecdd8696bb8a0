from __future__ import annotations

"""Booking financial calculator.

Derived totals of a booking:
- totalSalePrice = salePrice + sum(additionalServices.serviceCost)
  (legacy bookings without a service list use additionalServicePrice)
- totalPaidAmount = sum(payments.paidAmount)
- balanceAmount = totalSalePrice - totalPaidAmount
- billingStatus from balance / paid

All functions are pure. `apply_totals` is the only one that writes, and it
writes derived fields only.
"""

from dataclasses import dataclass
from datetime import datetime
from typing import Any, Iterable, List, Optional

from travel_window.errors import ValidationError
from travel_window.schemas.bookings import BillingStatus, Booking, Payment, PaymentMode
from travel_window.utils import now_utc, parse_datetime, safe_float


@dataclass(frozen=True)
class BookingTotals:
    total_sale_price: float
    total_paid_amount: float
    balance_amount: float
    billing_status: str


def _round(value: float) -> float:
    return round(value, 2)


def compute_total_sale_price(booking: Booking) -> float:
    if booking.additional_services:
        extras = sum(float(s.service_cost or 0.0) for s in booking.additional_services)
    else:
        extras = float(booking.additional_service_price or 0.0)
    return _round(float(booking.sale_price or 0.0) + extras)


def compute_total_paid(payments: Iterable[Payment]) -> float:
    return _round(sum(float(p.paid_amount or 0.0) for p in payments))


def billing_status_for(balance_amount: float, total_paid_amount: float) -> str:
    if balance_amount <= 0:
        return BillingStatus.FULLY_PAID.value
    if total_paid_amount > 0:
        return BillingStatus.PARTIAL_PAID.value
    return BillingStatus.UNPAID.value


def compute_totals(booking: Booking) -> BookingTotals:
    total_sale_price = compute_total_sale_price(booking)
    total_paid_amount = compute_total_paid(booking.payments)
    balance_amount = _round(total_sale_price - total_paid_amount)
    return BookingTotals(
        total_sale_price=total_sale_price,
        total_paid_amount=total_paid_amount,
        balance_amount=balance_amount,
        billing_status=billing_status_for(balance_amount, total_paid_amount),
    )


def apply_totals(booking: Booking) -> BookingTotals:
    """Recompute and write derived totals onto the booking."""
    totals = compute_totals(booking)
    booking.total_sale_price = totals.total_sale_price
    booking.total_paid_amount = totals.total_paid_amount
    booking.balance_amount = totals.balance_amount
    booking.billing_status = totals.billing_status
    return totals


_PAYMENT_MODES = {m.value for m in PaymentMode}


def normalize_payment(raw: Any, now: Optional[datetime] = None) -> Payment:
    if isinstance(raw, Payment):
        return raw
    if not isinstance(raw, dict):
        raise ValidationError("Payment entries must be objects", details={"payment": str(raw)})

    now = now or now_utc()
    mode = raw.get("paymentMode") or PaymentMode.CASH.value
    if mode not in _PAYMENT_MODES:
        raise ValidationError(
            f"Unknown payment mode {mode}",
            code="invalid_payment_mode",
            details={"paymentMode": mode, "allowed": sorted(_PAYMENT_MODES)},
        )

    return Payment(
        paid_amount=safe_float(raw.get("paidAmount"), 0.0),
        payment_mode=mode,
        payment_date=parse_datetime(raw.get("paymentDate"), default=now),
        reference_no=str(raw.get("referenceNo") or ""),
    )


def normalize_payments(raw_payments: Optional[Iterable[Any]]) -> List[Payment]:
    """Sanitise an externally supplied payment list."""
    if raw_payments is None:
        return []
    if isinstance(raw_payments, (str, bytes, dict)):
        raise ValidationError("payments must be a list")
    now = now_utc()
    return [normalize_payment(p, now=now) for p in raw_payments]
