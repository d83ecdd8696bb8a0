from __future__ import annotations

from datetime import datetime
from enum import Enum
from typing import Any, Dict, List, Optional

from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel


class CamelModel(BaseModel):
    """Base for documents whose wire and storage keys are camelCase."""

    model_config = ConfigDict(
        alias_generator=to_camel,
        populate_by_name=True,
        use_enum_values=True,
        validate_assignment=True,
    )


class BookingStatus(str, Enum):
    DRAFT = "Draft"
    PENDING_VERIFICATION = "Pending Verification"
    UNTICKETED = "Unticketed"
    TICKED = "Ticked"
    ACCOUNT_VERIFIED = "Account Verified"
    ADMIN_VERIFIED = "Admin Verified"
    BILLED = "Billed"
    PAID = "Paid"
    CANCELLED = "Cancelled"


class BillingStatus(str, Enum):
    UNPAID = "Unpaid"
    PARTIAL_PAID = "Partial Paid"
    FULLY_PAID = "Fully Paid"


class PaymentMode(str, Enum):
    CASH = "Cash"
    CHEQUE = "Cheque"
    CREDIT_CARD = "Credit Card"
    UPI = "UPI"
    BANK_TRANSFER = "Bank Transfer"


class SectorType(str, Enum):
    ONE_WAY = "One Way"
    ROUND_TRIP = "Round Trip"
    MULTIPLE = "Multiple"


class PaymentType(str, Enum):
    FULL = "Full"
    INSTALLMENTS = "Installments"


# ---------------------------------------------------------------------------
# Embedded records
# ---------------------------------------------------------------------------


class Payment(CamelModel):
    paid_amount: float = 0.0
    payment_mode: PaymentMode = PaymentMode.CASH
    payment_date: datetime
    reference_no: str = ""


class AdditionalService(CamelModel):
    service_name: str = ""
    service_cost: float = 0.0


class Sector(CamelModel):
    travel_date: Optional[datetime] = None
    from_: str = Field(default="", alias="from")
    to: str = ""


class ActorRef(CamelModel):
    id: str
    name: str = ""
    role: Optional[str] = None


class ProgressHistoryEntry(CamelModel):
    model_config = ConfigDict(frozen=True)

    action: str
    performed_by: str
    performed_by_name: str
    timestamp: datetime
    changes: Dict[str, Any] = Field(default_factory=dict)
    remarks: str = ""


class DateChange(CamelModel):
    model_config = ConfigDict(frozen=True)

    old_travel_date: Optional[datetime] = None
    new_travel_date: Optional[datetime] = None
    old_return_date: Optional[datetime] = None
    new_return_date: Optional[datetime] = None
    old_our_cost: float = 0.0
    new_our_cost: float = 0.0
    old_sale_price: float = 0.0
    new_sale_price: float = 0.0
    remarks: str
    changed_by: str
    changed_by_name: str = ""
    changed_at: datetime


class FlightDetails(CamelModel):
    airline: Optional[str] = None
    from_: Optional[str] = Field(default=None, alias="from")
    to: Optional[str] = None
    travel_date: Optional[datetime] = None
    return_date: Optional[datetime] = None


class FlightChange(CamelModel):
    model_config = ConfigDict(frozen=True)

    old_details: FlightDetails
    new_details: FlightDetails
    remarks: str
    changed_by: str
    changed_by_name: str = ""
    changed_at: datetime


class SeatBookChange(CamelModel):
    model_config = ConfigDict(frozen=True)

    old_our_cost: float = 0.0
    new_our_cost: float = 0.0
    old_sale_price: float = 0.0
    new_sale_price: float = 0.0
    old_supplier: Optional[str] = None
    new_supplier: Optional[str] = None
    payment_mode: str = ""
    remarks: str
    changed_by: str
    changed_by_name: str = ""
    changed_at: datetime


class Cancellation(CamelModel):
    is_cancelled: bool = False
    payment_mode_was: Optional[PaymentMode] = None
    total_amount_paid_by_client: float = 0.0
    refundable_amount: float = 0.0
    old_margin: float = 0.0
    committed_to_client: float = 0.0
    charge_from_client: float = 0.0
    new_margin: float = 0.0
    supplier_cancellation_charges: float = 0.0
    our_cancellation_charges: float = 0.0
    current_margin: float = 0.0
    total_cancellation_charges: float = 0.0
    refundable_amount_to_client: float = 0.0
    refundable_amount_committed_to_client: float = 0.0
    refund_committed_to_client: float = 0.0
    refund_processed: bool = False
    refund_processed_by: Optional[str] = None
    refund_processed_by_name: Optional[str] = None
    refund_processed_date: Optional[datetime] = None
    remarks: str = ""
    cancelled_by: Optional[str] = None
    cancelled_by_name: Optional[str] = None
    cancelled_at: Optional[datetime] = None
    previous_status: Optional[BookingStatus] = None


# ---------------------------------------------------------------------------
# Aggregate
# ---------------------------------------------------------------------------


class Booking(CamelModel):
    id: Optional[str] = None
    revision: int = 0

    # Passenger & contact
    pax_name: str
    contact_person: str = ""
    contact_number: str
    pnr: str

    # Itinerary
    sector_type: SectorType
    travel_date: datetime
    from_: str = Field(alias="from")
    to: str
    return_date: Optional[datetime] = None
    multiple_sectors: List[Sector] = Field(default_factory=list)
    note: str = ""

    # Commercial
    airline: str = ""
    supplier: Optional[str] = None
    supplier_name: str = ""
    supplier_outsourced: bool = False
    our_cost: float = 0.0
    sale_price: float = 0.0
    additional_service: str = ""
    additional_service_price: float = 0.0
    additional_services: List[AdditionalService] = Field(default_factory=list)
    payment_type: PaymentType = PaymentType.FULL

    # Payments & derived totals
    payments: List[Payment] = Field(default_factory=list)
    total_sale_price: float = 0.0
    total_paid_amount: float = 0.0
    balance_amount: float = 0.0
    billing_status: BillingStatus = BillingStatus.UNPAID

    # Lifecycle
    status: BookingStatus = BookingStatus.DRAFT
    date_of_submission: Optional[datetime] = None
    submitted_by: str
    submitted_by_name: str

    verified_by_account: bool = False
    verified_by_account_date: Optional[datetime] = None
    verified_by_account_user: Optional[str] = None
    verified_by_admin: bool = False
    verified_by_admin_date: Optional[datetime] = None
    verified_by_admin_user: Optional[str] = None

    assigned_to: Optional[ActorRef] = None

    progress_history: List[ProgressHistoryEntry] = Field(default_factory=list)
    date_changes: List[DateChange] = Field(default_factory=list)
    flight_changes: List[FlightChange] = Field(default_factory=list)
    seat_book_changes: List[SeatBookChange] = Field(default_factory=list)
    cancellation: Cancellation = Field(default_factory=Cancellation)

    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None

    @property
    def is_verified(self) -> bool:
        return self.verified_by_account or self.verified_by_admin

    @property
    def is_cancelled(self) -> bool:
        return self.cancellation.is_cancelled

    def to_wire(self) -> Dict[str, Any]:
        return self.model_dump(by_alias=True, mode="json")

    @classmethod
    def from_wire(cls, payload: Dict[str, Any]) -> "Booking":
        return cls.model_validate(payload)


class BookingPage(CamelModel):
    bookings: List[Booking]
    total_pages: int
    current_page: int
    total: int


# ---------------------------------------------------------------------------
# Requests
# ---------------------------------------------------------------------------


class BookingCreate(CamelModel):
    pax_name: str
    contact_person: str = ""
    contact_number: str
    pnr: str
    sector_type: SectorType
    travel_date: datetime
    from_: str = Field(alias="from")
    to: str
    return_date: Optional[datetime] = None
    multiple_sectors: List[Sector] = Field(default_factory=list)
    note: str = ""
    airline: str = ""
    supplier: Optional[str] = None
    our_cost: float = 0.0
    sale_price: float = 0.0
    additional_service: str = ""
    additional_service_price: float = 0.0
    additional_services: List[AdditionalService] = Field(default_factory=list)
    payment_type: PaymentType = PaymentType.FULL
    # Raw payment dicts; sanitised by normalize_payments.
    payments: List[Dict[str, Any]] = Field(default_factory=list)


class DateChangeRequest(CamelModel):
    change_travel_date: bool = False
    change_return_date: bool = False
    new_travel_date: Optional[datetime] = None
    new_return_date: Optional[datetime] = None
    new_our_cost: Optional[float] = None
    new_sale_price: Optional[float] = None
    remarks: Optional[str] = None


class FlightChangeRequest(CamelModel):
    new_details: Optional[FlightDetails] = None
    remarks: Optional[str] = None


class SeatBookRequest(CamelModel):
    new_our_cost: Optional[float] = None
    new_sale_price: Optional[float] = None
    new_supplier: Optional[str] = None
    payment_mode: Optional[str] = None
    remarks: Optional[str] = None


class CancelRequest(CamelModel):
    payment_mode_was: Optional[PaymentMode] = None
    supplier_cancellation_charges: float = 0.0
    our_cancellation_charges: float = 0.0
    charge_from_client: Optional[float] = None
    committed_to_client: Optional[float] = None
    refundable_amount: Optional[float] = None
    remarks: Optional[str] = None


class AssignRequest(CamelModel):
    assigned_to: ActorRef


class BookingListQuery(CamelModel):
    status: Optional[str] = None
    supplier: Optional[str] = None
    date_from: Optional[datetime] = None
    date_to: Optional[datetime] = None
    pnr: Optional[str] = None
    contact_number: Optional[str] = None
    page: int = Field(default=1, ge=1)
    limit: int = Field(default=50, ge=1, le=200)


class RevertCancellationRequest(CamelModel):
    remarks: Optional[str] = None
