"""
Booking store indexes.
PNR uniqueness is enforced here as well as in the lifecycle service, so a
race between two creates still ends in a single booking.
"""
from __future__ import annotations

from pymongo import ASCENDING, DESCENDING
from pymongo.errors import OperationFailure
import logging

logger = logging.getLogger(__name__)


async def ensure_booking_indexes(db):
    """Ensure indexes for bookings, suppliers and audit_logs.

    If an index with the same name but different options already exists we
    keep the existing definition and log a warning instead of failing startup.
    """

    async def _safe_create(collection, *args, **kwargs):
        try:
            await collection.create_index(*args, **kwargs)
        except OperationFailure as e:
            msg = str(e).lower()
            if (
                "indexoptionsconflict" in msg
                or "indexkeyspecsconflict" in msg
                or "already exists" in msg
            ):
                logger.warning(
                    "[booking_indexes] Keeping legacy index for %s (name=%s): %s",
                    collection.name,
                    kwargs.get("name"),
                    msg,
                )
                return
            raise

    # bookings
    await _safe_create(db.bookings, [("pnr", ASCENDING)], unique=True, name="uniq_booking_pnr")
    await _safe_create(db.bookings, [("contactNumber", ASCENDING)], name="bookings_by_contact")
    await _safe_create(
        db.bookings,
        [("status", ASCENDING), ("dateOfSubmission", DESCENDING)],
        name="bookings_by_status",
    )
    await _safe_create(
        db.bookings,
        [("supplier", ASCENDING), ("dateOfSubmission", DESCENDING)],
        name="bookings_by_supplier",
    )
    await _safe_create(
        db.bookings,
        [("dateOfSubmission", DESCENDING), ("createdAt", DESCENDING)],
        name="bookings_list",
    )

    # suppliers
    await _safe_create(db.suppliers, [("nameLower", ASCENDING)], unique=True, name="uniq_supplier_name")

    # audit_logs
    await _safe_create(
        db.audit_logs,
        [("target.type", ASCENDING), ("target.id", ASCENDING), ("created_at", DESCENDING)],
        name="audit_by_target",
    )

    logger.info("Booking indexes ensured")
