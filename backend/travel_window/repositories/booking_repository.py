from __future__ import annotations

import logging
from typing import Any, Dict, List, Optional, Sequence, Tuple

from bson import ObjectId
from motor.motor_asyncio import AsyncIOMotorDatabase
from pymongo.errors import DuplicateKeyError, PyMongoError

from travel_window.errors import ConflictError, StoreError, ValidationError
from travel_window.repositories.base_repository import get_collection
from travel_window.schemas.bookings import Booking
from travel_window.utils import now_utc, to_object_id

logger = logging.getLogger(__name__)


SortSpec = Sequence[Tuple[str, int]]


class BookingRepository:
    """Persistence of the Booking aggregate (one document per booking).

    Every write goes through `save`, which is a compare-and-swap on the
    `revision` counter: the document is replaced only if nobody else wrote it
    since it was read.
    """

    def __init__(self, db: AsyncIOMotorDatabase) -> None:
        self._db = db
        self._col = get_collection(db, "bookings")

    @staticmethod
    def _to_model(doc: Dict[str, Any]) -> Booking:
        data = dict(doc)
        data["id"] = str(data.pop("_id"))
        return Booking.model_validate(data)

    @staticmethod
    def _to_doc(booking: Booking) -> Dict[str, Any]:
        return booking.model_dump(by_alias=True, exclude={"id"})

    async def find_by_id(self, booking_id: str) -> Optional[Booking]:
        oid = to_object_id(booking_id)
        if oid is None:
            return None
        try:
            doc = await self._col.find_one({"_id": oid})
        except PyMongoError as exc:
            logger.exception("find_by_id failed for booking %s", booking_id)
            raise StoreError() from exc
        return self._to_model(doc) if doc else None

    async def find_by_pnr(self, pnr: str) -> Optional[Booking]:
        try:
            doc = await self._col.find_one({"pnr": (pnr or "").strip().upper()})
        except PyMongoError as exc:
            logger.exception("find_by_pnr failed")
            raise StoreError() from exc
        return self._to_model(doc) if doc else None

    async def find(
        self,
        flt: Dict[str, Any],
        *,
        sort: Optional[SortSpec] = None,
        skip: int = 0,
        limit: int = 50,
    ) -> List[Booking]:
        try:
            cursor = self._col.find(flt)
            if sort:
                cursor = cursor.sort(list(sort))
            cursor = cursor.skip(skip).limit(limit)
            docs = await cursor.to_list(length=limit)
        except PyMongoError as exc:
            logger.exception("booking find failed")
            raise StoreError() from exc
        return [self._to_model(d) for d in docs]

    async def count_documents(self, flt: Dict[str, Any]) -> int:
        try:
            return await self._col.count_documents(flt)
        except PyMongoError as exc:
            logger.exception("booking count failed")
            raise StoreError() from exc

    async def insert(self, booking: Booking) -> Booking:
        now = now_utc()
        booking.created_at = now
        booking.updated_at = now
        doc = self._to_doc(booking)
        doc["_id"] = ObjectId()
        try:
            await self._col.insert_one(doc)
        except DuplicateKeyError as exc:
            raise ValidationError("PNR already exists", code="duplicate_pnr", details={"pnr": booking.pnr}) from exc
        except PyMongoError as exc:
            logger.exception("booking insert failed")
            raise StoreError() from exc

        booking.id = str(doc["_id"])
        return booking

    async def save(self, booking: Booking) -> Booking:
        """Persist the aggregate if its revision is still current.

        On success the in-memory booking carries the new revision. Raises
        ConflictError when the stored revision moved on.
        """

        oid = to_object_id(booking.id or "")
        if oid is None:
            raise ValueError("save() requires a persisted booking id")

        expected = booking.revision
        booking.updated_at = now_utc()
        doc = self._to_doc(booking)
        doc["revision"] = expected + 1

        try:
            res = await self._col.replace_one({"_id": oid, "revision": expected}, doc)
        except DuplicateKeyError as exc:
            raise ValidationError("PNR already exists", code="duplicate_pnr", details={"pnr": booking.pnr}) from exc
        except PyMongoError as exc:
            logger.exception("booking save failed for %s", booking.id)
            raise StoreError() from exc

        if res.matched_count == 0:
            raise ConflictError(
                "Booking was modified by another request; reload and retry",
                details={"booking_id": booking.id, "revision": expected},
            )

        booking.revision = expected + 1
        return booking
