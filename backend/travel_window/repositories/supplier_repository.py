from __future__ import annotations

import logging
from typing import Any, Dict, List, Optional

from bson import ObjectId
from motor.motor_asyncio import AsyncIOMotorDatabase
from pymongo.errors import DuplicateKeyError, PyMongoError

from travel_window import config
from travel_window.errors import StoreError, ValidationError
from travel_window.repositories.base_repository import get_collection
from travel_window.schemas.suppliers import Supplier, SupplierCreate
from travel_window.utils import now_utc, to_object_id

logger = logging.getLogger(__name__)


class SupplierRepository:
    def __init__(self, db: AsyncIOMotorDatabase) -> None:
        self._col = get_collection(db, "suppliers")

    @staticmethod
    def _to_model(doc: Dict[str, Any]) -> Supplier:
        return Supplier(
            id=str(doc["_id"]),
            name=doc.get("name") or "",
            is_active=bool(doc.get("isActive", True)),
            is_outsourced_channel=doc.get("isOutsourcedChannel"),
        )

    async def find_by_id(self, supplier_id: str) -> Optional[Supplier]:
        oid = to_object_id(supplier_id)
        if oid is None:
            return None
        try:
            doc = await self._col.find_one({"_id": oid})
        except PyMongoError as exc:
            logger.exception("find_by_id failed for supplier %s", supplier_id)
            raise StoreError("Supplier store unavailable") from exc
        return self._to_model(doc) if doc else None

    async def list_active(self) -> List[Supplier]:
        try:
            cursor = self._col.find({"isActive": True}).sort("name", 1)
            docs = await cursor.to_list(length=1000)
        except PyMongoError as exc:
            logger.exception("list_active failed for suppliers")
            raise StoreError("Supplier store unavailable") from exc
        return [self._to_model(d) for d in docs]

    async def create(self, payload: SupplierCreate) -> Supplier:
        name = payload.name.strip()
        name_lower = name.lower()

        outsourced = payload.is_outsourced_channel
        if outsourced is None:
            outsourced = name == config.OUTSOURCED_SUPPLIER_NAME

        now = now_utc()
        doc = {
            "_id": ObjectId(),
            "name": name,
            "nameLower": name_lower,
            "isActive": True,
            "isOutsourcedChannel": outsourced,
            "createdAt": now,
            "updatedAt": now,
        }
        try:
            if await self._col.find_one({"nameLower": name_lower}):
                raise ValidationError("Supplier already exists", code="duplicate_supplier", details={"name": name})
            await self._col.insert_one(doc)
        except DuplicateKeyError as exc:
            raise ValidationError("Supplier already exists", code="duplicate_supplier", details={"name": name}) from exc
        except PyMongoError as exc:
            logger.exception("create failed for supplier %s", name)
            raise StoreError("Supplier store unavailable") from exc
        return self._to_model(doc)
