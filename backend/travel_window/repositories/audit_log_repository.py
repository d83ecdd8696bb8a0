from __future__ import annotations

import logging
from typing import Any, Dict, List, Optional
from uuid import uuid4

from motor.motor_asyncio import AsyncIOMotorDatabase

from travel_window.repositories.base_repository import get_collection
from travel_window.utils import now_utc

logger = logging.getLogger(__name__)


class AuditLogRepository:
  """Repository for audit_logs collection."""

  def __init__(self, db: AsyncIOMotorDatabase) -> None:
    self._col = get_collection(db, "audit_logs")

  async def append(self, doc: Dict[str, Any]) -> str:
    doc.setdefault("_id", "audit_" + uuid4().hex[:12])
    doc.setdefault("created_at", now_utc())
    await self._col.insert_one(doc)
    return doc["_id"]

  async def list_for_booking(
    self,
    booking_id: str,
    action: Optional[str] = None,
    limit: int = 50,
  ) -> List[Dict[str, Any]]:
    flt: Dict[str, Any] = {"target.type": "booking", "target.id": booking_id}
    if action:
      flt["action"] = action

    cursor = self._col.find(flt).sort([("created_at", -1), ("revision", -1)]).limit(limit)
    return await cursor.to_list(length=limit)
