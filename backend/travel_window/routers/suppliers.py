from __future__ import annotations

from typing import Any, Dict, List

from fastapi import APIRouter, Depends

from travel_window import config
from travel_window.auth import get_current_actor
from travel_window.db import get_db
from travel_window.errors import AuthorizationError
from travel_window.repositories.supplier_repository import SupplierRepository
from travel_window.schemas.actors import Actor, Role
from travel_window.schemas.suppliers import SupplierCreate

router = APIRouter(prefix=f"{config.API_PREFIX}/suppliers", tags=["suppliers"])


def _supplier_out(supplier) -> Dict[str, Any]:
    data = supplier.model_dump(by_alias=True)
    data["isOutsourcedChannel"] = supplier.is_outsourced
    return data


@router.get("")
async def list_suppliers(
    actor: Actor = Depends(get_current_actor),
    db=Depends(get_db),
) -> List[Dict[str, Any]]:
    suppliers = await SupplierRepository(db).list_active()
    return [_supplier_out(s) for s in suppliers]


@router.post("", status_code=201)
async def create_supplier(
    payload: SupplierCreate,
    actor: Actor = Depends(get_current_actor),
    db=Depends(get_db),
) -> Dict[str, Any]:
    if actor.role != Role.ADMIN.value:
        raise AuthorizationError("Only admins can create suppliers", details={"role": actor.role})
    supplier = await SupplierRepository(db).create(payload)
    return _supplier_out(supplier)
