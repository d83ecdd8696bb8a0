from __future__ import annotations

from typing import Optional

from pydantic import Field

from travel_window import config
from travel_window.schemas.bookings import CamelModel


class Supplier(CamelModel):
    id: str
    name: str
    is_active: bool = True
    is_outsourced_channel: Optional[bool] = None

    @property
    def is_outsourced(self) -> bool:
        """Outsourced (unticketed) channel flag.

        Supplier documents written before the flag existed fall back to the
        legacy name match.
        """
        if self.is_outsourced_channel is not None:
            return self.is_outsourced_channel
        return self.name == config.OUTSOURCED_SUPPLIER_NAME


class SupplierCreate(CamelModel):
    name: str = Field(min_length=1)
    is_outsourced_channel: Optional[bool] = None
