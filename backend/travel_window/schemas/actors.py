from __future__ import annotations

from enum import Enum

from pydantic import BaseModel, ConfigDict, Field


class Role(str, Enum):
    AGENT1 = "AGENT1"
    AGENT2 = "AGENT2"
    ACCOUNT = "ACCOUNT"
    ADMIN = "ADMIN"


class Actor(BaseModel):
    """Authenticated principal as supplied by the auth collaborator."""

    model_config = ConfigDict(use_enum_values=True, frozen=True)

    id: str = Field(min_length=1)
    name: str = ""
    role: Role
