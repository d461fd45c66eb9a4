"""Schemas registre / Registry schemas — status, registration, assignment, rooms.

Le client tablette parle camelCase (deviceId, expiresAt...) / The tablet client speaks camelCase.
"""

from datetime import datetime
from typing import Literal

from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel


class CamelModel(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True, from_attributes=True)


# ─── Status ───

class StatusRead(CamelModel):
    """Etat vu par la tablette qui polle / State seen by the polling tablet."""
    status: Literal["assigned", "pending", "unregistered"]
    code: str | None = None
    expires_at: datetime | None = None
    room_id: int | None = None
    room_name: str | None = None
    secret_key: str | None = None


# ─── Registration ───

class RegisterCreate(CamelModel):
    device_id: str = Field(min_length=1, max_length=64)
    manufacturer: str | None = Field(default=None, max_length=100)
    model: str | None = Field(default=None, max_length=100)

class RegisterRead(CamelModel):
    code: str
    expires_at: datetime

class DeviceInfo(CamelModel):
    manufacturer: str | None = None
    model: str | None = None

class PendingRequestRead(CamelModel):
    """Demande en attente pour l'ecran admin / Pending request for the admin screen."""
    id: int
    device_id: str
    code: str
    expires_at: datetime
    device: DeviceInfo


# ─── Assignment ───

class AssignCreate(CamelModel):
    code: str = Field(min_length=1, max_length=16)
    room_name: str = Field(min_length=1, max_length=100)

class AssignRead(CamelModel):
    status: Literal["assigned"] = "assigned"
    device_id: str
    room_id: int

class AssignmentUpdate(CamelModel):
    device_id: str = Field(min_length=1, max_length=64)
    room_name: str = Field(min_length=1, max_length=100)

class AssignmentRead(CamelModel):
    id: int
    device_id: str
    room_id: int
    room_name: str
    secret_key: str
    assigned_at: datetime
    device: DeviceInfo


# ─── Rooms ───

class RoomCreate(CamelModel):
    name: str = Field(min_length=1, max_length=100)

class RoomRead(CamelModel):
    id: int
    name: str
