"""Schemas DeviceList historique / Legacy DeviceList schemas.

Noms de champs conserves tels que le client historique les attend /
Field names kept as the legacy client expects them (deviceName, deviceClassroom, deviceURL).
"""

from pydantic import BaseModel, ConfigDict, Field


class DeviceListCreate(BaseModel):
    model_config = ConfigDict(populate_by_name=True)
    device_name: str = Field(alias="deviceName", min_length=1, max_length=100)
    device_classroom: str = Field(alias="deviceClassroom", min_length=1, max_length=100)

class DeviceListRead(BaseModel):
    model_config = ConfigDict(populate_by_name=True, from_attributes=True)
    id: int
    device_name: str | None = Field(default=None, alias="deviceName")
    device_classroom: str | None = Field(default=None, alias="deviceClassroom")
    device_url: str | None = Field(default=None, alias="deviceURL")

class DeviceListUpdate(DeviceListRead):
    pass


# ─── Validate ───

class DisplayDevice(BaseModel):
    """Champs d'affichage denormalises / Denormalized display fields."""
    model_config = ConfigDict(populate_by_name=True)
    device_name: str = Field(alias="deviceName")
    device_classroom: str = Field(alias="deviceClassroom")
    device_url: str = Field(alias="deviceURL")

class ValidationRead(BaseModel):
    message: str
    legacy: bool = False
    device: DisplayDevice
