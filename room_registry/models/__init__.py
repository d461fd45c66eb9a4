"""
Modèles SQLAlchemy / SQLAlchemy models.
Importer tous les modèles ici pour qu'ils soient enregistrés sur Base.metadata.
Import all models here so they are registered on Base.metadata.
"""

from room_registry.models.device import Device
from room_registry.models.room import Room
from room_registry.models.registration_request import RegistrationRequest
from room_registry.models.device_assignment import DeviceAssignment
from room_registry.models.device_list import DeviceList
from room_registry.models.audit import AuditLog

__all__ = [
    "Device",
    "Room",
    "RegistrationRequest",
    "DeviceAssignment",
    "DeviceList",
    "AuditLog",
]
