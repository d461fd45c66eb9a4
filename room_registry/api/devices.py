"""Routes DeviceList historique + validation ecran / Legacy DeviceList routes + display validation."""

import json
from datetime import datetime, timezone

from fastapi import APIRouter, Depends, HTTPException, Query
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from room_registry.api.deps import get_engine, require_admin
from room_registry.database import get_db
from room_registry.models.audit import AuditLog
from room_registry.models.device_list import DeviceList
from room_registry.schemas.device_list import DeviceListCreate, DeviceListRead, DeviceListUpdate, ValidationRead
from room_registry.services.registry_engine import RegistryEngine
from room_registry.utils.tokens import legacy_device_url

router = APIRouter()


def _audit(db: AsyncSession, entity_id: int, action: str, changes: dict, actor: str) -> None:
    db.add(AuditLog(
        entity_type="device_list", entity_id=str(entity_id), action=action,
        changes=json.dumps(changes), user=actor,
        timestamp=datetime.now(timezone.utc).isoformat(timespec="seconds"),
    ))


@router.get("/validate", response_model=ValidationRead)
async def validate_room_and_secret(
    room: str = Query(..., min_length=1),
    secret_url: str = Query(..., alias="secretUrl", min_length=1),
    engine: RegistryEngine = Depends(get_engine),
):
    """Verifier salle + secret de la tablette / Check the tablet's room + secret.

    Table historique d'abord, puis affectations / Legacy table first, then assignments.
    """
    return await engine.validate(room, secret_url)


@router.get("/", response_model=list[DeviceListRead])
async def list_devices(
    db: AsyncSession = Depends(get_db),
    actor: str = Depends(require_admin),
):
    result = await db.execute(select(DeviceList).order_by(DeviceList.id))
    return result.scalars().all()


@router.get("/{device_id}", response_model=DeviceListRead)
async def get_device(
    device_id: int,
    db: AsyncSession = Depends(get_db),
    actor: str = Depends(require_admin),
):
    device = await db.get(DeviceList, device_id)
    if not device:
        raise HTTPException(status_code=404, detail="Device not found")
    return device


@router.post("/", response_model=DeviceListRead, status_code=201)
async def create_device(
    data: DeviceListCreate,
    db: AsyncSession = Depends(get_db),
    actor: str = Depends(require_admin),
):
    """Creer une entree historique (URL = base64 nom_SALLE) / Create a legacy entry (URL = base64 name_ROOM)."""
    classroom = data.device_classroom.upper()
    device = DeviceList(
        device_name=data.device_name,
        device_classroom=classroom,
        device_url=legacy_device_url(data.device_name, classroom),
    )
    db.add(device)
    await db.flush()
    _audit(db, device.id, "CREATE", {"name": device.device_name, "classroom": classroom}, actor)
    return device


@router.put("/{device_id}", status_code=204)
async def update_device(
    device_id: int,
    data: DeviceListUpdate,
    db: AsyncSession = Depends(get_db),
    actor: str = Depends(require_admin),
):
    if device_id != data.id:
        raise HTTPException(status_code=400, detail="Path id and body id differ")
    device = await db.get(DeviceList, device_id)
    if not device:
        raise HTTPException(status_code=404, detail="Device not found")
    changes = data.model_dump(exclude={"id"})
    for key, value in changes.items():
        setattr(device, key, value)
    _audit(db, device_id, "UPDATE", changes, actor)
    await db.flush()


@router.delete("/{device_id}", status_code=204)
async def delete_device(
    device_id: int,
    db: AsyncSession = Depends(get_db),
    actor: str = Depends(require_admin),
):
    device = await db.get(DeviceList, device_id)
    if not device:
        raise HTTPException(status_code=404, detail="Device not found")
    _audit(db, device_id, "DELETE", {"name": device.device_name, "classroom": device.device_classroom}, actor)
    await db.delete(device)
    await db.flush()
