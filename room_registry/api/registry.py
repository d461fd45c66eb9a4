"""
Routes du registre / Registry routes.
Tablette : status + register (polling). Admin : assign, requests, devices, assignment, unpair, rooms.
"""

from fastapi import APIRouter, Depends, Query, Request, Response

from room_registry.api.deps import get_engine, require_admin
from room_registry.config import settings
from room_registry.rate_limit import limiter
from room_registry.schemas.registry import (
    AssignCreate,
    AssignmentRead,
    AssignmentUpdate,
    AssignRead,
    PendingRequestRead,
    RegisterCreate,
    RegisterRead,
    RoomCreate,
    RoomRead,
    StatusRead,
)
from room_registry.services.registry_engine import RegistryEngine

router = APIRouter()


# ─── Tablette / Tablet ───

@router.get("/status", response_model=StatusRead, response_model_exclude_none=True)
async def get_status(
    device_id: str = Query(..., alias="deviceId", min_length=1, max_length=64),
    engine: RegistryEngine = Depends(get_engine),
):
    """Etat de la tablette (polling) / Device status (polled)."""
    return await engine.get_status(device_id)


@router.post("/register", response_model=RegisterRead)
@limiter.limit(settings.RATE_LIMIT_REGISTER)
async def register(
    request: Request,
    data: RegisterCreate,
    engine: RegistryEngine = Depends(get_engine),
):
    """Demarrer ou relancer l'appairage / Start or restart pairing.

    Public endpoint — le client ne l'appelle qu'en sortant de l'etat unregistered.
    """
    return await engine.register(data.device_id, data.manufacturer, data.model)


# ─── Admin ───

@router.post("/admin/assign", response_model=AssignRead)
@limiter.limit(settings.RATE_LIMIT_ASSIGN)
async def assign_room(
    request: Request,
    data: AssignCreate,
    engine: RegistryEngine = Depends(get_engine),
    actor: str = Depends(require_admin),
):
    """Lier un code a une salle / Bind a code to a room."""
    return await engine.assign(data.code.strip(), data.room_name, actor=actor)


@router.get("/admin/requests", response_model=list[PendingRequestRead])
async def list_pending_requests(
    engine: RegistryEngine = Depends(get_engine),
    actor: str = Depends(require_admin),
):
    """Demandes en attente / Pending requests."""
    return await engine.list_pending_requests()


@router.get("/admin/devices", response_model=list[AssignmentRead])
async def list_paired_devices(
    engine: RegistryEngine = Depends(get_engine),
    actor: str = Depends(require_admin),
):
    """Tablettes appairees / Paired devices."""
    return await engine.list_assignments()


@router.put("/admin/assignment", response_model=AssignmentRead)
async def update_assignment(
    data: AssignmentUpdate,
    engine: RegistryEngine = Depends(get_engine),
    actor: str = Depends(require_admin),
):
    """Changer la salle d'une tablette / Move a device to another room."""
    return await engine.update_assignment(data.device_id, data.room_name, actor=actor)


@router.delete("/admin/devices/{device_id}", status_code=204)
async def unpair_device(
    device_id: str,
    engine: RegistryEngine = Depends(get_engine),
    actor: str = Depends(require_admin),
):
    """Desappairer (idempotent) / Unpair (idempotent)."""
    await engine.unpair(device_id, actor=actor)
    return Response(status_code=204)


# ─── Salles / Rooms ───

@router.get("/rooms", response_model=list[RoomRead])
async def list_rooms(engine: RegistryEngine = Depends(get_engine)):
    return await engine.list_rooms()


@router.post("/rooms", response_model=RoomRead)
async def create_room(
    data: RoomCreate,
    engine: RegistryEngine = Depends(get_engine),
    actor: str = Depends(require_admin),
):
    """Creer une salle (ou renvoyer l'existante) / Create a room (or return the existing one)."""
    return await engine.create_room(data.name, actor=actor)
