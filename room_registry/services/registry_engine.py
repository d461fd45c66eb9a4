"""
Moteur du registre / Registry engine.

Cycle de vie d'une tablette : unregistered -> pending (code a 6 chiffres) -> assigned (secret durable).
Tablet lifecycle: unregistered -> pending (6-digit code) -> assigned (durable secret).

Tout l'etat vit dans le store ; chaque operation ouvre sa propre session et une seule
transaction. Aucun etat mutable partage en memoire.
All state lives in the store; each operation opens its own session and a single
transaction. No shared mutable in-process state.
"""

import asyncio
import json
import logging
import random
from contextlib import asynccontextmanager
from datetime import datetime, timedelta, timezone
from typing import Awaitable, Callable, TypeVar

from sqlalchemy import delete, exists, select, update
from sqlalchemy.exc import IntegrityError, InterfaceError, OperationalError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker
from sqlalchemy.orm import joinedload

from room_registry.config import settings
from room_registry.models.audit import AuditLog
from room_registry.models.device import Device
from room_registry.models.device_assignment import DeviceAssignment
from room_registry.models.device_list import DeviceList
from room_registry.models.registration_request import RegistrationRequest
from room_registry.models.room import Room
from room_registry.schemas.device_list import DisplayDevice, ValidationRead
from room_registry.schemas.registry import (
    AssignmentRead,
    AssignRead,
    DeviceInfo,
    PendingRequestRead,
    RegisterRead,
    RoomRead,
    StatusRead,
)
from room_registry.services.errors import (
    CodeGenerationExhausted,
    InvalidCode,
    NotAssigned,
    NotFound,
    StoreTimeout,
    StoreUnavailable,
)
from room_registry.utils.tokens import generate_pairing_code, generate_secret_key, system_random

logger = logging.getLogger("room_registry.engine")

T = TypeVar("T")


def utcnow() -> datetime:
    """Horodatage UTC naif / Naive UTC timestamp, as stored."""
    return datetime.now(timezone.utc).replace(tzinfo=None)


class RegistryEngine:
    """Machine a etats du registre / Registry state machine."""

    def __init__(
        self,
        session_factory: async_sessionmaker[AsyncSession],
        rng: random.Random | None = None,
        clock: Callable[[], datetime] | None = None,
        code_ttl_minutes: int | None = None,
        max_code_attempts: int | None = None,
        store_timeout: float | None = None,
    ):
        self._session_factory = session_factory
        self._rng = rng or system_random
        self._clock = clock or utcnow
        self._code_ttl = timedelta(minutes=code_ttl_minutes or settings.REGISTRATION_CODE_TTL_MINUTES)
        self._max_code_attempts = max_code_attempts or settings.CODE_GENERATION_MAX_ATTEMPTS
        self._store_timeout = store_timeout or settings.STORE_TIMEOUT_SECONDS

    # ─── Infrastructure ───

    @asynccontextmanager
    async def _transaction(self):
        """Session + transaction unique / Session with a single transaction."""
        async with self._session_factory() as session:
            async with session.begin():
                yield session

    async def _run(self, operation: str, work: Callable[[], Awaitable[T]]) -> T:
        """Borner et traduire les fautes du store / Bound store calls and translate store faults."""
        try:
            return await asyncio.wait_for(work(), timeout=self._store_timeout)
        except asyncio.TimeoutError as exc:
            logger.error("%s: store timed out after %.1fs", operation, self._store_timeout)
            raise StoreTimeout() from exc
        except (OperationalError, InterfaceError) as exc:
            logger.error("%s: store unavailable: %s", operation, exc.orig)
            raise StoreUnavailable() from exc
        except IntegrityError as exc:
            # Ecriture concurrente non resolue localement / Concurrent write not resolved locally
            logger.warning("%s: concurrent modification: %s", operation, exc.orig)
            raise StoreUnavailable("Concurrent modification, retry later.") from exc

    def _audit(self, session: AsyncSession, entity_type: str, entity_id, action: str, changes: dict, actor: str | None):
        session.add(AuditLog(
            entity_type=entity_type, entity_id=str(entity_id), action=action,
            changes=json.dumps(changes), user=actor,
            timestamp=self._clock().isoformat(timespec="seconds"),
        ))

    # ─── Requetes nommees / Named store queries ───

    async def _active_assignment(self, session: AsyncSession, device_id: str) -> DeviceAssignment | None:
        """Affectation de la tablette / The device's assignment (at most one)."""
        result = await session.execute(
            select(DeviceAssignment)
            .options(joinedload(DeviceAssignment.room), joinedload(DeviceAssignment.device))
            .where(DeviceAssignment.device_id == device_id)
        )
        return result.scalars().first()

    async def _active_request_for_device(
        self, session: AsyncSession, device_id: str, now: datetime,
    ) -> RegistrationRequest | None:
        """Demande active : non terminee et non expiree / Active request: not completed, not expired."""
        result = await session.execute(
            select(RegistrationRequest)
            .where(
                RegistrationRequest.device_id == device_id,
                RegistrationRequest.is_completed.is_(False),
                RegistrationRequest.expires_at > now,
            )
            .order_by(RegistrationRequest.expires_at.desc())
        )
        return result.scalars().first()

    async def _active_request_by_code(
        self, session: AsyncSession, code: str, now: datetime,
    ) -> RegistrationRequest | None:
        result = await session.execute(
            select(RegistrationRequest)
            .where(
                RegistrationRequest.code == code,
                RegistrationRequest.is_completed.is_(False),
                RegistrationRequest.expires_at > now,
            )
            .with_for_update()
        )
        return result.scalars().first()

    async def _code_in_use(self, session: AsyncSession, code: str, now: datetime) -> bool:
        """Code detenu par une demande active / Code held by an active request."""
        result = await session.execute(
            select(exists().where(
                RegistrationRequest.code == code,
                RegistrationRequest.is_completed.is_(False),
                RegistrationRequest.expires_at > now,
            ))
        )
        return bool(result.scalar())

    async def _delete_open_requests(self, session: AsyncSession, device_id: str) -> int:
        """Suppression conditionnelle des demandes ouvertes / Conditional delete of open requests."""
        result = await session.execute(
            delete(RegistrationRequest)
            .where(
                RegistrationRequest.device_id == device_id,
                RegistrationRequest.is_completed.is_(False),
            )
            .execution_options(synchronize_session=False)
        )
        return result.rowcount

    async def _release_stale_code(self, session: AsyncSession, code: str, now: datetime) -> int:
        """Liberer un code retenu par une demande expiree / Free a code still held by an expired request."""
        result = await session.execute(
            delete(RegistrationRequest)
            .where(
                RegistrationRequest.code == code,
                RegistrationRequest.is_completed.is_(False),
                RegistrationRequest.expires_at <= now,
            )
            .execution_options(synchronize_session=False)
        )
        return result.rowcount

    async def _delete_assignments(self, session: AsyncSession, device_id: str) -> int:
        result = await session.execute(
            delete(DeviceAssignment)
            .where(DeviceAssignment.device_id == device_id)
            .execution_options(synchronize_session=False)
        )
        return result.rowcount

    async def _find_room(self, session: AsyncSession, name: str) -> Room | None:
        result = await session.execute(select(Room).where(Room.name == name))
        return result.scalar_one_or_none()

    async def _get_or_create_room(self, session: AsyncSession, name: str) -> tuple[Room, bool]:
        """Trouver ou creer une salle par nom exact / Find or create a room by exact name.

        Le nom est unique en base : une creation concurrente fait echouer le savepoint
        et on relit la ligne gagnante.
        Name is unique in the store: a concurrent creation fails the savepoint and
        the winning row is read back.
        """
        room = await self._find_room(session, name)
        if room is not None:
            return room, False
        try:
            async with session.begin_nested():
                room = Room(name=name)
                session.add(room)
        except IntegrityError:
            logger.info("Room %r created concurrently, reusing it", name)
            room = await self._find_room(session, name)
            if room is None:
                raise
            return room, False
        return room, True

    @staticmethod
    def _assignment_view(assignment: DeviceAssignment) -> AssignmentRead:
        return AssignmentRead(
            id=assignment.id,
            device_id=assignment.device_id,
            room_id=assignment.room_id,
            room_name=assignment.room.name,
            secret_key=assignment.secret_key,
            assigned_at=assignment.assigned_at,
            device=DeviceInfo(manufacturer=assignment.device.manufacturer, model=assignment.device.model),
        )

    # ─── Tablette / Tablet ───

    async def get_status(self, device_id: str) -> StatusRead:
        """Etat d'une tablette / Device status.

        Ordre : affectation > demande active > non enregistree. Une affectation
        l'emporte toujours sur une demande residuelle.
        Order: assignment > active request > unregistered. An assignment always
        wins over a stray request.
        """

        async def work() -> StatusRead:
            now = self._clock()
            async with self._transaction() as session:
                assignment = await self._active_assignment(session, device_id)
                if assignment is not None:
                    return StatusRead(
                        status="assigned",
                        room_id=assignment.room_id,
                        room_name=assignment.room.name,
                        secret_key=assignment.secret_key,
                    )
                request = await self._active_request_for_device(session, device_id, now)
                if request is not None:
                    return StatusRead(status="pending", code=request.code, expires_at=request.expires_at)
            return StatusRead(status="unregistered")

        return await self._run("get_status", work)

    async def register(self, device_id: str, manufacturer: str | None = None, model: str | None = None) -> RegisterRead:
        """Emettre un nouveau code d'appairage / Issue a fresh pairing code.

        - Cree la tablette si inconnue ; fabricant/modele ne sont jamais ecrases.
        - Supprime les demandes ouvertes de la tablette : l'ancien code n'est plus assignable.
        - Tire un code libre parmi les demandes actives, reessaie sur collision.
        - Creates the device if unseen; manufacturer/model are never overwritten.
        - Deletes the device's open requests: the previous code is no longer assignable.
        - Draws a code free among active requests, retries on collision.
        """

        async def work() -> RegisterRead:
            now = self._clock()
            async with self._transaction() as session:
                if await session.get(Device, device_id) is None:
                    try:
                        async with session.begin_nested():
                            session.add(Device(id=device_id, manufacturer=manufacturer, model=model, created_at=now))
                    except IntegrityError:
                        logger.info("Device %s first seen concurrently", device_id)
                    else:
                        logger.info("New device %s (%s %s)", device_id, manufacturer or "", model or "")

                for attempt in range(1, self._max_code_attempts + 1):
                    code = generate_pairing_code(self._rng)
                    if await self._code_in_use(session, code, now):
                        logger.debug("Pairing code collision (attempt %d)", attempt)
                        continue
                    request = RegistrationRequest(
                        device_id=device_id,
                        code=code,
                        expires_at=now + self._code_ttl,
                        is_completed=False,
                        created_at=now,
                    )
                    try:
                        async with session.begin_nested():
                            superseded = await self._delete_open_requests(session, device_id)
                            await self._release_stale_code(session, code, now)
                            session.add(request)
                    except IntegrityError:
                        logger.warning("Pairing code insert conflict for %s (attempt %d)", device_id, attempt)
                        continue
                    logger.info(
                        "Device %s pending with code %s until %s (%d superseded)",
                        device_id, code, request.expires_at.isoformat(timespec="seconds"), superseded,
                    )
                    return RegisterRead(code=code, expires_at=request.expires_at)

            logger.error("No free pairing code for %s after %d attempts", device_id, self._max_code_attempts)
            raise CodeGenerationExhausted()

        return await self._run("register", work)

    # ─── Administration ───

    async def assign(self, code: str, room_name: str, actor: str | None = None) -> AssignRead:
        """Lier un code a une salle / Bind a pairing code to a room.

        Recherche de la demande, salle, nouvelle affectation, demande terminee et
        anciennes affectations supprimees : une seule transaction.
        Request lookup, room upsert, new assignment, request completion and removal
        of older assignments: a single transaction.
        """

        async def work() -> AssignRead:
            now = self._clock()
            async with self._transaction() as session:
                request = await self._active_request_by_code(session, code, now)
                if request is None:
                    raise InvalidCode()
                device_id = request.device_id

                room, _ = await self._get_or_create_room(session, room_name)

                # Terminer la demande une seule fois / Complete the request exactly once
                completed = await session.execute(
                    update(RegistrationRequest)
                    .where(RegistrationRequest.id == request.id, RegistrationRequest.is_completed.is_(False))
                    .values(is_completed=True)
                    .execution_options(synchronize_session=False)
                )
                if completed.rowcount != 1:
                    raise InvalidCode()

                replaced = await self._delete_assignments(session, device_id)
                assignment = DeviceAssignment(
                    device_id=device_id,
                    room_id=room.id,
                    secret_key=generate_secret_key(self._rng),
                    assigned_at=now,
                )
                session.add(assignment)
                await session.flush()

                self._audit(session, "device", device_id, "ASSIGN",
                            {"room": room.name, "code": code, "replaced": replaced}, actor)
                room_id = room.id

            logger.info("Device %s assigned to room %r", device_id, room_name)
            return AssignRead(device_id=device_id, room_id=room_id)

        return await self._run("assign", work)

    async def update_assignment(self, device_id: str, room_name: str, actor: str | None = None) -> AssignmentRead:
        """Changer de salle sans changer le secret / Change room, keep the secret."""

        async def work() -> AssignmentRead:
            async with self._transaction() as session:
                assignment = await self._active_assignment(session, device_id)
                if assignment is None:
                    raise NotAssigned()
                previous = assignment.room.name
                room, _ = await self._get_or_create_room(session, room_name)
                assignment.room = room
                await session.flush()
                self._audit(session, "device", device_id, "REASSIGN",
                            {"from": previous, "to": room.name}, actor)
                view = self._assignment_view(assignment)

            logger.info("Device %s moved from room %r to %r", device_id, previous, room_name)
            return view

        return await self._run("update_assignment", work)

    async def unpair(self, device_id: str, actor: str | None = None) -> int:
        """Supprimer l'affectation (idempotent) / Remove the assignment (idempotent).

        Retourne le nombre de lignes supprimees / Returns the number of rows removed.
        """

        async def work() -> int:
            async with self._transaction() as session:
                removed = await self._delete_assignments(session, device_id)
                if removed:
                    self._audit(session, "device", device_id, "UNPAIR", {"removed": removed}, actor)
            if removed:
                logger.info("Device %s unpaired", device_id)
            return removed

        return await self._run("unpair", work)

    async def list_pending_requests(self) -> list[PendingRequestRead]:
        async def work() -> list[PendingRequestRead]:
            now = self._clock()
            async with self._transaction() as session:
                result = await session.execute(
                    select(RegistrationRequest)
                    .options(joinedload(RegistrationRequest.device))
                    .where(
                        RegistrationRequest.is_completed.is_(False),
                        RegistrationRequest.expires_at > now,
                    )
                    .order_by(RegistrationRequest.expires_at)
                )
                return [PendingRequestRead.model_validate(r) for r in result.scalars().all()]

        return await self._run("list_pending_requests", work)

    async def list_assignments(self) -> list[AssignmentRead]:
        async def work() -> list[AssignmentRead]:
            async with self._transaction() as session:
                result = await session.execute(
                    select(DeviceAssignment)
                    .join(Room, Room.id == DeviceAssignment.room_id)
                    .options(joinedload(DeviceAssignment.room), joinedload(DeviceAssignment.device))
                    .order_by(Room.name, DeviceAssignment.assigned_at)
                )
                return [self._assignment_view(a) for a in result.scalars().all()]

        return await self._run("list_assignments", work)

    async def list_rooms(self) -> list[RoomRead]:
        async def work() -> list[RoomRead]:
            async with self._transaction() as session:
                result = await session.execute(select(Room).order_by(Room.name))
                return [RoomRead.model_validate(r) for r in result.scalars().all()]

        return await self._run("list_rooms", work)

    async def create_room(self, name: str, actor: str | None = None) -> RoomRead:
        """Creer une salle ; renvoie l'existante si le nom est pris / Create a room, or return the existing one."""

        async def work() -> RoomRead:
            async with self._transaction() as session:
                room, created = await self._get_or_create_room(session, name)
                if created:
                    self._audit(session, "room", room.id, "CREATE", {"name": name}, actor)
                view = RoomRead.model_validate(room)
            if created:
                logger.info("Room %r created", name)
            return view

        return await self._run("create_room", work)

    # ─── Ecran tablette / Display surface ───

    async def validate(self, room_name: str, secret: str) -> ValidationRead:
        """Verifier un couple salle + secret / Check a room + secret pair.

        La table historique est consultee en premier, puis les affectations.
        The legacy table is consulted first, then structured assignments.
        """

        async def work() -> ValidationRead:
            async with self._transaction() as session:
                legacy = (await session.execute(
                    select(DeviceList)
                    .where(DeviceList.device_classroom == room_name, DeviceList.device_url == secret)
                    .limit(1)
                )).scalar_one_or_none()
                if legacy is not None:
                    return ValidationRead(
                        message="Device found (legacy).",
                        legacy=True,
                        device=DisplayDevice(
                            device_name=legacy.device_name or "",
                            device_classroom=legacy.device_classroom or "",
                            device_url=legacy.device_url or "",
                        ),
                    )

                assignment = (await session.execute(
                    select(DeviceAssignment)
                    .join(Room, Room.id == DeviceAssignment.room_id)
                    .options(joinedload(DeviceAssignment.room), joinedload(DeviceAssignment.device))
                    .where(Room.name == room_name, DeviceAssignment.secret_key == secret)
                    .limit(1)
                )).scalars().first()
                if assignment is not None:
                    return ValidationRead(
                        message="Device found.",
                        device=DisplayDevice(
                            device_name=assignment.device.display_name,
                            device_classroom=assignment.room.name,
                            device_url=assignment.secret_key,
                        ),
                    )
            raise NotFound("No device matches the given room and secret.")

        return await self._run("validate", work)

    # ─── Maintenance ───

    async def purge_expired_requests(self) -> int:
        """Purger les demandes expirees non terminees / Purge expired, uncompleted requests."""

        async def work() -> int:
            now = self._clock()
            async with self._transaction() as session:
                result = await session.execute(
                    delete(RegistrationRequest)
                    .where(
                        RegistrationRequest.is_completed.is_(False),
                        RegistrationRequest.expires_at <= now,
                    )
                    .execution_options(synchronize_session=False)
                )
            if result.rowcount:
                logger.info("%d expired registration request(s) purged", result.rowcount)
            return result.rowcount

        return await self._run("purge_expired_requests", work)
