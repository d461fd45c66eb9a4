"""Tests du moteur de registre / Registry engine tests."""

import asyncio
import re

import pytest
from sqlalchemy import func, select
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from room_registry.database import build_engine
from room_registry.models.audit import AuditLog
from room_registry.models.device import Device
from room_registry.models.device_list import DeviceList
from room_registry.models.registration_request import RegistrationRequest
from room_registry.models.room import Room
from room_registry.services.errors import (
    CodeGenerationExhausted,
    InvalidCode,
    NotAssigned,
    NotFound,
    StoreTimeout,
    StoreUnavailable,
)
from room_registry.services.registry_engine import RegistryEngine
from tests.conftest import ScriptedRandom


async def _count(session_factory, model, *where) -> int:
    async with session_factory() as session:
        result = await session.execute(select(func.count()).select_from(model).where(*where))
        return result.scalar_one()


# ─── Status / Register ───

@pytest.mark.asyncio
async def test_unknown_device_is_unregistered(registry):
    status = await registry.get_status("never-seen")
    assert status.status == "unregistered"
    assert status.code is None and status.secret_key is None


@pytest.mark.asyncio
async def test_register_returns_six_digit_code(registry, clock):
    result = await registry.register("d1", "Samsung", "Galaxy Tab A8")
    assert re.fullmatch(r"[1-9]\d{5}", result.code)
    assert (result.expires_at - clock.now).total_seconds() == 15 * 60

    status = await registry.get_status("d1")
    assert status.status == "pending"
    assert status.code == result.code
    assert status.expires_at == result.expires_at


@pytest.mark.asyncio
async def test_register_twice_supersedes_previous_code(registry, session_factory):
    first = await registry.register("d1", "Samsung", "Tab")
    second = await registry.register("d1", "Samsung", "Tab")

    assert first.code != second.code
    open_requests = await _count(
        session_factory, RegistrationRequest,
        RegistrationRequest.device_id == "d1", RegistrationRequest.is_completed.is_(False),
    )
    assert open_requests == 1

    with pytest.raises(InvalidCode):
        await registry.assign(first.code, "WI WI1-308")


@pytest.mark.asyncio
async def test_register_keeps_first_manufacturer_and_model(registry, session_factory):
    await registry.register("d1", "Samsung", "Tab A8")
    await registry.register("d1", "Lenovo", "M10")
    async with session_factory() as session:
        device = await session.get(Device, "d1")
    assert (device.manufacturer, device.model) == ("Samsung", "Tab A8")


@pytest.mark.asyncio
async def test_code_collision_with_active_request_is_redrawn(session_factory, clock):
    engine = RegistryEngine(session_factory, rng=ScriptedRandom([482913, 482913, 111111]), clock=clock)
    assert (await engine.register("d1")).code == "482913"
    assert (await engine.register("d2")).code == "111111"


@pytest.mark.asyncio
async def test_code_generation_exhausted(session_factory, clock):
    engine = RegistryEngine(
        session_factory, rng=ScriptedRandom([482913] * 4), clock=clock, max_code_attempts=3,
    )
    await engine.register("d1")
    with pytest.raises(CodeGenerationExhausted):
        await engine.register("d2")
    assert (await engine.get_status("d2")).status == "unregistered"


@pytest.mark.asyncio
async def test_insert_conflict_on_open_code_is_retried(session_factory, clock):
    """L'index unique rattrape une course check-then-insert / The unique index catches a check-then-insert race."""

    class BlindEngine(RegistryEngine):
        async def _code_in_use(self, session, code, now):
            return False

    engine = BlindEngine(session_factory, rng=ScriptedRandom([482913, 482913, 222222]), clock=clock)
    assert (await engine.register("d1")).code == "482913"
    assert (await engine.register("d2")).code == "222222"
    assert (await engine.get_status("d1")).code == "482913"


@pytest.mark.asyncio
async def test_expired_code_can_be_reused(session_factory, clock):
    engine = RegistryEngine(session_factory, rng=ScriptedRandom([482913, 482913]), clock=clock)
    await engine.register("d1")
    clock.advance(minutes=16)
    assert (await engine.register("d2")).code == "482913"
    assert (await engine.get_status("d1")).status == "unregistered"


@pytest.mark.asyncio
async def test_expired_request_reads_as_unregistered(registry, clock):
    await registry.register("d1")
    clock.advance(minutes=15)
    assert (await registry.get_status("d1")).status == "unregistered"


# ─── Assign ───

@pytest.mark.asyncio
async def test_assign_expired_code_is_invalid_even_if_row_exists(registry, clock, session_factory):
    pending = await registry.register("d1")
    clock.advance(minutes=15, seconds=1)
    with pytest.raises(InvalidCode):
        await registry.assign(pending.code, "WI WI1-308")
    assert await _count(session_factory, RegistrationRequest, RegistrationRequest.code == pending.code) == 1


@pytest.mark.asyncio
async def test_assign_unknown_and_consumed_codes_are_invalid(registry):
    with pytest.raises(InvalidCode):
        await registry.assign("000000", "WI WI1-308")
    pending = await registry.register("d1")
    await registry.assign(pending.code, "WI WI1-308")
    with pytest.raises(InvalidCode):
        await registry.assign(pending.code, "WI WI1-309")


@pytest.mark.asyncio
async def test_assign_wins_over_completed_request(registry, session_factory):
    pending = await registry.register("d1", "Samsung", "Tab")
    result = await registry.assign(pending.code, "WI WI1-308")
    assert result.status == "assigned"
    assert result.device_id == "d1"

    # La demande reste en base, marquee terminee / The request row stays, marked completed
    assert await _count(
        session_factory, RegistrationRequest,
        RegistrationRequest.device_id == "d1", RegistrationRequest.is_completed.is_(True),
    ) == 1

    status = await registry.get_status("d1")
    assert status.status == "assigned"
    assert status.room_name == "WI WI1-308"
    assert status.room_id == result.room_id
    assert re.fullmatch(r"[0-9a-f]{32}", status.secret_key)


@pytest.mark.asyncio
async def test_reassign_replaces_previous_assignment(registry):
    first = await registry.register("d1")
    await registry.assign(first.code, "WI WI1-308")
    old_secret = (await registry.get_status("d1")).secret_key

    second = await registry.register("d1")
    await registry.assign(second.code, "WI WI1-309")

    assignments = await registry.list_assignments()
    assert len(assignments) == 1
    assert assignments[0].room_name == "WI WI1-309"
    assert assignments[0].secret_key != old_secret


@pytest.mark.asyncio
async def test_two_devices_share_one_room_row(registry, session_factory):
    a = await registry.register("d1")
    b = await registry.register("d2")
    await registry.assign(a.code, "Room X")
    await registry.assign(b.code, "Room X")
    assert await _count(session_factory, Room, Room.name == "Room X") == 1


@pytest.mark.asyncio
async def test_room_names_are_case_sensitive(registry):
    await registry.create_room("WI WI1-308")
    await registry.create_room("wi wi1-308")
    assert [r.name for r in await registry.list_rooms()] == ["WI WI1-308", "wi wi1-308"]


@pytest.mark.asyncio
async def test_concurrent_room_creation_reuses_winner(registry, session_factory, clock):
    """Une creation concurrente est rattrapee par l'index unique / Concurrent creation is caught by the unique index."""

    class RacingEngine(RegistryEngine):
        misses = 1

        async def _find_room(self, session, name):
            if self.misses:
                self.misses -= 1
                return None
            return await super()._find_room(session, name)

    existing = await registry.create_room("Room X")
    racing = RacingEngine(session_factory, clock=clock)
    pending = await racing.register("d1")
    result = await racing.assign(pending.code, "Room X")

    assert result.room_id == existing.id
    assert await _count(session_factory, Room) == 1


@pytest.mark.asyncio
async def test_simultaneous_registers_of_distinct_devices_all_succeed(registry, session_factory):
    results = await asyncio.gather(*(registry.register(f"d{i}") for i in range(10)))

    assert len({r.code for r in results}) == 10
    assert await _count(session_factory, RegistrationRequest) == 10
    for i in range(10):
        assert (await registry.get_status(f"d{i}")).status == "pending"


@pytest.mark.asyncio
async def test_simultaneous_assigns_into_new_room_share_one_row(registry, session_factory):
    codes = [(await registry.register(f"d{i}")).code for i in range(6)]

    results = await asyncio.gather(*(registry.assign(code, "Room X") for code in codes))

    assert len({r.room_id for r in results}) == 1
    assert await _count(session_factory, Room) == 1
    assert len(await registry.list_assignments()) == 6


@pytest.mark.asyncio
async def test_failed_assign_leaves_no_partial_state(registry, session_factory, clock):
    class BrokenEngine(RegistryEngine):
        async def _delete_assignments(self, session, device_id):
            raise RuntimeError("boom")

    pending = await registry.register("d1")
    broken = BrokenEngine(session_factory, clock=clock)
    with pytest.raises(RuntimeError):
        await broken.assign(pending.code, "New Room")

    status = await registry.get_status("d1")
    assert status.status == "pending"
    assert status.code == pending.code
    assert await _count(session_factory, Room) == 0


# ─── Update / Unpair ───

@pytest.mark.asyncio
async def test_pairing_scenario(session_factory, clock):
    engine = RegistryEngine(session_factory, rng=ScriptedRandom([482913]), clock=clock)

    pending = await engine.register("d1", "Samsung", "Tab")
    assert pending.code == "482913"

    await engine.assign("482913", "WI WI1-308")
    assigned = await engine.get_status("d1")
    assert assigned.status == "assigned"
    assert assigned.room_name == "WI WI1-308"

    moved = await engine.update_assignment("d1", "WI WI1-309")
    assert moved.room_name == "WI WI1-309"
    assert moved.secret_key == assigned.secret_key
    assert (await engine.get_status("d1")).room_name == "WI WI1-309"

    assert await engine.unpair("d1") == 1
    assert (await engine.get_status("d1")).status == "unregistered"


@pytest.mark.asyncio
async def test_update_assignment_requires_assignment(registry):
    with pytest.raises(NotAssigned):
        await registry.update_assignment("d1", "WI WI1-309")


@pytest.mark.asyncio
async def test_unpair_is_idempotent(registry):
    assert await registry.unpair("nobody") == 0
    assert await registry.unpair("nobody") == 0


@pytest.mark.asyncio
async def test_unpair_keeps_device_row(registry, session_factory):
    pending = await registry.register("d1")
    await registry.assign(pending.code, "WI WI1-308")
    await registry.unpair("d1")
    assert await _count(session_factory, Device, Device.id == "d1") == 1


@pytest.mark.asyncio
async def test_admin_mutations_are_audited(registry, session_factory):
    pending = await registry.register("d1")
    await registry.assign(pending.code, "WI WI1-308", actor="admin@10.0.0.1")
    await registry.update_assignment("d1", "WI WI1-309", actor="admin@10.0.0.1")
    await registry.unpair("d1", actor="admin@10.0.0.1")

    async with session_factory() as session:
        actions = (await session.execute(
            select(AuditLog.action).where(AuditLog.entity_type == "device").order_by(AuditLog.id)
        )).scalars().all()
    assert actions == ["ASSIGN", "REASSIGN", "UNPAIR"]


@pytest.mark.asyncio
async def test_audit_rows_use_engine_clock(registry, session_factory, clock):
    pending = await registry.register("d1")
    await registry.assign(pending.code, "WI WI1-308")

    async with session_factory() as session:
        stamps = (await session.execute(select(AuditLog.timestamp))).scalars().all()
    assert stamps
    assert set(stamps) == {"2025-11-25T08:00:00"}


# ─── Listings ───

@pytest.mark.asyncio
async def test_list_pending_requests_only_active(registry, clock):
    await registry.register("old", "Acme", "T1")
    clock.advance(minutes=10)
    fresh = await registry.register("fresh", "Samsung", "Tab")
    done = await registry.register("done")
    await registry.assign(done.code, "WI WI1-308")
    clock.advance(minutes=6)

    pending = await registry.list_pending_requests()
    assert [p.device_id for p in pending] == ["fresh"]
    assert pending[0].code == fresh.code
    assert pending[0].device.manufacturer == "Samsung"


@pytest.mark.asyncio
async def test_create_room_is_find_or_create(registry):
    first = await registry.create_room("Aula A")
    again = await registry.create_room("Aula A")
    assert first.id == again.id
    assert len(await registry.list_rooms()) == 1


# ─── Validate ───

@pytest.mark.asyncio
async def test_validate_structured_assignment(registry):
    pending = await registry.register("d1", "Samsung", "Tab")
    await registry.assign(pending.code, "WI WI1-308")
    secret = (await registry.get_status("d1")).secret_key

    result = await registry.validate("WI WI1-308", secret)
    assert result.legacy is False
    assert result.device.device_name == "Samsung Tab"
    assert result.device.device_classroom == "WI WI1-308"
    assert result.device.device_url == secret

    with pytest.raises(NotFound):
        await registry.validate("WI WI1-309", secret)


@pytest.mark.asyncio
async def test_validate_prefers_legacy_table(registry, session_factory):
    pending = await registry.register("d1", "Samsung", "Tab")
    await registry.assign(pending.code, "WI WI1-308")
    secret = (await registry.get_status("d1")).secret_key

    async with session_factory() as session:
        session.add(DeviceList(device_name="old-tablet", device_classroom="WI WI1-308", device_url=secret))
        await session.commit()

    result = await registry.validate("WI WI1-308", secret)
    assert result.legacy is True
    assert result.device.device_name == "old-tablet"


# ─── Maintenance / Store faults ───

@pytest.mark.asyncio
async def test_purge_expired_requests(registry, clock, session_factory):
    await registry.register("d1")
    await registry.register("d2")
    clock.advance(minutes=20)
    await registry.register("d3")
    assert await registry.purge_expired_requests() == 2
    assert await _count(session_factory, RegistrationRequest) == 1


@pytest.mark.asyncio
async def test_store_timeout_is_surfaced(session_factory, clock):
    class SlowEngine(RegistryEngine):
        async def _active_assignment(self, session, device_id):
            await asyncio.sleep(1)

    engine = SlowEngine(session_factory, clock=clock, store_timeout=0.05)
    with pytest.raises(StoreTimeout):
        await engine.get_status("d1")


@pytest.mark.asyncio
async def test_unreachable_store_is_surfaced(tmp_path):
    broken = build_engine(f"sqlite+aiosqlite:///{tmp_path / 'missing' / 'registry.db'}")
    engine = RegistryEngine(async_sessionmaker(broken, class_=AsyncSession, expire_on_commit=False))
    with pytest.raises(StoreUnavailable):
        await engine.get_status("d1")
    await broken.dispose()
