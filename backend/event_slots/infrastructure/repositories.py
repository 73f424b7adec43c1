from __future__ import annotations

from datetime import datetime, timezone
from typing import List, Mapping, Optional, Sequence

from sqlalchemy import Select, case, delete, select, update
from sqlalchemy.ext.asyncio import AsyncSession

from ..domain.repositories import (
    EventRepository,
    RegistrationRepository,
    SlotRepository,
    WaitlistRepository,
)
from ..models import Event, Registration, RegistrationSlot, Slot, WaitlistEntry


def _utc_now_naive() -> datetime:
    return datetime.now(timezone.utc).replace(tzinfo=None)


def _links(days: Mapping[int, Sequence[int]]) -> list[RegistrationSlot]:
    return [
        RegistrationSlot(slot_id=slot_id, day=day)
        for day, ids in sorted(days.items())
        for slot_id in ids
    ]


class SqlAlchemyEventRepository(EventRepository):
    def __init__(self, session: AsyncSession) -> None:
        self.session = session

    async def get_by_code(self, code: str) -> Event | None:
        result = await self.session.scalar(select(Event).where(Event.code == code.upper()))
        return result if isinstance(result, Event) else None


class SqlAlchemySlotRepository(SlotRepository):
    def __init__(self, session: AsyncSession) -> None:
        self.session = session

    async def list_for_event(self, event_id: int) -> List[Slot]:
        stmt: Select[tuple[Slot]] = (
            select(Slot)
            .where(Slot.event_id == event_id)
            .order_by(Slot.day, Slot.position, Slot.id)
        )
        return list((await self.session.scalars(stmt)).all())

    async def try_reserve(self, slot_id: int) -> bool:
        # Compare-and-increment in one statement; no read in application code.
        stmt = (
            update(Slot)
            .where(Slot.id == slot_id, Slot.registration_count < Slot.max_capacity)
            .values(
                registration_count=Slot.registration_count + 1,
                updated_at=_utc_now_naive(),
            )
            .execution_options(synchronize_session=False)
        )
        result = await self.session.execute(stmt)
        return result.rowcount == 1

    async def release(self, counts: Mapping[int, int]) -> None:
        now = _utc_now_naive()
        for slot_id, count in sorted(counts.items()):
            if count <= 0:
                continue
            stmt = (
                update(Slot)
                .where(Slot.id == slot_id)
                .values(
                    registration_count=case(
                        (Slot.registration_count >= count, Slot.registration_count - count),
                        else_=0,
                    ),
                    updated_at=now,
                )
                .execution_options(synchronize_session=False)
            )
            await self.session.execute(stmt)


class SqlAlchemyRegistrationRepository(RegistrationRepository):
    def __init__(self, session: AsyncSession) -> None:
        self.session = session

    async def get_by_source_reference_for_update(
        self, event_id: int, source_reference: int
    ) -> Optional[Registration]:
        stmt = (
            select(Registration)
            .where(
                Registration.event_id == event_id,
                Registration.source_reference == source_reference,
            )
            .with_for_update()
        )
        return await self.session.scalar(stmt)

    async def get_by_identity_for_update(
        self,
        event_id: int,
        mobile_number: str,
        member_id: str | None,
    ) -> Optional[Registration]:
        stmt = (
            self._identity_query(event_id, mobile_number, member_id)
            .order_by(Registration.id)
            .limit(1)
            .with_for_update()
        )
        return await self.session.scalar(stmt)

    async def list_by_source_references_for_update(
        self, event_id: int, source_references: Sequence[int]
    ) -> List[Registration]:
        stmt = (
            select(Registration)
            .where(
                Registration.event_id == event_id,
                Registration.source_reference.in_(list(source_references)),
            )
            .order_by(Registration.id)
            .with_for_update()
        )
        return list((await self.session.scalars(stmt)).all())

    async def list_by_identity(
        self,
        event_id: int,
        mobile_number: str,
        member_id: str | None,
    ) -> List[Registration]:
        stmt = self._identity_query(event_id, mobile_number, member_id).order_by(Registration.id)
        return list((await self.session.scalars(stmt)).all())

    async def create(
        self,
        event_id: int,
        *,
        full_name: str,
        mobile_number: str,
        member_id: str | None,
        country_code: str | None,
        source_reference: int | None,
        days: Mapping[int, Sequence[int]],
    ) -> Registration:
        now = _utc_now_naive()
        registration = Registration(
            event_id=event_id,
            source_reference=source_reference,
            member_id=member_id,
            full_name=full_name,
            country_code=country_code,
            mobile_number=mobile_number,
            created_at=now,
            updated_at=now,
            slots=_links(days),
        )
        self.session.add(registration)
        await self.session.flush()
        return registration

    async def update(
        self,
        registration: Registration,
        *,
        full_name: str,
        mobile_number: str,
        member_id: str | None,
        country_code: str | None,
        days: Mapping[int, Sequence[int]],
    ) -> Registration:
        registration.full_name = full_name
        registration.mobile_number = mobile_number
        registration.member_id = member_id
        registration.country_code = country_code
        registration.updated_at = _utc_now_naive()
        # Drop the old links first so the (registration_id, slot_id) unique key holds.
        registration.slots.clear()
        await self.session.flush()
        registration.slots.extend(_links(days))
        self.session.add(registration)
        await self.session.flush()
        return registration

    async def delete(self, registrations: Sequence[Registration]) -> None:
        ids = [registration.id for registration in registrations]
        if not ids:
            return
        await self.session.execute(
            delete(RegistrationSlot).where(RegistrationSlot.registration_id.in_(ids))
        )
        await self.session.execute(delete(Registration).where(Registration.id.in_(ids)))

    @staticmethod
    def _identity_query(event_id: int, mobile_number: str, member_id: str | None) -> Select[tuple[Registration]]:
        stmt = select(Registration).where(
            Registration.event_id == event_id,
            Registration.mobile_number == mobile_number,
        )
        if member_id is not None:
            stmt = stmt.where(Registration.member_id == member_id)
        return stmt


class SqlAlchemyWaitlistRepository(WaitlistRepository):
    def __init__(self, session: AsyncSession) -> None:
        self.session = session

    async def exists(self, event_id: int, mobile_number: str) -> bool:
        stmt = select(WaitlistEntry.id).where(
            WaitlistEntry.event_id == event_id,
            WaitlistEntry.mobile_number == mobile_number,
        )
        return await self.session.scalar(stmt) is not None

    async def create(
        self,
        event_id: int,
        *,
        member_id: str,
        full_name: str,
        country_code: str,
        mobile_number: str,
    ) -> WaitlistEntry:
        entry = WaitlistEntry(
            event_id=event_id,
            member_id=member_id,
            full_name=full_name,
            country_code=country_code,
            mobile_number=mobile_number,
            created_at=_utc_now_naive(),
        )
        self.session.add(entry)
        await self.session.flush()
        return entry
