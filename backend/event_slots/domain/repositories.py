from __future__ import annotations

from typing import Mapping, Protocol, Sequence

from ..models import Event, Registration, Slot, WaitlistEntry


class EventRepository(Protocol):
    async def get_by_code(self, code: str) -> Event | None: ...


class SlotRepository(Protocol):
    async def list_for_event(self, event_id: int) -> list[Slot]: ...

    async def try_reserve(self, slot_id: int) -> bool: ...

    async def release(self, counts: Mapping[int, int]) -> None: ...


class RegistrationRepository(Protocol):
    async def get_by_source_reference_for_update(
        self, event_id: int, source_reference: int
    ) -> Registration | None: ...

    async def get_by_identity_for_update(
        self,
        event_id: int,
        mobile_number: str,
        member_id: str | None,
    ) -> Registration | None: ...

    async def list_by_source_references_for_update(
        self, event_id: int, source_references: Sequence[int]
    ) -> list[Registration]: ...

    async def list_by_identity(
        self,
        event_id: int,
        mobile_number: str,
        member_id: str | None,
    ) -> list[Registration]: ...

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
    ) -> Registration: ...

    async def update(
        self,
        registration: Registration,
        *,
        full_name: str,
        mobile_number: str,
        member_id: str | None,
        country_code: str | None,
        days: Mapping[int, Sequence[int]],
    ) -> Registration: ...

    async def delete(self, registrations: Sequence[Registration]) -> None: ...


class WaitlistRepository(Protocol):
    async def exists(self, event_id: int, mobile_number: str) -> bool: ...

    async def create(
        self,
        event_id: int,
        *,
        member_id: str,
        full_name: str,
        country_code: str,
        mobile_number: str,
    ) -> WaitlistEntry: ...
