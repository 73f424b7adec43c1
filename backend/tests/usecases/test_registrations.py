from dataclasses import dataclass, field
from datetime import datetime
from itertools import count
from typing import Dict, List, Mapping, Optional, Sequence, cast

import pytest
from event_slots.domain.errors import ConflictError, NotFoundError, SlotFullError, ValidationError
from event_slots.domain.services import ParticipantSubmission
from event_slots.models import Event, Registration, Slot, WaitlistEntry
from event_slots.usecases import registrations as uc


def _event(day_count: int = 2, match_member_id: bool = False) -> Event:
    now = datetime(2025, 1, 1)
    return Event(
        id=1,
        code="GH",
        name="Gayathri Havanam",
        activity_label="Havanam",
        day_count=day_count,
        max_slots_per_day=None,
        match_member_id=match_member_id,
        created_at=now,
        updated_at=now,
    )


def _slot(slot_id: int, day: int, capacity: int = 2, used: int = 0) -> Slot:
    now = datetime(2025, 1, 1)
    return Slot(
        id=slot_id,
        event_id=1,
        day=day,
        slot_time=f"{slot_id % 10 + 6}:00 AM",
        position=slot_id,
        max_capacity=capacity,
        registration_count=used,
        created_at=now,
        updated_at=now,
    )


class FakeSlotRepo:
    def __init__(self, slots: List[Slot]) -> None:
        self.slots = {slot.id: slot for slot in slots}
        self.reserve_calls: List[int] = []

    async def list_for_event(self, event_id: int) -> List[Slot]:
        return sorted(self.slots.values(), key=lambda s: (s.day, s.position, s.id))

    async def try_reserve(self, slot_id: int) -> bool:
        self.reserve_calls.append(slot_id)
        slot = self.slots.get(slot_id)
        if slot is None or slot.registration_count >= slot.max_capacity:
            return False
        slot.registration_count += 1
        return True

    async def release(self, counts: Mapping[int, int]) -> None:
        for slot_id, amount in counts.items():
            slot = self.slots[slot_id]
            slot.registration_count = max(slot.registration_count - amount, 0)

    def counts(self) -> Dict[int, int]:
        return {slot_id: slot.registration_count for slot_id, slot in self.slots.items()}


@dataclass
class FakeRegistration:
    id: int
    event_id: int
    full_name: str
    mobile_number: str
    member_id: Optional[str]
    country_code: Optional[str]
    source_reference: Optional[int]
    stored: Dict[int, List[int]] = field(default_factory=dict)

    def days(self) -> Dict[int, List[int]]:
        return {day: sorted(ids) for day, ids in sorted(self.stored.items()) if ids}


class FakeRegistrationRepo:
    def __init__(self) -> None:
        self.rows: Dict[int, FakeRegistration] = {}
        self._ids = count(100)

    def _matches(self, row: FakeRegistration, event_id: int, mobile: str, member_id: Optional[str]) -> bool:
        if row.event_id != event_id or row.mobile_number != mobile:
            return False
        return member_id is None or row.member_id == member_id

    async def get_by_source_reference_for_update(self, event_id: int, source_reference: int) -> Optional[Registration]:
        for row in self.rows.values():
            if row.event_id == event_id and row.source_reference == source_reference:
                return cast(Registration, row)
        return None

    async def get_by_identity_for_update(
        self, event_id: int, mobile_number: str, member_id: Optional[str]
    ) -> Optional[Registration]:
        for row in self.rows.values():
            if self._matches(row, event_id, mobile_number, member_id):
                return cast(Registration, row)
        return None

    async def list_by_source_references_for_update(
        self, event_id: int, source_references: Sequence[int]
    ) -> List[Registration]:
        return [
            cast(Registration, row)
            for row in self.rows.values()
            if row.event_id == event_id and row.source_reference in source_references
        ]

    async def list_by_identity(self, event_id: int, mobile_number: str, member_id: Optional[str]) -> List[Registration]:
        return [cast(Registration, r) for r in self.rows.values() if self._matches(r, event_id, mobile_number, member_id)]

    async def create(self, event_id: int, *, full_name: str, mobile_number: str, member_id: Optional[str],
                     country_code: Optional[str], source_reference: Optional[int],
                     days: Mapping[int, Sequence[int]]) -> Registration:
        row = FakeRegistration(
            id=next(self._ids),
            event_id=event_id,
            full_name=full_name,
            mobile_number=mobile_number,
            member_id=member_id,
            country_code=country_code,
            source_reference=source_reference,
            stored={day: list(ids) for day, ids in days.items()},
        )
        self.rows[row.id] = row
        return cast(Registration, row)

    async def update(self, registration: Registration, *, full_name: str, mobile_number: str, member_id: Optional[str],
                     country_code: Optional[str], days: Mapping[int, Sequence[int]]) -> Registration:
        row = cast(FakeRegistration, registration)
        row.full_name = full_name
        row.mobile_number = mobile_number
        row.member_id = member_id
        row.country_code = country_code
        row.stored = {day: list(ids) for day, ids in days.items()}
        return registration

    async def delete(self, registrations: Sequence[Registration]) -> None:
        for registration in registrations:
            del self.rows[registration.id]


class FakeWaitlistRepo:
    def __init__(self) -> None:
        self.entries: List[WaitlistEntry] = []

    async def exists(self, event_id: int, mobile_number: str) -> bool:
        return any(e.event_id == event_id and e.mobile_number == mobile_number for e in self.entries)

    async def create(self, event_id: int, *, member_id: str, full_name: str, country_code: str,
                     mobile_number: str) -> WaitlistEntry:
        entry = WaitlistEntry(
            id=len(self.entries) + 1,
            event_id=event_id,
            member_id=member_id,
            full_name=full_name,
            country_code=country_code,
            mobile_number=mobile_number,
        )
        self.entries.append(entry)
        return entry


def _participant(days: Dict[int, List[int]], mobile: str = "9000000001", **kwargs: object) -> ParticipantSubmission:
    return ParticipantSubmission(
        full_name=str(kwargs.pop("full_name", "Asha")),
        mobile_number=mobile,
        days=days,
        member_id=cast(Optional[str], kwargs.pop("member_id", "M-1")),
        country_code="+91",
        source_reference=cast(Optional[int], kwargs.pop("source_reference", None)),
    )


def _repos(slots: List[Slot]) -> tuple[FakeSlotRepo, FakeRegistrationRepo, FakeWaitlistRepo]:
    return FakeSlotRepo(slots), FakeRegistrationRepo(), FakeWaitlistRepo()


@pytest.mark.asyncio
async def test_new_registration_reserves_every_selected_slot() -> None:
    slot_repo, reg_repo, wl_repo = _repos([_slot(10, 1), _slot(11, 1), _slot(20, 2)])
    outcome = await uc.register_or_update(
        slot_repo, reg_repo, wl_repo,
        event=_event(), participant=_participant({1: [10], 2: [20]}), default_max_per_day=4,
    )
    assert outcome.created is True
    assert outcome.delta.to_add == [10, 20]
    assert slot_repo.counts() == {10: 1, 11: 0, 20: 1}
    assert reg_repo.rows[outcome.registration_id].days() == {1: [10], 2: [20]}


@pytest.mark.asyncio
async def test_update_applies_only_the_delta() -> None:
    slot_repo, reg_repo, wl_repo = _repos([_slot(1, 1), _slot(2, 1), _slot(3, 1)])
    event = _event()
    await uc.register_or_update(
        slot_repo, reg_repo, wl_repo, event=event, participant=_participant({1: [1, 2]}), default_max_per_day=4
    )
    slot_repo.reserve_calls.clear()

    outcome = await uc.register_or_update(
        slot_repo, reg_repo, wl_repo, event=event, participant=_participant({1: [2, 3]}), default_max_per_day=4
    )
    assert outcome.created is False
    assert (outcome.delta.to_add, outcome.delta.to_remove) == ([3], [1])
    assert slot_repo.reserve_calls == [3]
    assert slot_repo.counts() == {1: 0, 2: 1, 3: 1}
    assert len(reg_repo.rows) == 1


@pytest.mark.asyncio
async def test_held_full_slot_is_kept_on_update() -> None:
    slot_repo, reg_repo, wl_repo = _repos([_slot(1, 1, capacity=1), _slot(2, 1), _slot(3, 1)])
    event = _event()
    await uc.register_or_update(
        slot_repo, reg_repo, wl_repo, event=event, participant=_participant({1: [1]}), default_max_per_day=4
    )
    outcome = await uc.register_or_update(
        slot_repo, reg_repo, wl_repo, event=event, participant=_participant({1: [1, 3]}), default_max_per_day=4
    )
    assert outcome.delta.to_add == [3]
    assert slot_repo.counts() == {1: 1, 2: 0, 3: 1}


@pytest.mark.asyncio
async def test_amend_by_source_reference_stores_new_mobile() -> None:
    slot_repo, reg_repo, wl_repo = _repos([_slot(1, 1), _slot(2, 1)])
    event = _event()
    first = await uc.register_or_update(
        slot_repo, reg_repo, wl_repo, event=event,
        participant=_participant({1: [1]}, source_reference=7), default_max_per_day=4,
    )
    outcome = await uc.register_or_update(
        slot_repo, reg_repo, wl_repo, event=event,
        participant=_participant({1: [1]}, mobile="9000000002", source_reference=7), default_max_per_day=4,
    )
    assert outcome.registration_id == first.registration_id
    assert reg_repo.rows[outcome.registration_id].mobile_number == "9000000002"
    assert slot_repo.counts() == {1: 1, 2: 0}


@pytest.mark.asyncio
async def test_full_slot_raises_slot_full_with_id() -> None:
    slot_repo, reg_repo, wl_repo = _repos([_slot(10, 1, capacity=1, used=1), _slot(11, 1), _slot(20, 2)])
    with pytest.raises(SlotFullError) as excinfo:
        await uc.register_or_update(
            slot_repo, reg_repo, wl_repo,
            event=_event(), participant=_participant({1: [10]}), default_max_per_day=4,
        )
    assert excinfo.value.slot_id == 10
    assert reg_repo.rows == {}


@pytest.mark.asyncio
async def test_all_full_routes_to_waitlist_without_reserving() -> None:
    slot_repo, reg_repo, wl_repo = _repos([_slot(10, 1, capacity=1, used=1), _slot(20, 2, capacity=2, used=2)])
    outcome = await uc.register_or_update(
        slot_repo, reg_repo, wl_repo,
        event=_event(), participant=_participant({1: [10]}), default_max_per_day=4,
    )
    assert outcome.waitlisted is True
    assert slot_repo.reserve_calls == []
    assert len(wl_repo.entries) == 1
    assert wl_repo.entries[0].mobile_number == "9000000001"


@pytest.mark.asyncio
async def test_waitlist_route_rejects_duplicate_mobile() -> None:
    slot_repo, reg_repo, wl_repo = _repos([_slot(10, 1, capacity=1, used=1)])
    event = _event(day_count=1)
    await uc.register_or_update(
        slot_repo, reg_repo, wl_repo, event=event, participant=_participant({}), default_max_per_day=4
    )
    with pytest.raises(ConflictError):
        await uc.register_or_update(
            slot_repo, reg_repo, wl_repo, event=event, participant=_participant({}), default_max_per_day=4
        )


@pytest.mark.asyncio
async def test_empty_selection_is_rejected_while_slots_remain() -> None:
    slot_repo, reg_repo, wl_repo = _repos([_slot(10, 1)])
    with pytest.raises(ValidationError):
        await uc.register_or_update(
            slot_repo, reg_repo, wl_repo,
            event=_event(day_count=1), participant=_participant({1: []}), default_max_per_day=4,
        )


@pytest.mark.asyncio
async def test_missing_identity_is_rejected_before_any_write() -> None:
    slot_repo, reg_repo, wl_repo = _repos([_slot(10, 1)])
    with pytest.raises(ValidationError):
        await uc.register_or_update(
            slot_repo, reg_repo, wl_repo,
            event=_event(match_member_id=True),
            participant=_participant({1: [10]}, member_id=None),
            default_max_per_day=4,
        )
    assert slot_repo.reserve_calls == []


@pytest.mark.asyncio
async def test_three_consecutive_slots_are_rejected() -> None:
    slot_repo, reg_repo, wl_repo = _repos([_slot(1, 1), _slot(2, 1), _slot(3, 1)])
    with pytest.raises(ValidationError):
        await uc.register_or_update(
            slot_repo, reg_repo, wl_repo,
            event=_event(day_count=1), participant=_participant({1: [1, 2, 3]}), default_max_per_day=4,
        )
    assert slot_repo.reserve_calls == []


@pytest.mark.asyncio
async def test_bulk_register_stops_at_first_full_slot() -> None:
    slot_repo, reg_repo, _ = _repos([_slot(10, 1, capacity=1), _slot(11, 1, capacity=1)])
    participants = [
        _participant({1: [10]}, mobile="9000000001", source_reference=1),
        _participant({1: [10]}, mobile="9000000002", source_reference=2),
    ]
    with pytest.raises(SlotFullError) as excinfo:
        await uc.bulk_register(
            slot_repo, reg_repo, event=_event(day_count=1), participants=participants, default_max_per_day=4
        )
    assert excinfo.value.slot_id == 10


@pytest.mark.asyncio
async def test_bulk_register_registers_each_participant() -> None:
    slot_repo, reg_repo, _ = _repos([_slot(10, 1, capacity=2), _slot(20, 2)])
    participants = [
        _participant({1: [10]}, mobile="9000000001", source_reference=1),
        _participant({1: [10], 2: [20]}, mobile="9000000002", source_reference=2),
    ]
    outcomes = await uc.bulk_register(
        slot_repo, reg_repo, event=_event(), participants=participants, default_max_per_day=4
    )
    assert [o.created for o in outcomes] == [True, True]
    assert slot_repo.counts() == {10: 2, 20: 1}


@pytest.mark.asyncio
@pytest.mark.parametrize("refs", [[], [1, 1]])
async def test_bulk_register_validates_batch(refs: List[int]) -> None:
    slot_repo, reg_repo, _ = _repos([_slot(10, 1)])
    participants = [_participant({1: [10]}, source_reference=ref) for ref in refs]
    with pytest.raises(ValidationError):
        await uc.bulk_register(
            slot_repo, reg_repo, event=_event(), participants=participants, default_max_per_day=4
        )


@pytest.mark.asyncio
async def test_withdraw_releases_every_day() -> None:
    slot_repo, reg_repo, wl_repo = _repos([_slot(10, 1), _slot(20, 2)])
    event = _event()
    await uc.register_or_update(
        slot_repo, reg_repo, wl_repo, event=event,
        participant=_participant({1: [10], 2: [20]}, source_reference=7), default_max_per_day=4,
    )
    assert slot_repo.counts() == {10: 1, 20: 1}

    outcome = await uc.withdraw(slot_repo, reg_repo, event=event, source_references=[7])
    assert outcome.released == {10: 1, 20: 1}
    assert slot_repo.counts() == {10: 0, 20: 0}
    assert reg_repo.rows == {}


@pytest.mark.asyncio
async def test_withdraw_unknown_reference_raises_not_found() -> None:
    slot_repo, reg_repo, _ = _repos([_slot(10, 1)])
    with pytest.raises(NotFoundError):
        await uc.withdraw(slot_repo, reg_repo, event=_event(), source_references=[42])
    with pytest.raises(ValidationError):
        await uc.withdraw(slot_repo, reg_repo, event=_event(), source_references=[])


@pytest.mark.asyncio
async def test_counts_stay_within_capacity_across_operations() -> None:
    slot_repo, reg_repo, wl_repo = _repos([_slot(1, 1, capacity=1), _slot(2, 1, capacity=1), _slot(9, 2)])
    event = _event()
    steps = [
        ("register", "a", {1: [1]}, 1),
        ("register", "b", {1: [1]}, 2),
        ("register", "a", {1: [2]}, 1),
        ("register", "b", {1: [1]}, 2),
        ("withdraw", "a", {}, 1),
        ("withdraw", "b", {}, 2),
        ("register", "b", {2: [9]}, 2),
    ]
    for kind, who, days, ref in steps:
        try:
            if kind == "register":
                await uc.register_or_update(
                    slot_repo, reg_repo, wl_repo, event=event,
                    participant=_participant(days, mobile=who, source_reference=ref), default_max_per_day=4,
                )
            else:
                await uc.withdraw(slot_repo, reg_repo, event=event, source_references=[ref])
        except SlotFullError:
            pass
        for slot in slot_repo.slots.values():
            assert 0 <= slot.registration_count <= slot.max_capacity
    assert slot_repo.counts() == {1: 0, 2: 0, 9: 1}


@pytest.mark.asyncio
async def test_search_labels_every_configured_day() -> None:
    slot_repo, reg_repo, wl_repo = _repos([_slot(10, 1), _slot(11, 1), _slot(20, 2)])
    event = _event(day_count=3)
    await uc.register_or_update(
        slot_repo, reg_repo, wl_repo, event=event, participant=_participant({1: [10, 11]}), default_max_per_day=4
    )
    [summary] = await uc.search_registrations(slot_repo, reg_repo, event=event, mobile_number=" 9000000001 ")
    assert summary.days == {1: [10, 11], 2: [], 3: []}
    assert summary.labels == {"day1": "6:00 AM, 7:00 AM", "day2": "-", "day3": "-"}


@pytest.mark.asyncio
async def test_search_requires_mobile_and_a_match() -> None:
    slot_repo, reg_repo, _ = _repos([_slot(10, 1)])
    with pytest.raises(ValidationError):
        await uc.search_registrations(slot_repo, reg_repo, event=_event(), mobile_number="")
    with pytest.raises(NotFoundError):
        await uc.search_registrations(slot_repo, reg_repo, event=_event(), mobile_number="9000000009")
