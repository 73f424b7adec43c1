from dataclasses import dataclass
from typing import List

from ..domain.constraints import (
    ConstraintResult,
    PerDaySelection,
    SlotState,
    compute_disabled_and_pruned_selection,
)
from ..domain.repositories import SlotRepository
from ..models import Event, Slot


@dataclass(frozen=True)
class Availability:
    event: Event
    max_per_day: int
    slots: List[SlotState]

    @property
    def no_slots_available(self) -> bool:
        return all(slot.is_full for slot in self.slots)


def resolve_max_per_day(event: Event, default: int) -> int:
    return event.max_slots_per_day or default


def to_slot_state(slot: Slot) -> SlotState:
    return SlotState(
        id=slot.id,
        day=slot.day,
        slot_time=slot.slot_time,
        max_capacity=slot.max_capacity,
        registration_count=slot.registration_count,
        disabled=slot.registration_count >= slot.max_capacity,
    )


async def list_availability(
    slot_repo: SlotRepository,
    *,
    event: Event,
    default_max_per_day: int,
) -> Availability:
    rows = await slot_repo.list_for_event(event.id)
    return Availability(
        event=event,
        max_per_day=resolve_max_per_day(event, default_max_per_day),
        slots=[to_slot_state(slot) for slot in rows],
    )


async def evaluate_selection(
    slot_repo: SlotRepository,
    *,
    event: Event,
    selections: PerDaySelection,
    default_max_per_day: int,
) -> tuple[Availability, ConstraintResult]:
    availability = await list_availability(slot_repo, event=event, default_max_per_day=default_max_per_day)
    result = compute_disabled_and_pruned_selection(availability.slots, selections, availability.max_per_day)
    return availability, result
