"""
Slot selection rules for one participant.

Slot order inside a day is positional: adjacency is the distance between
indices in the ordered slot list, not the distance between clock times, so
callers must pass each day's slots sorted by start time.
"""

from __future__ import annotations

from dataclasses import dataclass, field, replace
from itertools import pairwise
from typing import Iterable, Mapping, Sequence

from .errors import ValidationError

PerDaySelection = Mapping[int, Sequence[int]]

MAX_CONSECUTIVE = 2


@dataclass(frozen=True)
class SlotState:
    id: int
    day: int
    slot_time: str
    max_capacity: int
    registration_count: int
    disabled: bool = False

    @property
    def remaining(self) -> int:
        return max(self.max_capacity - self.registration_count, 0)

    @property
    def is_full(self) -> bool:
        return self.registration_count >= self.max_capacity


@dataclass(frozen=True)
class ConstraintResult:
    slots: list[SlotState]
    selections: dict[int, list[int]]
    slots_by_day: dict[int, list[SlotState]] = field(repr=False)

    def disabled_ids(self) -> set[int]:
        return {slot.id for slot in self.slots if slot.disabled}


def group_by_day(slots: Iterable[SlotState]) -> dict[int, list[SlotState]]:
    grouped: dict[int, list[SlotState]] = {}
    for slot in slots:
        grouped.setdefault(slot.day, []).append(slot)
    return grouped


def _dedupe(ids: Iterable[int]) -> list[int]:
    return list(dict.fromkeys(ids))


def _sorted_indexes(day_slots: Sequence[SlotState], selected: Iterable[int]) -> list[int]:
    index_of = {slot.id: i for i, slot in enumerate(day_slots)}
    return sorted({index_of[slot_id] for slot_id in selected if slot_id in index_of})


def _disabled_flags(day_slots: Sequence[SlotState], selected: Sequence[int], max_per_day: int) -> list[bool]:
    # Capacity is the base layer; the adjacency rules below only ever add to it.
    disabled = [slot.is_full for slot in day_slots]
    chosen = set(selected)
    indexes = _sorted_indexes(day_slots, chosen)

    def block(index: int) -> None:
        if 0 <= index < len(day_slots) and day_slots[index].id not in chosen:
            disabled[index] = True

    for a, b in pairwise(indexes):
        if b - a == 2:
            block(a + 1)

    for current, nxt in pairwise(indexes):
        if nxt - current == 1:
            block(current - 1)
            block(nxt + 1)

    if len(indexes) >= max_per_day:
        for i in range(len(day_slots)):
            block(i)
    return disabled


def _repair(
    day_slots: Sequence[SlotState],
    selected: Sequence[int],
    disabled: Sequence[bool],
    max_per_day: int,
) -> list[int]:
    index_of = {slot.id: i for i, slot in enumerate(day_slots)}
    kept: list[int] = []
    for slot_id in selected:
        if len(kept) == max_per_day:
            break
        if slot_id not in index_of or disabled[index_of[slot_id]]:
            continue
        # Earlier picks win; an id that would extend a run past the limit is dropped.
        if _longest_run(_sorted_indexes(day_slots, [*kept, slot_id])) > MAX_CONSECUTIVE:
            continue
        kept.append(slot_id)
    return kept


def apply_day_constraints(
    day_slots: Sequence[SlotState],
    selected: Sequence[int],
    max_per_day: int,
) -> tuple[list[SlotState], list[int]]:
    """Return the day's slots with `disabled` recomputed and the repaired selection.

    A repaired selection only ever loses full, unknown, run-extending or
    over-cap ids, so one recomputation against it reaches the fixed point.
    """
    wanted = _dedupe(selected)
    disabled = _disabled_flags(day_slots, wanted, max_per_day)
    repaired = _repair(day_slots, wanted, disabled, max_per_day)
    if repaired != wanted:
        disabled = _disabled_flags(day_slots, repaired, max_per_day)
    updated = [replace(slot, disabled=flag) for slot, flag in zip(day_slots, disabled)]
    return updated, repaired


def compute_disabled_and_pruned_selection(
    slots: Sequence[SlotState],
    selections_by_day: PerDaySelection,
    max_per_day: int,
) -> ConstraintResult:
    """Run the selection rules for every day. Inputs are never mutated."""
    if max_per_day < 1:
        raise ValueError("max_per_day must be >= 1")
    grouped = group_by_day(slots)
    days = sorted(set(grouped) | set(selections_by_day))
    slots_by_day: dict[int, list[SlotState]] = {}
    selections: dict[int, list[int]] = {}
    for day in days:
        updated, repaired = apply_day_constraints(
            grouped.get(day, []),
            list(selections_by_day.get(day, [])),
            max_per_day,
        )
        slots_by_day[day] = updated
        selections[day] = repaired
    ordered = [slot for day in days for slot in slots_by_day[day]]
    return ConstraintResult(slots=ordered, selections=selections, slots_by_day=slots_by_day)


def toggle_slot(
    slots: Sequence[SlotState],
    selections_by_day: PerDaySelection,
    *,
    day: int,
    slot_id: int,
    max_per_day: int,
) -> ConstraintResult:
    """Select or deselect one slot, then re-run the rules.

    Selecting a slot that is disabled under the current selection raises
    ValidationError and leaves the selection as it was.
    """
    current = compute_disabled_and_pruned_selection(slots, selections_by_day, max_per_day)
    selected = list(current.selections.get(day, []))
    if slot_id in selected:
        selected.remove(slot_id)
    else:
        target = next((s for s in current.slots_by_day.get(day, []) if s.id == slot_id), None)
        if target is None:
            raise ValidationError(f"slot {slot_id} is not offered on day {day}")
        if target.disabled:
            raise ValidationError(f"slot {slot_id} cannot be selected")
        selected.append(slot_id)
    updated = dict(current.selections)
    updated[day] = selected
    return compute_disabled_and_pruned_selection(slots, updated, max_per_day)


def is_disabled_by_capacity(slot: SlotState) -> bool:
    return slot.is_full


def has_consecutive_or_disabled_in_between(day_slots: Sequence[SlotState], selected: Sequence[int]) -> bool:
    """UI hint: two selected slots touch, or a rule-disabled slot sits between two selections."""
    indexes = _sorted_indexes(day_slots, selected)
    if any(b - a == 1 for a, b in pairwise(indexes)):
        return True
    for start, end in pairwise(indexes):
        for j in range(start + 1, end):
            if day_slots[j].disabled and not is_disabled_by_capacity(day_slots[j]):
                return True
    return False


def _longest_run(indexes: Sequence[int]) -> int:
    longest = run = 1 if indexes else 0
    for a, b in pairwise(indexes):
        run = run + 1 if b - a == 1 else 1
        longest = max(longest, run)
    return longest


def validate_selection(
    slots_by_day: Mapping[int, Sequence[SlotState]],
    selections_by_day: PerDaySelection,
    *,
    day_count: int,
    max_per_day: int,
) -> dict[int, list[int]]:
    """Server-side check of a submitted selection, capacity excluded.

    Returns the selection normalized to every configured day.
    """
    normalized: dict[int, list[int]] = {day: [] for day in range(1, day_count + 1)}
    for day, ids in selections_by_day.items():
        if day not in normalized:
            raise ValidationError(f"day{day} is not part of this event")
        ids = list(ids)
        if len(set(ids)) != len(ids):
            raise ValidationError(f"day{day} contains duplicate slots")
        day_slots = slots_by_day.get(day, [])
        known = {slot.id for slot in day_slots}
        unknown = [slot_id for slot_id in ids if slot_id not in known]
        if unknown:
            raise ValidationError(f"slot {unknown[0]} is not offered on day{day}")
        if len(ids) > max_per_day:
            raise ValidationError(f"at most {max_per_day} slots may be selected on day{day}")
        if _longest_run(_sorted_indexes(day_slots, ids)) > MAX_CONSECUTIVE:
            raise ValidationError(f"more than {MAX_CONSECUTIVE} consecutive slots selected on day{day}")
        normalized[day] = ids
    return normalized
