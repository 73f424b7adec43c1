import re
from collections import Counter
from dataclasses import dataclass
from typing import Any, Iterable, Mapping

from .constraints import PerDaySelection
from .errors import ValidationError

DAY_KEY_RE = re.compile(r"^day(\d+)$")


def day_key(day: int) -> str:
    return f"day{day}"


def split_day_keys(data: Mapping[str, Any]) -> tuple[dict[int, list[int]], dict[str, Any]]:
    """Separate `dayN` entries from the remaining fields of a payload.

    `None` and a bare id are accepted for a day and normalized to lists.
    """
    days: dict[int, list[int]] = {}
    rest: dict[str, Any] = {}
    for key, value in data.items():
        match = DAY_KEY_RE.match(key)
        if match is None:
            rest[key] = value
            continue
        day = int(match.group(1))
        if day < 1:
            raise ValidationError(f"{key} is not a valid day")
        if value is None:
            days[day] = []
        elif isinstance(value, (list, tuple)):
            days[day] = [_as_slot_id(key, v) for v in value]
        else:
            days[day] = [_as_slot_id(key, value)]
    return days, rest


def _as_slot_id(key: str, value: Any) -> int:
    if isinstance(value, bool):
        raise ValidationError(f"{key} contains an invalid slot id")
    try:
        return int(value)
    except (TypeError, ValueError) as exc:
        raise ValidationError(f"{key} contains an invalid slot id") from exc


def union_slots(selection: PerDaySelection) -> set[int]:
    return {slot_id for ids in selection.values() for slot_id in ids}


@dataclass(frozen=True)
class SlotDelta:
    to_add: list[int]
    to_remove: list[int]

    @property
    def is_empty(self) -> bool:
        return not self.to_add and not self.to_remove


def compute_slot_delta(old: PerDaySelection | None, new: PerDaySelection) -> SlotDelta:
    """Slots to reserve and to release when `old` is replaced by `new`.

    Ids are ascending so concurrent writers lock slot rows in the same order.
    """
    old_ids = union_slots(old or {})
    new_ids = union_slots(new)
    return SlotDelta(to_add=sorted(new_ids - old_ids), to_remove=sorted(old_ids - new_ids))


def release_counts(selections: Iterable[PerDaySelection]) -> dict[int, int]:
    """How many seats each slot gives back when all `selections` are dropped."""
    counts: Counter[int] = Counter()
    for selection in selections:
        counts.update(union_slots(selection))
    return dict(sorted(counts.items()))


@dataclass(frozen=True)
class ParticipantSubmission:
    full_name: str | None
    mobile_number: str | None
    days: dict[int, list[int]]
    member_id: str | None = None
    country_code: str | None = None
    source_reference: int | None = None


def require_identity(participant: ParticipantSubmission, *, require_member_id: bool) -> None:
    """Raise ValidationError when a required identity field is missing or blank."""
    required = ["mobile_number", "full_name"]
    if require_member_id:
        required.append("member_id")
    missing = [name for name in required if not str(getattr(participant, name) or "").strip()]
    if missing:
        raise ValidationError(f"missing required participant data: {', '.join(missing)}")
