import logging
from dataclasses import dataclass, field
from typing import Dict, List, Sequence

from ..domain.constraints import group_by_day, validate_selection
from ..domain.errors import NotFoundError, SlotFullError, ValidationError
from ..domain.repositories import RegistrationRepository, SlotRepository, WaitlistRepository
from ..domain.services import (
    ParticipantSubmission,
    SlotDelta,
    compute_slot_delta,
    day_key,
    release_counts,
    require_identity,
    union_slots,
)
from ..models import Event, Registration
from .slots import Availability, list_availability
from .waitlist import join_waitlist

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class RegistrationOutcome:
    registration_id: int
    created: bool = False
    waitlisted: bool = False
    delta: SlotDelta = field(default_factory=lambda: SlotDelta(to_add=[], to_remove=[]))


@dataclass(frozen=True)
class WithdrawalOutcome:
    registration_ids: List[int]
    released: Dict[int, int]


@dataclass(frozen=True)
class RegistrationSummary:
    registration_id: int
    source_reference: int | None
    full_name: str
    days: Dict[int, List[int]]
    labels: Dict[str, str]


async def _lock_existing(
    reg_repo: RegistrationRepository,
    event: Event,
    participant: ParticipantSubmission,
) -> Registration | None:
    if participant.source_reference is not None:
        return await reg_repo.get_by_source_reference_for_update(event.id, participant.source_reference)
    return await reg_repo.get_by_identity_for_update(
        event.id,
        str(participant.mobile_number),
        participant.member_id if event.match_member_id else None,
    )


async def _reserve_or_fail(slot_repo: SlotRepository, slot_ids: Sequence[int]) -> None:
    for slot_id in slot_ids:
        if not await slot_repo.try_reserve(slot_id):
            logger.warning("slot %s is full, aborting reservation", slot_id)
            raise SlotFullError(slot_id)


async def _apply_selection(
    slot_repo: SlotRepository,
    reg_repo: RegistrationRepository,
    *,
    event_slots: Availability,
    participant: ParticipantSubmission,
    existing: Registration | None,
) -> RegistrationOutcome:
    event = event_slots.event
    days = validate_selection(
        group_by_day(event_slots.slots),
        participant.days,
        day_count=event.day_count,
        max_per_day=event_slots.max_per_day,
    )
    if not union_slots(days):
        raise ValidationError("select at least one slot")

    delta = compute_slot_delta(existing.days() if existing is not None else None, days)
    await _reserve_or_fail(slot_repo, delta.to_add)

    if existing is None:
        registration = await reg_repo.create(
            event.id,
            full_name=str(participant.full_name),
            mobile_number=str(participant.mobile_number),
            member_id=participant.member_id,
            country_code=participant.country_code,
            source_reference=participant.source_reference,
            days=days,
        )
    else:
        registration = await reg_repo.update(
            existing,
            full_name=str(participant.full_name),
            mobile_number=str(participant.mobile_number),
            member_id=participant.member_id,
            country_code=participant.country_code,
            days=days,
        )

    if delta.to_remove:
        await slot_repo.release({slot_id: 1 for slot_id in delta.to_remove})
    return RegistrationOutcome(registration_id=registration.id, created=existing is None, delta=delta)


async def register_or_update(
    slot_repo: SlotRepository,
    reg_repo: RegistrationRepository,
    waitlist_repo: WaitlistRepository,
    *,
    event: Event,
    participant: ParticipantSubmission,
    default_max_per_day: int,
) -> RegistrationOutcome:
    """Create or replace one participant's registration.

    Must run inside a transaction: a SlotFullError leaves counters and rows
    untouched only once the caller rolls back.
    """
    require_identity(participant, require_member_id=event.match_member_id)
    event_slots = await list_availability(slot_repo, event=event, default_max_per_day=default_max_per_day)
    existing = await _lock_existing(reg_repo, event, participant)

    if event_slots.no_slots_available and (existing is None or not existing.days()):
        entry = await join_waitlist(
            waitlist_repo,
            event=event,
            member_id=participant.member_id,
            full_name=participant.full_name,
            country_code=participant.country_code,
            mobile_number=participant.mobile_number,
        )
        return RegistrationOutcome(registration_id=entry.id, waitlisted=True)

    return await _apply_selection(
        slot_repo,
        reg_repo,
        event_slots=event_slots,
        participant=participant,
        existing=existing,
    )


async def bulk_register(
    slot_repo: SlotRepository,
    reg_repo: RegistrationRepository,
    *,
    event: Event,
    participants: Sequence[ParticipantSubmission],
    default_max_per_day: int,
) -> List[RegistrationOutcome]:
    """Register several participants as one unit; any failure aborts the batch."""
    if not participants:
        raise ValidationError("mainData must be a non-empty array")
    refs = [p.source_reference for p in participants if p.source_reference is not None]
    if len(refs) != len(set(refs)):
        raise ValidationError("duplicate source_reference in batch")
    for participant in participants:
        require_identity(participant, require_member_id=event.match_member_id)

    event_slots = await list_availability(slot_repo, event=event, default_max_per_day=default_max_per_day)
    outcomes: List[RegistrationOutcome] = []
    for participant in participants:
        existing = await _lock_existing(reg_repo, event, participant)
        outcomes.append(
            await _apply_selection(
                slot_repo,
                reg_repo,
                event_slots=event_slots,
                participant=participant,
                existing=existing,
            )
        )
    return outcomes


async def withdraw(
    slot_repo: SlotRepository,
    reg_repo: RegistrationRepository,
    *,
    event: Event,
    source_references: Sequence[int],
) -> WithdrawalOutcome:
    """Release every slot held by the referenced registrations and delete them."""
    if not source_references:
        raise ValidationError("source_reference must be a non-empty array")
    registrations = await reg_repo.list_by_source_references_for_update(event.id, sorted(set(source_references)))
    if not registrations:
        raise NotFoundError("registration not found")

    released = release_counts(registration.days() for registration in registrations)
    await slot_repo.release(released)
    await reg_repo.delete(registrations)
    return WithdrawalOutcome(
        registration_ids=[registration.id for registration in registrations],
        released=released,
    )


async def search_registrations(
    slot_repo: SlotRepository,
    reg_repo: RegistrationRepository,
    *,
    event: Event,
    mobile_number: str | None,
    member_id: str | None = None,
) -> List[RegistrationSummary]:
    if not str(mobile_number or "").strip():
        raise ValidationError("mobile number required")
    registrations = await reg_repo.list_by_identity(event.id, str(mobile_number).strip(), member_id)
    if not registrations:
        raise NotFoundError("registration not found")

    slot_times = {slot.id: slot.slot_time for slot in await slot_repo.list_for_event(event.id)}
    summaries: List[RegistrationSummary] = []
    for registration in registrations:
        stored = registration.days()
        days = {day: stored.get(day, []) for day in range(1, event.day_count + 1)}
        labels = {
            day_key(day): ", ".join(slot_times[i] for i in ids if i in slot_times) or "-"
            for day, ids in days.items()
        }
        summaries.append(
            RegistrationSummary(
                registration_id=registration.id,
                source_reference=registration.source_reference,
                full_name=registration.full_name,
                days=days,
                labels=labels,
            )
        )
    return summaries
