from typing import Union

from fastapi import APIRouter, Depends, HTTPException, Path, status
from sqlalchemy.ext.asyncio import AsyncSession

from ..config import Settings
from ..deps import get_app_settings, get_session, load_event
from ..domain.errors import ValidationError
from ..infrastructure.repositories import (
    SqlAlchemyRegistrationRepository,
    SqlAlchemySlotRepository,
    SqlAlchemyWaitlistRepository,
)
from ..models import Event
from ..schemas import (
    BulkRegistrationResult,
    RegistrationAction,
    RegistrationCreate,
    RegistrationResult,
    RegistrationSearch,
    RegistrationSummaryRead,
    SearchResult,
    WithdrawalResult,
)
from ..usecases import registrations as registration_usecase
from ..usecases.registrations import RegistrationOutcome, WithdrawalOutcome
from ..utils.audit_log import emit_audit_log

router = APIRouter(prefix="/events", tags=["registrations"])

REGISTER_PREFIX = "REGISTER_"
DELETE_PREFIX = "DELETE_"


def parse_action(action: str, event: Event) -> str:
    """Return "register" or "delete" for an action addressed to `event`."""
    normalized = action.strip().upper()
    for prefix, kind in ((REGISTER_PREFIX, "register"), (DELETE_PREFIX, "delete")):
        if normalized.startswith(prefix):
            if normalized[len(prefix):] != event.code.upper():
                raise ValidationError(f"action {action} does not match event {event.code}")
            return kind
    raise ValidationError(f"unknown action {action}")


def _audit_outcome(event: Event, outcome: RegistrationOutcome, source_reference: int | None) -> None:
    if outcome.waitlisted:
        emit_audit_log(
            action="waitlist.joined",
            event_code=event.code,
            registration_id=None,
            extra={"waitlist_id": outcome.registration_id},
        )
        return
    emit_audit_log(
        action="registration.created" if outcome.created else "registration.updated",
        event_code=event.code,
        registration_id=outcome.registration_id,
        source_reference=source_reference,
        slots_added=outcome.delta.to_add,
        slots_removed=outcome.delta.to_remove,
        message="selection unchanged" if outcome.delta.is_empty else None,
    )


def _audit_withdrawal(event: Event, outcome: WithdrawalOutcome) -> None:
    for registration_id in outcome.registration_ids:
        emit_audit_log(
            action="registration.withdrawn",
            event_code=event.code,
            registration_id=registration_id,
            extra={"released": {str(slot_id): count for slot_id, count in outcome.released.items()}},
        )


@router.post("/{event_code}/registrations", response_model=RegistrationResult)
async def register(
    payload: RegistrationCreate,
    event_code: str = Path(..., min_length=1, max_length=32),
    session: AsyncSession = Depends(get_session),
    settings: Settings = Depends(get_app_settings),
) -> RegistrationResult:
    slot_repo = SqlAlchemySlotRepository(session)
    reg_repo = SqlAlchemyRegistrationRepository(session)
    waitlist_repo = SqlAlchemyWaitlistRepository(session)
    participant = payload.main_data.to_submission()
    async with session.begin():
        event = await load_event(session, event_code)
        outcome = await registration_usecase.register_or_update(
            slot_repo,
            reg_repo,
            waitlist_repo,
            event=event,
            participant=participant,
            default_max_per_day=settings.default_max_slots_per_day,
        )

    try:
        _audit_outcome(event, outcome, participant.source_reference)
    except RuntimeError:
        raise HTTPException(status_code=status.HTTP_500_INTERNAL_SERVER_ERROR, detail="failed to record audit log")
    return RegistrationResult(id=outcome.registration_id, created=outcome.created, waitlisted=outcome.waitlisted)


@router.post("/{event_code}/registrations/actions")
async def registration_action(
    payload: RegistrationAction,
    event_code: str = Path(..., min_length=1, max_length=32),
    session: AsyncSession = Depends(get_session),
    settings: Settings = Depends(get_app_settings),
) -> Union[BulkRegistrationResult, WithdrawalResult]:
    """Bulk register (`REGISTER_<CODE>`) or withdraw (`DELETE_<CODE>`) as one transaction."""
    slot_repo = SqlAlchemySlotRepository(session)
    reg_repo = SqlAlchemyRegistrationRepository(session)
    async with session.begin():
        event = await load_event(session, event_code)
        kind = parse_action(payload.action, event)
        if kind == "delete":
            source_references = list(payload.source_reference or [])
            withdrawal = await registration_usecase.withdraw(
                slot_repo,
                reg_repo,
                event=event,
                source_references=source_references,
            )
        else:
            participants = [data.to_submission() for data in payload.main_data or []]
            outcomes = await registration_usecase.bulk_register(
                slot_repo,
                reg_repo,
                event=event,
                participants=participants,
                default_max_per_day=settings.default_max_slots_per_day,
            )

    try:
        if kind == "delete":
            _audit_withdrawal(event, withdrawal)
        else:
            for participant, outcome in zip(participants, outcomes):
                _audit_outcome(event, outcome, participant.source_reference)
    except RuntimeError:
        raise HTTPException(status_code=status.HTTP_500_INTERNAL_SERVER_ERROR, detail="failed to record audit log")

    if kind == "delete":
        return WithdrawalResult(withdrawn=withdrawal.registration_ids)
    return BulkRegistrationResult(ids=[outcome.registration_id for outcome in outcomes])


@router.post("/{event_code}/registrations/search", response_model=SearchResult)
async def search(
    payload: RegistrationSearch,
    event_code: str = Path(..., min_length=1, max_length=32),
    session: AsyncSession = Depends(get_session),
) -> SearchResult:
    event = await load_event(session, event_code)
    slot_repo = SqlAlchemySlotRepository(session)
    reg_repo = SqlAlchemyRegistrationRepository(session)
    summaries = await registration_usecase.search_registrations(
        slot_repo,
        reg_repo,
        event=event,
        mobile_number=payload.mobile_number,
        member_id=payload.member_id,
    )
    return SearchResult(registrations=[RegistrationSummaryRead.from_summary(s) for s in summaries])
