from fastapi import APIRouter, Depends, Path
from sqlalchemy.ext.asyncio import AsyncSession

from ..config import Settings
from ..deps import get_app_settings, get_session, load_event
from ..infrastructure.repositories import SqlAlchemySlotRepository
from ..schemas import AvailabilityResponse, SelectionCheck, SelectionCheckResult
from ..usecases import slots as slot_usecase

router = APIRouter(prefix="/events", tags=["slots"])


@router.get("/{event_code}/slots", response_model=AvailabilityResponse)
async def list_slots(
    event_code: str = Path(..., min_length=1, max_length=32),
    session: AsyncSession = Depends(get_session),
    settings: Settings = Depends(get_app_settings),
) -> AvailabilityResponse:
    event = await load_event(session, event_code)
    slot_repo = SqlAlchemySlotRepository(session)
    availability = await slot_usecase.list_availability(
        slot_repo,
        event=event,
        default_max_per_day=settings.default_max_slots_per_day,
    )
    return AvailabilityResponse.from_availability(availability)


@router.post("/{event_code}/slots/constraints", response_model=SelectionCheckResult)
async def check_selection(
    payload: SelectionCheck,
    event_code: str = Path(..., min_length=1, max_length=32),
    session: AsyncSession = Depends(get_session),
    settings: Settings = Depends(get_app_settings),
) -> SelectionCheckResult:
    """Disabled flags and the pruned selection the form should display."""
    event = await load_event(session, event_code)
    slot_repo = SqlAlchemySlotRepository(session)
    _, result = await slot_usecase.evaluate_selection(
        slot_repo,
        event=event,
        selections=payload.days,
        default_max_per_day=settings.default_max_slots_per_day,
    )
    return SelectionCheckResult.from_result(result)
