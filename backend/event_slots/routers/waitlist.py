from fastapi import APIRouter, Depends, HTTPException, Path, status
from sqlalchemy.ext.asyncio import AsyncSession

from ..deps import get_session, load_event
from ..infrastructure.repositories import SqlAlchemyWaitlistRepository
from ..schemas import WaitlistCreate, WaitlistResult
from ..usecases import waitlist as waitlist_usecase
from ..utils.audit_log import emit_audit_log

router = APIRouter(prefix="/events", tags=["waitlist"])


@router.post("/{event_code}/waitlist", response_model=WaitlistResult, status_code=status.HTTP_201_CREATED)
async def join_waitlist(
    payload: WaitlistCreate,
    event_code: str = Path(..., min_length=1, max_length=32),
    session: AsyncSession = Depends(get_session),
) -> WaitlistResult:
    waitlist_repo = SqlAlchemyWaitlistRepository(session)
    data = payload.main_data
    async with session.begin():
        event = await load_event(session, event_code)
        entry = await waitlist_usecase.join_waitlist(
            waitlist_repo,
            event=event,
            member_id=data.member_id,
            full_name=data.full_name,
            country_code=data.country_code,
            mobile_number=data.mobile_number,
        )

    try:
        emit_audit_log(action="waitlist.joined", event_code=event.code, registration_id=None, extra={"waitlist_id": entry.id})
    except RuntimeError:
        raise HTTPException(status_code=status.HTTP_500_INTERNAL_SERVER_ERROR, detail="failed to record audit log")
    return WaitlistResult(id=entry.id)
