from ..domain.errors import ConflictError, ValidationError
from ..domain.repositories import WaitlistRepository
from ..models import Event, WaitlistEntry


async def join_waitlist(
    waitlist_repo: WaitlistRepository,
    *,
    event: Event,
    member_id: str | None,
    full_name: str | None,
    country_code: str | None,
    mobile_number: str | None,
) -> WaitlistEntry:
    fields = {
        "member_id": member_id,
        "full_name": full_name,
        "country_code": country_code,
        "mobile_number": mobile_number,
    }
    missing = [name for name, value in fields.items() if not str(value or "").strip()]
    if missing:
        raise ValidationError(f"missing required fields: {', '.join(missing)}")

    mobile = str(mobile_number).strip()
    if await waitlist_repo.exists(event.id, mobile):
        raise ConflictError("mobile number already exists")
    return await waitlist_repo.create(
        event.id,
        member_id=str(member_id).strip(),
        full_name=str(full_name).strip(),
        country_code=str(country_code).strip(),
        mobile_number=mobile,
    )
