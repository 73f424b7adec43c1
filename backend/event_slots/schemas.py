from typing import Any, Dict, List, Literal, Optional

from pydantic import AliasChoices, BaseModel, ConfigDict, Field, model_validator

from .domain.constraints import ConstraintResult, SlotState, has_consecutive_or_disabled_in_between
from .domain.errors import DomainError
from .domain.services import ParticipantSubmission, day_key, split_day_keys
from .models import Event
from .usecases.registrations import RegistrationSummary
from .usecases.slots import Availability

_MEMBER_ID = AliasChoices("member_id", "kcdt_member_id")


def _collect_days(data: Any) -> Any:
    if not isinstance(data, dict):
        return data
    try:
        days, rest = split_day_keys(data)
    except DomainError as exc:
        raise ValueError(exc.message) from exc
    rest.setdefault("days", days)
    return rest


def _days_to_wire(days: Dict[int, List[int]]) -> Dict[str, List[int]]:
    return {day_key(day): ids for day, ids in sorted(days.items())}


class SlotAvailability(BaseModel):
    id: int
    day: int
    slot_time: str
    max_capacity: int
    registration_count: int
    remaining: int
    disabled: bool

    @classmethod
    def from_state(cls, state: SlotState) -> "SlotAvailability":
        return cls(
            id=state.id,
            day=state.day,
            slot_time=state.slot_time,
            max_capacity=state.max_capacity,
            registration_count=state.registration_count,
            remaining=state.remaining,
            disabled=state.disabled,
        )


class EventRead(BaseModel):
    code: str
    name: str
    activity_label: str
    day_count: int
    max_slots_per_day: int

    @classmethod
    def from_db(cls, *, event: Event, max_slots_per_day: int) -> "EventRead":
        return cls(
            code=event.code,
            name=event.name,
            activity_label=event.activity_label,
            day_count=event.day_count,
            max_slots_per_day=max_slots_per_day,
        )


class AvailabilityResponse(BaseModel):
    success: Literal[True] = True
    event: EventRead
    slots: List[SlotAvailability]
    no_slots_available: bool

    @classmethod
    def from_availability(cls, availability: Availability) -> "AvailabilityResponse":
        return cls(
            event=EventRead.from_db(event=availability.event, max_slots_per_day=availability.max_per_day),
            slots=[SlotAvailability.from_state(state) for state in availability.slots],
            no_slots_available=availability.no_slots_available,
        )


class ParticipantData(BaseModel):
    """One participant as submitted by a form; `dayN` keys are gathered into `days`."""

    model_config = ConfigDict(coerce_numbers_to_str=True)

    member_id: Optional[str] = Field(default=None, validation_alias=_MEMBER_ID)
    full_name: Optional[str] = None
    country_code: Optional[str] = None
    mobile_number: Optional[str] = None
    source_reference: Optional[int] = None
    days: Dict[int, List[int]] = Field(default_factory=dict)

    @model_validator(mode="before")
    @classmethod
    def _gather_days(cls, data: Any) -> Any:
        return _collect_days(data)

    def to_submission(self) -> ParticipantSubmission:
        return ParticipantSubmission(
            full_name=self.full_name.strip() if self.full_name else self.full_name,
            mobile_number=self.mobile_number.strip() if self.mobile_number else self.mobile_number,
            days=dict(self.days),
            member_id=self.member_id,
            country_code=self.country_code,
            source_reference=self.source_reference,
        )


class RegistrationCreate(BaseModel):
    main_data: ParticipantData = Field(alias="mainData")


class RegistrationAction(BaseModel):
    action: str
    main_data: Optional[List[ParticipantData]] = Field(default=None, alias="mainData")
    source_reference: Optional[List[int]] = None


class WaitlistData(BaseModel):
    model_config = ConfigDict(coerce_numbers_to_str=True)

    member_id: Optional[str] = Field(default=None, validation_alias=_MEMBER_ID)
    full_name: Optional[str] = None
    country_code: Optional[str] = None
    mobile_number: Optional[str] = None


class WaitlistCreate(BaseModel):
    main_data: WaitlistData = Field(alias="mainData")


class RegistrationSearch(BaseModel):
    model_config = ConfigDict(coerce_numbers_to_str=True)

    mobile_number: Optional[str] = None
    member_id: Optional[str] = Field(default=None, validation_alias=_MEMBER_ID)


class SelectionCheck(BaseModel):
    days: Dict[int, List[int]] = Field(default_factory=dict)

    @model_validator(mode="before")
    @classmethod
    def _gather_days(cls, data: Any) -> Any:
        return _collect_days(data)


class RegistrationResult(BaseModel):
    success: Literal[True] = True
    id: int
    created: bool = False
    waitlisted: bool = False


class BulkRegistrationResult(BaseModel):
    success: Literal[True] = True
    ids: List[int]


class WithdrawalResult(BaseModel):
    success: Literal[True] = True
    withdrawn: List[int]


class WaitlistResult(BaseModel):
    success: Literal[True] = True
    id: int


class RegistrationSummaryRead(BaseModel):
    registration_id: int
    source_reference: Optional[int]
    full_name: str
    slots: Dict[str, List[int]]
    labels: Dict[str, str]

    @classmethod
    def from_summary(cls, summary: RegistrationSummary) -> "RegistrationSummaryRead":
        return cls(
            registration_id=summary.registration_id,
            source_reference=summary.source_reference,
            full_name=summary.full_name,
            slots=_days_to_wire(summary.days),
            labels=summary.labels,
        )


class SearchResult(BaseModel):
    success: Literal[True] = True
    registrations: List[RegistrationSummaryRead]


class SelectionCheckResult(BaseModel):
    success: Literal[True] = True
    slots: List[SlotAvailability]
    selections: Dict[str, List[int]]
    hints: Dict[str, bool]

    @classmethod
    def from_result(cls, result: ConstraintResult) -> "SelectionCheckResult":
        return cls(
            slots=[SlotAvailability.from_state(state) for state in result.slots],
            selections=_days_to_wire(result.selections),
            hints={
                day_key(day): has_consecutive_or_disabled_in_between(day_slots, result.selections.get(day, []))
                for day, day_slots in sorted(result.slots_by_day.items())
            },
        )


class ErrorEnvelope(BaseModel):
    success: Literal[False] = False
    message: str
    full: Optional[bool] = None
