import logging
from dataclasses import dataclass
from typing import Any, Dict, List, Optional, Sequence

from ..domain.constraints import (
    SlotState,
    compute_disabled_and_pruned_selection,
    group_by_day,
    has_consecutive_or_disabled_in_between,
    toggle_slot,
)
from ..domain.errors import DomainError, SlotFullError, ValidationError
from ..domain.services import union_slots
from .api import SlotRegistrationApi, days_to_payload

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class ParticipantIdentity:
    full_name: str
    mobile_number: str
    member_id: Optional[str] = None
    country_code: Optional[str] = None
    source_reference: Optional[int] = None

    def to_payload(self) -> Dict[str, Any]:
        payload: Dict[str, Any] = {
            "member_id": self.member_id,
            "full_name": self.full_name,
            "country_code": self.country_code,
            "mobile_number": self.mobile_number,
        }
        if self.source_reference is not None:
            payload["source_reference"] = self.source_reference
        return payload


class SlotSelectionForm:
    """One participant's slot picking session for a single event.

    Selection changes run the constraint engine locally; only loading,
    submitting and withdrawing talk to the server. Every server call sets
    `error` on failure and never runs while another one is in flight.
    """

    def __init__(self, api: SlotRegistrationApi, event_code: str):
        self.api = api
        self.event_code = event_code
        self.day_count = 0
        self.max_per_day = 1
        self.slots: List[SlotState] = []
        self.selections: Dict[int, List[int]] = {}
        self.no_slots_available = False
        self.busy = False
        self.error: Optional[str] = None
        self.registration_id: Optional[int] = None
        self.waitlisted = False

    @property
    def slots_by_day(self) -> Dict[int, List[SlotState]]:
        return group_by_day(self.slots)

    def hints(self) -> Dict[int, bool]:
        return {
            day: has_consecutive_or_disabled_in_between(day_slots, self.selections.get(day, []))
            for day, day_slots in self.slots_by_day.items()
        }

    def _recompute(self) -> None:
        result = compute_disabled_and_pruned_selection(self.slots, self.selections, self.max_per_day)
        self.slots = result.slots
        self.selections = result.selections

    def _apply_availability(self, body: Dict[str, Any]) -> None:
        event = body["event"]
        self.day_count = int(event["day_count"])
        self.max_per_day = int(event["max_slots_per_day"])
        self.no_slots_available = bool(body.get("no_slots_available"))
        self.slots = [
            SlotState(
                id=int(row["id"]),
                day=int(row["day"]),
                slot_time=str(row["slot_time"]),
                max_capacity=int(row["max_capacity"]),
                registration_count=int(row["registration_count"]),
            )
            for row in body.get("slots", [])
        ]
        self._recompute()

    async def _reload(self) -> None:
        self._apply_availability(await self.api.list_slots(self.event_code))

    async def load_availability(self) -> bool:
        if self.busy:
            return False
        self.busy = True
        self.error = None
        try:
            await self._reload()
            return True
        except DomainError as exc:
            self.error = exc.message
            return False
        finally:
            self.busy = False

    def toggle(self, day: int, slot_id: int) -> bool:
        try:
            result = toggle_slot(
                self.slots,
                self.selections,
                day=day,
                slot_id=slot_id,
                max_per_day=self.max_per_day,
            )
        except ValidationError as exc:
            self.error = exc.message
            return False
        self.error = None
        self.slots = result.slots
        self.selections = result.selections
        return True

    async def submit(self, identity: ParticipantIdentity) -> bool:
        if self.busy:
            return False
        self.busy = True
        self.error = None
        try:
            if self.no_slots_available:
                body = await self.api.join_waitlist(self.event_code, identity.to_payload())
                self.registration_id = body.get("id")
                self.waitlisted = True
                return True

            if not union_slots(self.selections):
                raise ValidationError("select at least one slot")
            main_data = {**identity.to_payload(), **days_to_payload(self.selections)}
            body = await self.api.register(self.event_code, main_data)
            self.registration_id = body.get("id")
            self.waitlisted = bool(body.get("waitlisted"))
            return True
        except SlotFullError as exc:
            self.error = exc.message
            self.selections = {}
            try:
                await self._reload()
            except DomainError as reload_exc:
                logger.warning("reload after capacity conflict failed: %s", reload_exc.message)
            return False
        except DomainError as exc:
            self.error = exc.message
            return False
        finally:
            self.busy = False

    async def withdraw(self, source_references: Sequence[int]) -> bool:
        if self.busy:
            return False
        self.busy = True
        self.error = None
        try:
            await self.api.withdraw(self.event_code, source_references)
            self.registration_id = None
            self.selections = {}
            return True
        except DomainError as exc:
            self.error = exc.message
            return False
        finally:
            self.busy = False

    async def change_slots(self, source_references: Sequence[int]) -> bool:
        """Withdraw the current registration and start a fresh selection."""
        if not await self.withdraw(source_references):
            return False
        return await self.load_availability()
