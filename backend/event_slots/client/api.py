"""
Async HTTP client for the slot registration API.

Failed responses are decoded from the `{success: false, message}` envelope
and raised as the matching domain error, so callers handle one error family
whether they talk to the use cases directly or over HTTP.
"""

import logging
from typing import Any, Dict, List, Mapping, Optional, Sequence

import httpx

from ..domain.errors import (
    ConflictError,
    DomainError,
    NotFoundError,
    SlotFullError,
    TransientError,
    ValidationError,
)
from ..domain.services import day_key
from ..utils.request_id import REQUEST_ID_HEADER, generate_request_id

logger = logging.getLogger(__name__)

_STATUS_ERRORS: Dict[int, type[DomainError]] = {
    400: ValidationError,
    404: NotFoundError,
    409: ConflictError,
}


def error_from_response(status_code: int, body: Mapping[str, Any]) -> DomainError:
    message = str(body.get("message") or f"request failed with status {status_code}")
    if body.get("full"):
        return SlotFullError(message=message)
    if status_code >= 500:
        return TransientError(message)
    return _STATUS_ERRORS.get(status_code, DomainError)(message)


def days_to_payload(days: Mapping[int, Sequence[int]]) -> Dict[str, List[int]]:
    return {day_key(day): list(ids) for day, ids in sorted(days.items())}


class SlotRegistrationApi:
    def __init__(
        self,
        base_url: str,
        *,
        client: Optional[httpx.AsyncClient] = None,
        timeout: float = 10.0,
    ):
        self._owns_client = client is None
        self._client = client or httpx.AsyncClient(base_url=base_url, timeout=timeout)

    async def __aenter__(self) -> "SlotRegistrationApi":
        return self

    async def __aexit__(self, *exc_info: object) -> None:
        await self.aclose()

    async def aclose(self) -> None:
        if self._owns_client:
            await self._client.aclose()

    async def _request(self, method: str, path: str, payload: Optional[Dict[str, Any]] = None) -> Dict[str, Any]:
        headers = {REQUEST_ID_HEADER: generate_request_id()}
        try:
            response = await self._client.request(method, path, json=payload, headers=headers)
        except httpx.HTTPError as exc:
            logger.warning("%s %s failed: %s", method, path, exc.__class__.__name__)
            raise TransientError("network error, please retry") from exc

        try:
            body = response.json()
        except ValueError:
            body = {}
        if not isinstance(body, dict):
            body = {}
        if response.is_success and body.get("success", True):
            return body
        raise error_from_response(response.status_code, body)

    async def list_slots(self, event_code: str) -> Dict[str, Any]:
        return await self._request("GET", f"/events/{event_code}/slots")

    async def check_selection(self, event_code: str, days: Mapping[int, Sequence[int]]) -> Dict[str, Any]:
        return await self._request("POST", f"/events/{event_code}/slots/constraints", days_to_payload(days))

    async def register(self, event_code: str, main_data: Dict[str, Any]) -> Dict[str, Any]:
        return await self._request("POST", f"/events/{event_code}/registrations", {"mainData": main_data})

    async def bulk_register(self, event_code: str, participants: Sequence[Dict[str, Any]]) -> Dict[str, Any]:
        return await self._request(
            "POST",
            f"/events/{event_code}/registrations/actions",
            {"action": f"REGISTER_{event_code.upper()}", "mainData": list(participants)},
        )

    async def withdraw(self, event_code: str, source_references: Sequence[int]) -> Dict[str, Any]:
        return await self._request(
            "POST",
            f"/events/{event_code}/registrations/actions",
            {"action": f"DELETE_{event_code.upper()}", "source_reference": list(source_references)},
        )

    async def join_waitlist(self, event_code: str, main_data: Dict[str, Any]) -> Dict[str, Any]:
        return await self._request("POST", f"/events/{event_code}/waitlist", {"mainData": main_data})

    async def search(self, event_code: str, mobile_number: str, member_id: Optional[str] = None) -> Dict[str, Any]:
        payload: Dict[str, Any] = {"mobile_number": mobile_number}
        if member_id is not None:
            payload["member_id"] = member_id
        return await self._request("POST", f"/events/{event_code}/registrations/search", payload)
