class DomainError(Exception):
    """Base for errors that are turned into the `{success: false}` envelope."""

    status_code = 400

    def __init__(self, message: str) -> None:
        self.message = message
        super().__init__(message)


class ValidationError(DomainError):
    status_code = 400


class SlotFullError(DomainError):
    """Capacity check failed; the caller must reload availability and re-select."""

    status_code = 409

    def __init__(self, slot_id: int | None = None, message: str | None = None) -> None:
        self.slot_id = slot_id
        if message is None:
            message = (
                f"slot {slot_id} is no longer available"
                if slot_id is not None
                else "selected slot(s) are no longer available"
            )
        super().__init__(message)


class NotFoundError(DomainError):
    status_code = 404


class ConflictError(DomainError):
    status_code = 409


class TransientError(DomainError):
    status_code = 503
