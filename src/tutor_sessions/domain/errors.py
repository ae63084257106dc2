"""Error taxonomy for the session lifecycle."""


class PolicyRejection(Exception):
    """An operation was refused by lifecycle policy or validation.

    Never retried and never routed to the fallback store.
    """

    def __init__(self, code: str, message: str) -> None:
        super().__init__(message)
        self.code = code
        self.message = message


class RecordNotFound(PolicyRejection):
    """The addressed record does not exist in the store that was asked."""

    def __init__(self, entity: str, record_id: str) -> None:
        super().__init__("not_found", f"{entity} not found")
        self.entity = entity
        self.record_id = record_id


class AccessDenied(PolicyRejection):
    """The caller is not a participant of the addressed record."""

    def __init__(self, message: str = "Access denied") -> None:
        super().__init__("access_denied", message)


class ScheduleConflict(PolicyRejection):
    """A requested time slot overlaps an open booking of either participant."""

    def __init__(self) -> None:
        super().__init__(
            "time_slot_conflict", "Time slot conflicts with existing session"
        )


class BackendUnavailable(Exception):
    """The primary backend could not service the request."""


class LocalStorageFailure(Exception):
    """The local mirror store failed to persist a write."""
