"""
Scheduling domain errors

Every error carries a `kind`, a human readable message and optional details
(conflicting interval, offending field) so the API layer can render a
structured failure instead of a raw status code.
"""

from typing import Any, Optional


class SchedulingError(Exception):
    """Base class for all scheduling domain errors"""

    kind = "scheduling_error"
    status_code = 400

    def __init__(self, message: str, details: Optional[dict[str, Any]] = None):
        super().__init__(message)
        self.message = message
        self.details = details or {}

    def to_dict(self) -> dict:
        return {"kind": self.kind, "message": self.message, "details": self.details}


class ValidationError(SchedulingError):
    """Malformed or missing fields, unknown appointment type or complexity"""

    kind = "validation_error"

    def __init__(self, field: str, message: str, value: Any = None):
        super().__init__(
            f"Invalid {field}: {message}",
            {"field": field, "value": None if value is None else str(value)},
        )
        self.field = field


class SlotUnavailable(SchedulingError):
    """Requested interval conflicts with an active reservation"""

    kind = "slot_unavailable"
    status_code = 409

    def __init__(self, message: str, start=None, end=None, conflict: Optional[dict] = None):
        details: dict[str, Any] = {}
        if start is not None:
            details["requested"] = {"start": start.isoformat(), "end": end.isoformat()}
        if conflict:
            details["conflict"] = conflict
        super().__init__(message, details)


class SchedulingConflict(SchedulingError):
    """No feasible slot exists before the deadline"""

    kind = "scheduling_conflict"
    status_code = 409


class NotFound(SchedulingError):
    kind = "not_found"
    status_code = 404

    def __init__(self, entity: str, identifier: str):
        super().__init__(f"{entity} not found", {"entity": entity, "id": identifier})


class DependencyUnmet(SchedulingError):
    """A referenced dependency can never complete (missing or cancelled)"""

    kind = "dependency_unmet"
    status_code = 409

    def __init__(self, dependency_id: str, reason: str):
        super().__init__(
            f"Dependency {dependency_id} is {reason}",
            {"dependency": dependency_id, "reason": reason},
        )


class SchedulingUnavailable(SchedulingError):
    """Persistence kept failing after bounded retries"""

    kind = "unavailable"
    status_code = 503
