"""
Service-layer exception hierarchy.

Every service raises these types; blueprints register one handler per
type through ``siteops.utils.errors.register_error_handlers`` and get the
same HTTP status codes everywhere.

Usage:
    from siteops.core.exceptions import NotFoundError, ValidationError

    raise NotFoundError(resource="StockOrder", resource_id=42)
    raise ValidationError("At least one line is required")
    raise InvalidTransitionError("StockOrder", "Draft", "Collected")
"""


class NotFoundError(Exception):
    """Raised when a record does not exist inside the caller's tenant.

    Also used for cross-tenant lookups and soft-deleted rows: a 403 would
    confirm the record exists, a 404 does not.

    Args:
        resource: Human-readable model name (e.g. "Site", "ScheduledTalk").
        resource_id: The PK that was looked up. Logged, not returned.
        tenant_id: Optional scope that was enforced. Logged, not returned.
    """

    def __init__(
        self,
        resource: str,
        resource_id: int | str | None = None,
        tenant_id: int | None = None,
    ) -> None:
        self.resource = resource
        self.resource_id = resource_id
        self.tenant_id = tenant_id
        msg = f"{resource}"
        if resource_id is not None:
            msg += f" id={resource_id}"
        msg += " not found"
        if tenant_id is not None:
            msg += f" (tenant={tenant_id})"
        super().__init__(msg)


class ValidationError(Exception):
    """Raised when well-formed input violates a business rule.

    Examples: insufficient available stock, a quiz that has not been
    passed, a RAMS document edited outside Draft/Rejected.

    Maps to HTTP 400.

    Args:
        message: Human-readable explanation, returned verbatim.
        details: Optional field-level breakdown.
    """

    def __init__(self, message: str, details: dict | None = None) -> None:
        self.details = details or {}
        super().__init__(message)


class InvalidTransitionError(ValidationError):
    """Raised when a status change is not allowed from the current status.

    Maps to HTTP 409.
    """

    def __init__(self, resource: str, current: str, target: str, message: str | None = None) -> None:
        self.resource = resource
        self.current = current
        self.target = target
        super().__init__(
            message or f"Cannot move {resource} from {current} to {target}",
            details={"current_status": current, "target_status": target},
        )


class ConflictError(Exception):
    """Raised when an operation would duplicate a unique business key.

    Maps to HTTP 409.

    Args:
        resource: Model name.
        field: The unique field that would be duplicated.
        value: The conflicting value.
    """

    def __init__(self, resource: str, field: str, value: str | None = None) -> None:
        self.resource = resource
        self.field = field
        self.value = value
        msg = f"{resource} with {field}={value!r} already exists"
        super().__init__(msg)
