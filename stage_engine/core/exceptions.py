"""
Engine-wide exception hierarchy.

Services report expected failures as ``(None, err)`` result tuples so that
request handlers always produce a caller-visible outcome. These exception
types cover the remaining cases: programming errors at the service seam
and blueprint-level guards. Blueprints register handlers against them once
and get consistent HTTP status codes everywhere.

Usage:
    from stage_engine.core.exceptions import NotFoundError, ValidationError

    raise NotFoundError(resource="Stage", resource_id=stage_id)
    raise ValidationError("status is required", details={"status": "missing"})
"""


class NotFoundError(Exception):
    """Raised when a requested stage, approval or round does not exist.

    Args:
        resource: Human-readable entity name (e.g. "Stage", "Approval").
        resource_id: The id that was looked up. Included in logs and message.
    """

    def __init__(self, resource: str, resource_id: int | str | None = None) -> None:
        self.resource = resource
        self.resource_id = resource_id
        msg = f"{resource}"
        if resource_id is not None:
            msg += f" id={resource_id}"
        msg += " not found"
        super().__init__(msg)


class ValidationError(Exception):
    """Raised when input is well-formed but violates a business rule.

    Maps to HTTP 400 in blueprint error handlers.

    Args:
        message: Human-readable explanation of what failed.
        details: Optional field-level breakdown for structured API responses.
    """

    def __init__(self, message: str, details: dict | None = None) -> None:
        self.details = details or {}
        super().__init__(message)


class ConflictError(Exception):
    """Raised when an operation collides with concurrent or existing state.

    Maps to HTTP 409.

    Args:
        resource: Entity name.
        reason: Human-readable description of the conflict.
        retryable: True when the same call may succeed if repeated later.
    """

    def __init__(self, resource: str, reason: str, retryable: bool = False) -> None:
        self.resource = resource
        self.reason = reason
        self.retryable = retryable
        super().__init__(f"{resource}: {reason}")
