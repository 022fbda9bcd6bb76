"""
Application-wide exception hierarchy.

Services raise these types; ``create_app`` registers one handler per type so
every blueprint gets the same HTTP status and JSON envelope.

Usage:
    from flowreport.core.exceptions import NotFoundError, ValidationError

    raise NotFoundError(resource="FlowMetricConfig", resource_id="a1b2")
    raise ValidationError("metric_key is required", details={"metric_key": "..."})
"""


class NotFoundError(Exception):
    """Raised when a requested record does not exist.

    Maps to HTTP 404.

    Args:
        resource: Human-readable entity name (e.g. "FlowMetricConfig").
        resource_id: The key that was looked up.
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

    Maps to HTTP 400 in the application error handler, matching the
    ``success: false`` envelope the dashboard expects for bad config input.

    Args:
        message: Human-readable explanation of what failed.
        details: Optional field-level breakdown. Keys are field names.
    """

    def __init__(self, message: str, details: dict | None = None) -> None:
        self.details = details or {}
        super().__init__(message)


class ConflictError(Exception):
    """Raised when a write would duplicate a unique value.

    Maps to HTTP 409.
    """

    def __init__(self, resource: str, field: str, value: str | None = None) -> None:
        self.resource = resource
        self.field = field
        self.value = value
        super().__init__(f"{resource} with {field}={value!r} already exists")


class DataUnavailableError(Exception):
    """Raised when the stage-event or mapping store cannot be queried.

    Distinct from an empty result: "no deals" is a healthy answer, this is
    not. Maps to HTTP 503 so the dashboard can show an error state instead
    of a neutral "no data" state.
    """

    def __init__(self, message: str, source: str | None = None) -> None:
        self.source = source
        super().__init__(message)


class ExternalServiceError(Exception):
    """Raised when a Pipedrive API call fails after retries.

    Maps to HTTP 502.
    """

    def __init__(self, message: str, status_code: int | None = None) -> None:
        self.status_code = status_code
        super().__init__(message)
