"""
Service-wide exception hierarchy.

Services raise these types; blueprints register handlers against them
once and get consistent HTTP status codes everywhere.

Usage:
    from caredraft.core.exceptions import NotFoundError, PermissionDenied

    raise NotFoundError(resource="Proposal", resource_id=pid)
    raise PermissionDenied("cross-organization access")
    raise ValidationError("Comments are required when rejecting a proposal",
                          details={"comment": "required"})
"""


class NotFoundError(Exception):
    """Raised when a requested resource does not exist within the given scope.

    Maps to HTTP 404.

    Args:
        resource: Human-readable model/entity name (e.g. "Proposal").
        resource_id: The PK that was looked up. Included in logs, not in HTTP response.
        organization_id: Optional scope that was enforced. For debug logging only.
    """

    def __init__(
        self,
        resource: str,
        resource_id: str | None = None,
        organization_id: str | None = None,
    ) -> None:
        self.resource = resource
        self.resource_id = resource_id
        self.organization_id = organization_id
        msg = f"{resource}"
        if resource_id is not None:
            msg += f" id={resource_id}"
        msg += " not found"
        if organization_id is not None:
            msg += f" (organization={organization_id})"
        super().__init__(msg)


class ValidationError(Exception):
    """Raised when well-formed input violates a business rule.

    Maps to HTTP 422 in blueprint error handlers.

    Args:
        message: Human-readable explanation of what failed.
        details: Optional field-level breakdown for structured API responses.
    """

    def __init__(self, message: str, details: dict | None = None) -> None:
        self.details = details or {}
        super().__init__(message)


class PermissionDenied(Exception):
    """Raised when the status policy rejects a transition.

    ``reason`` is the policy's human-readable explanation and is returned
    verbatim to API callers. Maps to HTTP 403.
    """

    def __init__(self, reason: str) -> None:
        self.reason = reason
        super().__init__(reason)


class ConcurrentModificationError(Exception):
    """Raised when the stored status no longer matches the caller's expectation.

    Either the caller's ``from_status`` was stale when the proposal was
    loaded, or another writer changed the status between read and the
    conditional update. Maps to HTTP 409.
    """

    def __init__(self, proposal_id: str, expected: str, actual: str | None = None) -> None:
        self.proposal_id = proposal_id
        self.expected = expected
        self.actual = actual
        msg = f"Proposal {proposal_id} is no longer in status '{expected}'"
        if actual is not None:
            msg += f" (current: '{actual}')"
        super().__init__(msg)


class PersistenceError(Exception):
    """Raised when the database rejects a write. Maps to HTTP 500."""


class NotificationDeliveryError(Exception):
    """Raised inside the deadline batch when the notification sink fails.

    Never reaches HTTP callers; the batch records it per proposal.
    """

    def __init__(self, user_id: str, notification_type: str) -> None:
        self.user_id = user_id
        self.notification_type = notification_type
        super().__init__(f"Failed to deliver '{notification_type}' notification to user {user_id}")
