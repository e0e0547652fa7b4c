"""
Core Exceptions
================

Custom exceptions for the application following clean architecture principles.

These exceptions define domain-specific errors that can be caught and handled
appropriately at the application boundaries.
"""

from typing import Optional, Any


class ApplicationException(Exception):
    """Base exception for all application errors."""

    def __init__(self, message: str, details: Optional[dict] = None):
        self.message = message
        self.details = details or {}
        super().__init__(message)


class DomainException(ApplicationException):
    """Base exception for domain logic violations."""


class RepositoryException(ApplicationException):
    """Base exception for repository/data access errors."""


class ValidationException(ApplicationException):
    """Exception for validation errors."""


class NotFoundError(ApplicationException):
    """Exception when a requested resource is not found."""

    def __init__(
        self,
        resource_type: str,
        resource_id: Optional[Any] = None,
        details: Optional[dict] = None
    ):
        self.resource_type = resource_type
        self.resource_id = resource_id
        message = f"{resource_type}"
        if resource_id is not None:
            message += f" with id '{resource_id}'"
        message += " not found"
        super().__init__(message, details)


class ConfigurationException(ApplicationException):
    """Exception for configuration errors."""


class ExternalServiceException(ApplicationException):
    """Base exception for external service failures."""

    def __init__(
        self,
        service_name: str,
        message: str,
        details: Optional[dict] = None
    ):
        self.service_name = service_name
        super().__init__(f"{service_name}: {message}", details)


# ========== Issue lifecycle errors ==========

class InvalidRangeError(DomainException):
    """Raised when a time range ends before it starts."""

    def __init__(self, start: Any, end: Any):
        self.start = start
        self.end = end
        super().__init__(
            f"Invalid time range: {end} is before {start}",
            {"start": str(start), "end": str(end)}
        )


class InvalidTransitionError(DomainException):
    """Raised for a status move that is not in the transition table."""

    def __init__(
        self,
        issue_id: Any,
        from_status: str,
        to_status: str,
        reason: Optional[str] = None
    ):
        self.issue_id = issue_id
        self.from_status = from_status
        self.to_status = to_status
        message = f"Issue {issue_id} cannot move from '{from_status}' to '{to_status}'"
        if reason:
            message += f": {reason}"
        super().__init__(
            message,
            {"issue_id": str(issue_id), "from": from_status, "to": to_status}
        )


class InvalidMappingError(DomainException):
    """Raised when type mapping is attempted on an issue that cannot take it."""

    def __init__(self, issue_id: Any, reason: str):
        self.issue_id = issue_id
        super().__init__(
            f"Invalid mapping for issue {issue_id}: {reason}",
            {"issue_id": str(issue_id)}
        )


class ConflictError(RepositoryException):
    """Raised when a concurrent writer changed the issue first."""

    def __init__(self, issue_id: Any, expected_updated_at: Any = None):
        self.issue_id = issue_id
        self.expected_updated_at = expected_updated_at
        super().__init__(
            f"Issue {issue_id} was modified concurrently",
            {"issue_id": str(issue_id), "expected_updated_at": str(expected_updated_at)}
        )


class PersistenceError(RepositoryException):
    """Raised when the backing store fails."""
