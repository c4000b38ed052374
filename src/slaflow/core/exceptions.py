"""
Core Exceptions
================

Custom exceptions for the SLA engine and workflow executor.

These exceptions define domain-specific errors that are caught and
converted to structured results at node, timer and workflow boundaries.
"""

from typing import Optional


class ApplicationException(Exception):
    """Base exception for all application errors."""

    def __init__(self, message: str, details: Optional[dict] = None):
        self.message = message
        self.details = details or {}
        super().__init__(message)

    def to_dict(self) -> dict:
        """Structured error object for callers at the boundary."""
        return {
            "success": False,
            "message": self.message,
            "error": self.__class__.__name__,
            "details": self.details,
        }


class DomainException(ApplicationException):
    """Base exception for domain logic violations."""


class RepositoryException(ApplicationException):
    """Base exception for repository/data access errors."""


class ValidationException(ApplicationException):
    """Exception for validation errors."""


class ResourceNotFoundException(ApplicationException):
    """Exception when a requested resource is not found."""

    def __init__(
        self,
        resource_type: str,
        resource_id: Optional[str] = None,
        details: Optional[dict] = None
    ):
        self.resource_type = resource_type
        self.resource_id = resource_id
        message = f"{resource_type}"
        if resource_id:
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


class NotificationException(ExternalServiceException):
    """Exception for notification sink failures."""

    def __init__(self, message: str, details: Optional[dict] = None):
        super().__init__("Notification Sink", message, details)


class WorkflowGraphException(DomainException):
    """Exception for malformed workflow graphs (missing trigger, bad node type)."""

    def __init__(
        self,
        workflow_id: Optional[str],
        message: str,
        details: Optional[dict] = None
    ):
        self.workflow_id = workflow_id
        super().__init__(
            message,
            details or {"workflow_id": workflow_id}
        )

