"""
Custom Exception Classes for the consent store

This module defines the error taxonomy shared by the persistence layer and the
consent workflow. Every error carries an HTTP-style status code and a details
dict so the (external) HTTP layer can render it without extra mapping.

Database driver errors are never wrapped here: they propagate unchanged.
"""

from typing import Any

from fastapi import status


class ConsentStoreError(Exception):
    """Base exception class for all consent store exceptions"""

    def __init__(
        self,
        message: str,
        status_code: int = status.HTTP_500_INTERNAL_SERVER_ERROR,
        details: dict[str, Any] | None = None,
    ):
        self.message = message
        self.status_code = status_code
        self.details = details or {}
        super().__init__(self.message)


# ============================================================================
# Resource Not Found Exceptions
# ============================================================================


class ResourceNotFoundError(ConsentStoreError):
    """Base class for resource not found errors"""

    def __init__(self, resource_type: str, resource_id: Any | None = None, details: dict[str, Any] | None = None):
        message = f"{resource_type} not found"
        if resource_id is not None:
            message = f"{resource_type} with id '{resource_id}' not found"
        error_details = {"resource_type": resource_type, "resource_id": resource_id}
        error_details.update(details or {})
        super().__init__(message=message, status_code=status.HTTP_404_NOT_FOUND, details=error_details)


class UserNotFoundError(ResourceNotFoundError):
    """Raised when a user is not found"""

    def __init__(self, user_id: Any | None = None, details: dict[str, Any] | None = None):
        super().__init__(resource_type="User", resource_id=user_id, details=details)


class ConsentNotFoundError(ResourceNotFoundError):
    """Raised when a consent is not found"""

    def __init__(self, consent_id: Any | None = None, details: dict[str, Any] | None = None):
        super().__init__(resource_type="Consent", resource_id=consent_id, details=details)


class DomainNotFoundError(ResourceNotFoundError):
    """Raised when a domain is not found"""

    def __init__(self, domain: Any | None = None):
        super().__init__(resource_type="Domain", resource_id=domain)


class PolicyNotFoundError(ResourceNotFoundError):
    """Raised when a consent policy is not found"""

    def __init__(self, policy_id: Any | None = None):
        super().__init__(resource_type="ConsentPolicy", resource_id=policy_id)


# ============================================================================
# Conflict Exceptions
# ============================================================================


class ConflictError(ConsentStoreError):
    """Raised when a mutation is not allowed given the current state"""

    def __init__(self, message: str, details: dict[str, Any] | None = None):
        super().__init__(message=message, status_code=status.HTTP_409_CONFLICT, details=details or {})


class ConsentAlreadyWithdrawnError(ConflictError):
    """Raised when withdrawing a consent that is no longer active"""

    def __init__(self, consent_id: Any):
        super().__init__(
            message="Consent has already been withdrawn",
            details={"consent_id": consent_id},
        )


# ============================================================================
# Validation Exceptions
# ============================================================================


class ValidationError(ConsentStoreError):
    """Raised when input validation fails"""

    def __init__(self, message: str, field: str | None = None, details: dict[str, Any] | None = None):
        error_details = details or {}
        if field:
            error_details["field"] = field
        super().__init__(message=message, status_code=status.HTTP_400_BAD_REQUEST, details=error_details)


class InvalidWhereClauseError(ValidationError):
    """Raised when a where condition uses an unknown operator, connector or field"""

    def __init__(self, message: str, condition: Any | None = None):
        details = {"condition": repr(condition)} if condition is not None else {}
        super().__init__(message=message, details=details)


class HookRejectedError(ConsentStoreError):
    """Raised when a before-hook vetoed a mutation the caller required"""

    def __init__(self, model: str, operation: str):
        super().__init__(
            message=f"{operation} on {model} was rejected by a database hook",
            status_code=status.HTTP_403_FORBIDDEN,
            details={"model": model, "operation": operation},
        )


# ============================================================================
# Configuration & Schema Exceptions
# ============================================================================


class ConfigurationError(ConsentStoreError):
    """Raised when the store is configured inconsistently"""

    def __init__(self, message: str, setting: str | None = None):
        details = {"setting": setting} if setting else {}
        super().__init__(message=message, status_code=status.HTTP_500_INTERNAL_SERVER_ERROR, details=details)


class SchemaConflictError(ConfigurationError):
    """Raised when an extension tries to replace a field that is already defined"""

    def __init__(self, model: str, field: str, source: str):
        super().__init__(message=f"{source} cannot redefine field '{field}' on '{model}'")
        self.details.update({"model": model, "field": field, "source": source})


class UnknownModelError(ConfigurationError):
    """Raised when an operation names a model with no resolved schema"""

    def __init__(self, model: str):
        super().__init__(message=f"Model '{model}' is not part of the resolved schema")
        self.details["model"] = model


class IdGenerationError(ConfigurationError):
    """Raised when application ids and database ids are mixed on one adapter"""

    def __init__(self, model: str):
        super().__init__(
            message=f"Explicit id supplied for '{model}' but ids are generated by the database",
            setting="advanced.generate_id",
        )
        self.details["model"] = model


# ============================================================================
# Workflow Exceptions
# ============================================================================


class PartialWithdrawalError(ConsentStoreError):
    """
    Raised when a withdrawal stopped after changing state.

    The consent may already be inactive while its evidence or audit rows are
    missing. Callers must re-check state before retrying.
    """

    def __init__(self, consent_id: Any, completed_steps: list[str], failed_step: str):
        super().__init__(
            message=f"Withdrawal of consent '{consent_id}' failed at step '{failed_step}'",
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            details={
                "consent_id": consent_id,
                "completed_steps": completed_steps,
                "failed_step": failed_step,
            },
        )
        self.consent_id = consent_id
        self.completed_steps = completed_steps
        self.failed_step = failed_step
