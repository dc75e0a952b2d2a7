"""
Custom exceptions and error handlers for consistent error responses.

Provides the domain error taxonomy (validation, precondition, conflict,
not-found, infrastructure) with standardized error codes, plus the global
exception handlers that render them.
"""

import logging
from fastapi import HTTPException, Request, status
from fastapi.responses import JSONResponse
from fastapi.exceptions import RequestValidationError
from fastapi.encoders import jsonable_encoder
from typing import Any, Dict

logger = logging.getLogger(__name__)


class AppException(Exception):
    """Base application exception."""

    def __init__(self, message: str, error_code: str, status_code: int = 500, details: Dict[str, Any] = None):
        self.message = message
        self.error_code = error_code
        self.status_code = status_code
        self.details = details or {}
        super().__init__(message)


class InsufficientPermissionsError(AppException):
    """Raised when user doesn't have permission to perform an action."""

    def __init__(self, message: str = "Insufficient permissions", details: Dict[str, Any] = None):
        super().__init__(
            message=message,
            error_code="ERR_PERM_001",
            status_code=status.HTTP_403_FORBIDDEN,
            details=details
        )


class ResourceNotFoundError(AppException):
    """Raised when requested resource is not found."""

    def __init__(self, resource: str, resource_id: Any = None):
        message = f"{resource} not found"
        if resource_id is not None:
            message = f"{resource} with ID {resource_id} not found"
        super().__init__(
            message=message,
            error_code="ERR_NOT_FOUND_001",
            status_code=status.HTTP_404_NOT_FOUND,
            details={"resource": resource, "id": resource_id}
        )


class AuthenticationError(AppException):
    """Raised for authentication failures."""

    def __init__(self, message: str = "Authentication failed"):
        super().__init__(
            message=message,
            error_code="ERR_AUTH_001",
            status_code=status.HTTP_401_UNAUTHORIZED
        )


class ValidationFailedError(AppException):
    """Raised for malformed input detected before any state change."""

    def __init__(self, message: str, details: Dict[str, Any] = None):
        super().__init__(
            message=message,
            error_code="ERR_VALIDATION_001",
            status_code=status.HTTP_422_UNPROCESSABLE_ENTITY,
            details=details
        )


class PreconditionFailedError(AppException):
    """Raised when an operation is not allowed in the entity's current state."""

    def __init__(
        self,
        message: str,
        error_code: str = "ERR_PRECONDITION_001",
        status_code: int = status.HTTP_409_CONFLICT,
        details: Dict[str, Any] = None
    ):
        super().__init__(
            message=message,
            error_code=error_code,
            status_code=status_code,
            details=details
        )


class InvalidStatusTransitionError(PreconditionFailedError):
    """Raised when a status transition is not permitted from the current status."""

    def __init__(self, entity: str, current_status: str, action: str):
        super().__init__(
            message=f"Action '{action}' not allowed for {entity} with current status '{current_status}'",
            error_code="ERR_PRECONDITION_002",
            details={"entity": entity, "current_status": current_status, "action": action}
        )


class BranchInactiveError(PreconditionFailedError):
    """Raised when a branch is not active and cannot admit packages."""

    def __init__(self, branch_id: int, branch_status: str):
        super().__init__(
            message=f"Branch {branch_id} is not active (status: {branch_status})",
            error_code="ERR_BRANCH_INACTIVE",
            details={"branch_id": branch_id, "status": branch_status}
        )


class BranchCapacityExceededError(PreconditionFailedError):
    """Raised when a branch has reached its capacity limit."""

    def __init__(self, branch_id: int, capacity_limit: int, current_load: int):
        super().__init__(
            message=f"Branch {branch_id} is at full capacity ({current_load}/{capacity_limit})",
            error_code="ERR_BRANCH_FULL",
            details={
                "branch_id": branch_id,
                "capacity_limit": capacity_limit,
                "current_load": current_load
            }
        )


class StopOutOfOrderError(PreconditionFailedError):
    """Raised when a stop is processed out of traversal order."""

    def __init__(self, route_id: int, requested_index: int, current_index: int):
        super().__init__(
            message=(
                f"Must process stops in order. Current stop index is {current_index}, "
                f"but stop {requested_index} was requested"
            ),
            error_code="ERR_STOP_ORDER",
            details={
                "route_id": route_id,
                "requested_index": requested_index,
                "current_index": current_index
            }
        )


class IssueAlreadyResolvedError(PreconditionFailedError):
    """Raised when resolving an issue that is already resolved."""

    def __init__(self, package_id: int, issue_id: int):
        super().__init__(
            message=f"Issue {issue_id} on package {package_id} is already resolved",
            error_code="ERR_ISSUE_RESOLVED",
            details={"package_id": package_id, "issue_id": issue_id}
        )


class ConcurrentModificationError(AppException):
    """Raised when another writer modified the entity first. Callers should retry."""

    def __init__(self, message: str = "The resource was modified by another request, please retry"):
        super().__init__(
            message=message,
            error_code="ERR_CONFLICT_001",
            status_code=status.HTTP_409_CONFLICT
        )


class PersistenceError(AppException):
    """Raised when the storage layer fails."""

    def __init__(self, message: str = "Storage is unavailable"):
        super().__init__(
            message=message,
            error_code="ERR_PERSISTENCE_001",
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE
        )


# Global Exception Handlers

async def app_exception_handler(request: Request, exc: AppException) -> JSONResponse:
    """Handler for custom application exceptions."""
    return JSONResponse(
        status_code=exc.status_code,
        content={
            "error_code": exc.error_code,
            "message": exc.message,
            "details": exc.details
        }
    )


async def http_exception_handler(request: Request, exc: HTTPException) -> JSONResponse:
    """Handler for FastAPI HTTPException with standardized format."""
    # Map status code to error code
    error_code_map = {
        400: "ERR_BAD_REQUEST",
        401: "ERR_UNAUTHORIZED",
        403: "ERR_FORBIDDEN",
        404: "ERR_NOT_FOUND",
        409: "ERR_CONFLICT",
        500: "ERR_INTERNAL_SERVER"
    }

    error_code = error_code_map.get(exc.status_code, "ERR_UNKNOWN")

    return JSONResponse(
        status_code=exc.status_code,
        content={
            "error_code": error_code,
            "message": exc.detail,
            "details": {}
        },
        headers=getattr(exc, "headers", None)
    )


async def validation_exception_handler(request: Request, exc: RequestValidationError) -> JSONResponse:
    """Handler for Pydantic validation errors."""
    return JSONResponse(
        status_code=status.HTTP_422_UNPROCESSABLE_ENTITY,
        content={
            "error_code": "ERR_VALIDATION",
            "message": "Validation error",
            "details": {
                "errors": jsonable_encoder(exc.errors())
            }
        }
    )


async def generic_exception_handler(request: Request, exc: Exception) -> JSONResponse:
    """Handler for unhandled exceptions."""
    logger.exception("Unhandled exception: %s", type(exc).__name__)

    return JSONResponse(
        status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
        content={
            "error_code": "ERR_INTERNAL_SERVER",
            "message": "An internal server error occurred",
            "details": {}
        }
    )
