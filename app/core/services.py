"""
Base service layer patterns for business logic encapsulation.

This module provides foundational patterns for the service layer:
- ServiceResult: Standard result wrapper for consistent success/failure handling
- BaseService: Base class with common service utilities

Service Layer Philosophy:
    Services encapsulate business logic separate from views and models.
    Views handle HTTP concerns, models handle data, services handle logic.

Pattern Comparison:
    - ServiceResult: Use for expected failures (validation, business rules)
    - Exceptions: Use for unexpected failures (database errors, bugs)

Usage:
    from core.services import BaseService, ServiceResult

    class AgreementService(BaseService):
        @classmethod
        def rename(cls, agreement_id, title: str) -> ServiceResult[Agreement]:
            try:
                with cls.atomic():
                    agreement = Agreement.objects.select_for_update().get(pk=agreement_id)
                    agreement.title = title
                    agreement.save()
            except BaseApplicationError as e:
                return cls.handle_exception(e, "rename", log_level=logging.WARNING)

            cls.get_logger().info("Renamed agreement", extra={"agreement_id": str(agreement_id)})
            return ServiceResult.success(agreement)

    # In view
    result = AgreementService.rename(agreement_id, title)
    if result.success:
        return Response(AgreementSerializer(result.data).data)
    return Response({"error": result.error, "error_code": result.error_code}, status=400)

Related:
    - core.exceptions: For unexpected/exceptional errors
"""

from __future__ import annotations

import logging
from contextlib import contextmanager
from dataclasses import dataclass, field
from typing import TYPE_CHECKING, Generic, TypeVar

from django.db import transaction

from core.exceptions import BaseApplicationError

if TYPE_CHECKING:
    from collections.abc import Generator
    from typing import Any

# Generic type for ServiceResult data
T = TypeVar("T")


@dataclass
class ServiceResult(Generic[T]):
    """
    Standard result wrapper for service operations.

    Provides consistent success/failure handling without exceptions.
    Use this for expected failures (validation errors, business rule violations).

    Attributes:
        success: Whether the operation succeeded
        data: Result data if successful (None if failed)
        error: Error message if failed (None if successful)
        error_code: Machine-readable error code for client handling
        errors: Field-level errors for validation failures
        details: Additional error context copied from the raised exception

    Usage:
        # Success case
        return ServiceResult.success(snapshot)

        # Failure case
        return ServiceResult.failure("Agreement not found", "NOT_FOUND")

        # Check result
        result = LifecycleService.send(caller, agreement_id)
        if result.success:
            snapshot = result.data.agreement
        else:
            print(f"Error: {result.error} ({result.error_code})")
    """

    success: bool
    data: T | None = None
    error: str | None = None
    error_code: str | None = None
    errors: dict[str, list[str]] | None = field(default=None)
    details: dict[str, Any] | None = field(default=None)

    @classmethod
    def success(cls, data: T) -> ServiceResult[T]:
        """
        Create a successful result.

        Args:
            data: The result data

        Returns:
            ServiceResult with success=True and data set
        """
        return cls(success=True, data=data)

    @classmethod
    def failure(
        cls,
        error: str,
        error_code: str | None = None,
        errors: dict[str, list[str]] | None = None,
        details: dict[str, Any] | None = None,
    ) -> ServiceResult[T]:
        """
        Create a failed result.

        Args:
            error: Human-readable error message
            error_code: Machine-readable error code for client handling
            errors: Field-level errors (for validation failures)
            details: Additional error context

        Returns:
            ServiceResult with success=False and error details

        Example:
            return ServiceResult.failure(
                "Agreement is invalid",
                error_code="INVALID_AGREEMENT",
                errors={"violations": ["counterparty is not resolved"]},
            )
        """
        return cls(
            success=False,
            error=error,
            error_code=error_code,
            errors=errors,
            details=details,
        )

    @classmethod
    def from_exception(cls, exc: Exception, error_code: str | None = None) -> ServiceResult[T]:
        """
        Create a failed result from an exception.

        Application errors keep their own message, error code and details;
        any other exception is reported with its class name as the code.

        Args:
            exc: The caught exception
            error_code: Optional error code override

        Returns:
            ServiceResult with error details from exception
        """
        if isinstance(exc, BaseApplicationError):
            errors = None
            violations = exc.details.get("violations")
            if violations:
                errors = {"violations": list(violations)}
            return cls(
                success=False,
                error=exc.message,
                error_code=error_code or exc.error_code,
                errors=errors,
                details=dict(exc.details) or None,
            )
        return cls(
            success=False,
            error=str(exc),
            error_code=error_code or exc.__class__.__name__.upper(),
        )


class BaseService:
    """
    Base class for service layer classes.

    Provides common utilities for services:
    - Logging setup per service
    - Database transaction management
    - Exception handling patterns

    Design Notes:
        - Use @staticmethod or @classmethod (no instance state)
        - Services should be stateless
        - Use ServiceResult for expected failures
        - Raise exceptions for unexpected failures
    """

    @classmethod
    def get_logger(cls) -> logging.Logger:
        """
        Get logger for this service.

        Returns a logger named after the service class for
        easy filtering in logs.
        """
        return logging.getLogger(f"{cls.__module__}.{cls.__name__}")

    @classmethod
    @contextmanager
    def atomic(cls) -> Generator[None, None, None]:
        """
        Execute operations in a database transaction.

        All database operations within this context manager are
        wrapped in a transaction. If any operation fails, all
        changes are rolled back.

        Example:
            with cls.atomic():
                agreement = lock_agreement(agreement_id)
                agreement.send()
                agreement.save()

        Note:
            This is a thin wrapper around Django's transaction.atomic().
            Nested use creates a savepoint.
        """
        with transaction.atomic():
            yield

    @classmethod
    def handle_exception(
        cls,
        exc: Exception,
        context: str = "",
        log_level: int = logging.ERROR,
        extra: dict[str, Any] | None = None,
    ) -> ServiceResult:
        """
        Convert exception to ServiceResult with logging.

        Provides consistent exception handling across services.
        Logs the exception and returns a ServiceResult.

        Args:
            exc: The caught exception
            context: Additional context for logging
            log_level: Logging level (default ERROR)
            extra: Structured logging context

        Returns:
            ServiceResult with error details
        """
        logger = cls.get_logger()
        message = f"{context}: {exc}" if context else str(exc)
        log_extra = dict(extra or {})
        error_code = getattr(exc, "error_code", exc.__class__.__name__.upper())
        log_extra.setdefault("error_code", error_code)
        logger.log(
            log_level,
            message,
            extra=log_extra,
            exc_info=log_level >= logging.ERROR,
        )
        return ServiceResult.from_exception(exc)
