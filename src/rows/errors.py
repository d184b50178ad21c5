"""
Row store exceptions.

Every error carries a stable code, a human-readable message and the HTTP
status the API layer should answer with.  Routes translate them via
`to_http_exception`; anything that is not a GridError (store failures)
propagates unchanged.
"""

from typing import Any

from fastapi import HTTPException


class GridError(Exception):
    """Base exception for the row store."""

    def __init__(
        self,
        code: str,
        message: str,
        status_code: int = 500,
        details: dict[str, Any] | None = None,
    ):
        self.code = code
        self.message = message
        self.status_code = status_code
        self.details = details
        super().__init__(message)


class ValidationError(GridError):
    """Rejected before any store access (oversized batch, bad ids, bad number)."""

    def __init__(self, message: str, field: str | None = None):
        super().__init__(
            code="BAD_REQUEST",
            message=message,
            status_code=400,
            details={"field": field} if field else None,
        )


class NotFoundError(GridError):
    """Missing or unauthorized table / column / row."""

    def __init__(self, resource_type: str, resource_id: str):
        super().__init__(
            code="NOT_FOUND",
            message=f"{resource_type} not found: {resource_id}",
            status_code=404,
            details={"resource_type": resource_type, "resource_id": str(resource_id)},
        )


class ConflictError(GridError):
    """The request is well formed but the current state forbids it."""

    def __init__(self, message: str):
        super().__init__(code="BAD_REQUEST", message=message, status_code=400)


class BulkInsertError(GridError):
    """A bulk insert failed in the store; rows may be partially durable."""

    def __init__(self, table_id: str, mode: str, cause: Exception):
        super().__init__(
            code="BULK_INSERT_FAILED",
            message=f"Bulk insert failed ({mode}): {cause}",
            status_code=500,
            details={"table_id": table_id, "mode": mode},
        )
        self.__cause__ = cause


def to_http_exception(err: GridError) -> HTTPException:
    detail: dict[str, Any] = {"code": err.code, "message": err.message}
    if err.details:
        detail["details"] = err.details
    return HTTPException(status_code=err.status_code, detail=detail)
