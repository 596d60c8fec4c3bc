"""Response envelope models.

Success responses use ``{"data": ...}``; errors use
``{"error": {"code", "message", "details"}}``.
"""

from typing import Generic, TypeVar

from pydantic import BaseModel

T = TypeVar("T")


class DataResponse(BaseModel, Generic[T]):
    """Standard response envelope for single resources.

    Usage:
        @router.get("/me")
        async def me(identity: CurrentIdentity) -> DataResponse[IdentitySchema]:
            return DataResponse(data=IdentitySchema.from_snapshot(identity))
    """

    data: T


class ErrorDetail(BaseModel):
    """Error detail for response body.

    Attributes:
        code: Machine-readable error code (e.g., "CODE_EXPIRED").
        message: Human-readable error message.
        details: Optional extra detail (field errors, remaining_seconds).
    """

    code: str
    message: str
    details: list[dict] | None = None


class ErrorResponse(BaseModel):
    """Standard error response envelope."""

    error: ErrorDetail
