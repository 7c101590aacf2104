from typing import Generic, TypeVar

from pydantic import BaseModel

T = TypeVar("T")


class ApiResponse(BaseModel, Generic[T]):
    """Envelope wrapping every response body, successful or not."""

    success: bool = True
    message: str | None = None
    data: T | None = None
