"""Error body shared by every endpoint."""

from pydantic import BaseModel


class ErrorResponse(BaseModel):
    error: str
    detail: str = ""
    engine: str | None = None
