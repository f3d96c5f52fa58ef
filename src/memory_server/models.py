"""Pydantic models shared by the service and the HTTP layer."""
from __future__ import annotations

from typing import List, Optional

from pydantic import BaseModel, Field, field_validator

# Joins role and content in a stored line. Roles must never contain it.
DELIMITER = ": "

# Redis list indexes are signed 64-bit; larger counts cannot be sent.
MAX_DELETE_COUNT = 2**63 - 1


class MemoryMessage(BaseModel):
    role: str
    content: str

    @field_validator("role")
    @classmethod
    def _role_has_no_delimiter(cls, v: str) -> str:
        if DELIMITER in v:
            raise ValueError(f"role must not contain {DELIMITER!r}")
        return v


class MemoryMessages(BaseModel):
    messages: List[MemoryMessage] = Field(default_factory=list)


class MemoryResponse(BaseModel):
    messages: List[MemoryMessage] = Field(default_factory=list)
    context: Optional[str] = None


class AckResponse(BaseModel):
    status: str = "Ok"


class DeleteLastRequest(BaseModel):
    count: int = Field(
        ..., ge=1, le=MAX_DELETE_COUNT, description="How many of the newest messages to drop."
    )
    message_text: str = Field(..., description="Expected content of the newest message.")
