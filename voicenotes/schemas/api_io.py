from __future__ import annotations

"""Pydantic models for the HTTP API."""

from typing import Any, Literal, Optional

from pydantic import BaseModel, ConfigDict, Field


class TranscribeResponse(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    transcript: str
    n8n_response: Any = Field(default=None, alias="n8nResponse")


class ConversationOut(BaseModel):
    id: int
    timestamp: str
    transcript: str
    n8n_response: str


class DisplayRecord(BaseModel):
    id: int
    timestamp: str
    time_label: str
    transcript: str
    counterpart: str


class HealthStatus(BaseModel):
    status: Literal["healthy", "unhealthy"]
    timestamp: str
    uptime: float
    environment: str
    database: Optional[Literal["connected", "error"]] = None


class ErrorResponse(BaseModel):
    error: str
