from __future__ import annotations

from pydantic import BaseModel, Field


class UploadResponse(BaseModel):
    path: str = Field(..., description="Where the uploaded file was written")
    key: str = Field(..., description="Dependency key queued for restart processing")
    extracted: bool = Field(False, description="True when the upload was an archive and got extracted")
    symlink: str | None = Field(None, description="Symlink created for the upload, if any")


class DependencyResponse(BaseModel):
    key: str
    known: bool
    workload_ids: list[str] = Field(default_factory=list)


class HealthResponse(BaseModel):
    status: str = "healthy"
    key_mode: str
    queue_depth: int = Field(..., ge=0)
    queue_capacity: int = Field(..., ge=1)
    dependency_keys: int = Field(..., ge=0)


class EventResponse(BaseModel):
    id: int
    ts: str
    level: str
    kind: str
    key: str | None = None
    workload_id: str | None = None
    message: str
