"""Data model for the sync engine."""

import json
from datetime import date, datetime, time
from typing import Any, Literal, Optional

from pydantic import BaseModel, Field

SyncDirection = Literal["bidirectional", "local_to_google", "google_to_local"]
SingleEventDirection = Literal["local_to_google", "google_to_local"]
MappingStatus = Literal["synced", "pending", "error"]
ConflictType = Literal["modification", "deletion"]
ResolutionStatus = Literal["pending", "resolved", "ignored"]
ResolutionChoice = Literal["keep_local", "keep_google", "merge"]
SyncOperation = Literal["full_sync", "event_create", "event_update", "event_delete", "conflict_resolution"]
LogStatus = Literal["in_progress", "completed", "failed"]


def _loads(value: Any, default: Any) -> Any:
    if value is None or value == "":
        return default
    if isinstance(value, (list, dict)):
        return value
    return json.loads(value)


class LocalEvent(BaseModel):
    """An event owned by the local store."""
    id: str
    user_id: str
    title: str
    description: Optional[str] = ""
    event_date: Optional[date] = None
    start_time: Optional[time] = None
    end_time: Optional[time] = None
    location: Optional[str] = ""
    participants: list[str] = Field(default_factory=list)
    event_type: str = "other"
    source: str = "manual"
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None

    @classmethod
    def from_row(cls, row) -> "LocalEvent":
        data = dict(row)
        data["participants"] = _loads(data.get("participants"), [])
        return cls(**data)


class SyncMapping(BaseModel):
    """Correspondence between one local and one Google event."""
    id: Optional[int] = None
    user_id: str
    local_event_id: Optional[str] = None
    google_event_id: str
    local_fingerprint: Optional[str] = None
    google_fingerprint: Optional[str] = None
    sync_status: MappingStatus = "synced"
    error_message: Optional[str] = None
    last_synced_at: Optional[datetime] = None
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None

    @classmethod
    def from_row(cls, row) -> "SyncMapping":
        return cls(**dict(row))


class SyncConflict(BaseModel):
    """A divergence awaiting resolution."""
    id: Optional[int] = None
    user_id: str
    local_event_id: Optional[str] = None
    google_event_id: str
    conflict_type: ConflictType = "modification"
    local_event_data: dict = Field(default_factory=dict)
    google_event_data: dict = Field(default_factory=dict)
    local_modified_at: Optional[datetime] = None
    google_modified_at: Optional[datetime] = None
    detected_at: Optional[datetime] = None
    resolution_status: ResolutionStatus = "pending"
    resolution_choice: Optional[ResolutionChoice] = None
    resolved_at: Optional[datetime] = None
    resolved_by: Optional[str] = None

    @property
    def local_deleted(self) -> bool:
        return self.conflict_type == "deletion" and not self.local_event_data

    @property
    def google_deleted(self) -> bool:
        return self.conflict_type == "deletion" and not self.local_deleted

    @classmethod
    def from_row(cls, row) -> "SyncConflict":
        data = dict(row)
        data["local_event_data"] = _loads(data.get("local_event_data"), {})
        data["google_event_data"] = _loads(data.get("google_event_data"), {})
        return cls(**data)


class SyncLog(BaseModel):
    """Audit record of one run."""
    id: int
    user_id: str
    sync_operation: str
    sync_direction: str
    status: LogStatus
    events_processed: int = 0
    events_created: int = 0
    events_updated: int = 0
    events_deleted: int = 0
    conflicts_detected: int = 0
    error_count: int = 0
    error_details: Optional[dict] = None
    started_at: Optional[datetime] = None
    completed_at: Optional[datetime] = None
    duration_ms: Optional[int] = None

    @classmethod
    def from_row(cls, row) -> "SyncLog":
        data = dict(row)
        data.pop("created_at", None)
        data["error_details"] = _loads(data.get("error_details"), None)
        return cls(**data)


class SyncPreferences(BaseModel):
    """Per-user sync configuration."""
    user_id: str
    sync_enabled: bool = True
    sync_frequency_minutes: int = 15
    sync_direction: SyncDirection = "bidirectional"
    auto_resolve_conflicts: bool = False
    last_sync_at: Optional[datetime] = None
    last_successful_sync_at: Optional[datetime] = None
    sync_calendar_ids: list[str] = Field(default_factory=lambda: ["primary"])
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None

    @property
    def calendar_id(self) -> str:
        """The single external calendar in scope."""
        return self.sync_calendar_ids[0] if self.sync_calendar_ids else "primary"

    @property
    def pulls_remote(self) -> bool:
        return self.sync_direction in ("bidirectional", "google_to_local")

    @property
    def pushes_local(self) -> bool:
        return self.sync_direction in ("bidirectional", "local_to_google")

    @classmethod
    def from_row(cls, row) -> "SyncPreferences":
        data = dict(row)
        data["sync_calendar_ids"] = _loads(data.get("sync_calendar_ids"), ["primary"])
        data["sync_enabled"] = bool(data.get("sync_enabled"))
        data["auto_resolve_conflicts"] = bool(data.get("auto_resolve_conflicts"))
        return cls(**data)


class SyncPreferencesUpdate(BaseModel):
    """Patch for sync preferences; unset fields are left alone."""
    sync_enabled: Optional[bool] = None
    sync_frequency_minutes: Optional[int] = Field(default=None, ge=1, le=1440)
    sync_direction: Optional[SyncDirection] = None
    auto_resolve_conflicts: Optional[bool] = None
    sync_calendar_ids: Optional[list[str]] = Field(default=None, min_length=1, max_length=1)


class SyncResult(BaseModel):
    """Outcome of a full sync run."""
    success: bool = False
    status: str = "not_started"
    log_id: Optional[int] = None
    events_processed: int = 0
    events_created: int = 0
    events_updated: int = 0
    events_deleted: int = 0
    conflicts_detected: int = 0
    errors: list[str] = Field(default_factory=list)
