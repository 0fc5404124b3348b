# journal/schemas.py
import json
from pydantic import BaseModel, Field, field_validator
from datetime import datetime, date
from typing import Literal, Optional

from journal.models import ALL_WEEKDAYS


def _parse_json_list(value):
    # Older backups store list columns as JSON text
    if value is None:
        return []
    if isinstance(value, str):
        return json.loads(value) if value.strip() else []
    return value


def _check_weekdays(days: list[int]) -> list[int]:
    if any(d not in ALL_WEEKDAYS for d in days):
        raise ValueError("weekdays must be between 0 (Sunday) and 6 (Saturday)")
    return sorted(set(days))


class MessageResponse(BaseModel):
    message: str


# ════════════════════════════════════════
# AUTH / USER
# ════════════════════════════════════════

class UserCreate(BaseModel):
    username: str = Field(..., min_length=1, max_length=64)
    password: str = Field(..., min_length=4)

class UserResponse(BaseModel):
    id: int
    username: str
    created_at: Optional[datetime] = None

    class Config:
        from_attributes = True

class Token(BaseModel):
    access_token: str
    token_type: str
    user: UserResponse


# ════════════════════════════════════════
# ENTRIES
# ════════════════════════════════════════

class EntrySave(BaseModel):
    date: date
    content: str
    tags: list[str] = []
    mood: Optional[int] = Field(default=None, ge=1, le=5)

class EntryResponse(BaseModel):
    id: int
    user_id: int
    entry_date: date
    content: str
    tags: list[str]
    mood: Optional[int]
    created_at: Optional[datetime]
    updated_at: Optional[datetime]

    class Config:
        from_attributes = True

class EntrySaved(BaseModel):
    message: str
    entry_id: int

class StreakResponse(BaseModel):
    current: int
    longest: int

class StatsResponse(BaseModel):
    total_entries: int
    total_words: int
    avg_words_per_entry: int
    mood_distribution: dict[int, int]

class EntriesExport(BaseModel):
    export_date: datetime
    total_entries: int
    entries: list[EntryResponse]


# ════════════════════════════════════════
# HABITS
# ════════════════════════════════════════

class HabitCreate(BaseModel):
    name: str = Field(..., min_length=1)
    icon: str = "✅"
    color: str = "#8B5CF6"
    category: str = "General"
    frequency_days: list[int] = Field(default_factory=lambda: list(ALL_WEEKDAYS))
    target_count: int = Field(default=1, ge=1)

    @field_validator("frequency_days")
    @classmethod
    def check_weekdays(cls, days: list[int]) -> list[int]:
        return _check_weekdays(days)

class HabitResponse(BaseModel):
    id: int
    user_id: int
    name: str
    icon: str
    color: str
    category: str
    frequency_days: list[int]
    target_count: int
    created_at: Optional[datetime] = None
    streak: int = 0
    completed_today: bool = False

    class Config:
        from_attributes = True

class HabitToggle(BaseModel):
    log_date: Optional[date] = Field(default=None, alias="date")

    class Config:
        populate_by_name = True

class HabitToggleResponse(BaseModel):
    completed: bool

class HabitHistoryItem(BaseModel):
    date: date
    completed: bool

class HabitStat(BaseModel):
    id: int
    name: str
    icon: str
    color: str
    completion_count: int
    rate: int

class HabitInsights(BaseModel):
    total_completions: int
    habit_stats: list[HabitStat]
    best_day: str


# ════════════════════════════════════════
# QUICK NOTES
# ════════════════════════════════════════

NoteType = Literal["text", "checklist"]

class NoteCreate(BaseModel):
    content: str = Field(..., min_length=1)
    title: str = ""
    color: str = "#FFE066"
    tags: list[str] = []
    type: NoteType = "text"

class NoteUpdate(BaseModel):
    content: Optional[str] = None
    title: Optional[str] = None
    color: Optional[str] = None
    tags: Optional[list[str]] = None
    type: Optional[NoteType] = None

class NoteResponse(BaseModel):
    id: int
    user_id: int
    title: str
    content: str
    color: str
    pinned: bool
    tags: list[str]
    type: str
    position: int
    created_at: Optional[datetime]
    updated_at: Optional[datetime]

    class Config:
        from_attributes = True

class NoteReorder(BaseModel):
    note_ids: list[int]

class PinResponse(BaseModel):
    pinned: bool


# ════════════════════════════════════════
# BACKUP  (export / import envelope)
# ════════════════════════════════════════

class BackupEntry(BaseModel):
    id: Optional[int] = None
    entry_date: date
    content: str = ""
    tags: list[str] = []
    mood: Optional[int] = Field(default=None, ge=1, le=5)
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None

    class Config:
        from_attributes = True

    @field_validator("tags", mode="before")
    @classmethod
    def parse_tags(cls, value):
        return _parse_json_list(value)

    @field_validator("content", mode="before")
    @classmethod
    def empty_content(cls, value):
        return "" if value is None else value

class BackupHabit(BaseModel):
    id: Optional[int] = None
    name: str
    icon: str = "✅"
    color: str = "#8B5CF6"
    category: str = "General"
    frequency_days: list[int] = Field(default_factory=lambda: list(ALL_WEEKDAYS))
    target_count: int = Field(default=1, ge=1)
    created_at: Optional[datetime] = None

    class Config:
        from_attributes = True

    @field_validator("frequency_days", mode="before")
    @classmethod
    def parse_days(cls, value):
        return _parse_json_list(value)

    @field_validator("frequency_days")
    @classmethod
    def check_weekdays(cls, days: list[int]) -> list[int]:
        return _check_weekdays(days)

class BackupHabitLog(BaseModel):
    id: Optional[int] = None
    habit_id: int
    log_date: date
    completed: bool = True

    class Config:
        from_attributes = True

class BackupQuickNote(BaseModel):
    id: Optional[int] = None
    title: str = ""
    content: str
    color: str = "#FFE066"
    pinned: bool = False
    tags: list[str] = []
    type: NoteType = "text"
    position: Optional[int] = None
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None

    class Config:
        from_attributes = True

    @field_validator("tags", mode="before")
    @classmethod
    def parse_tags(cls, value):
        return _parse_json_list(value)

    @field_validator("title", mode="before")
    @classmethod
    def empty_title(cls, value):
        return "" if value is None else value

class BackupData(BaseModel):
    entries: list[BackupEntry] = []
    habits: list[BackupHabit] = []
    habit_logs: list[BackupHabitLog] = Field(default_factory=list, alias="habitLogs")
    quick_notes: list[BackupQuickNote] = Field(default_factory=list, alias="quickNotes")

    class Config:
        populate_by_name = True

class BackupEnvelope(BaseModel):
    version: int = 1
    exported_at: datetime = Field(..., alias="exportedAt")
    data: BackupData

    class Config:
        populate_by_name = True

class OverwriteOptions(BaseModel):
    entries: bool = False
    habits: bool = False          # also governs habit logs
    quick_notes: bool = Field(default=False, alias="quickNotes")

    class Config:
        populate_by_name = True

class ImportCheckRequest(BaseModel):
    data: BackupData

class ImportExecuteRequest(BaseModel):
    data: BackupData
    overwrite_options: OverwriteOptions = Field(default_factory=OverwriteOptions, alias="overwriteOptions")

    class Config:
        populate_by_name = True

class ConflictCounts(BaseModel):
    entries: int = 0
    habits: int = 0
    quick_notes: int = Field(default=0, alias="quickNotes")

    class Config:
        populate_by_name = True

class ImportCheckResponse(BaseModel):
    conflicts: ConflictCounts

class ImportCounts(BaseModel):
    entries: int = 0
    habits: int = 0
    habit_logs: int = Field(default=0, alias="habitLogs")
    quick_notes: int = Field(default=0, alias="quickNotes")

    class Config:
        populate_by_name = True

class ImportResult(BaseModel):
    message: str
    imported: ImportCounts
    updated: ImportCounts


# ════════════════════════════════════════
# ADMIN
# ════════════════════════════════════════

class AdminStats(BaseModel):
    users: int
    entries: int
    habits: int
    notes: int
    storage_mb: float

class AdminUser(BaseModel):
    id: int
    username: str
    entry_count: int
    note_count: int
    last_active: Optional[datetime] = None
