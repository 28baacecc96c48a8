"""
Record schemas for the checklist tracker.

Each model maps to a JSON collection under the data directory. Records are
stored with camelCase keys; attributes are snake_case and accept either form.
"""

from datetime import datetime
from typing import Dict, List, Optional

from dateutil.parser import isoparse
from pydantic import BaseModel, ConfigDict, Field, computed_field, field_validator
from pydantic.alias_generators import to_camel


class Record(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


class User(Record):
    """Users collection schema"""
    id: Optional[str] = None
    username: str = Field(..., description="Login name, unique")
    name: str = Field("", description="Display name")
    password: str = Field(..., description="Password hash")
    is_admin: bool = Field(False, description="Admins manage the catalog")
    created_at: Optional[str] = None
    updated_at: Optional[str] = None


class UserOut(Record):
    """User as returned by the API (no password hash)"""
    id: str
    username: str
    name: str = ""
    is_admin: bool = False
    created_at: Optional[str] = None
    updated_at: Optional[str] = None


class Client(Record):
    """Customer whose facilities are maintained"""
    id: Optional[str] = None
    name: str
    contact_person: str = ""
    phone: str = ""
    email: str = ""
    address: str = ""
    created_at: Optional[str] = None
    updated_at: Optional[str] = None


class Location(Record):
    """A site belonging to a client"""
    id: Optional[str] = None
    name: str
    client_id: str
    address: str = ""
    description: str = ""
    created_at: Optional[str] = None
    updated_at: Optional[str] = None


class Category(Record):
    """Technician specialty (electrician, plumbing, ...)"""
    id: Optional[str] = None
    name: str
    description: str = ""
    created_at: Optional[str] = None
    updated_at: Optional[str] = None


class ChecklistType(Record):
    """Kind of checklist (inspection, cleaning, ...)"""
    id: Optional[str] = None
    name: str
    description: str = ""
    created_at: Optional[str] = None
    updated_at: Optional[str] = None


class ChecklistItem(Record):
    id: Optional[str] = None
    description: str
    require_photo: bool = False


class Checklist(Record):
    """Checklist definition; the recurrence fields drive due-date evaluation"""
    id: str
    title: str = ""
    description: str = ""
    client_id: Optional[str] = None
    location_id: Optional[str] = None
    type_id: Optional[str] = None
    assigned_to: Optional[str] = Field(None, description="Technician id; null means loose pool")
    periodicity: str = Field("", description="loose | daily | weekly | monthly | quarterly | semiannual | annual | custom")
    custom_days: List[int] = Field(default_factory=list, description="Weekdays, 0=Sunday..6=Saturday")
    time: Optional[str] = Field(None, description="HH:MM time-of-day threshold")
    validity: Optional[datetime] = Field(None, description="Expiry instant")
    require_photos: bool = False
    items: List[ChecklistItem] = Field(default_factory=list)
    active: bool = True
    qr_code: Optional[str] = None
    created_at: Optional[str] = None
    updated_at: Optional[str] = None

    # Data-entry gaps degrade to "absent" instead of failing the load.

    @field_validator("custom_days", mode="before")
    @classmethod
    def _clean_custom_days(cls, value):
        if not isinstance(value, (list, tuple, set)):
            return []
        days = []
        for d in value:
            try:
                d = int(d)
            except (TypeError, ValueError):
                continue
            if 0 <= d <= 6 and d not in days:
                days.append(d)
        return days

    @field_validator("time", mode="before")
    @classmethod
    def _clean_time(cls, value):
        return value if isinstance(value, str) and value.strip() else None

    @field_validator("validity", mode="before")
    @classmethod
    def _clean_validity(cls, value):
        if isinstance(value, datetime):
            return value
        if not isinstance(value, str) or not value.strip():
            return None
        try:
            return isoparse(value.strip())
        except (ValueError, OverflowError):
            return None


class Execution(Record):
    """One completed run of a checklist by a technician (append-only)"""
    id: Optional[str] = None
    checklist_id: str
    user_id: str
    completed_at: datetime
    completed_items: List[str] = Field(default_factory=list)
    photos: Dict[str, str] = Field(default_factory=dict, description="Item id -> stored photo path")


class DueStatus(Record):
    checklist_id: str
    due: bool
    last_completed_at: Optional[datetime] = None


def _percentage(done: int, total: int) -> int:
    if total <= 0:
        return 100
    return min(100, round(done * 100 / total))


class DailyProgress(Record):
    total_daily_checklists: int = 0
    completed_daily_checklists_today: int = 0
    pending_checklists_today: List[Checklist] = Field(default_factory=list)

    @computed_field
    @property
    def percentage(self) -> int:
        return _percentage(self.completed_daily_checklists_today, self.total_daily_checklists)


class OverallStats(Record):
    total_completed_overall: int = 0
    total_scheduled_overall: int = 0

    @computed_field
    @property
    def percentage(self) -> int:
        return _percentage(self.total_completed_overall, self.total_scheduled_overall)


class ProfessionalView(Record):
    """What a technician sees: pending checklists plus progress"""
    daily_progress: DailyProgress = Field(default_factory=DailyProgress)
    overall_stats: OverallStats = Field(default_factory=OverallStats)
    pending_checklists: List[Checklist] = Field(default_factory=list)
