from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator
from datetime import date, datetime, timedelta
from enum import Enum
from typing import Annotated, Any, ClassVar, FrozenSet, List, Literal, Optional, Tuple, Union
import yaml

from .version import APP_SCHEMA_VERSION

class QuadrantType(Enum):
    URGENT_IMPORTANT = "urgent-important"                   # Do First
    NOT_URGENT_IMPORTANT = "not-urgent-important"           # Schedule
    URGENT_NOT_IMPORTANT = "urgent-not-important"           # Delegate
    NOT_URGENT_NOT_IMPORTANT = "not-urgent-not-important"   # Eliminate

QUADRANT_TITLES = {
    QuadrantType.URGENT_IMPORTANT: "Do First",
    QuadrantType.NOT_URGENT_IMPORTANT: "Schedule",
    QuadrantType.URGENT_NOT_IMPORTANT: "Delegate",
    QuadrantType.NOT_URGENT_NOT_IMPORTANT: "Eliminate",
}

class RecurrencePattern(Enum):
    DAILY = "daily"
    WEEKLY = "weekly"
    MONTHLY = "monthly"
    CUSTOM = "custom"

class HistoryActionType(Enum):
    TASK_ADDED = "task_added"
    TASK_UPDATED = "task_updated"
    TASK_DELETED = "task_deleted"
    TASK_COMPLETED = "task_completed"
    TASK_UNCOMPLETED = "task_uncompleted"
    TASK_MOVED = "task_moved"
    TASK_STARRED = "task_starred"
    TASK_UNSTARRED = "task_unstarred"
    SUBTASK_ADDED = "subtask_added"
    SUBTASK_REPARENTED = "subtask_reparented"
    SUBTASK_DETACHED = "subtask_detached"
    PARENT_AUTO_COMPLETED = "parent_auto_completed"
    PARENT_AUTO_UNCOMPLETED = "parent_auto_uncompleted"

class ViewMode(Enum):
    TODAY = "today"
    COMPLETED = "completed"

def to_local_naive(value):
    """Aware datetimes (e.g. ISO strings ending in Z) become naive local time, matching the store's clock."""
    if isinstance(value, datetime) and value.tzinfo is not None:
        return value.astimezone().replace(tzinfo=None)
    return value

class BaseYAMLModel(BaseModel):
    """Pydantic model that round-trips through YAML documents."""

    def to_yaml(self) -> str:
        return yaml.safe_dump(self.model_dump(mode="json"), default_flow_style=False,
                              sort_keys=False, indent=2, allow_unicode=True)

    @classmethod
    def from_yaml(cls, text: str):
        return cls.model_validate(yaml.safe_load(text) or {})

class Tag(BaseModel):
    model_config = ConfigDict(frozen=True)

    id: str = Field(description="Unique identifier for the tag")
    name: str = Field(description="Display name of the tag")
    color: str = Field(default="#6B7280", description="Display color of the tag")

class Person(BaseModel):
    model_config = ConfigDict(frozen=True)

    id: str = Field(description="Unique identifier for the person")
    name: str = Field(description="Display name of the person")
    color: str = Field(default="#6B7280", description="Display color of the person")

class RecurrenceConfig(BaseModel):
    """How often a recurring template should produce instances."""

    model_config = ConfigDict(frozen=True)

    pattern: RecurrencePattern = Field(description="Base recurrence pattern")
    interval: int = Field(default=1, ge=1, description="Repeat every N units, e.g. every 2 days")
    days_of_week: Tuple[int, ...] = Field(default=(), description="Weekdays 0-6 (Sunday-Saturday) for weekly patterns")
    day_of_month: Optional[int] = Field(default=None, ge=1, le=31, description="Day of month for monthly patterns")
    end_date: Optional[datetime] = Field(default=None, description="No instances are generated after this date")

    @field_validator('end_date')
    @classmethod
    def validate_end_date(cls, v):
        return to_local_naive(v)

    @field_validator('days_of_week')
    @classmethod
    def validate_days_of_week(cls, v):
        if any(day < 0 or day > 6 for day in v):
            raise ValueError(f"Invalid weekday in {v}; expected values 0-6")
        return tuple(sorted(set(v)))

class TaskBase(BaseModel):
    """Fields shared by every task kind."""

    model_config = ConfigDict(frozen=True)

    id: str = Field(description="Unique identifier, immutable after creation")
    title: str = Field(description="Short human readable title")
    description: Optional[str] = Field(default=None, description="Longer free-form notes")
    quadrant: QuadrantType = Field(description="Priority quadrant the task lives in")
    completed: bool = Field(default=False, description="Completion flag; derived for parents with children")
    completed_at: Optional[datetime] = Field(default=None, description="When the task was completed")
    is_starred: bool = Field(default=False, description="Starred tasks show up in the Today view")
    order: int = Field(default=0, ge=0, description="Position within the sibling group")
    due_date: Optional[datetime] = Field(default=None, description="When the task is due")
    tags: FrozenSet[str] = Field(default_factory=frozenset, description="Tag ids")
    people: FrozenSet[str] = Field(default_factory=frozenset, description="Person ids")
    created_at: datetime = Field(description="When the task was created")
    updated_at: datetime = Field(description="When the task was last changed")

    @field_validator('completed_at', 'due_date', 'created_at', 'updated_at')
    @classmethod
    def validate_times(cls, v):
        return to_local_naive(v)

    @model_validator(mode='after')
    def validate_completion(self):
        if self.completed_at and not self.completed:
            raise ValueError("completed_at must be empty while the task is incomplete")
        return self

class StandardTask(TaskBase):
    kind: Literal["standard"] = "standard"

class Subtask(TaskBase):
    kind: Literal["subtask"] = "subtask"
    parent_id: str = Field(description="Standard task or recurring instance this subtask belongs to")

class RecurringTemplate(TaskBase):
    kind: Literal["recurring-template"] = "recurring-template"
    recurrence: RecurrenceConfig = Field(description="Schedule the instances are generated from")
    is_paused: bool = Field(default=False, description="Paused templates generate no instances")

class RecurringInstance(TaskBase):
    kind: Literal["recurring-instance"] = "recurring-instance"
    parent_id: str = Field(description="Template this instance was generated from")

Task = Annotated[
    Union[StandardTask, Subtask, RecurringTemplate, RecurringInstance],
    Field(discriminator="kind"),
]

def convert_task(task, kind: type, **updates):
    """Rebuild ``task`` as another variant, dropping fields the new kind does not carry."""
    data = {name: getattr(task, name) for name in TaskBase.model_fields}
    data.update(updates)
    return kind.model_validate(data)

class TaskData(BaseModel):
    """Caller-supplied fields for a new task; ids, kind and timestamps are assigned by the store."""

    model_config = ConfigDict(extra='forbid')

    title: str = Field(min_length=1)
    description: Optional[str] = None
    quadrant: Optional[QuadrantType] = None
    completed: bool = False
    completed_at: Optional[datetime] = None
    is_starred: bool = False
    due_date: Optional[datetime] = None
    tags: FrozenSet[str] = Field(default_factory=frozenset)
    people: FrozenSet[str] = Field(default_factory=frozenset)
    recurrence: Optional[RecurrenceConfig] = None
    is_paused: bool = False

    @field_validator('completed_at', 'due_date')
    @classmethod
    def validate_times(cls, v):
        return to_local_naive(v)

class TaskPatch(BaseModel):
    """Editable task fields. Structural fields change only through store operations."""

    model_config = ConfigDict(extra='forbid')

    title: Optional[str] = Field(default=None, min_length=1)
    description: Optional[str] = None
    due_date: Optional[datetime] = None
    tags: Optional[FrozenSet[str]] = None
    people: Optional[FrozenSet[str]] = None
    is_starred: Optional[bool] = None
    completed: Optional[bool] = None
    completed_at: Optional[datetime] = None
    recurrence: Optional[RecurrenceConfig] = None
    is_paused: Optional[bool] = None

    TEMPLATE_ONLY: ClassVar[FrozenSet[str]] = frozenset({"recurrence", "is_paused"})
    COMPLETION: ClassVar[FrozenSet[str]] = frozenset({"completed", "completed_at"})

    @field_validator('title', 'is_starred', 'completed', 'recurrence', 'is_paused')
    @classmethod
    def validate_required(cls, v, info):
        # Omit a field to leave it unchanged; these cannot be cleared
        if v is None:
            raise ValueError(f"{info.field_name} cannot be cleared")
        return v

    @field_validator('completed_at', 'due_date')
    @classmethod
    def validate_times(cls, v):
        return to_local_naive(v)

    def changes(self) -> dict:
        """The fields the caller explicitly set, including explicit ``None``."""
        return {name: getattr(self, name) for name in self.model_fields_set}

class FieldChange(BaseModel):
    field: str
    old_value: Any = None
    new_value: Any = None

class HistoryEntry(BaseModel):
    """One audit log event. Task details are snapshotted so they survive deletion."""

    id: Optional[int] = Field(default=None, description="Assigned by the audit log on insert")
    timestamp: datetime = Field(description="When the event was logged")
    action: HistoryActionType
    task_id: str
    task_title: str
    task_quadrant: QuadrantType
    changes: List[FieldChange] = Field(default_factory=list)
    from_quadrant: Optional[QuadrantType] = None
    to_quadrant: Optional[QuadrantType] = None
    old_parent_id: Optional[str] = None
    old_parent_title: Optional[str] = None
    new_parent_id: Optional[str] = None
    new_parent_title: Optional[str] = None
    undo_correlation_id: Optional[str] = None
    is_deleted: bool = False

    @field_validator('timestamp')
    @classmethod
    def validate_timestamp(cls, v):
        return to_local_naive(v)

class DateRange(BaseModel):
    """Inclusive range of whole days."""

    model_config = ConfigDict(frozen=True)

    start: date
    end: date

    @model_validator(mode='after')
    def validate_dates(self):
        if self.end < self.start:
            raise ValueError("end must not be before start")
        return self

    def contains(self, moment: datetime) -> bool:
        return self.start <= moment.date() <= self.end

class TodayViewComponents(BaseModel):
    model_config = ConfigDict(frozen=True)

    show_overdue: bool = True
    show_due_soon: bool = True
    show_starred: bool = True

class FilterConfig(BaseModel):
    """Everything the filter resolver needs besides the tasks themselves."""

    model_config = ConfigDict(frozen=True)

    search_query: str = ""
    selected_tags: FrozenSet[str] = Field(default_factory=frozenset)
    selected_people: FrozenSet[str] = Field(default_factory=frozenset)
    show_completed: bool = True
    completed_cutoff: Optional[date] = Field(default=None, description="Hide tasks completed before this day")
    show_completed_only: bool = Field(default=False, description="Date-range mode")
    completed_date_range: Optional[DateRange] = None
    starred_only_quadrants: FrozenSet[QuadrantType] = Field(default_factory=frozenset)
    view_mode: Optional[ViewMode] = None
    today_days_ahead: Optional[int] = Field(default=7, ge=0, description="None means no upper bound")
    today_components: TodayViewComponents = Field(default_factory=TodayViewComponents)

    @property
    def date_range_active(self) -> bool:
        return self.show_completed_only and self.completed_date_range is not None

    @property
    def completed_view_active(self) -> bool:
        return self.view_mode == ViewMode.COMPLETED and self.completed_date_range is not None

    def with_lookback(self, days: Optional[int], today: Optional[date] = None) -> 'FilterConfig':
        """Derive ``completed_cutoff`` from a lookback window; ``None`` shows every completed task."""
        if days is None:
            return self.model_copy(update={"completed_cutoff": None})
        today = today or date.today()
        return self.model_copy(update={"completed_cutoff": today - timedelta(days=days)})

class FocusData(BaseYAMLModel):
    """The persisted document: every task, tag and person."""

    _schema_scope: str = "user"
    _schema_filename: str = "tasks"

    schema_version: str = Field(default=APP_SCHEMA_VERSION, description="Layout version of this document")
    tasks: List[Task] = Field(default_factory=list)
    tags: List[Tag] = Field(default_factory=list)
    people: List[Person] = Field(default_factory=list)

class HistoryLog(BaseYAMLModel):
    """The persisted audit log."""

    _schema_scope: str = "user"
    _schema_filename: str = "history"

    next_id: int = 1
    entries: List[HistoryEntry] = Field(default_factory=list)
