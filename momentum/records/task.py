"""Task input records — creation and edit payloads, validated before a Task is touched."""

from datetime import date
from typing import List, Literal, Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator

Priority = Literal["low", "medium", "high", "urgent"]
AssignmentType = Literal["individual", "multiple", "team"]

# Fields only the creator or a team owner/admin may change
ASSIGNMENT_FIELDS = frozenset(
    {"assignees", "assigned_by", "team_id", "due_date", "priority", "assignment_type"}
)


def _clean_name(v: str) -> str:
    v = (v or "").strip()
    if not v:
        raise ValueError("Task name is required")
    return v


def _clean_tags(v: List[str]) -> List[str]:
    return [t.strip() for t in v if t and t.strip()]


def _dedupe(ids: List[str]) -> List[str]:
    seen = []
    for user_id in ids:
        user_id = str(user_id).strip()
        if user_id and user_id not in seen:
            seen.append(user_id)
    return seen


class TaskInput(BaseModel):
    """
    Task creation request.

    ``assignees`` may be omitted: the creator becomes the sole assignee, or
    every team member when ``assignment_type`` is ``team``.
    """

    model_config = ConfigDict(extra="forbid", populate_by_name=True)

    name: str = Field(max_length=200, description="Task name")
    description: Optional[str] = Field(default=None, max_length=2000)
    assignees: Optional[List[str]] = Field(default=None, alias="assignedTo")
    team_id: Optional[str] = Field(default=None, alias="teamId")
    assignment_type: AssignmentType = Field(default="individual", alias="assignmentType")
    priority: Priority = "medium"
    due_date: Optional[date] = Field(default=None, alias="dueDate")
    tags: List[str] = Field(default_factory=list, description="Searchable tags")

    @field_validator("name")
    @classmethod
    def validate_name(cls, v: str) -> str:
        return _clean_name(v)

    @field_validator("description")
    @classmethod
    def strip_description(cls, v: Optional[str]) -> Optional[str]:
        return v.strip() if v is not None else None

    @field_validator("tags")
    @classmethod
    def strip_tags(cls, v: List[str]) -> List[str]:
        return _clean_tags(v)

    @field_validator("assignees", mode="before")
    @classmethod
    def coerce_assignees(cls, v):
        # A single user id is accepted as well as a list
        if isinstance(v, str):
            return [v]
        return v

    @field_validator("assignees")
    @classmethod
    def dedupe_assignees(cls, v: Optional[List[str]]) -> Optional[List[str]]:
        if v is None:
            return None
        return _dedupe(v) or None

    @model_validator(mode="after")
    def team_assignment_needs_team(self) -> "TaskInput":
        if self.assignment_type == "team" and not self.team_id:
            raise ValueError("assignment_type 'team' requires team_id")
        return self


class TaskUpdate(BaseModel):
    """
    Partial edit. Only fields present in the payload are applied
    (see ``changes()``).
    """

    model_config = ConfigDict(extra="forbid", populate_by_name=True)

    name: Optional[str] = Field(default=None, max_length=200)
    description: Optional[str] = Field(default=None, max_length=2000)
    tags: Optional[List[str]] = None
    assignees: Optional[List[str]] = Field(default=None, alias="assignedTo")
    assigned_by: Optional[str] = Field(default=None, alias="assignedBy")
    team_id: Optional[str] = Field(default=None, alias="teamId")
    assignment_type: Optional[AssignmentType] = Field(default=None, alias="assignmentType")
    priority: Optional[Priority] = None
    due_date: Optional[date] = Field(default=None, alias="dueDate")

    @field_validator("name")
    @classmethod
    def validate_name(cls, v: Optional[str]) -> Optional[str]:
        if v is None:
            raise ValueError("Task name cannot be removed")
        return _clean_name(v)

    @field_validator("description")
    @classmethod
    def strip_description(cls, v: Optional[str]) -> Optional[str]:
        return v.strip() if v is not None else None

    @field_validator("tags")
    @classmethod
    def strip_tags(cls, v: Optional[List[str]]) -> List[str]:
        return _clean_tags(v or [])

    @field_validator("assignees")
    @classmethod
    def require_assignees(cls, v: Optional[List[str]]) -> List[str]:
        v = _dedupe(v or [])
        if not v:
            raise ValueError("A task needs at least one assignee")
        return v

    @field_validator("assigned_by")
    @classmethod
    def require_assigner(cls, v: Optional[str]) -> str:
        if not v or not v.strip():
            raise ValueError("assigned_by cannot be empty")
        return v.strip()

    @field_validator("priority", "assignment_type")
    @classmethod
    def not_null(cls, v):
        if v is None:
            raise ValueError("value cannot be null")
        return v

    @property
    def touches_assignment(self) -> bool:
        return bool(ASSIGNMENT_FIELDS & self.model_fields_set)

    def changes(self) -> dict:
        return {name: getattr(self, name) for name in self.model_fields_set}


class CompletionToggle(BaseModel):
    """Body of the completion endpoint."""

    model_config = ConfigDict(populate_by_name=True)

    is_completed: bool = Field(alias="isCompleted")
