"""Data models for the notd core."""

import datetime
from dataclasses import dataclass
from datetime import timezone
from enum import Enum
from typing import Any, Optional, Union

from pydantic import BaseModel, Field, field_validator, model_validator

# Weight is the colon count of an annotation: "::" is 2, ":::" is 3, "::::" is 4.
MIN_PROPERTY_WEIGHT = 2
INTERNAL_WEIGHT = 3
_APPENDABLE_MIN_WEIGHT = 4


def utc_now() -> datetime.datetime:
    """Get current UTC time as timezone-aware datetime."""
    return datetime.datetime.now(timezone.utc)


class OwnerType(str, Enum):
    """Kinds of entity that can own properties."""

    NOTE = "note"
    PAGE = "page"


class PropertyBehavior(str, Enum):
    """How a property row survives re-indexing.

    REPLACEABLE rows are cleared and rebuilt from content on every
    re-index. APPENDABLE rows are never removed by re-indexing, so each
    index run adds to a history.
    """

    REPLACEABLE = "replaceable"
    APPENDABLE = "appendable"

    @classmethod
    def from_weight(cls, weight: int) -> "PropertyBehavior":
        """Classify a property by its weight."""
        if weight >= _APPENDABLE_MIN_WEIGHT:
            return cls.APPENDABLE
        return cls.REPLACEABLE

    def weight_filter(self, weight_column):
        """SQL expression selecting rows of this behavior from ``weight_column``."""
        if self is PropertyBehavior.APPENDABLE:
            return weight_column >= _APPENDABLE_MIN_WEIGHT
        return weight_column < _APPENDABLE_MIN_WEIGHT


class OperationType(str, Enum):
    """Batch operation types, declared in execution phase order."""

    DELETE = "delete"
    CREATE = "create"
    UPDATE = "update"


@dataclass(frozen=True)
class Notification:
    """An outbound notification decided by a trigger.

    Attributes:
        owner_type: "note" or "page".
        owner_id: Id of the owner whose property was written.
        property_name: Name of the property that fired the trigger.
        property_value: Value written.
    """

    owner_type: str
    owner_id: int
    property_name: str
    property_value: str


class PropertyDefinition(BaseModel):
    """Admin rule that fixes the internal flag of a property name."""

    name: str = Field(..., description="Property name the rule applies to")
    internal: bool = Field(default=False, description="Internal flag to apply")
    auto_apply: bool = Field(
        default=True, description="Whether the rule applies to new and existing rows"
    )
    description: Optional[str] = Field(default=None, description="Admin note")
    created_at: Optional[datetime.datetime] = None
    updated_at: Optional[datetime.datetime] = None

    model_config = {"validate_assignment": True}

    @field_validator("name")
    @classmethod
    def _name_not_blank(cls, value: str) -> str:
        value = value.strip()
        if not value:
            raise ValueError("Definition name cannot be empty")
        return value


# A note reference is a real id (int or digit string) or a temporary id.
NoteRefField = Union[int, str]


def _check_note_ref(value: Any) -> Any:
    if value is None:
        return value
    if isinstance(value, bool):
        raise ValueError("note reference must be an id or a temporary id")
    if isinstance(value, int) and value < 1:
        raise ValueError("note id must be positive")
    if isinstance(value, str) and not value.strip():
        raise ValueError("note reference cannot be blank")
    return value


class _PayloadModel(BaseModel):
    """Base for batch payloads: unknown keys are ignored, not rejected."""

    model_config = {"extra": "ignore"}

    client_temp_id: Optional[str] = None


class CreateNotePayload(_PayloadModel):
    """Payload of a ``create`` operation."""

    page_id: Optional[int] = None
    page_name: Optional[str] = None
    content: str = ""
    parent_note_id: Optional[NoteRefField] = None
    order_index: Optional[int] = Field(default=None, ge=0)
    collapsed: bool = False

    @field_validator("content", mode="before")
    @classmethod
    def _null_content_is_empty(cls, value: Any) -> Any:
        return "" if value is None else value

    @field_validator("parent_note_id")
    @classmethod
    def _valid_parent(cls, value: Any) -> Any:
        return _check_note_ref(value)

    @field_validator("client_temp_id")
    @classmethod
    def _valid_temp_id(cls, value: Optional[str]) -> Optional[str]:
        if value is None:
            return value
        value = value.strip()
        if not value:
            raise ValueError("client_temp_id cannot be blank")
        if value.isascii() and value.isdigit():
            raise ValueError("client_temp_id must not look like a real note id")
        return value

    @model_validator(mode="after")
    def _needs_page(self) -> "CreateNotePayload":
        if self.page_id is None and not (self.page_name and self.page_name.strip()):
            raise ValueError("create requires page_id or page_name")
        return self


class UpdateNotePayload(_PayloadModel):
    """Payload of an ``update`` operation.

    Only fields present in the payload are applied; ``parent_note_id: null``
    moves the note to the page root.
    """

    id: NoteRefField
    content: Optional[str] = None
    parent_note_id: Optional[NoteRefField] = None
    order_index: Optional[int] = Field(default=None, ge=0)
    collapsed: Optional[bool] = None
    page_id: Optional[int] = None

    @field_validator("id", "parent_note_id")
    @classmethod
    def _valid_refs(cls, value: Any) -> Any:
        return _check_note_ref(value)

    def updated_fields(self) -> set:
        """Names of the updatable fields the client actually supplied."""
        supplied = self.model_fields_set - {"id", "client_temp_id"}
        return {
            name for name in supplied
            if name == "parent_note_id" or getattr(self, name) is not None
        }


class DeleteNotePayload(_PayloadModel):
    """Payload of a ``delete`` operation."""

    id: NoteRefField

    @field_validator("id")
    @classmethod
    def _valid_id(cls, value: Any) -> Any:
        return _check_note_ref(value)


PAYLOAD_MODELS = {
    OperationType.CREATE: CreateNotePayload,
    OperationType.UPDATE: UpdateNotePayload,
    OperationType.DELETE: DeleteNotePayload,
}
