from datetime import datetime
from enum import Enum
from typing import Any

from pydantic import BaseModel, ConfigDict, Field, field_validator
from pydantic.alias_generators import to_camel


class EntityType(str, Enum):
    """Archivable entity kinds. Stored in the ledger by name."""
    PROJECT = "Project"
    USER = "User"
    MESSAGE = "Message"

    @classmethod
    def _missing_(cls, value):
        # Accept legacy integer codes and case-insensitive names
        if isinstance(value, int) and not isinstance(value, bool):
            members = list(cls)
            if 0 <= value < len(members):
                return members[value]
            return None
        if isinstance(value, str):
            text = value.strip()
            if text.isdigit():
                return cls._missing_(int(text))
            for member in cls:
                if member.value.lower() == text.lower():
                    return member
        return None


class _CamelModel(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


class ArchiveCreate(_CamelModel):
    """Archive an entity for the calling user."""
    entity_id: str = Field(min_length=1, max_length=450, examples=["42"])
    entity_type: EntityType = Field(examples=["Project"])

    @field_validator("entity_id", mode="before")
    @classmethod
    def _coerce_entity_id(cls, value: Any):
        # Clients send integer ids for projects and messages
        if isinstance(value, int) and not isinstance(value, bool):
            return str(value)
        if isinstance(value, str):
            return value.strip()
        return value

    @field_validator("entity_type", mode="before")
    @classmethod
    def _coerce_entity_type(cls, value: Any):
        if isinstance(value, EntityType):
            return value
        return EntityType(value)


class ArchiveOut(_CamelModel):
    id: int
    entity_id: str
    entity_type: EntityType
    archived_by: str
    archived_date: datetime


class UnarchiveOut(BaseModel):
    success: bool
