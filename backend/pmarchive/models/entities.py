from typing import Literal, Optional

from pydantic import BaseModel, Field, field_validator

# 1 = Project, 2 = Department, 3 = Personal
MESSAGE_TYPES = (1, 2, 3)


class ProjectCreate(BaseModel):
    project_name: str = Field(min_length=1, max_length=200, examples=["ERP Migration"])
    project_owner: str = Field(default="", max_length=200)
    priority: Literal["Low", "Medium", "High", "Critical"] = "Medium"
    status: Literal["ToDo", "InProgress", "Done", "OnHold"] = "ToDo"
    due_date: Optional[str] = Field(None, max_length=40, examples=["2026-12-31"])


class ProjectOut(BaseModel):
    id: int
    project_name: str
    project_owner: str
    priority: str
    status: str
    due_date: Optional[str] = None
    is_archived: bool
    archive_date: Optional[str] = None
    created_by: Optional[str] = None
    created_at: str
    updated_at: Optional[str] = None


class UserCreate(BaseModel):
    id: str = Field(min_length=1, max_length=450, examples=["alice"])
    full_name: str = Field(min_length=1, max_length=200)
    email: str = Field(default="", max_length=256)
    department: str = Field(default="", max_length=200)
    title: str = Field(default="", max_length=200)

    @field_validator("id")
    @classmethod
    def _strip_id(cls, value: str) -> str:
        value = value.strip()
        if not value:
            raise ValueError("id must not be blank")
        return value


class UserOut(BaseModel):
    id: str
    full_name: str
    email: str
    department: str
    title: str
    status: str
    is_archived: bool
    archive_date: Optional[str] = None
    created_at: str
    updated_at: Optional[str] = None


class MessageCreate(BaseModel):
    content: str = Field(min_length=1, max_length=5000)
    receiver_id: Optional[str] = Field(None, max_length=450)
    project_id: Optional[int] = None
    message_type: Literal[1, 2, 3] = 3


class MessageOut(BaseModel):
    id: int
    content: str
    sender_id: str
    receiver_id: Optional[str] = None
    project_id: Optional[int] = None
    message_type: int
    time_sent: str
    is_archived: bool
