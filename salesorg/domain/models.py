from __future__ import annotations

from datetime import UTC, datetime
from enum import StrEnum
from typing import Any
from uuid import uuid4

from pydantic import BaseModel, ConfigDict
from pydantic import Field as PydanticField
from sqlalchemy import JSON, Column, Index, UniqueConstraint, text
from sqlmodel import Field, SQLModel

from salesorg.domain.hierarchy_rules import HIERARCHY_MAX_LEVEL, HIERARCHY_MIN_LEVEL

LEVEL_CODE_PATTERN = r"^\s*[A-Za-z0-9_]+\s*$"
MAX_NAME_LENGTH = 100
MAX_CODE_LENGTH = 50
MAX_DESCRIPTION_LENGTH = 500


def now_utc() -> datetime:
    return datetime.now(UTC)


class RecordStatus(StrEnum):
    ACTIVE = "active"
    INACTIVE = "inactive"


class AgentStatus(StrEnum):
    ACTIVE = "active"
    INACTIVE = "inactive"
    SUSPENDED = "suspended"


class VisibilityPolicy(StrEnum):
    UNRESTRICTED = "unrestricted"
    DENY_IF_UNRESOLVED = "deny_if_unresolved"


class AuditLog(SQLModel, table=True):
    __tablename__ = "audit_logs"

    id: str = Field(default_factory=lambda: str(uuid4()), primary_key=True)
    channel_id: str | None = Field(default=None, index=True)
    actor_id: str | None = Field(default=None, index=True)
    action: str
    resource: str
    method: str
    status_code: int
    ts: datetime = Field(default_factory=now_utc, index=True)
    detail: dict[str, Any] = Field(
        default_factory=dict,
        sa_column=Column(JSON, nullable=False),
    )


class Channel(SQLModel, table=True):
    __tablename__ = "channels"

    id: str = Field(default_factory=lambda: str(uuid4()), primary_key=True)
    name: str = Field(index=True)
    code: str = Field(index=True, unique=True)
    status: RecordStatus = Field(default=RecordStatus.ACTIVE, index=True)
    is_deleted: bool = Field(default=False, index=True)
    deleted_at: datetime | None = Field(default=None)
    created_at: datetime = Field(default_factory=now_utc, index=True)
    updated_at: datetime = Field(default_factory=now_utc, index=True)


class Role(SQLModel, table=True):
    __tablename__ = "roles"
    __table_args__ = (UniqueConstraint("channel_id", "code", name="uq_roles_channel_code"),)

    id: str = Field(default_factory=lambda: str(uuid4()), primary_key=True)
    channel_id: str = Field(foreign_key="channels.id", index=True)
    name: str = Field(index=True)
    code: str = Field(index=True)
    status: RecordStatus = Field(default=RecordStatus.ACTIVE, index=True)
    is_deleted: bool = Field(default=False, index=True)
    deleted_at: datetime | None = Field(default=None)
    created_at: datetime = Field(default_factory=now_utc, index=True)


class HierarchyNode(SQLModel, table=True):
    __tablename__ = "hierarchies"
    __table_args__ = (
        Index(
            "uq_hierarchies_channel_level_code_live",
            "channel_id",
            "level_code",
            unique=True,
            sqlite_where=text("is_deleted = 0"),
            postgresql_where=text("is_deleted = false"),
        ),
        Index("ix_hierarchies_channel_level", "channel_id", "level"),
        Index("ix_hierarchies_channel_parent", "channel_id", "parent_id"),
        Index("ix_hierarchies_parent_order", "parent_id", "order"),
    )

    id: str = Field(default_factory=lambda: str(uuid4()), primary_key=True)
    channel_id: str = Field(foreign_key="channels.id", index=True)
    name: str
    level_code: str = Field(index=True)
    level: int = Field(index=True)
    parent_id: str | None = Field(default=None, foreign_key="hierarchies.id", index=True)
    description: str | None = None
    order: int = Field(default=0)
    status: RecordStatus = Field(default=RecordStatus.ACTIVE, index=True)
    is_deleted: bool = Field(default=False, index=True)
    deleted_at: datetime | None = Field(default=None)
    created_at: datetime = Field(default_factory=now_utc, index=True)
    updated_at: datetime = Field(default_factory=now_utc, index=True)


class Designation(SQLModel, table=True):
    __tablename__ = "designations"
    __table_args__ = (
        UniqueConstraint("channel_id", "code", name="uq_designations_channel_code"),
        Index("ix_designations_channel_hierarchy", "channel_id", "hierarchy_id"),
        Index("ix_designations_channel_name", "channel_id", "name"),
    )

    id: str = Field(default_factory=lambda: str(uuid4()), primary_key=True)
    channel_id: str = Field(foreign_key="channels.id", index=True)
    role_id: str = Field(foreign_key="roles.id", index=True)
    hierarchy_id: str = Field(foreign_key="hierarchies.id", index=True)
    name: str = Field(index=True)
    code: str = Field(index=True)
    description: str | None = None
    designation_order: int = Field(default=0)
    status: RecordStatus = Field(default=RecordStatus.ACTIVE, index=True)
    is_deleted: bool = Field(default=False, index=True)
    deleted_at: datetime | None = Field(default=None)
    created_at: datetime = Field(default_factory=now_utc, index=True)


class Agent(SQLModel, table=True):
    __tablename__ = "agents"
    __table_args__ = (Index("ix_agents_designation_status", "designation_id", "agent_status"),)

    id: str = Field(default_factory=lambda: str(uuid4()), primary_key=True)
    user_id: str | None = Field(default=None, index=True)
    channel_id: str = Field(foreign_key="channels.id", index=True)
    designation_id: str = Field(foreign_key="designations.id", index=True)
    agent_code: str = Field(index=True, unique=True)
    first_name: str | None = None
    last_name: str | None = None
    email: str | None = Field(default=None, index=True)
    agent_status: AgentStatus = Field(default=AgentStatus.ACTIVE, index=True)
    team_lead_id: str | None = Field(default=None, foreign_key="agents.id", index=True)
    reporting_manager_id: str | None = Field(default=None, foreign_key="agents.id", index=True)
    is_deleted: bool = Field(default=False, index=True)
    deleted_at: datetime | None = Field(default=None)
    created_at: datetime = Field(default_factory=now_utc, index=True)
    updated_at: datetime = Field(default_factory=now_utc, index=True)


class ORMReadModel(BaseModel):
    model_config = ConfigDict(from_attributes=True)


class ChannelCreate(BaseModel):
    name: str = PydanticField(min_length=1, max_length=MAX_NAME_LENGTH)
    code: str = PydanticField(min_length=1, max_length=MAX_CODE_LENGTH, pattern=LEVEL_CODE_PATTERN)
    status: RecordStatus = RecordStatus.ACTIVE


class ChannelRead(ORMReadModel):
    id: str
    name: str
    code: str
    status: RecordStatus
    created_at: datetime


class RoleCreate(BaseModel):
    channel_id: str
    name: str = PydanticField(min_length=1, max_length=MAX_NAME_LENGTH)
    code: str = PydanticField(min_length=1, max_length=MAX_CODE_LENGTH, pattern=LEVEL_CODE_PATTERN)


class RoleRead(ORMReadModel):
    id: str
    channel_id: str
    name: str
    code: str
    status: RecordStatus
    created_at: datetime


class HierarchyCreate(BaseModel):
    channel_id: str
    name: str = PydanticField(min_length=1, max_length=MAX_NAME_LENGTH)
    level_code: str = PydanticField(min_length=1, max_length=MAX_CODE_LENGTH, pattern=LEVEL_CODE_PATTERN)
    level: int = PydanticField(ge=HIERARCHY_MIN_LEVEL, le=HIERARCHY_MAX_LEVEL)
    parent_id: str | None = None
    description: str | None = PydanticField(default=None, max_length=MAX_DESCRIPTION_LENGTH)
    order: int | None = PydanticField(default=None, ge=0)
    status: RecordStatus | None = None


class HierarchyUpdate(BaseModel):
    name: str | None = PydanticField(default=None, min_length=1, max_length=MAX_NAME_LENGTH)
    level_code: str | None = PydanticField(
        default=None,
        min_length=1,
        max_length=MAX_CODE_LENGTH,
        pattern=LEVEL_CODE_PATTERN,
    )
    level: int | None = PydanticField(default=None, ge=HIERARCHY_MIN_LEVEL, le=HIERARCHY_MAX_LEVEL)
    parent_id: str | None = None
    description: str | None = PydanticField(default=None, max_length=MAX_DESCRIPTION_LENGTH)
    order: int | None = PydanticField(default=None, ge=0)
    status: RecordStatus | None = None


class HierarchyRead(BaseModel):
    id: str
    channel_id: str
    channel_name: str | None = None
    channel_code: str | None = None
    name: str
    level_code: str
    level: int
    parent_id: str | None = None
    parent_name: str | None = None
    description: str | None = None
    order: int
    status: RecordStatus
    is_active: bool
    is_root: bool
    has_parent: bool
    created_at: datetime
    updated_at: datetime


class PaginationRead(BaseModel):
    page: int
    limit: int
    total: int
    total_pages: int


class HierarchyPageRead(BaseModel):
    hierarchies: list[HierarchyRead]
    pagination: PaginationRead


class DesignationCreate(BaseModel):
    channel_id: str
    role_id: str
    hierarchy_id: str
    name: str = PydanticField(min_length=1, max_length=MAX_NAME_LENGTH)
    code: str = PydanticField(min_length=1, max_length=MAX_CODE_LENGTH, pattern=LEVEL_CODE_PATTERN)
    description: str | None = PydanticField(default=None, max_length=MAX_DESCRIPTION_LENGTH)
    designation_order: int = PydanticField(default=0, ge=0)
    status: RecordStatus = RecordStatus.ACTIVE


class DesignationRead(ORMReadModel):
    id: str
    channel_id: str
    role_id: str
    hierarchy_id: str
    name: str
    code: str
    description: str | None = None
    designation_order: int
    status: RecordStatus
    created_at: datetime


class AgentCreate(BaseModel):
    channel_id: str
    designation_id: str
    agent_code: str = PydanticField(min_length=1, max_length=MAX_CODE_LENGTH)
    user_id: str | None = None
    first_name: str | None = PydanticField(default=None, max_length=MAX_NAME_LENGTH)
    last_name: str | None = PydanticField(default=None, max_length=MAX_NAME_LENGTH)
    email: str | None = None
    agent_status: AgentStatus = AgentStatus.ACTIVE
    team_lead_id: str | None = None
    reporting_manager_id: str | None = None


class AgentStatusUpdate(BaseModel):
    agent_status: AgentStatus


class AgentRead(ORMReadModel):
    id: str
    user_id: str | None = None
    channel_id: str
    designation_id: str
    agent_code: str
    first_name: str | None = None
    last_name: str | None = None
    email: str | None = None
    agent_status: AgentStatus
    team_lead_id: str | None = None
    reporting_manager_id: str | None = None
    created_at: datetime


class BelowAgentHierarchyRead(BaseModel):
    hierarchy_id: str
    hierarchy_name: str
    hierarchy_level_code: str
    designation_name: str


class BelowAgentRead(BaseModel):
    hierarchies: list[BelowAgentHierarchyRead]


class AgentBelowDesignationRead(BaseModel):
    agent_id: str
    full_name: str


class ChannelRefRead(BaseModel):
    id: str
    name: str
    code: str


class DesignationRefRead(BaseModel):
    id: str
    name: str
    code: str


class AgentRefRead(BaseModel):
    id: str
    agent_code: str
    full_name: str


class TeamMemberRead(BaseModel):
    id: str
    agent_code: str
    full_name: str
    email: str | None = None
    agent_status: AgentStatus
    hierarchy_id: str
    hierarchy_level_code: str
    hierarchy_order: int
    channel: ChannelRefRead | None = None
    designation: DesignationRefRead | None = None
    team_lead: AgentRefRead | None = None
    reporting_manager: AgentRefRead | None = None
