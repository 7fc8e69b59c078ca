from __future__ import annotations

import logging

from sqlalchemy.exc import IntegrityError
from sqlmodel import Session, select

from salesorg.domain.models import (
    Agent,
    AgentCreate,
    AgentStatus,
    Channel,
    ChannelCreate,
    Designation,
    DesignationCreate,
    Role,
    RoleCreate,
    now_utc,
)
from salesorg.domain.visibility import is_visible, visible_clause
from salesorg.infra.db import get_engine
from salesorg.services.directory import (
    AgentDirectory,
    ChannelDirectory,
    DesignationDirectory,
    HierarchyDirectory,
)

logger = logging.getLogger(__name__)


class RegistryError(Exception):
    pass


class NotFoundError(RegistryError):
    pass


class ConflictError(RegistryError):
    pass


class RegistryService:
    def _session(self) -> Session:
        return Session(get_engine(), expire_on_commit=False)

    def _require_channel(self, session: Session, channel_id: str) -> Channel:
        channel = ChannelDirectory(session).get(channel_id)
        if channel is None:
            raise NotFoundError("channel not found")
        return channel

    def create_channel(self, payload: ChannelCreate) -> Channel:
        with self._session() as session:
            channel = Channel(
                name=payload.name.strip(),
                code=payload.code.strip().upper(),
                status=payload.status,
            )
            session.add(channel)
            try:
                session.commit()
            except IntegrityError as exc:
                session.rollback()
                raise ConflictError("channel code already exists") from exc
            session.refresh(channel)
        logger.info("Channel created id=%s code=%s", channel.id, channel.code)
        return channel

    def get_channel(self, channel_id: str) -> Channel:
        with self._session() as session:
            return self._require_channel(session, channel_id)

    def delete_channel(self, channel_id: str) -> None:
        with self._session() as session:
            channel = self._require_channel(session, channel_id)
            channel.is_deleted = True
            channel.deleted_at = now_utc()
            channel.updated_at = channel.deleted_at
            session.add(channel)
            session.commit()
        logger.info("Channel deleted id=%s", channel_id)

    def create_role(self, payload: RoleCreate) -> Role:
        with self._session() as session:
            self._require_channel(session, payload.channel_id)
            role = Role(
                channel_id=payload.channel_id,
                name=payload.name.strip(),
                code=payload.code.strip().upper(),
            )
            session.add(role)
            try:
                session.commit()
            except IntegrityError as exc:
                session.rollback()
                raise ConflictError("role code already exists in channel") from exc
            session.refresh(role)
            return role

    def create_designation(self, payload: DesignationCreate) -> Designation:
        with self._session() as session:
            self._require_channel(session, payload.channel_id)
            role = session.get(Role, payload.role_id)
            if role is None or not is_visible(role) or role.channel_id != payload.channel_id:
                raise NotFoundError("role not found in channel")
            node = HierarchyDirectory(session).find_by_id(payload.hierarchy_id)
            if node is None or node.channel_id != payload.channel_id:
                raise NotFoundError("hierarchy not found in channel")

            designation = Designation(
                channel_id=payload.channel_id,
                role_id=payload.role_id,
                hierarchy_id=payload.hierarchy_id,
                name=payload.name.strip(),
                code=payload.code.strip().upper(),
                description=payload.description.strip() if payload.description is not None else None,
                designation_order=payload.designation_order,
                status=payload.status,
            )
            session.add(designation)
            try:
                session.commit()
            except IntegrityError as exc:
                session.rollback()
                raise ConflictError("designation code already exists in channel") from exc
            session.refresh(designation)
        logger.info(
            "Designation created id=%s name=%s hierarchy_id=%s",
            designation.id,
            designation.name,
            designation.hierarchy_id,
        )
        return designation

    def create_agent(self, payload: AgentCreate) -> Agent:
        with self._session() as session:
            self._require_channel(session, payload.channel_id)
            designation = DesignationDirectory(session).find_by_id(payload.designation_id)
            if designation is None or designation.channel_id != payload.channel_id:
                raise NotFoundError("designation not found in channel")
            agents = AgentDirectory(session)
            for reference in (payload.team_lead_id, payload.reporting_manager_id):
                if reference is not None and agents.find_by_id(reference) is None:
                    raise NotFoundError("referenced agent not found")

            agent = Agent(
                user_id=payload.user_id,
                channel_id=payload.channel_id,
                designation_id=payload.designation_id,
                agent_code=payload.agent_code.strip(),
                first_name=payload.first_name,
                last_name=payload.last_name,
                email=payload.email,
                agent_status=payload.agent_status,
                team_lead_id=payload.team_lead_id,
                reporting_manager_id=payload.reporting_manager_id,
            )
            session.add(agent)
            try:
                session.commit()
            except IntegrityError as exc:
                session.rollback()
                raise ConflictError("agent code already exists") from exc
            session.refresh(agent)
        logger.info("Agent created id=%s designation_id=%s", agent.id, agent.designation_id)
        return agent

    def get_agent(self, agent_id: str) -> Agent:
        with self._session() as session:
            agent = AgentDirectory(session).find_by_id(agent_id)
            if agent is None:
                raise NotFoundError("agent not found")
            return agent

    def set_agent_status(self, agent_id: str, agent_status: AgentStatus) -> Agent:
        with self._session() as session:
            agent = AgentDirectory(session).find_by_id(agent_id)
            if agent is None:
                raise NotFoundError("agent not found")
            agent.agent_status = agent_status
            agent.updated_at = now_utc()
            session.add(agent)
            session.commit()
            session.refresh(agent)
        logger.info("Agent status changed id=%s status=%s", agent_id, agent_status)
        return agent

    def delete_agent(self, agent_id: str) -> None:
        with self._session() as session:
            agent = AgentDirectory(session).find_by_id(agent_id)
            if agent is None:
                raise NotFoundError("agent not found")
            agent.is_deleted = True
            agent.deleted_at = now_utc()
            agent.updated_at = agent.deleted_at
            session.add(agent)
            session.commit()
        logger.info("Agent deleted id=%s", agent_id)

    def list_agents(self, channel_id: str) -> list[Agent]:
        with self._session() as session:
            statement = select(Agent).where(Agent.channel_id == channel_id).where(visible_clause(Agent))
            return list(session.exec(statement).all())
