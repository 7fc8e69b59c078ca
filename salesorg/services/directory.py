from __future__ import annotations

from collections.abc import Iterable

from sqlmodel import Session, col, select

from salesorg.domain.models import Agent, Channel, Designation, HierarchyNode
from salesorg.domain.visibility import is_visible, visible_clause


class ChannelDirectory:
    def __init__(self, session: Session) -> None:
        self._session = session

    def get(self, channel_id: str) -> Channel | None:
        channel = self._session.get(Channel, channel_id)
        return channel if is_visible(channel) else None

    def get_many(self, channel_ids: Iterable[str]) -> dict[str, Channel]:
        ids = sorted(set(channel_ids))
        if not ids:
            return {}
        rows = self._session.exec(select(Channel).where(col(Channel.id).in_(ids))).all()
        return {row.id: row for row in rows}


class HierarchyDirectory:
    def __init__(self, session: Session) -> None:
        self._session = session

    def find_by_id(self, hierarchy_id: str) -> HierarchyNode | None:
        node = self._session.get(HierarchyNode, hierarchy_id)
        return node if is_visible(node) else None

    def lock_by_id(self, hierarchy_id: str) -> HierarchyNode | None:
        statement = (
            select(HierarchyNode)
            .where(HierarchyNode.id == hierarchy_id)
            .with_for_update()
            .execution_options(populate_existing=True)
        )
        node = self._session.exec(statement).first()
        return node if is_visible(node) else None

    def find_by_channel(self, channel_id: str) -> list[HierarchyNode]:
        statement = (
            select(HierarchyNode)
            .where(HierarchyNode.channel_id == channel_id)
            .where(visible_clause(HierarchyNode))
        )
        return list(self._session.exec(statement).all())

    def find_all(self) -> list[HierarchyNode]:
        return list(self._session.exec(select(HierarchyNode).where(visible_clause(HierarchyNode))).all())

    def find_by_level_code(self, channel_id: str, level_code: str) -> HierarchyNode | None:
        statement = (
            select(HierarchyNode)
            .where(HierarchyNode.channel_id == channel_id)
            .where(HierarchyNode.level_code == level_code.strip().upper())
            .where(visible_clause(HierarchyNode))
        )
        return self._session.exec(statement).first()

    def find_children(self, parent_id: str) -> list[HierarchyNode]:
        statement = (
            select(HierarchyNode)
            .where(HierarchyNode.parent_id == parent_id)
            .where(visible_clause(HierarchyNode))
            .order_by(col(HierarchyNode.order), col(HierarchyNode.level_code))
        )
        return list(self._session.exec(statement).all())


class DesignationDirectory:
    def __init__(self, session: Session) -> None:
        self._session = session

    def find_by_id(self, designation_id: str) -> Designation | None:
        designation = self._session.get(Designation, designation_id)
        return designation if is_visible(designation) else None

    def find_by_name(self, channel_id: str, name: str) -> Designation | None:
        statement = (
            select(Designation)
            .where(Designation.channel_id == channel_id)
            .where(Designation.name == name)
            .where(visible_clause(Designation))
            .order_by(col(Designation.created_at))
        )
        return self._session.exec(statement).first()

    def find_by_hierarchy_ids(self, hierarchy_ids: Iterable[str]) -> list[Designation]:
        ids = sorted(set(hierarchy_ids))
        if not ids:
            return []
        statement = (
            select(Designation)
            .where(col(Designation.hierarchy_id).in_(ids))
            .where(visible_clause(Designation))
        )
        return list(self._session.exec(statement).all())

    def get_many(self, designation_ids: Iterable[str]) -> dict[str, Designation]:
        ids = sorted(set(designation_ids))
        if not ids:
            return {}
        rows = self._session.exec(select(Designation).where(col(Designation.id).in_(ids))).all()
        return {row.id: row for row in rows}


class AgentDirectory:
    def __init__(self, session: Session) -> None:
        self._session = session

    def find_by_id(self, agent_id: str) -> Agent | None:
        agent = self._session.get(Agent, agent_id)
        return agent if is_visible(agent) else None

    def find_by_user_id(self, user_id: str) -> Agent | None:
        statement = (
            select(Agent)
            .where(Agent.user_id == user_id)
            .where(visible_clause(Agent))
            .order_by(col(Agent.created_at))
        )
        return self._session.exec(statement).first()

    def find_by_designation_ids(
        self,
        designation_ids: Iterable[str],
        active_states: Iterable[str] | None = None,
    ) -> list[Agent]:
        ids = sorted(set(designation_ids))
        if not ids:
            return []
        statement = (
            select(Agent)
            .where(col(Agent.designation_id).in_(ids))
            .where(visible_clause(Agent, active_states))
        )
        return list(self._session.exec(statement).all())

    def find_all(self, active_states: Iterable[str] | None = None) -> list[Agent]:
        return list(self._session.exec(select(Agent).where(visible_clause(Agent, active_states))).all())

    def get_many(self, agent_ids: Iterable[str]) -> dict[str, Agent]:
        ids = sorted(set(agent_ids))
        if not ids:
            return {}
        rows = self._session.exec(select(Agent).where(col(Agent.id).in_(ids))).all()
        return {row.id: row for row in rows}
