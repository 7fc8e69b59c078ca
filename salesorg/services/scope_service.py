"""Scope resolution over the channel hierarchy.

Three read-only resolutions are offered:

``resolve_below_agent``
    Level-code descent. Every (hierarchy, designation) pair in the agent's
    channel whose numeric level code is strictly below the agent's own.

``resolve_agents_below_designation``
    Level-code descent to people. Active agents holding any designation bound
    to a node below the named designation's node.

``resolve_team_scope``
    Order-field descent. Hierarchies or agents, across every channel, whose
    node ``order`` is at most the requesting user's. When the user cannot be
    placed in the hierarchy the configured :class:`VisibilityPolicy` decides
    between "everything" and "nothing".

Nothing here writes, and nothing is cached.
"""

from __future__ import annotations

import logging
from uuid import UUID

from sqlmodel import Session

from salesorg.domain.hierarchy_rules import SCOPE_VISIBILITY_POLICY
from salesorg.domain.models import (
    Agent,
    AgentBelowDesignationRead,
    AgentRefRead,
    BelowAgentHierarchyRead,
    BelowAgentRead,
    Channel,
    ChannelRefRead,
    Designation,
    DesignationRefRead,
    HierarchyNode,
    HierarchyRead,
    TeamMemberRead,
    VisibilityPolicy,
)
from salesorg.domain.ordering import LevelCodeOrdering, OrderFieldOrdering, level_code_sort_key
from salesorg.domain.visibility import ACTIVE_AGENT_STATES, is_visible
from salesorg.infra.db import get_engine
from salesorg.services.directory import (
    AgentDirectory,
    ChannelDirectory,
    DesignationDirectory,
    HierarchyDirectory,
)
from salesorg.services.hierarchy_service import HierarchyService

logger = logging.getLogger(__name__)


class ScopeError(Exception):
    pass


class InvalidArgumentError(ScopeError):
    pass


class NotFoundError(ScopeError):
    pass


class InvalidStateError(ScopeError):
    pass


def is_well_formed_id(value: str | None) -> bool:
    if value is None or not value.strip():
        return False
    try:
        UUID(value.strip())
    except ValueError:
        return False
    return True


def build_full_name(first_name: str | None, last_name: str | None) -> str:
    parts = [part.strip() for part in (first_name, last_name) if part and part.strip()]
    return " ".join(parts)


class ScopeService:
    def __init__(
        self,
        *,
        policy: VisibilityPolicy | None = None,
        hierarchy_service: HierarchyService | None = None,
    ) -> None:
        self._policy = policy or VisibilityPolicy(SCOPE_VISIBILITY_POLICY)
        self._hierarchy_service = hierarchy_service or HierarchyService()

    @property
    def policy(self) -> VisibilityPolicy:
        return self._policy

    def _session(self) -> Session:
        return Session(get_engine(), expire_on_commit=False)

    def resolve_below_agent(self, agent_id: str) -> BelowAgentRead:
        if not is_well_formed_id(agent_id):
            raise InvalidArgumentError("invalid agent id")

        with self._session() as session:
            agent = AgentDirectory(session).find_by_id(agent_id.strip())
            if agent is None:
                raise NotFoundError("agent not found")
            if not is_visible(agent, ACTIVE_AGENT_STATES):
                raise InvalidStateError("agent is not active")

            designation = DesignationDirectory(session).find_by_id(agent.designation_id)
            if designation is None:
                raise NotFoundError("designation not found")

            hierarchies = HierarchyDirectory(session)
            own_node = hierarchies.find_by_id(designation.hierarchy_id)
            if own_node is None:
                raise NotFoundError("hierarchy not found")

            ordering = LevelCodeOrdering.from_node(own_node)
            below = ordering.select_below(hierarchies.find_by_channel(own_node.channel_id))
            if ordering.reference_code is None:
                logger.warning(
                    "Hierarchy level code is not numeric, nothing resolves below it hierarchy_id=%s level_code=%s",
                    own_node.id,
                    own_node.level_code,
                )
            designations = DesignationDirectory(session).find_by_hierarchy_ids(item.id for item in below)

        names_by_node: dict[str, set[str]] = {}
        for item in designations:
            names_by_node.setdefault(item.hierarchy_id, set()).add(item.name)

        rows = [
            BelowAgentHierarchyRead(
                hierarchy_id=node.id,
                hierarchy_name=node.name,
                hierarchy_level_code=node.level_code,
                designation_name=designation_name,
            )
            for node in below
            for designation_name in sorted(names_by_node.get(node.id, ()))
        ]
        logger.debug("Resolved hierarchies below agent agent_id=%s count=%s", agent_id, len(rows))
        return BelowAgentRead(hierarchies=rows)

    def resolve_agents_below_designation(
        self,
        channel_id: str,
        designation_name: str,
    ) -> list[AgentBelowDesignationRead]:
        if channel_id is None or not channel_id.strip():
            raise InvalidArgumentError("channel id is required")
        if designation_name is None or not designation_name.strip():
            raise InvalidArgumentError("designation name is required")
        if not is_well_formed_id(channel_id):
            raise InvalidArgumentError("invalid channel id")

        channel_id = channel_id.strip()
        with self._session() as session:
            designations = DesignationDirectory(session)
            target = designations.find_by_name(channel_id, designation_name)
            if target is None:
                raise NotFoundError("designation not found")

            hierarchies = HierarchyDirectory(session)
            target_node = hierarchies.find_by_id(target.hierarchy_id)
            if target_node is None:
                raise InvalidStateError("designation hierarchy could not be resolved")

            below = LevelCodeOrdering.from_node(target_node).select_below(hierarchies.find_by_channel(channel_id))
            if not below:
                return []

            bound = designations.find_by_hierarchy_ids(item.id for item in below)
            if not bound:
                return []

            agents = AgentDirectory(session).find_by_designation_ids(
                (item.id for item in bound),
                active_states=ACTIVE_AGENT_STATES,
            )

        rows = [
            AgentBelowDesignationRead(
                agent_id=agent.id,
                full_name=build_full_name(agent.first_name, agent.last_name),
            )
            for agent in agents
        ]
        rows.sort(key=lambda item: (item.full_name, item.agent_id))
        logger.debug(
            "Resolved agents below designation channel_id=%s designation=%s count=%s",
            channel_id,
            designation_name,
            len(rows),
        )
        return rows

    def _resolve_user_node(self, session: Session, user_id: str | None) -> HierarchyNode | None:
        if user_id is None or not user_id.strip():
            return None
        agent = AgentDirectory(session).find_by_user_id(user_id.strip())
        if agent is None:
            return None
        designation = DesignationDirectory(session).find_by_id(agent.designation_id)
        if designation is None:
            return None
        return HierarchyDirectory(session).find_by_id(designation.hierarchy_id)

    def resolve_team_scope(
        self,
        user_id: str | None,
        *,
        channel_id: str | None = None,
        team_members: bool = False,
    ) -> list[HierarchyRead] | list[TeamMemberRead]:
        with self._session() as session:
            user_node = self._resolve_user_node(session, user_id)
            if user_node is None:
                if self._policy == VisibilityPolicy.DENY_IF_UNRESOLVED:
                    logger.info("No hierarchy resolved for user, denying team scope user_id=%s", user_id)
                    return []
                logger.warning("No hierarchy resolved for user, returning unrestricted scope user_id=%s", user_id)

            all_nodes = HierarchyDirectory(session).find_all()
            if user_node is not None:
                ordering = OrderFieldOrdering.from_node(user_node)
                scoped_nodes = ordering.select_within(all_nodes)
            else:
                scoped_nodes = all_nodes

            if not team_members:
                scoped_nodes = sorted(scoped_nodes, key=lambda item: (item.order, *level_code_sort_key(item)))
                return self._hierarchy_service.describe_nodes(session, scoped_nodes)

            members = self._team_members(session, scoped_nodes, channel_id)

        logger.debug(
            "Resolved team members user_id=%s channel_id=%s count=%s",
            user_id,
            channel_id,
            len(members),
        )
        return members

    def _team_members(
        self,
        session: Session,
        scoped_nodes: list[HierarchyNode],
        channel_id: str | None,
    ) -> list[TeamMemberRead]:
        nodes_by_id = {item.id: item for item in scoped_nodes}
        agents = AgentDirectory(session).find_all(active_states=ACTIVE_AGENT_STATES)
        if channel_id is not None:
            agents = [item for item in agents if item.channel_id == channel_id]

        designations = DesignationDirectory(session).get_many(item.designation_id for item in agents)
        in_scope: list[tuple[Agent, Designation, HierarchyNode]] = []
        for agent in agents:
            designation = designations.get(agent.designation_id)
            if not is_visible(designation):
                continue
            node = nodes_by_id.get(designation.hierarchy_id)
            if node is None:
                continue
            in_scope.append((agent, designation, node))

        channels = ChannelDirectory(session).get_many(agent.channel_id for agent, _, _ in in_scope)
        referenced = {
            ref
            for agent, _, _ in in_scope
            for ref in (agent.team_lead_id, agent.reporting_manager_id)
            if ref is not None
        }
        managers = AgentDirectory(session).get_many(referenced)

        members = [
            TeamMemberRead(
                id=agent.id,
                agent_code=agent.agent_code,
                full_name=build_full_name(agent.first_name, agent.last_name),
                email=agent.email,
                agent_status=agent.agent_status,
                hierarchy_id=node.id,
                hierarchy_level_code=node.level_code,
                hierarchy_order=node.order,
                channel=_channel_ref(channels.get(agent.channel_id)),
                designation=DesignationRefRead(id=designation.id, name=designation.name, code=designation.code),
                team_lead=_agent_ref(managers.get(agent.team_lead_id) if agent.team_lead_id else None),
                reporting_manager=_agent_ref(
                    managers.get(agent.reporting_manager_id) if agent.reporting_manager_id else None
                ),
            )
            for agent, designation, node in in_scope
        ]
        members.sort(key=lambda item: (item.hierarchy_order, item.full_name, item.id))
        return members


def _channel_ref(channel: Channel | None) -> ChannelRefRead | None:
    if channel is None:
        return None
    return ChannelRefRead(id=channel.id, name=channel.name, code=channel.code)


def _agent_ref(agent: Agent | None) -> AgentRefRead | None:
    if agent is None:
        return None
    return AgentRefRead(
        id=agent.id,
        agent_code=agent.agent_code,
        full_name=build_full_name(agent.first_name, agent.last_name),
    )
