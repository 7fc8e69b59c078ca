from __future__ import annotations

from collections.abc import Generator
from pathlib import Path

import pytest
from fastapi.testclient import TestClient
from sqlalchemy import event
from sqlmodel import SQLModel, create_engine

from salesorg import main as app_main
from salesorg.domain.models import (
    AgentCreate,
    AgentStatus,
    ChannelCreate,
    DesignationCreate,
    HierarchyCreate,
    HierarchyRead,
    RoleCreate,
    TeamMemberRead,
    VisibilityPolicy,
)
from salesorg.infra import audit, db
from salesorg.infra.auth import create_access_token
from salesorg.services import scope_service
from salesorg.services.hierarchy_service import HierarchyService
from salesorg.services.registry_service import RegistryService
from salesorg.services.scope_service import ScopeService


@pytest.fixture()
def team_client(
    monkeypatch: pytest.MonkeyPatch,
    tmp_path: Path,
) -> Generator[TestClient, None, None]:
    db_path = tmp_path / "team_scope_test.db"
    test_engine = create_engine(
        f"sqlite:///{db_path}",
        connect_args={"check_same_thread": False},
    )

    @event.listens_for(test_engine, "connect")
    def _enable_foreign_keys(dbapi_connection: object, _connection_record: object) -> None:
        cursor = dbapi_connection.cursor()  # type: ignore[attr-defined]
        cursor.execute("PRAGMA foreign_keys=ON")
        cursor.close()

    SQLModel.metadata.create_all(test_engine)
    monkeypatch.setattr(db, "engine", test_engine)
    monkeypatch.setattr(audit, "engine", test_engine)
    client = TestClient(app_main.app)
    yield client
    client.close()


def _build_channel(
    code: str,
    tiers: list[tuple[str, int]],
) -> dict[str, str]:
    registry = RegistryService()
    channel = registry.create_channel(ChannelCreate(name=f"{code.title()} channel", code=code))
    role = registry.create_role(RoleCreate(channel_id=channel.id, name="Sales", code="SALES"))
    ids: dict[str, str] = {"channel": channel.id}
    parent_id: str | None = None
    for level, (level_code, order) in enumerate(tiers, start=1):
        node = HierarchyService().create_hierarchy(
            HierarchyCreate(
                channel_id=channel.id,
                name=f"{code} {level_code}",
                level_code=level_code,
                level=level,
                parent_id=parent_id,
                order=order,
            )
        )
        designation = registry.create_designation(
            DesignationCreate(
                channel_id=channel.id,
                role_id=role.id,
                hierarchy_id=node.id,
                name=f"{code} {level_code} desk",
                code=f"D_{level_code}",
            )
        )
        ids[f"node_{level_code}"] = node.id
        ids[f"designation_{level_code}"] = designation.id
        parent_id = node.id
    return ids


def _hire(
    org: dict[str, str],
    level_code: str,
    agent_code: str,
    first_name: str,
    last_name: str,
    **extra: object,
) -> str:
    agent = RegistryService().create_agent(
        AgentCreate(
            channel_id=org["channel"],
            designation_id=org[f"designation_{level_code}"],
            agent_code=agent_code,
            first_name=first_name,
            last_name=last_name,
            **extra,
        )
    )
    return agent.id


@pytest.fixture()
def two_channels(team_client: TestClient) -> dict[str, dict[str, str]]:
    retail = _build_channel("RETAIL", [("5", 3), ("3", 2), ("1", 1)])
    banca = _build_channel("BANCA", [("B9", 9), ("B1", 1)])

    retail["agent_head"] = _hire(retail, "5", "R5", "Hana", "Head", user_id="user-head")
    retail["agent_lead"] = _hire(retail, "3", "R3", "Lee", "Lead", user_id="user-lead")
    retail["agent_rep"] = _hire(
        retail,
        "1",
        "R1",
        "Rita",
        "Rep",
        team_lead_id=retail["agent_lead"],
        reporting_manager_id=retail["agent_head"],
    )
    retail["agent_idle"] = _hire(retail, "1", "R1X", "Ian", "Idle", agent_status=AgentStatus.INACTIVE)
    banca["agent_rep"] = _hire(banca, "B1", "B1A", "Bea", "Banca")
    banca["agent_chief"] = _hire(banca, "B9", "B9A", "Cal", "Chief")
    return {"retail": retail, "banca": banca}


def test_team_scope_hierarchies_follow_order_across_channels(two_channels: dict[str, dict[str, str]]) -> None:
    retail, banca = two_channels["retail"], two_channels["banca"]

    rows = ScopeService().resolve_team_scope("user-lead")

    assert all(isinstance(row, HierarchyRead) for row in rows)
    assert [row.id for row in rows] == [retail["node_1"], banca["node_B1"], retail["node_3"]]
    assert {row.channel_code for row in rows} == {"RETAIL", "BANCA"}


def test_team_scope_members_are_denormalized(two_channels: dict[str, dict[str, str]]) -> None:
    retail, banca = two_channels["retail"], two_channels["banca"]

    rows = ScopeService().resolve_team_scope("user-lead", team_members=True)

    assert all(isinstance(row, TeamMemberRead) for row in rows)
    assert [row.id for row in rows] == [banca["agent_rep"], retail["agent_rep"], retail["agent_lead"]]

    rep = rows[1]
    assert rep.full_name == "Rita Rep"
    assert rep.hierarchy_order == 1
    assert rep.hierarchy_level_code == "1"
    assert rep.channel is not None and rep.channel.code == "RETAIL"
    assert rep.designation is not None and rep.designation.name == "RETAIL 1 desk"
    assert rep.team_lead is not None
    assert (rep.team_lead.id, rep.team_lead.agent_code, rep.team_lead.full_name) == (
        retail["agent_lead"],
        "R3",
        "Lee Lead",
    )
    assert rep.reporting_manager is not None and rep.reporting_manager.full_name == "Hana Head"
    assert rows[2].team_lead is None and rows[2].reporting_manager is None


def test_team_scope_members_filtered_by_channel(two_channels: dict[str, dict[str, str]]) -> None:
    retail = two_channels["retail"]

    rows = ScopeService().resolve_team_scope(
        "user-lead",
        channel_id=retail["channel"],
        team_members=True,
    )

    assert [row.id for row in rows] == [retail["agent_rep"], retail["agent_lead"]]
    assert retail["agent_idle"] not in {row.id for row in rows}


def test_unresolved_user_sees_everything_when_unrestricted(two_channels: dict[str, dict[str, str]]) -> None:
    service = ScopeService(policy=VisibilityPolicy.UNRESTRICTED)

    nodes = service.resolve_team_scope("user-unknown")
    members = service.resolve_team_scope("user-unknown", team_members=True)
    retail_members = service.resolve_team_scope(
        None,
        channel_id=two_channels["retail"]["channel"],
        team_members=True,
    )

    assert len(nodes) == 5
    assert len(members) == 5
    assert {row.id for row in retail_members} == {
        two_channels["retail"]["agent_head"],
        two_channels["retail"]["agent_lead"],
        two_channels["retail"]["agent_rep"],
    }


def test_unresolved_user_sees_nothing_when_denied(two_channels: dict[str, dict[str, str]]) -> None:
    service = ScopeService(policy=VisibilityPolicy.DENY_IF_UNRESOLVED)

    assert service.resolve_team_scope("user-unknown") == []
    assert service.resolve_team_scope("user-unknown", team_members=True) == []
    assert len(service.resolve_team_scope("user-head")) == 4


def test_deleted_agent_cannot_resolve_team_scope(two_channels: dict[str, dict[str, str]]) -> None:
    RegistryService().delete_agent(two_channels["retail"]["agent_lead"])
    service = ScopeService(policy=VisibilityPolicy.DENY_IF_UNRESOLVED)

    assert service.resolve_team_scope("user-lead") == []


def test_team_member_list_route_uses_token_subject(
    team_client: TestClient,
    two_channels: dict[str, dict[str, str]],
) -> None:
    retail = two_channels["retail"]
    token = create_access_token(user_id="user-lead", permissions=["hierarchy.read"])
    headers = {"Authorization": f"Bearer {token}"}

    nodes = team_client.get("/api/hierarchies/team-member-list", headers=headers)
    assert nodes.status_code == 200
    assert [row["level_code"] for row in nodes.json()] == ["1", "B1", "3"]

    members = team_client.get(
        "/api/hierarchies/team-member-list",
        params={"channel_id": retail["channel"], "is_team_members": "true"},
        headers=headers,
    )
    assert members.status_code == 200
    body = members.json()
    assert [row["agent_code"] for row in body] == ["R1", "R3"]
    assert body[0]["team_lead"] == {"id": retail["agent_lead"], "agent_code": "R3", "full_name": "Lee Lead"}
    assert body[0]["channel"]["code"] == "RETAIL"


def test_visibility_policy_defaults_to_configured_setting(monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setattr(scope_service, "SCOPE_VISIBILITY_POLICY", "unrestricted")
    assert ScopeService().policy == VisibilityPolicy.UNRESTRICTED
    assert ScopeService(policy=VisibilityPolicy.DENY_IF_UNRESOLVED).policy == VisibilityPolicy.DENY_IF_UNRESOLVED

    monkeypatch.setattr(scope_service, "SCOPE_VISIBILITY_POLICY", "deny_if_unresolved")
    assert ScopeService().policy == VisibilityPolicy.DENY_IF_UNRESOLVED
