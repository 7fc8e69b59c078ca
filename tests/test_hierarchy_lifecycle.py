from __future__ import annotations

from collections.abc import Generator
from concurrent.futures import ThreadPoolExecutor
from pathlib import Path
from threading import Thread
from uuid import uuid4

import pytest
from fastapi.testclient import TestClient
from sqlalchemy import event
from sqlmodel import Session, SQLModel, col, create_engine, select

from salesorg import main as app_main
from salesorg.domain.models import AuditLog, HierarchyCreate, HierarchyNode
from salesorg.infra import audit, db
from salesorg.infra.auth import create_access_token
from salesorg.services.directory import HierarchyDirectory
from salesorg.services.hierarchy_service import ConflictError, HierarchyService, NotFoundError


@pytest.fixture()
def hierarchy_client(
    monkeypatch: pytest.MonkeyPatch,
    tmp_path: Path,
) -> Generator[TestClient, None, None]:
    db_path = tmp_path / "hierarchy_test.db"
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
    client.headers.update(_auth_header(create_access_token(user_id="admin", permissions=["*"])))
    yield client
    client.close()


def _auth_header(token: str) -> dict[str, str]:
    return {"Authorization": f"Bearer {token}"}


def _create_channel(client: TestClient, code: str) -> str:
    response = client.post("/api/registry/channels", json={"name": f"{code} channel", "code": code})
    assert response.status_code == 201
    return response.json()["id"]


def _post_hierarchy(
    client: TestClient,
    channel_id: str,
    level_code: str,
    level: int,
    *,
    parent_id: str | None = None,
    order: int | None = None,
):
    payload: dict[str, object] = {
        "channel_id": channel_id,
        "name": f"Level {level_code}",
        "level_code": level_code,
        "level": level,
    }
    if parent_id is not None:
        payload["parent_id"] = parent_id
    if order is not None:
        payload["order"] = order
    return client.post("/api/hierarchies", json=payload)


def _create_hierarchy(client: TestClient, channel_id: str, level_code: str, level: int, **kwargs) -> dict:
    response = _post_hierarchy(client, channel_id, level_code, level, **kwargs)
    assert response.status_code == 201, response.text
    return response.json()


def test_create_hierarchy_enforces_level_continuity(hierarchy_client: TestClient) -> None:
    channel_id = _create_channel(hierarchy_client, "RETAIL")

    root = _create_hierarchy(hierarchy_client, channel_id, "zone", 1)
    assert root["level_code"] == "ZONE"
    assert root["is_root"] is True
    assert root["has_parent"] is False
    assert root["order"] == 0
    assert root["status"] == "active"
    assert root["channel_code"] == "RETAIL"

    bad_root = _post_hierarchy(hierarchy_client, channel_id, "REGION", 2)
    assert bad_root.status_code == 422
    assert "root hierarchy" in bad_root.json()["detail"]

    skipped = _post_hierarchy(hierarchy_client, channel_id, "BRANCH", 3, parent_id=root["id"])
    assert skipped.status_code == 422

    child = _create_hierarchy(hierarchy_client, channel_id, "REGION", 2, parent_id=root["id"])
    assert child["parent_id"] == root["id"]
    assert child["parent_name"] == "Level zone"
    assert child["is_root"] is False

    out_of_range = _post_hierarchy(hierarchy_client, channel_id, "DEEP", 11, parent_id=child["id"])
    assert out_of_range.status_code == 422


def test_create_hierarchy_rejects_unknown_references(hierarchy_client: TestClient) -> None:
    channel_a = _create_channel(hierarchy_client, "RETAIL")
    channel_b = _create_channel(hierarchy_client, "BANCA")

    missing_channel = _post_hierarchy(hierarchy_client, str(uuid4()), "ZONE", 1)
    assert missing_channel.status_code == 404

    missing_parent = _post_hierarchy(hierarchy_client, channel_a, "REGION", 2, parent_id=str(uuid4()))
    assert missing_parent.status_code == 404

    foreign_root = _create_hierarchy(hierarchy_client, channel_b, "ZONE", 1)
    cross_channel = _post_hierarchy(hierarchy_client, channel_a, "REGION", 2, parent_id=foreign_root["id"])
    assert cross_channel.status_code == 409

    delete_resp = hierarchy_client.delete(f"/api/registry/channels/{channel_a}")
    assert delete_resp.status_code == 204
    deleted_channel = _post_hierarchy(hierarchy_client, channel_a, "ZONE", 1)
    assert deleted_channel.status_code == 404


def test_level_code_unique_per_channel_ignoring_case(hierarchy_client: TestClient) -> None:
    channel_a = _create_channel(hierarchy_client, "RETAIL")
    channel_b = _create_channel(hierarchy_client, "BANCA")

    first = _create_hierarchy(hierarchy_client, channel_a, "mgr", 1)
    duplicate = _post_hierarchy(hierarchy_client, channel_a, " MGR ", 1)
    assert duplicate.status_code == 409

    other_channel = _post_hierarchy(hierarchy_client, channel_b, "Mgr", 1)
    assert other_channel.status_code == 201

    delete_resp = hierarchy_client.delete(f"/api/hierarchies/{first['id']}")
    assert delete_resp.status_code == 204
    reused = _post_hierarchy(hierarchy_client, channel_a, "Mgr", 1)
    assert reused.status_code == 201
    assert reused.json()["level_code"] == "MGR"


def test_delete_requires_childless_node_and_is_soft(hierarchy_client: TestClient) -> None:
    channel_id = _create_channel(hierarchy_client, "RETAIL")
    root = _create_hierarchy(hierarchy_client, channel_id, "ZONE", 1)
    child = _create_hierarchy(hierarchy_client, channel_id, "REGION", 2, parent_id=root["id"])

    blocked = hierarchy_client.delete(f"/api/hierarchies/{root['id']}")
    assert blocked.status_code == 422
    assert hierarchy_client.get(f"/api/hierarchies/{root['id']}").status_code == 200

    assert hierarchy_client.delete(f"/api/hierarchies/{child['id']}").status_code == 204
    assert hierarchy_client.get(f"/api/hierarchies/{child['id']}").status_code == 404
    assert hierarchy_client.delete(f"/api/hierarchies/{child['id']}").status_code == 404
    assert hierarchy_client.get(f"/api/hierarchies/parent/{root['id']}/children").json() == []

    assert hierarchy_client.delete(f"/api/hierarchies/{root['id']}").status_code == 204

    listing = hierarchy_client.get("/api/hierarchies", params={"channel_id": channel_id})
    assert listing.json()["pagination"]["total"] == 0

    with Session(db.engine) as session:
        rows = session.exec(select(HierarchyNode).where(HierarchyNode.channel_id == channel_id)).all()
    assert len(rows) == 2
    assert all(row.is_deleted and row.deleted_at is not None for row in rows)


def test_update_hierarchy_rechecks_changed_fields(hierarchy_client: TestClient) -> None:
    channel_id = _create_channel(hierarchy_client, "RETAIL")
    root = _create_hierarchy(hierarchy_client, channel_id, "ZONE", 1)
    child = _create_hierarchy(hierarchy_client, channel_id, "REGION", 2, parent_id=root["id"], order=4)

    renamed = hierarchy_client.patch(f"/api/hierarchies/{child['id']}", json={"name": "  North Region "})
    assert renamed.status_code == 200
    body = renamed.json()
    assert body["name"] == "North Region"
    assert body["level_code"] == "REGION"
    assert body["order"] == 4
    assert body["parent_id"] == root["id"]

    taken = hierarchy_client.patch(f"/api/hierarchies/{child['id']}", json={"level_code": "zone"})
    assert taken.status_code == 409

    same_code = hierarchy_client.patch(f"/api/hierarchies/{child['id']}", json={"level_code": "region"})
    assert same_code.status_code == 200

    self_parent = hierarchy_client.patch(f"/api/hierarchies/{root['id']}", json={"parent_id": root["id"]})
    assert self_parent.status_code == 422

    relevel = hierarchy_client.patch(f"/api/hierarchies/{root['id']}", json={"level": 2})
    assert relevel.status_code == 422

    promote = hierarchy_client.patch(
        f"/api/hierarchies/{child['id']}",
        json={"parent_id": None, "level": 1},
    )
    assert promote.status_code == 200
    assert promote.json()["is_root"] is True

    missing = hierarchy_client.patch(f"/api/hierarchies/{uuid4()}", json={"name": "Ghost"})
    assert missing.status_code == 404


def test_listing_endpoints_order_and_paginate(hierarchy_client: TestClient) -> None:
    channel_id = _create_channel(hierarchy_client, "RETAIL")
    root = _create_hierarchy(hierarchy_client, channel_id, "ZONE", 1)
    second = _create_hierarchy(hierarchy_client, channel_id, "R2", 2, parent_id=root["id"], order=2)
    first = _create_hierarchy(hierarchy_client, channel_id, "R1", 2, parent_id=root["id"], order=1)
    third = _create_hierarchy(hierarchy_client, channel_id, "R3", 2, parent_id=root["id"], order=3)

    page = hierarchy_client.get("/api/hierarchies", params={"channel_id": channel_id, "limit": 2})
    assert page.status_code == 200
    assert page.json()["pagination"] == {"page": 1, "limit": 2, "total": 4, "total_pages": 2}
    assert [item["id"] for item in page.json()["hierarchies"]] == [root["id"], first["id"]]

    page_two = hierarchy_client.get(
        "/api/hierarchies",
        params={"channel_id": channel_id, "limit": 2, "page": 2},
    )
    assert [item["id"] for item in page_two.json()["hierarchies"]] == [second["id"], third["id"]]

    by_channel = hierarchy_client.get(f"/api/hierarchies/channel/{channel_id}")
    assert [item["id"] for item in by_channel.json()] == [root["id"], first["id"], second["id"], third["id"]]

    by_level = hierarchy_client.get(f"/api/hierarchies/channel/{channel_id}/level", params={"level": 2})
    assert [item["id"] for item in by_level.json()] == [first["id"], second["id"], third["id"]]

    roots = hierarchy_client.get(f"/api/hierarchies/channel/{channel_id}/roots")
    assert [item["id"] for item in roots.json()] == [root["id"]]

    children = hierarchy_client.get(f"/api/hierarchies/parent/{root['id']}/children")
    assert [item["id"] for item in children.json()] == [first["id"], second["id"], third["id"]]

    bad_page = hierarchy_client.get("/api/hierarchies", params={"page": 0})
    assert bad_page.status_code == 422


def test_hierarchy_routes_require_permissions(hierarchy_client: TestClient) -> None:
    channel_id = _create_channel(hierarchy_client, "RETAIL")

    anonymous = TestClient(app_main.app)
    assert anonymous.get("/api/hierarchies").status_code == 401
    expired = _auth_header(create_access_token("admin", ["*"], expires_minutes=-1))
    assert anonymous.get("/api/hierarchies", headers=expired).status_code == 401
    blank_subject = _auth_header(create_access_token(" ", ["*"]))
    assert anonymous.get("/api/hierarchies", headers=blank_subject).status_code == 401

    reader = _auth_header(create_access_token(user_id="reader", permissions=["hierarchy.read"]))
    assert hierarchy_client.get("/api/hierarchies", headers=reader).status_code == 200
    forbidden = hierarchy_client.post(
        "/api/hierarchies",
        json={"channel_id": channel_id, "name": "Zone", "level_code": "ZONE", "level": 1},
        headers=reader,
    )
    assert forbidden.status_code == 403


def test_hierarchy_writes_are_audited(hierarchy_client: TestClient) -> None:
    channel_id = _create_channel(hierarchy_client, "RETAIL")
    node = _create_hierarchy(hierarchy_client, channel_id, "ZONE", 1)
    assert _post_hierarchy(hierarchy_client, channel_id, "zone", 1).status_code == 409

    with Session(db.engine) as session:
        rows = session.exec(select(AuditLog).where(AuditLog.method == "POST")).all()

    created = [row for row in rows if row.action == "hierarchy.create"]
    assert len(created) == 1
    assert created[0].resource == f"hierarchy:{node['id']}"
    assert created[0].channel_id == channel_id
    assert created[0].actor_id == "admin"
    assert created[0].detail["level_code"] == "ZONE"
    assert created[0].detail["outcome"] == "success"

    rejected = [row for row in rows if row.status_code == 409]
    assert len(rejected) == 1
    assert rejected[0].detail["outcome"] == "rejected"
    assert rejected[0].channel_id == audit.SYSTEM_CHANNEL


def test_concurrent_creates_with_same_level_code_admit_one(hierarchy_client: TestClient) -> None:
    channel_id = _create_channel(hierarchy_client, "RETAIL")
    service = HierarchyService()

    def _attempt(level_code: str) -> str:
        try:
            service.create_hierarchy(
                HierarchyCreate(channel_id=channel_id, name="Zone", level_code=level_code, level=1)
            )
        except ConflictError:
            return "conflict"
        return "created"

    with ThreadPoolExecutor(max_workers=4) as pool:
        outcomes = list(pool.map(_attempt, ["zone", "ZONE", " Zone", "zone "]))

    assert sorted(outcomes) == ["conflict", "conflict", "conflict", "created"]


def test_delete_and_child_create_on_same_parent_are_serialized(
    hierarchy_client: TestClient,
    monkeypatch: pytest.MonkeyPatch,
) -> None:
    channel_id = _create_channel(hierarchy_client, "RETAIL")
    root = _create_hierarchy(hierarchy_client, channel_id, "1", 1)
    service = HierarchyService()
    outcomes: list[str] = []

    def _create_child() -> None:
        try:
            service.create_hierarchy(
                HierarchyCreate(
                    channel_id=channel_id,
                    name="Region",
                    level_code="2",
                    level=2,
                    parent_id=root["id"],
                )
            )
        except NotFoundError:
            outcomes.append("parent gone")
        else:
            outcomes.append("created")

    original_find_children = HierarchyDirectory.find_children
    racer = Thread(target=_create_child)

    def _find_children_then_race(self: HierarchyDirectory, parent_id: str) -> list[HierarchyNode]:
        children = original_find_children(self, parent_id)
        if parent_id == root["id"] and racer.ident is None:
            racer.start()
            racer.join(timeout=0.5)
        return children

    monkeypatch.setattr(HierarchyDirectory, "find_children", _find_children_then_race)

    assert service.delete_hierarchy(root["id"]) is True
    racer.join(timeout=5)

    assert outcomes == ["parent gone"]
    with Session(db.engine) as session:
        live_children = session.exec(
            select(HierarchyNode)
            .where(HierarchyNode.parent_id == root["id"])
            .where(col(HierarchyNode.is_deleted).is_(False))
        ).all()
    assert live_children == []
