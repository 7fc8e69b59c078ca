from __future__ import annotations

from typing import Annotated, Any

from fastapi import APIRouter, Depends, HTTPException, Query, Request, Response, status

from salesorg.api.deps import get_current_claims, require_perm
from salesorg.domain.models import (
    AgentBelowDesignationRead,
    BelowAgentRead,
    HierarchyCreate,
    HierarchyPageRead,
    HierarchyRead,
    HierarchyUpdate,
    RecordStatus,
    TeamMemberRead,
)
from salesorg.domain.permissions import PERM_HIERARCHY_READ, PERM_HIERARCHY_WRITE
from salesorg.infra.audit import set_audit_context
from salesorg.services import hierarchy_service, scope_service
from salesorg.services.hierarchy_service import HierarchyService
from salesorg.services.scope_service import ScopeService

router = APIRouter()


def get_hierarchy_service() -> HierarchyService:
    return HierarchyService()


def get_scope_service() -> ScopeService:
    return ScopeService()


Claims = Annotated[dict[str, Any], Depends(get_current_claims)]
Service = Annotated[HierarchyService, Depends(get_hierarchy_service)]
Scope = Annotated[ScopeService, Depends(get_scope_service)]

_HANDLED_ERRORS = (hierarchy_service.HierarchyError, scope_service.ScopeError)


def _handle_hierarchy_error(exc: Exception) -> None:
    if isinstance(exc, (hierarchy_service.InvalidArgumentError, scope_service.InvalidArgumentError)):
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=str(exc)) from exc
    if isinstance(exc, (hierarchy_service.NotFoundError, scope_service.NotFoundError)):
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=str(exc)) from exc
    if isinstance(exc, hierarchy_service.ConflictError):
        raise HTTPException(status_code=status.HTTP_409_CONFLICT, detail=str(exc)) from exc
    if isinstance(exc, (hierarchy_service.InvalidStateError, scope_service.InvalidStateError)):
        raise HTTPException(status_code=status.HTTP_422_UNPROCESSABLE_ENTITY, detail=str(exc)) from exc
    raise exc


def _not_found(hierarchy_id: str) -> HTTPException:
    return HTTPException(
        status_code=status.HTTP_404_NOT_FOUND,
        detail=f"hierarchy {hierarchy_id} not found",
    )


@router.post(
    "",
    response_model=HierarchyRead,
    status_code=status.HTTP_201_CREATED,
    dependencies=[Depends(require_perm(PERM_HIERARCHY_WRITE))],
)
def create_hierarchy(payload: HierarchyCreate, request: Request, service: Service) -> HierarchyRead:
    try:
        node = service.create_hierarchy(payload)
    except _HANDLED_ERRORS as exc:
        _handle_hierarchy_error(exc)
        raise
    set_audit_context(
        request,
        channel_id=node.channel_id,
        action="hierarchy.create",
        resource=f"hierarchy:{node.id}",
        detail={"level_code": node.level_code},
    )
    return service.describe([node])[0]


@router.get(
    "",
    response_model=HierarchyPageRead,
    dependencies=[Depends(require_perm(PERM_HIERARCHY_READ))],
)
def list_hierarchies(
    service: Service,
    page: Annotated[int, Query(ge=1)] = 1,
    limit: Annotated[int, Query(ge=1, le=100)] = 10,
    channel_id: str | None = None,
    level: int | None = None,
    status_filter: Annotated[RecordStatus | None, Query(alias="status")] = None,
) -> HierarchyPageRead:
    try:
        return service.list_hierarchies(
            page=page,
            limit=limit,
            channel_id=channel_id,
            level=level,
            status=status_filter,
        )
    except _HANDLED_ERRORS as exc:
        _handle_hierarchy_error(exc)
        raise


@router.get(
    "/team-member-list",
    response_model=list[HierarchyRead] | list[TeamMemberRead],
    dependencies=[Depends(require_perm(PERM_HIERARCHY_READ))],
)
def team_member_list(
    claims: Claims,
    scope: Scope,
    channel_id: str | None = None,
    is_team_members: bool = False,
) -> list[HierarchyRead] | list[TeamMemberRead]:
    return scope.resolve_team_scope(
        claims.get("sub"),
        channel_id=channel_id,
        team_members=is_team_members,
    )


@router.get(
    "/channel/{channel_id}",
    response_model=list[HierarchyRead],
    dependencies=[Depends(require_perm(PERM_HIERARCHY_READ))],
)
def list_by_channel(channel_id: str, service: Service) -> list[HierarchyRead]:
    return service.describe(service.list_by_channel(channel_id))


@router.get(
    "/channel/{channel_id}/level",
    response_model=list[HierarchyRead],
    dependencies=[Depends(require_perm(PERM_HIERARCHY_READ))],
)
def list_by_channel_and_level(
    channel_id: str,
    level: Annotated[int, Query()],
    service: Service,
) -> list[HierarchyRead]:
    return service.describe(service.list_by_channel_and_level(channel_id, level))


@router.get(
    "/channel/{channel_id}/roots",
    response_model=list[HierarchyRead],
    dependencies=[Depends(require_perm(PERM_HIERARCHY_READ))],
)
def list_roots(channel_id: str, service: Service) -> list[HierarchyRead]:
    return service.describe(service.list_roots(channel_id))


@router.get(
    "/channel/{channel_id}/designation",
    response_model=list[AgentBelowDesignationRead],
    dependencies=[Depends(require_perm(PERM_HIERARCHY_READ))],
)
def agents_below_designation(
    channel_id: str,
    designation_name: Annotated[str, Query()],
    scope: Scope,
) -> list[AgentBelowDesignationRead]:
    try:
        return scope.resolve_agents_below_designation(channel_id, designation_name)
    except _HANDLED_ERRORS as exc:
        _handle_hierarchy_error(exc)
        raise


@router.get(
    "/parent/{parent_id}/children",
    response_model=list[HierarchyRead],
    dependencies=[Depends(require_perm(PERM_HIERARCHY_READ))],
)
def list_children(parent_id: str, service: Service) -> list[HierarchyRead]:
    return service.describe(service.list_children(parent_id))


@router.get(
    "/agent/{agent_id}",
    response_model=BelowAgentRead,
    dependencies=[Depends(require_perm(PERM_HIERARCHY_READ))],
)
def hierarchies_below_agent(agent_id: str, scope: Scope) -> BelowAgentRead:
    try:
        return scope.resolve_below_agent(agent_id)
    except _HANDLED_ERRORS as exc:
        _handle_hierarchy_error(exc)
        raise


@router.get(
    "/{hierarchy_id}",
    response_model=HierarchyRead,
    dependencies=[Depends(require_perm(PERM_HIERARCHY_READ))],
)
def get_hierarchy(hierarchy_id: str, service: Service) -> HierarchyRead:
    node = service.get_hierarchy(hierarchy_id)
    if node is None:
        raise _not_found(hierarchy_id)
    return service.describe([node])[0]


@router.patch(
    "/{hierarchy_id}",
    response_model=HierarchyRead,
    dependencies=[Depends(require_perm(PERM_HIERARCHY_WRITE))],
)
def update_hierarchy(
    hierarchy_id: str,
    payload: HierarchyUpdate,
    request: Request,
    service: Service,
) -> HierarchyRead:
    try:
        node = service.update_hierarchy(hierarchy_id, payload)
    except _HANDLED_ERRORS as exc:
        _handle_hierarchy_error(exc)
        raise
    if node is None:
        raise _not_found(hierarchy_id)
    set_audit_context(
        request,
        channel_id=node.channel_id,
        action="hierarchy.update",
        resource=f"hierarchy:{node.id}",
        detail={"fields": sorted(payload.model_fields_set)},
    )
    return service.describe([node])[0]


@router.delete(
    "/{hierarchy_id}",
    status_code=status.HTTP_204_NO_CONTENT,
    dependencies=[Depends(require_perm(PERM_HIERARCHY_WRITE))],
)
def delete_hierarchy(hierarchy_id: str, request: Request, service: Service) -> Response:
    try:
        deleted = service.delete_hierarchy(hierarchy_id)
    except _HANDLED_ERRORS as exc:
        _handle_hierarchy_error(exc)
        raise
    if not deleted:
        raise _not_found(hierarchy_id)
    set_audit_context(request, action="hierarchy.delete", resource=f"hierarchy:{hierarchy_id}")
    return Response(status_code=status.HTTP_204_NO_CONTENT)
