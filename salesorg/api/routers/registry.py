from __future__ import annotations

from typing import Annotated

from fastapi import APIRouter, Depends, HTTPException, Query, Request, Response, status

from salesorg.api.deps import require_perm
from salesorg.domain.models import (
    AgentCreate,
    AgentRead,
    AgentStatusUpdate,
    ChannelCreate,
    ChannelRead,
    DesignationCreate,
    DesignationRead,
    RoleCreate,
    RoleRead,
)
from salesorg.domain.permissions import PERM_REGISTRY_READ, PERM_REGISTRY_WRITE
from salesorg.infra.audit import set_audit_context
from salesorg.services.registry_service import ConflictError, NotFoundError, RegistryService

router = APIRouter()


def get_registry_service() -> RegistryService:
    return RegistryService()


Service = Annotated[RegistryService, Depends(get_registry_service)]


def _handle_registry_error(exc: Exception) -> None:
    if isinstance(exc, NotFoundError):
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=str(exc)) from exc
    if isinstance(exc, ConflictError):
        raise HTTPException(status_code=status.HTTP_409_CONFLICT, detail=str(exc)) from exc
    raise exc


@router.post(
    "/channels",
    response_model=ChannelRead,
    status_code=status.HTTP_201_CREATED,
    dependencies=[Depends(require_perm(PERM_REGISTRY_WRITE))],
)
def create_channel(payload: ChannelCreate, request: Request, service: Service) -> ChannelRead:
    try:
        channel = service.create_channel(payload)
    except (NotFoundError, ConflictError) as exc:
        _handle_registry_error(exc)
        raise
    set_audit_context(request, channel_id=channel.id, action="channel.create", resource=f"channel:{channel.id}")
    return ChannelRead.model_validate(channel)


@router.get(
    "/channels/{channel_id}",
    response_model=ChannelRead,
    dependencies=[Depends(require_perm(PERM_REGISTRY_READ))],
)
def get_channel(channel_id: str, service: Service) -> ChannelRead:
    try:
        return ChannelRead.model_validate(service.get_channel(channel_id))
    except NotFoundError as exc:
        _handle_registry_error(exc)
        raise


@router.delete(
    "/channels/{channel_id}",
    status_code=status.HTTP_204_NO_CONTENT,
    dependencies=[Depends(require_perm(PERM_REGISTRY_WRITE))],
)
def delete_channel(channel_id: str, request: Request, service: Service) -> Response:
    try:
        service.delete_channel(channel_id)
    except NotFoundError as exc:
        _handle_registry_error(exc)
        raise
    set_audit_context(request, channel_id=channel_id, action="channel.delete", resource=f"channel:{channel_id}")
    return Response(status_code=status.HTTP_204_NO_CONTENT)


@router.post(
    "/roles",
    response_model=RoleRead,
    status_code=status.HTTP_201_CREATED,
    dependencies=[Depends(require_perm(PERM_REGISTRY_WRITE))],
)
def create_role(payload: RoleCreate, service: Service) -> RoleRead:
    try:
        return RoleRead.model_validate(service.create_role(payload))
    except (NotFoundError, ConflictError) as exc:
        _handle_registry_error(exc)
        raise


@router.post(
    "/designations",
    response_model=DesignationRead,
    status_code=status.HTTP_201_CREATED,
    dependencies=[Depends(require_perm(PERM_REGISTRY_WRITE))],
)
def create_designation(payload: DesignationCreate, request: Request, service: Service) -> DesignationRead:
    try:
        designation = service.create_designation(payload)
    except (NotFoundError, ConflictError) as exc:
        _handle_registry_error(exc)
        raise
    set_audit_context(
        request,
        channel_id=designation.channel_id,
        action="designation.create",
        resource=f"designation:{designation.id}",
        detail={"hierarchy_id": designation.hierarchy_id},
    )
    return DesignationRead.model_validate(designation)


@router.post(
    "/agents",
    response_model=AgentRead,
    status_code=status.HTTP_201_CREATED,
    dependencies=[Depends(require_perm(PERM_REGISTRY_WRITE))],
)
def create_agent(payload: AgentCreate, request: Request, service: Service) -> AgentRead:
    try:
        agent = service.create_agent(payload)
    except (NotFoundError, ConflictError) as exc:
        _handle_registry_error(exc)
        raise
    set_audit_context(
        request,
        channel_id=agent.channel_id,
        action="agent.create",
        resource=f"agent:{agent.id}",
    )
    return AgentRead.model_validate(agent)


@router.get(
    "/agents",
    response_model=list[AgentRead],
    dependencies=[Depends(require_perm(PERM_REGISTRY_READ))],
)
def list_agents(channel_id: Annotated[str, Query()], service: Service) -> list[AgentRead]:
    return [AgentRead.model_validate(item) for item in service.list_agents(channel_id)]


@router.get(
    "/agents/{agent_id}",
    response_model=AgentRead,
    dependencies=[Depends(require_perm(PERM_REGISTRY_READ))],
)
def get_agent(agent_id: str, service: Service) -> AgentRead:
    try:
        return AgentRead.model_validate(service.get_agent(agent_id))
    except NotFoundError as exc:
        _handle_registry_error(exc)
        raise


@router.patch(
    "/agents/{agent_id}/status",
    response_model=AgentRead,
    dependencies=[Depends(require_perm(PERM_REGISTRY_WRITE))],
)
def set_agent_status(
    agent_id: str,
    payload: AgentStatusUpdate,
    request: Request,
    service: Service,
) -> AgentRead:
    try:
        agent = service.set_agent_status(agent_id, payload.agent_status)
    except NotFoundError as exc:
        _handle_registry_error(exc)
        raise
    set_audit_context(
        request,
        channel_id=agent.channel_id,
        action="agent.status",
        resource=f"agent:{agent_id}",
        detail={"agent_status": payload.agent_status.value},
    )
    return AgentRead.model_validate(agent)


@router.delete(
    "/agents/{agent_id}",
    status_code=status.HTTP_204_NO_CONTENT,
    dependencies=[Depends(require_perm(PERM_REGISTRY_WRITE))],
)
def delete_agent(agent_id: str, request: Request, service: Service) -> Response:
    try:
        service.delete_agent(agent_id)
    except NotFoundError as exc:
        _handle_registry_error(exc)
        raise
    set_audit_context(request, action="agent.delete", resource=f"agent:{agent_id}")
    return Response(status_code=status.HTTP_204_NO_CONTENT)
