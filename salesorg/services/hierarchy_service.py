from __future__ import annotations

import logging
import math
from collections.abc import Iterator, Sequence
from contextlib import AbstractContextManager, ExitStack, contextmanager
from dataclasses import dataclass, field
from threading import Lock, RLock
from typing import ClassVar

from sqlalchemy import func
from sqlalchemy.exc import IntegrityError
from sqlmodel import Session, col, select

from salesorg.domain.hierarchy_rules import (
    HIERARCHY_DEFAULT_ORDER,
    HIERARCHY_MIN_LEVEL,
    expected_child_level,
    normalize_level_code,
)
from salesorg.domain.models import (
    HierarchyCreate,
    HierarchyNode,
    HierarchyPageRead,
    HierarchyRead,
    HierarchyUpdate,
    PaginationRead,
    RecordStatus,
    now_utc,
)
from salesorg.domain.visibility import visible_clause
from salesorg.infra.db import get_engine
from salesorg.services.directory import ChannelDirectory, HierarchyDirectory

logger = logging.getLogger(__name__)


class HierarchyError(Exception):
    pass


class InvalidArgumentError(HierarchyError):
    pass


class NotFoundError(HierarchyError):
    pass


class ConflictError(HierarchyError):
    pass


class InvalidStateError(HierarchyError):
    pass


@dataclass
class _LockSlot:
    lock: Lock = field(default_factory=Lock)
    holders: int = 0


class HierarchyService:
    _keyed_locks: ClassVar[dict[tuple[str, ...], _LockSlot]] = {}
    _locks_guard: ClassVar[RLock] = RLock()

    def _session(self) -> Session:
        return Session(get_engine(), expire_on_commit=False)

    @contextmanager
    def _keyed_lock(self, *key: str) -> Iterator[None]:
        with self._locks_guard:
            slot = self._keyed_locks.setdefault(key, _LockSlot())
            slot.holders += 1
        slot.lock.acquire()
        try:
            yield
        finally:
            slot.lock.release()
            with self._locks_guard:
                slot.holders -= 1
                if slot.holders == 0:
                    self._keyed_locks.pop(key, None)

    def _level_code_lock(self, channel_id: str, level_code: str) -> AbstractContextManager[None]:
        return self._keyed_lock("level_code", channel_id, level_code)

    @contextmanager
    def _node_locks(self, *node_ids: str | None) -> Iterator[None]:
        # always taken after any level code lock, in sorted id order
        with ExitStack() as stack:
            for node_id in sorted({item for item in node_ids if item is not None}):
                stack.enter_context(self._keyed_lock("node", node_id))
            yield

    def _validate_parent(
        self,
        session: Session,
        *,
        channel_id: str,
        parent_id: str | None,
        level: int,
        node_id: str | None = None,
    ) -> HierarchyNode | None:
        if parent_id is None:
            if level != HIERARCHY_MIN_LEVEL:
                raise InvalidStateError(f"root hierarchy must have level {HIERARCHY_MIN_LEVEL}")
            return None
        if node_id is not None and parent_id == node_id:
            raise InvalidStateError("hierarchy cannot be parent of itself")

        parent = HierarchyDirectory(session).lock_by_id(parent_id)
        if parent is None:
            raise NotFoundError("parent hierarchy not found")
        if parent.channel_id != channel_id:
            raise ConflictError("parent hierarchy must belong to the same channel")
        if level != expected_child_level(parent.level):
            raise InvalidStateError("hierarchy level must be exactly one level below parent")
        return parent

    def _ensure_level_code_free(
        self,
        session: Session,
        channel_id: str,
        level_code: str,
        *,
        node_id: str | None = None,
    ) -> None:
        existing = HierarchyDirectory(session).find_by_level_code(channel_id, level_code)
        if existing is not None and existing.id != node_id:
            raise ConflictError(f"hierarchy with level code '{level_code}' already exists in this channel")

    def _commit(self, session: Session, node: HierarchyNode) -> HierarchyNode:
        session.add(node)
        try:
            session.commit()
        except IntegrityError as exc:
            session.rollback()
            raise ConflictError(
                f"hierarchy with level code '{node.level_code}' already exists in this channel"
            ) from exc
        session.refresh(node)
        return node

    def create_hierarchy(self, payload: HierarchyCreate) -> HierarchyNode:
        name = payload.name.strip()
        level_code = normalize_level_code(payload.level_code)
        if not name:
            raise InvalidArgumentError("hierarchy name is required")
        if not level_code:
            raise InvalidArgumentError("level code is required")

        logger.debug(
            "Creating hierarchy channel_id=%s level_code=%s level=%s",
            payload.channel_id,
            level_code,
            payload.level,
        )
        with (
            self._level_code_lock(payload.channel_id, level_code),
            self._node_locks(payload.parent_id),
            self._session() as session,
        ):
            if ChannelDirectory(session).get(payload.channel_id) is None:
                raise NotFoundError("channel not found or deleted")
            self._ensure_level_code_free(session, payload.channel_id, level_code)
            self._validate_parent(
                session,
                channel_id=payload.channel_id,
                parent_id=payload.parent_id,
                level=payload.level,
            )

            node = HierarchyNode(
                channel_id=payload.channel_id,
                name=name,
                level_code=level_code,
                level=payload.level,
                parent_id=payload.parent_id,
                description=payload.description.strip() if payload.description is not None else None,
                order=payload.order if payload.order is not None else HIERARCHY_DEFAULT_ORDER,
                status=payload.status or RecordStatus.ACTIVE,
            )
            node = self._commit(session, node)

        logger.info(
            "Hierarchy created id=%s level_code=%s channel_id=%s",
            node.id,
            node.level_code,
            node.channel_id,
        )
        return node

    def get_hierarchy(self, hierarchy_id: str) -> HierarchyNode | None:
        with self._session() as session:
            node = HierarchyDirectory(session).find_by_id(hierarchy_id)
            if node is None:
                logger.debug("Hierarchy not found or deleted id=%s", hierarchy_id)
            return node

    def update_hierarchy(self, hierarchy_id: str, payload: HierarchyUpdate) -> HierarchyNode | None:
        fields = payload.model_fields_set
        with self._session() as session:
            current = HierarchyDirectory(session).find_by_id(hierarchy_id)
        if current is None:
            logger.debug("Hierarchy not found for update id=%s", hierarchy_id)
            return None

        new_level_code = current.level_code
        if "level_code" in fields and payload.level_code is not None:
            new_level_code = normalize_level_code(payload.level_code)
            if not new_level_code:
                raise InvalidArgumentError("level code is required")

        target_parent_id = payload.parent_id if "parent_id" in fields else None
        with (
            self._level_code_lock(current.channel_id, new_level_code),
            self._node_locks(hierarchy_id, target_parent_id),
            self._session() as session,
        ):
            hierarchies = HierarchyDirectory(session)
            node = hierarchies.lock_by_id(hierarchy_id)
            if node is None:
                return None

            if "name" in fields and payload.name is not None:
                name = payload.name.strip()
                if not name:
                    raise InvalidArgumentError("hierarchy name is required")
                node.name = name

            if new_level_code != node.level_code:
                self._ensure_level_code_free(session, node.channel_id, new_level_code, node_id=node.id)
                node.level_code = new_level_code

            parent_changed = "parent_id" in fields and payload.parent_id != node.parent_id
            level_changed = "level" in fields and payload.level is not None and payload.level != node.level
            if parent_changed or level_changed:
                new_parent_id = payload.parent_id if "parent_id" in fields else node.parent_id
                new_level = payload.level if level_changed and payload.level is not None else node.level
                if new_level != node.level and hierarchies.find_children(node.id):
                    raise InvalidStateError("hierarchy with child hierarchies cannot change level")
                self._validate_parent(
                    session,
                    channel_id=node.channel_id,
                    parent_id=new_parent_id,
                    level=new_level,
                    node_id=node.id,
                )
                node.parent_id = new_parent_id
                node.level = new_level

            if "description" in fields:
                node.description = payload.description.strip() if payload.description is not None else None
            if "order" in fields and payload.order is not None:
                node.order = payload.order
            if "status" in fields and payload.status is not None:
                node.status = payload.status

            node.updated_at = now_utc()
            node = self._commit(session, node)

        logger.info("Hierarchy updated id=%s level_code=%s", node.id, node.level_code)
        return node

    def delete_hierarchy(self, hierarchy_id: str) -> bool:
        with self._node_locks(hierarchy_id), self._session() as session:
            hierarchies = HierarchyDirectory(session)
            node = hierarchies.lock_by_id(hierarchy_id)
            if node is None:
                logger.debug("Hierarchy not found for deletion id=%s", hierarchy_id)
                return False
            if hierarchies.find_children(node.id):
                logger.warning("Refusing to delete hierarchy with children id=%s", hierarchy_id)
                raise InvalidStateError("cannot delete hierarchy with child hierarchies, delete children first")

            deleted_at = now_utc()
            node.is_deleted = True
            node.deleted_at = deleted_at
            node.updated_at = deleted_at
            session.add(node)
            session.commit()

        logger.info("Hierarchy deleted id=%s", hierarchy_id)
        return True

    def list_hierarchies(
        self,
        *,
        page: int = 1,
        limit: int = 10,
        channel_id: str | None = None,
        level: int | None = None,
        status: RecordStatus | None = None,
    ) -> HierarchyPageRead:
        if page < 1 or limit < 1:
            raise InvalidArgumentError("page and limit must be positive")

        statement = select(HierarchyNode).where(visible_clause(HierarchyNode))
        count_statement = select(func.count()).select_from(HierarchyNode).where(visible_clause(HierarchyNode))
        if channel_id is not None:
            statement = statement.where(HierarchyNode.channel_id == channel_id)
            count_statement = count_statement.where(HierarchyNode.channel_id == channel_id)
        if level is not None:
            statement = statement.where(HierarchyNode.level == level)
            count_statement = count_statement.where(HierarchyNode.level == level)
        if status is not None:
            statement = statement.where(HierarchyNode.status == status)
            count_statement = count_statement.where(HierarchyNode.status == status)

        with self._session() as session:
            total = int(session.exec(count_statement).one())
            rows = list(
                session.exec(
                    statement.order_by(
                        col(HierarchyNode.level),
                        col(HierarchyNode.order),
                        col(HierarchyNode.level_code),
                    )
                    .offset((page - 1) * limit)
                    .limit(limit)
                ).all()
            )
            hierarchies = self.describe_nodes(session, rows)

        return HierarchyPageRead(
            hierarchies=hierarchies,
            pagination=PaginationRead(
                page=page,
                limit=limit,
                total=total,
                total_pages=math.ceil(total / limit) if total else 0,
            ),
        )

    def list_by_channel(self, channel_id: str) -> list[HierarchyNode]:
        with self._session() as session:
            rows = HierarchyDirectory(session).find_by_channel(channel_id)
        return sorted(rows, key=lambda item: (item.level, item.order, item.level_code))

    def list_by_channel_and_level(self, channel_id: str, level: int) -> list[HierarchyNode]:
        rows = [item for item in self.list_by_channel(channel_id) if item.level == level]
        return sorted(rows, key=lambda item: (item.order, item.level_code))

    def list_roots(self, channel_id: str) -> list[HierarchyNode]:
        rows = [item for item in self.list_by_channel(channel_id) if item.parent_id is None]
        return sorted(rows, key=lambda item: (item.order, item.level_code))

    def list_children(self, parent_id: str) -> list[HierarchyNode]:
        with self._session() as session:
            return HierarchyDirectory(session).find_children(parent_id)

    def describe(self, nodes: Sequence[HierarchyNode]) -> list[HierarchyRead]:
        with self._session() as session:
            return self.describe_nodes(session, nodes)

    def describe_nodes(self, session: Session, nodes: Sequence[HierarchyNode]) -> list[HierarchyRead]:
        channels = ChannelDirectory(session).get_many(item.channel_id for item in nodes)
        parent_ids = sorted({item.parent_id for item in nodes if item.parent_id is not None})
        parents: dict[str, HierarchyNode] = {}
        if parent_ids:
            parents = {
                row.id: row
                for row in session.exec(select(HierarchyNode).where(col(HierarchyNode.id).in_(parent_ids))).all()
            }

        described: list[HierarchyRead] = []
        for node in nodes:
            channel = channels.get(node.channel_id)
            parent = parents.get(node.parent_id) if node.parent_id is not None else None
            described.append(
                HierarchyRead(
                    id=node.id,
                    channel_id=node.channel_id,
                    channel_name=channel.name if channel is not None else None,
                    channel_code=channel.code if channel is not None else None,
                    name=node.name,
                    level_code=node.level_code,
                    level=node.level,
                    parent_id=node.parent_id,
                    parent_name=parent.name if parent is not None else None,
                    description=node.description,
                    order=node.order,
                    status=node.status,
                    is_active=node.status == RecordStatus.ACTIVE,
                    is_root=node.parent_id is None,
                    has_parent=node.parent_id is not None,
                    created_at=node.created_at,
                    updated_at=node.updated_at,
                )
            )
        return described
