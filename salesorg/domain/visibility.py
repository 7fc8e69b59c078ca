from __future__ import annotations

from collections.abc import Iterable
from typing import Any

from sqlalchemy import ColumnElement, and_, false
from sqlmodel import col

from salesorg.domain.models import Agent, AgentStatus

ACTIVE_AGENT_STATES: frozenset[str] = frozenset({AgentStatus.ACTIVE.value})


def _status_of(record: Any) -> str | None:
    status = getattr(record, "agent_status", None)
    if status is None:
        status = getattr(record, "status", None)
    return getattr(status, "value", status)


def is_visible(record: Any, active_states: Iterable[str] | None = None) -> bool:
    if record is None or getattr(record, "is_deleted", False):
        return False
    if active_states is None:
        return True
    return _status_of(record) in set(active_states)


def visible_clause(model: Any, active_states: Iterable[str] | None = None) -> ColumnElement[bool]:
    clause: ColumnElement[bool] = col(model.is_deleted).is_(False)
    if active_states is None:
        return clause
    status_column = model.agent_status if model is Agent else model.status
    states = sorted(set(active_states))
    if not states:
        return and_(clause, false())
    return and_(clause, col(status_column).in_(states))
