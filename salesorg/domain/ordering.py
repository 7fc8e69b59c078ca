"""Comparison strategies for "below this point" queries.

Hierarchy nodes carry two independent rankings:

* ``level_code`` -- stored as a string, compared as an integer. Codes that do
  not parse as a plain integer (``"A1"``, ``"1_0"``) are excluded from every
  comparison: they are never "below" anything, and a reference node with such
  a code has nothing below it.
* ``order`` -- a flat integer, compared inclusively (``<=``) so peers at the
  same order see each other.

The two strategies are deliberately unrelated; nothing here assumes ``order``
tracks ``level`` or ``level_code``.
"""

from __future__ import annotations

import re
from collections.abc import Iterable
from dataclasses import dataclass

from salesorg.domain.models import HierarchyNode

_NUMERIC_CODE = re.compile(r"^[+-]?\d+$")


def parse_level_code(level_code: str | None) -> int | None:
    if level_code is None:
        return None
    candidate = level_code.strip()
    if not _NUMERIC_CODE.match(candidate):
        return None
    return int(candidate)


@dataclass(frozen=True)
class LevelCodeOrdering:
    reference_code: int | None

    @classmethod
    def from_node(cls, node: HierarchyNode) -> LevelCodeOrdering:
        return cls(reference_code=parse_level_code(node.level_code))

    def is_below(self, node: HierarchyNode) -> bool:
        if self.reference_code is None:
            return False
        candidate = parse_level_code(node.level_code)
        return candidate is not None and candidate < self.reference_code

    def select_below(self, nodes: Iterable[HierarchyNode]) -> list[HierarchyNode]:
        return sorted((node for node in nodes if self.is_below(node)), key=level_code_sort_key)


@dataclass(frozen=True)
class OrderFieldOrdering:
    reference_order: int

    @classmethod
    def from_node(cls, node: HierarchyNode) -> OrderFieldOrdering:
        return cls(reference_order=node.order)

    def is_within(self, node: HierarchyNode) -> bool:
        return node.order <= self.reference_order

    def select_within(self, nodes: Iterable[HierarchyNode]) -> list[HierarchyNode]:
        return [node for node in nodes if self.is_within(node)]


def level_code_sort_key(node: HierarchyNode) -> tuple[int, int, str, str]:
    parsed = parse_level_code(node.level_code)
    # unparseable codes sort after every numeric one
    if parsed is None:
        return (1, 0, node.level_code, node.name)
    return (0, parsed, node.level_code, node.name)
