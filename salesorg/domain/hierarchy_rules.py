from __future__ import annotations

import os

HIERARCHY_MIN_LEVEL = int(os.getenv("HIERARCHY_MIN_LEVEL", "1"))
HIERARCHY_MAX_LEVEL = int(os.getenv("HIERARCHY_MAX_LEVEL", "10"))
HIERARCHY_DEFAULT_ORDER = int(os.getenv("HIERARCHY_DEFAULT_ORDER", "0"))
SCOPE_VISIBILITY_POLICY = os.getenv("SCOPE_VISIBILITY_POLICY", "unrestricted")


def normalize_level_code(level_code: str) -> str:
    return level_code.strip().upper()


def expected_child_level(parent_level: int) -> int:
    return parent_level + 1
