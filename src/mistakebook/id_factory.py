"""ID 生成ユーティリティ。"""

from __future__ import annotations

import uuid


def generate_mistake_id() -> str:
    """Return a new opaque record id (`mk:` + UUID4 hex)."""

    return f"mk:{uuid.uuid4().hex}"
