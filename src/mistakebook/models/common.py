from __future__ import annotations

from datetime import UTC, datetime
from enum import Enum
from typing import Annotated, Any

from pydantic import AfterValidator, BaseModel, ConfigDict
from pydantic.alias_generators import to_camel


def ensure_utc(value: datetime) -> datetime:
    """Normalise datetimes to timezone-aware UTC.

    naive な値は UTC とみなす。SQLite には UTC の ISO 文字列で保存するため、
    比較・ソートの前提を揃えておく。
    """

    if value.tzinfo is None:
        return value.replace(tzinfo=UTC)
    return value.astimezone(UTC)


UtcDatetime = Annotated[datetime, AfterValidator(ensure_utc)]


class CamelModel(BaseModel):
    """Base model exchanging camelCase JSON (`reviewCount`, `nextReviewAt`, ...)."""

    model_config = ConfigDict(
        alias_generator=to_camel,
        populate_by_name=True,
        extra="ignore",
    )


class MasteryLevel(str, Enum):
    """Coarse proficiency tag driving UI badges and retry cadence.

    `reviewing` is accepted for compatibility with stored records but no
    scheduler transition produces it.
    """

    new = "new"
    learning = "learning"
    reviewing = "reviewing"
    mastered = "mastered"


class MistakeStatus(str, Enum):
    processing = "processing"
    active = "active"
    archived = "archived"
    deleted = "deleted"


class VisualComponent(BaseModel):
    """Diagram descriptor rendered by the frontend (clock, fraction, ...)."""

    model_config = ConfigDict(extra="allow")

    type: str = "none"
    props: dict[str, Any] = {}
