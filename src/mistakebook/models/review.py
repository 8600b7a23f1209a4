from __future__ import annotations

from pydantic import Field

from .common import CamelModel, MasteryLevel, UtcDatetime, VisualComponent
from .mistake import MistakeRecord


class ReviewOutcomeRequest(CamelModel):
    """Result of a single learner attempt at a due record.

    - success: 正解なら True
    - duration: 回答に要した秒数（記録のみ、スケジューリングには使わない）
    - expected_version: 指定時、保存済みの version と一致しなければ 409
    """

    success: bool
    duration: float = Field(default=0, ge=0)
    expected_version: int | None = Field(default=None, ge=0)


class ReviewLogEntry(CamelModel):
    """One row of review history appended on every recorded outcome."""

    mistake_id: str
    reviewed_at: UtcDatetime
    success: bool
    review_count: int
    mastery_level: MasteryLevel
    next_review_at: UtcDatetime


class ReviewStats(CamelModel):
    """Progress summary for the notebook header.

    - due_now: 現在時点で出題すべき件数
    - reviewed_today: 今日（UTC）記録された復習件数
    - total_active: 削除されていないレコード数
    - mastery: 習熟度ごとの件数
    """

    due_now: int
    reviewed_today: int
    total_active: int
    mastery: dict[str, int] = Field(default_factory=dict)
    recent: list[ReviewLogEntry] = Field(default_factory=list)


class QuizOption(CamelModel):
    id: str
    text: str


class QuizQuestion(CamelModel):
    """Multiple-choice question generated from a due record."""

    id: str
    mistake_id: str
    category: str
    title: str
    html_content: str
    visual_components: list[VisualComponent] = Field(default_factory=list)
    options: list[QuizOption]
    correct_id: str
    explanation: str
    hint: str | None = None


class ReviewSession(CamelModel):
    questions: list[QuizQuestion] = Field(default_factory=list)
    started_at: UtcDatetime


class ReviewResult(CamelModel):
    mistake_id: str
    success: bool


class ReviewSessionCompleteRequest(CamelModel):
    results: list[ReviewResult] = Field(default_factory=list)


class ReviewSessionCompleteResponse(CamelModel):
    items: list[MistakeRecord]
