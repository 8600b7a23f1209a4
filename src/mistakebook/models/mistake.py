from __future__ import annotations

from pydantic import AliasChoices, Field, field_validator

from .common import (
    CamelModel,
    MasteryLevel,
    MistakeStatus,
    UtcDatetime,
    VisualComponent,
)


# 変式練習として保存したレコードに付与するタグ
VARIATION_TAG = "变式练习"


class MistakeRecord(CamelModel):
    """A single learning item (a mistake the learner must master).

    SRS fields (`review_count`, `mastery_level`, `next_review_at`) are owned by
    the scheduler; content fields are opaque payload edited by the notebook UI.
    `review_count` carries no bound here; the scheduler rejects negative
    values with `InvalidStateError`.
    """

    id: str
    user_id: str | None = None
    original_mistake_id: str | None = None

    image_data: str | None = None
    html_content: str = ""
    visual_components: list[VisualComponent] = Field(default_factory=list)
    answer: str = ""
    explanation: str = ""
    tags: list[str] = Field(default_factory=list)

    status: MistakeStatus = MistakeStatus.active

    created_at: UtcDatetime
    updated_at: UtcDatetime
    next_review_at: UtcDatetime | None = None
    review_count: int = 0
    mastery_level: MasteryLevel = MasteryLevel.new
    version: int = 0


class MistakeDraft(CamelModel):
    """Content for a record that is about to be created."""

    user_id: str | None = None
    original_mistake_id: str | None = None
    image_data: str | None = None
    html_content: str = Field(
        default="",
        validation_alias=AliasChoices("html", "htmlContent", "html_content"),
    )
    visual_components: list[VisualComponent] = Field(default_factory=list)
    answer: str = ""
    explanation: str = ""
    tags: list[str] = Field(default_factory=list)


class OriginalImage(CamelModel):
    url: str = ""
    file_id: str | None = None


class MistakeData(CamelModel):
    """One transcribed problem inside a bulk ingestion payload."""

    html: str = ""
    answer: str = ""
    explanation: str = ""
    tags: list[str] = Field(default_factory=list)
    visual_components: list[VisualComponent] = Field(default_factory=list)
    original_mistake_id: str | None = None


class BulkMistakeInput(CamelModel):
    """Bulk ingestion request: several problems cut from one photographed page."""

    original_image: OriginalImage = Field(default_factory=OriginalImage)
    mistakes: list[MistakeData] = Field(min_length=1)

    def to_drafts(self, user_id: str | None = None) -> list[MistakeDraft]:
        image = self.original_image.url or None
        return [
            MistakeDraft(
                user_id=user_id,
                original_mistake_id=m.original_mistake_id,
                image_data=image,
                html_content=m.html,
                visual_components=m.visual_components,
                answer=m.answer,
                explanation=m.explanation,
                tags=m.tags,
            )
            for m in self.mistakes
        ]


class MistakeUpdate(CamelModel):
    """Content edit request. SRS fields are intentionally absent."""

    html_content: str | None = Field(
        default=None,
        validation_alias=AliasChoices("html", "htmlContent", "html_content"),
    )
    image_data: str | None = None
    visual_components: list[VisualComponent] | None = None
    answer: str | None = None
    explanation: str | None = None
    tags: list[str] | None = None
    status: MistakeStatus | None = None

    @field_validator("status")
    @classmethod
    def _reject_deleted(cls, value: MistakeStatus | None) -> MistakeStatus | None:
        if value is MistakeStatus.deleted:
            raise ValueError("use DELETE to remove a record")
        return value

    def changes(self) -> dict[str, object]:
        """Return only the fields the client actually sent."""

        return self.model_dump(exclude_unset=True, by_alias=False)


class VariationRequest(CamelModel):
    """A generated variation of an existing record, as previewed by the learner."""

    html: str = Field(min_length=1)
    answer: str = ""
    explanation: str = ""
    tags: list[str] = Field(default_factory=list)
    visual_components: list[VisualComponent] = Field(default_factory=list)


class MistakeListResponse(CamelModel):
    data: list[MistakeRecord]
    total: int
    page: int
    limit: int
