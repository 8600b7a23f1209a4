from .common import MasteryLevel, MistakeStatus, VisualComponent
from .mistake import (
    VARIATION_TAG,
    BulkMistakeInput,
    MistakeData,
    MistakeDraft,
    MistakeListResponse,
    MistakeRecord,
    MistakeUpdate,
    OriginalImage,
    VariationRequest,
)
from .review import (
    QuizOption,
    QuizQuestion,
    ReviewLogEntry,
    ReviewOutcomeRequest,
    ReviewResult,
    ReviewSession,
    ReviewSessionCompleteRequest,
    ReviewSessionCompleteResponse,
    ReviewStats,
)

__all__ = [
    "BulkMistakeInput",
    "MasteryLevel",
    "MistakeData",
    "MistakeDraft",
    "MistakeListResponse",
    "MistakeRecord",
    "MistakeStatus",
    "MistakeUpdate",
    "OriginalImage",
    "QuizOption",
    "QuizQuestion",
    "ReviewLogEntry",
    "ReviewOutcomeRequest",
    "ReviewResult",
    "ReviewSession",
    "ReviewSessionCompleteRequest",
    "ReviewSessionCompleteResponse",
    "ReviewStats",
    "VARIATION_TAG",
    "VariationRequest",
    "VisualComponent",
]
