from __future__ import annotations

import random
import re
from datetime import datetime
from typing import Iterable

from ..distractors import DistractorStrategy, NumericJitterStrategy
from ..logging import logger
from ..metrics import registry
from ..models import (
    MistakeRecord,
    QuizOption,
    QuizQuestion,
    ReviewResult,
    ReviewSession,
)
from ..store import RecordStore


_HTML_TAG = re.compile(r"<[^>]*>")

REVIEW_CATEGORY = "复习挑战"
REVIEW_HINT = "回想一下之前整理错题时的思路"
CORRECT_OPTION_ID = "correct"


def strip_html(text: str) -> str:
    return _HTML_TAG.sub("", text or "").strip()


class ReviewSessionFlow:
    """Turn due records into a quiz and feed answers back to the scheduler.

    復習セッションのフロー。
    - start: 期限到来のレコードを古い順に最大 `cap` 件選び、4択問題を生成
    - complete: 回答結果を提出順にまとめてストアへ反映。1 件でも失敗すれば何も書かない
      （未回答のものは何もしない）
    """

    def __init__(
        self,
        store: RecordStore,
        *,
        cap: int = 5,
        distractors: DistractorStrategy | None = None,
        rng: random.Random | None = None,
    ) -> None:
        self.store = store
        self.cap = cap
        self._rng = rng or random.Random()
        self.distractors = distractors or NumericJitterStrategy(rng=self._rng)

    def build_question(self, record: MistakeRecord) -> QuizQuestion:
        answer = strip_html(record.answer)
        wrong = self.distractors.generate(answer, 3)
        options = [QuizOption(id=CORRECT_OPTION_ID, text=answer)]
        options.extend(
            QuizOption(id=f"wrong_{idx}", text=text) for idx, text in enumerate(wrong, start=1)
        )
        self._rng.shuffle(options)
        return QuizQuestion(
            id=record.id,
            mistake_id=record.id,
            category=REVIEW_CATEGORY,
            title=" / ".join(record.tags),
            html_content=record.html_content,
            visual_components=record.visual_components,
            options=options,
            correct_id=CORRECT_OPTION_ID,
            explanation=record.explanation,
            hint=REVIEW_HINT,
        )

    def start(self, now: datetime) -> ReviewSession:
        due = self.store.find_due(now, limit=self.cap)
        questions = [self.build_question(record) for record in due]
        logger.info(
            "review_session_started",
            due_count=len(questions),
            cap=self.cap,
            mistake_ids=[q.mistake_id for q in questions],
        )
        return ReviewSession(questions=questions, started_at=now)

    def complete(
        self, results: Iterable[ReviewResult], now: datetime
    ) -> list[MistakeRecord]:
        answered = list(results)
        updated = self.store.record_reviews(
            [(result.mistake_id, result.success) for result in answered], now
        )
        for result in answered:
            registry.record_review(result.success)
        logger.info(
            "review_session_completed",
            answered=len(answered),
            succeeded=sum(1 for r in answered if r.success),
        )
        return updated
