"""Wrong-answer generation for review quizzes.

Kept behind `DistractorStrategy` so the heuristic can be replaced without
touching the scheduler or the session flow.
"""

from __future__ import annotations

import random
import re
from typing import Protocol, Sequence


_LEADING_INT = re.compile(r"^\s*([+-]?\d+)")

GENERIC_DISTRACTORS: tuple[str, ...] = (
    "这是一个干扰选项",
    "这个选项不正确",
    "请再仔细思考",
    "错误的答案",
    "不符合题意的选项",
)


class DistractorStrategy(Protocol):
    def generate(self, correct: str, count: int = 3) -> list[str]: ...


def parse_leading_int(text: str) -> int | None:
    """Parse an integer prefix the way a lenient `parseInt` would ("12元" -> 12)."""

    match = _LEADING_INT.match(text)
    if match is None:
        return None
    return int(match.group(1))


class NumericJitterStrategy:
    """Near-miss numbers for numeric answers, stock phrases otherwise.

    For an integer answer `n` the candidates are n-1, n+1, n-10, n+10, n-100,
    n+100 in that order; any shortfall is filled from `fallback` at random.
    Results never repeat and never equal the correct answer.
    """

    def __init__(
        self,
        rng: random.Random | None = None,
        fallback: Sequence[str] = GENERIC_DISTRACTORS,
    ) -> None:
        self._rng = rng or random.Random()
        self._fallback = tuple(fallback)

    def generate(self, correct: str, count: int = 3) -> list[str]:
        distractors: list[str] = []
        number = parse_leading_int(correct)
        if number is not None:
            for delta in (-1, 1, -10, 10, -100, 100):
                if len(distractors) >= count:
                    break
                candidate = str(number + delta)
                if candidate != correct.strip() and candidate not in distractors:
                    distractors.append(candidate)

        pool = [
            text
            for text in self._fallback
            if text not in distractors and text != correct.strip()
        ]
        missing = count - len(distractors)
        if missing > len(pool):
            raise ValueError(
                f"not enough fallback distractors: need {missing}, have {len(pool)}"
            )
        if missing > 0:
            distractors.extend(self._rng.sample(pool, missing))
        return distractors
