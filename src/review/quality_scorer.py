"""
Quality Scorer - answer events to SM-2 quality grades.

SM-2 Grade Scale:
0 - Complete blackout, wrong response
1 - Incorrect, but the correct answer was remembered
2 - Incorrect, but the correct answer seemed easy to recall
3 - Correct, but with significant difficulty
4 - Correct, with some hesitation
5 - Correct, with perfect recall

Inputs come from noisy speech/similarity pipelines, so out-of-range values
are clamped rather than rejected. Every function here is pure.
"""

from __future__ import annotations

import math
from dataclasses import dataclass, field
from enum import Enum

from loguru import logger

from src.review.models import clamp
from src.review.recommendations import build_recommendations


class QualityCategory(str, Enum):
    """Human-facing bucket for a quality grade."""

    PERFECT = "perfect"
    GOOD = "good"
    ACCEPTABLE = "acceptable"
    POOR = "poor"
    FAILED = "failed"

    @classmethod
    def from_quality(cls, quality: int) -> QualityCategory:
        if quality >= 5:
            return cls.PERFECT
        elif quality == 4:
            return cls.GOOD
        elif quality >= 2:
            return cls.ACCEPTABLE
        elif quality == 1:
            return cls.POOR
        else:
            return cls.FAILED


QUALITY_DESCRIPTIONS = {
    0: "Complete failure - the correct answer was not remembered at all",
    1: "Failed, then recognised - the correct answer was remembered",
    2: "Failed, then recognised easily - the correct answer was easy to recall",
    3: "Succeeded with difficulty - correct but effortful",
    4: "Succeeded with hesitation - correct after a short pause",
    5: "Perfect success - immediate correct answer",
}


@dataclass(frozen=True)
class QualityResult:
    """Quality grade with its explanation."""

    quality: int
    reasoning: str
    category: QualityCategory


@dataclass(frozen=True)
class DetailedScoreAnalysis:
    """Quality grade plus confidence/score buckets and coaching tips."""

    quality: int
    category: QualityCategory
    reasoning: str
    confidence_level: str  # high | medium | low
    score_level: str  # excellent | good | fair | poor
    recommendations: list[str] = field(default_factory=list)


class QualityScorer:
    """
    Converts a raw answer event into a 0-5 quality grade.

    Incorrect answers grade 0-2 by recognizer confidence. Correct answers
    start at 3-5 by similarity score, then adjust by response time when it
    is known, otherwise by confidence.
    """

    PERFECT_SCORE = 90
    GOOD_SCORE = 80
    FAIR_SCORE = 60
    HIGH_CONFIDENCE = 0.7
    MEDIUM_CONFIDENCE = 0.4

    FAST_RESPONSE = 3  # Seconds
    SLOW_RESPONSE = 15
    VERY_SLOW_RESPONSE = 30

    def calculate_quality(
        self,
        is_correct: bool,
        confidence: float,
        score: float,
        response_time_seconds: float | None = None,
    ) -> QualityResult:
        """
        Grade a single answer.

        Args:
            is_correct: Whether the answer was accepted
            confidence: Recognizer confidence, clamped to 0-1
            score: Similarity score, clamped to 0-100
            response_time_seconds: Answer latency; ignored when None or <= 0

        Returns:
            QualityResult with quality, reasoning and category
        """
        confidence = _finite_clamp(confidence, 0.0, 1.0)
        score = _finite_clamp(score, 0.0, 100.0)
        if response_time_seconds is not None:
            response_time_seconds = _finite_clamp(response_time_seconds, 0.0, math.inf)

        if not is_correct:
            result = self._incorrect_quality(confidence)
        else:
            result = self._correct_quality(score, confidence, response_time_seconds)

        logger.debug(
            f"Quality {result.quality} ({result.category.value}) for "
            f"correct={is_correct} confidence={confidence:.2f} score={score:.0f}"
        )
        return result

    def get_detailed_analysis(
        self,
        is_correct: bool,
        confidence: float,
        score: float,
        response_time_seconds: float | None = None,
    ) -> DetailedScoreAnalysis:
        """Quality grade plus advisory breakdown. Not used by scheduling."""
        result = self.calculate_quality(is_correct, confidence, score, response_time_seconds)
        confidence = _finite_clamp(confidence, 0.0, 1.0)
        score = _finite_clamp(score, 0.0, 100.0)

        return DetailedScoreAnalysis(
            quality=result.quality,
            category=result.category,
            reasoning=result.reasoning,
            confidence_level=self.confidence_level(confidence),
            score_level=self.score_level(score),
            recommendations=build_recommendations(
                is_correct, confidence, score, response_time_seconds, result.quality
            ),
        )

    def confidence_level(self, confidence: float) -> str:
        if confidence >= self.HIGH_CONFIDENCE:
            return "high"
        elif confidence >= self.MEDIUM_CONFIDENCE:
            return "medium"
        return "low"

    def score_level(self, score: float) -> str:
        if score >= self.PERFECT_SCORE:
            return "excellent"
        elif score >= self.GOOD_SCORE:
            return "good"
        elif score >= self.FAIR_SCORE:
            return "fair"
        return "poor"

    @staticmethod
    def describe_quality(quality: int) -> str:
        """One-line description of a 0-5 grade."""
        return QUALITY_DESCRIPTIONS[int(clamp(quality, 0, 5))]

    # =========================================================================
    # Grading branches
    # =========================================================================

    def _incorrect_quality(self, confidence: float) -> QualityResult:
        if confidence > self.HIGH_CONFIDENCE:
            return QualityResult(
                2,
                "Wrong with high confidence - the correct answer should be easy to recall",
                QualityCategory.ACCEPTABLE,
            )
        if confidence > self.MEDIUM_CONFIDENCE:
            return QualityResult(
                1,
                "Wrong with medium confidence - the correct answer is remembered",
                QualityCategory.POOR,
            )
        return QualityResult(
            0,
            "Wrong with low confidence - complete blackout",
            QualityCategory.FAILED,
        )

    def _correct_quality(
        self,
        score: float,
        confidence: float,
        response_time_seconds: float | None,
    ) -> QualityResult:
        if score >= self.PERFECT_SCORE:
            base, reasoning = 5, "Perfect score"
        elif score >= self.GOOD_SCORE:
            base, reasoning = 4, "Good score"
        else:
            base, reasoning = 3, "Correct but with difficulty"

        if response_time_seconds:
            adjustment = self._time_adjustment(response_time_seconds, base)
            quality = int(clamp(base + adjustment, 3, 5))
            if quality != base:
                reasoning = f"{reasoning} ({self._time_description(response_time_seconds)})"
            return QualityResult(quality, reasoning, QualityCategory.from_quality(quality))

        if confidence < self.MEDIUM_CONFIDENCE and base > 3:
            return QualityResult(
                3, f"{reasoning} (lowered for low confidence)", QualityCategory.ACCEPTABLE
            )

        return QualityResult(base, reasoning, QualityCategory.from_quality(base))

    def _time_adjustment(self, response_time_seconds: float, base: int) -> int:
        if response_time_seconds <= self.FAST_RESPONSE and base < 5:
            return 1
        if response_time_seconds >= self.VERY_SLOW_RESPONSE:
            return -1
        if response_time_seconds >= self.SLOW_RESPONSE and base > 3:
            return -1
        return 0

    def _time_description(self, response_time_seconds: float) -> str:
        if response_time_seconds <= self.FAST_RESPONSE:
            return f"fast response {response_time_seconds:.1f}s"
        if response_time_seconds >= self.VERY_SLOW_RESPONSE:
            return f"very slow response {response_time_seconds:.1f}s"
        if response_time_seconds >= self.SLOW_RESPONSE:
            return f"slow response {response_time_seconds:.1f}s"
        return f"normal response {response_time_seconds:.1f}s"


def _finite_clamp(value: float, low: float, high: float) -> float:
    if value is None or (isinstance(value, float) and math.isnan(value)):
        return low
    return clamp(float(value), low, high)
