"""
Advisory study recommendations for a scored answer.

Presentation copy only; nothing here feeds back into scheduling.
"""

from __future__ import annotations

HIGH_CONFIDENCE = 0.7
MEDIUM_CONFIDENCE = 0.4
GOOD_SCORE = 80
SLOW_RESPONSE_SECONDS = 15


def build_recommendations(
    is_correct: bool,
    confidence: float,
    score: float,
    response_time_seconds: float | None,
    quality: int,
) -> list[str]:
    """
    Build an ordered list of coaching tips.

    Args:
        is_correct: Whether the answer was accepted
        confidence: Recognizer confidence (0-1)
        score: Similarity score (0-100)
        response_time_seconds: Answer latency, if known
        quality: Final quality grade (0-5)

    Returns:
        Recommendations, most specific first
    """
    recommendations: list[str] = []

    if not is_correct:
        recommendations.append("Check the correct answer again and practice it once more")
        if confidence < MEDIUM_CONFIDENCE:
            recommendations.append("Review the underlying grammar or expression from the basics")
    else:
        if score < GOOD_SCORE:
            recommendations.append("Practice pronunciation and grammar for a more accurate answer")
        if confidence < HIGH_CONFIDENCE:
            recommendations.append("Repeat this item until you can answer it with confidence")

    if response_time_seconds and response_time_seconds > SLOW_RESPONSE_SECONDS:
        recommendations.append("Memorize frequently used expressions to answer faster")

    if quality >= 4:
        recommendations.append("Excellent! Keep up this level")

    return recommendations
