"""
Scheduler Configuration.

Every tunable constant of the review engine in one validated object.
Field names are snake_case; the upper-case keys used by stored engine
configs (SM2_MIN_EASE_FACTOR, LEARNING_STEPS, ...) are accepted as well.

The object is frozen and passed explicitly to each component, so two
engines with different tuning can run side by side in one process.
"""

from __future__ import annotations

from typing import Annotated, Any

import pydantic
from pydantic import AliasChoices, BaseModel, ConfigDict, Field, model_validator

from src.review.errors import ConfigurationError

StepMinutes = Annotated[float, Field(ge=1, le=1440)]


def _alias(name: str) -> AliasChoices:
    return AliasChoices(name, name.upper())


class SchedulerConfig(BaseModel):
    """Tunable constants for scoring, memory decay, scheduling and sessions."""

    model_config = ConfigDict(frozen=True, extra="ignore")

    # ========================================
    # SM-2 ease factor
    # ========================================
    sm2_min_ease_factor: float = Field(
        default=1.3, ge=1.0, le=2.0,
        validation_alias=_alias("sm2_min_ease_factor"),
        description="Lower bound for the ease factor",
    )
    sm2_max_ease_factor: float = Field(
        default=3.5, ge=2.5, le=5.0,
        validation_alias=_alias("sm2_max_ease_factor"),
        description="Upper bound for the ease factor",
    )
    sm2_initial_ease: float = Field(
        default=2.5, ge=1.5, le=3.0,
        validation_alias=_alias("sm2_initial_ease"),
        description="Ease factor given to new cards",
    )
    sm2_ease_bonus: float = Field(
        default=0.1, ge=0.0, le=0.5,
        validation_alias=_alias("sm2_ease_bonus"),
        description="Ease increase on an easy review",
    )
    sm2_ease_penalty: float = Field(
        default=0.2, ge=0.0, le=0.5,
        validation_alias=_alias("sm2_ease_penalty"),
        description="Ease decrease on a lapse",
    )
    sm2_hard_penalty: float = Field(
        default=0.15, ge=0.0, le=0.5,
        validation_alias=_alias("sm2_hard_penalty"),
        description="Ease decrease on a passing but not easy review",
    )

    # ========================================
    # Learning phases
    # ========================================
    learning_steps: tuple[StepMinutes, ...] = Field(
        default=(1, 10), min_length=1,
        validation_alias=_alias("learning_steps"),
        description="Learning step lengths in minutes",
    )
    relearning_steps: tuple[StepMinutes, ...] = Field(
        default=(10,), min_length=1,
        validation_alias=_alias("relearning_steps"),
        description="Relearning step lengths in minutes",
    )
    graduating_interval: int = Field(
        default=1, ge=1, le=10,
        validation_alias=_alias("graduating_interval"),
        description="Interval in days after graduating from learning",
    )
    easy_interval: int = Field(
        default=4, ge=2, le=14,
        validation_alias=_alias("easy_interval"),
        description="Interval in days after graduating with an easy answer",
    )

    # ========================================
    # Review intervals
    # ========================================
    max_interval: int = Field(
        default=36500, ge=100, le=36500,
        validation_alias=_alias("max_interval"),
        description="Longest review interval in days",
    )
    min_interval: int = Field(
        default=1, ge=1, le=7,
        validation_alias=_alias("min_interval"),
        description="Shortest review interval in days",
    )
    interval_modifier: float = Field(
        default=1.0, ge=0.5, le=2.0,
        validation_alias=_alias("interval_modifier"),
        description="Global multiplier applied to review intervals",
    )

    # ========================================
    # Memory model (forgetting curve)
    # ========================================
    initial_stability: float = Field(
        default=2.0, ge=0.5, le=5.0,
        validation_alias=AliasChoices(
            "initial_stability", "INITIAL_STABILITY", "stability_factor", "STABILITY_FACTOR"
        ),
        description="Stability multiplier of the forgetting curve",
    )
    difficulty_weight: float = Field(
        default=0.3, ge=0.0, le=1.0,
        validation_alias=_alias("difficulty_weight"),
        description="How strongly difficulty shortens stability",
    )
    strength_weight: float = Field(
        default=0.4, ge=0.0, le=1.0,
        validation_alias=_alias("strength_weight"),
        description="How strongly memory strength lengthens stability",
    )
    consistency_bonus: float = Field(
        default=0.1, ge=0.0, le=1.0,
        validation_alias=_alias("consistency_bonus"),
        description="Stability bonus per unit of success rate",
    )
    stability_gain: float = Field(
        default=1.5, ge=1.0, le=3.0,
        validation_alias=_alias("stability_gain"),
        description="Scales stability growth after a passing review (1.5 = neutral)",
    )
    success_rate_alpha: float = Field(
        default=0.1, gt=0.0, le=1.0,
        validation_alias=_alias("success_rate_alpha"),
        description="Weight of the latest outcome in the success-rate average",
    )
    retention_threshold: float = Field(
        default=0.7, gt=0.0, lt=1.0,
        validation_alias=_alias("retention_threshold"),
        description="Retention at which a review is optimal",
    )
    forget_threshold: float = Field(
        default=0.1, gt=0.0, lt=1.0,
        validation_alias=_alias("forget_threshold"),
        description="Retention below which an item counts as forgotten",
    )
    mastery_threshold: float = Field(
        default=0.9, gt=0.0, le=1.0,
        validation_alias=_alias("mastery_threshold"),
        description="Current strength required for mastery",
    )
    mastery_min_reviews: int = Field(
        default=5, ge=1,
        validation_alias=_alias("mastery_min_reviews"),
        description="Reviews required for mastery",
    )
    mastery_min_success_rate: float = Field(
        default=0.9, ge=0.0, le=1.0,
        validation_alias=_alias("mastery_min_success_rate"),
        description="Success rate required for mastery",
    )

    # ========================================
    # Quality thresholds
    # ========================================
    passing_grade: int = Field(
        default=3, ge=2, le=4,
        validation_alias=_alias("passing_grade"),
        description="Lowest quality that counts as a successful review",
    )
    easy_grade: int = Field(
        default=4, ge=3, le=5,
        validation_alias=_alias("easy_grade"),
        description="Lowest quality that counts as an easy review",
    )
    correct_score_threshold: float = Field(
        default=80.0, ge=0.0, le=100.0,
        validation_alias=_alias("correct_score_threshold"),
        description="Similarity score above which an answer counts as correct",
    )
    chronic_lapse_threshold: int = Field(
        default=8, ge=1,
        validation_alias=_alias("chronic_lapse_threshold"),
        description="Lapses after which a card is flagged as chronically difficult",
    )

    # ========================================
    # Mistake priority
    # ========================================
    mistake_window_days: int = Field(
        default=3, ge=1, le=30,
        validation_alias=_alias("mistake_window_days"),
        description="Recency window for mistake review in days",
    )
    mistake_min_weight: float = Field(
        default=0.5, ge=0.0, le=10.0,
        validation_alias=_alias("mistake_min_weight"),
        description="Weight a mistake record must exceed to be prioritised",
    )
    mistake_max_weight: float = Field(
        default=10.0, gt=0.0, le=100.0,
        validation_alias=_alias("mistake_max_weight"),
        description="Cap on mistake record weight",
    )
    recent_mistake_capacity: int = Field(
        default=10, ge=1, le=100,
        validation_alias=_alias("recent_mistake_capacity"),
        description="Mistakes kept per record",
    )

    @model_validator(mode="after")
    def _check_cross_field_bounds(self) -> SchedulerConfig:
        if self.sm2_min_ease_factor >= self.sm2_max_ease_factor:
            raise ValueError("sm2_min_ease_factor must be below sm2_max_ease_factor")
        if not self.sm2_min_ease_factor <= self.sm2_initial_ease <= self.sm2_max_ease_factor:
            raise ValueError("sm2_initial_ease must lie within the ease bounds")
        if self.easy_grade < self.passing_grade:
            raise ValueError("easy_grade must not be below passing_grade")
        if self.easy_interval < self.graduating_interval:
            raise ValueError("easy_interval must not be below graduating_interval")
        if self.forget_threshold >= self.retention_threshold:
            raise ValueError("forget_threshold must be below retention_threshold")
        return self

    def with_overrides(self, **overrides: Any) -> SchedulerConfig:
        """Return a new validated config with some fields replaced."""
        normalized = {key.lower(): value for key, value in overrides.items()}
        if "stability_factor" in normalized:
            normalized["initial_stability"] = normalized.pop("stability_factor")
        return load_scheduler_config({**self.model_dump(), **normalized})


def load_scheduler_config(overrides: dict[str, Any] | None = None) -> SchedulerConfig:
    """
    Build a SchedulerConfig from a mapping of overrides.

    Raises:
        ConfigurationError: when a value is outside its documented bounds
    """
    try:
        return SchedulerConfig.model_validate(overrides or {})
    except pydantic.ValidationError as e:
        first = e.errors()[0]
        field = ".".join(str(part) for part in first["loc"]) or "config"
        raise ConfigurationError(field, first["msg"]) from e
