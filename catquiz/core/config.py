"""
Engine configuration settings.
"""

from typing import List, Literal, Optional, Self

from pydantic import Field, model_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

from catquiz.models.types import ModelName, StrategyName


class Settings(BaseSettings):
    """Engine settings loaded from environment variables."""

    # Application
    APP_NAME: str = "catquiz"
    ENV: str = "development"
    LOG_LEVEL: Literal["DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"] = "INFO"
    SOLVER_DEBUG: bool = False  # log every Newton-Raphson run at DEBUG

    # Numeric core
    # The pivot substitute and the iteration caps are empirical values; they are
    # tunables, not derived constants.
    CAT_PIVOT_EPSILON: float = Field(
        default=1e-10,
        gt=0.0,
        description="Value substituted for an exactly-zero Gauss-Jordan pivot",
    )
    CAT_ABILITY_MAX_ITERATIONS: int = Field(
        default=1500,
        ge=1,
        description="Newton-Raphson iteration cap for one-dimensional ability solves",
    )
    CAT_ITEM_MAX_ITERATIONS: int = Field(
        default=50,
        ge=1,
        description="Newton-Raphson iteration cap for multi-dimensional item solves",
    )
    CAT_NEWTON_TOLERANCE: float = Field(
        default=0.001,
        gt=0.0,
        description="Step norm below which a Newton-Raphson run counts as converged",
    )
    CAT_ABILITY_SANITY_BOUND: float = Field(
        default=10.0,
        gt=0.0,
        description="Absolute ability beyond which an estimate is treated as divergent",
    )
    CAT_ITEM_START_VALUE: float = 0.5  # start for every free item parameter

    # Optional Gaussian ability prior. Unset SD means plain maximum likelihood.
    CAT_PRIOR_MEAN: float = 0.0
    CAT_PRIOR_SD: Optional[float] = Field(default=None, gt=0.0)

    # Selection pipeline
    CAT_UPDATE_THRESHOLD: float = Field(
        default=0.001,
        gt=0.0,
        description="Ability change below which the estimate counts as unchanged",
    )
    CAT_MAX_QUESTIONS: int = Field(default=25, ge=1)
    CAT_MIN_QUESTIONS: int = Field(default=1, ge=0)
    CAT_PENALTY_THRESHOLD: float = Field(
        default=60 * 60 * 24,
        gt=0.0,
        description="Seconds after which a previously played question carries no penalty",
    )
    CAT_PILOT_RATIO: float = Field(
        default=0.0,
        ge=0.0,
        le=1.0,
        description="Probability of administering a pilot question when one is available",
    )
    CAT_STANDARD_ERROR_THRESHOLD: float = Field(
        default=0.3,
        gt=0.0,
        description="Subscale standard error below which its questions are skipped",
    )
    CAT_MAX_GENERAL_ATTEMPTS: int = Field(
        default=1000,
        ge=1,
        description="Attempt count at which the classical strategy fully penalizes exposure",
    )

    CAT_INSTALLED_MODELS: List[str] = [m.value for m in ModelName]
    CAT_DEFAULT_STRATEGY: str = StrategyName.FASTEST.value

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=True,
        extra="ignore",  # Ignore extra fields from .env not defined in Settings
    )

    @model_validator(mode="after")
    def validate_question_bounds(self) -> Self:
        """Minimum questions may not exceed the maximum."""
        if self.CAT_MIN_QUESTIONS > self.CAT_MAX_QUESTIONS:
            raise ValueError(
                f"CAT_MIN_QUESTIONS ({self.CAT_MIN_QUESTIONS}) must not exceed "
                f"CAT_MAX_QUESTIONS ({self.CAT_MAX_QUESTIONS})"
            )
        return self

    @model_validator(mode="after")
    def validate_identifiers(self) -> Self:
        """Installed models and the default strategy must be known identifiers."""
        known_models = {m.value for m in ModelName}
        unknown = [m for m in self.CAT_INSTALLED_MODELS if m not in known_models]
        if unknown:
            raise ValueError(
                f"CAT_INSTALLED_MODELS contains unknown models {unknown}, "
                f"expected a subset of {sorted(known_models)}"
            )
        if not self.CAT_INSTALLED_MODELS:
            raise ValueError("CAT_INSTALLED_MODELS must name at least one model")

        known_strategies = {s.value for s in StrategyName}
        if self.CAT_DEFAULT_STRATEGY not in known_strategies:
            raise ValueError(
                f"CAT_DEFAULT_STRATEGY must be one of {sorted(known_strategies)}, "
                f"got {self.CAT_DEFAULT_STRATEGY!r}"
            )
        return self


settings = Settings()
