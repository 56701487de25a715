"""Pydantic models for ``.mulch/mulch.config.yaml``."""

import re
from typing import Optional

from pydantic import BaseModel, Field, field_validator, model_validator

from .errors import InvalidDomainNameError

DOMAIN_NAME_PATTERN = re.compile(r"^[a-zA-Z0-9][a-zA-Z0-9_-]*$")


def validate_domain_name(domain: str) -> str:
    """Return ``domain`` unchanged or raise InvalidDomainNameError."""
    if not isinstance(domain, str) or not DOMAIN_NAME_PATTERN.match(domain):
        raise InvalidDomainNameError(str(domain))
    return domain


class GovernanceConfig(BaseModel):
    """Per-domain record-count thresholds."""

    max_entries: int = 100
    warn_entries: int = 150
    hard_limit: int = 200

    @model_validator(mode="after")
    def validate_order(self):
        if self.max_entries <= 0:
            raise ValueError(f"max_entries must be positive, got {self.max_entries}")
        if not self.max_entries <= self.warn_entries <= self.hard_limit:
            raise ValueError(
                "governance thresholds must satisfy max_entries <= warn_entries <= hard_limit, "
                f"got {self.max_entries}/{self.warn_entries}/{self.hard_limit}"
            )
        return self


class ShelfLifeConfig(BaseModel):
    """Days before a record of each classification counts as stale."""

    tactical: int = 14
    observational: int = 30

    @field_validator("tactical", "observational")
    @classmethod
    def validate_days(cls, v: int) -> int:
        if v < 0:
            raise ValueError(f"shelf life must be non-negative, got {v}")
        return v


class ClassificationDefaultsConfig(BaseModel):
    shelf_life: ShelfLifeConfig = Field(default_factory=ShelfLifeConfig)


class SearchConfig(BaseModel):
    """BM25 parameters."""

    k1: float = 1.2
    b: float = 0.75

    @field_validator("k1")
    @classmethod
    def validate_k1(cls, v: float) -> float:
        if v < 0:
            raise ValueError(f"k1 must be non-negative, got {v}")
        return v

    @field_validator("b")
    @classmethod
    def validate_b(cls, v: float) -> float:
        if not 0.0 <= v <= 1.0:
            raise ValueError(f"b must be 0-1, got {v}")
        return v


class ScoringWeightsConfig(BaseModel):
    classification: float = 0.4
    recency: float = 0.2
    confirmation: float = 0.2
    relevance: float = 0.2

    @field_validator("classification", "recency", "confirmation", "relevance")
    @classmethod
    def validate_weight(cls, v: float) -> float:
        if v < 0:
            raise ValueError(f"scoring weights must be non-negative, got {v}")
        return v


class ScoringConfig(BaseModel):
    """Priority scorer tuning."""

    weights: ScoringWeightsConfig = Field(default_factory=ScoringWeightsConfig)
    half_life_days: float = 30.0

    @field_validator("half_life_days")
    @classmethod
    def validate_half_life(cls, v: float) -> float:
        if v <= 0:
            raise ValueError(f"half_life_days must be positive, got {v}")
        return v


class LockingConfig(BaseModel):
    """Domain lock timing, in seconds."""

    timeout: float = 5.0
    retry_interval: float = 0.05
    stale_after: float = 30.0

    @model_validator(mode="after")
    def validate_timing(self):
        if self.timeout <= 0 or self.retry_interval <= 0 or self.stale_after <= 0:
            raise ValueError("lock timings must be positive")
        if self.retry_interval > self.timeout:
            raise ValueError(
                f"retry_interval ({self.retry_interval}) must not exceed timeout ({self.timeout})"
            )
        return self


class BudgetConfig(BaseModel):
    default_tokens: int = 4000

    @field_validator("default_tokens")
    @classmethod
    def validate_tokens(cls, v: int) -> int:
        if v < 0:
            raise ValueError(f"default_tokens must be non-negative, got {v}")
        return v


class MulchConfig(BaseModel):
    """Project configuration.

    ``version``, ``domains``, ``governance`` and ``classification_defaults``
    are always written. The engine sections stay out of the file unless set,
    so other readers of the same layout never see keys they do not expect.
    """

    version: str = "1"
    domains: list[str] = Field(default_factory=list)
    governance: GovernanceConfig = Field(default_factory=GovernanceConfig)
    classification_defaults: ClassificationDefaultsConfig = Field(default_factory=ClassificationDefaultsConfig)
    search: Optional[SearchConfig] = None
    scoring: Optional[ScoringConfig] = None
    locking: Optional[LockingConfig] = None
    budget: Optional[BudgetConfig] = None

    @field_validator("version", mode="before")
    @classmethod
    def coerce_version(cls, v) -> str:
        return str(v)

    @field_validator("domains")
    @classmethod
    def validate_domains(cls, v: list[str]) -> list[str]:
        seen: list[str] = []
        for domain in v:
            validate_domain_name(domain)
            if domain in seen:
                raise ValueError(f"Duplicate domain in config: {domain}")
            seen.append(domain)
        return seen

    @property
    def shelf_life(self) -> ShelfLifeConfig:
        return self.classification_defaults.shelf_life

    def search_settings(self) -> SearchConfig:
        return self.search or SearchConfig()

    def scoring_settings(self) -> ScoringConfig:
        return self.scoring or ScoringConfig()

    def locking_settings(self) -> LockingConfig:
        return self.locking or LockingConfig()

    def budget_settings(self) -> BudgetConfig:
        return self.budget or BudgetConfig()

    @classmethod
    def from_dict(cls, data: dict) -> "MulchConfig":
        return cls.model_validate(data)

    def to_dict(self) -> dict:
        return self.model_dump(mode="json", exclude_none=True)
