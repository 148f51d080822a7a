from __future__ import annotations

from datetime import timedelta
from enum import Enum

from pydantic import BaseModel, ConfigDict, Field, ValidationError

from quell.errors import ConfigurationError


class Decision(str, Enum):
    REPORTED = "reported"
    THROTTLED = "throttled"
    BYPASSED = "bypassed"


class OccurrenceStats(BaseModel):
    occurrences: int = 0
    throttled: int = 0


class ThrottleSettings(BaseModel):
    model_config = ConfigDict(strict=True, frozen=True, extra="forbid")

    cooldown_minutes: int = Field(default=30, gt=0)
    debug: bool = False
    max_tracked_users: int = Field(default=1000, gt=0)
    max_tracked_errors: int = Field(default=1000, gt=0)
    namespace: str = Field(default="quell", min_length=1)

    def __init__(self, **data):
        try:
            super().__init__(**data)
        except ValidationError as exc:
            raise ConfigurationError(str(exc)) from exc

    @classmethod
    def model_validate(cls, obj, **kwargs):
        try:
            return super().model_validate(obj, **kwargs)
        except ValidationError as exc:
            raise ConfigurationError(str(exc)) from exc

    @property
    def cooldown(self) -> timedelta:
        return timedelta(minutes=self.cooldown_minutes)
