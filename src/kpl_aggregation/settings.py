from __future__ import annotations

import logging

from pydantic import Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

_LOG_LEVELS = ("CRITICAL", "ERROR", "WARNING", "INFO", "DEBUG")


class Settings(BaseSettings):
    model_config = SettingsConfigDict(case_sensitive=False)

    log_level: str = Field(default="INFO", alias="LOG_LEVEL")
    framed: bool = Field(default=True, alias="KPL_AGGREGATION_FRAMED")

    @field_validator("log_level")
    @classmethod
    def _validate_log_level(cls, value: str) -> str:
        normalized = value.strip().upper()
        if normalized not in _LOG_LEVELS:
            raise ValueError(f"LOG_LEVEL must be one of {', '.join(_LOG_LEVELS)}")
        return normalized

    @property
    def log_level_number(self) -> int:
        return logging.getLevelName(self.log_level)
