"""
config.py

Runtime settings for the Progress Curve API, read from the environment and
an optional ``.env`` file at the repository root.

List settings (CORS_ORIGINS and the status vocabularies) are given as JSON
arrays in the environment, e.g.

    COMPLETED_STATUSES='["concluída", "done", "entregue"]'
"""

import os
from typing import List

from pydantic import Field
from pydantic_settings import BaseSettings

from model import DEFAULT_CANCELLED_STATUSES, DEFAULT_COMPLETED_STATUSES


class Settings(BaseSettings):
    """Application settings"""

    APP_NAME: str = "Curva S Progress API"
    APP_DESCRIPTION: str = "Weighted progress curves and monthly snapshot change logs"
    APP_VERSION: str = "1.0.0"
    DEBUG: bool = False

    SERVER_HOST: str = Field(default="127.0.0.1")
    SERVER_PORT: int = Field(default=8000)

    LOG_LEVEL: str = Field(default="INFO")
    LOG_TO_FILE: bool = Field(default=False)
    LOG_DIR: str = Field(default="logs")

    CORS_ORIGINS: List[str] = Field(default_factory=lambda: ["*"])

    # Status vocabularies, matched case-insensitively after trimming
    COMPLETED_STATUSES: List[str] = Field(default_factory=lambda: list(DEFAULT_COMPLETED_STATUSES))
    CANCELLED_STATUSES: List[str] = Field(default_factory=lambda: list(DEFAULT_CANCELLED_STATUSES))

    # Thread pools used by the orchestration layer
    READ_MAX_WORKERS: int = Field(default=8, ge=1)
    PORTFOLIO_MAX_WORKERS: int = Field(default=4, ge=1)

    @property
    def LOG_FILE_PATH(self) -> str:
        return os.path.join(self.LOG_DIR, "curva_s.log")

    @property
    def HOST(self) -> str:
        return self.SERVER_HOST

    @property
    def PORT(self) -> int:
        return self.SERVER_PORT

    class Config:
        env_file = os.path.join(
            os.path.abspath(os.path.join(os.path.dirname(__file__), os.pardir)),
            ".env",
        )
        case_sensitive = True
        extra = "ignore"


settings = Settings()
