from __future__ import annotations

from pathlib import Path

from pydantic import Field, field_validator
from pydantic.aliases import AliasChoices
from pydantic_settings import BaseSettings, SettingsConfigDict


BACKEND_DIR = Path(__file__).resolve().parents[1]


class Settings(BaseSettings):
    model_config = SettingsConfigDict(env_file=BACKEND_DIR / ".env", env_file_encoding="utf-8")

    # Store of record
    store_base_url: str = Field(
        default="http://localhost:3000/api/v1",
        validation_alias=AliasChoices("store_base_url", "STORE_BASE_URL", "API_BASE_URL"),
    )
    store_api_token: str | None = Field(
        default=None,
        validation_alias=AliasChoices("store_api_token", "STORE_API_TOKEN"),
    )
    store_timeout_seconds: float = Field(
        default=10.0,
        gt=0,
        validation_alias=AliasChoices("store_timeout_seconds", "STORE_TIMEOUT_SECONDS"),
    )

    # Curriculum rules
    passing_grade: int = Field(
        default=80,
        ge=0,
        le=100,
        validation_alias=AliasChoices("passing_grade", "PASSING_GRADE"),
    )
    quarter_unit_cap: int = Field(
        default=18,
        ge=1,
        validation_alias=AliasChoices("quarter_unit_cap", "QUARTER_UNIT_CAP"),
    )
    overload_remember_minutes: int = Field(
        default=10,
        ge=0,
        validation_alias=AliasChoices("overload_remember_minutes", "OVERLOAD_REMEMBER_MINUTES"),
    )
    exemption_category_name: str = Field(
        default="Electives",
        validation_alias=AliasChoices("exemption_category_name", "EXEMPTION_CATEGORY_NAME"),
    )
    max_draft_subjects: int = Field(
        default=6,
        ge=1,
        validation_alias=AliasChoices("max_draft_subjects", "MAX_DRAFT_SUBJECTS"),
    )
    # "single": one subject per ordinary category; "contiguous": an unbroken run of levels.
    draft_selection_mode: str = Field(
        default="single",
        validation_alias=AliasChoices("draft_selection_mode", "DRAFT_SELECTION_MODE"),
    )
    max_extend_levels: int = Field(
        default=2,
        ge=0,
        validation_alias=AliasChoices("max_extend_levels", "MAX_EXTEND_LEVELS"),
    )

    # Runtime
    environment: str = Field(default="development", validation_alias=AliasChoices("environment", "ENVIRONMENT"))
    # Empty means DEBUG in development and INFO in production.
    log_level: str = Field(default="", validation_alias=AliasChoices("log_level", "LOG_LEVEL"))
    log_dir: Path = Field(default=BACKEND_DIR / "logs", validation_alias=AliasChoices("log_dir", "LOG_DIR"))
    frontend_origin: str = Field(
        default="http://localhost:5173",
        validation_alias=AliasChoices("frontend_origin", "FRONTEND_ORIGIN"),
    )

    @field_validator("frontend_origin", "store_base_url")
    @classmethod
    def _strip_trailing_slash(cls, v: str) -> str:
        # Starlette CORS expects the Origin to match exactly (no trailing slash),
        # and store paths are joined with a leading slash.
        return v.strip().rstrip("/")

    @field_validator("exemption_category_name")
    @classmethod
    def _normalize_exemption_category_name(cls, v: str) -> str:
        v = (v or "").strip()
        if not v:
            raise ValueError("EXEMPTION_CATEGORY_NAME must not be empty")
        return v

    @field_validator("draft_selection_mode")
    @classmethod
    def _normalize_draft_selection_mode(cls, v: str) -> str:
        v = (v or "").strip().lower()
        if v not in {"single", "contiguous"}:
            raise ValueError("DRAFT_SELECTION_MODE must be 'single' or 'contiguous'")
        return v

    @field_validator("log_level")
    @classmethod
    def _normalize_log_level(cls, v: str) -> str:
        v = (v or "").strip().upper()
        if v and v not in {"DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"}:
            raise ValueError("LOG_LEVEL must be a standard logging level name")
        return v

    @field_validator("store_api_token")
    @classmethod
    def _normalize_store_api_token(cls, v: str | None) -> str | None:
        if v is None:
            return None
        v = v.strip()
        return v or None


settings = Settings()
