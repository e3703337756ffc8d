import os
from functools import lru_cache
from typing import Optional

from pydantic import Field, ValidationError
from pydantic_settings import BaseSettings


class Settings(BaseSettings):
    database_url: Optional[str] = Field(None, alias="ACADEMY_DATABASE_URL")
    database_pool_size: int = Field(10, alias="ACADEMY_DATABASE_POOL_SIZE")
    database_max_overflow: int = Field(10, alias="ACADEMY_DATABASE_MAX_OVERFLOW")
    database_echo: bool = Field(False, alias="ACADEMY_DATABASE_ECHO")
    meeting_base_url: str = Field("https://meet.academy.example/class", alias="ACADEMY_MEETING_BASE_URL")
    room_count: int = Field(20, ge=1, alias="ACADEMY_ROOM_COUNT")
    default_course_type: str = Field("Basic", alias="ACADEMY_DEFAULT_COURSE_TYPE")
    debug_endpoints: bool = Field(False, alias="ACADEMY_DEBUG_ENDPOINTS")
    create_schema_on_startup: bool = Field(False, alias="ACADEMY_CREATE_SCHEMA")

    class Config:
        env_file = os.getenv("ENV_FILE", ".env")
        env_file_encoding = "utf-8"
        case_sensitive = True


@lru_cache
def get_settings() -> Settings:
    try:
        return Settings()  # type: ignore[arg-type]
    except ValidationError as exc:
        raise RuntimeError(f"Invalid scheduler configuration: {exc}") from exc
