import os
from typing import List, Optional

from dotenv import load_dotenv
from fastapi import Request
from pydantic import BaseModel

load_dotenv()


def _env_flag(name: str, default: bool) -> bool:
    value = os.getenv(name)
    if value is None:
        return default
    return value.strip().lower() in ("1", "true", "yes", "on")


def _env_int(name: str, default: Optional[int]) -> Optional[int]:
    value = os.getenv(name)
    if value is None or value.strip() == "":
        return default
    return int(value)


def cors_origins() -> List[str]:
    """Origins allowed by CORS, comma-separated in ``CORS_ORIGINS`` (default any)."""
    value = os.getenv("CORS_ORIGINS", "*")
    return [origin.strip() for origin in value.split(",") if origin.strip()]


class Settings(BaseModel):
    """Process-wide configuration, built once at startup and injected per request."""

    database_url: str = "sqlite:///./library.db"
    jwt_secret: str
    jwt_algorithm: str = "HS256"
    token_expire_minutes: Optional[int] = None
    default_page_size: int = 10
    max_page_size: int = 100
    # Reject non-positive page/limit and clamp limit to max_page_size.
    strict_pagination: bool = True
    # Record the acting user as the creator of new students.
    student_created_by_required: bool = True

    class Config:
        frozen = True


def load_settings() -> Settings:
    secret = os.getenv("JWT_SECRET")
    if not secret:
        raise RuntimeError("JWT_SECRET must be set")

    return Settings(
        database_url=os.getenv("SQLALCHEMY_DATABASE_URL", "sqlite:///./library.db"),
        jwt_secret=secret,
        jwt_algorithm=os.getenv("JWT_ALGORITHM", "HS256"),
        token_expire_minutes=_env_int("TOKEN_EXPIRE_MINUTES", None),
        default_page_size=_env_int("DEFAULT_PAGE_SIZE", 10),
        max_page_size=_env_int("MAX_PAGE_SIZE", 100),
        strict_pagination=_env_flag("STRICT_PAGINATION", True),
        student_created_by_required=_env_flag("STUDENT_CREATED_BY_REQUIRED", True),
    )


def get_settings(request: Request) -> Settings:
    return request.app.state.settings
