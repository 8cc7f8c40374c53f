from pydantic_settings import BaseSettings, SettingsConfigDict
from typing import Optional
import json
from pathlib import Path


class Settings(BaseSettings):
    # Database
    DATABASE_URL: str = "sqlite:///./bookfeed.db"

    # JWT (tokens are issued by the external session provider)
    JWT_SECRET_KEY: str = "your-secret-key-change-in-production"
    JWT_ALGORITHM: str = "HS256"
    JWT_AUDIENCE: Optional[str] = None

    # CORS - can be JSON string or comma-separated string
    CORS_ORIGINS: str = '["http://localhost:3000", "http://localhost:5173"]'

    # Environment
    ENVIRONMENT: str = "development"
    DEBUG: bool = False

    # Personalized feed
    FEED_DEFAULT_LIMIT: int = 20
    FEED_MAX_LIMIT: int = 50
    ONBOARDING_DEFAULT_LIMIT: int = 50
    ONBOARDING_MAX_LIMIT: int = 200
    FEED_COVER_PLACEHOLDER_URL: str = "https://images.unsplash.com/photo-1521572267360-ee0c2909d518?w=600&q=80"

    model_config = SettingsConfigDict(
        # Load from backend/.env (relative to this file's parent's parent)
        env_file=str(Path(__file__).resolve().parents[2] / ".env"),
        env_file_encoding="utf-8",
        case_sensitive=True,
        extra="ignore",
    )

    def require_jwt_secret(self) -> None:
        """Raise if the JWT secret is still the development placeholder outside development."""
        if self.ENVIRONMENT != "development" and self.JWT_SECRET_KEY == "your-secret-key-change-in-production":
            raise RuntimeError(
                "JWT_SECRET_KEY is not set. Add JWT_SECRET_KEY to backend/.env with the session provider's signing secret."
            )

    def get_masked_database_url(self) -> str:
        """Return DATABASE_URL with password masked for logging."""
        try:
            from urllib.parse import urlparse, urlunparse
            parsed = urlparse(self.DATABASE_URL)
            if not parsed.password:
                return self.DATABASE_URL
            masked_netloc = f"{parsed.username}:***@{parsed.hostname}"
            if parsed.port:
                masked_netloc += f":{parsed.port}"
            return urlunparse((
                parsed.scheme,
                masked_netloc,
                parsed.path,
                parsed.params,
                parsed.query,
                parsed.fragment
            ))
        except ValueError:
            # Fallback: just show scheme and host
            return f"{self.DATABASE_URL.split('://')[0]}://<user>:***@{self.DATABASE_URL.split('@')[-1] if '@' in self.DATABASE_URL else 'localhost'}"

    @property
    def cors_origins_list(self) -> list[str]:
        """Parse CORS_ORIGINS from JSON string or comma-separated string."""
        if not self.CORS_ORIGINS:
            return ["http://localhost:3000", "http://localhost:5173"]

        try:
            parsed = json.loads(self.CORS_ORIGINS)
            if isinstance(parsed, list):
                return parsed
            return [str(parsed)]
        except (json.JSONDecodeError, TypeError):
            origins = [origin.strip() for origin in self.CORS_ORIGINS.split(",") if origin.strip()]
            return origins if origins else ["http://localhost:3000", "http://localhost:5173"]


settings = Settings()
