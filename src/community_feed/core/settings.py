"""Application settings and configuration.

This module defines all configuration options for the community feed.
Settings are loaded from environment variables with sensible defaults.
"""

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Feed settings loaded from environment variables.

    Settings can be overridden via environment variables or .env files.
    """

    # Application metadata
    app_name: str = Field(default="Community Feed", alias="APP_NAME")
    log_level: str = Field(default="INFO", alias="LOG_LEVEL")

    # Hosted backend (REST + storage)
    backend_url: str | None = Field(default=None, alias="SUPABASE_URL")
    backend_anon_key: str | None = Field(default=None, alias="SUPABASE_ANON_KEY")
    http_timeout_seconds: float = Field(default=10.0, alias="FEED_HTTP_TIMEOUT_SECONDS")

    # Table and bucket names
    posts_table: str = Field(default="community_posts", alias="FEED_POSTS_TABLE")
    comments_table: str = Field(default="community_comments", alias="FEED_COMMENTS_TABLE")
    reactions_table: str = Field(default="community_reactions", alias="FEED_REACTIONS_TABLE")
    users_table: str = Field(default="users", alias="FEED_USERS_TABLE")
    storage_bucket: str = Field(default="community-uploads", alias="FEED_STORAGE_BUCKET")

    # Reconciliation tuning
    reaction_refetch_debounce_seconds: float = Field(
        default=0.7,
        alias="FEED_REACTION_DEBOUNCE_SECONDS",
    )
    temp_id_prefix: str = Field(default="temp", alias="FEED_TEMP_ID_PREFIX")

    # ID token verification for the auth provider
    auth_jwt_secret: str | None = Field(default=None, alias="AUTH_JWT_SECRET")
    auth_jwt_audience: str | None = Field(default=None, alias="AUTH_JWT_AUDIENCE")
    auth_jwt_algorithm: str = Field(default="HS256", alias="AUTH_JWT_ALGORITHM")

    model_config = SettingsConfigDict(
        env_file=".env",
        validate_assignment=True,
        extra="ignore",
    )

    @property
    def backend_enabled(self) -> bool:
        """Return True when the hosted backend is configured."""
        return bool(self.backend_url and self.backend_anon_key)


settings = Settings()
