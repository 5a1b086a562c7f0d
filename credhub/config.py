from functools import lru_cache

from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Credential hub application settings.

    All values are loaded from environment variables.
    A .env file in the project directory is also supported.
    """

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
    )

    # --- Database ---
    DATABASE_URL: str = "postgresql+asyncpg://credhub:credhub@db:5432/credhub"

    # --- JWT (session tokens issued by the account service) ---
    JWT_SECRET: str = "change-this-secret-key"
    JWT_ALGORITHM: str = "HS256"
    JWT_ACCESS_TOKEN_EXPIRE_MINUTES: int = 30

    # --- Secrets at rest ---
    ENCRYPTION_KEY: str = ""  # Master secret for client secrets and OAuth tokens

    # --- Twitch ---
    TWITCH_AUTH_URL: str = "https://id.twitch.tv/oauth2"
    TWITCH_HELIX_URL: str = "https://api.twitch.tv/helix"
    TWITCH_REDIRECT_URI: str = "http://localhost:5173/oauth/callback"
    TWITCH_HTTP_TIMEOUT: float = 30.0

    # List views return decrypted client secrets unless this is turned off
    EXPOSE_CLIENT_SECRETS_IN_LIST: bool = True

    # --- HTTP ---
    CORS_ORIGINS: list[str] = ["http://localhost:5173", "http://127.0.0.1:5173"]

    @property
    def async_database_url(self) -> str:
        """Ensure the database URL uses the asyncpg driver."""
        url = self.DATABASE_URL
        if url.startswith("postgresql://"):
            url = url.replace("postgresql://", "postgresql+asyncpg://", 1)
        return url


@lru_cache
def get_settings() -> Settings:
    """Return cached application settings singleton."""
    return Settings()
