from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    # Database
    DATABASE_URL: str

    # OpenAI-compatible completion API (Groq, OpenAI, ...)
    OPENAI_API_KEY: str | None = None
    OPENAI_BASE_URL: str | None = None
    OPENAI_MODEL: str = "gpt-4o-mini"

    # Telegram nurse channel
    TELEGRAM_BOT_TOKEN: str | None = None
    TELEGRAM_GROUP_ID: str | None = None
    TELEGRAM_BOT_USERNAME: str | None = None
    TELEGRAM_API_BASE: str = "https://api.telegram.org"
    TELEGRAM_WEBHOOK_SECRET: str | None = None
    TELEGRAM_TIMEOUT_SECONDS: float = 10.0

    # Avatar storage
    MEDIA_ROOT: str = "media"
    PUBLIC_BASE_URL: str = "http://localhost:8000"

    # HTTP
    CORS_ORIGINS: str = ""
    ALLOW_ANON: bool = False
    LOG_LEVEL: str = "INFO"

    # Pydantic v2 config
    model_config = SettingsConfigDict(
        env_file=".env",
        extra="allow"
    )

    @property
    def cors_origins(self) -> list[str]:
        return [o.strip() for o in self.CORS_ORIGINS.split(",") if o.strip()]


settings = Settings()
