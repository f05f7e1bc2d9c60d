from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    app_name: str = "VocaSync"
    environment: str = "dev"

    database_url: str = "sqlite:///./vocasync.db"

    # Identity provider used to verify bearer credentials
    identity_userinfo_url: str = "https://www.googleapis.com/oauth2/v2/userinfo"
    identity_timeout_sec: float = 15.0
    subject_prefix: str = "google:"

    # Upper bound for a single record store call
    store_timeout_sec: float = 10.0

    log_level: str = "INFO"
    log_format: str = "%(asctime)s - %(name)s - %(levelname)s - %(message)s"
    log_file: str | None = None

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
    )


settings = Settings()
