from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    app_name: str = "StakeIt API"
    database_url: str = ""
    # Comma-separated origins for CORS. Use "*" only for local/demo environments.
    cors_allow_origins: str = "*"
    jwt_secret_key: str
    jwt_algorithm: str = "HS256"
    # Expired goals are settled once at startup and then on this interval.
    settlement_interval_minutes: int = 60
    settlement_on_startup: bool = True
    log_level: str = "INFO"

    model_config = SettingsConfigDict(
        env_file=".env", env_file_encoding="utf-8", extra="ignore")


settings = Settings()
