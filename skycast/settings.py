from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """
    Centralized configuration.

    Loaded from:
    - environment variables (e.g. OPENWEATHER_API_KEY, OPENROUTER_API_KEY)
    - .env file (if present)
    """
    model_config = SettingsConfigDict(env_file=".env", extra="ignore")

    # Required key (the app should fail fast if missing)
    openweather_api_key: str
    openweather_base_url: str = "https://api.openweathermap.org"

    # Optional: AI insights are disabled when no key is configured
    openrouter_api_key: str = ""
    openrouter_base_url: str = "https://openrouter.ai/api/v1"
    ai_model: str = "microsoft/wizardlm-2-8x22b"
    ai_timeout_s: float = 10.0

    app_name: str = "SkyCast Weather"
    app_url: str = "http://localhost:8000"

    # SQLite file by default; "sqlite://" gives an in-memory database
    database_url: str = "sqlite:///skycast.sqlite3"

    # Timeout for every weather provider request
    http_timeout_s: float = 10.0

    log_level: str = "INFO"
    log_json: bool = False

    # Pagination caps
    list_max_limit: int = 50
    export_max_limit: int = 1000

    # PDF report truncation
    pdf_max_queries: int = 10
    pdf_max_insights: int = 5


settings = Settings()
