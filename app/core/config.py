from pydantic_settings import BaseSettings, SettingsConfigDict

class Settings(BaseSettings):
    model_config = SettingsConfigDict(env_file=".env", extra="ignore")

    app_env: str = "dev"
    app_name: str = "page-cloning-orchestrator"
    api_host: str = "0.0.0.0"
    api_port: int = 8080

    database_url: str = "sqlite:///./clone_progress.db"
    redis_url: str = "redis://localhost:6379/0"

    # Pacing of outbound fetches to the source site
    min_request_interval_ms: int = 2000
    initial_backoff_ms: int = 5000
    max_backoff_ms: int = 60000
    backoff_multiplier: float = 2.0
    backoff_reset_after: int = 3

    max_verification_attempts: int = 3
    summary_file_limit: int = 10

    fetch_timeout_seconds: float = 30.0
    user_agent: str = "Mozilla/5.0 (compatible; PageCloner/0.1)"
    clone_base_url: str = "http://localhost:3000"

    collaborator_factory: str | None = None

settings = Settings()
