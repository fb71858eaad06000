from pydantic_settings import BaseSettings
from functools import lru_cache


class Settings(BaseSettings):
    # Database
    database_url: str = "sqlite:///./tutorlab.db"

    # JWT (tokens are issued by the auth service; we only verify them)
    secret_key: str = "your-secret-key-change-in-production"
    algorithm: str = "HS256"

    # Frontend URL for CORS
    frontend_url: str = "http://localhost:3000"

    # Gemini: API key, or Vertex AI when vertex_project_id is set
    gemini_api_key: str = ""
    vertex_project_id: str = ""
    vertex_location: str = "us-central1"
    vertex_credentials_path: str = ""  # path to service account JSON; empty = use ADC
    gemini_model: str = "gemini-1.5-flash-002"
    gemini_timeout_seconds: float = 60.0

    # Gemini quota (free tier defaults)
    gemini_rpm_limit: int = 15
    gemini_daily_limit: int = 1500
    gemini_monthly_limit: int = 45000

    # In-memory result cache
    cache_ttl_days: int = 7
    cache_sweep_interval_seconds: int = 3600

    # Generation defaults per request kind
    default_temperature: float = 0.7
    default_max_output_tokens: int = 1500
    code_validation_temperature: float = 0.3
    code_validation_max_output_tokens: int = 2500
    question_generation_temperature: float = 0.7
    question_generation_max_output_tokens: int = 3000
    chat_temperature: float = 0.8
    chat_max_output_tokens: int = 2524

    class Config:
        env_file = ".env"


@lru_cache
def get_settings() -> Settings:
    return Settings()
