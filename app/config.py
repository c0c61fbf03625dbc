"""Application configuration via environment variables."""

from typing import List

from pydantic_settings import BaseSettings


class Settings(BaseSettings):
    # Supabase
    supabase_url: str = ""
    supabase_service_role_key: str = ""
    supabase_anon_key: str = ""

    # Storage buckets
    uploads_bucket: str = "user-uploads"
    generated_bucket: str = "generated-notes"

    # Signed URL lifetimes (seconds)
    signed_url_short_seconds: int = 900
    signed_url_medium_seconds: int = 3600
    signed_url_long_seconds: int = 21600

    # RunPod Whisper
    runpod_api_key: str = ""
    runpod_endpoint_url: str = "https://api.runpod.ai/v2/ojwmcpij9mwq9w"
    runpod_poll_interval_seconds: float = 5.0
    runpod_max_polls: int = 3

    # Apache Tika
    tika_url: str = ""

    # Google Vision
    google_vision_api_key: str = ""
    vision_max_image_mb: int = 15

    # OpenAI
    openai_api_key: str = ""
    openai_notes_model: str = "gpt-5-mini"
    openai_format_model: str = "gpt-5-nano"
    openai_notes_max_tokens: int = 80000
    openai_format_max_tokens: int = 20000

    # Gotenberg
    gotenberg_url: str = ""

    # Per-stage deadlines (seconds)
    storage_timeout_seconds: float = 30.0
    transcription_timeout_seconds: float = 900.0
    extraction_timeout_seconds: float = 180.0
    generation_timeout_seconds: float = 600.0
    rendering_timeout_seconds: float = 180.0
    database_timeout_seconds: float = 30.0

    # Usage policy
    document_uploads_unlimited: bool = True
    default_estimate_file_size_mb: float = 10.0
    upgrade_url: str = "/dashboard/account#subscription"

    # Service
    app_port: int = 8000
    log_level: str = "INFO"
    cors_origins: List[str] = ["http://localhost:4321", "http://localhost:3000"]
    default_notes_title: str = "Mindsy Notes"

    model_config = {"env_file": ".env", "env_file_encoding": "utf-8"}

    def missing_pipeline_settings(self) -> List[str]:
        """Names of settings the processing pipeline cannot run without."""
        required = {
            "SUPABASE_URL": self.supabase_url,
            "SUPABASE_SERVICE_ROLE_KEY": self.supabase_service_role_key,
            "RUNPOD_API_KEY": self.runpod_api_key,
            "TIKA_URL": self.tika_url,
            "OPENAI_API_KEY": self.openai_api_key,
            "GOTENBERG_URL": self.gotenberg_url,
        }
        return [name for name, value in required.items() if not value]


settings = Settings()
