"""
Application configuration using Pydantic settings.

Configuration is loaded from environment variables with sensible defaults.
Using Pydantic's BaseSettings means we get:
- Type validation at startup (fail fast if config is wrong)
- Documentation of what's required vs optional
- Easy testing with different configurations

Mock modes enable local development without Google Cloud or Firebase
credentials.
"""

from functools import lru_cache
from pathlib import Path
from typing import Optional

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """
    Application settings loaded from environment variables.

    All settings can be overridden via environment variables.
    For lists (like api_keys), use comma-separated values in env.
    """

    # API Configuration
    api_title: str = "Heimdall Backend"
    api_version: str = "v2"
    server_name: str = "Heimdall Backend v2.0"
    port: int = 3001
    api_keys: str = Field(
        default="dev-key-1,dev-key-2",
        description="Comma-separated API keys. Using a list enables key rotation without downtime."
    )

    # Google Cloud Configuration
    gcloud_project_id: str = Field(
        default="",
        description="Google Cloud project that owns the bucket and AI APIs"
    )
    gcloud_keyfile: Optional[str] = Field(
        default=None,
        description="Path to a service account JSON key. Falls back to application default credentials."
    )
    gcs_bucket_name: str = Field(
        default="videouploader-heimdall",
        description="Bucket receiving uploaded chunks under streams/<device>/<session>/"
    )
    gcs_mock_mode: bool = Field(
        default=False,
        description="Use in-memory storage instead of Google Cloud Storage."
    )
    gcs_upload_max_attempts: int = Field(
        default=3,
        ge=1,
        description="Attempts per chunk upload before keeping the chunk local only"
    )
    gcs_upload_backoff_seconds: float = Field(
        default=1.0,
        description="Base delay for exponential backoff between upload attempts"
    )
    gcs_upload_backoff_max_seconds: float = Field(
        default=30.0,
        description="Cap on a single backoff delay"
    )
    presigned_url_expiry_seconds: int = Field(
        default=3600,
        description="Lifetime of signed chunk download URLs"
    )

    # Video Intelligence / Vision
    google_ai_mock_mode: bool = Field(
        default=False,
        description="Use canned Video Intelligence and Vision responses instead of the Google APIs."
    )
    video_intelligence_location: str = Field(
        default="asia-east1",
        description="Region passed as locationId when starting annotations"
    )
    video_intelligence_poll_interval_seconds: float = Field(
        default=5.0,
        description="Delay between operation status checks"
    )
    video_intelligence_max_wait_seconds: float = Field(
        default=300.0,
        description="Give up polling an operation after this long"
    )
    chunk_analysis_features: str = Field(
        default="LABEL_DETECTION,PERSON_DETECTION,OBJECT_TRACKING,TEXT_DETECTION",
        description="Comma-separated Video Intelligence features requested for each chunk"
    )
    crowd_high_threshold: int = Field(
        default=50,
        description="Person count above which a chunk is flagged as high crowd density"
    )
    crowd_medium_threshold: int = Field(
        default=20,
        description="Person count above which a chunk is medium crowd density"
    )
    auto_analyze_chunks: bool = Field(
        default=False,
        description="Analyze every uploaded chunk without waiting for a chunk-uploaded socket event"
    )

    # Firebase Configuration
    firebase_project_id: str = ""
    firebase_private_key_id: str = ""
    firebase_private_key: str = ""
    firebase_client_email: str = ""
    firebase_client_id: str = ""
    firebase_client_cert_url: str = ""
    firebase_database_url: str = ""
    firebase_storage_bucket: str = ""
    firebase_credentials_file: Optional[str] = Field(
        default=None,
        description="Service account file for Firebase, alternative to the FIREBASE_* key fields"
    )
    firebase_mock_mode: bool = Field(
        default=False,
        description="Use an in-memory realtime database seeded with demo responders."
    )

    # Emergency Dispatch
    google_maps_api_key: str = Field(
        default="",
        description="Distance Matrix / Directions key. Without it ETAs use the fallback."
    )
    maps_travel_mode: str = "walking"
    maps_fallback_minutes: int = Field(
        default=5,
        description="ETA used when the Maps API is unavailable"
    )
    dispatch_max_responders: int = 3
    dispatch_assign_count: int = 2
    dispatch_monitor_interval_seconds: float = 30.0
    dispatch_monitor_timeout_seconds: float = 20 * 60
    auto_dispatch_on_threat: bool = Field(
        default=False,
        description="Dispatch a SECURITY_THREAT incident when a critical threat carries a location"
    )

    # Notifications
    twilio_account_sid: str = ""
    twilio_auth_token: str = ""
    twilio_phone_number: str = ""
    email_host: str = Field(
        default="",
        description="SMTP host. Email alerts are disabled when unset."
    )
    email_port: int = 587
    email_user: str = ""
    email_pass: str = ""
    email_use_tls: bool = False
    email_start_tls: bool = True
    command_center_email: str = ""

    # Application Behavior
    uploads_dir: Path = Field(
        default=Path("uploads"),
        description="Local root for temp and permanent chunk files"
    )
    max_upload_size_mb: int = Field(
        default=100,
        description="Maximum chunk size in MB."
    )
    keep_local_chunks: bool = Field(
        default=True,
        description="Keep the local copy after the chunk reached cloud storage"
    )
    inspect_chunks: bool = Field(
        default=False,
        description="Run ffprobe on each uploaded chunk and log its metadata"
    )
    ffprobe_path: str = "ffprobe"

    # Logging
    log_level: str = Field(
        default="INFO",
        description="Logging level (DEBUG, INFO, WARNING, ERROR, CRITICAL)"
    )

    # CORS
    cors_origins: str = Field(
        default="*",
        description="Comma-separated list of allowed CORS origins. Mobile clients send no origin."
    )

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
    )

    @property
    def api_keys_list(self) -> list[str]:
        """Parse comma-separated API keys into a list."""
        return [key.strip() for key in self.api_keys.split(",") if key.strip()]

    @property
    def cors_origins_list(self) -> list[str]:
        """Parse comma-separated CORS origins into a list."""
        if self.cors_origins == "*":
            return ["*"]
        return [origin.strip() for origin in self.cors_origins.split(",") if origin.strip()]

    @property
    def chunk_analysis_features_list(self) -> list[str]:
        return [f.strip().upper() for f in self.chunk_analysis_features.split(",") if f.strip()]

    @property
    def max_upload_size_bytes(self) -> int:
        return self.max_upload_size_mb * 1024 * 1024

    @property
    def twilio_configured(self) -> bool:
        return bool(self.twilio_account_sid and self.twilio_auth_token and self.twilio_phone_number)

    @property
    def email_configured(self) -> bool:
        return bool(self.email_host and self.email_user and self.email_pass)

    def validate_required_fields(self) -> list[str]:
        """
        Validate that required fields are set based on mock mode settings.

        Returns list of missing required fields.
        This is separate from Pydantic validation because requirements
        depend on whether we're in mock mode.
        """
        missing = []

        if not self.gcs_mock_mode and not self.gcs_bucket_name:
            missing.append("GCS_BUCKET_NAME")

        if not (self.gcs_mock_mode and self.google_ai_mock_mode):
            if not self.gcloud_project_id:
                missing.append("GCLOUD_PROJECT_ID")

        if not self.firebase_mock_mode:
            if not self.firebase_database_url:
                missing.append("FIREBASE_DATABASE_URL")
            if not self.firebase_credentials_file:
                if not self.firebase_project_id:
                    missing.append("FIREBASE_PROJECT_ID")
                if not self.firebase_private_key:
                    missing.append("FIREBASE_PRIVATE_KEY")
                if not self.firebase_client_email:
                    missing.append("FIREBASE_CLIENT_EMAIL")

        return missing


@lru_cache()
def get_settings() -> Settings:
    """
    Get cached settings instance.

    Using lru_cache means we only load settings once per process.
    This is safe because settings don't change during runtime.
    For tests, you can call get_settings.cache_clear() to reset.
    """
    return Settings()
