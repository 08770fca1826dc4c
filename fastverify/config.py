"""
FastVerify Booth - Configuration Settings

This module handles all application configuration using Pydantic Settings.
Environment variables are loaded from .env file.
"""

from functools import lru_cache
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Application settings loaded from environment variables."""
    
    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore"
    )
    
    # ===========================================
    # APPLICATION CONFIGURATION
    # ===========================================
    app_name: str = "FastVerify Booth"
    app_env: str = "development"
    debug: bool = False
    log_level: str = "INFO"
    
    # ===========================================
    # LOCAL STORE (embedded SQLite)
    # ===========================================
    database_url: str = "sqlite+aiosqlite:///./fastverify.db"
    schema_version: str = "2.0.0"
    max_query_limit: int = 10000
    
    # ===========================================
    # REMOTE AUTHORITY API
    # ===========================================
    api_base_url: str = "http://localhost:5000/api"
    request_timeout_seconds: float = 30.0  # Ceiling for data calls
    reachability_timeout_seconds: float = 5.0  # Ceiling for GET /health
    booth_header_name: str = "X-Booth-ID"
    
    # ===========================================
    # SESSION / TOKENS
    # ===========================================
    token_refresh_margin_seconds: int = 300
    
    # ===========================================
    # SYNC
    # ===========================================
    sync_batch_size: int = 50
    sync_interval_seconds: float = 300.0  # 5 minutes
    
    # ===========================================
    # RETENTION
    # ===========================================
    audit_retention_days: int = 30
    otp_ttl_seconds: int = 300
    otp_grace_seconds: int = 600
    
    @property
    def health_url(self) -> str:
        """The health endpoint lives at the server root, not under /api."""
        base = self.api_base_url.rstrip("/")
        if base.endswith("/api"):
            base = base[: -len("/api")]
        return f"{base}/health"


@lru_cache()
def get_settings() -> Settings:
    """
    Get cached settings instance.
    Uses lru_cache to avoid reading .env file on every call.
    """
    return Settings()
