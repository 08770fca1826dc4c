"""
FastVerify Booth - Key/Value Models

Config holds singleton settings rows (booth_config, app_settings,
hmac_secret, the initialized marker, credential state). SyncStatus holds
the pull cursor.
"""

from typing import Any

from sqlalchemy import JSON, String, Text
from sqlalchemy.orm import Mapped, mapped_column

from fastverify.database import Base
from fastverify.models.base import TimestampMixin


class ConfigKey:
    """Well-known config keys."""
    INITIALIZED = "initialized"
    BOOTH_CONFIG = "booth_config"
    APP_SETTINGS = "app_settings"
    HMAC_SECRET = "hmac_secret"
    AUTH_TOKENS = "auth_tokens"
    VERIFICATION_STATS = "verification_stats"


class ConfigEntry(Base, TimestampMixin):
    """Singleton key/value configuration row."""
    
    __tablename__ = "config"
    __key__ = "key"
    
    key: Mapped[str] = mapped_column(String(100), primary_key=True)
    value: Mapped[Any] = mapped_column(JSON, nullable=True)


class SyncStatusEntry(Base, TimestampMixin):
    """Sync bookkeeping row; key="last_sync" is the pull cursor."""
    
    __tablename__ = "sync_status"
    __key__ = "key"
    
    LAST_SYNC = "last_sync"
    
    key: Mapped[str] = mapped_column(String(100), primary_key=True)
    value: Mapped[str] = mapped_column(Text, nullable=False)
