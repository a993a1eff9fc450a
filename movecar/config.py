"""Configuration management for the move-car notification service."""

import re
from typing import List, Optional
from pydantic import field_validator, model_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Application settings loaded from environment variables."""
    
    model_config = SettingsConfigDict(
        env_file=".env",
        case_sensitive=False,
        extra="ignore"  # Ignore extra environment variables
    )
    
    # Server configuration
    port: int = 8000
    host: str = "0.0.0.0"
    app_url: str = ""
    
    # Keyed store configuration
    store_backend: str = "memory"
    supabase_url: str = ""
    supabase_anon_key: str = ""
    supabase_table: str = "kv_store"
    
    # Record lifetimes
    request_ttl_seconds: int = 60 * 60 * 24
    session_ttl_days: int = 7
    
    # Identifiers and credentials
    password_salt: str = "movecar-salt-v1"
    owner_id_length: int = 6
    request_id_length: int = 12
    user_id_length: int = 12
    id_generation_max_attempts: int = 20
    phone_pattern: str = r"^1[3-9]\d{9}$"
    
    # Push delivery
    push_timeout_seconds: float = 10.0
    bark_group: str = "Move car"
    bark_sound: str = "alarm"
    bark_level: str = "timeSensitive"
    pushplus_endpoint: str = "https://www.pushplus.plus/send"
    serverchan_base_url: str = "https://sctapi.ftqq.com"
    telegram_api_base_url: str = "https://api.telegram.org"
    notification_timezone: str = "Asia/Shanghai"
    
    # Request lifecycle
    deferred_notify_delay_seconds: int = 30
    server_side_deferred_notify: bool = False
    require_confirm_before_complete: bool = False
    
    # Edge protection
    allowed_countries: List[str] = []
    rate_limit_requests: int = 100
    rate_limit_window_seconds: int = 60
    
    # Observability
    otlp_endpoint: Optional[str] = None
    enable_console_export: bool = False
    
    # Logging configuration
    log_level: str = "INFO"
    
    @field_validator('store_backend')
    @classmethod
    def validate_store_backend(cls, v):
        v = v.lower()
        if v not in ("memory", "supabase"):
            raise ValueError('STORE_BACKEND must be "memory" or "supabase"')
        return v
    
    @field_validator('phone_pattern')
    @classmethod
    def validate_phone_pattern(cls, v):
        try:
            re.compile(v)
        except re.error as e:
            raise ValueError(f'PHONE_PATTERN is not a valid regular expression: {e}')
        return v
    
    @field_validator('owner_id_length', 'request_id_length', 'user_id_length', 'id_generation_max_attempts')
    @classmethod
    def validate_positive(cls, v):
        if v < 1:
            raise ValueError('identifier lengths and attempt caps must be positive')
        return v
    
    @field_validator('push_timeout_seconds')
    @classmethod
    def validate_push_timeout(cls, v):
        if not 0.0 < v <= 60.0:
            raise ValueError('PUSH_TIMEOUT_SECONDS must be between 0 and 60')
        return v
    
    @field_validator('allowed_countries')
    @classmethod
    def normalize_countries(cls, v):
        return [country.upper() for country in v]
    
    @model_validator(mode='after')
    def validate_supabase_settings(self):
        if self.store_backend == "supabase" and not (self.supabase_url and self.supabase_anon_key):
            raise ValueError('SUPABASE_URL and SUPABASE_ANON_KEY are required for the supabase store backend')
        return self


# Global settings instance
settings = Settings()
