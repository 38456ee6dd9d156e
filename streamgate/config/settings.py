import json
import logging
import os
from typing import Optional

from pydantic import BaseModel, Field, validator
from pydantic_settings import BaseSettings, SettingsConfigDict

logger = logging.getLogger(__name__)

CONFIG_PATH = os.getenv("CONFIG_PATH", "config.json")


class ExtractionConfig(BaseModel):
    binary: str = Field(default="yt-dlp", description="Extraction binary name or path")
    max_concurrent: int = Field(default=10, ge=1, le=100, description="Max concurrent extraction processes")
    acquire_timeout: float = Field(default=2.0, ge=0, description="Seconds to wait for a free extraction slot")
    chunk_size: int = Field(default=64 * 1024, ge=1024, description="Relay read size in bytes")
    stderr_cap: int = Field(default=64 * 1024, ge=1024, description="Retained stderr bytes per process")
    first_byte_timeout: float = Field(default=120.0, gt=0, description="Seconds to wait for the first output chunk before giving up")
    exit_timeout: float = Field(default=10.0, gt=0, description="Seconds to wait for exit after end of output")
    terminate_grace: float = Field(default=5.0, gt=0, description="Seconds between SIGTERM and SIGKILL")
    socket_timeout: int = Field(default=10, ge=1, description="Socket timeout passed to the extractor")
    retries: int = Field(default=3, ge=0, description="Retries passed to the extractor")
    enable_live_streams: bool = Field(default=False, description="Allow live stream retrieval")
    default_format: str = Field(default="video", description="Format token used when none is given")

    @validator('default_format')
    def validate_default_format(cls, v):
        # Deferred: formats pulls in the error handlers, which import this module
        from streamgate.services.formats import supported_formats

        token = v.strip().lower()
        if token not in supported_formats():
            raise ValueError(f"Default format must be one of {supported_formats()}")
        return token


class RedisConfig(BaseModel):
    enabled: bool = Field(default=False, description="Connect to Redis on startup")
    url: str = Field(default="redis://redis:6379", description="Redis connection URL")
    socket_timeout: int = Field(default=5, description="Redis socket timeout in seconds")


class RateLimitConfig(BaseModel):
    enabled: bool = Field(default=True, description="Enable rate limiting (requires Redis)")
    max_requests: int = Field(default=30, ge=1, description="Max requests per window")
    window_seconds: int = Field(default=60, ge=1, description="Rate limit window in seconds")


class SecurityConfig(BaseModel):
    enable_ssrf_protection: bool = Field(default=True, description="Enable SSRF protection")
    allow_private_ips: bool = Field(default=False, description="Allow private IP ranges")
    allow_localhost: bool = Field(default=False, description="Allow localhost access")
    admin_api_key: Optional[str] = Field(default=None, description="API key for admin endpoints")


class LoggingConfig(BaseModel):
    level: str = Field(default="INFO", description="Log level (DEBUG, INFO, WARNING, ERROR)")
    format: str = Field(default="%(message)s", description="Log format")
    enable_rich: bool = Field(default=True, description="Enable rich console logging")

    @validator('level')
    def validate_log_level(cls, v):
        valid_levels = ['DEBUG', 'INFO', 'WARNING', 'ERROR', 'CRITICAL']
        if v.upper() not in valid_levels:
            raise ValueError(f"Log level must be one of {valid_levels}")
        return v.upper()


class I18nConfig(BaseModel):
    default_locale: str = Field(default="en", description="Default locale")
    supported_locales: list = Field(default=["en", "ja"], description="Supported locales")


class ApiConfig(BaseModel):
    title: str = Field(default="streamgate", description="API title")
    description: str = Field(default="Media retrieval streaming gateway", description="API description")
    version: str = Field(default="1.0.0", description="API version")
    cors_origins: list = Field(default=["*"], description="CORS allowed origins")
    debug: bool = Field(default=False, description="Enable debug mode")
    host: str = Field(default="0.0.0.0", description="Bind address")
    port: int = Field(default=3000, description="Bind port")


class Config(BaseSettings):
    """Main configuration model"""
    model_config = SettingsConfigDict(env_prefix="STREAMGATE_", env_nested_delimiter="__")

    extraction: ExtractionConfig = Field(default_factory=ExtractionConfig)
    redis: RedisConfig = Field(default_factory=RedisConfig)
    rate_limit: RateLimitConfig = Field(default_factory=RateLimitConfig)
    security: SecurityConfig = Field(default_factory=SecurityConfig)
    logging: LoggingConfig = Field(default_factory=LoggingConfig)
    i18n: I18nConfig = Field(default_factory=I18nConfig)
    api: ApiConfig = Field(default_factory=ApiConfig)

    @classmethod
    def load_from_file(cls, config_path: str = CONFIG_PATH) -> "Config":
        """Load configuration from a JSON file, falling back to env and defaults"""
        try:
            with open(config_path, 'r', encoding='utf-8') as f:
                config_data = json.load(f)
            logger.info(f"Configuration loaded from {config_path}")
            return cls(**config_data)
        except (OSError, ValueError) as e:
            logger.error(f"Failed to load config from {config_path}: {str(e)}")
            logger.info("Using environment/default configuration")
            return cls()

    def public_dict(self) -> dict:
        """Configuration without secrets"""
        data = self.model_dump(exclude_none=True)
        data.get("security", {}).pop("admin_api_key", None)
        return data


def load_config(config_path: Optional[str] = None) -> Config:
    """Load configuration with priority: config file > env vars > defaults"""
    config_path = config_path or CONFIG_PATH

    if os.path.exists(config_path):
        return Config.load_from_file(config_path)

    logger.info(f"Config file not found at {config_path}, checking environment variables")
    return Config()
