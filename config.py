"""
Configuration management for authschema.

This module provides centralized configuration with validation using Pydantic.
All configuration values are loaded from environment variables with sensible defaults.
"""

from typing import Optional, Literal
from pydantic import Field, field_validator, model_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


class DatabaseConfig(BaseSettings):
    """Database connection and pool configuration."""

    model_config = SettingsConfigDict(env_prefix='DB_', case_sensitive=False, populate_by_name=True)

    url: Optional[str] = Field(
        default=None,
        alias='DATABASE_URL',
        description='Full SQLAlchemy URL; overrides the individual connection fields'
    )
    host: str = Field(default='localhost', description='Database host')
    port: int = Field(default=5432, description='Database port')
    name: str = Field(default='auth_db', alias='POSTGRES_DB', description='Database name')
    user: str = Field(default='auth_user', alias='POSTGRES_USER', description='Database user')
    password: str = Field(default='auth_password', alias='POSTGRES_PASSWORD', description='Database password')

    # Connection pool settings (ignored for SQLite)
    pool_size: int = Field(default=5, description='Connection pool size')
    max_overflow: int = Field(default=10, description='Max overflow connections')
    pool_timeout: int = Field(default=30, description='Pool timeout in seconds')
    pool_recycle: int = Field(default=3600, description='Connection recycle time in seconds')
    echo: bool = Field(default=False, description='Log every SQL statement')

    @field_validator('pool_size', 'pool_timeout')
    @classmethod
    def validate_positive(cls, v: int) -> int:
        """Validate pool settings are positive."""
        if v <= 0:
            raise ValueError('Pool size and timeout must be positive')
        return v

    @property
    def connection_string(self) -> str:
        """Generate the SQLAlchemy connection string."""
        if self.url:
            return self.url
        return f"postgresql://{self.user}:{self.password}@{self.host}:{self.port}/{self.name}"


class AuthConfig(BaseSettings):
    """Credential and token lifecycle settings."""

    model_config = SettingsConfigDict(env_prefix='AUTH_', case_sensitive=False)

    password_reset_expire_minutes: int = Field(
        default=60,
        description='Minutes a password reset token stays valid'
    )
    bcrypt_rounds: int = Field(default=12, description='bcrypt cost factor for password hashes')
    token_random_bytes: int = Field(
        default=32,
        description='Random bytes in generated reset and personal access token secrets'
    )
    default_token_ttl_seconds: Optional[int] = Field(
        default=None,
        description='Lifetime applied to personal access tokens created without an explicit TTL (None = never expire)'
    )

    @field_validator('password_reset_expire_minutes', 'token_random_bytes')
    @classmethod
    def validate_positive(cls, v: int) -> int:
        """Validate values are positive."""
        if v <= 0:
            raise ValueError('Value must be positive')
        return v

    @field_validator('default_token_ttl_seconds')
    @classmethod
    def validate_ttl(cls, v: Optional[int]) -> Optional[int]:
        """Validate the default TTL is positive when set."""
        if v is not None and v <= 0:
            raise ValueError('default_token_ttl_seconds must be positive')
        return v

    @model_validator(mode='after')
    def validate_bcrypt_rounds(self) -> 'AuthConfig':
        """bcrypt accepts cost factors between 4 and 31."""
        if not 4 <= self.bcrypt_rounds <= 31:
            raise ValueError(
                f"bcrypt_rounds must be between 4 and 31, got {self.bcrypt_rounds}"
            )
        return self


class AppConfig(BaseSettings):
    """Main application configuration."""

    model_config = SettingsConfigDict(
        env_file='.env',
        env_file_encoding='utf-8',
        case_sensitive=False,
        extra='ignore'
    )

    log_level: Literal['debug', 'info', 'warning', 'error', 'critical'] = Field(
        default='info',
        description='Logging level for CLI entry points'
    )

    @field_validator('log_level', mode='before')
    @classmethod
    def normalize_log_level(cls, v):
        """Accept LOG_LEVEL=INFO as well as info."""
        return v.lower() if isinstance(v, str) else v

    # Sub-configurations
    database: DatabaseConfig = Field(default_factory=DatabaseConfig)
    auth: AuthConfig = Field(default_factory=AuthConfig)

    @classmethod
    def load(cls) -> 'AppConfig':
        """Load configuration from environment."""
        return cls(
            database=DatabaseConfig(),
            auth=AuthConfig(),
        )


# Global configuration instance
_config: Optional[AppConfig] = None


def get_config() -> AppConfig:
    """Get or create global configuration instance."""
    global _config
    if _config is None:
        _config = AppConfig.load()
    return _config


def reload_config() -> AppConfig:
    """Reload configuration from environment."""
    global _config
    _config = AppConfig.load()
    return _config
