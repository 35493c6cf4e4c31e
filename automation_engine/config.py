"""Configuration management for the automation engine."""

import os
from typing import Optional, Dict, Any
from pydantic import BaseModel, Field, ValidationError, field_validator
from enum import Enum

from .core.exceptions import ConfigurationError

ENV_PREFIX = "AUTOMATION_ENGINE_"


class LogLevel(str, Enum):
    """Logging levels."""
    DEBUG = "DEBUG"
    INFO = "INFO"
    WARNING = "WARNING"
    ERROR = "ERROR"
    CRITICAL = "CRITICAL"


class EngineConfig(BaseModel):
    """Application and engine configuration settings."""

    # Application settings
    app_name: str = Field(default="Automation Engine", description="Application name")
    app_version: str = Field(default="1.0.0", description="Application version")
    debug: bool = Field(default=False, description="Enable debug mode")

    # Server settings
    host: str = Field(default="0.0.0.0", description="Server host")
    port: int = Field(default=8000, description="Server port")

    # Database settings
    database_url: str = Field(
        default="sqlite:///./automation_engine.db",
        description="Database connection URL"
    )
    database_echo: bool = Field(default=False, description="Enable SQLAlchemy query logging")

    # Execution engine settings
    default_timeout_ms: int = Field(
        default=300000,
        description="Default run timeout in milliseconds"
    )
    default_max_retries: int = Field(
        default=3,
        description="Default number of retries per node dispatch"
    )
    retry_base_delay: float = Field(default=1.0, description="Base retry delay in seconds")
    retry_max_delay: float = Field(default=10.0, description="Maximum retry delay in seconds")
    enforce_timeout: bool = Field(
        default=False,
        description="Wrap the dispatcher with a timeout watchdog"
    )
    allow_action_chaining: bool = Field(
        default=False,
        description="Allow edges originating from action nodes"
    )
    max_active_executions: int = Field(
        default=100,
        description="Maximum number of concurrently active runs accepted by the API"
    )

    # Performance monitoring settings
    slow_request_threshold: float = Field(
        default=5.0,
        description="Slow request threshold in seconds"
    )

    # Logging settings
    log_level: LogLevel = Field(default=LogLevel.INFO, description="Logging level")
    log_format: str = Field(
        default="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
        description="Log message format"
    )
    log_file: Optional[str] = Field(default=None, description="Log file path")
    structured_logging: bool = Field(default=False, description="Emit JSON log lines")
    log_max_size: int = Field(default=10485760, description="Maximum log file size in bytes")
    log_backup_count: int = Field(default=5, description="Number of log backup files to keep")

    @field_validator('database_url')
    @classmethod
    def validate_database_url(cls, v):
        """Validate database URL format."""
        if not v:
            raise ValueError("Database URL cannot be empty")

        supported_schemes = ['sqlite', 'postgresql', 'mysql']
        scheme = v.split('://')[0].split('+')[0].lower()

        if scheme not in supported_schemes:
            raise ValueError(f"Unsupported database scheme: {scheme}. Supported: {supported_schemes}")

        return v

    @field_validator('port')
    @classmethod
    def validate_port(cls, v):
        if not 1 <= v <= 65535:
            raise ValueError("Port must be between 1 and 65535")
        return v

    @field_validator('default_timeout_ms')
    @classmethod
    def validate_timeout(cls, v):
        if v < 1:
            raise ValueError("Timeout must be at least 1 millisecond")
        return v

    @field_validator('default_max_retries')
    @classmethod
    def validate_max_retries(cls, v):
        if v < 0:
            raise ValueError("Max retries cannot be negative")
        return v

    @field_validator('max_active_executions')
    @classmethod
    def validate_max_active_executions(cls, v):
        if v < 1:
            raise ValueError("Maximum active executions must be at least 1")
        return v

    @field_validator('retry_base_delay', 'retry_max_delay')
    @classmethod
    def validate_delays(cls, v):
        if v < 0:
            raise ValueError("Retry delays cannot be negative")
        return v

    @property
    def is_sqlite(self) -> bool:
        """Check if using SQLite database."""
        return self.database_url.lower().startswith("sqlite")

    def get_database_connect_args(self) -> Dict[str, Any]:
        """Get database connection arguments based on database type."""
        if self.is_sqlite:
            return {"check_same_thread": False}
        return {}

    def get_uvicorn_config(self) -> Dict[str, Any]:
        """Get Uvicorn server configuration."""
        return {
            "host": self.host,
            "port": self.port,
            "log_level": self.log_level.value.lower(),
            "access_log": self.debug
        }

    @classmethod
    def from_env(cls) -> 'EngineConfig':
        """
        Create configuration from ``AUTOMATION_ENGINE_*`` environment variables.

        Raises:
            ConfigurationError: If a variable cannot be converted or fails validation
        """
        def get_env(key: str, default=None, type_func=str):
            value = os.getenv(f"{ENV_PREFIX}{key}")
            if value is None:
                return default
            if type_func == bool:
                return str(value).lower() in ('true', '1', 'yes', 'on')
            try:
                return type_func(value)
            except ValueError:
                raise ConfigurationError(
                    f"Invalid value for {ENV_PREFIX}{key}: {value!r}",
                    config_key=f"{ENV_PREFIX}{key}"
                )

        try:
            return cls(
                app_name=get_env("APP_NAME", "Automation Engine"),
                app_version=get_env("APP_VERSION", "1.0.0"),
                debug=get_env("DEBUG", False, bool),
                host=get_env("HOST", "0.0.0.0"),
                port=get_env("PORT", 8000, int),
                database_url=get_env("DATABASE_URL", "sqlite:///./automation_engine.db"),
                database_echo=get_env("DATABASE_ECHO", False, bool),
                default_timeout_ms=get_env("DEFAULT_TIMEOUT_MS", 300000, int),
                default_max_retries=get_env("DEFAULT_MAX_RETRIES", 3, int),
                retry_base_delay=get_env("RETRY_BASE_DELAY", 1.0, float),
                retry_max_delay=get_env("RETRY_MAX_DELAY", 10.0, float),
                enforce_timeout=get_env("ENFORCE_TIMEOUT", False, bool),
                allow_action_chaining=get_env("ALLOW_ACTION_CHAINING", False, bool),
                max_active_executions=get_env("MAX_ACTIVE_EXECUTIONS", 100, int),
                slow_request_threshold=get_env("SLOW_REQUEST_THRESHOLD", 5.0, float),
                log_level=get_env("LOG_LEVEL", "INFO").upper(),
                log_format=get_env("LOG_FORMAT", "%(asctime)s - %(name)s - %(levelname)s - %(message)s"),
                log_file=get_env("LOG_FILE", None),
                structured_logging=get_env("STRUCTURED_LOGGING", False, bool),
                log_max_size=get_env("LOG_MAX_SIZE", 10485760, int),
                log_backup_count=get_env("LOG_BACKUP_COUNT", 5, int),
            )
        except ValidationError as e:
            raise ConfigurationError(f"Invalid configuration: {e}")


# Global configuration instance
_config: Optional[EngineConfig] = None


def get_config() -> EngineConfig:
    """Get the global configuration instance."""
    global _config
    if _config is None:
        _config = EngineConfig.from_env()
    return _config


def load_config(config_file: Optional[str] = None) -> EngineConfig:
    """Load configuration from a .env file and the environment."""
    global _config

    if config_file and os.path.exists(config_file):
        from dotenv import load_dotenv
        load_dotenv(config_file)
    elif os.path.exists('.env'):
        from dotenv import load_dotenv
        load_dotenv('.env')

    _config = EngineConfig.from_env()

    return _config


def reset_config():
    """Reset the global configuration instance (mainly for testing)."""
    global _config
    _config = None


def validate_config(config: EngineConfig) -> None:
    """
    Check cross-field constraints and prepare directories.

    Raises:
        ConfigurationError: If any check fails
    """
    errors = []

    if config.retry_base_delay > config.retry_max_delay:
        errors.append("retry_base_delay cannot exceed retry_max_delay")

    if config.is_sqlite and ":memory:" not in config.database_url:
        db_path = config.database_url.split(":///", 1)[-1]
        db_dir = os.path.dirname(db_path)
        if db_dir and not os.path.exists(db_dir):
            try:
                os.makedirs(db_dir, exist_ok=True)
            except OSError as e:
                errors.append(f"Cannot create database directory {db_dir}: {e}")

    if config.log_file:
        log_dir = os.path.dirname(config.log_file)
        if log_dir and not os.path.exists(log_dir):
            try:
                os.makedirs(log_dir, exist_ok=True)
            except OSError as e:
                errors.append(f"Cannot create log directory {log_dir}: {e}")

    if errors:
        raise ConfigurationError(f"Configuration validation failed: {'; '.join(errors)}")


def get_development_config() -> EngineConfig:
    """Get development configuration."""
    return EngineConfig(
        debug=True,
        log_level=LogLevel.DEBUG,
        database_echo=True
    )


def get_testing_config() -> EngineConfig:
    """Get testing configuration."""
    return EngineConfig(
        debug=True,
        database_url="sqlite:///:memory:",
        log_level=LogLevel.WARNING,
        default_max_retries=0,
        retry_base_delay=0.0,
        retry_max_delay=0.0
    )
