"""
Configuration Management for mutatefs

Uses Pydantic Settings for environment-based configuration so test
runs can tune interception behaviour without code changes.
"""

from typing import Literal

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """
    Library configuration loaded from environment variables.
    
    Environment variables should be prefixed with MUTATEFS_.
    Example: MUTATEFS_CAPTURE_CALLSTACK=false
    """
    
    model_config = SettingsConfigDict(
        env_prefix="MUTATEFS_",
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
    )
    
    # =========================================================================
    # General Settings
    # =========================================================================
    
    debug: bool = Field(
        default=False,
        description="Enable debug mode with verbose logging"
    )
    
    log_level: Literal["DEBUG", "INFO", "WARNING", "ERROR"] = Field(
        default="WARNING",
        description="Logging level for interception events"
    )
    
    # =========================================================================
    # Interception Settings
    # =========================================================================
    
    sync_suffix: str = Field(
        default="_sync",
        min_length=1,
        description="Suffix naming the blocking form of an operation"
    )
    
    capture_callstack: bool = Field(
        default=True,
        description="Attach a call-site stack capture to forced failures"
    )
    
    callstack_limit: int | None = Field(
        default=None,
        ge=1,
        description="Maximum number of frames kept in a callstack capture"
    )


# Global settings instance - lazy loaded
_settings: Settings | None = None


def get_settings() -> Settings:
    """
    Get the library settings instance.
    
    Uses lazy loading so environment variables set by a test session
    before the first interception are picked up.
    
    Returns:
        Settings: The library configuration.
    """
    global _settings
    if _settings is None:
        _settings = Settings()
    return _settings


def reset_settings() -> None:
    """
    Reset the settings instance.
    
    Useful for testing or when environment variables change.
    """
    global _settings
    _settings = None
