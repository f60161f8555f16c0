"""Configuration management for the Midjourney Bridge.

This module provides centralized configuration management using Pydantic Settings.
All configuration is loaded from environment variables with the MJBRIDGE_ prefix,
allowing easy customization without code changes.

Environment Variable Loading
-----------------------------
Configuration values are loaded in the following priority order:
1. Environment variables (MJBRIDGE_* prefix, or the bare deployment names
   ``SERVER_ID``, ``CHANNEL_ID``, ``DISCORD_TOKEN`` and ``PORT``)
2. .env file in the project root
3. Default values defined in BridgeConfig

Example .env file:
    SERVER_ID=123456789012345678
    CHANNEL_ID=234567890123456789
    DISCORD_TOKEN=...
    MJBRIDGE_BACKEND_URL=http://localhost:8080
    PORT=3000

Global Configuration Instance
------------------------------
A global `config` instance is created automatically at module import time.
This ensures a single source of truth for all configuration values across
the application.  Every field has a default so that importing the module
never fails; missing credentials surface later as a Failed connection phase
rather than as an import error.

Usage Example
-------------
    from mjbridge.core.config import config

    print(config.backend_url)
    print(config.server_port)

    # Configuration is immutable after initialization
    # To change values, set environment variables and restart

See Also
--------
- ConnectionManager: consumes the credential and retry settings
- SessionOrchestrator: consumes backend_timeout and busy_policy
"""

from typing import Literal

from pydantic import AliasChoices, Field
from pydantic_settings import BaseSettings, SettingsConfigDict


class BridgeConfig(BaseSettings):
    """Main configuration for the Midjourney Bridge.

    Values are loaded from environment variables with the MJBRIDGE_ prefix,
    with fallback to defaults defined here.

    Attributes
    ----------
    Backend Topic:
        server_id : str
            Identifier of the guild hosting the generation bot, sent to
            the proxy as the job's account filter
        channel_id : str
            Identifier of the channel where jobs are posted (account filter)
        discord_token : str
            Authentication token used for the backend session

    Backend Transport:
        backend_url : str
            Base URL of the Midjourney proxy service
        backend_secret : str
            Optional ``mj-api-secret`` header value for the proxy
        discord_api_url : str
            Base URL of the identity endpoint used by the credential check
        request_timeout : float
            Timeout for a single HTTP request to the backend (seconds)
        poll_interval : float
            Period between job status polls (seconds)
        backend_timeout : float
            Upper bound of one generate or action call (seconds)

    Connection Lifecycle:
        verify_credentials : bool
            Run the credential pre-flight before connecting
        connect_retry : bool
            Retry a failed connection exactly once
        retry_delay : float
            Delay before that retry (seconds)

    Session:
        busy_policy : Literal["queue", "reject"]
            Queue concurrent mutations, or reject them with SessionBusyError

    Server:
        server_host : str
            Server bind address
        server_port : int
            Server port (1024-65535)
        log_level : str
            Root log level configured by the CLI entry point

    Examples
    --------
        >>> custom_config = BridgeConfig(
        ...     backend_url="http://proxy:8080",
        ...     verify_credentials=False,
        ... )
    """

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        env_prefix="MJBRIDGE_",
        case_sensitive=False,
        extra="ignore",
        populate_by_name=True,
    )

    # Backend topic
    server_id: str = Field(
        default="",
        validation_alias=AliasChoices("server_id", "MJBRIDGE_SERVER_ID", "SERVER_ID"),
        description="Guild identifier of the generation bot",
    )
    channel_id: str = Field(
        default="",
        validation_alias=AliasChoices("channel_id", "MJBRIDGE_CHANNEL_ID", "CHANNEL_ID"),
        description="Channel identifier where jobs are posted",
    )
    discord_token: str = Field(
        default="",
        validation_alias=AliasChoices("discord_token", "MJBRIDGE_DISCORD_TOKEN", "DISCORD_TOKEN"),
        description="Authentication token for the backend session",
    )

    # Backend transport
    backend_url: str = Field(
        default="http://localhost:8080",
        description="Base URL of the Midjourney proxy service",
    )
    backend_secret: str = Field(
        default="",
        description="Optional mj-api-secret header value",
    )
    discord_api_url: str = Field(
        default="https://discord.com/api/v9",
        description="Identity endpoint base URL for the credential check",
    )
    request_timeout: float = Field(default=30.0, gt=0)
    poll_interval: float = Field(default=2.0, gt=0)
    backend_timeout: float = Field(
        default=600.0,
        gt=0,
        description="Upper bound of one generate or action call",
    )

    # Connection lifecycle
    verify_credentials: bool = Field(
        default=True,
        description="Run the credential pre-flight before connecting",
    )
    connect_retry: bool = Field(
        default=True,
        description="Retry a failed connection exactly once",
    )
    retry_delay: float = Field(default=3.0, ge=0)

    # Session
    busy_policy: Literal["queue", "reject"] = Field(
        default="queue",
        description="Queue concurrent mutations or reject them",
    )

    # Server
    server_host: str = Field(
        default="0.0.0.0",
        description="Server bind address (0.0.0.0 for local network)",
    )
    server_port: int = Field(
        default=3000,
        validation_alias=AliasChoices("server_port", "MJBRIDGE_SERVER_PORT", "PORT"),
        description="Server port",
        ge=1024,
        le=65535,
    )
    log_level: str = Field(default="INFO")


# Global configuration instance
# Loads values from environment variables (MJBRIDGE_* prefix) and .env file.
config = BridgeConfig()
