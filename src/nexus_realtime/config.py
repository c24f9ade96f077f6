"""Realtime client settings, read from the environment.

Call RealtimeSettings.from_env() to pick up NEXUS_* variables; a .env file
in the working directory is loaded first if present.
"""

import os
from typing import Literal

from dotenv import find_dotenv, load_dotenv
from pydantic import BaseModel, Field

DEVELOPMENT_HOST = "localhost:3000"
REALTIME_PATH = "/socket.io/"
POLL_PATH = "/api/realtime/poll"
REALTIME_CHANNEL = "competitive-intelligence"


class RealtimeSettings(BaseModel):
    environment: Literal["development", "production"] = "development"
    public_host: str = DEVELOPMENT_HOST
    secure: bool = False
    realtime_path: str = REALTIME_PATH
    project_id: str | None = None
    user_id: str | None = None

    max_reconnect_attempts: int = Field(default=5, ge=0)
    reconnect_delay: float = Field(default=1.0, gt=0)
    max_reconnect_delay: float | None = None
    connect_timeout: float = Field(default=10.0, gt=0)
    heartbeat_interval: float | None = None
    heartbeat_timeout: float = Field(default=10.0, gt=0)

    dev_server_host: str = "127.0.0.1"
    dev_server_port: int = 3000

    @property
    def is_production(self) -> bool:
        return self.environment == "production"

    @classmethod
    def from_env(cls, load_dotenv_file: bool = True) -> "RealtimeSettings":
        """Build settings from NEXUS_* environment variables.

        Unset variables fall back to the field defaults.
        """
        if load_dotenv_file:
            load_dotenv(find_dotenv(usecwd=True))

        env_map = {
            "environment": "NEXUS_ENV",
            "public_host": "NEXUS_PUBLIC_HOST",
            "secure": "NEXUS_SECURE",
            "realtime_path": "NEXUS_REALTIME_PATH",
            "project_id": "NEXUS_PROJECT_ID",
            "user_id": "NEXUS_USER_ID",
            "max_reconnect_attempts": "NEXUS_MAX_RECONNECT_ATTEMPTS",
            "reconnect_delay": "NEXUS_RECONNECT_DELAY",
            "max_reconnect_delay": "NEXUS_MAX_RECONNECT_DELAY",
            "connect_timeout": "NEXUS_CONNECT_TIMEOUT",
            "heartbeat_interval": "NEXUS_HEARTBEAT_INTERVAL",
            "heartbeat_timeout": "NEXUS_HEARTBEAT_TIMEOUT",
            "dev_server_host": "NEXUS_DEV_SERVER_HOST",
            "dev_server_port": "NEXUS_DEV_SERVER_PORT",
        }
        values = {
            field: os.environ[var]
            for field, var in env_map.items()
            if os.environ.get(var, "") != ""
        }
        # Pydantic handles str -> int/float/bool coercion ("true", "1", "0.5").
        return cls.model_validate(values)
