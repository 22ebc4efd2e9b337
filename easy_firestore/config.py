# Copyright 2025 John Brosnihan
#
# Licensed under the Apache License, Version 2.0 (the "License");
# you may not use this file except in compliance with the License.
# You may obtain a copy of the License at
#
#     http://www.apache.org/licenses/LICENSE-2.0
#
# Unless required by applicable law or agreed to in writing, software
# distributed under the License is distributed on an "AS IS" BASIS,
# WITHOUT WARRANTIES OR CONDITIONS OF ANY KIND, either express or implied.
# See the License for the specific language governing permissions and
# limitations under the License.
"""
Configuration module for the easy_firestore library.

Loads environment variables and provides validated settings.
"""

from functools import lru_cache
from typing import Literal
from pydantic import Field, field_validator, ValidationInfo
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """
    Library settings loaded from environment variables.

    All settings can be overridden via environment variables or a local
    .env file.
    """

    model_config = SettingsConfigDict(
        env_file=".env", env_file_encoding="utf-8", case_sensitive=False, extra="ignore"
    )

    # Service Configuration
    service_environment: Literal["dev", "staging", "prod"] = Field(
        default="dev", description="The environment the host application runs in"
    )
    service_name: str = Field(
        default="easy-firestore",
        description="Service name attached to every log entry",
    )

    # GCP Configuration
    gcp_project_id: str = Field(
        default="", description="GCP Project ID - REQUIRED in production"
    )

    # Firestore Configuration
    firestore_database: str = Field(
        default="(default)", description="Firestore database ID to connect to"
    )
    firestore_emulator_host: str = Field(
        default="",
        description="Firestore emulator host (e.g., localhost:8080) for local development",
    )

    # Logging Configuration
    log_level: Literal["DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"] = Field(
        default="INFO", description="Logging level"
    )

    @field_validator("gcp_project_id")
    @classmethod
    def validate_gcp_project_id(cls, v: str, info: ValidationInfo) -> str:
        """Validate GCP project ID is provided in non-dev environments."""
        environment = info.data.get("service_environment", "dev")
        if environment in ["staging", "prod"] and not v:
            raise ValueError(f"GCP_PROJECT_ID is required in {environment} environment")
        return v


@lru_cache
def get_settings() -> Settings:
    """
    Get the library settings.

    Returns a cached instance of Settings to avoid reloading from environment
    on every call.
    """
    return Settings()
