# src/bucketsync/config.py
"""
Configuration for bucketsync.

This module centralizes all configuration, loading credentials and bucket
names from environment variables and providing typed dataclasses for use
throughout the application.
"""

import os
from dataclasses import dataclass, field
from pathlib import Path
from typing import Dict, Optional

from bucketsync.exceptions import ConfigError

MIB: int = 1024**2


def _get_env_var(name: str, default: Optional[str] = None) -> str:
    """
    Retrieves a required environment variable.

    Args:
        name (str): The name of the environment variable.
        default (str, optional): The default value if the variable is not set.

    Returns:
        str: The value of the environment variable.
    """
    value: Optional[str] = os.environ.get(name, default)
    if not value:
        raise ConfigError(f"Environment variable '{name}' must be set.")
    return value


def _get_optional_env_var(name: str) -> Optional[str]:
    """Returns the variable's value, or None when it is unset or empty."""
    return os.environ.get(name) or None


@dataclass(frozen=True)
class StoreConfig:
    """
    Represents the configuration for one S3-compatible store.

    Attributes:
        endpoint_url (str, optional): The S3 endpoint URL. None selects AWS.
        access_key_id (str): The access key ID.
        secret_access_key (str): The secret access key.
        bucket (str): The bucket name.
        region (str): The region name.
    """

    endpoint_url: Optional[str]
    access_key_id: str
    secret_access_key: str
    bucket: str
    region: str

    @classmethod
    def from_env(cls, prefix: str) -> "StoreConfig":
        """
        Builds a store configuration from `{prefix}_*` environment variables.

        Args:
            prefix (str): Variable prefix, e.g. `BUCKETSYNC_SOURCE`.

        Returns:
            StoreConfig: The populated configuration.
        """
        return cls(
            endpoint_url=_get_optional_env_var(f"{prefix}_ENDPOINT_URL"),
            access_key_id=_get_env_var(f"{prefix}_ACCESS_KEY_ID"),
            secret_access_key=_get_env_var(f"{prefix}_SECRET_ACCESS_KEY"),
            bucket=_get_env_var(f"{prefix}_BUCKET"),
            region=_get_env_var(f"{prefix}_REGION", "us-east-1"),
        )

    def as_boto_dict(self) -> Dict[str, str]:
        """
        Returns the configuration as keyword arguments for an aiobotocore client.

        Returns:
            Dict[str, str]: A dictionary of client parameters.
        """
        params: Dict[str, str] = {
            "aws_access_key_id": self.access_key_id,
            "aws_secret_access_key": self.secret_access_key,
            "region_name": self.region,
        }
        if self.endpoint_url:
            params["endpoint_url"] = self.endpoint_url
        return params


@dataclass(frozen=True)
class AppConfig:
    """
    Defines the application's operational parameters.

    Attributes:
        checkpoint_dir (Path): Directory holding the snapshot and journal.
        concurrency (int): Number of objects transferred at once.
        list_page_size (int): Maximum keys requested per listing page.
        part_size (int): Multipart upload part size in bytes.
        chunk_size (int): Read size for source object streams in bytes.
        progress_interval_s (float): Minimum seconds between progress events.
        timeout_floor_s (int): Lower bound of the per-object transfer timeout.
        timeout_step_bytes (int): Object size granted one extra timeout step.
        timeout_step_s (int): Seconds added per `timeout_step_bytes`.
        max_attempts (int): botocore retry attempts per request.
    """

    checkpoint_dir: Path = field(default_factory=lambda: Path(".sync"))
    concurrency: int = 1
    list_page_size: int = 1000
    part_size: int = 8 * MIB
    chunk_size: int = 1 * MIB
    progress_interval_s: float = 0.5
    timeout_floor_s: int = 600
    timeout_step_bytes: int = 100 * MIB
    timeout_step_s: int = 60
    max_attempts: int = 5


@dataclass(frozen=True)
class Config:
    """
    Top-level configuration container for the entire application.

    Attributes:
        source (StoreConfig): Configuration for the source store.
        destination (StoreConfig): Configuration for the destination store.
        app (AppConfig): General application settings.
    """

    source: StoreConfig = field(
        default_factory=lambda: StoreConfig.from_env("BUCKETSYNC_SOURCE")
    )
    destination: StoreConfig = field(
        default_factory=lambda: StoreConfig.from_env("BUCKETSYNC_DESTINATION")
    )
    app: AppConfig = field(default_factory=AppConfig)
