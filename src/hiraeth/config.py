"""Configuration loading and Pydantic models for Hiraeth."""

from pathlib import Path
from typing import Any

import yaml
from pydantic import BaseModel, Field

DEFAULT_CONFIG_PATHS = (
    Path("hiraeth.yaml"),
    Path("/etc/hiraeth/hiraeth.yaml"),
)


class ServerConfig(BaseModel):
    """Server binding and runtime configuration."""

    host: str = "localhost"
    port: int = 8080
    name: str = "hiraeth"
    log_level: str = "INFO"
    log_format: str = "text"
    shutdown_timeout: int = 30


class AuthConfig(BaseModel):
    """HTTP Basic authentication configuration.

    When ``enabled`` is false every request is attributed to
    ``default_user``, which is created on startup if missing.
    """

    enabled: bool = True
    realm: str = "hiraeth"
    default_user: str = "hiraeth"
    bcrypt_rounds: int = 12


class SQLiteConfig(BaseModel):
    """SQLite engine settings."""

    path: str = "hiraeth.db"


class MetadataConfig(BaseModel):
    """Object store configuration."""

    engine: str = "sqlite"
    sqlite: SQLiteConfig = Field(default_factory=SQLiteConfig)


class StorageConfig(BaseModel):
    """Blob storage configuration. ``data_dir`` holds one file per object."""

    data_dir: str = "data"


class UploadConfig(BaseModel):
    """Upload lifecycle policy.

    Attributes:
        chunk_size: Maximum bytes accepted by a single append.
        inactivity_timeout: Seconds a pending upload may idle between chunks.
        max_lifetime: Longest time-to-live an object may request, in seconds.
    """

    chunk_size: int = 32 * 1024 * 1024
    inactivity_timeout: float = 60.0
    max_lifetime: float = 365 * 24 * 3600.0


class DownloadConfig(BaseModel):
    """Download presentation.

    Attributes:
        inline_types: MIME types served inline instead of as an attachment.
            Matched against the type sniffed from the content, never the
            file name.
    """

    inline_types: list[str] = Field(default_factory=list)


class ObservabilityConfig(BaseModel):
    """Metrics and health-check toggles."""

    metrics: bool = True
    health_check: bool = True


class HiraethConfig(BaseModel):
    """Top-level Hiraeth configuration."""

    server: ServerConfig = Field(default_factory=ServerConfig)
    auth: AuthConfig = Field(default_factory=AuthConfig)
    metadata: MetadataConfig = Field(default_factory=MetadataConfig)
    storage: StorageConfig = Field(default_factory=StorageConfig)
    uploads: UploadConfig = Field(default_factory=UploadConfig)
    downloads: DownloadConfig = Field(default_factory=DownloadConfig)
    observability: ObservabilityConfig = Field(default_factory=ObservabilityConfig)


def _parse_server(data: dict[str, Any] | None) -> dict[str, Any]:
    """Parse the server section from YAML data into a dict for Pydantic."""
    if data is None:
        return {}
    defaults = ServerConfig()
    return {
        "host": data.get("host", defaults.host),
        "port": data.get("port", defaults.port),
        "name": data.get("name", defaults.name),
        "log_level": data.get("log_level", defaults.log_level),
        "log_format": data.get("log_format", defaults.log_format),
        "shutdown_timeout": data.get("shutdown_timeout", defaults.shutdown_timeout),
    }


def _parse_auth(data: dict[str, Any] | None) -> dict[str, Any]:
    """Parse the auth section from YAML data."""
    if data is None:
        return {}
    return {
        "enabled": data.get("enabled", True),
        "realm": data.get("realm", "hiraeth"),
        "default_user": data.get("default_user", "hiraeth"),
        "bcrypt_rounds": data.get("bcrypt_rounds", 12),
    }


def _parse_metadata(data: dict[str, Any] | None) -> dict[str, Any]:
    """Parse the metadata section from YAML data.

    Handles nested structure: metadata.sqlite.path
    """
    if data is None:
        return {}
    result: dict[str, Any] = {"engine": data.get("engine", "sqlite")}
    sqlite_section = data.get("sqlite")
    if isinstance(sqlite_section, dict):
        result["sqlite"] = {"path": sqlite_section.get("path", "hiraeth.db")}
    return result


def _parse_storage(data: dict[str, Any] | None) -> dict[str, Any]:
    """Parse the storage section from YAML data.

    Accepts either ``storage.data_dir`` or the nested ``storage.local.root_dir``.
    """
    if data is None:
        return {}
    result: dict[str, Any] = {}
    if "data_dir" in data:
        result["data_dir"] = data["data_dir"]
    local_section = data.get("local")
    if isinstance(local_section, dict) and "root_dir" in local_section:
        result["data_dir"] = local_section["root_dir"]
    return result


def _parse_uploads(data: dict[str, Any] | None) -> dict[str, Any]:
    """Parse the uploads section from YAML data."""
    if data is None:
        return {}
    return {key: data[key] for key in ("chunk_size", "inactivity_timeout", "max_lifetime") if key in data}


def _parse_downloads(data: dict[str, Any] | None) -> dict[str, Any]:
    """Parse the downloads section from YAML data."""
    if data is None:
        return {}
    return {"inline_types": list(data.get("inline_types") or [])}


def _parse_observability(data: dict[str, Any] | None) -> dict[str, Any]:
    """Parse the observability section from YAML data."""
    if data is None:
        return {}
    return {
        "metrics": data.get("metrics", True),
        "health_check": data.get("health_check", True),
    }


def locate_config(paths: tuple[Path, ...] | None = None) -> Path | None:
    """Return the first existing configuration file among ``paths``.

    Defaults to ``DEFAULT_CONFIG_PATHS``.
    """
    for path in paths if paths is not None else DEFAULT_CONFIG_PATHS:
        if path.is_file():
            return path
    return None


def load_config(path: Path | None = None) -> HiraethConfig:
    """Load a HiraethConfig from a YAML file.

    Args:
        path: Path to the YAML configuration file. When None, the default
            locations are searched and built-in defaults are used if none
            of them exist.

    Returns:
        A fully populated HiraethConfig validated by Pydantic.

    Raises:
        FileNotFoundError: If an explicit config file does not exist.
        yaml.YAMLError: If the file is not valid YAML.
    """
    if path is None:
        path = locate_config()
        if path is None:
            return HiraethConfig()

    with open(path, "r") as fh:
        raw: dict[str, Any] = yaml.safe_load(fh) or {}

    return HiraethConfig(
        server=ServerConfig(**_parse_server(raw.get("server"))),
        auth=AuthConfig(**_parse_auth(raw.get("auth"))),
        metadata=MetadataConfig(**_parse_metadata(raw.get("metadata"))),
        storage=StorageConfig(**_parse_storage(raw.get("storage"))),
        uploads=UploadConfig(**_parse_uploads(raw.get("uploads"))),
        downloads=DownloadConfig(**_parse_downloads(raw.get("downloads"))),
        observability=ObservabilityConfig(**_parse_observability(raw.get("observability"))),
    )
