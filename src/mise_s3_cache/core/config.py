"""Centralized configuration for mise-s3-cache."""

import logging
import os
import re
import tomllib
from dataclasses import dataclass, field, fields, replace
from pathlib import Path
from typing import Any

from .errors import ConfigError

logger = logging.getLogger(__name__)

_TRUE_VALUES = {"1", "true", "yes", "on"}

# Shell-style keys accepted in *.conf files, mapped to config fields.
_SHELL_KEYS = {
    "S3_CACHE_ENABLED": "enabled",
    "S3_CACHE_BUCKET": "bucket",
    "S3_CACHE_REGION": "region",
    "S3_CACHE_PREFIX": "prefix",
    "S3_CACHE_TTL": "ttl_seconds",
    "S3_CACHE_PARALLEL_UPLOADS": "parallel_uploads",
    "S3_CACHE_DEBUG": "debug",
}

_ENV_KEYS = {
    "MISE_S3_CACHE_ENABLED": "enabled",
    "MISE_S3_CACHE_BUCKET": "bucket",
    "MISE_S3_CACHE_REGION": "region",
    "MISE_S3_CACHE_PREFIX": "prefix",
    "MISE_S3_CACHE_TTL": "ttl_seconds",
    "MISE_S3_CACHE_PARALLEL_UPLOADS": "parallel_uploads",
    "MISE_S3_CACHE_DEBUG": "debug",
    "MISE_S3_CACHE_LOG_LEVEL": "log_level",
    "MISE_S3_CACHE_LOG_FILE": "log_file",
    "MISE_S3_CACHE_DIR": "cache_dir",
    "MISE_S3_CACHE_NETWORK_TIMEOUT": "network_timeout",
    "MISE_S3_CACHE_LOCK_TIMEOUT": "lock_timeout",
    "MISE_S3_CACHE_RETRY_ATTEMPTS": "retry_attempts",
    "MISE_S3_CACHE_RETRY_DELAY": "retry_base_delay",
    "MISE_S3_CACHE_REQUIRE_CHECKSUM": "require_checksum",
    "MISE_S3_CACHE_METRICS": "metrics_type",
    "AWS_ENDPOINT_URL": "endpoint_url",
    "AWS_PROFILE": "profile",
}

_BUCKET_PATTERN = re.compile(r"^[a-z0-9][a-z0-9.-]{1,61}[a-z0-9]$")
_IP_PATTERN = re.compile(r"^\d+\.\d+\.\d+\.\d+$")


def default_cache_dir() -> Path:
    return Path.home() / ".cache" / "mise-s3"


def default_config_paths() -> list[Path]:
    """User config first, then project config; later files override earlier ones."""
    user_dir = Path.home() / ".config" / "mise"
    return [
        user_dir / "s3-cache.conf",
        user_dir / "s3-cache.toml",
        Path(".mise-s3-cache.conf"),
        Path(".mise-s3-cache.toml"),
    ]


def is_valid_bucket_name(name: str) -> bool:
    """Check an S3 bucket name against the AWS naming rules."""
    if not _BUCKET_PATTERN.fullmatch(name):
        return False
    if ".." in name or ".-" in name or "-." in name:
        return False
    return not _IP_PATTERN.fullmatch(name)


@dataclass(frozen=True, slots=True)
class CacheConfig:
    """All mise-s3-cache configuration in one place.

    Sources, lowest precedence first: defaults, config files (user then
    project, or a single explicit file), environment variables, explicit
    overrides.

    Environment variables (all optional):
        MISE_S3_CACHE_ENABLED:          "true" (default) or "false".
        MISE_S3_CACHE_BUCKET:           Bucket holding the cache. Required.
        MISE_S3_CACHE_REGION:           Bucket region. Default "us-east-1".
        MISE_S3_CACHE_PREFIX:           Key prefix. Default "mise-cache".
        MISE_S3_CACHE_TTL:              Entry age in seconds used by cleanup. Default 7 days.
        MISE_S3_CACHE_PARALLEL_UPLOADS: Warm fan-out. Default 3.
        MISE_S3_CACHE_DEBUG:            Debug logging. Default "false".
        MISE_S3_CACHE_LOG_LEVEL:        Logging level. Default "INFO".
        MISE_S3_CACHE_LOG_FILE:         Also log to this file.
        MISE_S3_CACHE_DIR:              Local state (stats, locks). Default ~/.cache/mise-s3.
        MISE_S3_CACHE_NETWORK_TIMEOUT:  Per-call S3 timeout in seconds. Default 30.
        MISE_S3_CACHE_LOCK_TIMEOUT:     Store lock wait in seconds. Default 30.
        MISE_S3_CACHE_RETRY_ATTEMPTS:   Attempts per S3 call. Default 3.
        MISE_S3_CACHE_RETRY_DELAY:      First retry delay in seconds, doubled each retry. Default 1.
        MISE_S3_CACHE_REQUIRE_CHECKSUM: Reject entries without checksum. Default "false".
        MISE_S3_CACHE_METRICS:          "noop" or "logging" (default).
        AWS_ENDPOINT_URL:               S3-compatible endpoint (MinIO, localstack).
        AWS_PROFILE:                    Named AWS profile.
    """

    enabled: bool = True
    bucket: str = ""
    region: str = "us-east-1"
    prefix: str = "mise-cache"
    ttl_seconds: int = 604800
    parallel_uploads: int = 3
    debug: bool = False
    log_level: str = "INFO"
    log_file: Path | None = None
    cache_dir: Path = field(default_factory=default_cache_dir)
    network_timeout: float = 30.0
    lock_timeout: float = 30.0
    retry_attempts: int = 3
    retry_base_delay: float = 1.0
    require_checksum: bool = False
    metrics_type: str = "logging"

    # Connection params
    endpoint_url: str | None = field(default=None, repr=False)
    profile: str | None = None

    @classmethod
    def from_env(
        cls,
        config_path: str | Path | None = None,
        environ: dict[str, str] | None = None,
        **overrides: Any,
    ) -> "CacheConfig":
        """Build config from config files + environment variables + explicit overrides."""
        environ = dict(os.environ) if environ is None else environ
        values: dict[str, Any] = {}

        paths = [Path(config_path)] if config_path else default_config_paths()
        for path in paths:
            if not path.is_file():
                if config_path:
                    raise ConfigError(f"Config file not found: {path}")
                continue
            try:
                values.update(load_config_file(path))
                logger.debug("Loaded config from %s", path)
            except ConfigError as e:
                if config_path:
                    raise
                logger.warning("Failed to load config from %s: %s", path, e)

        for env_key, name in _ENV_KEYS.items():
            if env_key in environ and environ[env_key] != "":
                values[name] = environ[env_key]

        values.update({k: v for k, v in overrides.items() if v is not None})
        return cls(**_coerce(values))

    def with_overrides(self, **overrides: Any) -> "CacheConfig":
        return replace(self, **_coerce({k: v for k, v in overrides.items() if v is not None}))

    @property
    def stats_path(self) -> Path:
        return self.cache_dir / "stats.json"

    @property
    def lock_dir(self) -> Path:
        return self.cache_dir / "locks"

    @property
    def temp_dir(self) -> Path:
        return self.cache_dir / "tmp"

    @property
    def tools_prefix(self) -> str:
        prefix = self.prefix.strip("/")
        return f"{prefix}/tools/" if prefix else "tools/"

    def problems(self) -> list[str]:
        """Return every reason this configuration cannot be used."""
        issues = []
        if not self.enabled:
            issues.append("S3 cache is disabled")
        if not self.bucket:
            issues.append("S3 bucket not configured. Set MISE_S3_CACHE_BUCKET")
        elif not is_valid_bucket_name(self.bucket):
            issues.append(f"Invalid S3 bucket name: {self.bucket}")
        if not self.region:
            issues.append("S3 region cannot be empty")
        if self.prefix.startswith("/") or "//" in self.prefix:
            issues.append(f"Invalid S3 prefix: {self.prefix}")
        return issues

    @property
    def unavailable_reason(self) -> str | None:
        issues = self.problems()
        return issues[0] if issues else None

    @property
    def available(self) -> bool:
        return self.unavailable_reason is None


def load_config_file(path: Path) -> dict[str, Any]:
    """Read a TOML or shell-style config file into raw field values."""
    try:
        content = path.read_text()
    except OSError as e:
        raise ConfigError(f"Failed to read config file {path}: {e}") from e

    if path.suffix == ".toml":
        try:
            data = tomllib.loads(content)
        except tomllib.TOMLDecodeError as e:
            raise ConfigError(f"Failed to parse TOML config {path}: {e}") from e
        # Accept both a flat file and a [s3_cache] table.
        data = data.get("s3_cache", data)
        known = {f.name for f in fields(CacheConfig)}
        return {k: v for k, v in data.items() if k in known}

    values: dict[str, Any] = {}
    for raw_line in content.splitlines():
        line = raw_line.strip()
        if not line or line.startswith("#") or "=" not in line:
            continue
        key, value = line.split("=", 1)
        key = key.strip().removeprefix("export ").strip().removeprefix("MISE_")
        name = _SHELL_KEYS.get(key)
        if name:
            values[name] = value.strip().strip("\"'")
    return values


def _coerce(values: dict[str, Any]) -> dict[str, Any]:
    """Convert raw string values to the field types."""
    types = {f.name: f.type for f in fields(CacheConfig)}
    result: dict[str, Any] = {}
    for name, value in values.items():
        kind = types.get(name)
        if kind is None:
            continue
        try:
            if kind == "bool" or kind is bool:
                result[name] = (
                    value if isinstance(value, bool) else str(value).strip().lower() in _TRUE_VALUES
                )
            elif kind == "int" or kind is int:
                result[name] = int(value)
            elif kind == "float" or kind is float:
                result[name] = float(value)
            elif name in ("cache_dir", "log_file"):
                result[name] = Path(value).expanduser()
            else:
                result[name] = str(value)
        except (TypeError, ValueError):
            logger.warning("Ignoring invalid value for %s: %r", name, value)
    return result
