from __future__ import annotations

import logging
import os
import shutil
from dataclasses import dataclass, field
from pathlib import Path
from typing import Mapping, Optional

from dotenv import load_dotenv
from omegaconf import DictConfig, OmegaConf
from omegaconf.errors import OmegaConfBaseException

from .errors import ConfigurationError

logger = logging.getLogger(__name__)

CONFIG_PATH = Path(__file__).resolve().parent / "config.yaml"

XLSX_EXTENSION = ".xlsx"
XLSX_CONTENT_TYPE = "application/vnd.openxmlformats-officedocument.spreadsheetml.sheet"
PDF_CONTENT_TYPE = "application/pdf"

# environment variable -> dotted config key
ENV_OVERRIDES = {
    "LIBREOFFICE_PATH": "converter.engine_path",
    "CONVERSION_TIMEOUT_SECONDS": "converter.timeout_seconds",
    "LIBREOFFICE_PREWARM": "converter.prewarm",
    "CACHE_ENABLED": "cache.enabled",
    "BUCKET_NAME": "cache.bucket_name",
    "CACHE_KEY_PREFIX": "cache.key_prefix",
    "LINK_TTL_SECONDS": "cache.link_ttl_seconds",
    "AWS_REGION": "cache.region",
    "S3_ENDPOINT_URL": "cache.endpoint_url",
    "MAX_UPLOAD_BYTES": "upload.max_bytes",
    "UPLOAD_CHUNK_BYTES": "upload.chunk_bytes",
    "TMP_DIR": "workdir.root",
    "LOG_LEVEL": "logging.level",
}


@dataclass
class ConverterSettings:
    engine_path: Optional[str] = None
    timeout_seconds: int = 60
    prewarm: bool = False


@dataclass
class CacheSettings:
    enabled: bool = True
    bucket_name: Optional[str] = None
    key_prefix: str = ""
    link_ttl_seconds: int = 6 * 60 * 60
    region: Optional[str] = None
    endpoint_url: Optional[str] = None


@dataclass
class UploadSettings:
    max_bytes: int = 100 * 1024 * 1024
    chunk_bytes: int = 1024 * 1024


@dataclass
class WorkdirSettings:
    root: Optional[str] = None


@dataclass
class LoggingSettings:
    level: str = "INFO"


@dataclass
class Settings:
    """
    Process-wide settings, built once at startup and passed to the pipeline.

    Attributes:
        converter: Conversion engine location and limits
        cache: S3 cache switch, bucket and link lifetime
        upload: Upload ceiling and streaming chunk size
        workdir: Parent directory for request-scoped temporary directories
        logging: Log level for the console handler
    """

    converter: ConverterSettings = field(default_factory=ConverterSettings)
    cache: CacheSettings = field(default_factory=CacheSettings)
    upload: UploadSettings = field(default_factory=UploadSettings)
    workdir: WorkdirSettings = field(default_factory=WorkdirSettings)
    logging: LoggingSettings = field(default_factory=LoggingSettings)


def _load_file_config(config_path: Path) -> DictConfig:
    if not config_path.exists():
        raise ConfigurationError(f"Config file not found at {config_path}")
    return OmegaConf.load(config_path)  # type: ignore[return-value]


def make_settings_config(config_path: Path, environ: Mapping[str, str]) -> DictConfig:
    """
    Merge the packaged defaults and environment overrides over the typed schema.

    Values coming from the environment are strings; OmegaConf converts them to
    the schema's types during the update and rejects values it cannot convert.
    """
    schema = OmegaConf.structured(Settings)
    merged = OmegaConf.merge(schema, _load_file_config(config_path))
    for variable, key in ENV_OVERRIDES.items():
        value = environ.get(variable)
        if value is None or value == "":
            continue
        OmegaConf.update(merged, key, value, merge=True)
    return merged


def validate_settings(settings: Settings) -> Settings:
    if not settings.converter.engine_path:
        raise ConfigurationError("LIBREOFFICE_PATH must be set to the conversion engine binary.")
    if settings.converter.timeout_seconds <= 0:
        raise ConfigurationError("CONVERSION_TIMEOUT_SECONDS must be positive.")
    if settings.cache.enabled and not settings.cache.bucket_name:
        raise ConfigurationError("BUCKET_NAME must be set when the cache is enabled.")
    if settings.cache.link_ttl_seconds <= 0:
        raise ConfigurationError("LINK_TTL_SECONDS must be positive.")
    if settings.upload.max_bytes <= 0 or settings.upload.chunk_bytes <= 0:
        raise ConfigurationError("Upload limits must be positive.")

    if shutil.which(settings.converter.engine_path) is None:
        # may still resolve inside the serving container
        logger.warning(f"Conversion engine {settings.converter.engine_path!r} was not found on PATH")
    return settings


def load_settings(environ: Mapping[str, str] | None = None, config_path: Path = CONFIG_PATH) -> Settings:
    """
    Build validated settings from config.yaml and the environment.

    Args:
        environ: Variables to read overrides from (default: os.environ after
            loading a .env file)
        config_path: YAML file with the default values

    Returns:
        A fully populated Settings instance

    Raises:
        ConfigurationError: If a required value is missing or a value has the
            wrong type
    """
    if environ is None:
        load_dotenv()
        environ = os.environ

    try:
        merged = make_settings_config(config_path, environ)
        settings = OmegaConf.to_object(merged)
    except OmegaConfBaseException as exc:
        raise ConfigurationError(f"Invalid configuration: {exc}") from exc

    assert isinstance(settings, Settings)
    return validate_settings(settings)
