"""Settings resource for fetch, worker pool and GDAL configuration."""

import os
import types
from typing import Any, Union, get_args, get_origin

from dagster import ConfigurableResource

from stac_extraction.config.constants import (
    DEFAULT_GDAL_HTTP_TIMEOUT,
    DEFAULT_MAX_WORKERS,
    DEFAULT_REQUEST_TIMEOUT,
    DEFAULT_VSICURL_ALLOWED_EXTENSIONS,
)

_TRUTHY = ("true", "1", "yes", "y", "on")


def _scalar_type(attr_type: Any) -> Any:
    """Return the scalar type behind ``T | None``, else the type itself."""
    if get_origin(attr_type) in (Union, types.UnionType):
        for arg in get_args(attr_type):
            if arg in (bool, int, float, str):
                return arg
    return attr_type


class SettingsResource(ConfigurableResource[Any]):
    """Settings resource populated from environment variables."""

    request_timeout: float | None = DEFAULT_REQUEST_TIMEOUT
    max_workers: int = DEFAULT_MAX_WORKERS
    aws_region: str | None = None
    aws_s3_endpoint: str | None = None
    aws_s3_use_ssl: bool = True
    gdal_http_timeout: int = DEFAULT_GDAL_HTTP_TIMEOUT
    vsicurl_allowed_extensions: str = DEFAULT_VSICURL_ALLOWED_EXTENSIONS

    @staticmethod
    def create(swallow_errors: bool = False) -> "SettingsResource":
        """Create SettingsResource from environment variables.

        Variables are the upper-cased field names. Unset variables keep the defaults.

        :param swallow_errors: If True, ignore invalid values and keep defaults
        :returns: SettingsResource instance
        """
        env_values: dict[str, Any] = {}
        for attr_name, field_info in SettingsResource.model_fields.items():
            raw = os.environ.get(attr_name.upper())
            if raw is None:
                continue
            target = _scalar_type(field_info.annotation)
            try:
                if target is bool:
                    env_values[attr_name] = raw.strip().lower() in _TRUTHY
                elif target is int:
                    env_values[attr_name] = int(raw) if raw else None
                elif target is float:
                    env_values[attr_name] = float(raw) if raw else None
                else:
                    env_values[attr_name] = raw or None
            except ValueError:
                if not swallow_errors:
                    raise ValueError(f"Invalid value for {attr_name.upper()}: {raw!r}") from None

        try:
            settings = SettingsResource(**env_values)
            settings.validate_settings()
        except ValueError:
            if not swallow_errors:
                raise
            return SettingsResource()
        return settings

    def gdal_options(self) -> dict[str, Any]:
        """GDAL configuration options for range-read access to remote rasters.

        :returns: Options for ``rasterio.Env``
        """
        return {
            "GDAL_DISABLE_READDIR_ON_OPEN": "EMPTY_DIR",
            "CPL_VSIL_CURL_ALLOWED_EXTENSIONS": self.vsicurl_allowed_extensions,
            "GDAL_HTTP_TIMEOUT": self.gdal_http_timeout,
            "GDAL_HTTP_MERGE_CONSECUTIVE_RANGES": "YES",
            "GDAL_HTTP_MULTIPLEX": "YES",
        }

    def validate_settings(self) -> None:
        """Validate value ranges."""
        if self.max_workers is None or self.max_workers < 1:
            raise ValueError(f"MAX_WORKERS must be >= 1, got {self.max_workers}")
        if self.request_timeout is not None and self.request_timeout <= 0:
            raise ValueError(f"REQUEST_TIMEOUT must be positive, got {self.request_timeout}")
