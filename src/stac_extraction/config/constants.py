"""Defaults for fetching documents and reading remote rasters."""

DEFAULT_MAX_WORKERS = 4
DEFAULT_REQUEST_TIMEOUT: float | None = None
DEFAULT_GDAL_HTTP_TIMEOUT = 30
DEFAULT_VSICURL_ALLOWED_EXTENSIONS = ".tif,.tiff,.TIF,.TIFF"
DEFAULT_GEOMETRY_CRS = "EPSG:4326"

USER_AGENT = "stac-extraction/0.1"

# Scheme -> GDAL virtual filesystem prefix
VSI_PREFIXES: dict[str, str] = {
    "http": "/vsicurl/",
    "https": "/vsicurl/",
    "s3": "/vsis3/",
    "gs": "/vsigs/",
    "az": "/vsiaz/",
}

BATCH_CANCELLED = "cancelled"
