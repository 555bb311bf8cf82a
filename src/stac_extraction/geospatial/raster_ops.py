"""Point sampling and zonal statistics over remote cloud-optimized rasters."""

import math
import threading
from collections.abc import Sequence
from typing import Any

import numpy as np
import rasterio
import rasterio.warp
from dagster import get_dagster_logger
from rasterio.crs import CRS
from rasterio.errors import CRSError, RasterioError
from rasterio.windows import Window, from_bounds
from shapely.errors import ShapelyError
from shapely.geometry import mapping, shape

from stac_extraction.batch import run_ordered, split_outcomes
from stac_extraction.config.constants import DEFAULT_GEOMETRY_CRS
from stac_extraction.connectors.settings import SettingsResource
from stac_extraction.errors import ExtractionError
from stac_extraction.geospatial.zonal_stats import coverage_fractions, summarize, validate_stat
from stac_extraction.models.models import ExtractionResult

logger = get_dagster_logger(__name__)

_POLYGONAL = ("Polygon", "MultiPolygon")


def _get_geom_dict(geometry: Any) -> dict[str, Any]:
    """Convert geometry to dictionary format.

    :param geometry: GeoJSON geometry dict or shapely object
    :returns: Geometry dictionary
    """
    if isinstance(geometry, dict):
        return geometry
    if hasattr(geometry, "__geo_interface__"):
        return dict(mapping(geometry))
    raise ExtractionError(f"Unsupported geometry input of type {type(geometry).__name__}")


def _resolve_crs(crs: Any) -> CRS:
    try:
        return CRS.from_user_input(crs)
    except CRSError as e:
        raise ExtractionError(f"Unresolvable spatial reference {crs!r}: {e}") from e


def _open(url: str) -> Any:
    try:
        return rasterio.open(url)
    except RasterioError as e:
        raise ExtractionError(f"Cannot open raster {url}: {e}") from e


def _native_crs(src: Any, url: str) -> CRS:
    if src.crs is None:
        raise ExtractionError(f"Raster {url} has no spatial reference")
    return src.crs


def _sample_point(src: Any, url: str, x: float, y: float, crs: CRS) -> float | None:
    """Value of the pixel covering (x, y), or None outside coverage or on nodata."""
    native = _native_crs(src, url)
    if native != crs:
        xs, ys = rasterio.warp.transform(crs, native, [x], [y])
        x, y = xs[0], ys[0]
    if not (math.isfinite(x) and math.isfinite(y)):
        return None

    row, col = src.index(x, y)
    if not (0 <= row < src.height and 0 <= col < src.width):
        return None

    data = src.read(1, window=Window(col, row, 1, 1), masked=True)
    if np.ma.is_masked(data):
        return None
    value = float(data[0, 0])
    return None if math.isnan(value) else value


def _geometry_window(bounds: tuple[float, float, float, float], src: Any) -> Window | None:
    """Pixel window covering bounds, clipped to the raster; None when disjoint."""
    window = from_bounds(*bounds, transform=src.transform)
    col0 = max(0, math.floor(window.col_off))
    row0 = max(0, math.floor(window.row_off))
    col1 = min(src.width, math.ceil(window.col_off + window.width))
    row1 = min(src.height, math.ceil(window.row_off + window.height))
    if col1 <= col0 or row1 <= row0:
        return None
    return Window(col0, row0, col1 - col0, row1 - row0)


def _zonal_values(
    src: Any,
    url: str,
    geom_dict: dict[str, Any],
    crs: CRS,
    stat_fn: str,
    quantiles: Sequence[float] | None,
) -> list[float]:
    native = _native_crs(src, url)
    native_geom = shape(rasterio.warp.transform_geom(src_crs=crs, dst_crs=native, geom=geom_dict))

    window = _geometry_window(native_geom.bounds, src)
    if window is None:
        raise ExtractionError(f"Geometry does not intersect raster {url}")

    data = src.read(1, window=window, masked=True)
    fractions = coverage_fractions(native_geom, data.shape, src.window_transform(window))
    try:
        return summarize(data, fractions, stat_fn, quantiles)
    except ExtractionError as e:
        raise ExtractionError(f"{e} in raster {url}") from e


def _run_layers(
    urls: Sequence[str],
    read_layer: Any,
    columns: list[str],
    settings: SettingsResource,
    max_workers: int | None,
    cancel_event: threading.Event | None,
) -> ExtractionResult:
    """Open each URL in a scoped GDAL environment and collect ordered rows."""
    gdal_options = settings.gdal_options()

    def _layer(url: str) -> list[float | None]:
        with rasterio.Env(**gdal_options):
            with _open(url) as src:
                try:
                    return read_layer(src, url)
                except RasterioError as e:
                    raise ExtractionError(f"Error reading raster {url}: {e}") from e
                except CRSError as e:
                    raise ExtractionError(f"Cannot reproject into the CRS of {url}: {e}") from e

    workers = max_workers if max_workers is not None else settings.max_workers
    outcomes = run_ordered(_layer, list(urls), max_workers=workers, cancel_event=cancel_event)
    values, failures = split_outcomes(outcomes, list(urls))
    rows = [list(value) if value is not None else [None] * len(columns) for value in values]

    logger.info(f"Extracted {len(urls) - len(failures)} of {len(urls)} layer(s), {len(failures)} failure(s)")
    return ExtractionResult(urls=list(urls), columns=columns, rows=rows, failures=failures)


def extract_point(
    urls: Sequence[str],
    lon: float,
    lat: float,
    crs: Any = DEFAULT_GEOMETRY_CRS,
    settings: SettingsResource | None = None,
    max_workers: int | None = None,
    cancel_event: threading.Event | None = None,
) -> ExtractionResult:
    """Sample each layer at one coordinate.

    A coordinate outside a layer's coverage, or on a nodata pixel, gives ``None`` for
    that layer. Layers that cannot be opened are recorded as failures.

    :param urls: Layer URLs, one per item
    :param lon: X coordinate, longitude for the default CRS
    :param lat: Y coordinate, latitude for the default CRS
    :param crs: CRS of the coordinate
    :param settings: Settings resource
    :param max_workers: Worker pool bound
    :param cancel_event: Event stopping layers not yet started
    :returns: ExtractionResult with one ``value`` column
    :raises ExtractionError: If the CRS cannot be resolved or coordinates are invalid
    """
    point_crs = _resolve_crs(crs)
    try:
        x, y = float(lon), float(lat)
    except (TypeError, ValueError) as e:
        raise ExtractionError(f"Invalid coordinate ({lon!r}, {lat!r})") from e
    if not (math.isfinite(x) and math.isfinite(y)):
        raise ExtractionError(f"Invalid coordinate ({lon!r}, {lat!r})")

    def _read(src: Any, url: str) -> list[float | None]:
        return [_sample_point(src, url, x, y, point_crs)]

    settings = settings or SettingsResource.create(swallow_errors=True)
    return _run_layers(urls, _read, ["value"], settings, max_workers, cancel_event)


def extract_zonal(
    urls: Sequence[str],
    geometry: Any,
    stat_fn: str = "mean",
    quantiles: Sequence[float] | None = None,
    crs: Any = DEFAULT_GEOMETRY_CRS,
    settings: SettingsResource | None = None,
    max_workers: int | None = None,
    cancel_event: threading.Event | None = None,
) -> ExtractionResult:
    """Coverage-weighted statistic of each layer over a polygon.

    Pixels straddling the polygon boundary contribute in proportion to their covered
    area. Only the window around the polygon is read from each layer.

    :param urls: Layer URLs, one per item
    :param geometry: Polygon or MultiPolygon, GeoJSON dict or shapely object
    :param stat_fn: One of mean, sum, count, min, max, median, stdev, quantile
    :param quantiles: Probabilities in [0, 1], required for ``quantile``
    :param crs: CRS of the geometry
    :param settings: Settings resource
    :param max_workers: Worker pool bound
    :param cancel_event: Event stopping layers not yet started
    :returns: ExtractionResult, one column per statistic or quantile
    :raises ExtractionError: On invalid geometry, CRS or statistic
    """
    columns = validate_stat(stat_fn, quantiles)
    geom_crs = _resolve_crs(crs)
    geom_dict = _get_geom_dict(geometry)
    if geom_dict.get("type") not in _POLYGONAL:
        raise ExtractionError(f"Zonal extraction needs a Polygon or MultiPolygon, got {geom_dict.get('type')}")
    try:
        valid = shape(geom_dict).is_valid
    except (ShapelyError, ValueError, TypeError, AttributeError, KeyError) as e:
        raise ExtractionError(f"Malformed geometry: {e}") from e
    if not valid:
        raise ExtractionError("Zonal extraction geometry is not valid")

    probabilities = [float(p) for p in quantiles] if stat_fn == "quantile" and quantiles else None

    def _read(src: Any, url: str) -> list[float | None]:
        return list(_zonal_values(src, url, geom_dict, geom_crs, stat_fn, probabilities))

    settings = settings or SettingsResource.create(swallow_errors=True)
    return _run_layers(urls, _read, columns, settings, max_workers, cancel_event)
