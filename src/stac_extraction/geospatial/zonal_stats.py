"""Fractional pixel coverage and coverage-weighted statistics."""

from collections.abc import Callable, Sequence
from typing import Any

import numpy as np
import shapely
from affine import Affine
from numpy.typing import NDArray

from stac_extraction.errors import ExtractionError


def coverage_fractions(geometry: Any, shape: tuple[int, int], transform: Affine) -> NDArray[np.floating]:
    """Fraction of each pixel's area covered by a polygon.

    A pixel straddling the boundary gets its covered share instead of 0 or 1.

    :param geometry: Shapely polygon or multipolygon in the raster CRS
    :param shape: (rows, cols) of the pixel grid
    :param transform: Affine transform of the grid, north-up
    :returns: Array of fractions in [0, 1]
    """
    if transform.b != 0 or transform.d != 0:
        raise ExtractionError("Rotated raster grids are not supported for zonal extraction")

    rows, cols = shape
    col_idx, row_idx = np.meshgrid(np.arange(cols), np.arange(rows))
    x0 = transform.c + col_idx * transform.a
    y0 = transform.f + row_idx * transform.e
    x1 = x0 + transform.a
    y1 = y0 + transform.e
    boxes = shapely.box(np.minimum(x0, x1), np.minimum(y0, y1), np.maximum(x0, x1), np.maximum(y0, y1))

    shapely.prepare(geometry)
    fractions = np.zeros(shape, dtype="float64")
    touched = shapely.intersects(geometry, boxes)
    if np.any(touched):
        pixel_area = abs(transform.a * transform.e)
        covered = shapely.area(shapely.intersection(boxes[touched], geometry))
        fractions[touched] = np.clip(covered / pixel_area, 0.0, 1.0)
    return fractions


def weighted_quantiles(
    values: NDArray[np.floating], weights: NDArray[np.floating], probabilities: Sequence[float]
) -> list[float]:
    """Quantiles of weighted values.

    Cumulative positions are ``s_k = k * w_k + (n - 1) * sum(w_0 .. w_{k-1})`` over the
    sorted values; the quantile is the linear interpolation at ``p * s_{n-1}``. With
    equal weights this is the usual linear (type 7) quantile.

    :param values: Pixel values
    :param weights: Positive weights
    :param probabilities: Probabilities in [0, 1]
    :returns: One value per probability
    """
    order = np.argsort(values, kind="stable")
    x = values[order]
    w = weights[order]
    n = x.size
    if n == 1:
        return [float(x[0]) for _ in probabilities]
    preceding = np.concatenate(([0.0], np.cumsum(w)[:-1]))
    positions = np.arange(n) * w + (n - 1) * preceding
    return [float(np.interp(p * positions[-1], positions, x)) for p in probabilities]


def _mean(values: NDArray[np.floating], weights: NDArray[np.floating]) -> float:
    return float(np.sum(values * weights) / np.sum(weights))


def _stdev(values: NDArray[np.floating], weights: NDArray[np.floating]) -> float:
    mean = _mean(values, weights)
    return float(np.sqrt(np.sum(weights * (values - mean) ** 2) / np.sum(weights)))


SCALAR_STATS: dict[str, Callable[[NDArray[np.floating], NDArray[np.floating]], float]] = {
    "mean": _mean,
    "sum": lambda values, weights: float(np.sum(values * weights)),
    "count": lambda values, weights: float(np.sum(weights)),
    "min": lambda values, weights: float(np.min(values)),
    "max": lambda values, weights: float(np.max(values)),
    "median": lambda values, weights: weighted_quantiles(values, weights, [0.5])[0],
    "stdev": _stdev,
}

STAT_NAMES = (*SCALAR_STATS, "quantile")


def quantile_column(probability: float) -> str:
    """Column name for a quantile: 0.02 -> ``q02``, 0.5 -> ``q50``, 0.025 -> ``q2.5``."""
    return "q" + format(probability * 100, "g").zfill(2)


def validate_stat(stat_fn: str, quantiles: Sequence[float] | None) -> list[str]:
    """Check the statistic request and return its column names.

    :param stat_fn: Statistic name
    :param quantiles: Probabilities, required for ``quantile``
    :returns: Result column names
    :raises ExtractionError: On unknown statistics or invalid probabilities
    """
    if stat_fn not in STAT_NAMES:
        raise ExtractionError(f"Unknown statistic {stat_fn!r}, expected one of {list(STAT_NAMES)}")
    if stat_fn != "quantile":
        return [stat_fn]
    if not quantiles:
        raise ExtractionError("The quantile statistic requires a non-empty 'quantiles' argument")
    for p in quantiles:
        if not 0.0 <= float(p) <= 1.0:
            raise ExtractionError(f"Quantile probabilities must be in [0, 1], got {p}")
    columns = [quantile_column(float(p)) for p in quantiles]
    if len(set(columns)) != len(columns):
        raise ExtractionError(f"Duplicate quantile probabilities: {list(quantiles)}")
    return columns


def summarize(
    values: NDArray[np.floating],
    fractions: NDArray[np.floating],
    stat_fn: str,
    quantiles: Sequence[float] | None = None,
) -> list[float]:
    """Coverage-weighted statistic over valid pixels.

    :param values: Pixel values, masked or NaN where invalid
    :param fractions: Coverage fraction of each pixel
    :param stat_fn: Statistic name
    :param quantiles: Probabilities for ``quantile``
    :returns: One value, or one per probability
    :raises ExtractionError: If no valid pixel is covered
    """
    data = np.ma.filled(np.ma.asarray(values, dtype="float64"), np.nan)
    keep = (fractions > 0) & ~np.isnan(data)
    if not np.any(keep):
        raise ExtractionError("Geometry covers no valid pixels")

    x = data[keep]
    w = fractions[keep]
    if stat_fn == "quantile":
        return weighted_quantiles(x, w, [float(p) for p in quantiles or []])
    return [SCALAR_STATS[stat_fn](x, w)]
