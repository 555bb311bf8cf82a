import threading
from pathlib import Path

import numpy as np
import pytest
import rasterio
from affine import Affine
from numpy.typing import NDArray
from shapely.geometry import Point, Polygon, mapping

from stac_extraction.errors import ExtractionError
from stac_extraction.geospatial import raster_ops


def _write_geotiff(
    path: Path,
    data: NDArray[np.floating],
    crs: str = "EPSG:4326",
    transform: Affine | None = None,
    nodata: float | None = None,
) -> str:
    """
    Helper function to write a GeoTIFF file for testing.

    Args:
      path: Path to write the GeoTIFF
      data: NumPy array with raster data
      crs: Coordinate reference system
      transform: Affine transform (defaults to one-degree pixels from (0, 0) going south)
      nodata: Optional nodata value

    Returns:
      Path as string
    """
    height, width = data.shape
    transform = transform or Affine.translation(0, 0) * Affine.scale(1, -1)
    with rasterio.open(
        path,
        "w",
        driver="GTiff",
        height=height,
        width=width,
        count=1,
        dtype=data.dtype,
        crs=crs,
        transform=transform,
        nodata=nodata,
    ) as dst:
        dst.write(data, 1)
    return str(path)


def _square(x0: float, y0: float, x1: float, y1: float) -> Polygon:
    return Polygon([(x0, y0), (x1, y0), (x1, y1), (x0, y1), (x0, y0)])


def test_extract_point_is_order_matched(tmp_path: Path) -> None:
    """
    Test that point values come back in URL order, whatever the worker count.
    """
    data = np.array([[1, 2], [3, 4]], dtype="float32")
    first = _write_geotiff(tmp_path / "first.tif", data)
    second = _write_geotiff(tmp_path / "second.tif", data * 10)

    result = raster_ops.extract_point([first, second], lon=1.5, lat=-0.5, max_workers=2)
    assert result.values == [2.0, 20.0]
    assert result.columns == ["value"]

    reversed_result = raster_ops.extract_point([second, first], lon=0.5, lat=-1.5, max_workers=2)
    assert reversed_result.values == [30.0, 3.0]


def test_extract_point_outside_coverage_gives_none(tmp_path: Path) -> None:
    data = np.ones((2, 2), dtype="float32")
    first = _write_geotiff(tmp_path / "first.tif", data)
    second = _write_geotiff(tmp_path / "second.tif", data)

    result = raster_ops.extract_point([first, second], lon=10.0, lat=10.0)
    assert result.values == [None, None]
    assert result.failures == []


def test_extract_point_nodata_gives_none(tmp_path: Path) -> None:
    data = np.array([[-9999, 5]], dtype="float32")
    url = _write_geotiff(tmp_path / "nodata.tif", data, nodata=-9999)

    assert raster_ops.extract_point([url], lon=0.5, lat=-0.5).values == [None]
    assert raster_ops.extract_point([url], lon=1.5, lat=-0.5).values == [5.0]


def test_extract_point_reprojects_coordinate(tmp_path: Path) -> None:
    """
    Test that a lon/lat point is reprojected into the raster's own CRS.
    """
    data = np.array([[1, 2], [3, 4]], dtype="float32")
    transform = Affine.translation(0, 0) * Affine.scale(100_000, -100_000)
    url = _write_geotiff(tmp_path / "mercator.tif", data, crs="EPSG:3857", transform=transform)

    assert raster_ops.extract_point([url], lon=0.5, lat=-0.5).values == [1.0]
    assert raster_ops.extract_point([url], lon=1.5, lat=-1.5).values == [4.0]


def test_extract_point_unopenable_layer_is_reported(tmp_path: Path) -> None:
    """
    Test that a layer that cannot be opened becomes a failure without dropping others.
    """
    good = _write_geotiff(tmp_path / "good.tif", np.full((2, 2), 7, dtype="float32"))
    missing = str(tmp_path / "missing.tif")

    result = raster_ops.extract_point([missing, good], lon=0.5, lat=-0.5)

    assert result.values == [None, 7.0]
    assert len(result.failures) == 1
    assert result.failures[0].index == 0
    assert result.failures[0].error == "ExtractionError"
    with pytest.raises(ExtractionError):
        result.raise_for_failures()


def test_extract_point_invalid_crs_raises(tmp_path: Path) -> None:
    url = _write_geotiff(tmp_path / "a.tif", np.ones((2, 2), dtype="float32"))
    with pytest.raises(ExtractionError, match="spatial reference"):
        raster_ops.extract_point([url], lon=0.5, lat=-0.5, crs="EPSG:999999")


def test_extract_zonal_weights_partial_pixels(tmp_path: Path) -> None:
    """
    Test fractional coverage weighting at the polygon boundary.

    The polygon covers the first pixel fully and half of the second one.
    """
    url = _write_geotiff(tmp_path / "row.tif", np.array([[0, 10]], dtype="float32"))
    polygon = _square(0, -1, 1.5, 0)

    mean = raster_ops.extract_zonal([url], polygon, "mean")
    assert mean.columns == ["mean"]
    np.testing.assert_allclose(mean.values[0], 10 * 0.5 / 1.5)

    np.testing.assert_allclose(raster_ops.extract_zonal([url], polygon, "sum").values[0], 5.0)
    np.testing.assert_allclose(raster_ops.extract_zonal([url], polygon, "count").values[0], 1.5)
    assert raster_ops.extract_zonal([url], mapping(polygon), "max").values == [10.0]


def test_extract_zonal_quantile_of_constant_raster(tmp_path: Path) -> None:
    url = _write_geotiff(tmp_path / "constant.tif", np.full((4, 4), 7.25, dtype="float32"))
    triangle = Polygon([(0.2, -0.3), (3.7, -0.5), (1.1, -3.9), (0.2, -0.3)])

    result = raster_ops.extract_zonal([url], triangle, "quantile", quantiles=[0.5])
    assert result.columns == ["q50"]
    assert result.values == [7.25]


def test_extract_zonal_quantile_matrix_shape(tmp_path: Path) -> None:
    """
    Test 22 time-ordered layers and 11 quantiles produce a 22 x 11 matrix.

    Verifies column order follows the quantile input order.
    """
    urls = [
        _write_geotiff(tmp_path / f"layer_{year}.tif", np.full((3, 3), year, dtype="float32"))
        for year in range(2000, 2022)
    ]
    quantiles = [round(0.02 + 0.01 * i, 2) for i in range(11)]
    polygon = _square(0.5, -2.5, 2.5, -0.5)

    result = raster_ops.extract_zonal(urls, polygon, "quantile", quantiles=quantiles, max_workers=4)

    df = result.to_dataframe()
    assert df.shape == (22, 11)
    assert list(df.columns) == ["q02", "q03", "q04", "q05", "q06", "q07", "q08", "q09", "q10", "q11", "q12"]
    assert list(df.index) == urls
    np.testing.assert_allclose(df["q02"].to_numpy(), np.arange(2000, 2022))


def test_extract_zonal_non_intersecting_layer_is_reported(tmp_path: Path) -> None:
    inside = _write_geotiff(tmp_path / "inside.tif", np.ones((2, 2), dtype="float32"))
    far = _write_geotiff(
        tmp_path / "far.tif",
        np.ones((2, 2), dtype="float32"),
        transform=Affine.translation(50, 50) * Affine.scale(1, -1),
    )

    result = raster_ops.extract_zonal([inside, far], _square(0, -2, 2, 0), "mean")
    assert result.values == [1.0, None]
    assert result.failures[0].index == 1
    assert "does not intersect" in result.failures[0].message


def test_extract_zonal_reads_only_the_geometry_window(tmp_path: Path) -> None:
    """
    Test that the read window is bounded by the geometry, not the whole raster.
    """
    url = _write_geotiff(tmp_path / "large.tif", np.zeros((1000, 1000), dtype="float32"))
    with rasterio.open(url) as src:
        window = raster_ops._geometry_window(_square(10.2, -12.8, 11.5, -11.1).bounds, src)
    assert window is not None
    assert (window.col_off, window.row_off, window.width, window.height) == (10, 11, 2, 2)


@pytest.mark.parametrize(
    "geometry, stat_fn, kwargs",
    [
        (Point(0.5, -0.5), "mean", {}),
        (_square(0, -1, 1, 0), "mode", {}),
        (_square(0, -1, 1, 0), "quantile", {}),
        (_square(0, -1, 1, 0), "quantile", {"quantiles": [1.5]}),
        (_square(0, -1, 1, 0), "mean", {"crs": "not-a-crs"}),
        ("POLYGON", "mean", {}),
    ],
)
def test_extract_zonal_structural_errors_raise(tmp_path: Path, geometry: object, stat_fn: str, kwargs: dict) -> None:
    url = _write_geotiff(tmp_path / "a.tif", np.ones((2, 2), dtype="float32"))
    with pytest.raises(ExtractionError):
        raster_ops.extract_zonal([url], geometry, stat_fn, **kwargs)


def test_extraction_cancelled_before_start(tmp_path: Path) -> None:
    url = _write_geotiff(tmp_path / "a.tif", np.ones((2, 2), dtype="float32"))
    cancel = threading.Event()
    cancel.set()

    result = raster_ops.extract_point([url, url], lon=0.5, lat=-0.5, cancel_event=cancel)
    assert result.values == [None, None]
    assert [f.error for f in result.failures] == ["cancelled", "cancelled"]


def test_extraction_default_settings_from_environment(tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> None:
    url = _write_geotiff(tmp_path / "a.tif", np.ones((2, 2), dtype="float32"))
    monkeypatch.setenv("MAX_WORKERS", "3")
    seen: list[int] = []
    run_ordered = raster_ops.run_ordered

    def _spy(func, units, max_workers=1, cancel_event=None):  # type: ignore[no-untyped-def]
        seen.append(max_workers)
        return run_ordered(func, units, max_workers=max_workers, cancel_event=cancel_event)

    monkeypatch.setattr(raster_ops, "run_ordered", _spy)

    assert raster_ops.extract_point([url], lon=0.5, lat=-0.5).values == [1.0]
    assert raster_ops.extract_zonal([url], _square(0, -2, 2, 0), "mean").values == [1.0]
    assert seen == [3, 3]
