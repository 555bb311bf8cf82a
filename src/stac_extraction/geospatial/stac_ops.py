"""Asset URL materialization for remote raster reads."""

from collections.abc import Iterable
from urllib.parse import urlparse

from dagster import get_dagster_logger
from planetary_computer import sign

from stac_extraction.config.constants import VSI_PREFIXES
from stac_extraction.errors import AssetNotFoundError
from stac_extraction.models.models import Item

logger = get_dagster_logger(__name__)


def rewrite_url(url: str) -> str:
    """Prefix a URL with the GDAL virtual filesystem matching its scheme.

    ``https://host/a.tif`` becomes ``/vsicurl/https://host/a.tif`` and
    ``s3://bucket/a.tif`` becomes ``/vsis3/bucket/a.tif``. Paths already under
    ``/vsi`` and local paths are returned unchanged, so rewriting is idempotent.

    :param url: Asset URL
    :returns: URL readable with range requests by GDAL
    """
    if url.startswith("/vsi"):
        return url
    scheme = urlparse(url).scheme.lower()
    prefix = VSI_PREFIXES.get(scheme)
    if prefix is None:
        return url
    if prefix == "/vsicurl/":
        return f"{prefix}{url}"
    return f"{prefix}{url.split('://', 1)[1]}"


def assets_url(
    items: Iterable[Item],
    asset_name: str,
    rewrite_for_remote_read: bool = False,
    require_present: bool = False,
    sign_hrefs: bool = False,
) -> list[str]:
    """Resolve one asset URL per item, in item order.

    :param items: Items, e.g. a FeatureCollection
    :param asset_name: Asset key, e.g. ``B04`` or ``data``
    :param rewrite_for_remote_read: Prefix URLs for GDAL range reads
    :param require_present: Raise instead of skipping items without the asset
    :param sign_hrefs: Sign hrefs with Planetary Computer SAS tokens first
    :returns: Asset URLs
    :raises AssetNotFoundError: If ``require_present`` and an item lacks the asset
    """
    urls = []
    skipped = []
    for item in items:
        asset = item.assets.get(asset_name)
        if asset is None:
            if require_present:
                raise AssetNotFoundError(
                    f"Item '{item.id}' has no asset '{asset_name}'. Available: {list(item.assets)}"
                )
            skipped.append(item.id)
            continue
        href = asset.absolute_href
        if sign_hrefs:
            href = sign(href)
        if rewrite_for_remote_read:
            href = rewrite_url(href)
        urls.append(href)

    if skipped:
        logger.info(f"Asset '{asset_name}' missing on {len(skipped)} item(s): {skipped}")
    return urls
