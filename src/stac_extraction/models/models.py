"""Data models for catalog documents, feature collections and extraction results."""

import posixpath
from datetime import datetime as dt
from functools import lru_cache
from typing import Any
from urllib.parse import urljoin, urlparse, uses_relative

import geopandas as gpd
import pandas as pd
from jsonpath_ng.ext import parse
from pydantic import BaseModel, ConfigDict, Field as PydanticField, PrivateAttr, ValidationError, model_validator
from shapely.geometry import shape

from stac_extraction.errors import ParseError, StacExtractionError


def resolve_href(href: str, base_url: str | None) -> str:
    """Resolve an href against the URL of the document that owns it.

    :param href: Absolute URL, absolute path or relative path
    :param base_url: Source URL of the owning document
    :returns: Absolute href
    :raises ParseError: If the href or base URL cannot be parsed
    """
    try:
        if not base_url or urlparse(href).scheme or href.startswith("/"):
            return href
        base = urlparse(base_url)
        if not base.scheme or base.scheme in uses_relative:
            return urljoin(base_url, href)
    except ValueError as e:
        raise ParseError(f"Malformed href {href!r}: {e}") from e
    # urljoin leaves unknown schemes (s3, gs, az) alone
    path = posixpath.normpath(posixpath.join(posixpath.dirname(base.path), href))
    return base._replace(path=path, query="", fragment="").geturl()


@lru_cache(maxsize=256)
def _compile_path(name: str) -> Any:
    quoted = ".".join(f"'{part}'" for part in name.split("."))
    return parse(f"$.{quoted}")


def lookup_field(fields: dict[str, Any], name: str) -> tuple[bool, Any]:
    """Look up a possibly dotted field name in a field bag.

    :param fields: Field mapping
    :param name: Field name, e.g. ``title`` or ``properties.eo:cloud_cover``
    :returns: Tuple of (found, value)
    """
    if name in fields:
        return True, fields[name]
    if "." not in name:
        return False, None
    matches = _compile_path(name).find(fields)
    if not matches:
        return False, None
    return True, matches[0].value


class StacObject(BaseModel):
    """Base model keeping every undeclared document field as an extra."""

    model_config = ConfigDict(extra="allow", frozen=True, populate_by_name=True)

    def fields(self) -> dict[str, Any]:
        """Field bag exposed to predicates: declared fields by wire name plus extras."""
        return self.model_dump(by_alias=True)

    def field(self, name: str, default: Any = None) -> Any:
        """Typed accessor for a declared, extra or dotted field.

        :param name: Field name
        :param default: Returned when the field is missing or null
        :returns: Field value
        """
        found, value = lookup_field(self.fields(), name)
        return value if found and value is not None else default

    @property
    def extra_fields(self) -> dict[str, Any]:
        return dict(self.__pydantic_extra__ or {})


class Link(StacObject):
    """Typed reference from a document to another resource.

    :param href: URL or relative path
    :param rel: Relation kind
    :param title: Optional title
    :param media_type: Optional media type (``type`` on the wire)
    """

    href: str = PydanticField(..., description="URL or path relative to the owning document")
    rel: str = PydanticField(..., description="Relation kind, e.g. child, item, self")
    title: str | None = PydanticField(default=None, description="Human readable title")
    media_type: str | None = PydanticField(default=None, alias="type", description="Media type of the target")

    _base_url: str | None = PrivateAttr(default=None)

    @property
    def absolute_href(self) -> str:
        return resolve_href(self.href, self._base_url)


class Asset(StacObject):
    """Named pointer to a retrievable resource owned by an Item.

    :param name: Asset key within the owning item
    :param href: URL or relative path
    :param media_type: Media type (``type`` on the wire)
    :param roles: Role tags such as data, thumbnail, metadata
    """

    name: str = PydanticField(..., description="Asset key in the owning item")
    href: str = PydanticField(..., description="URL or path relative to the owning item")
    title: str | None = PydanticField(default=None, description="Human readable title")
    media_type: str | None = PydanticField(default=None, alias="type", description="Media type")
    roles: list[str] = PydanticField(default_factory=list, description="Role tags")

    _base_url: str | None = PrivateAttr(default=None)

    @property
    def absolute_href(self) -> str:
        return resolve_href(self.href, self._base_url)


class Node(StacObject):
    """Common shape of parsed documents."""

    id: str = PydanticField(..., description="Document identifier")
    links: list[Link] = PydanticField(..., description="Ordered links of the document")

    _source_url: str | None = PrivateAttr(default=None)

    @property
    def source_url(self) -> str | None:
        """URL the document was read from, or its self link."""
        if self._source_url:
            return self._source_url
        for link in self.links:
            if link.rel == "self":
                return link.href
        return None

    def attach_source(self, source_url: str | None) -> None:
        """Record the source URL and propagate it to owned links."""
        self._source_url = source_url
        base_url = self.source_url
        for link in self.links:
            link._base_url = base_url


class Catalog(Node):
    """Root or intermediate catalog document."""

    stac_type: str | None = PydanticField(default="Catalog", alias="type")
    description: str = PydanticField(default="", description="Catalog description")
    title: str | None = PydanticField(default=None, description="Catalog title")


class Collection(Catalog):
    """Themed dataset with optional spatial and temporal extent."""

    stac_type: str | None = PydanticField(default="Collection", alias="type")
    license: str | None = PydanticField(default=None, description="License identifier")
    extent: dict[str, Any] | None = PydanticField(default=None, description="Spatial and temporal extent")

    @property
    def spatial_bbox(self) -> list[list[float]] | None:
        return (self.extent or {}).get("spatial", {}).get("bbox")

    @property
    def temporal_interval(self) -> list[list[str | None]] | None:
        return (self.extent or {}).get("temporal", {}).get("interval")


class Item(Node):
    """Single spatio-temporal observation with its assets."""

    stac_type: str | None = PydanticField(default="Feature", alias="type")
    geometry: dict[str, Any] | None = PydanticField(default=None, description="GeoJSON geometry")
    bbox: list[float] | None = PydanticField(default=None, description="Bounding box")
    properties: dict[str, Any] = PydanticField(default_factory=dict, description="Item properties")
    assets: dict[str, Asset] = PydanticField(default_factory=dict, description="Assets by name")
    collection: str | None = PydanticField(default=None, description="Parent collection id")

    @model_validator(mode="before")
    @classmethod
    def _name_assets(cls, data: Any) -> Any:
        if isinstance(data, dict) and isinstance(data.get("assets"), dict):
            assets = {}
            for name, asset in data["assets"].items():
                assets[name] = {**asset, "name": name} if isinstance(asset, dict) else asset
            data = {**data, "assets": assets}
        return data

    def attach_source(self, source_url: str | None) -> None:
        super().attach_source(source_url)
        for asset in self.assets.values():
            asset._base_url = self.source_url

    def fields(self) -> dict[str, Any]:
        """Field bag with item properties lifted to the top level."""
        fields = super().fields()
        for key, value in self.properties.items():
            fields.setdefault(key, value)
        return fields

    @property
    def datetime(self) -> dt | None:
        value = self.properties.get("datetime")
        if not value:
            return None
        try:
            return dt.fromisoformat(str(value).replace("Z", "+00:00"))
        except ValueError:
            return None

    @property
    def shape(self) -> Any:
        return shape(self.geometry) if self.geometry else None

    def assets_with_role(self, role: str) -> list[Asset]:
        """Assets carrying the given role, in document order."""
        return [asset for asset in self.assets.values() if role in asset.roles]

    def to_feature(self) -> dict[str, Any]:
        """GeoJSON feature dictionary of this item."""
        feature = self.model_dump(by_alias=True, exclude={"assets": {"__all__": {"name"}}})
        feature["type"] = "Feature"
        return feature


class UnitFailure(BaseModel):
    """Failure of one unit of work inside a batch call.

    :param index: Position of the unit in the batch input
    :param href: Link href or layer URL of the unit
    :param error: Exception class name, or ``cancelled``
    :param message: Error message
    """

    index: int = PydanticField(..., description="Position of the unit in the batch input")
    href: str = PydanticField(..., description="Href or URL of the failed unit")
    error: str = PydanticField(..., description="Exception class name")
    message: str = PydanticField(default="", description="Error message")

    _exception: BaseException | None = PrivateAttr(default=None)

    @classmethod
    def from_exception(cls, index: int, href: str, exc: BaseException) -> "UnitFailure":
        failure = cls(index=index, href=href, error=type(exc).__name__, message=str(exc))
        failure._exception = exc
        return failure

    @property
    def exception(self) -> BaseException | None:
        return self._exception


class _BatchReport(BaseModel):
    failures: list[UnitFailure] = PydanticField(default_factory=list, description="Per-unit failures")

    @property
    def failure_count(self) -> int:
        return len(self.failures)

    def raise_for_failures(self) -> None:
        """Re-raise the first captured failure, if any."""
        if not self.failures:
            return
        first = self.failures[0]
        if first.exception is not None:
            raise first.exception
        raise StacExtractionError(f"{first.error}: {first.href} {first.message}".strip())


class FeatureCollection(_BatchReport):
    """Ordered items resolved from one or more collections.

    :param items: Successfully resolved items in link order
    :param failures: Links that could not be resolved
    """

    items: list[Item] = PydanticField(default_factory=list, description="Resolved items in link order")

    def __len__(self) -> int:
        return len(self.items)

    def __iter__(self):  # type: ignore[override]
        return iter(self.items)

    def __getitem__(self, index: int) -> Item:
        return self.items[index]

    def to_dict(self) -> dict[str, Any]:
        """GeoJSON FeatureCollection dictionary."""
        return {"type": "FeatureCollection", "features": [item.to_feature() for item in self.items]}

    def to_geodataframe(self) -> gpd.GeoDataFrame:
        """One row per item with id, datetime, properties and geometry.

        :returns: GeoDataFrame in EPSG:4326
        """
        rows = []
        for item in self.items:
            row: dict[str, Any] = {"id": item.id, "collection": item.collection}
            row.update(item.properties)
            row["datetime"] = item.datetime
            row["geometry"] = item.shape
            rows.append(row)
        if not rows:
            return gpd.GeoDataFrame(columns=["id", "geometry"], geometry="geometry", crs="EPSG:4326")
        return gpd.GeoDataFrame(rows, geometry="geometry", crs="EPSG:4326")


class ExtractionResult(_BatchReport):
    """Per-layer extraction output, one row per input URL.

    :param urls: Layer URLs in input order
    :param columns: Column names, e.g. ``value``, ``mean`` or ``q02`` ... ``q12``
    :param rows: One row per URL; rows of failed layers hold ``None``
    """

    urls: list[str] = PydanticField(..., description="Layer URLs in input order")
    columns: list[str] = PydanticField(..., description="Column names")
    rows: list[list[float | None]] = PydanticField(..., description="One row per URL")

    @property
    def values(self) -> list[float | None] | list[list[float | None]]:
        """Flat list for single-column results, else the row matrix."""
        if len(self.columns) == 1:
            return [row[0] for row in self.rows]
        return [list(row) for row in self.rows]

    def to_dataframe(self) -> pd.DataFrame:
        """Result matrix with one row per URL and named columns."""
        return pd.DataFrame(self.rows, columns=self.columns, index=pd.Index(self.urls, name="url"), dtype="float64")


_NODE_TYPES: dict[str, type[Node]] = {
    "catalog": Catalog,
    "collection": Collection,
    "feature": Item,
}


def _detect_node_type(data: dict[str, Any]) -> type[Node]:
    declared = data.get("type")
    if isinstance(declared, str) and declared.lower() in _NODE_TYPES:
        return _NODE_TYPES[declared.lower()]
    if "extent" in data:
        return Collection
    if "assets" in data or "geometry" in data:
        return Item
    return Catalog


def parse_document(data: Any, source_url: str | None = None) -> Node:
    """Build the typed node for a decoded document.

    :param data: Decoded JSON document
    :param source_url: URL the document was read from
    :returns: Catalog, Collection or Item
    :raises ParseError: If required fields are missing or malformed
    """
    where = f" at {source_url}" if source_url else ""
    if not isinstance(data, dict):
        raise ParseError(f"Expected a JSON object{where}, got {type(data).__name__}")

    node_type = _detect_node_type(data)
    try:
        node = node_type.model_validate(data)
    except ValidationError as e:
        problems = "; ".join(f"{'.'.join(str(p) for p in err['loc'])}: {err['msg']}" for err in e.errors())
        raise ParseError(f"Invalid {node_type.__name__} document{where}: {problems}") from e
    node.attach_source(source_url)
    return node
