"""Exception taxonomy for catalog resolution and raster extraction."""


class StacExtractionError(Exception):
    """Base class for all errors raised by this package."""


class ParseError(StacExtractionError):
    """Document is malformed or misses required fields."""


class FetchError(StacExtractionError):
    """Document could not be fetched (network, HTTP status or timeout)."""


class FilterError(StacExtractionError):
    """Predicate expression is malformed."""


class ExtractionError(StacExtractionError):
    """Raster could not be opened or sampled for the given geometry."""


class CycleError(StacExtractionError):
    """Traversal reached a document that is one of its own ancestors."""


class AssetNotFoundError(StacExtractionError, KeyError):
    """Item does not carry the requested asset."""

    def __str__(self) -> str:
        return str(self.args[0]) if self.args else ""
