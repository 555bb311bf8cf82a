"""Link resolution: fetch a linked document and parse it into a typed node."""

import json
from typing import Any

from dagster import get_dagster_logger

from stac_extraction.connectors.http_client import DocumentClient
from stac_extraction.connectors.settings import SettingsResource
from stac_extraction.errors import ParseError
from stac_extraction.models.models import Link, Node, parse_document

logger = get_dagster_logger(__name__)

_DEFAULT: Any = object()


def decode_document(content: bytes, source_url: str) -> Any:
    """Decode JSON bytes.

    :param content: Raw document bytes
    :param source_url: URL used in error messages
    :returns: Decoded JSON value
    :raises ParseError: If content is not valid UTF-8 JSON
    """
    try:
        return json.loads(content.decode("utf-8"))
    except (UnicodeDecodeError, json.JSONDecodeError) as e:
        raise ParseError(f"Malformed JSON document at {source_url}: {e}") from e


class LinkResolver:
    """Resolve links and URLs into Catalog, Collection or Item nodes.

    :param client: Document client; created from settings when omitted
    :param settings: Settings resource
    """

    def __init__(self, client: DocumentClient | None = None, settings: SettingsResource | None = None) -> None:
        self.settings = settings or (client.settings if client else SettingsResource.create(swallow_errors=True))
        self.client = client or DocumentClient(settings=self.settings)

    def open_url(self, url: str, timeout: float | None = _DEFAULT) -> Node:
        """Fetch and parse the document at an absolute URL.

        :param url: Document URL or local path
        :param timeout: Per-call timeout in seconds
        :returns: Parsed node carrying ``url`` as its source URL
        :raises FetchError: On network or HTTP failure
        :raises ParseError: On malformed content
        """
        if timeout is _DEFAULT:
            content = self.client.fetch(url)
        else:
            content = self.client.fetch(url, timeout=timeout)
        node = parse_document(decode_document(content, url), source_url=url)
        logger.debug(f"Resolved {type(node).__name__} '{node.id}' from {url}")
        return node

    def open(self, link: Link, timeout: float | None = _DEFAULT) -> Node:
        """Resolve a link relative to its owning document.

        :param link: Link to resolve
        :param timeout: Per-call timeout in seconds
        :returns: Parsed node
        """
        return self.open_url(link.absolute_href, timeout=timeout)

    def close(self) -> None:
        self.client.close()

    def __enter__(self) -> "LinkResolver":
        return self

    def __exit__(self, *exc_info: Any) -> None:
        self.close()


def open_catalog(url: str, resolver: LinkResolver | None = None, timeout: float | None = _DEFAULT) -> Node:
    """Load a catalog root.

    :param url: Catalog URL
    :param resolver: Optional resolver to reuse, left open; an own resolver is closed before returning
    :param timeout: Per-call timeout in seconds
    :returns: Parsed root node
    """
    if resolver is not None:
        return resolver.open_url(url, timeout=timeout)
    with LinkResolver() as owned:
        return owned.open_url(url, timeout=timeout)
