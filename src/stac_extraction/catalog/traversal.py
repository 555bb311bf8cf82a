"""Link projection, item materialization and recursive catalog walks."""

import threading
from collections.abc import Iterator, Sequence
from typing import Any

from dagster import get_dagster_logger

from stac_extraction.batch import run_ordered, split_outcomes
from stac_extraction.catalog.filters import F, compile_filter
from stac_extraction.catalog.resolver import LinkResolver
from stac_extraction.errors import CycleError, ParseError
from stac_extraction.models.models import FeatureCollection, Item, Link, Node

logger = get_dagster_logger(__name__)


def links(node: Node, *expressions: Any) -> list[Link]:
    """Links of a node satisfying every expression, in document order.

    No document is fetched.

    :param node: Catalog, Collection or Item
    :param expressions: Predicates over link fields, e.g. ``F("rel") == "child"``
    :returns: Matching links
    """
    test = compile_filter(*expressions)
    return [link for link in node.links if test(link)]


def child_links(node: Node, *expressions: Any) -> list[Link]:
    """Links with ``rel == "child"`` satisfying the extra expressions."""
    return links(node, F("rel") == "child", *expressions)


def item_links(node: Node, *expressions: Any) -> list[Link]:
    """Links with ``rel == "item"`` satisfying the extra expressions."""
    return links(node, F("rel") == "item", *expressions)


def _as_nodes(nodes: Node | Sequence[Node]) -> list[Node]:
    if isinstance(nodes, Node):
        return [nodes]
    return list(nodes)


def _failure_href(link: Link) -> str:
    try:
        return link.absolute_href
    except ParseError:
        return link.href


def read_items(
    nodes: Node | Sequence[Node],
    *expressions: Any,
    resolver: LinkResolver | None = None,
    max_workers: int | None = None,
    timeout: float | None = None,
    cancel_event: threading.Event | None = None,
) -> FeatureCollection:
    """Resolve matching item links of one or more nodes into a FeatureCollection.

    Item links are gathered node by node in document order. A link that fails to
    resolve, or resolves to something other than an Item, is recorded as a failure and
    the rest of the batch continues.

    :param nodes: Collection or sequence of collections to merge
    :param expressions: Extra predicates over item link fields
    :param resolver: Link resolver; when omitted one is created and closed before returning
    :param max_workers: Worker pool bound; defaults to the resolver settings
    :param timeout: Per-fetch timeout in seconds; defaults to the resolver settings
    :param cancel_event: Event stopping resolution of links not yet started
    :returns: FeatureCollection of resolved items plus failures
    """
    if resolver is None:
        with LinkResolver() as owned:
            return read_items(
                nodes,
                *expressions,
                resolver=owned,
                max_workers=max_workers,
                timeout=timeout,
                cancel_event=cancel_event,
            )

    matching = [link for node in _as_nodes(nodes) for link in item_links(node, *expressions)]
    workers = max_workers if max_workers is not None else resolver.settings.max_workers
    fetch_timeout = timeout if timeout is not None else resolver.settings.request_timeout

    def _resolve(link: Link) -> Item:
        node = resolver.open(link, timeout=fetch_timeout)
        if not isinstance(node, Item):
            raise ParseError(f"Expected an Item at {link.absolute_href}, got {type(node).__name__}")
        return node

    outcomes = run_ordered(_resolve, matching, max_workers=workers, cancel_event=cancel_event)
    values, failures = split_outcomes(outcomes, [_failure_href(link) for link in matching])
    items = [value for value in values if value is not None]

    logger.info(f"Resolved {len(items)} of {len(matching)} item link(s), {len(failures)} failure(s)")
    return FeatureCollection(items=items, failures=failures)


def walk(
    node: Node,
    resolver: LinkResolver,
    *expressions: Any,
    max_depth: int | None = None,
    timeout: float | None = None,
) -> Iterator[Node]:
    """Depth-first walk over child links, yielding each resolved child.

    Children are visited in document order. Fetch and parse errors propagate.

    :param node: Starting node, not yielded
    :param resolver: Link resolver
    :param expressions: Extra predicates over child link fields
    :param max_depth: Optional depth limit, 1 yields direct children only
    :param timeout: Per-fetch timeout in seconds
    :yields: Resolved child nodes
    :raises CycleError: If a child resolves to one of its ancestors
    """
    fetch_timeout = timeout if timeout is not None else resolver.settings.request_timeout
    root_url = node.source_url or f"<{node.id}>"
    yield from _walk(node, resolver, expressions, [root_url], 1, max_depth, fetch_timeout)


def _walk(
    node: Node,
    resolver: LinkResolver,
    expressions: tuple[Any, ...],
    ancestors: list[str],
    depth: int,
    max_depth: int | None,
    timeout: float | None,
) -> Iterator[Node]:
    if max_depth is not None and depth > max_depth:
        return
    for link in child_links(node, *expressions):
        url = link.absolute_href
        if url in ancestors:
            chain = " -> ".join([*ancestors, url])
            raise CycleError(f"Catalog cycle detected: {chain}")
        child = resolver.open(link, timeout=timeout)
        yield child
        yield from _walk(child, resolver, expressions, [*ancestors, url], depth + 1, max_depth, timeout)
