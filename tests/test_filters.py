from typing import Any

import pytest

from stac_extraction.catalog.filters import F, Predicate, compile_filter, filter_node, predicate
from stac_extraction.errors import FilterError
from stac_extraction.models.models import Link


def _link(**fields: Any) -> Link:
    return Link.model_validate({"rel": "item", "href": "./items/20200601.json", **fields})


def test_empty_expression_list_accepts_every_node() -> None:
    """
    Test that a filter call without expressions is permissive.
    """
    assert filter_node(_link())
    assert filter_node({"anything": 1})
    assert filter_node({})


def test_equality_and_inequality() -> None:
    link = _link(title="GLC 2000")
    assert filter_node(link, F("rel") == "item")
    assert not filter_node(link, F("rel") == "child")
    assert filter_node(link, F("rel") != "child")
    assert filter_node(link, ("rel", "==", "item"), ("title", "!=", "other"))


def test_contains_is_case_sensitive() -> None:
    link = _link(title="Global Land Cover GLC")
    assert filter_node(link, F("title").contains("GLC"))
    assert not filter_node(link, F("title").contains("glc"))


def test_matches_uses_regular_expression_search() -> None:
    """
    Test pattern matching of hrefs, as used for date-stamped filenames.
    """
    assert filter_node(_link(href="https://h/lc_20000601.tif"), F("href").matches("20..0601"))
    assert not filter_node(_link(href="https://h/lc_20000101.tif"), F("href").matches("20..0601"))
    assert filter_node(_link(href="https://h/lc_20200101.tif"), ("href", "~", "^https://.*2020"))


def test_matches_supports_posix_bracket_classes() -> None:
    """
    Test that extended-regex character classes behave as in POSIX.
    """
    date_pattern = F("href").matches("20[[:digit:]]{2}0601")
    assert filter_node(_link(href="./items/20000601.json"), date_pattern)
    assert not filter_node(_link(href="./items/20xx0601.json"), date_pattern)

    assert filter_node(_link(title="GLC_2000"), F("title").matches("^[[:upper:]]+[[:punct:]][[:digit:]]+$"))
    assert filter_node(_link(title="Soil pH"), F("title").matches("[[:lower:]][[:space:]][[:alpha:]]{2}"))
    assert not filter_node(_link(title="2000"), F("title").matches("[^[:digit:]]"))
    assert filter_node(_link(title="0xFF"), F("title").matches("0x[[:xdigit:]]+"))

    with pytest.raises(FilterError, match="word"):
        F("title").matches("[[:word:]]")


def test_missing_fields_evaluate_to_false() -> None:
    """
    Test that undeclared or null fields never match, whatever the operator.
    """
    link = _link()
    assert not filter_node(link, F("platform") == "landsat")
    assert not filter_node(link, F("platform") != "landsat")
    assert not filter_node(link, F("title").contains("x"))
    assert not filter_node(link, F("gsd") > 10)


def test_extra_fields_and_ordering_comparisons() -> None:
    link = _link(gsd=30, platform="landsat-8")
    assert filter_node(link, F("gsd") >= 30, F("gsd") < 100)
    assert not filter_node(link, F("gsd") > 30)
    assert filter_node(link, F("platform").isin(["landsat-8", "landsat-9"]))
    assert filter_node(link, ("platform", "exists"))
    # ordering across incompatible types is a non-match
    assert not filter_node(link, F("platform") > 3)


def test_dotted_field_names_reach_nested_values() -> None:
    node = {"properties": {"eo:cloud_cover": 5, "nested": {"level": 2}}}
    assert filter_node(node, F("properties.eo:cloud_cover") < 10)
    assert filter_node(node, F("properties.nested.level") == 2)
    assert not filter_node(node, F("properties.missing") == 2)


def test_conjunction_short_circuits_left_to_right() -> None:
    """
    Test that evaluation stops at the first false predicate.
    """
    calls: list[str] = []

    def _tracking(name: str, result: bool) -> Predicate:
        def _test(value: Any) -> bool:
            calls.append(name)
            return result

        return Predicate("rel", "track", name, _test)

    assert not filter_node(_link(), _tracking("first", True), _tracking("second", False), _tracking("third", True))
    assert calls == ["first", "second"]


@pytest.mark.parametrize(
    "expression",
    [
        ("rel", "like", "item"),
        ("rel", "==",),
        "rel == 'item'",
        ("href", "matches", "(unclosed"),
        ("title", "contains", 3),
        ("rel", "in", "item"),
    ],
)
def test_malformed_expressions_raise_filter_error(expression: Any) -> None:
    with pytest.raises(FilterError):
        predicate(expression)


def test_compile_filter_validates_eagerly() -> None:
    """
    Test that invalid expressions fail before any node is evaluated.
    """
    with pytest.raises(FilterError):
        compile_filter(F("rel") == "item", ("rel", "???", "x"))


def test_filtering_unsupported_objects_raises() -> None:
    with pytest.raises(FilterError):
        filter_node(42, F("rel") == "item")
