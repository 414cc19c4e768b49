"""Tests for the response template DSL."""

from __future__ import annotations

import pytest

from sift.generate.templates import (
    TemplateSyntaxError,
    _parse_format,
    apply_format,
    parse_condition,
    parse_template,
    render_template,
)

_PROCEDURES = "{if exists context.procedures}{for p in context.procedures}{p.title}{endfor}{endif}"


# ------------------------------------------------------------------
# Blocks
# ------------------------------------------------------------------


def test_empty_procedures_render_nothing():
    assert render_template(_PROCEDURES, {"context": {"procedures": []}}) == ""


def test_procedure_titles_render():
    assert render_template(_PROCEDURES, {"context": {"procedures": [{"title": "Step A"}]}}) == "Step A"


def test_placeholders_and_paths():
    variables = {"query": "予算", "results": [{"title": "A"}, {"title": "B"}], "param": {"name": "山田"}}
    assert render_template("{query}/{results[1].title}/{param.name}", variables) == "予算/B/山田"


def test_unresolved_placeholder_kept():
    assert render_template("Hi {param.missing}!", {"param": {}}) == "Hi {param.missing}!"


def test_literal_braces_kept():
    assert render_template("{ not a tag } {}", {}) == "{ not a tag } {}"


def test_else_branch():
    source = "{if exists param.recipient}Dear {param.recipient}{else}Hello{endif}"
    assert render_template(source, {"param": {}}) == "Hello"
    assert render_template(source, {"param": {"recipient": "Kim"}}) == "Dear Kim"


def test_for_index_is_one_based():
    source = "{for t in items}{if index > 1}, {endif}{index}:{t}{endfor}"
    assert render_template(source, {"items": ["a", "b", "c"]}) == "1:a, 2:b, 3:c"


def test_nested_loops():
    source = "{for p in procs}{p.title}[{for s in p.steps}{s}{endfor}]{endfor}"
    variables = {"procs": [{"title": "A", "steps": ["1", "2"]}, {"title": "B", "steps": []}]}
    assert render_template(source, variables) == "A[12]B[]"


def test_loop_over_non_list_renders_nothing():
    assert render_template("{for x in value}{x}{endfor}", {"value": "text"}) == ""


# ------------------------------------------------------------------
# Conditions
# ------------------------------------------------------------------


@pytest.mark.parametrize(
    "condition, expected",
    [
        ("language == ja", True),
        ("language != ja", False),
        ("count > 2", True),
        ("count < 2", False),
        ("count == 3", True),
        ("empty items", True),
        ("exists items", False),
        ("flag", False),
        ("missing.path", False),
    ],
)
def test_conditions(condition, expected):
    variables = {"language": "ja", "count": 3, "items": [], "flag": "false"}
    assert render_template("{if " + condition + "}yes{else}no{endif}", variables) == (
        "yes" if expected else "no"
    )


def test_non_numeric_comparison_is_false():
    assert render_template("{if name > 2}yes{else}no{endif}", {"name": "abc"}) == "no"


def test_parse_condition_unparseable():
    assert parse_condition("??") is None


# ------------------------------------------------------------------
# Balance handling
# ------------------------------------------------------------------


def test_unbalanced_tags_are_literal():
    assert render_template("a{endif}b", {}) == "a{endif}b"
    assert render_template("{if exists x}open", {"x": 1}) == "{if exists x}open"


def test_strict_parse_rejects_unbalanced():
    with pytest.raises(TemplateSyntaxError):
        parse_template("{for x in items}{x}", strict=True)
    with pytest.raises(TemplateSyntaxError):
        parse_template("{else}", strict=True)


def test_malformed_format_call_raises_syntax_error():
    with pytest.raises(TemplateSyntaxError, match="Malformed format call"):
        _parse_format("upper", "{format:upper}")


# ------------------------------------------------------------------
# Format functions
# ------------------------------------------------------------------


def test_format_list():
    assert render_template("{format:list(steps)}", {"steps": ["Open", "Save"]}) == "• Open\n• Save"


def test_format_count_and_truncate():
    variables = {"items": [1, 2, 3], "text": "abcdefghij"}
    assert render_template("{format:count(items)} {format:truncate(text, 4)}", variables) == "3 abcd..."


def test_format_missing_value_renders_nothing():
    assert render_template("[{format:upper(nope)}]", {}) == "[]"


@pytest.mark.parametrize(
    "function, value, args, expected",
    [
        ("upper", "abc", (), "ABC"),
        ("lower", "ABC", (), "abc"),
        ("capitalize", "budget", (), "Budget"),
        ("number", 1234567, (), "1,234,567"),
        ("number", 1234.5, (), "1,234.50"),
        ("number", 3.14159, ("1",), "3.1"),
        ("json", {"a": "予算"}, (), '{"a": "予算"}'),
        ("date", "2024-03-05T10:20:00", (), "2024-03-05"),
        ("time", "2024-03-05T10:20:00", (), "10:20"),
        ("datetime", "2024-03-05T10:20:00", (), "2024-03-05 10:20"),
        ("truncate", "short", (), "short"),
        ("unknown", 7, (), "7"),
    ],
)
def test_apply_format(function, value, args, expected):
    assert apply_format(function, value, args) == expected


def test_bad_format_value_renders_nothing():
    assert render_template("[{format:date(when)}]", {"when": "not a date"}) == "[]"
