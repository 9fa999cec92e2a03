"""Unit tests for the individual near-JSON repair passes."""

from __future__ import annotations

import json

from hypothesis import given, settings
from hypothesis import strategies as st

from plancast.parsing.repairs import (
    escape_control_characters,
    insert_adjacency_commas,
    insert_missing_commas,
    normalize_quotes,
    remove_trailing_commas,
    repair_json_text,
    strip_comments,
    translate_literals,
)
from plancast.parsing.scanner import TokenKind, tokenize

_NEAR_JSON_ALPHABET = "{}[]:,'\"\\/* \n\tabTrueFalsNon01-."
_near_json = st.text(alphabet=_NEAR_JSON_ALPHABET, max_size=48)


def test_tokenize_is_lossless_and_respects_opening_delimiter() -> None:
    text = """{'a': "it's // fine", /* "x" */ b: 'say "hi"'}"""
    tokens = tokenize(text)

    assert "".join(token.text for token in tokens) == text
    strings = [token.text for token in tokens if token.kind is TokenKind.STRING]
    assert strings == ["'a'", '"it\'s // fine"', "'say \"hi\"'"]
    comments = [token.text for token in tokens if token.kind is TokenKind.BLOCK_COMMENT]
    assert comments == ['/* "x" */']


def test_normalize_quotes_converts_single_quoted_strings() -> None:
    assert normalize_quotes("{'a': 'b'}") == '{"a": "b"}'
    assert json.loads(normalize_quotes("{'a': 'it\\'s'}")) == {"a": "it's"}
    assert json.loads(normalize_quotes("{'a': 'say \"hi\"'}")) == {"a": 'say "hi"'}


def test_normalize_quotes_leaves_double_quoted_content_alone() -> None:
    text = '{"a": "don\'t", \'b\': \'x\'}'
    assert normalize_quotes(text) == '{"a": "don\'t", "b": "x"}'


def test_remove_trailing_commas_reaches_fixed_point() -> None:
    assert remove_trailing_commas('{"a": [1, 2,], }') == '{"a": [1, 2] }'
    assert remove_trailing_commas("[1,,]") == "[1]"
    assert remove_trailing_commas('{"a": "x,]"}') == '{"a": "x,]"}'
    assert json.loads(strip_comments(remove_trailing_commas("[1, // last\n]"))) == [1]


def test_strip_comments_is_string_aware() -> None:
    stripped = strip_comments('{"a": 1, // note\n"b": 2 /* c */}')
    assert json.loads(stripped) == {"a": 1, "b": 2}

    url = '{"url": "http://example.com/*x*/"}'
    assert strip_comments(url) == url
    assert json.loads(strip_comments('{"a": 1 // don\'t\n}')) == {"a": 1}


def test_translate_literals_only_touches_barewords() -> None:
    translated = translate_literals('{"a": True, "b": None, "c": "True", "d": TrueColor}')
    assert translated == '{"a": true, "b": null, "c": "True", "d": TrueColor}'
    assert translate_literals("[False]") == "[false]"


def test_escape_control_characters_inside_strings_only() -> None:
    assert escape_control_characters('{"a": "line1\nline2\tx"}') == '{"a": "line1\\nline2\\tx"}'
    assert escape_control_characters('{\n"a": 1}') == '{\n"a": 1}'
    assert escape_control_characters('["\x01"]') == '["\\u0001"]'
    assert json.loads(escape_control_characters('{"a": "x\\\ny"}')) == {"a": "x\ny"}


def test_insert_adjacency_commas() -> None:
    assert insert_adjacency_commas('[{"a":1}{"b":2}]') == '[{"a":1},{"b":2}]'
    assert insert_adjacency_commas('[[1] [2]]') == "[[1], [2]]"
    assert insert_adjacency_commas('["a"\n"b"]') == '["a",\n"b"]'
    assert insert_adjacency_commas('{"a": "}{"}') == '{"a": "}{"}'


def test_insert_missing_commas_before_next_key() -> None:
    assert insert_missing_commas('{"a": 1 "b": 2}') == '{"a": 1, "b": 2}'
    assert (
        insert_missing_commas('{"a": "x"\n  "b": true "c": null}')
        == '{"a": "x",\n  "b": true, "c": null}'
    )
    assert insert_missing_commas('["a" "b"]') == '["a" "b"]'
    assert insert_missing_commas('{"a": {"x": 1} "b": [2]}') == '{"a": {"x": 1}, "b": [2]}'


def test_repair_json_text_applies_all_standard_passes() -> None:
    raw = "{'steps': [{'type': 'command', 'command': 'ls', /* c */ 'ok': True,},], // x\n}"
    assert json.loads(repair_json_text(raw)) == {
        "steps": [{"type": "command", "command": "ls", "ok": True}]
    }


@settings(max_examples=60, derandomize=True, deadline=None)
@given(_near_json)
def test_quote_normalization_is_idempotent(text: str) -> None:
    once = normalize_quotes(text)
    assert normalize_quotes(once) == once


@settings(max_examples=60, derandomize=True, deadline=None)
@given(_near_json)
def test_trailing_comma_removal_is_idempotent(text: str) -> None:
    once = remove_trailing_commas(text)
    assert remove_trailing_commas(once) == once


@settings(max_examples=60, derandomize=True, deadline=None)
@given(_near_json)
def test_comment_stripping_is_idempotent(text: str) -> None:
    once = strip_comments(text)
    assert strip_comments(once) == once


@settings(max_examples=60, derandomize=True, deadline=None)
@given(_near_json)
def test_literal_and_control_passes_are_idempotent(text: str) -> None:
    literals = translate_literals(text)
    assert translate_literals(literals) == literals
    escaped = escape_control_characters(text)
    assert escape_control_characters(escaped) == escaped


@settings(max_examples=60, derandomize=True, deadline=None)
@given(_near_json)
def test_tokenize_round_trips_arbitrary_text(text: str) -> None:
    assert "".join(token.text for token in tokenize(text)) == text
