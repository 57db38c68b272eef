"""Unit tests for dialect_engine.translator.rules."""

from __future__ import annotations

import re

import pytest

from dialect_engine.translator import Feature, PlaceholderStyle, TranslationFailure
from dialect_engine.translator.functions import rename
from dialect_engine.translator.lexer import scan
from dialect_engine.translator.rules import (
    QUERY_PHASES,
    FunctionRule,
    OperatorRule,
    PatternRule,
    PlaceholderRule,
    QuotingRule,
    RewriteState,
    RuleKind,
    RuleSet,
    TransformRule,
    render_placeholder,
)

# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------


def _state(sql: str, params: list | None = None) -> RewriteState:
    return RewriteState(sql=sql, dialect="test", params=params)


def _apply(rule, sql: str, params: list | None = None) -> RewriteState:
    state = _state(sql, params)
    rule.apply(state)
    return state


# ---------------------------------------------------------------------------
# Rewrite state
# ---------------------------------------------------------------------------


class TestRewriteState:
    def test_originals_captured(self) -> None:
        state = _state("SELECT ?", [1])
        state.update("SELECT $1")
        state.params = []
        assert state.original_sql == "SELECT ?"
        assert state.original_params == (1,)

    def test_scanned_tracks_updates(self) -> None:
        state = _state("SELECT 1")
        first = state.scanned
        state.update("SELECT ?")
        assert state.scanned is not first
        assert len(state.scanned.placeholders) == 1


# ---------------------------------------------------------------------------
# Pattern rules
# ---------------------------------------------------------------------------


class TestPatternRule:
    def test_replaces_outside_literals(self) -> None:
        rule = PatternRule(name="foo", pattern=re.compile(r"\bfoo\b"), replacement="bar")
        state = _apply(rule, "SELECT foo, 'foo', \"foo\" FROM t")
        assert state.sql == "SELECT bar, 'foo', \"foo\" FROM t"

    def test_template_uses_original_text(self) -> None:
        rule = PatternRule(name="alias", pattern=re.compile(r"\bAS\s+(\w+)"), replacement=r"AS \1_x")
        assert _apply(rule, "SELECT 1 AS total").sql == "SELECT 1 AS total_x"

    def test_warning_only_keeps_text(self) -> None:
        messages: list[str] = []
        rule = PatternRule(
            name="warn",
            pattern=re.compile(r"\bGLOB\b"),
            warning="GLOB is case-sensitive",
        )
        state = RewriteState(sql="SELECT a GLOB 'x*'", dialect="test", warn=messages.append)
        rule.apply(state)
        assert state.sql == "SELECT a GLOB 'x*'"
        assert messages == ["GLOB is case-sensitive"]

    def test_callable_replacement(self) -> None:
        rule = PatternRule(
            name="upper",
            pattern=re.compile(r"\bselect\b"),
            replacement=lambda m: (m.group(0) or "").upper(),
        )
        assert _apply(rule, "select 1").sql == "SELECT 1"

    def test_top_level_only(self) -> None:
        rule = PatternRule(
            name="limit",
            pattern=re.compile(r"\bLIMIT 1\b"),
            replacement="LIMIT 2",
            top_level_only=True,
        )
        state = _apply(rule, "SELECT (SELECT a FROM t LIMIT 1) LIMIT 1")
        assert state.sql == "SELECT (SELECT a FROM t LIMIT 1) LIMIT 2"


# ---------------------------------------------------------------------------
# Function rules
# ---------------------------------------------------------------------------


class TestFunctionRule:
    def test_rewrites_nested_calls(self) -> None:
        rule = FunctionRule(name="fn-ifnull", function="ifnull", handler=rename("COALESCE"))
        state = _apply(rule, "SELECT ifnull(ifnull(a, b), c) FROM t")
        assert state.sql == "SELECT COALESCE(COALESCE(a, b), c) FROM t"

    def test_handler_none_leaves_call(self) -> None:
        rule = FunctionRule(name="fn-instr", function="instr", handler=rename("STRPOS", arity=2))
        assert _apply(rule, "SELECT instr(a) FROM t").sql == "SELECT instr(a) FROM t"

    def test_ignores_calls_in_strings(self) -> None:
        rule = FunctionRule(name="fn-ifnull", function="ifnull", handler=rename("COALESCE"))
        assert _apply(rule, "SELECT 'ifnull(a, b)'").sql == "SELECT 'ifnull(a, b)'"

    def test_defaults_to_function_feature(self) -> None:
        rule = FunctionRule(name="fn-x", function="x", handler=rename("Y"))
        assert rule.kind is RuleKind.FUNCTION
        assert rule.feature is Feature.FUNCTION

    def test_reorder_permutes_bound_values(self) -> None:
        def swap(call):
            call.reorder(2, 0, 1)
            return f"F({call.args[2]}, {call.args[0]}, {call.args[1]})"

        rule = FunctionRule(name="fn-f", function="f", handler=swap)
        state = _apply(rule, "SELECT ?, f(?, 1, ?) WHERE a = ?", ["x", "a", "b", "y"])
        assert state.sql == "SELECT ?, F(?, ?, 1) WHERE a = ?"
        assert state.params == ["x", "b", "a", "y"]

    def test_reorder_requires_permutation(self) -> None:
        def broken(call):
            call.reorder(0, 0)
            return "G()"

        rule = FunctionRule(name="fn-f", function="f", handler=broken)
        with pytest.raises(ValueError, match="not a permutation"):
            _apply(rule, "SELECT f(a, b)")

    def test_repeated_placeholder_rejected(self) -> None:
        rule = FunctionRule(name="fn-f", function="f", handler=lambda call: f"G({call.args[0]}, {call.args[0]})")
        with pytest.raises(TranslationFailure, match="would change the number of bound parameters"):
            _apply(rule, "SELECT f(?)", [1])
        assert _apply(rule, "SELECT f(a)").sql == "SELECT G(a, a)"


# ---------------------------------------------------------------------------
# Operator rules
# ---------------------------------------------------------------------------


class TestOperatorRule:
    def test_symbol_operator(self) -> None:
        rule = OperatorRule(name="eq", operator="==", target="=")
        assert _apply(rule, "SELECT * FROM t WHERE a == 1").sql == "SELECT * FROM t WHERE a = 1"

    def test_word_operator_spans_whitespace(self) -> None:
        rule = OperatorRule(name="like", operator="NOT LIKE", target="NOT ILIKE")
        state = _apply(rule, "SELECT * FROM t WHERE a not   like 'x'")
        assert state.sql == "SELECT * FROM t WHERE a NOT ILIKE 'x'"

    def test_maps_normalises_spelling(self) -> None:
        rule = OperatorRule(name="is-not", operator="IS NOT", target="IS DISTINCT FROM")
        assert rule.maps("is  not")
        assert not rule.maps("IS")


# ---------------------------------------------------------------------------
# Quoting
# ---------------------------------------------------------------------------


class TestQuotingRule:
    def test_converts_all_sqlite_quote_styles(self) -> None:
        rule = QuotingRule(name="q", quotes=("`", "`"))
        state = _apply(rule, 'SELECT "a", [b], `c` FROM "t"')
        assert state.sql == "SELECT `a`, `b`, `c` FROM `t`"

    def test_escapes_closing_quote(self) -> None:
        rule = QuotingRule(name="q", quotes=("[", "]"))
        assert _apply(rule, 'SELECT "a]b" FROM t').sql == "SELECT [a]]b] FROM t"

    def test_leaves_string_literals(self) -> None:
        rule = QuotingRule(name="q", quotes=("`", "`"))
        assert _apply(rule, "SELECT 'x' FROM t").sql == "SELECT 'x' FROM t"


# ---------------------------------------------------------------------------
# Placeholders
# ---------------------------------------------------------------------------


class TestPlaceholderRule:
    @pytest.mark.parametrize(
        "style, expected",
        [
            (PlaceholderStyle.NUMERIC_DOLLAR, "$2"),
            (PlaceholderStyle.NUMERIC_COLON, ":2"),
            (PlaceholderStyle.FORMAT, "%s"),
            (PlaceholderStyle.QMARK, "?"),
        ],
    )
    def test_render_placeholder(self, style: PlaceholderStyle, expected: str) -> None:
        assert render_placeholder(style, 2) == expected

    def test_numbers_left_to_right(self) -> None:
        rule = PlaceholderRule(name="p", style=PlaceholderStyle.NUMERIC_DOLLAR)
        state = _apply(rule, "SELECT '?' FROM t WHERE a = ? AND b = ?", [1, 2])
        assert state.sql == "SELECT '?' FROM t WHERE a = $1 AND b = $2"

    def test_count_mismatch_raises(self) -> None:
        rule = PlaceholderRule(name="p", style=PlaceholderStyle.NUMERIC_COLON)
        with pytest.raises(TranslationFailure, match="1 placeholder"):
            _apply(rule, "SELECT * FROM t WHERE a = ?", [1, 2])

    def test_qmark_still_checks_count(self) -> None:
        rule = PlaceholderRule(name="p", style=PlaceholderStyle.QMARK)
        with pytest.raises(TranslationFailure):
            _apply(rule, "SELECT ?, ?", [1])

    def test_format_doubles_percent(self) -> None:
        rule = PlaceholderRule(name="p", style=PlaceholderStyle.FORMAT)
        state = _apply(rule, "SELECT * FROM t WHERE a LIKE '10%' AND b = ?", [1])
        assert state.sql == "SELECT * FROM t WHERE a LIKE '10%%' AND b = %s"

    def test_format_without_placeholders_keeps_percent(self) -> None:
        rule = PlaceholderRule(name="p", style=PlaceholderStyle.FORMAT)
        state = _apply(rule, "SELECT * FROM t WHERE a LIKE '10%'")
        assert state.sql == "SELECT * FROM t WHERE a LIKE '10%'"


# ---------------------------------------------------------------------------
# Rule sets
# ---------------------------------------------------------------------------


def _pattern(name: str, kind: RuleKind = RuleKind.STATEMENT, feature: Feature | None = None) -> PatternRule:
    return PatternRule(
        name=name,
        kind=kind,
        feature=feature,
        pattern=re.compile(r"\bfoo\b"),
        replacement="bar",
    )


class TestRuleSet:
    def test_duplicate_names_rejected(self) -> None:
        with pytest.raises(ValueError, match="Duplicate rule name"):
            RuleSet([_pattern("a"), _pattern("a")])

    def test_phase_order_enforced(self) -> None:
        rules = [
            PlaceholderRule(name="placeholders", style=PlaceholderStyle.QMARK),
            _pattern("late", RuleKind.FUNCTION),
        ]
        with pytest.raises(ValueError, match="must run before"):
            RuleSet(rules, phases=QUERY_PHASES)

    def test_kind_outside_phases_rejected(self) -> None:
        with pytest.raises(ValueError, match="not allowed"):
            RuleSet([_pattern("schema", RuleKind.SCHEMA)], phases=QUERY_PHASES)

    def test_lookup_helpers(self) -> None:
        rules = RuleSet([_pattern("a"), _pattern("b", RuleKind.OPERATOR)])
        assert rules.names == ["a", "b"]
        assert len(rules) == 2
        assert "a" in rules
        assert rules.get("b") is not None
        assert rules.get("missing") is None
        assert [r.name for r in rules.of_kind(RuleKind.OPERATOR)] == ["b"]

    def test_without_and_replaced(self) -> None:
        rules = RuleSet([_pattern("a"), _pattern("b")])
        assert rules.without("a").names == ["b"]
        replacement = _pattern("c")
        assert rules.replaced("a", replacement).names == ["c", "b"]
        assert rules.names == ["a", "b"]

    def test_replaced_missing_raises(self) -> None:
        with pytest.raises(KeyError):
            RuleSet([_pattern("a")]).replaced("zzz", _pattern("b"))

    def test_inserted_before(self) -> None:
        rules = RuleSet([_pattern("a"), _pattern("b")])
        assert rules.inserted_before("b", _pattern("x")).names == ["a", "x", "b"]

    def test_apply_records_changed_rules(self) -> None:
        noop = PatternRule(name="noop", pattern=re.compile(r"\bzzz\b"), replacement="y")
        state = RuleSet([noop, _pattern("foo")]).apply(_state("SELECT foo"))
        assert state.sql == "SELECT bar"
        assert state.applied == ["foo"]

    def test_disabled_feature_skipped(self) -> None:
        rules = RuleSet([_pattern("fn", feature=Feature.FUNCTION)])
        state = rules.apply(_state("SELECT foo"), lambda feature: feature is not Feature.FUNCTION)
        assert state.sql == "SELECT foo"

    def test_needs_rewrite(self) -> None:
        rules = RuleSet([_pattern("foo")])
        assert rules.needs_rewrite(scan("SELECT foo"))
        assert not rules.needs_rewrite(scan("SELECT 'foo'"))

    def test_unexpected_error_wrapped(self) -> None:
        def explode(state: RewriteState) -> None:
            raise ValueError("boom")

        bad = TransformRule(name="bad", transform=explode, trigger=re.compile(r"\bSELECT\b"))
        with pytest.raises(TranslationFailure, match="rule 'bad': boom") as exc_info:
            RuleSet([bad]).apply(_state("SELECT 1"))
        assert exc_info.value.rule == "bad"
        assert exc_info.value.sql == "SELECT 1"
        assert exc_info.value.dialect == "test"

    def test_translation_failure_annotated(self) -> None:
        rule = PlaceholderRule(name="placeholders", style=PlaceholderStyle.QMARK)
        with pytest.raises(TranslationFailure) as exc_info:
            RuleSet([rule]).apply(_state("SELECT ?", []))
        assert exc_info.value.rule == "placeholders"
