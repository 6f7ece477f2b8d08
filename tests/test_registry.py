"""Tests for the block registry, slots and recognizers."""
import pytest

from blocks import REGISTRY
from registry import (
    STATEMENT,
    VALUE,
    BlockKind,
    BlockRegistry,
    CallPattern,
    DuplicateKindError,
    OperatorPattern,
    RegexPattern,
    RegistryError,
    Slot,
    UnknownKindError,
    default_parameters,
    parse_number,
)


def _kind(tag, **kwargs):
    return BlockKind(tag=tag, category="Test", **kwargs)


class TestBlockRegistry:
    def test_register_and_lookup(self):
        registry = BlockRegistry()
        kind = registry.register(_kind("a", pattern=RegexPattern("a")))
        assert registry.lookup("a") is kind
        assert "a" in registry
        assert len(registry) == 1

    def test_duplicate_tag_rejected(self):
        registry = BlockRegistry()
        registry.register(_kind("a"))
        with pytest.raises(DuplicateKindError):
            registry.register(_kind("a"))

    def test_sealed_registry_rejects_new_kinds(self):
        registry = BlockRegistry()
        registry.seal()
        assert registry.sealed
        with pytest.raises(RegistryError):
            registry.register(_kind("a"))

    def test_unknown_kind_suggests_close_match(self):
        with pytest.raises(UnknownKindError, match="show_string"):
            REGISTRY.lookup("show_strng")

    def test_expression_cannot_chain(self):
        registry = BlockRegistry()
        with pytest.raises(RegistryError):
            registry.register(_kind("bad", output=(), previous=True))

    def test_ordered_by_specificity_then_registration(self):
        registry = BlockRegistry()
        registry.register(_kind("low", pattern=RegexPattern("x"), specificity=-1))
        registry.register(_kind("first", pattern=RegexPattern("x")))
        registry.register(_kind("second", pattern=RegexPattern("x")))
        registry.register(_kind("high", pattern=RegexPattern("x"), specificity=5))
        registry.register(_kind("hidden"))
        assert [k.tag for k in registry.ordered()] == ["high", "first", "second", "low"]

    def test_hats_only_at_top_level(self):
        tags = {k.tag for k in REGISTRY.statement_kinds(top_level=False)}
        assert "forever" not in tags
        assert "forever" in {k.tag for k in REGISTRY.statement_kinds(top_level=True)}

    def test_catalog_categories(self):
        groups = REGISTRY.by_category()
        for name in ("Basic", "Input", "Loops", "Led", "Logic", "Variables", "Text", "Maths", "Music", "Pins"):
            assert groups[name]


class TestSlot:
    def test_value_slot_type_check(self):
        slot = Slot("TEXT", VALUE, ("String",))
        assert slot.check_compatible(REGISTRY.lookup("text"))
        assert not slot.check_compatible(REGISTRY.lookup("math_number"))
        assert slot.check_compatible(REGISTRY.lookup("variables_get"))
        assert not slot.check_compatible(REGISTRY.lookup("pause"))

    def test_statement_slot_needs_previous(self):
        slot = Slot("DO", STATEMENT)
        assert slot.check_compatible(REGISTRY.lookup("pause"))
        assert not slot.check_compatible(REGISTRY.lookup("forever"))
        assert not slot.check_compatible(REGISTRY.lookup("math_number"))


class TestPatterns:
    def test_regex_pattern_full_match(self):
        pattern = RegexPattern(r"while\s+(?P<COND>.+?)\s*:")
        assert pattern.match("while x < 3:") == {"COND": "x < 3"}
        assert pattern.match("while x < 3: pass") is None

    def test_call_pattern_splits_arguments(self):
        pattern = CallPattern("led.plot", r"(?P<X>.+)", r"(?P<Y>.+)")
        assert pattern.match("led.plot(f(1, 2), 3)") == {"X": "f(1, 2)", "Y": "3"}
        assert pattern.match("led.plot(1)") is None
        assert pattern.match("led.plot_brightness(1, 2)") is None

    def test_call_pattern_await_prefix(self):
        assert CallPattern("display.clear").match("await display.clear()") == {}
        assert CallPattern("input.light_level", awaitable=False).match("await input.light_level()") is None

    def test_operator_pattern_weakest_level_first(self):
        pattern = OperatorPattern([(("+", "-"), False), (("*", "/"), False)])
        assert pattern.match("a * b + c") == {"A": "a * b", "OP": "+", "B": "c"}
        assert pattern.match("a * b") == {"A": "a", "OP": "*", "B": "b"}
        assert pattern.match("(a + b)") is None


class TestParameters:
    def test_parse_number(self):
        assert parse_number("4") == 4
        assert isinstance(parse_number("4"), int)
        assert parse_number("0.5") == 0.5
        assert parse_number("2.0") == 2.0
        assert isinstance(parse_number("2.0"), float)

    def test_default_parameters_routes_slots(self):
        kind = REGISTRY.lookup("plot_led_brightness")
        params = default_parameters(kind.slots, {"X": "1", "Y": "x + 1", "BRIGHTNESS": "128"})
        assert params.values == {"X": "1", "Y": "x + 1"}
        assert params.fields == {"BRIGHTNESS": 128}

    def test_default_parameters_rejects_bad_option(self):
        kind = REGISTRY.lookup("show_icon")
        assert default_parameters(kind.slots, {"ICON": "DRAGON"}) is None

    def test_default_parameters_rejects_keyword_variable(self):
        kind = REGISTRY.lookup("variables_get")
        assert default_parameters(kind.slots, {"VAR": "True"}) is None
